"""!
@file main_progress.py
@brief Progress output for the installer CLI.
@details Prints Linux init-style lines with elapsed timestamps and
``[  OK  ]``/``[FAILED]``/``[ SKIP ]`` status markers. Output is thread safe
and suppressed entirely in quiet mode.
"""

from __future__ import annotations

import sys
import threading
import time
from typing import TextIO

__all__ = [
    "get_elapsed_secs",
    "progress",
    "progress_fail",
    "progress_ok",
    "progress_skip",
    "set_main_start_time",
    "set_quiet",
]

_MAIN_START_TIME: float = time.perf_counter()
_PROGRESS_LOCK = threading.Lock()
_PENDING_LINE_OWNER: int | None = None
_QUIET = False

_GREEN = "\033[32m"
_RED = "\033[31m"
_YELLOW = "\033[33m"
_RESET = "\033[0m"


def set_main_start_time(start_time: float) -> None:
    global _MAIN_START_TIME
    _MAIN_START_TIME = start_time


def set_quiet(quiet: bool) -> None:
    """!
    @brief Suppress (or re-enable) all progress output.
    """
    global _QUIET
    _QUIET = quiet


def get_elapsed_secs() -> float:
    return time.perf_counter() - _MAIN_START_TIME


def _stream() -> TextIO:
    return sys.stdout


def _colour(text: str, code: str) -> str:
    isatty = getattr(_stream(), "isatty", None)
    if isatty and isatty():
        return f"{code}{text}{_RESET}"
    return text


def progress(message: str, *, indent: int = 0, newline: bool = True) -> None:
    """!
    @brief Print a timestamped progress message.
    @param message The message to print.
    @param indent Indentation level (each level adds 2 spaces).
    @param newline ``False`` leaves the line open for a status marker.
    """
    global _PENDING_LINE_OWNER
    if _QUIET:
        return
    text = f"[{get_elapsed_secs():12.6f}] {'  ' * indent}{message}"
    with _PROGRESS_LOCK:
        current_thread = threading.get_ident()
        if _PENDING_LINE_OWNER is not None and _PENDING_LINE_OWNER != current_thread:
            print(file=_stream(), flush=True)
        if newline:
            print(text, file=_stream(), flush=True)
            _PENDING_LINE_OWNER = None
        else:
            print(text, end="", file=_stream(), flush=True)
            _PENDING_LINE_OWNER = current_thread


def _status(marker: str, detail: str | None) -> None:
    global _PENDING_LINE_OWNER
    if _QUIET:
        return
    suffix = f" ({detail})" if detail else ""
    with _PROGRESS_LOCK:
        if _PENDING_LINE_OWNER == threading.get_ident():
            print(f" {marker}{suffix}", file=_stream(), flush=True)
        else:
            if _PENDING_LINE_OWNER is not None:
                print(file=_stream(), flush=True)
            print(f"[{get_elapsed_secs():12.6f}]  {marker}{suffix}", file=_stream(), flush=True)
        _PENDING_LINE_OWNER = None


def progress_ok(detail: str | None = None) -> None:
    _status(f"[  {_colour('OK', _GREEN)}  ]", detail)


def progress_fail(reason: str | None = None) -> None:
    _status(f"[{_colour('FAILED', _RED)}]", reason)


def progress_skip(reason: str | None = None) -> None:
    _status(f"[ {_colour('SKIP', _YELLOW)} ]", reason)
