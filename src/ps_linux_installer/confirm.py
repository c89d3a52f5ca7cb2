"""!
@brief Confirmation prompt for ``--uninstall``.
"""

from __future__ import annotations

import sys
from typing import Callable

CONFIRM_PROMPT = (
    "Remove Photoshop, its Wine prefix, the download cache and the launcher "
    "entries? [y/N]"
)


def _stdin_is_terminal() -> bool:
    stdin = getattr(sys, "stdin", None)
    isatty = getattr(stdin, "isatty", None)
    return bool(isatty and isatty())


def request_uninstall_confirmation(
    *,
    force: bool,
    input_func: Callable[[str], str] | None = None,
    interactive: bool | None = None,
) -> bool:
    """!
    @brief Ask before deleting a previous installation.
    @details ``--yes`` skips the question, as does a stdin that is not a
    terminal. At the prompt only ``y`` or ``yes`` proceed; an empty answer
    or EOF keeps the installation.
    @param force Whether the caller supplied ``--yes``.
    @param input_func Optional input function override.
    @param interactive Optional override for terminal detection.
    @returns ``True`` when the uninstall should proceed.
    """

    if force:
        return True
    if not (_stdin_is_terminal() if interactive is None else interactive):
        return True

    ask = input_func or input
    try:
        answer = ask(f"{CONFIRM_PROMPT} ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


__all__ = ["CONFIRM_PROMPT", "request_uninstall_confirmation"]
