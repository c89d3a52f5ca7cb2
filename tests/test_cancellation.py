"""!
@brief Tests for :mod:`ps_linux_installer.cancellation`.
"""
from __future__ import annotations

import os
import pathlib
import signal
import sys
import threading
import time

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer.cancellation import CancellationToken, install_signal_handlers  # noqa: E402
from ps_linux_installer.errors import UserCancelled  # noqa: E402


def test_token_starts_clear_and_records_first_reason() -> None:
    token = CancellationToken()
    assert not token.cancelled
    token.raise_if_cancelled()

    token.cancel("SIGINT")
    token.cancel("SIGTERM")

    assert token.cancelled
    assert token.reason == "SIGINT"
    with pytest.raises(UserCancelled) as excinfo:
        token.raise_if_cancelled()
    assert excinfo.value.reason == "SIGINT"


def test_wait_returns_early_when_cancelled() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel)
    timer.start()
    start = time.monotonic()
    try:
        assert token.wait(5.0) is True
    finally:
        timer.cancel()
    assert time.monotonic() - start < 2.0


def test_wait_times_out_without_cancellation() -> None:
    token = CancellationToken()
    assert token.wait(0.05) is False
    assert token.wait(0) is False


def test_signal_handler_sets_token_and_restores_previous() -> None:
    token = CancellationToken()
    previous = signal.getsignal(signal.SIGUSR1)
    restore = install_signal_handlers(token, signals=(signal.SIGUSR1,))
    try:
        os.kill(os.getpid(), signal.SIGUSR1)
        deadline = time.monotonic() + 2.0
        while not token.cancelled and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        restore()

    assert token.cancelled
    assert token.reason == "SIGUSR1"
    assert signal.getsignal(signal.SIGUSR1) == previous
