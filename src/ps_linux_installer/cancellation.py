"""!
@brief Cooperative cancellation token threaded through every wait loop.
@details Signal handlers only flip the token; the poll loops in
:mod:`ps_linux_installer.readiness` and :mod:`ps_linux_installer.exec_utils`
observe it on each iteration and unwind through :class:`UserCancelled`.
"""
from __future__ import annotations

import signal
import threading
from typing import Callable, Dict, Iterable

from .errors import UserCancelled


class CancellationToken:
    """!
    @brief Thread-safe flag with an interruptible ``wait``.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "interrupted") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """!
        @brief Sleep for up to ``seconds`` unless cancelled first.
        @returns ``True`` when the token was cancelled during the wait.
        """

        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UserCancelled(self._reason or "interrupted")


def install_signal_handlers(
    token: CancellationToken,
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP),
) -> Callable[[], None]:
    """!
    @brief Route termination signals into ``token``.
    @details Must be called from the main thread. The returned callable
    restores the previous handlers.
    """

    previous: Dict[int, object] = {}

    def _handler(signum: int, _frame: object) -> None:
        token.cancel(signal.Signals(signum).name)

    for signum in signals:
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _handler)

    def _restore() -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]

    return _restore


__all__ = ["CancellationToken", "install_signal_handlers"]
