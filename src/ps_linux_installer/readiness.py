"""!
@brief Polling primitive that waits for a file to settle.
@details Wine finishes prefix initialisation in the background long after the
``wineboot`` process returns. Readiness is therefore judged on an artifact
(``user.reg`` by default): it must exist, be non-empty, and report the same
size on two consecutive samples.
"""

from __future__ import annotations

import os
import time
from enum import Enum
from pathlib import Path
from typing import Callable

from . import constants, logging_ext
from .cancellation import CancellationToken
from .detect import RuntimeTier


class ReadinessResult(Enum):
    """!
    @brief Outcome of :func:`wait_for_stable_artifact`.
    """

    READY = "ready"
    TIMED_OUT = "timed_out"


def compute_ready_timeout(
    tier: RuntimeTier | None,
    *,
    base_timeout: float = constants.BASE_READY_TIMEOUT,
) -> float:
    """!
    @brief Derive the readiness timeout from the runtime tier.
    @details Experimental (``FALLBACK``) runtimes get
    :data:`constants.EXPERIMENTAL_TIMEOUT_FACTOR` times the base timeout.
    """

    if tier is RuntimeTier.FALLBACK:
        return base_timeout * constants.EXPERIMENTAL_TIMEOUT_FACTOR
    return base_timeout


def _sample_size(path: Path) -> int | None:
    try:
        size = os.stat(path).st_size
    except OSError:
        return None
    return size if size > 0 else None


def wait_for_stable_artifact(
    path: Path,
    timeout: float,
    poll_interval: float = constants.DEFAULT_POLL_INTERVAL,
    *,
    token: CancellationToken | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ReadinessResult:
    """!
    @brief Poll ``path`` until its size is stable or ``timeout`` elapses.
    @details Each sleep is capped at the remaining time, so the call returns
    within ``timeout + poll_interval``. After the deadline one final sample is
    taken and compared against the last in-loop sample; a match still counts
    as ready. Every iteration is a cancellation point.
    @param path Artifact to observe.
    @param timeout Seconds to wait before giving up.
    @param poll_interval Seconds between samples.
    @param token Cancellation token; :class:`UserCancelled` is raised when set.
    @param clock Monotonic clock, injectable for tests.
    @returns :class:`ReadinessResult`.
    """

    human_logger = logging_ext.get_human_logger("readiness")
    machine_logger = logging_ext.get_machine_logger()
    active_token = token or CancellationToken()
    interval = max(poll_interval, 0.01)

    start = clock()
    deadline = start + max(timeout, 0.0)
    previous: int | None = None
    samples = 0

    while True:
        active_token.raise_if_cancelled()
        current = _sample_size(path)
        samples += 1
        if current is not None and current == previous:
            human_logger.debug("%s stable at %d bytes after %d samples", path, current, samples)
            machine_logger.info(
                "readiness_result",
                extra={
                    "event": "readiness_result",
                    "path": str(path),
                    "result": ReadinessResult.READY.value,
                    "samples": samples,
                    "elapsed": round(clock() - start, 3),
                },
            )
            return ReadinessResult.READY
        previous = current
        remaining = deadline - clock()
        if remaining <= 0:
            break
        if active_token.wait(min(interval, remaining)):
            active_token.raise_if_cancelled()

    final = _sample_size(path)
    if final is not None and final == previous:
        human_logger.debug("%s satisfied stability on the final check", path)
        result = ReadinessResult.READY
    else:
        human_logger.warning("Timed out after %.1fs waiting for %s", timeout, path)
        result = ReadinessResult.TIMED_OUT

    machine_logger.info(
        "readiness_result",
        extra={
            "event": "readiness_result",
            "path": str(path),
            "result": result.value,
            "samples": samples + 1,
            "elapsed": round(clock() - start, 3),
            "final_check": True,
        },
    )
    return result


__all__ = ["ReadinessResult", "compute_ready_timeout", "wait_for_stable_artifact"]
