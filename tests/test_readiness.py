"""!
@brief Tests for :mod:`ps_linux_installer.readiness`.
"""
from __future__ import annotations

import pathlib
import sys
import threading
import time

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import constants, readiness  # noqa: E402
from ps_linux_installer.cancellation import CancellationToken  # noqa: E402
from ps_linux_installer.detect import RuntimeTier  # noqa: E402
from ps_linux_installer.errors import UserCancelled  # noqa: E402
from ps_linux_installer.readiness import ReadinessResult  # noqa: E402


def test_timeout_scales_for_experimental_runtimes() -> None:
    base = constants.BASE_READY_TIMEOUT
    assert readiness.compute_ready_timeout(RuntimeTier.PREFERRED) == base
    assert readiness.compute_ready_timeout(RuntimeTier.STANDARD) == base
    assert readiness.compute_ready_timeout(None) == base
    assert readiness.compute_ready_timeout(RuntimeTier.FALLBACK) == base * 3
    assert readiness.compute_ready_timeout(RuntimeTier.FALLBACK, base_timeout=10) == 30


def test_stable_artifact_is_ready(tmp_path) -> None:
    artifact = tmp_path / "user.reg"
    artifact.write_text("WINE REGISTRY Version 2\n", encoding="utf-8")

    result = readiness.wait_for_stable_artifact(artifact, timeout=5, poll_interval=0.05)

    assert result is ReadinessResult.READY


@pytest.mark.parametrize("create_empty", [False, True])
def test_missing_or_empty_artifact_times_out_within_bound(tmp_path, create_empty: bool) -> None:
    artifact = tmp_path / "user.reg"
    if create_empty:
        artifact.touch()
    timeout, poll = 0.4, 0.1

    start = time.monotonic()
    result = readiness.wait_for_stable_artifact(artifact, timeout=timeout, poll_interval=poll)
    elapsed = time.monotonic() - start

    assert result is ReadinessResult.TIMED_OUT
    assert elapsed <= timeout + poll + 0.5


def test_growing_artifact_waits_until_size_settles(tmp_path, monkeypatch) -> None:
    sizes = iter([None, 10, 20, 30, 30, 99])
    seen = []

    def _fake_sample(_path):
        value = next(sizes)
        seen.append(value)
        return value

    monkeypatch.setattr(readiness, "_sample_size", _fake_sample)

    result = readiness.wait_for_stable_artifact(tmp_path / "user.reg", timeout=5, poll_interval=0.01)

    assert result is ReadinessResult.READY
    assert seen == [None, 10, 20, 30, 30]


def test_final_check_accepts_artifact_settled_at_deadline(tmp_path) -> None:
    artifact = tmp_path / "user.reg"
    artifact.write_text("data", encoding="utf-8")
    ticks = iter([0.0, 10.0, 10.0, 10.0])

    result = readiness.wait_for_stable_artifact(
        artifact,
        timeout=1.0,
        poll_interval=0.01,
        clock=lambda: next(ticks),
    )

    assert result is ReadinessResult.READY


def test_zero_timeout_still_returns(tmp_path) -> None:
    result = readiness.wait_for_stable_artifact(tmp_path / "missing", timeout=0, poll_interval=1)

    assert result is ReadinessResult.TIMED_OUT


def test_cancellation_is_observed_during_polling(tmp_path) -> None:
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel, args=("SIGINT",))
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(UserCancelled):
            readiness.wait_for_stable_artifact(
                tmp_path / "user.reg", timeout=30, poll_interval=0.5, token=token
            )
    finally:
        timer.cancel()

    assert time.monotonic() - start < 5
