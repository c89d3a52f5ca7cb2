"""!
@brief Exec utils behaviour tests.
@details Validates environment sanitisation, output capture and filtering,
timeouts, cancellation, and process-group termination for
:mod:`ps_linux_installer.exec_utils`.
"""

from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import exec_utils, logging_ext  # noqa: E402
from ps_linux_installer.cancellation import CancellationToken  # noqa: E402
from ps_linux_installer.errors import UserCancelled  # noqa: E402

_SPAWN_GRANDCHILD = (
    "import subprocess, sys, time\n"
    "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
    "with open(sys.argv[1], 'w') as handle:\n"
    "    handle.write(str(child.pid))\n"
    "time.sleep(60)\n"
)


class _StubLogger:
    """!
    @brief Lightweight logger capturing structured log calls.
    """

    def __init__(self) -> None:
        self.records: List[tuple[str, str, Dict[str, object]]] = []

    def _record(self, level: str, message: str, args: tuple[object, ...], kwargs: Dict[str, object]) -> None:
        text = message % args if args else message
        self.records.append((level, text, dict(kwargs)))

    def debug(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("debug", message, args, kwargs)

    def info(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("info", message, args, kwargs)

    def warning(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("warning", message, args, kwargs)

    def error(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("error", message, args, kwargs)

    def events(self) -> List[str]:
        return [str(kwargs.get("extra", {}).get("event")) for _, _, kwargs in self.records]


@pytest.fixture
def machine_stub(monkeypatch) -> _StubLogger:
    stub = _StubLogger()
    monkeypatch.setattr(exec_utils.logging_ext, "get_machine_logger", lambda: stub)
    return stub


@pytest.fixture
def configured_logs(tmp_path):
    logging_ext.setup_logging(tmp_path / "logs", console=False)
    yield logging_ext.get_log_paths()
    logging_ext.shutdown_logging()


def _wait_for_file(path: Path, timeout: float = 10.0) -> str:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            content = path.read_text(encoding="utf-8").strip()
            if content:
                return content
        time.sleep(0.05)
    raise AssertionError(f"{path} was never written")


def _alive(pid: int) -> bool:
    stat_path = Path(f"/proc/{pid}/stat")
    if stat_path.exists():
        try:
            state = stat_path.read_text(encoding="utf-8").rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state not in ("Z", "X")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def _assert_eventually_dead(pid: int, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _alive(pid):
            return
        time.sleep(0.05)
    raise AssertionError(f"process {pid} survived termination")


def test_sanitize_environment_strips_blocklist_and_overrides() -> None:
    """!
    @brief Ensure sanitisation drops host Wine settings and applies overrides.
    """

    base_env = {"WINEPREFIX": "/home/u/.wine", "WINESERVER": "/opt/wine/wineserver", "LANG": "C"}

    sanitized = exec_utils.sanitize_environment(
        base_env=base_env,
        extra={"WINEPREFIX": "/tmp/prefix"},
    )

    assert "WINESERVER" not in sanitized
    assert sanitized["LANG"] == "C"
    assert sanitized["WINEPREFIX"] == "/tmp/prefix"
    assert base_env["WINEPREFIX"] == "/home/u/.wine"


def test_sanitize_environment_does_not_touch_parent(monkeypatch) -> None:
    monkeypatch.setenv("PS_TEST_MARKER", "parent")

    sanitized = exec_utils.sanitize_environment(extra={"PS_TEST_MARKER": "child"})

    assert sanitized["PS_TEST_MARKER"] == "child"
    assert os.environ["PS_TEST_MARKER"] == "parent"


def test_run_command_captures_combined_output(machine_stub) -> None:
    result = exec_utils.run_command(
        [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        event="echo_check",
        timeout=30,
    )

    assert result.returncode == 0
    assert result.ok
    assert not result.timed_out
    assert sorted(result.lines) == ["err", "out"]
    assert machine_stub.events() == ["echo_check_plan", "echo_check_result"]


def test_run_command_applies_environment_overlay(machine_stub) -> None:
    result = exec_utils.run_command(
        [sys.executable, "-c", "import os; print(os.environ['WINEARCH'])"],
        event="env",
        timeout=30,
        env_overrides={"WINEARCH": "win64"},
    )

    assert result.lines == ["win64"]


def test_run_command_reports_nonzero_exit(machine_stub) -> None:
    result = exec_utils.run_command(
        [sys.executable, "-c", "import sys; sys.exit(3)"],
        event="fail",
        timeout=30,
    )

    assert result.returncode == 3
    assert not result.ok
    assert not result.timed_out


def test_run_command_missing_binary_returns_127(machine_stub, tmp_path) -> None:
    result = exec_utils.run_command([str(tmp_path / "does-not-exist")], event="missing")

    assert result.returncode == 127
    assert result.error
    assert machine_stub.events() == ["missing_plan", "missing_missing"]


def test_run_command_timeout_terminates_process_group(machine_stub, tmp_path) -> None:
    pid_file = tmp_path / "grandchild.pid"
    start = time.monotonic()

    result = exec_utils.run_command(
        [sys.executable, "-c", _SPAWN_GRANDCHILD, str(pid_file)],
        event="slow",
        timeout=2,
    )

    assert result.timed_out
    assert time.monotonic() - start < 15
    assert "slow_timeout" in machine_stub.events()
    _assert_eventually_dead(int(_wait_for_file(pid_file)))


def test_run_command_cancellation_kills_group_and_raises(machine_stub, tmp_path) -> None:
    pid_file = tmp_path / "grandchild.pid"
    token = CancellationToken()

    def _cancel_when_spawned() -> None:
        _wait_for_file(pid_file)
        token.cancel("SIGINT")

    watcher = threading.Thread(target=_cancel_when_spawned, daemon=True)
    watcher.start()

    with pytest.raises(UserCancelled):
        exec_utils.run_command(
            [sys.executable, "-c", _SPAWN_GRANDCHILD, str(pid_file)],
            event="cancel",
            token=token,
        )

    watcher.join(timeout=5)
    assert "cancel_cancelled" in machine_stub.events()
    _assert_eventually_dead(int(pid_file.read_text(encoding="utf-8")))


def test_run_command_refuses_to_start_when_already_cancelled(machine_stub, tmp_path) -> None:
    marker = tmp_path / "ran"
    token = CancellationToken()
    token.cancel()

    with pytest.raises(UserCancelled):
        exec_utils.run_command(
            [sys.executable, "-c", f"open({str(marker)!r}, 'w').close()"],
            event="never",
            token=token,
        )

    assert not marker.exists()


def test_process_log_keeps_noise_main_log_drops_it(configured_logs) -> None:
    script = "print('0024:fixme:ntdll:stub'); print('Installing runtime')"

    exec_utils.run_command(
        [sys.executable, "-c", script],
        event="filtered",
        timeout=30,
        tag="demo#1/1",
    )
    logging_ext.flush_logging()

    process_text = configured_logs.process.read_text(encoding="utf-8")
    main_text = configured_logs.main.read_text(encoding="utf-8")
    assert "0024:fixme:ntdll:stub" in process_text
    assert "[demo#1/1]" in process_text
    assert "Installing runtime" in main_text
    assert "fixme" not in main_text
    assert "[PROCESS]" in main_text

