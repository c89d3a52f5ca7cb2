"""!
@brief Tests for the logging pipeline in :mod:`ps_linux_installer.logging_ext`.
"""
from __future__ import annotations

import json
import pathlib
import re
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import logging_ext  # noqa: E402


@pytest.fixture
def log_dir(tmp_path, capsys):
    # Depends on capsys so handlers bound to the capture streams close first.
    root = tmp_path / "logs"
    yield root
    logging_ext.shutdown_logging()


def _lines(path: pathlib.Path) -> list[str]:
    logging_ext.flush_logging()
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


def test_setup_creates_every_log_file(log_dir) -> None:
    logging_ext.setup_logging(log_dir, console=False)
    paths = logging_ext.get_log_paths()

    assert paths is not None
    assert logging_ext.get_log_directory() == log_dir
    for location in paths.as_dict().values():
        assert pathlib.Path(location).exists()


def test_levels_are_routed_to_dedicated_files(log_dir) -> None:
    human, _machine = logging_ext.setup_logging(log_dir, console=False)
    paths = logging_ext.get_log_paths()

    human.debug("debug detail")
    human.info("informational")
    human.warning("careful now")
    human.error("broken")

    main_lines = _lines(paths.main)
    assert any("informational" in line for line in main_lines)
    assert any("debug detail" in line for line in main_lines)

    warning_lines = _lines(paths.warning)
    assert len(warning_lines) == 1
    assert "careful now" in warning_lines[0]

    error_lines = _lines(paths.error)
    assert len(error_lines) == 1
    assert "broken" in error_lines[0]

    debug_lines = _lines(paths.debug)
    assert any("debug detail" in line for line in debug_lines)
    assert not any("informational" in line for line in debug_lines)


def test_category_loggers_render_uppercase_tag(log_dir) -> None:
    logging_ext.setup_logging(log_dir, console=False)
    paths = logging_ext.get_log_paths()

    logging_ext.get_human_logger("components").info("Installing fonts")
    logging_ext.get_human_logger().info("plain message")

    lines = _lines(paths.main)
    tagged = [line for line in lines if "Installing fonts" in line]
    assert len(tagged) == 1
    assert re.match(r"^\[\d{4}-\d{2}-\d{2}T[^\]]+Z\] \[INFO\] \[COMPONENTS\] Installing fonts$", tagged[0])
    assert any(line.endswith("[INFO] [MAIN] plain message") for line in lines)


def test_machine_channel_writes_jsonl_with_run_metadata(log_dir) -> None:
    _human, machine = logging_ext.setup_logging(log_dir, console=False)
    paths = logging_ext.get_log_paths()

    machine.info("custom", extra={"event": "custom", "value": {"answer": 42}, "opaque": object()})

    records = [json.loads(line) for line in _lines(paths.events)]
    run_start = records[0]
    assert run_start["event"] == "run_start"
    metadata = logging_ext.get_run_metadata()
    assert metadata is not None
    assert run_start["run"]["run_id"] == metadata["run_id"]

    custom = records[-1]
    assert custom["event"] == "custom"
    assert custom["value"] == {"answer": 42}
    assert custom["channel"] == "machine"
    assert custom["opaque"].startswith("<object")


def test_process_logger_writes_raw_messages(log_dir) -> None:
    logging_ext.setup_logging(log_dir, console=False)
    paths = logging_ext.get_log_paths()

    logging_ext.get_process_logger().info("fixme:ole:noise raw line")

    assert _lines(paths.process) == ["fixme:ole:noise raw line"]
    assert not any("fixme:ole" in line for line in _lines(paths.main))


def test_quiet_console_only_shows_errors(log_dir, capsys) -> None:
    human, _machine = logging_ext.setup_logging(log_dir, quiet=True)
    try:
        human.info("hidden info")
        human.warning("hidden warning")
        human.error("visible error")

        err = capsys.readouterr().err
        assert "hidden info" not in err
        assert "hidden warning" not in err
        assert "ERROR: visible error" in err
        assert any("hidden info" in line for line in _lines(logging_ext.get_log_paths().main))
    finally:
        logging_ext.shutdown_logging()


def test_verbose_console_echoes_debug(log_dir, capsys) -> None:
    human, _machine = logging_ext.setup_logging(log_dir, verbose=True)
    try:
        human.debug("fine detail")

        assert "DEBUG: fine detail" in capsys.readouterr().err
    finally:
        logging_ext.shutdown_logging()


def test_json_mirror_goes_to_stdout(log_dir, capsys) -> None:
    _human, machine = logging_ext.setup_logging(log_dir, console=False, json_to_stdout=True)
    try:
        machine.info("probe", extra={"event": "probe"})

        out_lines = [line for line in capsys.readouterr().out.splitlines() if line]
        events = [json.loads(line)["event"] for line in out_lines]
        assert events == ["run_start", "probe"]
    finally:
        logging_ext.shutdown_logging()


def test_shutdown_detaches_handlers(log_dir) -> None:
    logging_ext.setup_logging(log_dir, console=False)
    logging_ext.shutdown_logging()

    assert logging_ext.get_human_logger().handlers == []
    assert logging_ext.get_machine_logger().handlers == []
    assert logging_ext.get_process_logger().handlers == []
