"""!
@brief Tests for :mod:`ps_linux_installer.checkpoint`.
"""
from __future__ import annotations

import json
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import checkpoint, constants, logging_ext  # noqa: E402

MILESTONES = ["prefix_initialized", "windows_version", "core_fonts", "photoshop_setup"]


def _manager(tmp_path: pathlib.Path) -> checkpoint.CheckpointManager:
    return checkpoint.CheckpointManager(tmp_path, MILESTONES)


def test_create_writes_timestamp_file(tmp_path) -> None:
    manager = _manager(tmp_path)

    created = manager.create("prefix_initialized")

    marker = tmp_path / constants.CHECKPOINT_DIRNAME / "prefix_initialized.checkpoint"
    assert marker.is_file()
    assert marker.read_text(encoding="utf-8").strip() == created.created_at
    assert manager.exists("prefix_initialized")
    assert not manager.exists("windows_version")


def test_create_is_write_once(tmp_path) -> None:
    manager = _manager(tmp_path)
    first = manager.create("prefix_initialized")
    marker = manager.path_for("prefix_initialized")
    marker.write_text("2020-01-01T00:00:00+00:00\n", encoding="utf-8")

    second = manager.create("prefix_initialized")

    assert second.created_at == "2020-01-01T00:00:00+00:00"
    assert marker.read_text(encoding="utf-8") == "2020-01-01T00:00:00+00:00\n"
    assert first.name == second.name
    assert len(list(manager.directory.iterdir())) == 1


def test_create_enforces_milestone_order(tmp_path) -> None:
    manager = _manager(tmp_path)
    manager.create("prefix_initialized")

    with pytest.raises(ValueError):
        manager.create("core_fonts")
    assert not manager.exists("core_fonts")

    manager.create("windows_version")
    manager.create("core_fonts")
    assert [item.name for item in manager.list()] == MILESTONES[:3]


def test_create_rejects_unknown_milestone(tmp_path) -> None:
    with pytest.raises(ValueError):
        _manager(tmp_path).create("dark_mode")


def test_list_and_last_completed(tmp_path) -> None:
    manager = _manager(tmp_path)
    assert manager.list() == []
    assert manager.last_completed() is None

    manager.create("prefix_initialized")
    manager.create("windows_version")

    assert manager.last_completed() == "windows_version"
    unordered = checkpoint.CheckpointManager(tmp_path)
    assert {item.name for item in unordered.list()} == {"prefix_initialized", "windows_version"}


def test_reset_all_removes_everything(tmp_path) -> None:
    manager = _manager(tmp_path)
    for name in MILESTONES[:3]:
        manager.create(name)

    removed = manager.reset_all()

    assert removed == 3
    assert manager.list() == []
    assert not manager.directory.exists()
    assert manager.reset_all() == 0


def test_create_emits_machine_event_with_logging_configured(tmp_path) -> None:
    logging_ext.setup_logging(tmp_path / "logs", console=False)
    try:
        manager = _manager(tmp_path / "root")
        created = manager.create("prefix_initialized")
        manager.create("windows_version")
        logging_ext.flush_logging()
        events_path = logging_ext.get_log_paths().events
        records = [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines()]
    finally:
        logging_ext.shutdown_logging()

    created_events = [record for record in records if record.get("event") == "checkpoint_created"]
    assert [record["checkpoint"] for record in created_events] == ["prefix_initialized", "windows_version"]
    assert created_events[0]["created_at"] == created.created_at
