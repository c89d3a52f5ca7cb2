"""!
@brief Tests for :mod:`ps_linux_installer.uninstall` and the confirmation prompt.
"""
from __future__ import annotations

import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import confirm, constants, fs_tools, uninstall  # noqa: E402
from ps_linux_installer.exec_utils import CommandResult  # noqa: E402
from ps_linux_installer.errors import InstallerError, UnsafePathError  # noqa: E402


class _RecordingRunner:
    def __init__(self) -> None:
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((list(command), kwargs))
        return CommandResult(command=list(command), returncode=0, output="", duration=0.0)


@pytest.fixture
def installed(tmp_path):
    home = tmp_path / "home"
    install_root = tmp_path / "photoshop"
    cache_root = home / ".cache" / "photoshop"
    (install_root / "prefix" / "drive_c").mkdir(parents=True)
    (cache_root / "downloads").mkdir(parents=True)
    fs_tools.save_install_paths(install_root, cache_root, home=home)
    return home, install_root, cache_root


def test_uninstall_removes_roots_entries_and_record(installed, monkeypatch) -> None:
    home, install_root, cache_root = installed
    entries = home.joinpath(*constants.DESKTOP_ENTRY_SUBPATH)
    entries.mkdir(parents=True)
    (entries / "photoshop.desktop").write_text("[Desktop Entry]\n", encoding="utf-8")
    (entries / "gimp.desktop").write_text("[Desktop Entry]\n", encoding="utf-8")
    monkeypatch.setattr(uninstall.shutil, "which", lambda name: None)

    result = uninstall.uninstall(home=home, runner=_RecordingRunner())

    assert not install_root.exists()
    assert not cache_root.exists()
    assert not (entries / "photoshop.desktop").exists()
    assert (entries / "gimp.desktop").exists()
    assert not (home / constants.PATHS_DATAFILE).exists()
    assert str(install_root) in result.removed
    assert result.skipped == []


def test_uninstall_stops_wineserver_in_recorded_prefix(installed, monkeypatch) -> None:
    home, install_root, _ = installed
    runner = _RecordingRunner()
    monkeypatch.setattr(uninstall.shutil, "which", lambda name: f"/usr/bin/{name}")

    uninstall.uninstall(home=home, runner=runner)

    assert len(runner.calls) == 1
    command, kwargs = runner.calls[0]
    assert command == ["/usr/bin/wineserver", "-k"]
    assert kwargs["env_overrides"] == {"WINEPREFIX": str(install_root / "prefix")}
    assert kwargs["event"] == "wineserver_kill"


def test_uninstall_reports_missing_roots(installed, monkeypatch) -> None:
    home, install_root, cache_root = installed
    fs_tools.remove_paths([cache_root], home=home)
    monkeypatch.setattr(uninstall.shutil, "which", lambda name: None)

    result = uninstall.uninstall(home=home, runner=_RecordingRunner())

    assert result.skipped == [str(cache_root)]
    assert not install_root.exists()


def test_uninstall_without_record_raises(tmp_path) -> None:
    with pytest.raises(InstallerError) as excinfo:
        uninstall.uninstall(home=tmp_path, runner=_RecordingRunner())

    assert excinfo.value.step == "Uninstall"


def test_uninstall_refuses_protected_recorded_root(tmp_path) -> None:
    (tmp_path / constants.PATHS_DATAFILE).write_text(
        f"SCR_PATH=/etc/photoshop\nCACHE_PATH={tmp_path / 'cache'}\n",
        encoding="utf-8",
    )
    runner = _RecordingRunner()

    with pytest.raises(UnsafePathError):
        uninstall.uninstall(home=tmp_path, runner=runner)
    assert runner.calls == []
    assert (tmp_path / constants.PATHS_DATAFILE).exists()


@pytest.mark.parametrize(
    ("answer", "expected"),
    [("y", True), ("YES", True), ("", False), ("n", False), ("maybe", False)],
)
def test_confirmation_defaults_to_no(answer: str, expected: bool) -> None:
    prompts = []

    def _input(prompt: str) -> str:
        prompts.append(prompt)
        return answer

    assert confirm.request_uninstall_confirmation(force=False, input_func=_input, interactive=True) is expected
    assert prompts == [f"{confirm.CONFIRM_PROMPT} "]


def test_confirmation_skipped_when_forced_or_non_interactive() -> None:
    def _fail(prompt: str) -> str:
        raise AssertionError("prompt should not be shown")

    assert confirm.request_uninstall_confirmation(force=True, input_func=_fail, interactive=True)
    assert confirm.request_uninstall_confirmation(force=False, input_func=_fail, interactive=False)


def test_confirmation_eof_declines() -> None:
    def _eof(prompt: str) -> str:
        raise EOFError

    assert not confirm.request_uninstall_confirmation(force=False, input_func=_eof, interactive=True)
