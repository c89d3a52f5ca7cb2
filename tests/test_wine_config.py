"""!
@brief Tests for registry tuning and post-install tweaks in :mod:`ps_linux_installer.wine_config`.
"""
from __future__ import annotations

import pathlib
import sys
from typing import Dict, List, Tuple

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ps_linux_installer import constants, wine_config  # noqa: E402
from ps_linux_installer.exec_utils import CommandResult  # noqa: E402
from ps_linux_installer.version_detect import ProductBucket, install_path, prefs_path  # noqa: E402
from ps_linux_installer.wine_config import ConfigEntry  # noqa: E402


class _FakeRegistry:
    """!
    @brief In-memory stand-in for ``wine reg`` invocations.
    """

    def __init__(self, failing: Tuple[str, ...] = ()) -> None:
        self.values: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self.failing = failing
        self.writes: List[Tuple[str, str]] = []

    def __call__(self, command, **kwargs) -> CommandResult:
        _wine, _reg, action, key, _v, name, *rest = command
        if action == "query":
            if (key, name) not in self.values:
                return CommandResult(command=command, returncode=1, output="", duration=0.0)
            value_type, data = self.values[(key, name)]
            lines = [key, f"    {name}    {value_type}    {data}", ""]
            return CommandResult(command=command, returncode=0, output="\n".join(lines), duration=0.0, lines=lines)
        if name in self.failing:
            return CommandResult(command=command, returncode=1, output="", duration=0.0)
        value_type, data = rest[1], rest[3]
        if value_type == "REG_DWORD":
            data = hex(int(data))
        self.values[(key, name)] = (value_type, data)
        self.writes.append((key, name))
        return CommandResult(command=command, returncode=0, output="", duration=0.0)


def test_default_entries_cover_graphics_fonts_and_overrides() -> None:
    entries = wine_config.default_config_entries()
    labels = {entry.label for entry in entries}

    assert constants.DIRECT3D_KEY + "\\csmt" in labels
    assert constants.DESKTOP_KEY + "\\LogPixels" in labels
    assert constants.WINE_FONTS_KEY + "\\Smoothing" in labels
    overrides = [entry for entry in entries if entry.key == constants.DLL_OVERRIDES_KEY]
    assert {entry.name for entry in overrides} == set(constants.DLL_OVERRIDE_LIBRARIES)
    assert all(entry.value == "native,builtin" for entry in overrides)


def test_apply_is_idempotent() -> None:
    registry = _FakeRegistry()
    applier = wine_config.ConfigurationApplier("wine", runner=registry)
    entries = wine_config.default_config_entries()

    assert applier.apply(entries) == []
    first_writes = len(registry.writes)
    assert first_writes == len(entries)

    assert applier.apply(entries) == []
    assert len(registry.writes) == first_writes


def test_failures_are_collected_not_raised() -> None:
    registry = _FakeRegistry(failing=("csmt", "mshtml"))
    applier = wine_config.ConfigurationApplier("wine", runner=registry)

    failed = applier.apply(wine_config.default_config_entries())

    assert sorted(entry.name for entry in failed) == ["csmt", "mshtml"]
    assert (constants.DIRECT3D_KEY, "shader_backend") in registry.writes


def test_dword_entries_match_hex_query_output() -> None:
    entry = ConfigEntry(constants.DESKTOP_KEY, "LogPixels", 96, wine_config.REG_DWORD)

    assert entry.matches("0x60")
    assert not entry.matches("0x78")
    assert not entry.matches(None)
    assert ConfigEntry("k", "n", "glsl").matches("glsl")


def test_post_install_removes_plugins_and_writes_prefs(tmp_path) -> None:
    prefix = tmp_path / "prefix"
    target = install_path(prefix, ProductBucket.MID)
    plugin = target / constants.PROBLEMATIC_PLUGINS[0]
    panel = target / "Required/CEP/extensions/com.adobe.HomePagePanel"
    plugin.parent.mkdir(parents=True)
    plugin.write_bytes(b"MZ")
    (panel / "index").mkdir(parents=True)
    registry = _FakeRegistry()
    applier = wine_config.ConfigurationApplier("wine", runner=registry)

    failures = wine_config.apply_post_install(prefix, ProductBucket.MID, applier, user="alex")

    assert failures == []
    assert not plugin.exists()
    assert not panel.exists()
    prefs = prefs_path(prefix, ProductBucket.MID, user="alex") / "Adobe Photoshop 2021 Prefs.psp"
    assert prefs.read_text(encoding="utf-8") == constants.GPU_PREFS_CONTENT
    assert (constants.PHOTOSHOP_SETTINGS_KEY, "GPUAcceleration") in registry.writes


def test_post_install_without_install_dir_only_touches_registry(tmp_path) -> None:
    registry = _FakeRegistry(failing=("useOpenCL",))
    applier = wine_config.ConfigurationApplier("wine", runner=registry)

    failures = wine_config.apply_post_install(tmp_path / "prefix", ProductBucket.LEGACY, applier, user="alex")

    assert failures == [constants.PHOTOSHOP_SETTINGS_KEY + "\\useOpenCL"]
    assert not (tmp_path / "prefix").exists()
