"""!
@brief Idempotent registry tuning and post-install tweaks for the prefix.
@details Entries are written with ``wine reg add`` after a ``wine reg query``
shows the value differs, so re-applying the same set is a no-op. Each write is
independent; failures are collected and returned instead of raised so the
run summary can list them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Sequence

from . import constants, exec_utils, fs_tools, logging_ext
from .cancellation import CancellationToken
from .errors import ConfigurationWriteFailure
from .version_detect import ProductBucket, install_path, prefs_path

Runner = Callable[..., exec_utils.CommandResult]

REG_SZ = "REG_SZ"
REG_DWORD = "REG_DWORD"


@dataclass(frozen=True)
class ConfigEntry:
    """!
    @brief One registry value to enforce.
    @details ``key`` is the full registry key path and ``name`` the value name.
    """

    key: str
    name: str
    value: str | int
    value_type: str = REG_SZ
    required: bool = False

    @property
    def label(self) -> str:
        return f"{self.key}\\{self.name}"

    def matches(self, current: str | None) -> bool:
        if current is None:
            return False
        if self.value_type == REG_DWORD:
            try:
                return int(current, 0) == int(self.value)
            except ValueError:
                return False
        return current == str(self.value)


def default_config_entries() -> List[ConfigEntry]:
    """!
    @brief Graphics, DPI/font, IE-engine, and DLL override tuning.
    """

    entries = [
        ConfigEntry(constants.DIRECT3D_KEY, "csmt", 1, REG_DWORD),
        ConfigEntry(constants.DIRECT3D_KEY, "shader_backend", "glsl"),
        ConfigEntry(constants.DIRECT3D_KEY, "DirectDrawRenderer", "opengl"),
        ConfigEntry(constants.DIRECT3D_KEY, "StrictDrawOrdering", "disabled"),
        ConfigEntry(constants.DESKTOP_KEY, "LogPixels", 96, REG_DWORD),
        ConfigEntry(constants.WINE_FONTS_KEY, "Smoothing", 2, REG_DWORD),
    ]
    entries.extend(
        ConfigEntry(constants.DLL_OVERRIDES_KEY, library, constants.NATIVE_THEN_BUILTIN, required=True)
        for library in constants.DLL_OVERRIDE_LIBRARIES
    )
    entries.extend(
        [
            ConfigEntry(constants.IE_MAIN_KEY, "DisableScriptDebugger", "yes"),
            ConfigEntry(constants.IE_MAIN_KEY, "DisableFirstRunCustomize", "1"),
        ]
    )
    return entries


def gpu_config_entries() -> List[ConfigEntry]:
    return [
        ConfigEntry(constants.PHOTOSHOP_SETTINGS_KEY, name, 0, REG_DWORD)
        for name in ("GPUAcceleration", "useOpenCL", "useGraphicsProcessor")
    ]


def _parse_query(output_lines: Sequence[str], name: str) -> str | None:
    for line in output_lines:
        parts = line.split(None, 2)
        if len(parts) >= 2 and parts[0] == name and parts[1].startswith("REG_"):
            return parts[2].strip() if len(parts) == 3 else ""
    return None


class ConfigurationApplier:
    """!
    @brief Apply :class:`ConfigEntry` lists through ``wine reg``.
    """

    def __init__(
        self,
        wine: str,
        *,
        env_overrides: Mapping[str, str] | None = None,
        runner: Runner | None = None,
        token: CancellationToken | None = None,
        timeout: int = 60,
    ) -> None:
        self._wine = wine
        self._env = dict(env_overrides or {})
        self._runner = runner or exec_utils.run_command
        self._token = token
        self._timeout = timeout
        self._human = logging_ext.get_human_logger("config")
        self._machine = logging_ext.get_machine_logger()

    def _query(self, entry: ConfigEntry) -> str | None:
        result = self._runner(
            [self._wine, "reg", "query", entry.key, "/v", entry.name],
            event="registry_query",
            timeout=self._timeout,
            token=self._token,
            env_overrides=self._env,
            category="config",
        )
        if result.returncode != 0 or result.timed_out:
            return None
        return _parse_query(result.lines, entry.name)

    def _write(self, entry: ConfigEntry) -> None:
        result = self._runner(
            [
                self._wine,
                "reg",
                "add",
                entry.key,
                "/v",
                entry.name,
                "/t",
                entry.value_type,
                "/d",
                str(entry.value),
                "/f",
            ],
            event="registry_write",
            timeout=self._timeout,
            token=self._token,
            env_overrides=self._env,
            category="config",
        )
        if result.timed_out:
            raise ConfigurationWriteFailure(entry.label, "timed out")
        if result.returncode != 0:
            raise ConfigurationWriteFailure(entry.label, f"exit code {result.returncode}")

    def apply_entry(self, entry: ConfigEntry) -> bool:
        """!
        @brief Enforce one entry.
        @returns ``True`` when a write happened, ``False`` when already set.
        @throws ConfigurationWriteFailure When the write fails.
        """

        if entry.matches(self._query(entry)):
            self._human.debug("%s already set", entry.label)
            return False
        self._write(entry)
        self._human.debug("Set %s = %s", entry.label, entry.value)
        return True

    def apply(self, entries: Sequence[ConfigEntry]) -> List[ConfigEntry]:
        """!
        @brief Apply every entry and return the ones that failed.
        @details :class:`UserCancelled` propagates; every other failure is
        logged and collected.
        """

        failed: List[ConfigEntry] = []
        written = 0
        for entry in entries:
            try:
                if self.apply_entry(entry):
                    written += 1
            except ConfigurationWriteFailure as exc:
                failed.append(entry)
                if entry.required:
                    self._human.error("%s", exc)
                else:
                    self._human.warning("%s", exc)

        self._machine.info(
            "config_apply_result",
            extra={
                "event": "config_apply_result",
                "total": len(entries),
                "written": written,
                "failed": [entry.label for entry in failed],
            },
        )
        return failed


def remove_problematic_plugins(install_dir: Path) -> List[str]:
    """!
    @brief Delete plugins known to crash under Wine.
    @returns Relative paths that could not be removed.
    """

    human_logger = logging_ext.get_human_logger("config")
    failures: List[str] = []
    for relative in constants.PROBLEMATIC_PLUGINS:
        target = install_dir / relative
        if not target.exists():
            continue
        try:
            fs_tools.remove_paths([target])
        except OSError as exc:
            human_logger.warning("Could not remove plugin %s: %s", target, exc)
            failures.append(relative)
        else:
            human_logger.info("Removed plugin %s", target.name)
    return failures


def write_gpu_prefs(prefs_dir: Path, bucket: ProductBucket) -> Path:
    """!
    @brief Write a preferences file that turns off GPU and OpenCL use.
    """

    prefs_dir.mkdir(parents=True, exist_ok=True)
    target = prefs_dir / f"Adobe Photoshop {bucket.label} Prefs.psp"
    target.write_text(constants.GPU_PREFS_CONTENT, encoding="utf-8")
    return target


def apply_post_install(
    prefix: Path,
    bucket: ProductBucket,
    applier: ConfigurationApplier,
    *,
    user: str | None = None,
) -> List[str]:
    """!
    @brief Apply the post-install tweaks for ``bucket``.
    @details Skips the filesystem tweaks when the install directory does not
    exist; the registry GPU switches are always applied.
    @returns Labels of the tweaks that failed.
    """

    human_logger = logging_ext.get_human_logger("config")
    failures: List[str] = []
    target = install_path(prefix, bucket)
    if target.is_dir():
        failures.extend(f"plugin {item}" for item in remove_problematic_plugins(target))
        try:
            written = write_gpu_prefs(prefs_path(prefix, bucket, user), bucket)
            human_logger.info("Wrote GPU preferences to %s", written)
        except OSError as exc:
            human_logger.warning("Could not write GPU preferences: %s", exc)
            failures.append("gpu preferences")
    else:
        human_logger.debug("Install directory %s not found; skipping file tweaks", target)

    failures.extend(entry.label for entry in applier.apply(gpu_config_entries()))
    return failures


__all__ = [
    "ConfigEntry",
    "ConfigurationApplier",
    "REG_DWORD",
    "REG_SZ",
    "apply_post_install",
    "default_config_entries",
    "gpu_config_entries",
    "remove_problematic_plugins",
    "write_gpu_prefs",
]
