"""!
@brief Remove a previous installation.
@details Reads the roots recorded in ``~/.psdata.txt`` at the end of a
successful install, stops the prefix's ``wineserver``, and deletes the
install root, the download cache, the launcher entries, and the record
itself. Every removal goes through :func:`fs_tools.remove_paths`, so the
protected-path rules apply to the recorded roots as well.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List

from . import constants, exec_utils, fs_tools, logging_ext
from .cancellation import CancellationToken
from .errors import InstallerError

Runner = Callable[..., exec_utils.CommandResult]


@dataclass
class UninstallResult:
    install_root: Path
    cache_root: Path
    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _stop_wineserver(prefix: Path, runner: Runner, token: CancellationToken | None) -> None:
    human_logger = logging_ext.get_human_logger("uninstall")
    wineserver = shutil.which(constants.WINESERVER_BINARY)
    if wineserver is None or not prefix.is_dir():
        human_logger.debug("Not stopping wineserver (binary or prefix missing)")
        return
    result = runner(
        [wineserver, "-k"],
        event="wineserver_kill",
        timeout=30,
        token=token,
        env_overrides={"WINEPREFIX": str(prefix)},
        category="uninstall",
    )
    if result.returncode != 0:
        human_logger.debug("wineserver -k exited with %s", result.returncode)


def uninstall(
    *,
    home: Path | None = None,
    runner: Runner | None = None,
    token: CancellationToken | None = None,
) -> UninstallResult:
    """!
    @brief Delete everything a previous install left behind.
    @param home Home directory holding ``.psdata.txt`` and launcher entries.
    @param runner Process runner used to stop ``wineserver``.
    @param token Cancellation token for the ``wineserver`` call.
    @returns :class:`UninstallResult` listing removed and missing paths.
    @throws InstallerError When no installation record exists or it is
    malformed.
    @throws UnsafePathError When a recorded root is a protected location.
    """

    home_dir = home if home is not None else Path.home()
    human_logger = logging_ext.get_human_logger("uninstall")
    machine_logger = logging_ext.get_machine_logger()

    try:
        recorded = fs_tools.load_install_paths(home=home_dir)
    except ValueError as exc:
        raise InstallerError(str(exc), step="Uninstall") from exc
    if recorded is None:
        raise InstallerError(
            f"No installation record at {home_dir / constants.PATHS_DATAFILE}",
            step="Uninstall",
        )
    install_root, cache_root = recorded
    for root in (install_root, cache_root):
        fs_tools.ensure_safe_path(root, home=home_dir)

    _stop_wineserver(install_root / "prefix", runner or exec_utils.run_command, token)

    entries_dir = home_dir.joinpath(*constants.DESKTOP_ENTRY_SUBPATH)
    targets = [install_root, cache_root]
    targets.extend(entries_dir / name for name in constants.DESKTOP_ENTRY_NAMES)
    targets.append(home_dir / constants.PATHS_DATAFILE)

    result = UninstallResult(install_root=install_root, cache_root=cache_root)
    for target in targets:
        if target.exists() or target.is_symlink():
            fs_tools.remove_paths([target], home=home_dir)
            result.removed.append(str(target))
            human_logger.info("Removed %s", target)
        elif target in (install_root, cache_root):
            result.skipped.append(str(target))
            human_logger.warning("%s not found", target)

    machine_logger.info(
        "uninstall_result",
        extra={"event": "uninstall_result", "removed": result.removed, "skipped": result.skipped},
    )
    return result


__all__ = ["UninstallResult", "uninstall"]
