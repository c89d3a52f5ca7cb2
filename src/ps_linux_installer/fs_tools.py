"""!
@brief Filesystem helpers for the install and cache roots.
@details Every destructive helper checks its target against
:data:`constants.UNSAFE_PATH_PREFIXES` first, and never operates on ``/`` or
the user's home directory itself.
"""
from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path
from typing import Dict, Iterable, Tuple

from . import constants, logging_ext
from .errors import UnsafePathError


def _handle_readonly(function, path: str, exc_info) -> None:  # pragma: no cover - defensive callback
    """!
    @brief Clear read-only attributes before retrying removal.
    """

    if isinstance(exc_info[1], PermissionError):
        os.chmod(path, stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
        function(path)
    else:
        raise exc_info[1]


def _normalise(path: Path) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))


def is_safe_path(path: Path, *, home: Path | None = None) -> bool:
    """!
    @brief Return ``True`` when ``path`` may be created or removed.
    """

    text = _normalise(path)
    home_text = _normalise(home if home is not None else Path.home())
    if text in ("/", home_text):
        return False
    for prefix in constants.UNSAFE_PATH_PREFIXES:
        if text == prefix or text.startswith(prefix + os.sep):
            return False
    return True


def ensure_safe_path(path: Path, *, home: Path | None = None) -> Path:
    """!
    @brief Validate ``path`` and return its absolute form.
    @throws UnsafePathError When the path points at a protected location.
    """

    if not is_safe_path(path, home=home):
        raise UnsafePathError(f"Refusing to use protected path: {path}")
    return Path(_normalise(path))


def remove_paths(paths: Iterable[Path], *, home: Path | None = None) -> None:
    """!
    @brief Delete the supplied paths recursively.
    """

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()

    for raw in paths:
        target = ensure_safe_path(Path(raw), home=home)
        machine_logger.info(
            "filesystem_remove_plan",
            extra={"event": "filesystem_remove_plan", "path": str(target)},
        )
        if not target.exists() and not target.is_symlink():
            human_logger.debug("Skipping %s because it does not exist", target)
            continue

        human_logger.debug("Removing %s", target)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target, onerror=_handle_readonly)
        else:
            try:
                target.unlink()
            except PermissionError:
                os.chmod(target, stat.S_IWRITE | stat.S_IREAD)
                target.unlink()


def recreate_directory(path: Path, *, home: Path | None = None) -> Path:
    """!
    @brief Remove ``path`` if present and create it empty.
    """

    target = ensure_safe_path(path, home=home)
    if target.exists():
        logging_ext.get_human_logger().info("Removing existing %s", target)
        remove_paths([target], home=home)
    target.mkdir(parents=True, exist_ok=True)
    return target


def ensure_directory(path: Path, *, home: Path | None = None) -> Path:
    target = ensure_safe_path(path, home=home)
    target.mkdir(parents=True, exist_ok=True)
    return target


def save_install_paths(install_root: Path, cache_root: Path, *, home: Path | None = None) -> Path:
    """!
    @brief Record the install and cache roots for the launcher and uninstaller.
    @details Writes ``SCR_PATH=`` and ``CACHE_PATH=`` lines to ``~/.psdata.txt``.
    """

    home_dir = home if home is not None else Path.home()
    target = home_dir / constants.PATHS_DATAFILE
    target.write_text(
        f"SCR_PATH={install_root}\nCACHE_PATH={cache_root}\n",
        encoding="utf-8",
    )
    logging_ext.get_human_logger().debug("Saved install paths to %s", target)
    return target


def load_install_paths(*, home: Path | None = None) -> Tuple[Path, Path] | None:
    """!
    @brief Read the roots recorded by :func:`save_install_paths`.
    @returns ``(install_root, cache_root)`` or ``None`` when no record exists.
    @throws ValueError When the record lacks either entry.
    """

    home_dir = home if home is not None else Path.home()
    target = home_dir / constants.PATHS_DATAFILE
    if not target.is_file():
        return None
    values: Dict[str, str] = {}
    for line in target.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep and value.strip():
            values[key.strip()] = value.strip()
    missing = [key for key in ("SCR_PATH", "CACHE_PATH") if key not in values]
    if missing:
        raise ValueError(f"{target} is missing {', '.join(missing)}")
    return Path(values["SCR_PATH"]), Path(values["CACHE_PATH"])


__all__ = [
    "ensure_directory",
    "ensure_safe_path",
    "is_safe_path",
    "load_install_paths",
    "recreate_directory",
    "remove_paths",
    "save_install_paths",
]
