"""!
@brief Resolve installer settings from CLI, config file, environment, defaults.
@details Options are resolved with the following precedence (highest first):
1. CLI arguments explicitly specified
2. JSON config file values (if ``--config`` provided)
3. Environment variables (``PS_INSTALL_ROOT``, ``PS_CACHE_ROOT``,
   ``PS_RUNTIME_PREFIX``, ``WINEARCH``)
4. Built-in defaults
"""

from __future__ import annotations

import argparse
import json
import os
import pathlib
import sys
from dataclasses import dataclass
from typing import Dict, Mapping

from . import constants
from .fs_tools import ensure_safe_path


@dataclass(frozen=True)
class InstallerSettings:
    """!
    @brief Fully resolved, validated settings for one run.
    """

    install_root: pathlib.Path
    cache_root: pathlib.Path
    installer_dir: pathlib.Path
    log_dir: pathlib.Path
    runtime: str | None = None
    runtime_prefix: pathlib.Path | None = None
    arch: str = constants.DEFAULT_ARCH
    quiet: bool = False
    verbose: bool = False
    json: bool = False
    ready_timeout: float | None = None
    poll_interval: float = constants.DEFAULT_POLL_INTERVAL

    @property
    def prefix(self) -> pathlib.Path:
        return self.install_root / "prefix"

    @property
    def session_temp_dir(self) -> pathlib.Path:
        return self.install_root / constants.SESSION_TEMP_DIRNAME

    def to_dict(self) -> Dict[str, object]:
        return {
            "install_root": str(self.install_root),
            "cache_root": str(self.cache_root),
            "installer_dir": str(self.installer_dir),
            "log_dir": str(self.log_dir),
            "prefix": str(self.prefix),
            "runtime": self.runtime,
            "runtime_prefix": str(self.runtime_prefix) if self.runtime_prefix else None,
            "arch": self.arch,
            "quiet": self.quiet,
            "verbose": self.verbose,
            "ready_timeout": self.ready_timeout,
            "poll_interval": self.poll_interval,
        }


def load_config_file(config_path: str | None) -> dict[str, object]:
    """!
    @brief Load and parse a JSON configuration file.
    @param config_path Path to the JSON config file, or None to skip.
    @returns Dictionary of configuration options, empty if no file specified.
    @raises SystemExit if the file cannot be read or parsed.
    """
    if not config_path:
        return {}

    path = pathlib.Path(config_path).expanduser().resolve()
    if not path.exists():
        print(f"Error: Configuration file not found: {path}", file=sys.stderr)
        raise SystemExit(constants.EXIT_USAGE)

    try:
        with open(path, encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            print(
                f"Error: Configuration file must contain a JSON object: {path}",
                file=sys.stderr,
            )
            raise SystemExit(constants.EXIT_USAGE)
        return config
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in configuration file: {path}\n{e}", file=sys.stderr)
        raise SystemExit(constants.EXIT_USAGE) from e
    except OSError as e:
        print(f"Error: Cannot read configuration file: {path}\n{e}", file=sys.stderr)
        raise SystemExit(constants.EXIT_USAGE) from e


def _forced_runtime(args: argparse.Namespace) -> str | None:
    if getattr(args, "runtime", None):
        return str(args.runtime)
    if getattr(args, "proton_ge", False):
        return constants.PROTON_GE_BINARY
    if getattr(args, "wine_standard", False):
        return constants.WINE_BINARY
    return None


def collect_settings(
    args: argparse.Namespace,
    *,
    environ: Mapping[str, str] | None = None,
    home: pathlib.Path | None = None,
) -> InstallerSettings:
    """!
    @brief Translate parsed CLI arguments into :class:`InstallerSettings`.
    @param args Parsed command-line arguments.
    @param environ Environment mapping; defaults to :data:`os.environ`.
    @param home Home directory used for defaults and path safety checks.
    @returns Validated settings.
    @throws UnsafePathError When the install or cache root is protected.
    """

    config = load_config_file(getattr(args, "config", None))
    env = os.environ if environ is None else environ
    home_dir = home if home is not None else pathlib.Path.home()

    def _get(
        attr: str,
        default: object = None,
        config_key: str | None = None,
        env_key: str | None = None,
        is_bool: bool = False,
    ) -> object:
        """Get option value with CLI > config > env > default precedence."""
        cli_val = getattr(args, attr, None)
        cfg_key = config_key or attr.replace("_", "-")

        if is_bool:
            if cli_val:
                return True
            if cfg_key in config:
                return bool(config[cfg_key])
            return bool(default) if default else False

        if cli_val is not None:
            return cli_val
        if cfg_key in config:
            return config[cfg_key]
        if env_key and env.get(env_key):
            return env[env_key]
        return default

    def _path(value: object) -> pathlib.Path:
        return pathlib.Path(str(value)).expanduser()

    install_root = _path(
        _get("install_dir", home_dir / constants.DEFAULT_INSTALL_DIRNAME, env_key=constants.ENV_INSTALL_ROOT)
    )
    cache_root = _path(
        _get("cache_dir", home_dir.joinpath(*constants.DEFAULT_CACHE_SUBPATH), env_key=constants.ENV_CACHE_ROOT)
    )
    install_root = ensure_safe_path(install_root, home=home_dir)
    cache_root = ensure_safe_path(cache_root, home=home_dir)

    installer_dir = _path(_get("installer_dir", pathlib.Path.cwd() / constants.DEFAULT_INSTALLER_DIRNAME))
    log_dir = _path(_get("logdir", install_root / "logs"))

    runtime = _forced_runtime(args) or config.get("runtime")
    runtime_prefix_value = _get("runtime_prefix", None, env_key=constants.ENV_RUNTIME_PREFIX)
    arch = str(_get("arch", constants.DEFAULT_ARCH, env_key=constants.ENV_ARCH))

    ready_timeout = _get("ready_timeout", None)
    poll_interval = _get("poll_interval", constants.DEFAULT_POLL_INTERVAL)

    return InstallerSettings(
        install_root=install_root,
        cache_root=cache_root,
        installer_dir=pathlib.Path(os.path.abspath(installer_dir)),
        log_dir=log_dir,
        runtime=str(runtime) if runtime else None,
        runtime_prefix=_path(runtime_prefix_value) if runtime_prefix_value else None,
        arch=arch,
        quiet=bool(_get("quiet", False, is_bool=True)),
        verbose=bool(_get("verbose", False, is_bool=True)),
        json=bool(_get("json", False, is_bool=True)),
        ready_timeout=float(ready_timeout) if ready_timeout is not None else None,
        poll_interval=float(poll_interval),
    )


__all__ = ["InstallerSettings", "collect_settings", "load_config_file"]
