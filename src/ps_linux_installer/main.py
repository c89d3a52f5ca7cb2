"""!
@brief Primary entry point for the Photoshop CC Linux installer CLI.
@details Parses arguments, resolves settings, bootstraps logging, routes
termination signals into a cancellation token, and runs the installation
state machine. Maintenance flags (``--list-runtimes``,
``--list-checkpoints``, ``--reset-checkpoints``, ``--uninstall``) run
without installing.
"""
from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
import time
from typing import Iterable, Optional

from . import (
    checkpoint,
    confirm,
    constants,
    detect,
    logging_ext,
    main_progress,
    orchestrator,
    uninstall,
    version,
)
from .cancellation import CancellationToken, install_signal_handlers
from .config import InstallerSettings, collect_settings
from .errors import InstallerError, UnsafePathError, UserCancelled


def build_arg_parser() -> argparse.ArgumentParser:
    """!
    @brief Create the top-level argument parser.
    """

    parser = argparse.ArgumentParser(
        prog="ps-linux-installer",
        description="Install Adobe Photoshop CC into an isolated Wine prefix.",
        add_help=True,
    )
    metadata = version.build_info()
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"{metadata['version']} ({metadata['build']})",
    )

    parser.add_argument("-d", "--install-dir", metavar="DIR", help="Environment root (default ~/.photoshopCCV19).")
    parser.add_argument("-c", "--cache-dir", metavar="DIR", help="Download cache directory.")
    parser.add_argument("--installer-dir", metavar="DIR", help="Directory containing Set-up.exe.")
    parser.add_argument("--logdir", metavar="DIR", help="Directory for log output (default <root>/logs).")
    parser.add_argument("--config", metavar="JSON", help="Load options from a JSON file.")

    runtimes = parser.add_mutually_exclusive_group()
    runtimes.add_argument("--runtime", metavar="NAME|ID", help="Force a runtime by name or candidate id.")
    runtimes.add_argument("--wine-standard", action="store_true", help="Force the system Wine runtime.")
    runtimes.add_argument("--proton-ge", action="store_true", help="Force the Proton GE runtime.")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--quiet", action="store_true", help="Minimal console output (errors only).")
    verbosity.add_argument("--verbose", action="store_true", help="Echo debug lines to the console.")
    parser.add_argument("--json", action="store_true", help="Mirror structured events to stdout.")

    parser.add_argument("--ready-timeout", metavar="SEC", type=float, help="Override the prefix readiness timeout.")
    parser.add_argument("--poll-interval", metavar="SEC", type=float, help="Readiness poll interval in seconds.")

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--list-runtimes", action="store_true", help="List detected runtimes and exit.")
    actions.add_argument("--list-checkpoints", action="store_true", help="List recorded checkpoints and exit.")
    actions.add_argument("--reset-checkpoints", action="store_true", help="Remove all checkpoints and exit.")
    actions.add_argument(
        "--uninstall",
        action="store_true",
        help="Remove the installation recorded in ~/.psdata.txt and exit.",
    )
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask before uninstalling.")
    return parser


def _bootstrap_logging(settings: InstallerSettings) -> tuple[logging.Logger, logging.Logger]:
    """!
    @brief Initialize human and machine loggers using :mod:`logging_ext` helpers.
    """

    return logging_ext.setup_logging(
        settings.log_dir,
        quiet=settings.quiet,
        verbose=settings.verbose,
        json_to_stdout=settings.json,
    )


def _list_runtimes(settings: InstallerSettings) -> int:
    search_path = detect.build_search_path(
        str(settings.runtime_prefix) if settings.runtime_prefix else None
    )
    candidates = detect.detect_runtimes(search_path=search_path)
    if settings.json:
        print(json.dumps([candidate.to_dict() for candidate in candidates], indent=2))
    elif not candidates:
        print("No runtimes found.")
    else:
        for candidate in candidates:
            print(candidate.describe())
    return constants.EXIT_OK if candidates else constants.EXIT_FAILURE


def _list_checkpoints(settings: InstallerSettings) -> int:
    existing = checkpoint.CheckpointManager(settings.install_root).list()
    if settings.json:
        print(json.dumps([item.to_dict() for item in existing], indent=2))
    elif not existing:
        print("No checkpoints recorded.")
    else:
        for item in existing:
            print(f"{item.name:<28} {item.created_at}")
    return constants.EXIT_OK


def _reset_checkpoints(settings: InstallerSettings) -> int:
    removed = checkpoint.CheckpointManager(settings.install_root).reset_all()
    print(f"Removed {removed} checkpoint(s).")
    return constants.EXIT_OK


def _uninstall(args: argparse.Namespace) -> int:
    if not confirm.request_uninstall_confirmation(force=args.yes):
        print("Uninstall cancelled.")
        return constants.EXIT_OK

    token = CancellationToken()
    restore_signals = install_signal_handlers(token)
    try:
        result = uninstall.uninstall(home=pathlib.Path.home(), token=token)
    except UserCancelled:
        print("Uninstall interrupted.", file=sys.stderr)
        return constants.EXIT_CANCELLED
    except InstallerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return constants.EXIT_FAILURE
    finally:
        restore_signals()
    for path in result.removed:
        print(f"Removed {path}")
    return constants.EXIT_OK


def main(argv: Optional[Iterable[str]] = None) -> int:
    """!
    @brief Entry point for the ``ps-linux-installer`` console script.
    @returns Process exit code integer.
    """

    main_progress.set_main_start_time(time.perf_counter())
    parser = build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        settings = collect_settings(args)
    except UnsafePathError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return constants.EXIT_USAGE

    human_log, machine_log = _bootstrap_logging(settings)
    main_progress.set_quiet(settings.quiet or settings.json)
    human_log.debug("Log directory: %s", settings.log_dir)

    try:
        if args.list_runtimes:
            return _list_runtimes(settings)
        if args.list_checkpoints:
            return _list_checkpoints(settings)
        if args.reset_checkpoints:
            return _reset_checkpoints(settings)
        if args.uninstall:
            return _uninstall(args)

        machine_log.info(
            "startup",
            extra={"event": "startup", "data": settings.to_dict()},
        )
        token = CancellationToken()
        restore_signals = install_signal_handlers(token)
        try:
            installer = orchestrator.InstallationOrchestrator(
                settings,
                token=token,
                home=pathlib.Path.home(),
            )
            summary = installer.run()
        finally:
            restore_signals()
        if settings.quiet and summary.exit_code != constants.EXIT_OK:
            print(summary.render(), file=sys.stderr)
        return summary.exit_code
    finally:
        logging_ext.shutdown_logging()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
