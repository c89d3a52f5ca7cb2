"""!
@brief Structured logging helpers for the installer.
@details Implements a dual-stream pipeline: a human channel rendered as
``[timestamp] [LEVEL] [CATEGORY] message`` lines split across general,
warning-only, error-only, and debug-only files, and a machine channel that
writes JSONL telemetry. Raw child-process output goes to a third, unfiltered
process log. All files are written on every run regardless of the console
verbosity chosen with ``--quiet`` or ``--verbose``.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import sys
import uuid
from dataclasses import dataclass
from logging import handlers
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

from . import version

HUMAN_LOGGER_NAME = "ps_linux_installer.human"
"""!
@brief Logger name for human-readable output; categories are child loggers.
"""

MACHINE_LOGGER_NAME = "ps_linux_installer.machine"
"""!
@brief Logger name for JSONL telemetry output.
"""

PROCESS_LOGGER_NAME = "ps_linux_installer.process"
"""!
@brief Logger name for the raw, unfiltered child-process transcript.
"""

DEFAULT_CATEGORY = "main"

_MAX_BYTES = 5 * 1_048_576
_BACKUP_COUNT = 5

_STANDARD_RECORD_KEYS: Dict[str, None] = {
    "name": None,
    "msg": None,
    "args": None,
    "levelname": None,
    "levelno": None,
    "pathname": None,
    "filename": None,
    "module": None,
    "exc_info": None,
    "exc_text": None,
    "stack_info": None,
    "lineno": None,
    "funcName": None,
    "created": None,
    "msecs": None,
    "relativeCreated": None,
    "thread": None,
    "threadName": None,
    "processName": None,
    "process": None,
    "taskName": None,
    "message": None,
    "asctime": None,
    "channel": None,
    "category": None,
}


@dataclass(frozen=True)
class LogPaths:
    """!
    @brief Locations of every log file produced for one run.
    """

    main: Path
    warning: Path
    error: Path
    debug: Path
    process: Path
    events: Path

    def as_dict(self) -> Dict[str, str]:
        return {
            "main": str(self.main),
            "warning": str(self.warning),
            "error": str(self.error),
            "debug": str(self.debug),
            "process": str(self.process),
            "events": str(self.events),
        }


_CURRENT_LOG_DIRECTORY: Path | None = None
_CURRENT_LOG_PATHS: LogPaths | None = None
_RUN_METADATA: Dict[str, object] | None = None


def _iso_timestamp(created: float) -> str:
    moment = _dt.datetime.fromtimestamp(created, tz=_dt.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _ChannelFilter(logging.Filter):
    """!
    @brief Inject a fixed ``channel`` attribute on log records.
    """

    def __init__(self, channel: str) -> None:
        super().__init__()
        self._channel = channel

    def filter(self, record: logging.LogRecord) -> bool:
        record.channel = self._channel
        return True


class _CategoryFilter(logging.Filter):
    """!
    @brief Derive the ``category`` attribute from the emitting logger name.
    @details Attached to handlers rather than loggers so records propagated
    from ``human.<category>`` children are annotated too. An explicit
    ``extra={"category": ...}`` wins over the logger name.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "category", None):
            return True
        prefix = HUMAN_LOGGER_NAME + "."
        if record.name.startswith(prefix):
            record.category = record.name[len(prefix):]
        else:
            record.category = DEFAULT_CATEGORY
        return True


class _LevelRangeFilter(logging.Filter):
    """!
    @brief Accept records whose level lies within ``[low, high]``.
    """

    def __init__(self, low: int, high: int) -> None:
        super().__init__()
        self._low = low
        self._high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self._low <= record.levelno <= self._high


class _LineFormatter(logging.Formatter):
    """!
    @brief Render ``[ISO-8601] [LEVEL] [CATEGORY] message`` lines.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        line = "[{}] [{}] [{}] {}".format(
            _iso_timestamp(record.created),
            record.levelname,
            str(getattr(record, "category", DEFAULT_CATEGORY)).upper(),
            record.getMessage(),
        )
        if record.exc_info:
            line = line + "\n" + self.formatException(record.exc_info)
        return line


class _ConsoleFormatter(logging.Formatter):
    """!
    @brief Console rendering: bare message for INFO, level prefix otherwise.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        message = record.getMessage()
        if record.levelno == logging.INFO:
            return message
        return f"{record.levelname}: {message}"


class _JsonLineFormatter(logging.Formatter):
    """!
    @brief Format ``LogRecord`` instances as single-line JSON objects.
    @details Values that are not JSON serialisable are coerced to their
    ``repr``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        payload: Dict[str, object] = {
            "timestamp": _iso_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", "machine"),
        }

        payload.update(_extract_extras(record))
        try:
            return json.dumps(payload, ensure_ascii=False)
        except TypeError:
            sanitized = {key: _coerce_json(value) for key, value in payload.items()}
            return json.dumps(sanitized, ensure_ascii=False)


def _extract_extras(record: logging.LogRecord) -> Dict[str, object]:
    """!
    @brief Collect non-standard attributes from a log record.
    """

    extras: Dict[str, object] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_RECORD_KEYS:
            continue
        extras[key] = value
    return extras


def _coerce_json(value: object) -> object:
    try:
        json.dumps(value)
    except TypeError:
        return repr(value)
    return value


def _file_handler(path: Path) -> logging.Handler:
    return handlers.RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )


def _configure_logger(
    logger: logging.Logger,
    handlers_to_add: Iterable[Tuple[logging.Handler, logging.Formatter]],
) -> None:
    """!
    @brief Reset a logger and attach the supplied handler/formatter pairs.
    """

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for flt in list(logger.filters):
        logger.removeFilter(flt)
    for handler, formatter in handlers_to_add:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False


def build_log_paths(root_dir: Path) -> LogPaths:
    """!
    @brief Compute the log file locations beneath ``root_dir``.
    """

    return LogPaths(
        main=root_dir / "install.log",
        warning=root_dir / "warnings.log",
        error=root_dir / "errors.log",
        debug=root_dir / "debug.log",
        process=root_dir / "process.log",
        events=root_dir / "events.jsonl",
    )


def setup_logging(
    root_dir: Path,
    *,
    quiet: bool = False,
    verbose: bool = False,
    json_to_stdout: bool = False,
    console: bool = True,
) -> Tuple[logging.Logger, logging.Logger]:
    """!
    @brief Set up the human, machine, and process loggers.
    @details The human logger always runs at ``DEBUG`` so the debug-only file
    is complete; only the console handler honours ``quiet``/``verbose``.
    @param root_dir Directory receiving every log file; created when missing.
    @param quiet Restrict console echo to errors.
    @param verbose Echo debug lines to the console as well.
    @param json_to_stdout Mirror machine events to stdout.
    @param console Attach a console handler at all.
    @returns Tuple of ``(human_logger, machine_logger)``.
    """

    global _CURRENT_LOG_DIRECTORY, _CURRENT_LOG_PATHS

    root_dir.mkdir(parents=True, exist_ok=True)
    _CURRENT_LOG_DIRECTORY = root_dir
    paths = build_log_paths(root_dir)
    _CURRENT_LOG_PATHS = paths

    human_logger = logging.getLogger(HUMAN_LOGGER_NAME)
    machine_logger = logging.getLogger(MACHINE_LOGGER_NAME)
    process_logger = logging.getLogger(PROCESS_LOGGER_NAME)

    human_logger.setLevel(logging.DEBUG)
    machine_logger.setLevel(logging.DEBUG)
    process_logger.setLevel(logging.DEBUG)

    line_formatter = _LineFormatter()
    category_filter = _CategoryFilter()

    human_handlers: List[Tuple[logging.Handler, logging.Formatter]] = []
    level_routes = (
        (paths.main, logging.DEBUG, logging.CRITICAL),
        (paths.warning, logging.WARNING, logging.WARNING),
        (paths.error, logging.ERROR, logging.CRITICAL),
        (paths.debug, logging.DEBUG, logging.DEBUG),
    )
    for path, low, high in level_routes:
        handler = _file_handler(path)
        handler.addFilter(category_filter)
        handler.addFilter(_LevelRangeFilter(low, high))
        human_handlers.append((handler, line_formatter))

    if console:
        console_handler = logging.StreamHandler(stream=sys.stderr)
        if quiet:
            console_handler.setLevel(logging.ERROR)
        elif verbose:
            console_handler.setLevel(logging.DEBUG)
        else:
            console_handler.setLevel(logging.INFO)
        console_handler.addFilter(category_filter)
        human_handlers.append((console_handler, _ConsoleFormatter()))

    machine_handlers: List[Tuple[logging.Handler, logging.Formatter]] = [
        (_file_handler(paths.events), _JsonLineFormatter())
    ]
    if json_to_stdout:
        machine_handlers.append((logging.StreamHandler(stream=sys.stdout), _JsonLineFormatter()))

    _configure_logger(human_logger, human_handlers)
    _configure_logger(machine_logger, machine_handlers)
    _configure_logger(
        process_logger,
        [(_file_handler(paths.process), logging.Formatter("%(message)s"))],
    )

    human_logger.addFilter(_ChannelFilter("human"))
    machine_logger.addFilter(_ChannelFilter("machine"))

    _emit_run_metadata(human_logger, machine_logger)

    return human_logger, machine_logger


def shutdown_logging() -> None:
    """!
    @brief Flush and close every handler attached by :func:`setup_logging`.
    """

    for name in (HUMAN_LOGGER_NAME, MACHINE_LOGGER_NAME, PROCESS_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            try:
                handler.flush()
            finally:
                logger.removeHandler(handler)
                handler.close()
        for flt in list(logger.filters):
            logger.removeFilter(flt)


def flush_logging() -> None:
    for name in (HUMAN_LOGGER_NAME, MACHINE_LOGGER_NAME, PROCESS_LOGGER_NAME):
        for handler in logging.getLogger(name).handlers:
            handler.flush()


def get_human_logger(category: str | None = None) -> logging.Logger:
    """!
    @brief Retrieve the human-readable logger, optionally for a category.
    @details Category loggers are children of the human logger and inherit its
    handlers through propagation.
    """

    if category:
        return logging.getLogger(f"{HUMAN_LOGGER_NAME}.{category}")
    return logging.getLogger(HUMAN_LOGGER_NAME)


def get_machine_logger() -> logging.Logger:
    """!
    @brief Retrieve the configured machine/JSON logger.
    """

    return logging.getLogger(MACHINE_LOGGER_NAME)


def get_process_logger() -> logging.Logger:
    """!
    @brief Retrieve the raw child-process transcript logger.
    """

    return logging.getLogger(PROCESS_LOGGER_NAME)


def get_log_directory() -> Path | None:
    return _CURRENT_LOG_DIRECTORY


def get_log_paths() -> LogPaths | None:
    return _CURRENT_LOG_PATHS


def get_run_metadata() -> Mapping[str, object] | None:
    """!
    @brief Return the most recent run metadata payload.
    @details The structure contains ``run_id`` (UUID4 hex), ``timestamp`` in
    ISO-8601 UTC form, and version/build identifiers.
    """

    return dict(_RUN_METADATA) if _RUN_METADATA is not None else None


def _emit_run_metadata(human_logger: logging.Logger, machine_logger: logging.Logger) -> None:
    """!
    @brief Emit startup metadata to the configured loggers.
    """

    global _RUN_METADATA

    moment = _dt.datetime.now(tz=_dt.timezone.utc)
    _RUN_METADATA = {
        "run_id": uuid.uuid4().hex,
        "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": version.__version__,
        "build": version.__build__,
        "python": sys.version.split()[0],
        "logdir": str(_CURRENT_LOG_DIRECTORY) if _CURRENT_LOG_DIRECTORY else None,
    }

    human_logger.debug(
        "Photoshop CC Linux installer %s (%s) starting, run %s",
        version.__version__,
        version.__build__,
        _RUN_METADATA["run_id"],
    )
    if _CURRENT_LOG_DIRECTORY is not None:
        human_logger.debug("Logs directory: %s", _CURRENT_LOG_DIRECTORY)

    machine_logger.info("run_start", extra={"event": "run_start", "run": dict(_RUN_METADATA)})


__all__ = [
    "DEFAULT_CATEGORY",
    "HUMAN_LOGGER_NAME",
    "LogPaths",
    "MACHINE_LOGGER_NAME",
    "PROCESS_LOGGER_NAME",
    "build_log_paths",
    "flush_logging",
    "get_human_logger",
    "get_log_directory",
    "get_log_paths",
    "get_machine_logger",
    "get_process_logger",
    "get_run_metadata",
    "setup_logging",
    "shutdown_logging",
]
