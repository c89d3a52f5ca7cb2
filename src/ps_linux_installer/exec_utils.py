"""!
@brief Supervised subprocess execution with sanitised environments.
@details Every external command (Wine, winetricks, registry writes, version
probes) goes through :func:`run_command`. The child runs in its own process
group with an explicit environment overlay; combined stdout/stderr is copied
verbatim to the process log while a pure line filter decides what reaches the
main log. The wait is a polling loop so timeouts and cancellation are observed
promptly, and both terminate the whole process group.
"""

from __future__ import annotations

import datetime as _dt
import os
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from typing import List

from . import constants, logging_ext
from .cancellation import CancellationToken
from .errors import UserCancelled
from .log_filter import DEFAULT_FILTER, OutputFilter

_SANITIZE_BLOCKLIST = {
    "WINEPREFIX",
    "WINEARCH",
    "WINESERVER",
    "WINELOADER",
    "WINEDLLPATH",
}
"""!
@brief Host Wine variables that would point a child at another prefix or build.
@details The isolated prefix is always selected explicitly through the overlay.
"""

_OUTPUT_TAIL_LINES = 40


@dataclass
class CommandResult:
    """!
    @brief Outcome information from :func:`run_command`.
    @details ``output`` holds the combined, unfiltered stdout/stderr text.
    ``timed_out`` is ``True`` when the timeout elapsed and the process group
    was terminated.
    """

    command: Sequence[str]
    returncode: int
    output: str
    duration: float
    timed_out: bool = False
    error: str | None = None
    lines: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None


def _build_call_payload(
    command_list: Sequence[str],
    *,
    timeout: float | int | None,
    cwd: str | None,
    extra: Mapping[str, object] | None,
) -> MutableMapping[str, object]:
    payload: MutableMapping[str, object] = {
        "command": list(command_list),
        "timeout": timeout,
    }
    if cwd:
        payload["cwd"] = cwd
    if extra:
        for key, value in extra.items():
            if key not in {"event", "result"}:
                payload[key] = value
    return payload


def _build_result_payload(
    *,
    return_code: int,
    duration: float,
    lines: Sequence[str],
    error: str | None = None,
    timed_out: bool = False,
) -> dict[str, object]:
    return {
        "rc": return_code,
        "duration_ms": round(duration * 1000, 3),
        "output_tail": list(lines[-_OUTPUT_TAIL_LINES:]),
        "error": error,
        "timed_out": timed_out,
    }


def sanitize_environment(
    *,
    base_env: Mapping[str, str] | None = None,
    extra: Mapping[str, str] | None = None,
) -> MutableMapping[str, str]:
    """!
    @brief Produce a child environment stripped of ambient Wine settings.
    @details The result is always a fresh mapping, so overlays never touch the
    parent's :data:`os.environ`.
    @param base_env Source mapping to copy prior to sanitisation; defaults to
    the host environment.
    @param extra Mapping of overrides applied after sanitisation.
    @returns Mutable mapping ready for subprocess invocation.
    """

    if base_env is not None:
        environment: MutableMapping[str, str] = {
            str(k): str(v) for k, v in base_env.items() if v is not None
        }
    else:
        environment = {str(k): str(v) for k, v in os.environ.items() if v is not None}

    for key in _SANITIZE_BLOCKLIST:
        environment.pop(key, None)

    if extra:
        for key, value in extra.items():
            environment[str(key)] = str(value)

    return environment


def terminate_process_group(
    process: subprocess.Popen,
    *,
    grace: float = constants.TERMINATE_GRACE_SECONDS,
) -> None:
    """!
    @brief Stop ``process`` and every member of its process group.
    @details Sends ``SIGTERM`` to the group, waits up to ``grace`` seconds,
    then escalates to ``SIGKILL``. The group id equals the child pid because
    children are spawned with ``start_new_session=True``.
    """

    pgid = process.pid
    try:
        os.killpg(pgid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    try:
        process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        pass
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    if process.poll() is None:
        process.wait()


class _OutputPump(threading.Thread):
    """!
    @brief Drain the child's combined output into the log sinks.
    """

    def __init__(
        self,
        stream,
        *,
        tag: str,
        output_filter: OutputFilter,
        category: str,
    ) -> None:
        super().__init__(name=f"output-pump-{tag}", daemon=True)
        self._stream = stream
        self._tag = tag
        self._filter = output_filter
        self._process_logger = logging_ext.get_process_logger()
        self._human_logger = logging_ext.get_human_logger(category)
        self.lines: List[str] = []

    def run(self) -> None:
        for raw in iter(self._stream.readline, ""):
            line = raw.rstrip("\r\n")
            self.lines.append(line)
            stamp = _dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="milliseconds")
            self._process_logger.info("[%s] [%s] %s", stamp.replace("+00:00", "Z"), self._tag, line)
            if self._filter.keep(line):
                self._human_logger.debug("%s: %s", self._tag, line)
        self._stream.close()


def run_command(
    command: Sequence[str] | str,
    *,
    event: str,
    timeout: int | float | None = None,
    token: CancellationToken | None = None,
    extra: Mapping[str, object] | None = None,
    env_overrides: Mapping[str, str] | None = None,
    cwd: str | None = None,
    output_filter: OutputFilter | None = None,
    tag: str | None = None,
    category: str = "process",
    poll_interval: float = constants.PROCESS_POLL_INTERVAL,
) -> CommandResult:
    """!
    @brief Execute ``command`` under supervision.
    @details Emits ``*_plan`` and ``*_result`` machine-log events (or
    ``*_timeout``/``*_missing``/``*_error``/``*_cancelled``). The wait loop
    checks ``token`` on every iteration; when it fires the process group is
    terminated and :class:`UserCancelled` propagates to the caller.
    @param command Sequence of command arguments.
    @param event Base name for structured log events.
    @param timeout Optional timeout in seconds; ``None`` waits indefinitely
    (still interruptible through ``token``).
    @param token Cancellation token observed while waiting.
    @param extra Additional metadata merged into machine log payloads.
    @param env_overrides Overlay applied after sanitisation.
    @param cwd Working directory for the child.
    @param output_filter Line filter deciding what reaches the main log.
    @param tag Label prefixed to every transcript line, e.g. an attempt tag.
    @param category Human log category for the filtered output.
    @param poll_interval Seconds between liveness checks.
    @returns :class:`CommandResult` describing the observed outcome.
    """

    human_logger = logging_ext.get_human_logger(category)
    machine_logger = logging_ext.get_machine_logger()

    if isinstance(command, str):
        command_list = [command]
    else:
        command_list = [str(part) for part in command]

    active_token = token or CancellationToken()
    active_filter = output_filter or DEFAULT_FILTER
    label = tag or event
    call_payload = _build_call_payload(command_list, timeout=timeout, cwd=cwd, extra=extra)

    machine_logger.info(f"{event}_plan", extra={"event": f"{event}_plan", "call": dict(call_payload)})

    active_token.raise_if_cancelled()

    sanitized_env = sanitize_environment(extra=env_overrides)

    start = time.monotonic()
    try:
        process = subprocess.Popen(  # noqa: S603 - intentional command execution
            command_list,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            env=dict(sanitized_env),
            cwd=cwd,
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        duration = time.monotonic() - start
        human_logger.error("Command not found: %s", command_list[0])
        machine_logger.error(
            f"{event}_missing",
            extra={
                "event": f"{event}_missing",
                "call": dict(call_payload),
                "result": _build_result_payload(
                    return_code=127, duration=duration, lines=[], error=str(exc)
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=127,
            output="",
            duration=duration,
            error=str(exc),
        )
    except OSError as exc:
        duration = time.monotonic() - start
        human_logger.error("Failed to execute %s: %s", command_list[0], exc)
        machine_logger.error(
            f"{event}_error",
            extra={
                "event": f"{event}_error",
                "call": dict(call_payload),
                "result": _build_result_payload(
                    return_code=1, duration=duration, lines=[], error=str(exc)
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=1,
            output="",
            duration=duration,
            error=str(exc),
        )

    pump = _OutputPump(process.stdout, tag=label, output_filter=active_filter, category=category)
    pump.start()

    deadline = start + timeout if timeout is not None else None
    timed_out = False
    while process.poll() is None:
        if active_token.cancelled:
            human_logger.warning("Cancelling %s; terminating process group %s", label, process.pid)
            terminate_process_group(process)
            pump.join(timeout=constants.TERMINATE_GRACE_SECONDS)
            duration = time.monotonic() - start
            machine_logger.warning(
                f"{event}_cancelled",
                extra={
                    "event": f"{event}_cancelled",
                    "call": dict(call_payload),
                    "result": _build_result_payload(
                        return_code=process.returncode if process.returncode is not None else -1,
                        duration=duration,
                        lines=pump.lines,
                        error="cancelled",
                    ),
                },
            )
            raise UserCancelled(active_token.reason or "interrupted")
        now = time.monotonic()
        if deadline is not None and now >= deadline:
            timed_out = True
            terminate_process_group(process)
            break
        wait_for = poll_interval if deadline is None else min(poll_interval, max(deadline - now, 0.0))
        active_token.wait(wait_for)

    pump.join(timeout=constants.TERMINATE_GRACE_SECONDS)
    duration = time.monotonic() - start
    returncode = process.returncode if process.returncode is not None else -1
    output = "\n".join(pump.lines)

    if timed_out:
        human_logger.error("Command timed out after %.1fs: %s", duration, command_list[0])
        machine_logger.error(
            f"{event}_timeout",
            extra={
                "event": f"{event}_timeout",
                "call": dict(call_payload),
                "result": _build_result_payload(
                    return_code=returncode,
                    duration=duration,
                    lines=pump.lines,
                    error="timeout",
                    timed_out=True,
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=returncode,
            output=output,
            duration=duration,
            timed_out=True,
            error="timeout",
            lines=list(pump.lines),
        )

    machine_logger.info(
        f"{event}_result",
        extra={
            "event": f"{event}_result",
            "call": dict(call_payload),
            "result": _build_result_payload(
                return_code=returncode,
                duration=duration,
                lines=pump.lines,
            ),
        },
    )

    if returncode != 0:
        human_logger.warning("Command %s exited with %s", command_list[0], returncode)

    return CommandResult(
        command=command_list,
        returncode=returncode,
        output=output,
        duration=duration,
        lines=list(pump.lines),
    )


__all__ = [
    "CommandResult",
    "run_command",
    "sanitize_environment",
    "terminate_process_group",
]
