"""!
@brief Bounded retry wrapper around component installation.
@details A single abstraction replaces per-call-site retry loops: the
:class:`ComponentSpec` supplies the attempt budget, delay, and timeout, and
each attempt is tagged so its output can be told apart in the process log.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from . import exec_utils, logging_ext
from .cancellation import CancellationToken
from .components import ComponentSpec

Runner = Callable[..., exec_utils.CommandResult]


@dataclass(frozen=True)
class InstallOutcome:
    component: str
    success: bool
    attempts: int
    last_exit_code: int | None = None
    timed_out: bool = False


def attempt_tag(spec: ComponentSpec, attempt: int, total: int) -> str:
    return f"{spec.name}#{attempt}/{total}"


class RetryingInstaller:
    """!
    @brief Run a component up to ``max_retries`` times.
    """

    def __init__(
        self,
        *,
        runner: Runner | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self._runner = runner or exec_utils.run_command
        self._token = token or CancellationToken()
        self._human = logging_ext.get_human_logger("components")
        self._machine = logging_ext.get_machine_logger()

    def install_component(
        self,
        spec: ComponentSpec,
        context: Mapping[str, str],
        *,
        env_overrides: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> InstallOutcome:
        """!
        @brief Install ``spec``, stopping at the first successful attempt.
        @details Sleeps ``retry_delay_seconds`` between attempts through the
        cancellation token, so an interruption during the delay is honoured.
        :class:`UserCancelled` from the runner propagates unchanged.
        @param spec Component to install.
        @param context Placeholder values for the command template.
        @param env_overrides Environment overlay for the child.
        @param cwd Working directory for the child.
        @returns :class:`InstallOutcome`.
        """

        total = spec.max_retries
        command = spec.render(context)
        last_code: int | None = None
        timed_out = False

        for attempt in range(1, total + 1):
            self._token.raise_if_cancelled()
            tag = attempt_tag(spec, attempt, total)
            self._human.info("[%s] Installing %s (attempt %d of %d)", tag, spec.name, attempt, total)
            self._machine.info(
                "component_attempt",
                extra={
                    "event": "component_attempt",
                    "component": spec.name,
                    "attempt": attempt,
                    "max_attempts": total,
                    "tag": tag,
                },
            )

            result = self._runner(
                command,
                event="component_install",
                timeout=spec.timeout_seconds,
                token=self._token,
                env_overrides=env_overrides,
                cwd=cwd,
                tag=tag,
                category="components",
                extra={"component": spec.name, "attempt": attempt},
            )
            last_code = result.returncode
            timed_out = result.timed_out
            if result.returncode == 0 and not result.timed_out and result.error is None:
                self._human.info("[%s] %s installed", tag, spec.name)
                return InstallOutcome(
                    component=spec.name,
                    success=True,
                    attempts=attempt,
                    last_exit_code=0,
                )

            reason = "timed out" if result.timed_out else f"exit code {result.returncode}"
            self._human.warning("[%s] %s failed (%s)", tag, spec.name, reason)
            if attempt < total and spec.retry_delay_seconds > 0:
                self._token.wait(spec.retry_delay_seconds)

        self._machine.warning(
            "component_failed",
            extra={
                "event": "component_failed",
                "component": spec.name,
                "attempts": total,
                "last_exit_code": last_code,
                "timed_out": timed_out,
            },
        )
        return InstallOutcome(
            component=spec.name,
            success=False,
            attempts=total,
            last_exit_code=last_code,
            timed_out=timed_out,
        )


__all__ = ["InstallOutcome", "RetryingInstaller", "attempt_tag"]
