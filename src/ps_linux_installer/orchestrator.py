"""!
@brief Installation state machine.
@details Drives one install run through
``Init -> DetectRuntime -> SelectRuntime -> InitEnvironment -> AwaitReady ->
InstallComponents -> DetectVersion -> ApplyConfig -> Finalize -> Done`` with
``Aborted`` reachable from every state. A single thread of control runs the
states in order; each state spawns at most one child process at a time and
every wait is a cancellation point.

Only a missing runtime, an initialisation timeout that survives one retry,
and a failed fatal component abort the run. Everything else (optional
components, configuration writes, version ambiguity) is collected as a
warning and reported in the :class:`RunSummary`.
"""

from __future__ import annotations

import datetime as _dt
import os
import shutil
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Sequence

from . import (
    checkpoint,
    components,
    constants,
    detect,
    exec_utils,
    fs_tools,
    logging_ext,
    main_progress,
    readiness,
    version_detect,
    wine_config,
)
from .cancellation import CancellationToken
from .config import InstallerSettings
from .errors import (
    ComponentInstallFailure,
    EnvironmentNotFound,
    InitializationTimeout,
    InstallerError,
    UserCancelled,
)
from .retry import RetryingInstaller

Runner = Callable[..., exec_utils.CommandResult]
Detector = Callable[[], List[detect.RuntimeCandidate]]
Selector = Callable[..., detect.RuntimeCandidate]
Waiter = Callable[..., readiness.ReadinessResult]


class State(Enum):
    INIT = "Init"
    DETECT_RUNTIME = "DetectRuntime"
    SELECT_RUNTIME = "SelectRuntime"
    INIT_ENVIRONMENT = "InitEnvironment"
    AWAIT_READY = "AwaitReady"
    INSTALL_COMPONENTS = "InstallComponents"
    DETECT_VERSION = "DetectVersion"
    APPLY_CONFIG = "ApplyConfig"
    FINALIZE = "Finalize"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass
class InstallationSession:
    """!
    @brief Root owner of everything produced during one run.
    """

    session_id: str
    started_at: str
    settings: InstallerSettings
    log_paths: logging_ext.LogPaths | None
    selected_runtime: detect.RuntimeCandidate | None = None
    pre_install_version: version_detect.VersionSignal | None = None
    version: version_detect.VersionSignal | None = None

    @property
    def environment_root(self) -> Path:
        return self.settings.install_root

    @property
    def bucket(self) -> version_detect.ProductBucket:
        signal = self.version or self.pre_install_version
        return signal.bucket if signal else version_detect.DEFAULT_BUCKET


@dataclass
class RunSummary:
    """!
    @brief Consolidated outcome presented at the end of every run.
    """

    session_id: str
    state: State = State.INIT
    passed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    cancelled: bool = False
    log_file: str | None = None
    checkpoints: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return constants.EXIT_CANCELLED
        if self.state is State.DONE:
            return constants.EXIT_OK
        return constants.EXIT_FAILURE

    def to_dict(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "passed": list(self.passed),
            "warnings": list(self.warnings),
            "failed_step": self.failed_step,
            "error": self.error,
            "cancelled": self.cancelled,
            "log_file": self.log_file,
            "checkpoints": list(self.checkpoints),
            "exit_code": self.exit_code,
        }

    def render(self) -> str:
        if self.cancelled:
            outcome = "Cancelled"
        else:
            outcome = self.state.value
        lines = [f"Installation summary (session {self.session_id})", f"  Result: {outcome}"]
        lines.append(f"  Passed: {', '.join(self.passed) if self.passed else 'none'}")
        if self.warnings:
            lines.append(f"  Warnings ({len(self.warnings)}):")
            lines.extend(f"    - {warning}" for warning in self.warnings)
        if self.failed_step:
            lines.append(f"  Failed step: {self.failed_step}")
        if self.error:
            lines.append(f"  Error: {self.error}")
        if self.cancelled and self.checkpoints:
            lines.append(f"  Completed checkpoints: {', '.join(self.checkpoints)}")
        if self.state is not State.DONE and self.log_file:
            lines.append(f"  See log: {self.log_file}")
        return "\n".join(lines)


_SKIPPED = object()


class InstallationOrchestrator:
    """!
    @brief Sequence detection, initialisation, installation, and configuration.
    @details Collaborators are injectable so tests can drive every state
    without Wine installed.
    @param settings Resolved run settings.
    @param token Cancellation token shared with signal handlers.
    @param runner Process runner used for every child process.
    @param detector Callable returning the ranked runtime candidates.
    @param selector Callable choosing one candidate (see
    :func:`detect.select_runtime`).
    @param waiter Readiness waiter (see
    :func:`readiness.wait_for_stable_artifact`).
    @param component_specs Component sequence to install.
    @param config_entries Registry entries for the ApplyConfig state.
    @param resource_reader Override for the binary-resource version method.
    @param home Home directory receiving ``.psdata.txt``.
    @param owns_logging Close the log handlers during teardown.
    """

    def __init__(
        self,
        settings: InstallerSettings,
        *,
        token: CancellationToken | None = None,
        runner: Runner | None = None,
        detector: Detector | None = None,
        selector: Selector | None = None,
        waiter: Waiter | None = None,
        component_specs: Sequence[components.ComponentSpec] = components.DEFAULT_COMPONENTS,
        config_entries: Sequence[wine_config.ConfigEntry] | None = None,
        resource_reader: version_detect.ResourceReader | None = None,
        home: Path | None = None,
        owns_logging: bool = True,
    ) -> None:
        self.settings = settings
        self.token = token or CancellationToken()
        self._runner = runner or exec_utils.run_command
        self._search_path = detect.build_search_path(
            str(settings.runtime_prefix) if settings.runtime_prefix else None
        )
        self._detector = detector or (lambda: detect.detect_runtimes(search_path=self._search_path))
        self._selector = selector or detect.select_runtime
        self._waiter = waiter or readiness.wait_for_stable_artifact
        self._component_specs = list(component_specs)
        self._config_entries = (
            list(config_entries) if config_entries is not None else wine_config.default_config_entries()
        )
        self._resource_reader = resource_reader
        self._home = home if home is not None else Path.home()
        self._owns_logging = owns_logging

        self._human = logging_ext.get_human_logger("orchestrator")
        self._machine = logging_ext.get_machine_logger()

        metadata = logging_ext.get_run_metadata() or {}
        self.session = InstallationSession(
            session_id=str(metadata.get("run_id") or uuid.uuid4().hex),
            started_at=_dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="seconds"),
            settings=settings,
            log_paths=logging_ext.get_log_paths(),
        )
        log_paths = self.session.log_paths
        self.summary = RunSummary(
            session_id=self.session.session_id,
            log_file=str(log_paths.main) if log_paths else None,
        )
        self.checkpoints: checkpoint.CheckpointManager | None = None
        self._candidates: List[detect.RuntimeCandidate] = []
        self._specs: List[components.ComponentSpec] = []
        self._state = State.INIT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        return self._state

    def run(self) -> RunSummary:
        """!
        @brief Execute the full state machine.
        @returns :class:`RunSummary`; never raises for installer errors or
        cancellation.
        """

        steps = (
            (State.INIT, "Preparing installation", self._init),
            (State.DETECT_RUNTIME, "Detecting runtimes", self._detect_runtime),
            (State.SELECT_RUNTIME, "Selecting runtime", self._select_runtime),
            (State.INIT_ENVIRONMENT, "Initializing prefix", self._init_environment),
            (State.INSTALL_COMPONENTS, "Installing components", self._install_components),
            (State.DETECT_VERSION, "Detecting installed version", self._detect_version),
            (State.APPLY_CONFIG, "Applying configuration", self._apply_config),
            (State.FINALIZE, "Finalizing", self._finalize),
        )
        try:
            for state, label, handler in steps:
                self.token.raise_if_cancelled()
                self._enter(state)
                main_progress.progress(f"{label}...", newline=False)
                try:
                    detail = handler()
                except BaseException:
                    main_progress.progress_fail(self._state.value)
                    raise
                if detail is _SKIPPED:
                    main_progress.progress_skip("resumed")
                else:
                    main_progress.progress_ok(detail if isinstance(detail, str) else None)
                self.summary.passed.append(state.value)
                if self._state is not state:
                    self.summary.passed.append(self._state.value)
            self._enter(State.DONE)
        except UserCancelled as exc:
            self._abort(cancelled=True, message=f"Cancelled ({exc.reason})")
        except InstallerError as exc:
            self._abort(step=exc.step or self._state.value, message=str(exc))
        except Exception as exc:
            self._human.exception("Unexpected failure in %s", self._state.value)
            self._abort(step=self._state.value, message=f"{type(exc).__name__}: {exc}")
        finally:
            self._teardown()
        return self.summary

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _enter(self, state: State) -> None:
        self._state = state
        self.summary.state = state
        self._human.debug("Entering state %s", state.value)
        self._machine.info(
            "state_enter",
            extra={"event": "state_enter", "state": state.value, "session_id": self.session.session_id},
        )

    def _warn(self, message: str) -> None:
        self.summary.warnings.append(message)
        self._human.warning(message)

    def _abort(self, *, cancelled: bool = False, step: str | None = None, message: str) -> None:
        failed_in = self._state.value
        self._state = State.ABORTED
        self.summary.state = State.ABORTED
        self.summary.cancelled = cancelled
        self.summary.error = message
        if not cancelled:
            self.summary.failed_step = step or failed_in
            self._human.error("Aborted in %s: %s", self.summary.failed_step, message)
        else:
            self._human.warning("Installation cancelled during %s", failed_in)
        if self.checkpoints is not None:
            self.summary.checkpoints = [item.name for item in self.checkpoints.list()]
        self._machine.info(
            "state_enter",
            extra={
                "event": "state_enter",
                "state": State.ABORTED.value,
                "session_id": self.session.session_id,
                "from_state": failed_in,
                "cancelled": cancelled,
            },
        )

    def _teardown(self) -> None:
        temp_dir = self.settings.session_temp_dir
        try:
            if temp_dir.exists():
                fs_tools.remove_paths([temp_dir], home=self._home)
        except (OSError, InstallerError) as exc:
            self._human.warning("Could not prune %s: %s", temp_dir, exc)
        self._machine.info(
            "run_summary",
            extra={"event": "run_summary", "summary": self.summary.to_dict()},
        )
        for line in self.summary.render().splitlines():
            self._human.info(line)
        if self._owns_logging:
            logging_ext.shutdown_logging()
        else:
            logging_ext.flush_logging()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _child_env(self) -> Dict[str, str]:
        runtime = self.session.selected_runtime
        wine = self._wine()
        path_parts = []
        if runtime is not None:
            path_parts.append(os.path.dirname(wine))
        path_parts.append(self._search_path)
        seen: List[str] = []
        for part in os.pathsep.join(path_parts).split(os.pathsep):
            if part and part not in seen:
                seen.append(part)
        return {
            "WINEPREFIX": str(self.settings.prefix),
            "WINEARCH": self.settings.arch,
            "WINE": wine,
            "PATH": os.pathsep.join(seen),
            "TMPDIR": str(self.settings.session_temp_dir),
        }

    def _wine(self) -> str:
        runtime = self.session.selected_runtime
        if runtime is None:
            return constants.WINE_BINARY
        return detect.wine_executable(runtime, self._search_path)

    def _command_context(self) -> Dict[str, str]:
        return {
            "wine": self._wine(),
            "winetricks": shutil.which("winetricks", path=self._search_path) or "winetricks",
            "installer_exe": str(self.settings.installer_dir / constants.INSTALLER_EXECUTABLE),
        }

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _init(self) -> str:
        settings = self.settings
        installer_exe = settings.installer_dir / constants.INSTALLER_EXECUTABLE
        if not installer_exe.is_file():
            raise InstallerError(
                f"Installer not found: {installer_exe}", step=State.INIT.value
            )
        fs_tools.ensure_directory(settings.install_root, home=self._home)
        fs_tools.ensure_directory(settings.cache_root, home=self._home)
        settings.session_temp_dir.mkdir(parents=True, exist_ok=True)

        signal = version_detect.detect(
            settings.installer_dir, resource_reader=self._resource_reader, token=self.token
        )
        self.session.pre_install_version = signal
        self._specs = components.components_for(signal.bucket, self._component_specs)
        self.checkpoints = checkpoint.CheckpointManager(
            settings.install_root,
            components.milestones_for(signal.bucket, self._component_specs),
        )
        self._machine.info(
            "session_start",
            extra={
                "event": "session_start",
                "session_id": self.session.session_id,
                "settings": settings.to_dict(),
                "version": signal.to_dict(),
            },
        )
        return f"Photoshop {signal.bucket.label}"

    def _detect_runtime(self) -> str:
        self._candidates = list(self._detector())
        if not self._candidates:
            raise EnvironmentNotFound(
                "No Wine or Proton runtime found; install wine or proton-ge",
                step=State.DETECT_RUNTIME.value,
            )
        for candidate in self._candidates:
            self._human.info("Runtime candidate %s", candidate.describe())
        return f"{len(self._candidates)} found"

    def _select_runtime(self) -> str:
        runtime = self._selector(self._candidates, forced=self.settings.runtime)
        self.session.selected_runtime = runtime
        if runtime.compatibility_warning:
            self._human.warning("%s: %s", runtime.name, runtime.compatibility_warning)
        self._machine.info(
            "runtime_selected",
            extra={"event": "runtime_selected", "runtime": runtime.to_dict()},
        )
        return runtime.name

    def _init_environment(self) -> object:
        assert self.checkpoints is not None
        if self.checkpoints.exists(constants.MILESTONE_PREFIX_INITIALIZED):
            self._human.info("Prefix already initialized; resuming")
            return _SKIPPED

        prefix = self.settings.prefix
        fs_tools.recreate_directory(prefix, home=self._home)
        runtime = self.session.selected_runtime
        timeout = (
            self.settings.ready_timeout
            if self.settings.ready_timeout is not None
            else readiness.compute_ready_timeout(runtime.tier if runtime else None)
        )
        artifact = prefix / constants.READY_ARTIFACT
        attempts = constants.ENV_INIT_ATTEMPTS

        for attempt in range(1, attempts + 1):
            self._enter(State.INIT_ENVIRONMENT)
            self._human.info("Initialization attempt %d of %d for %s", attempt, attempts, prefix)
            result = self._runner(
                [self._wine(), "wineboot", "--init"],
                event="prefix_init",
                timeout=constants.ENV_INIT_TIMEOUT,
                token=self.token,
                env_overrides=self._child_env(),
                tag=f"prefix_init#{attempt}/{attempts}",
                category="orchestrator",
                extra={"attempt": attempt},
            )
            if result.returncode != 0 or result.timed_out:
                self._human.warning(
                    "wineboot returned %s; waiting for the prefix anyway", result.returncode
                )

            self._enter(State.AWAIT_READY)
            outcome = self._waiter(
                artifact,
                timeout,
                self.settings.poll_interval,
                token=self.token,
            )
            if outcome is readiness.ReadinessResult.READY:
                self.checkpoints.create(constants.MILESTONE_PREFIX_INITIALIZED)
                return f"ready after {attempt} attempt(s)"
            self._human.warning(
                "Prefix not ready after %.0fs (attempt %d of %d)", timeout, attempt, attempts
            )

        raise InitializationTimeout(
            f"{artifact} did not stabilise within {timeout:.0f}s after {attempts} attempts",
            step=State.AWAIT_READY.value,
            attempts=attempts,
        )

    def _install_components(self) -> str:
        assert self.checkpoints is not None
        installer = RetryingInstaller(runner=self._runner, token=self.token)
        context = self._command_context()
        env = self._child_env()
        last = self.checkpoints.last_completed()
        resume_after = next(
            (index for index, spec in enumerate(self._specs) if spec.name == last),
            -1,
        )

        installed = 0
        for index, spec in enumerate(self._specs):
            if index <= resume_after:
                self._human.info("Skipping %s (already completed)", spec.name)
                continue
            main_progress.progress(spec.description or spec.name, indent=1, newline=False)
            outcome = installer.install_component(
                spec, context, env_overrides=env, cwd=str(self.settings.installer_dir)
            )
            if outcome.success:
                main_progress.progress_ok()
                installed += 1
                if spec.fatal:
                    self.checkpoints.create(spec.name)
                continue
            main_progress.progress_fail(f"exit {outcome.last_exit_code}")
            if spec.fatal:
                raise ComponentInstallFailure(
                    spec.name,
                    outcome.last_exit_code,
                    step=f"{State.INSTALL_COMPONENTS.value}:{spec.name}",
                )
            self._warn(
                f"Optional component {spec.name} failed after {outcome.attempts} attempt(s) "
                f"(last exit code: {outcome.last_exit_code})"
            )
        return f"{installed} installed"

    def _detect_version(self) -> str:
        pre = self.session.pre_install_version
        assert pre is not None
        post = version_detect.detect_installed(
            self.settings.prefix, resource_reader=self._resource_reader, token=self.token
        )
        final = version_detect.resolve_precedence(pre, post)
        self.session.version = final
        if final.is_default:
            self._warn(
                f"Could not determine the Photoshop version; assuming {final.bucket.label}"
            )
        return f"Photoshop {final.bucket.label} via {final.method.value}"

    def _apply_config(self) -> str:
        applier = wine_config.ConfigurationApplier(
            self._wine(),
            env_overrides=self._child_env(),
            runner=self._runner,
            token=self.token,
        )
        failed = applier.apply(self._config_entries)
        for entry in failed:
            self._warn(f"Configuration write failed: {entry.label}")
        tweaks = wine_config.apply_post_install(self.settings.prefix, self.session.bucket, applier)
        for label in tweaks:
            self._warn(f"Post-install tweak failed: {label}")
        return f"{len(failed) + len(tweaks)} failure(s)"

    def _finalize(self) -> str:
        assert self.checkpoints is not None
        fs_tools.save_install_paths(
            self.settings.install_root, self.settings.cache_root, home=self._home
        )
        removed = self.checkpoints.reset_all()
        self._human.info(
            "Photoshop %s installed in %s",
            self.session.bucket.label,
            version_detect.install_path(self.settings.prefix, self.session.bucket),
        )
        return f"{removed} checkpoint(s) cleared"


__all__ = [
    "InstallationOrchestrator",
    "InstallationSession",
    "RunSummary",
    "State",
]
