"""!
@brief Exception taxonomy for the installation engine.
@details Fatal conditions derive from :class:`InstallerError` and carry the
state machine step that raised them so the run summary can name the failing
step. :class:`UserCancelled` is deliberately kept outside that hierarchy
because cancellation is a terminal outcome rather than a failure.
"""
from __future__ import annotations


class InstallerError(RuntimeError):
    """!
    @brief Base class for errors that abort an installation run.
    """

    def __init__(self, message: str, *, step: str | None = None) -> None:
        super().__init__(message)
        self.step = step


class EnvironmentNotFound(InstallerError):
    """!
    @brief No runtime candidate (Wine/Proton) was found on the host.
    """


class InitializationTimeout(InstallerError):
    """!
    @brief The isolated prefix never reached a stable ready state.
    """

    def __init__(self, message: str, *, step: str | None = None, attempts: int = 0) -> None:
        super().__init__(message, step=step)
        self.attempts = attempts


class ComponentInstallFailure(InstallerError):
    """!
    @brief Every attempt of a component installation failed.
    """

    def __init__(
        self,
        component: str,
        exit_code: int | None,
        *,
        step: str | None = None,
    ) -> None:
        super().__init__(
            f"Component {component} failed (last exit code: {exit_code})",
            step=step,
        )
        self.component = component
        self.exit_code = exit_code


class ConfigurationWriteFailure(InstallerError):
    """!
    @brief A single configuration entry could not be written.
    @details Raised internally by the applier and converted to a collected
    warning; it never aborts a run.
    """

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Failed to write {key}: {reason}")
        self.key = key
        self.reason = reason


class VersionDetectionAmbiguous(InstallerError):
    """!
    @brief The version cascade fell back to the default bucket.
    """


class UnsafePathError(InstallerError, ValueError):
    """!
    @brief A configured path points at a protected system location.
    """


class UserCancelled(Exception):
    """!
    @brief Raised at a suspension point once cancellation was requested.
    """

    def __init__(self, reason: str = "interrupted") -> None:
        super().__init__(reason)
        self.reason = reason


__all__ = [
    "ComponentInstallFailure",
    "ConfigurationWriteFailure",
    "EnvironmentNotFound",
    "InitializationTimeout",
    "InstallerError",
    "UnsafePathError",
    "UserCancelled",
    "VersionDetectionAmbiguous",
]
