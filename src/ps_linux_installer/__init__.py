"""!
@brief Photoshop CC Linux installer package root.
@details Modules under this namespace detect Wine/Proton runtimes, initialise
an isolated prefix, install the component sequence with retries and
checkpoints, detect the installed product version, and apply the registry
tuning Photoshop needs to run under Wine.
"""

__all__ = [
    "main",
    "orchestrator",
    "detect",
    "readiness",
    "exec_utils",
    "retry",
    "checkpoint",
    "confirm",
    "uninstall",
    "version_detect",
    "components",
    "wine_config",
    "fs_tools",
    "config",
    "logging_ext",
    "log_filter",
    "cancellation",
    "main_progress",
    "constants",
    "errors",
    "version",
]
