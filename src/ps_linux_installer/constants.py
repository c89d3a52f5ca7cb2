"""!
@brief Static data shared by the installer modules.
@details Centralises runtime binary names, compatibility thresholds, timeouts,
exit codes, milestone names, and the registry tuning tables so detection,
installation, and configuration work from a single source of truth.
"""
from __future__ import annotations

from typing import Dict, Tuple

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130
"""!
@brief Dedicated status for user interruption, matching shell ``128 + SIGINT``.
"""

# ---------------------------------------------------------------------------
# Runtime detection
# ---------------------------------------------------------------------------

PROTON_GE_BINARY = "proton-ge"
WINE_BINARY = "wine"
WINE_STAGING_BINARY = "wine-staging"

KNOWN_RUNTIME_BINARIES: Tuple[Tuple[str, bool], ...] = (
    (PROTON_GE_BINARY, False),
    (WINE_BINARY, True),
    (WINE_STAGING_BINARY, True),
)
"""!
@brief Runtime binaries searched on ``PATH`` paired with a "probe version" flag.
@details ``proton-ge --version`` launches Steam, so the system-wide Proton GE
wrapper is detected by presence only.
"""

RUNTIME_ALIASES: Dict[str, str] = {
    "proton": PROTON_GE_BINARY,
    "proton-ge": PROTON_GE_BINARY,
    "wine": WINE_BINARY,
    "wine-standard": WINE_BINARY,
    "staging": WINE_STAGING_BINARY,
    "wine-staging": WINE_STAGING_BINARY,
}

RUNTIME_STABLE_MAJOR = 10
"""!
@brief Runtimes with a major version below this value are ``Preferred``.
"""

RUNTIME_EXPERIMENTAL_MAJOR = 11
"""!
@brief Runtimes at or above this major version are demoted with a warning.
"""

VERSION_PROBE_TIMEOUT = 5

# ---------------------------------------------------------------------------
# Environment initialisation and readiness
# ---------------------------------------------------------------------------

DEFAULT_ARCH = "win64"
READY_ARTIFACT = "user.reg"
BASE_READY_TIMEOUT = 120.0
EXPERIMENTAL_TIMEOUT_FACTOR = 3.0
"""!
@brief Experimental runtimes take roughly three times longer to settle a prefix.
"""

DEFAULT_POLL_INTERVAL = 2.0
ENV_INIT_TIMEOUT = 600
ENV_INIT_ATTEMPTS = 2

PROCESS_POLL_INTERVAL = 0.2
TERMINATE_GRACE_SECONDS = 5.0

# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

CHECKPOINT_SUFFIX = ".checkpoint"
CHECKPOINT_DIRNAME = "checkpoints"

MILESTONE_PREFIX_INITIALIZED = "prefix_initialized"

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

DEFAULT_INSTALL_DIRNAME = ".photoshopCCV19"
DEFAULT_CACHE_SUBPATH = (".cache", "photoshopCCV19")
DEFAULT_INSTALLER_DIRNAME = "photoshop"
INSTALLER_EXECUTABLE = "Set-up.exe"
PATHS_DATAFILE = ".psdata.txt"
DESKTOP_ENTRY_SUBPATH = (".local", "share", "applications")
DESKTOP_ENTRY_NAMES: Tuple[str, ...] = (
    "photoshop.desktop",
    "photoshopCC.desktop",
    "Adobe Photoshop.desktop",
    "Adobe Photoshop CC 2019.desktop",
    "Adobe Photoshop 2021.desktop",
    "Adobe Photoshop 2022.desktop",
)
"""!
@brief Launcher entries removed on uninstall.
"""
WINESERVER_BINARY = "wineserver"
SESSION_TEMP_DIRNAME = ".session"

UNSAFE_PATH_PREFIXES: Tuple[str, ...] = (
    "/etc",
    "/usr/bin",
    "/usr/sbin",
    "/bin",
    "/sbin",
    "/lib",
    "/var/log",
    "/root",
)

ENV_INSTALL_ROOT = "PS_INSTALL_ROOT"
ENV_CACHE_ROOT = "PS_CACHE_ROOT"
ENV_RUNTIME_PREFIX = "PS_RUNTIME_PREFIX"
ENV_ARCH = "WINEARCH"

# ---------------------------------------------------------------------------
# Product versions
# ---------------------------------------------------------------------------

LATEST_MIN_MAJOR = 23
MID_MIN_MAJOR = 22
LATEST_MIN_YEAR = 2022
MID_MIN_YEAR = 2021

DESCRIPTOR_FILENAMES: Tuple[str, ...] = (
    "Application.json",
    "application.json",
    "driver.xml",
    "products/driver.xml",
    "Setup.xml",
)
"""!
@brief Metadata files shipped next to the installer, checked in order.
"""

DESCRIPTOR_VERSION_KEYS: Tuple[str, ...] = (
    "ProductVersion",
    "productVersion",
    "CodexVersion",
    "codexVersion",
    "Version",
    "version",
)

BINARY_RESOURCE_TOOL = "peres"
CONTENT_SCAN_LIMIT = 64 * 1024 * 1024
NAME_SCAN_MAX_DEPTH = 3

# ---------------------------------------------------------------------------
# Registry tuning
# ---------------------------------------------------------------------------

HKCU = "HKEY_CURRENT_USER"

DIRECT3D_KEY = HKCU + r"\Software\Wine\Direct3D"
DLL_OVERRIDES_KEY = HKCU + r"\Software\Wine\DllOverrides"
DESKTOP_KEY = HKCU + r"\Control Panel\Desktop"
WINE_FONTS_KEY = HKCU + r"\Software\Wine\Fonts"
IE_MAIN_KEY = HKCU + r"\Software\Microsoft\Internet Explorer\Main"
PHOTOSHOP_SETTINGS_KEY = HKCU + r"\Software\Adobe\Photoshop\Settings"

NATIVE_THEN_BUILTIN = "native,builtin"

DLL_OVERRIDE_LIBRARIES: Tuple[str, ...] = (
    "mshtml",
    "jscript",
    "vbscript",
    "urlmon",
    "wininet",
    "shdocvw",
    "ieframe",
    "actxprxy",
    "browseui",
    "dxtrans",
    "msimtf",
)
"""!
@brief IE-engine libraries the Adobe setup needs resolved native-first.
"""

PROBLEMATIC_PLUGINS: Tuple[str, ...] = (
    "Required/Plug-ins/Spaces/Adobe Spaces Helper.exe",
    "Required/CEP/extensions/com.adobe.DesignLibraryPanel.html",
    "Required/Plug-ins/Extensions/ScriptingSupport.8li",
    "Required/CEP/extensions/com.adobe.HomePagePanel.html",
    "Required/CEP/extensions/com.adobe.HomePagePanel",
)

GPU_PREFS_CONTENT = "useOpenCL 0\nuseGraphicsProcessor 0\nGPUAcceleration 0\n"
