"""!
@brief Product version detection cascade.
@details Determines which Photoshop release an installer (or an installed
tree) carries. Methods run in a fixed order and the first one that yields a
version-like value wins:

1. a metadata/descriptor file shipped next to the installer,
2. the executable's embedded version resource (via ``peres``),
3. a version token in directory or file names,
4. a string scan of the executable near the product name,
5. the built-in default.

Every raw value is reduced to a :class:`ProductBucket` by numeric range
comparison, so the rest of the installer never branches on strings.
"""

from __future__ import annotations

import getpass
import json
import os
import re
import shutil
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from . import constants, exec_utils, logging_ext
from .cancellation import CancellationToken


class ProductBucket(Enum):
    """!
    @brief Supported product releases; the value is the directory label.
    """

    LATEST = "2022"
    MID = "2021"
    LEGACY = "CC 2019"

    @property
    def label(self) -> str:
        return self.value

    @property
    def key(self) -> str:
        return self.name.lower()


DEFAULT_BUCKET = ProductBucket.LEGACY


class VersionMethod(Enum):
    METADATA_FILE = "metadata_file"
    BINARY_RESOURCE = "binary_resource"
    DIRECTORY_NAME = "directory_name"
    CONTENT_SCAN = "content_scan"
    DEFAULT = "default"


METHOD_CONFIDENCE = {
    VersionMethod.METADATA_FILE: 100,
    VersionMethod.BINARY_RESOURCE: 90,
    VersionMethod.DIRECTORY_NAME: 70,
    VersionMethod.CONTENT_SCAN: 50,
    VersionMethod.DEFAULT: 0,
}


@dataclass(frozen=True)
class VersionSignal:
    """!
    @brief Result of one cascade run.
    """

    method: VersionMethod
    detected_value: str | None
    confidence: int
    bucket: ProductBucket

    @property
    def is_default(self) -> bool:
        return self.method is VersionMethod.DEFAULT

    def to_dict(self) -> dict:
        return {
            "method": self.method.value,
            "detected_value": self.detected_value,
            "confidence": self.confidence,
            "bucket": self.bucket.key,
            "label": self.bucket.label,
        }


ResourceReader = Callable[[Path], Optional[str]]

_NUMBER_PATTERN = re.compile(r"(?<!\d)(\d{1,4})(?:\.\d+)*")
_YEAR_TOKEN = re.compile(r"(?<!\d)(20[0-9]{2})(?!\d)")
_DOTTED_TOKEN = re.compile(r"(?<![\d.])(\d{2})\.\d+(?:\.\d+)*")
_PRODUCT_STRING = re.compile(
    rb"(?i)photoshop[^\x00\r\n]{0,40}?((?:cc\s*)?20[0-9]{2}|\d{2}\.\d+(?:\.\d+)*)"
)
_RESOURCE_LINE = re.compile(r"(?i)^\s*(product|file)\s*version\s*:\s*(\S+)")


def bucket_from_raw(raw: str | None) -> ProductBucket | None:
    """!
    @brief Map a raw version string to a bucket.
    @details Values of 1990 or more are read as release years (2022 and later
    are ``LATEST``, 2021 is ``MID``); smaller values are major versions
    (23 and later are ``LATEST``, 22 is ``MID``). Anything else that parses is
    ``LEGACY``. Strings without a number yield ``None``.
    """

    if not raw:
        return None
    match = _NUMBER_PATTERN.search(raw)
    if match is None:
        return None
    number = int(match.group(1))
    if number >= 1990:
        if number >= constants.LATEST_MIN_YEAR:
            return ProductBucket.LATEST
        if number >= constants.MID_MIN_YEAR:
            return ProductBucket.MID
        return ProductBucket.LEGACY
    if number >= constants.LATEST_MIN_MAJOR:
        return ProductBucket.LATEST
    if number >= constants.MID_MIN_MAJOR:
        return ProductBucket.MID
    return ProductBucket.LEGACY


# ---------------------------------------------------------------------------
# Individual methods
# ---------------------------------------------------------------------------


def _find_json_version(payload: object) -> str | None:
    if isinstance(payload, dict):
        for key in constants.DESCRIPTOR_VERSION_KEYS:
            value = payload.get(key)
            if isinstance(value, (str, int, float)) and str(value).strip():
                return str(value).strip()
        for value in payload.values():
            found = _find_json_version(value)
            if found:
                return found
    elif isinstance(payload, list):
        for item in payload:
            found = _find_json_version(item)
            if found:
                return found
    return None


def _find_xml_version(root: ET.Element) -> str | None:
    wanted = set(constants.DESCRIPTOR_VERSION_KEYS)
    for element in root.iter():
        tag = element.tag.rsplit("}", 1)[-1]
        if tag in wanted and element.text and element.text.strip():
            return element.text.strip()
        for attribute, value in element.attrib.items():
            if attribute in wanted and value.strip():
                return value.strip()
    return None


def read_descriptor_version(root: Path) -> str | None:
    """!
    @brief Read an explicit version field from a shipped descriptor file.
    """

    human_logger = logging_ext.get_human_logger("version")
    for name in constants.DESCRIPTOR_FILENAMES:
        candidate = root / name
        if not candidate.is_file():
            continue
        try:
            if candidate.suffix.lower() == ".json":
                with candidate.open("r", encoding="utf-8-sig") as handle:
                    value = _find_json_version(json.load(handle))
            else:
                value = _find_xml_version(ET.parse(candidate).getroot())
        except (OSError, ValueError, ET.ParseError) as exc:
            human_logger.debug("Ignoring unreadable descriptor %s: %s", candidate, exc)
            continue
        if value:
            human_logger.debug("Descriptor %s declares version %s", candidate, value)
            return value
    return None


def read_resource_version(executable: Path, *, token: CancellationToken | None = None) -> str | None:
    """!
    @brief Query the PE version resource of ``executable`` with ``peres``.
    @details Returns ``None`` when the tool is not installed. Cancelling
    ``token`` terminates the lookup and raises :class:`UserCancelled`.
    """

    tool = shutil.which(constants.BINARY_RESOURCE_TOOL)
    if tool is None:
        logging_ext.get_human_logger("version").debug(
            "%s not available; skipping resource lookup", constants.BINARY_RESOURCE_TOOL
        )
        return None
    result = exec_utils.run_command(
        [tool, "-v", str(executable)],
        event="version_resource",
        timeout=30,
        token=token,
        category="version",
    )
    if not result.ok:
        return None
    fallback: str | None = None
    for line in result.lines:
        match = _RESOURCE_LINE.match(line)
        if match is None:
            continue
        if match.group(1).lower() == "product":
            return match.group(2)
        fallback = fallback or match.group(2)
    return fallback


def _walk_names(root: Path, max_depth: int) -> Iterator[tuple[str, bool]]:
    root_depth = len(root.parts)
    for current, dirnames, filenames in os.walk(root):
        depth = len(Path(current).parts) - root_depth
        dirnames.sort()
        if depth >= max_depth:
            dirnames[:] = []
        for name in dirnames:
            yield name, True
        for name in sorted(filenames):
            yield name, False


def _token_from_name(name: str) -> str | None:
    year = _YEAR_TOKEN.search(name)
    if year:
        return year.group(1)
    dotted = _DOTTED_TOKEN.search(name)
    if dotted:
        return dotted.group(0)
    return None


def scan_names(root: Path, max_depth: int = constants.NAME_SCAN_MAX_DEPTH) -> str | None:
    """!
    @brief Look for a version token in names below ``root``.
    @details Names mentioning Photoshop are trusted for both years and dotted
    versions; other directories only for a year token. The newest match wins.
    """

    product_hits: List[str] = []
    directory_hits: List[str] = []
    for name, is_dir in _walk_names(root, max_depth):
        if "photoshop" in name.lower():
            token = _token_from_name(name)
            if token:
                product_hits.append(token)
        elif is_dir:
            year = _YEAR_TOKEN.search(name)
            if year:
                directory_hits.append(year.group(1))
    hits = product_hits or directory_hits
    if not hits:
        return None
    return max(hits, key=_token_rank)


def _token_rank(token: str) -> tuple[int, int]:
    bucket = bucket_from_raw(token)
    order = [ProductBucket.LEGACY, ProductBucket.MID, ProductBucket.LATEST]
    match = _NUMBER_PATTERN.search(token)
    return (order.index(bucket) if bucket else -1, int(match.group(1)) if match else 0)


def scan_content(executable: Path, limit: int = constants.CONTENT_SCAN_LIMIT) -> str | None:
    """!
    @brief Search the executable's bytes for a version near the product name.
    @details UTF-16LE strings are matched by also scanning a copy with NUL
    bytes removed.
    """

    try:
        with executable.open("rb") as handle:
            data = handle.read(limit)
    except OSError as exc:
        logging_ext.get_human_logger("version").debug("Cannot read %s: %s", executable, exc)
        return None
    for blob in (data, data.replace(b"\x00", b"")):
        match = _PRODUCT_STRING.search(blob)
        if match:
            return match.group(1).decode("ascii", errors="replace")
    return None


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


def _signal(method: VersionMethod, raw: str | None, bucket: ProductBucket) -> VersionSignal:
    return VersionSignal(
        method=method,
        detected_value=raw,
        confidence=METHOD_CONFIDENCE[method],
        bucket=bucket,
    )


def detect(
    root: Path,
    *,
    executables: Sequence[Path] | None = None,
    resource_reader: ResourceReader | None = None,
    token: CancellationToken | None = None,
) -> VersionSignal:
    """!
    @brief Run the detection cascade against ``root``.
    @details Later methods run only when every earlier one produced nothing
    usable, so a confident descriptor short-circuits the rest.
    @param root Installer source (or installed tree) to inspect.
    @param executables Binaries for the resource and content methods;
    defaults to ``root/Set-up.exe``.
    @param resource_reader Override for the binary resource method.
    @param token Cancellation token for the external resource lookup.
    @returns :class:`VersionSignal`; ``method`` is ``DEFAULT`` when nothing
    matched.
    """

    human_logger = logging_ext.get_human_logger("version")
    machine_logger = logging_ext.get_machine_logger()
    reader = resource_reader or (lambda binary: read_resource_version(binary, token=token))
    binaries = list(executables) if executables is not None else [root / constants.INSTALLER_EXECUTABLE]
    existing = [path for path in binaries if path.is_file()]

    def _methods() -> Iterable[tuple[VersionMethod, Callable[[], str | None]]]:
        yield VersionMethod.METADATA_FILE, lambda: read_descriptor_version(root)
        for binary in existing:
            yield VersionMethod.BINARY_RESOURCE, lambda binary=binary: reader(binary)
        yield VersionMethod.DIRECTORY_NAME, lambda: scan_names(root) if root.is_dir() else None
        for binary in existing:
            yield VersionMethod.CONTENT_SCAN, lambda binary=binary: scan_content(binary)

    signal: VersionSignal | None = None
    for method, probe in _methods():
        raw = probe()
        bucket = bucket_from_raw(raw)
        if bucket is None:
            human_logger.debug("Version method %s found nothing", method.value)
            continue
        signal = _signal(method, raw, bucket)
        break

    if signal is None:
        signal = _signal(VersionMethod.DEFAULT, None, DEFAULT_BUCKET)
        human_logger.debug("No version signal under %s; using default %s", root, DEFAULT_BUCKET.label)
    else:
        human_logger.info(
            "Detected Photoshop %s via %s (%s)",
            signal.bucket.label,
            signal.method.value,
            signal.detected_value,
        )

    machine_logger.info(
        "version_detect",
        extra={"event": "version_detect", "root": str(root), "signal": signal.to_dict()},
    )
    return signal


def adobe_root(prefix: Path) -> Path:
    return prefix / "drive_c" / "Program Files" / "Adobe"


def detect_installed(prefix: Path, **kwargs) -> VersionSignal:
    """!
    @brief Re-run the cascade over the installed tree inside ``prefix``.
    """

    root = adobe_root(prefix)
    if not root.is_dir():
        logging_ext.get_human_logger("version").debug("No installed tree at %s", root)
        return _signal(VersionMethod.DEFAULT, None, DEFAULT_BUCKET)
    executables = sorted(root.glob("*/Photoshop.exe"))
    return detect(root, executables=executables, **kwargs)


def resolve_precedence(pre: VersionSignal, post: VersionSignal | None) -> VersionSignal:
    """!
    @brief Pick the signal used for all post-install path construction.
    @details A post-install signal from a real method supersedes the
    pre-install guess; a post-install default never does.
    """

    if post is None or post.is_default:
        return pre
    if post.bucket is not pre.bucket:
        logging_ext.get_human_logger("version").warning(
            "Installer produced Photoshop %s although %s was expected",
            post.bucket.label,
            pre.bucket.label,
        )
    return post


def install_path(prefix: Path, bucket: ProductBucket) -> Path:
    return adobe_root(prefix) / f"Adobe Photoshop {bucket.label}"


def prefs_path(prefix: Path, bucket: ProductBucket, user: str | None = None) -> Path:
    username = user or os.environ.get("USER") or getpass.getuser()
    return (
        prefix
        / "drive_c"
        / "users"
        / username
        / "AppData"
        / "Roaming"
        / "Adobe"
        / f"Adobe Photoshop {bucket.label}"
    )


__all__ = [
    "DEFAULT_BUCKET",
    "METHOD_CONFIDENCE",
    "ProductBucket",
    "VersionMethod",
    "VersionSignal",
    "adobe_root",
    "bucket_from_raw",
    "detect",
    "detect_installed",
    "install_path",
    "prefs_path",
    "read_descriptor_version",
    "read_resource_version",
    "resolve_precedence",
    "scan_content",
    "scan_names",
]
