"""!
@brief Runtime candidate discovery and selection.
@details Enumerates the Wine/Proton binaries reachable on ``PATH`` (with the
configured runtime prefix searched first), extracts a best-effort version
string, classifies each binary into a compatibility tier, and ranks the
results. Detection has no side effects; the candidate list is rebuilt on every
call and handed to :func:`select_runtime` by value.
"""

from __future__ import annotations

import os
import re
import shutil
import sys
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Sequence

from . import constants, exec_utils, logging_ext
from .errors import EnvironmentNotFound


class RuntimeTier(Enum):
    """!
    @brief Compatibility tiers, best first.
    """

    PREFERRED = "preferred"
    STANDARD = "standard"
    FALLBACK = "fallback"


_TIER_ORDER: Dict[RuntimeTier, int] = {
    RuntimeTier.PREFERRED: 0,
    RuntimeTier.STANDARD: 1,
    RuntimeTier.FALLBACK: 2,
}

_VERSION_PATTERN = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


@dataclass(frozen=True)
class RuntimeCandidate:
    """!
    @brief One discovered runtime binary.
    @details Immutable; ``candidate_id`` is the 1-based rank assigned after
    sorting so it can be used directly with ``--runtime``.
    """

    candidate_id: int
    name: str
    executable_path: str
    reported_version: str
    tier: RuntimeTier
    is_recommended: bool = False
    compatibility_warning: str | None = None

    @property
    def major(self) -> int | None:
        return parse_major_version(self.reported_version)

    @property
    def bin_dir(self) -> str:
        return os.path.dirname(self.executable_path)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.candidate_id,
            "name": self.name,
            "executable_path": self.executable_path,
            "reported_version": self.reported_version,
            "tier": self.tier.value,
            "is_recommended": self.is_recommended,
            "compatibility_warning": self.compatibility_warning,
        }

    def describe(self) -> str:
        version = self.reported_version or "version unknown"
        label = f"{self.candidate_id}) {self.name} [{version}] ({self.tier.value})"
        if self.is_recommended:
            label += " - recommended"
        if self.compatibility_warning:
            label += f" - {self.compatibility_warning}"
        return label


VersionProbe = Callable[[str], str]


def parse_major_version(reported: str | None) -> int | None:
    """!
    @brief Extract the leading major number from a ``--version`` string.
    @details ``"wine-9.0"`` yields ``9`` and ``"wine-10.0 (Staging)"`` yields
    ``10``. Strings without digits yield ``None``.
    """

    if not reported:
        return None
    match = _VERSION_PATTERN.search(reported)
    if match is None:
        return None
    return int(match.group(1))


def classify_tier(name: str, reported_version: str | None) -> tuple[RuntimeTier, str | None]:
    """!
    @brief Map a runtime and its version to a tier and optional warning.
    """

    if name == constants.PROTON_GE_BINARY:
        return RuntimeTier.PREFERRED, None

    major = parse_major_version(reported_version)
    if major is None:
        return RuntimeTier.STANDARD, None
    if major >= constants.RUNTIME_EXPERIMENTAL_MAJOR:
        return (
            RuntimeTier.FALLBACK,
            f"version {major} is experimental; initialization is slower and may be unstable",
        )
    if major < constants.RUNTIME_STABLE_MAJOR:
        return RuntimeTier.PREFERRED, None
    return RuntimeTier.STANDARD, None


def build_search_path(runtime_prefix: str | None = None, base_path: str | None = None) -> str:
    """!
    @brief Compose the ``PATH`` used for discovery.
    @details ``<runtime_prefix>/bin`` is searched before the inherited path.
    """

    inherited = base_path if base_path is not None else os.environ.get("PATH", os.defpath)
    if not runtime_prefix:
        return inherited
    prefix_bin = os.path.join(os.path.expanduser(runtime_prefix), "bin")
    return os.pathsep.join(part for part in (prefix_bin, inherited) if part)


def _probe_version(executable: str) -> str:
    result = exec_utils.run_command(
        [executable, "--version"],
        event="runtime_probe",
        timeout=constants.VERSION_PROBE_TIMEOUT,
        category="detect",
    )
    if result.returncode != 0 or result.timed_out:
        return ""
    for line in result.lines:
        if line.strip():
            return line.strip()
    return ""


def detect_runtimes(
    *,
    search_path: str | None = None,
    version_probe: VersionProbe | None = None,
    known_binaries: Sequence[tuple[str, bool]] = constants.KNOWN_RUNTIME_BINARIES,
) -> List[RuntimeCandidate]:
    """!
    @brief Discover runtime binaries and return them ranked.
    @details Candidates are ordered by tier and then by discovery order; the
    first one is marked recommended. Binaries resolving to the same real path
    are reported once.
    @param search_path ``PATH``-style string to search; defaults to the host
    ``PATH``.
    @param version_probe Callable returning the ``--version`` output for an
    executable path.
    @param known_binaries ``(name, probe)`` pairs to look for.
    @returns Possibly empty list of :class:`RuntimeCandidate`.
    """

    human_logger = logging_ext.get_human_logger("detect")
    machine_logger = logging_ext.get_machine_logger()
    probe = version_probe or _probe_version

    discovered: List[RuntimeCandidate] = []
    seen_paths: set[str] = set()
    for name, should_probe in known_binaries:
        executable = shutil.which(name, path=search_path)
        if not executable:
            human_logger.debug("Runtime %s not found on PATH", name)
            continue
        real_path = os.path.realpath(executable)
        if real_path in seen_paths:
            human_logger.debug("Runtime %s resolves to an already listed binary", name)
            continue
        seen_paths.add(real_path)

        reported = probe(executable) if should_probe else ""
        tier, warning = classify_tier(name, reported)
        if warning:
            human_logger.warning("%s: %s", name, warning)
        discovered.append(
            RuntimeCandidate(
                candidate_id=0,
                name=name,
                executable_path=executable,
                reported_version=reported,
                tier=tier,
                compatibility_warning=warning,
            )
        )

    ordered = sorted(
        enumerate(discovered),
        key=lambda pair: (_TIER_ORDER[pair[1].tier], pair[0]),
    )
    ranked = [
        replace(candidate, candidate_id=index, is_recommended=index == 1)
        for index, (_, candidate) in enumerate(ordered, start=1)
    ]

    machine_logger.info(
        "runtime_detection",
        extra={
            "event": "runtime_detection",
            "candidates": [candidate.to_dict() for candidate in ranked],
        },
    )
    human_logger.info("Found %d runtime candidate(s)", len(ranked))
    return ranked


def wine_executable(candidate: RuntimeCandidate, search_path: str | None = None) -> str:
    """!
    @brief Return the ``wine`` binary to drive for ``candidate``.
    @details Proton GE ships its Wine build under ``files/bin`` (or
    ``dist/bin``) next to the wrapper; when neither exists the ``wine`` found
    on ``search_path`` is used.
    """

    if candidate.name != constants.PROTON_GE_BINARY:
        return candidate.executable_path
    base = os.path.dirname(os.path.realpath(candidate.executable_path))
    for relative in (("files", "bin", "wine"), ("dist", "bin", "wine")):
        bundled = os.path.join(base, *relative)
        if os.access(bundled, os.X_OK):
            return bundled
    return shutil.which(constants.WINE_BINARY, path=search_path) or candidate.executable_path


def recommended_candidate(candidates: Sequence[RuntimeCandidate]) -> RuntimeCandidate | None:
    for candidate in candidates:
        if candidate.is_recommended:
            return candidate
    return candidates[0] if candidates else None


def find_candidate(
    candidates: Sequence[RuntimeCandidate], selector: str
) -> RuntimeCandidate | None:
    """!
    @brief Resolve a ``--runtime`` selector (alias or numeric id).
    """

    text = selector.strip().lower()
    if text.isdigit():
        wanted = int(text)
        for candidate in candidates:
            if candidate.candidate_id == wanted:
                return candidate
        return None
    name = constants.RUNTIME_ALIASES.get(text, text)
    for candidate in candidates:
        if candidate.name == name:
            return candidate
    return None


def select_runtime(
    candidates: Sequence[RuntimeCandidate],
    *,
    forced: str | None = None,
    interactive: bool | None = None,
    input_func: Callable[[str], str] | None = None,
    output_func: Callable[[str], None] | None = None,
) -> RuntimeCandidate:
    """!
    @brief Pick the runtime for this run.
    @details Order of resolution: a forced selector, the only candidate when
    exactly one exists, an interactive prompt when stdin is a TTY, otherwise
    the recommended candidate. An unknown forced selector is logged as an
    error and resolution continues with the next rule.
    @throws EnvironmentNotFound When ``candidates`` is empty.
    """

    human_logger = logging_ext.get_human_logger("detect")

    if not candidates:
        raise EnvironmentNotFound(
            "No Wine or Proton runtime found on PATH", step="SelectRuntime"
        )

    if forced:
        match = find_candidate(candidates, forced)
        if match is not None:
            human_logger.info("Using forced runtime %s (%s)", match.name, match.executable_path)
            return match
        human_logger.error("Requested runtime %r is not available", forced)

    if len(candidates) == 1:
        return candidates[0]

    default = recommended_candidate(candidates)
    assert default is not None

    if interactive is None:
        stdin = getattr(sys, "stdin", None)
        isatty = getattr(stdin, "isatty", None)
        interactive = bool(isatty and isatty())

    if not interactive:
        human_logger.info("Using recommended runtime %s", default.name)
        return default

    if input_func is None:
        input_func = input
    if output_func is None:
        output_func = print

    output_func("Available runtimes:")
    for candidate in candidates:
        output_func(f"  {candidate.describe()}")

    while True:
        try:
            response = input_func(f"Select runtime [{default.candidate_id}]: ")
        except EOFError:
            return default
        text = response.strip()
        if not text:
            return default
        match = find_candidate(candidates, text)
        if match is not None:
            return match
        output_func(f"Invalid selection: {text}")


__all__ = [
    "RuntimeCandidate",
    "RuntimeTier",
    "build_search_path",
    "classify_tier",
    "detect_runtimes",
    "find_candidate",
    "parse_major_version",
    "recommended_candidate",
    "select_runtime",
    "wine_executable",
]
