"""!
@brief Pure line filter for child-process output.
@details Wine and winetricks print a large amount of harmless diagnostics.
The filter decides, line by line, what reaches the main log; the process log
always receives the unfiltered transcript. Allow patterns win over deny
patterns so real failures that happen to share a prefix with noise survive.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Pattern, Sequence, Tuple

DEFAULT_DENY_PATTERNS: Tuple[str, ...] = (
    r"^\s*$",
    r"^[0-9a-f]{4}:fixme:",
    r"^fixme:",
    r"^[0-9a-f]{4}:err:ole:",
    r"^[0-9a-f]{4}:err:winediag:.*nodrv_CreateWindow",
    r"^[0-9a-f]{4}:warn:",
    r"winemenubuilder",
    r"^wine: configuration in .* has been updated\.?$",
    r"^wine: created the configuration directory",
    r"(?i)mono is not installed",
    r"(?i)gecko is not installed",
    r"^Executing (w_do_call|load_|cd )",
    r"^------------------------------------------------------$",
)
"""!
@brief Known-benign noise emitted by Wine, Proton, and winetricks.
"""

DEFAULT_ALLOW_PATTERNS: Tuple[str, ...] = (
    r"(?i)\bfailed\b",
    r"(?i)\bnot found\b",
    r"(?i)err:module:import_dll",
    r"(?i)\bsha256sum mismatch\b",
)
"""!
@brief Lines that must be kept even when they match a deny pattern.
"""


@dataclass(frozen=True)
class OutputFilter:
    """!
    @brief Compiled allow/deny pattern lists.
    """

    deny: Tuple[Pattern[str], ...] = field(default_factory=tuple)
    allow: Tuple[Pattern[str], ...] = field(default_factory=tuple)

    @classmethod
    def from_patterns(
        cls,
        deny: Iterable[str] = DEFAULT_DENY_PATTERNS,
        allow: Iterable[str] = DEFAULT_ALLOW_PATTERNS,
    ) -> "OutputFilter":
        return cls(
            deny=tuple(re.compile(pattern) for pattern in deny),
            allow=tuple(re.compile(pattern) for pattern in allow),
        )

    def keep(self, line: str) -> bool:
        """!
        @brief Return ``True`` when ``line`` belongs in the main log.
        """

        text = line.rstrip("\r\n")
        if any(pattern.search(text) for pattern in self.allow):
            return True
        return not any(pattern.search(text) for pattern in self.deny)

    def apply(self, lines: Sequence[str]) -> List[str]:
        return [line for line in lines if self.keep(line)]


DEFAULT_FILTER = OutputFilter.from_patterns()


__all__ = [
    "DEFAULT_ALLOW_PATTERNS",
    "DEFAULT_DENY_PATTERNS",
    "DEFAULT_FILTER",
    "OutputFilter",
]
