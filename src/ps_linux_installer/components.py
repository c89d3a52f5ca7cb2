"""!
@brief Static component sequence installed into the prefix.
@details Each :class:`ComponentSpec` describes one independently retryable
step. The order matters: the Windows version is reasserted after steps that
are known to reset it, and the product setup runs only once its runtime
libraries are present. Every fatal component doubles as a checkpoint
milestone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, List, Mapping, Sequence, Tuple

from . import constants
from .version_detect import ProductBucket

_ALL_BUCKETS: FrozenSet[ProductBucket] = frozenset(ProductBucket)
_MODERN_BUCKETS: FrozenSet[ProductBucket] = frozenset({ProductBucket.MID, ProductBucket.LATEST})


@dataclass(frozen=True)
class ComponentSpec:
    """!
    @brief Immutable description of one install step.
    @details ``install_command`` is a template; ``{wine}``, ``{winetricks}``
    and ``{installer_exe}`` are substituted at run time.
    """

    name: str
    install_command: Tuple[str, ...]
    max_retries: int = 3
    retry_delay_seconds: int = 5
    timeout_seconds: int = 1800
    fatal: bool = True
    buckets: FrozenSet[ProductBucket] = _ALL_BUCKETS
    description: str = ""

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"{self.name}: max_retries must be at least 1, got {self.max_retries}")
        if self.retry_delay_seconds < 0:
            raise ValueError(f"{self.name}: retry_delay_seconds must not be negative")

    def applies_to(self, bucket: ProductBucket) -> bool:
        return bucket in self.buckets

    def render(self, context: Mapping[str, str]) -> List[str]:
        """!
        @brief Substitute the placeholders in :attr:`install_command`.
        @throws KeyError When a placeholder is missing from ``context``.
        """

        return [part.format(**context) for part in self.install_command]


def _winetricks(*verbs: str) -> Tuple[str, ...]:
    return ("{winetricks}", "-q", *verbs)


DEFAULT_COMPONENTS: Tuple[ComponentSpec, ...] = (
    ComponentSpec(
        name="windows_version",
        install_command=_winetricks("win10"),
        description="Set Windows version to 10",
    ),
    ComponentSpec(
        name="vc_runtimes",
        install_command=_winetricks("vcrun2010", "vcrun2012", "vcrun2013", "vcrun2015"),
        description="Visual C++ runtimes 2010-2015",
    ),
    ComponentSpec(
        name="core_fonts",
        install_command=_winetricks("atmlib", "corefonts"),
        description="Core fonts",
    ),
    ComponentSpec(
        name="font_smoothing",
        install_command=_winetricks("fontsmooth=rgb"),
        fatal=False,
        max_retries=2,
        description="RGB font smoothing",
    ),
    ComponentSpec(
        name="xml_gdiplus",
        install_command=_winetricks("msxml3", "msxml6", "gdiplus"),
        description="MSXML and GDI+",
    ),
    ComponentSpec(
        name="dotnet48",
        install_command=_winetricks("dotnet48"),
        timeout_seconds=3600,
        buckets=_MODERN_BUCKETS,
        description=".NET Framework 4.8",
    ),
    ComponentSpec(
        name="vcrun2019",
        install_command=_winetricks("vcrun2019"),
        buckets=_MODERN_BUCKETS,
        description="Visual C++ runtime 2019",
    ),
    ComponentSpec(
        name="d3d_overrides",
        install_command=_winetricks("dxvk_async=disabled", "d3d11=native"),
        fatal=False,
        max_retries=2,
        description="Direct3D overrides",
    ),
    ComponentSpec(
        name="windows_version_reassert",
        install_command=_winetricks("win10"),
        fatal=False,
        description="Reassert Windows 10",
    ),
    ComponentSpec(
        name="ie8",
        install_command=_winetricks("ie8"),
        fatal=False,
        max_retries=2,
        timeout_seconds=3600,
        description="Internet Explorer 8 engine",
    ),
    ComponentSpec(
        name="windows_version_after_ie8",
        install_command=_winetricks("win10"),
        fatal=False,
        description="Reassert Windows 10 after IE8",
    ),
    ComponentSpec(
        name="photoshop_setup",
        install_command=("{wine}", "{installer_exe}"),
        max_retries=1,
        timeout_seconds=7200,
        description="Adobe Photoshop setup",
    ),
    ComponentSpec(
        name="gdiplus_winxp",
        install_command=_winetricks("gdiplus_winxp"),
        fatal=False,
        max_retries=2,
        description="PNG/export GDI+ components",
    ),
)


def components_for(
    bucket: ProductBucket, specs: Sequence[ComponentSpec] = DEFAULT_COMPONENTS
) -> List[ComponentSpec]:
    return [spec for spec in specs if spec.applies_to(bucket)]


def milestones_for(
    bucket: ProductBucket, specs: Sequence[ComponentSpec] = DEFAULT_COMPONENTS
) -> List[str]:
    """!
    @brief Canonical checkpoint order for ``bucket``.
    @details Prefix initialisation first, then every applicable fatal
    component in sequence order.
    """

    return [constants.MILESTONE_PREFIX_INITIALIZED] + [
        spec.name for spec in components_for(bucket, specs) if spec.fatal
    ]


__all__ = ["ComponentSpec", "DEFAULT_COMPONENTS", "components_for", "milestones_for"]
