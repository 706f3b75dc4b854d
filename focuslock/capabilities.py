"""
Capability negotiation.

The device decides what it can enforce; the server only records the
outcome. negotiate() is pure: it maps a requested strictness and the
device's reported capability flags to the level actually achievable,
plus human-readable warnings for every missing capability.
"""

from dataclasses import dataclass, field
from enum import StrEnum


class EnforcementLevel(StrEnum):
    TIMER_ONLY = "TIMER_ONLY"
    SOFT = "SOFT"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


_RANK = {
    EnforcementLevel.TIMER_ONLY: 0,
    EnforcementLevel.SOFT: 1,
    EnforcementLevel.MEDIUM: 2,
    EnforcementLevel.HARD: 3,
}

# Report keys accepted from clients, camelCase or snake_case
_FLAG_ALIASES = {
    "can_block_apps": ("can_block_apps", "canBlockApps"),
    "can_show_overlay": ("can_show_overlay", "canShowOverlay", "canShowOverlays"),
    "can_track_usage": ("can_track_usage", "canTrackUsage"),
    "can_run_in_background": ("can_run_in_background", "canRunInBackground", "canRunBackground"),
}


@dataclass(frozen=True)
class DeviceCapabilities:
    can_block_apps: bool = False
    can_show_overlay: bool = False
    can_track_usage: bool = False
    can_run_in_background: bool = False

    @classmethod
    def from_report(cls, report: dict | None) -> "DeviceCapabilities":
        report = report or {}
        flags = {}
        for name, aliases in _FLAG_ALIASES.items():
            flags[name] = any(bool(report.get(alias)) for alias in aliases)
        return cls(**flags)

    def to_dict(self) -> dict:
        return {
            "can_block_apps": self.can_block_apps,
            "can_show_overlay": self.can_show_overlay,
            "can_track_usage": self.can_track_usage,
            "can_run_in_background": self.can_run_in_background,
        }


@dataclass
class NegotiationResult:
    level: EnforcementLevel
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


def best_achievable(caps: DeviceCapabilities) -> EnforcementLevel:
    if caps.can_block_apps and caps.can_track_usage and caps.can_run_in_background:
        return EnforcementLevel.HARD
    if caps.can_block_apps or (caps.can_show_overlay and caps.can_track_usage):
        return EnforcementLevel.MEDIUM
    if caps.can_show_overlay or caps.can_track_usage:
        return EnforcementLevel.SOFT
    return EnforcementLevel.TIMER_ONLY


def negotiate(requested: str, caps: DeviceCapabilities) -> NegotiationResult:
    """Resolve min(requested, best achievable) and explain each gap."""
    requested_level = EnforcementLevel(requested)
    achievable = best_achievable(caps)
    level = min(requested_level, achievable, key=_RANK.__getitem__)

    warnings: list[str] = []
    if requested_level == EnforcementLevel.HARD and not caps.can_block_apps:
        warnings.append(
            "Hard enforcement requested but app blocking not available"
            " - falling back to overlays and notifications"
        )
    if (
        requested_level in (EnforcementLevel.MEDIUM, EnforcementLevel.HARD)
        and not caps.can_show_overlay
    ):
        warnings.append("Visual blocking not available - will rely on notifications only")
    if not caps.can_track_usage:
        warnings.append(
            "App usage tracking not available - cannot detect when blocked apps are opened"
        )
    if not caps.can_run_in_background:
        warnings.append(
            "Background monitoring limited - enforcement may stop when app is minimized"
        )
    if achievable == EnforcementLevel.TIMER_ONLY:
        warnings.append(
            "No enforcement capabilities available - will function as task timer only"
        )
    if _RANK[level] < _RANK[requested_level]:
        warnings.append(f"Enforcement downgraded from {requested_level.value} to {level.value}")

    return NegotiationResult(level=level, warnings=warnings)
