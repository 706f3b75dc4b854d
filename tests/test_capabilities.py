"""Tests for capability negotiation."""

from focuslock.capabilities import (
    DeviceCapabilities,
    EnforcementLevel,
    best_achievable,
    negotiate,
)

FULL = DeviceCapabilities(True, True, True, True)
NONE = DeviceCapabilities()


class TestFromReport:
    def test_camel_case_keys(self):
        caps = DeviceCapabilities.from_report({"canBlockApps": True, "canTrackUsage": True})
        assert caps.can_block_apps is True
        assert caps.can_track_usage is True
        assert caps.can_show_overlay is False

    def test_snake_case_keys(self):
        caps = DeviceCapabilities.from_report({"can_run_in_background": 1})
        assert caps.can_run_in_background is True

    def test_empty_report(self):
        assert DeviceCapabilities.from_report(None) == NONE


class TestBestAchievable:
    def test_full_is_hard(self):
        assert best_achievable(FULL) == EnforcementLevel.HARD

    def test_blocking_without_background_is_medium(self):
        caps = DeviceCapabilities(can_block_apps=True, can_track_usage=True)
        assert best_achievable(caps) == EnforcementLevel.MEDIUM

    def test_overlay_only_is_soft(self):
        assert best_achievable(DeviceCapabilities(can_show_overlay=True)) == EnforcementLevel.SOFT

    def test_nothing_is_timer_only(self):
        assert best_achievable(NONE) == EnforcementLevel.TIMER_ONLY


class TestNegotiate:
    def test_full_capabilities_no_warnings(self):
        result = negotiate("HARD", FULL)
        assert result.level == EnforcementLevel.HARD
        assert result.warnings == []
        assert not result.degraded

    def test_never_upgrades(self):
        result = negotiate("SOFT", FULL)
        assert result.level == EnforcementLevel.SOFT

    def test_hard_without_blocking_downgrades_with_warning(self):
        caps = DeviceCapabilities(
            can_show_overlay=True, can_track_usage=True, can_run_in_background=True
        )
        result = negotiate("HARD", caps)
        assert result.level == EnforcementLevel.MEDIUM
        assert result.degraded
        assert any("app blocking not available" in w for w in result.warnings)
        assert "Enforcement downgraded from HARD to MEDIUM" in result.warnings

    def test_no_capabilities_is_timer_only(self):
        result = negotiate("MEDIUM", NONE)
        assert result.level == EnforcementLevel.TIMER_ONLY
        assert any("task timer only" in w for w in result.warnings)
        assert any("notifications only" in w for w in result.warnings)
