"""Tests for settings loading."""

import pytest

from focuslock import config
from focuslock.config import PushSettings, Settings, load_settings


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yaml")
        assert isinstance(settings, Settings)
        assert settings.event_history_size > 0

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text(
            "scheduler:\n"
            "  interval_seconds: 5\n"
            "  auto_create_session: true\n"
            "push:\n"
            "  mode: fallback\n"
            "  dry_run: true\n"
            "events:\n"
            "  history_size: 10\n"
            "api:\n"
            "  cors_origins: https://app.example\n"
            "log_level: DEBUG\n"
        )
        settings = load_settings(path)

        assert settings.scheduler.interval_seconds == 5.0
        assert settings.scheduler.auto_create_session is True
        assert settings.push.mode == "fallback"
        assert settings.push.dry_run is True
        assert settings.event_history_size == 10
        assert settings.cors_origins == "https://app.example"
        assert settings.log_level == "DEBUG"

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text("scheduler:\n  warp_speed: 9\n")
        assert not hasattr(load_settings(path).scheduler, "warp_speed")

    def test_bad_push_mode(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text("push:\n  mode: sometimes\n")
        with pytest.raises(ValueError, match="push.mode"):
            load_settings(path)

    @pytest.mark.parametrize("content", ["- a\n- b\n", "scheduler: [unclosed\n"])
    def test_malformed_file(self, tmp_path, content):
        path = tmp_path / "focuslock.yaml"
        path.write_text(content)
        with pytest.raises(ValueError):
            load_settings(path)

    def test_env_config_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("events:\n  history_size: 7\n")
        monkeypatch.setenv("FOCUSLOCK_CONFIG", str(path))
        assert load_settings().event_history_size == 7

    def test_quoted_booleans(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text('scheduler:\n  auto_create_session: "false"\npush:\n  dry_run: "yes"\n')
        settings = load_settings(path)
        assert settings.scheduler.auto_create_session is False
        assert settings.push.dry_run is True

    def test_unparseable_boolean(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text("push:\n  dry_run: maybe\n")
        with pytest.raises(ValueError, match="push.dry_run"):
            load_settings(path)

    def test_bad_number(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text("scheduler:\n  interval_seconds: soon\n")
        with pytest.raises(ValueError, match="scheduler.interval_seconds"):
            load_settings(path)

    def test_push_mode_checked_without_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            config, "Settings", lambda: Settings(push=PushSettings(mode="sometimes"))
        )
        with pytest.raises(ValueError, match="push.mode"):
            load_settings(tmp_path / "absent.yaml")

    def test_push_delivery_settings(self, tmp_path):
        path = tmp_path / "focuslock.yaml"
        path.write_text("push:\n  timeout_seconds: 2\n  background: false\n")
        settings = load_settings(path)
        assert settings.push.timeout_seconds == 2.0
        assert settings.push.background is False
