"""Tests for configuration loading."""

import pytest
import yaml


class TestFaceSettings:
    """Test cases for FaceSettings."""

    def test_defaults(self):
        from ferretto_attendance.constants import FaceSettings

        settings = FaceSettings()
        assert settings.match_threshold == 0.62
        assert settings.reg_samples_target == 20
        assert settings.scan_timeout_ms == 15000
        assert settings.max_ticks == 20

    @pytest.mark.parametrize("target, floor, expected", [
        (20, 8, 10),
        (30, 8, 15),
        (12, 8, 8),
        (6, 8, 6),
    ])
    def test_min_valid_samples(self, target, floor, expected):
        """max(target // 2, floor), never above the target."""
        from ferretto_attendance.constants import FaceSettings

        settings = FaceSettings(reg_samples_target=target, min_samples_floor=floor)
        assert settings.min_valid_samples == expected

    def test_explicit_tick_budget(self):
        from ferretto_attendance.constants import FaceSettings

        assert FaceSettings(reg_samples_target=20, reg_max_ticks=40).max_ticks == 40

    @pytest.mark.parametrize("kwargs", [
        {"reg_samples_target": 0},
        {"match_threshold": 1.5},
        {"scan_timeout_ms": -1},
        {"reg_max_ticks": -2},
    ])
    def test_invalid_values(self, kwargs):
        from ferretto_attendance.constants import FaceSettings

        with pytest.raises(ValueError):
            FaceSettings(**kwargs)

    def test_from_config(self):
        from ferretto_attendance.constants import FaceSettings

        settings = FaceSettings.from_config({"face": {"match_threshold": 0.7, "reg_samples_target": 30}})
        assert settings.match_threshold == 0.7
        assert settings.reg_samples_target == 30
        assert settings.reg_interval_ms == 180


class TestConfigLoading:
    """Test configuration file loading."""

    def test_default_config_file_structure(self):
        """The shipped config.yaml has every section."""
        from ferretto_attendance.constants import DEFAULT_CONFIG_PATH

        with open(DEFAULT_CONFIG_PATH) as f:
            config = yaml.safe_load(f)

        for section in ("face", "camera", "models", "storage", "geolocation"):
            assert section in config

    def test_missing_file_uses_defaults(self, tmp_path):
        from ferretto_attendance.constants import load_config

        assert load_config(tmp_path / "missing.yaml") == {}

    def test_broken_file_uses_defaults(self, tmp_path):
        from ferretto_attendance.constants import load_config

        path = tmp_path / "broken.yaml"
        path.write_text("face: [unclosed")
        assert load_config(path) == {}

    def test_reload(self, tmp_path):
        from ferretto_attendance.constants import get_config

        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({
            "face": {"scan_timeout_ms": 5000},
            "camera": {"front_device": 2, "resolution": [1280, 720]},
            "geolocation": {"provider": "fixed", "fixed": {"lat": 45.0, "lng": 7.6}},
        }))

        config = get_config()
        try:
            config.reload(path)
            assert config.face.scan_timeout_ms == 5000
            assert config.camera.front_device == 2
            assert config.camera.rear_device == 2
            assert (config.camera.width, config.camera.height) == (1280, 720)
            assert config.geolocation.fixed_coordinates == (45.0, 7.6)
            assert config.get("face", "scan_timeout_ms") == 5000
            assert config.get("face", "nope", default=1) == 1
        finally:
            config.reload()
