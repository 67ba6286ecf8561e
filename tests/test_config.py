"""
Unit tests for configuration system.
"""

import os
import pytest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.append('src')

from config import (
    Config, ConfigurationError, CameraConfig, ImageConfig, DetectionConfig,
    ScheduleConfig, ActuatorConfig, StorageConfig, PerformanceConfig
)


class TestCameraConfig:
    """Test camera configuration validation."""

    def test_valid_camera_config(self):
        """Test default camera configuration."""
        config = CameraConfig()
        assert config.backend == "opencv"
        assert config.resolution == (1280, 720)

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid camera backend"):
            CameraConfig(backend="webcam9000")

    def test_invalid_resolution(self):
        with pytest.raises(ValueError, match="Invalid camera resolution"):
            CameraConfig(resolution=(0, 720))


class TestImageConfig:
    """Test image pipeline configuration validation."""

    def test_defaults(self):
        config = ImageConfig()
        assert config.max_dimension == 320
        assert config.max_size_kb == 500
        assert (config.quality_start, config.quality_step, config.quality_floor) == (100, 10, 10)

    def test_invalid_quality_range(self):
        with pytest.raises(ValueError, match="Invalid quality range"):
            ImageConfig(quality_floor=90, quality_start=50)

        with pytest.raises(ValueError, match="Invalid quality range"):
            ImageConfig(quality_start=120)

    def test_invalid_step(self):
        with pytest.raises(ValueError, match="Quality step must be positive"):
            ImageConfig(quality_step=0)


class TestDetectionConfig:
    """Test detection configuration validation."""

    def test_defaults(self):
        config = DetectionConfig()
        assert config.door_confidence_threshold == 0.7
        assert config.tie_break == "highest_confidence"
        assert not config.is_configured

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="confidence_threshold must be between 0 and 1"):
            DetectionConfig(confidence_threshold=1.5)

    def test_invalid_tie_break(self):
        with pytest.raises(ValueError, match="Invalid tie-break rule"):
            DetectionConfig(tie_break="coin_flip")

    def test_is_configured(self):
        assert DetectionConfig(api_key="key", model_name="doors").is_configured


class TestScheduleConfig:
    """Test scheduler configuration validation."""

    def test_defaults(self):
        config = ScheduleConfig()
        assert config.countdown_seconds == 10
        assert config.capture_interval == 5.0
        assert config.discard_stale_results is True

    def test_invalid_interval(self):
        with pytest.raises(ValueError, match="Capture interval must be positive"):
            ScheduleConfig(capture_interval=0)

    def test_negative_countdown(self):
        with pytest.raises(ValueError, match="Countdown cannot be negative"):
            ScheduleConfig(countdown_seconds=-1)


class TestActuatorConfig:
    """Test actuator endpoint configuration."""

    def test_base_url(self):
        config = ActuatorConfig(host="10.0.0.29", port=8080)
        assert config.base_url == "http://10.0.0.29:8080"

    def test_invalid_port(self):
        with pytest.raises(ValueError, match="Invalid actuator port"):
            ActuatorConfig(host="10.0.0.29", port=70000)


class TestStorageConfig:
    """Test storage configuration."""

    def test_derived_directories(self):
        config = StorageConfig(data_dir=Path("/tmp/doors"))
        assert config.image_dir == Path("/tmp/doors/images")
        assert config.logs_dir == Path("/tmp/doors/logs")

    def test_invalid_max_images(self):
        with pytest.raises(ValueError, match="Max images must be positive"):
            StorageConfig(max_images=0)


class TestPerformanceConfig:
    """Test performance configuration validation."""

    def test_invalid_memory_threshold(self):
        with pytest.raises(ValueError, match="Memory threshold must be between 0 and 1"):
            PerformanceConfig(memory_threshold=1.0)


class TestConfig:
    """Test main configuration class."""

    @patch.dict(os.environ, {'ACTUATOR_HOST': '10.0.0.29'}, clear=True)
    def test_valid_config(self):
        """Test configuration loading with only the required setting."""
        config = Config(load_env_file=False)

        assert config.actuator.host == '10.0.0.29'
        assert config.actuator.port == 80
        assert isinstance(config.camera, CameraConfig)
        assert isinstance(config.image, ImageConfig)
        assert isinstance(config.detection, DetectionConfig)
        assert isinstance(config.schedule, ScheduleConfig)
        assert isinstance(config.storage, StorageConfig)
        assert isinstance(config.performance, PerformanceConfig)

    def test_missing_actuator_host(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="ACTUATOR_HOST"):
                Config(load_env_file=False)

    @patch.dict(os.environ, {
        'ACTUATOR_HOST': '10.0.0.29',
        'ACTUATOR_PORT': '8080',
        'SCHEDULE_CAPTURE_INTERVAL': '50',
        'SCHEDULE_COUNTDOWN_SECONDS': '3',
        'CAMERA_RESOLUTION': '640x480',
        'DETECTION_TIE_BREAK': 'FIRST_MATCH',
        'STORAGE_SAVE_IMAGES': 'false',
        'ROBOFLOW_API_KEY': 'secret',
    }, clear=True)
    def test_environment_overrides(self):
        config = Config(load_env_file=False)
        assert config.actuator.base_url == 'http://10.0.0.29:8080'
        assert config.schedule.capture_interval == 50.0
        assert config.schedule.countdown_seconds == 3
        assert config.camera.resolution == (640, 480)
        assert config.detection.tie_break == 'first_match'
        assert config.storage.save_images is False
        assert config.detection.api_key == 'secret'

    @patch.dict(os.environ, {
        'ACTUATOR_HOST': '10.0.0.29',
        'CAMERA_RESOLUTION': 'invalid_format',
        'SCHEDULE_MAX_PHOTOS': 'many',
    }, clear=True)
    def test_invalid_values_fall_back_to_defaults(self):
        config = Config(load_env_file=False)
        assert config.camera.resolution == (1280, 720)
        assert config.schedule.max_photos == 0

    @patch.dict(os.environ, {
        'ACTUATOR_HOST': '10.0.0.29',
        'DETECTION_DOOR_CONFIDENCE': '2.0',
    }, clear=True)
    def test_section_validation_becomes_configuration_error(self):
        with pytest.raises(ConfigurationError, match="door_confidence_threshold"):
            Config(load_env_file=False)

    def test_create_test_config(self):
        config = Config.create_test_config()
        assert config.actuator.host
        assert config.camera.backend == 'mock'
        assert config.detection.backend == 'mock'

    def test_create_test_config_with_overrides(self):
        config = Config.create_test_config(SCHEDULE_CAPTURE_INTERVAL='50', ACTUATOR_PORT=8081)
        assert config.schedule.capture_interval == 50.0
        assert config.actuator.port == 8081
        # Overrides do not leak into the environment
        assert os.environ.get('SCHEDULE_CAPTURE_INTERVAL') != '50'

    def test_get_summary(self):
        config = Config.create_test_config(ROBOFLOW_API_KEY='secret')
        summary = config.get_summary()

        for section in ('camera', 'image', 'detection', 'schedule', 'actuator', 'storage'):
            assert section in summary
        assert summary['detection']['api_key_set'] is True
        assert 'secret' not in str(summary)


if __name__ == '__main__':
    pytest.main([__file__])
