"""
Unit tests for camera management system.
"""

import pytest
import numpy as np
from unittest.mock import Mock, MagicMock, patch

import sys
sys.path.append('src')

from camera_manager import (
    CameraManager, MockCamera, OpenCVCamera, PiCamera, create_camera
)
from config import Config
from exceptions import CameraInitializationError, CaptureUnavailable


def no_delay_config(**overrides):
    return Config.create_test_config(CAMERA_STARTUP_DELAY='0', CAMERA_RESOLUTION='640x480', **overrides)


class TestMockCamera:
    """Test mock camera implementation."""

    def test_mock_camera_lifecycle(self):
        """Test mock camera start/stop lifecycle."""
        camera = MockCamera(no_delay_config())

        assert not camera.is_available()
        camera.start()
        assert camera.is_available()
        camera.stop()
        assert not camera.is_available()

    def test_mock_frame_capture(self):
        """Frames match the configured resolution."""
        camera = MockCamera(no_delay_config())
        camera.start()

        frame = camera.capture_frame()
        assert frame.shape == (480, 640, 3)
        assert frame.dtype == np.uint8
        assert camera.get_stats()['frames_captured'] == 1

    def test_capture_when_stopped(self):
        camera = MockCamera(no_delay_config())
        assert camera.capture_frame() is None


class TestOpenCVCamera:
    """Test the cv2.VideoCapture backend with the device mocked out."""

    def _capture(self, opened=True, read_result=None):
        capture = MagicMock()
        capture.isOpened.return_value = opened
        capture.read.return_value = read_result or (True, np.zeros((480, 640, 3), dtype=np.uint8))
        return capture

    def test_numeric_source_is_device_index(self):
        assert OpenCVCamera(no_delay_config(CAMERA_SOURCE='0')).source == 0

    def test_url_source_is_kept(self):
        url = 'rtsp://10.0.0.50/stream'
        assert OpenCVCamera(no_delay_config(CAMERA_SOURCE=url)).source == url

    def test_start_and_capture(self):
        capture = self._capture()
        with patch('camera_manager.cv2.VideoCapture', return_value=capture) as video_capture:
            camera = OpenCVCamera(no_delay_config())
            camera.start()

            video_capture.assert_called_once_with(0)
            assert camera.is_available()
            frame = camera.capture_frame()
            assert frame.shape == (480, 640, 3)

            camera.stop()
            capture.release.assert_called_once()
            assert not camera.is_available()

    def test_start_retries_then_fails(self):
        capture = self._capture(opened=False)
        with patch('camera_manager.cv2.VideoCapture', return_value=capture) as video_capture, \
                patch('camera_manager.time.sleep'):
            camera = OpenCVCamera(no_delay_config())
            with pytest.raises(CameraInitializationError, match="after 3 attempts"):
                camera.start()

        assert video_capture.call_count == 3
        assert not camera.is_available()

    def test_failed_read_returns_none_and_counts_error(self):
        capture = self._capture(read_result=(False, None))
        with patch('camera_manager.cv2.VideoCapture', return_value=capture):
            camera = OpenCVCamera(no_delay_config())
            camera.start()

            assert camera.capture_frame() is None
            assert camera.get_stats()['error_count'] == 1

    def test_capture_before_start(self):
        camera = OpenCVCamera(no_delay_config())
        with pytest.raises(CaptureUnavailable):
            camera.capture_frame()


class TestPiCamera:
    """Test the Picamera2 backend with the library mocked out."""

    def test_missing_library_fails_without_retry(self):
        with patch.dict(sys.modules, {'picamera2': None}), \
                patch('camera_manager.time.sleep') as sleep:
            camera = PiCamera(no_delay_config())
            with pytest.raises(CameraInitializationError, match="Picamera2 library not available"):
                camera.start()
        sleep.assert_not_called()

    def test_start_and_capture(self):
        device = Mock()
        device.capture_array.return_value = np.zeros((480, 640, 3), dtype=np.uint8)
        fake_module = Mock()
        fake_module.Picamera2.return_value = device

        with patch.dict(sys.modules, {'picamera2': fake_module}):
            camera = PiCamera(no_delay_config())
            camera.start()

            device.create_still_configuration.assert_called_once_with(
                main={"size": (640, 480), "format": "RGB888"}
            )
            device.start.assert_called_once()
            frame = camera.capture_frame()
            assert frame.shape == (480, 640, 3)

            camera.stop()
            device.stop.assert_called_once()

    def test_capture_error_returns_none(self):
        device = Mock()
        device.capture_array.side_effect = RuntimeError("sensor timeout")
        fake_module = Mock()
        fake_module.Picamera2.return_value = device

        with patch.dict(sys.modules, {'picamera2': fake_module}):
            camera = PiCamera(no_delay_config())
            camera.start()
            assert camera.capture_frame() is None
            assert camera.get_stats()['error_count'] == 1


class TestCreateCamera:
    """Test backend selection."""

    def test_backend_selection(self):
        assert isinstance(create_camera(no_delay_config(CAMERA_BACKEND='opencv')), OpenCVCamera)
        assert isinstance(create_camera(no_delay_config(CAMERA_BACKEND='picamera')), PiCamera)
        assert isinstance(create_camera(no_delay_config(CAMERA_BACKEND='mock')), MockCamera)

    def test_use_mock_overrides_backend(self):
        camera = create_camera(no_delay_config(CAMERA_BACKEND='opencv'), use_mock=True)
        assert isinstance(camera, MockCamera)


class TestCameraManager:
    """Test the high-level camera manager."""

    def test_request_frame(self):
        manager = CameraManager(no_delay_config(), use_mock=True)
        with manager.camera_session():
            frame = manager.request_frame()
            assert frame.shape == (480, 640, 3)
            assert manager.is_operational()
        assert not manager.is_operational()

    def test_request_frame_when_stopped(self):
        manager = CameraManager(no_delay_config(), use_mock=True)
        with pytest.raises(CaptureUnavailable, match="not running"):
            manager.request_frame()

    def test_request_frame_without_frame(self):
        manager = CameraManager(no_delay_config(), use_mock=True)
        manager.start()
        with patch.object(manager._camera, 'capture_frame', return_value=None):
            with pytest.raises(CaptureUnavailable, match="no frame"):
                manager.request_frame()
        manager.stop()

    def test_context_manager(self):
        with CameraManager(no_delay_config(), use_mock=True) as manager:
            assert manager.is_operational()
        assert not manager.is_operational()

    def test_system_info(self):
        manager = CameraManager(no_delay_config(), use_mock=True)
        info = manager.get_system_info()

        assert info['camera_type'] == 'MockCamera'
        assert info['configuration']['resolution'] == (640, 480)
        assert 'stats' in info


if __name__ == '__main__':
    pytest.main([__file__])
