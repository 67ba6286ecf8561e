"""
Camera management for the door monitoring system.
Provides frame capture behind a common interface with OpenCV, Picamera2 and
mock backends, plus error tracking and automatic recovery.
"""

from __future__ import annotations
import time
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional, Union
import logging

import cv2
import numpy as np

from config import Config
from exceptions import CameraError, CameraInitializationError, CaptureUnavailable

logger = logging.getLogger(__name__)


class CameraInterface(ABC):
    """Abstract interface for camera implementations."""

    @abstractmethod
    def start(self) -> None:
        """Start the camera."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the camera."""
        pass

    @abstractmethod
    def capture_frame(self) -> Optional[np.ndarray]:
        """Capture a single BGR frame."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if camera is available."""
        pass

    @abstractmethod
    def get_stats(self) -> dict:
        """Get camera statistics."""
        pass


class _RecoveringCamera(CameraInterface):
    """Shared retrying start and error-count recovery for hardware backends."""

    def __init__(self, config: Config):
        self.config = config
        self._is_running = False
        self._lock = threading.Lock()
        self._last_error_time = 0
        self._error_count = 0
        self._max_retries = 3
        self._retry_delay = 1.0

    def start(self) -> None:
        """Initialize and start the camera with retry logic."""
        if self._is_running:
            logger.warning("Camera is already running")
            return

        self._check_dependencies()
        retry_count = 0
        while retry_count < self._max_retries:
            try:
                self._initialize_camera()
                self._is_running = True
                logger.info("Camera started successfully")
                return
            except CameraInitializationError as e:
                retry_count += 1
                logger.error(f"Camera initialization attempt {retry_count} failed: {e}")
                if retry_count < self._max_retries:
                    time.sleep(self._retry_delay * retry_count)
                else:
                    raise CameraInitializationError(
                        f"Failed to initialize camera after {self._max_retries} attempts"
                    ) from e

    def _check_dependencies(self) -> None:
        """Fail fast, without retries, when the backend cannot work at all."""
        pass

    @abstractmethod
    def _initialize_camera(self) -> None:
        pass

    def is_available(self) -> bool:
        return self._is_running

    def get_stats(self) -> dict:
        return {
            "is_running": self._is_running,
            "error_count": self._error_count,
            "last_error_time": self._last_error_time,
        }

    def _handle_capture_error(self, error_msg: str) -> None:
        """Track capture errors and restart the camera when they pile up."""
        self._error_count += 1
        self._last_error_time = time.time()
        logger.error(f"Camera capture error: {error_msg}")

        if self._error_count > 10:
            logger.warning("Too many camera errors, attempting restart")
            try:
                self.stop()
                time.sleep(2)
                self.start()
                self._error_count = 0
            except CameraError as e:
                logger.error(f"Camera restart failed: {e}")

    def _reset_error_count(self) -> None:
        """Reset error count after successful operation."""
        if self._error_count > 0:
            self._error_count = max(0, self._error_count - 1)


class OpenCVCamera(_RecoveringCamera):
    """USB webcam or network stream via cv2.VideoCapture."""

    def __init__(self, config: Config):
        super().__init__(config)
        self.capture = None
        source = config.camera.source
        self.source: Union[int, str] = int(source) if source.isdigit() else source
        logger.info(f"Initializing OpenCV camera (source: {self.source})")

    def _initialize_camera(self) -> None:
        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            capture.release()
            raise CameraInitializationError(f"Could not open video source {self.source}")

        width, height = self.config.camera.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.capture = capture
        time.sleep(self.config.camera.startup_delay)

    def stop(self) -> None:
        if not self._is_running:
            return
        with self._lock:
            if self.capture is not None:
                self.capture.release()
                self.capture = None
        self._is_running = False
        logger.info("Camera stopped successfully")

    def capture_frame(self) -> Optional[np.ndarray]:
        if not self._is_running or self.capture is None:
            raise CaptureUnavailable("Camera not initialized")

        with self._lock:
            ret, frame = self.capture.read()

        if not ret or frame is None:
            self._handle_capture_error(f"read failed on source {self.source}")
            return None

        self._reset_error_count()
        return frame


class PiCamera(_RecoveringCamera):
    """
    Raspberry Pi camera using Picamera2.
    Picamera2 is imported on start so the module loads on any platform.
    """

    def __init__(self, config: Config):
        super().__init__(config)
        self.camera = None
        logger.info("Initializing PiCamera manager")

    def _check_dependencies(self) -> None:
        try:
            import picamera2  # noqa: F401
        except ImportError:
            raise CameraInitializationError("Picamera2 library not available")

    def _initialize_camera(self) -> None:
        from picamera2 import Picamera2

        try:
            self.camera = Picamera2()
        except Exception as e:
            raise CameraInitializationError(f"Failed to open camera: {e}") from e

        try:
            still_config = self.camera.create_still_configuration(
                main={"size": self.config.camera.resolution, "format": "RGB888"}
            )
            self.camera.configure(still_config)
        except Exception as e:
            raise CameraInitializationError(f"Failed to configure camera: {e}") from e

        try:
            self.camera.start()
            time.sleep(self.config.camera.startup_delay)
        except Exception as e:
            raise CameraInitializationError(f"Failed to start camera: {e}") from e

    def stop(self) -> None:
        if not self._is_running:
            return
        try:
            if self.camera:
                self.camera.stop()
                self.camera = None
            logger.info("Camera stopped successfully")
        except Exception as e:
            logger.error(f"Error stopping camera: {e}")
        finally:
            self._is_running = False

    def capture_frame(self) -> Optional[np.ndarray]:
        if not self._is_running or not self.camera:
            raise CaptureUnavailable("Camera not initialized")

        try:
            with self._lock:
                # RGB888 arrives in BGR byte order, which is what OpenCV expects
                frame = self.camera.capture_array("main").copy()
            self._reset_error_count()
            return frame
        except Exception as e:
            self._handle_capture_error(f"frame capture: {e}")
            return None


class MockCamera(CameraInterface):
    """Mock camera for testing and development."""

    def __init__(self, config: Config):
        self.config = config
        self._is_running = False
        self._frames_captured = 0
        logger.info("Initializing Mock camera manager")

    def start(self) -> None:
        self._is_running = True
        logger.info("Mock camera started")

    def stop(self) -> None:
        self._is_running = False
        logger.info("Mock camera stopped")

    def capture_frame(self) -> Optional[np.ndarray]:
        """Return a random BGR frame at the configured resolution."""
        if not self._is_running:
            return None

        width, height = self.config.camera.resolution
        self._frames_captured += 1
        return np.random.randint(0, 255, (height, width, 3), dtype=np.uint8)

    def is_available(self) -> bool:
        return self._is_running

    def get_stats(self) -> dict:
        return {
            "is_running": self._is_running,
            "error_count": 0,
            "last_error_time": 0,
            "frames_captured": self._frames_captured,
        }


def create_camera(config: Config, use_mock: bool = False) -> CameraInterface:
    """Pick the backend named in the configuration."""
    backend = "mock" if use_mock else config.camera.backend
    if backend == "mock":
        return MockCamera(config)
    if backend == "picamera":
        return PiCamera(config)
    return OpenCVCamera(config)


class CameraManager:
    """
    High-level camera manager used by the capture loop.
    ``request_frame`` is blocking and is meant to run in a worker thread.
    """

    def __init__(self, config: Config, use_mock: bool = False):
        self.config = config
        self._camera: CameraInterface = create_camera(config, use_mock)
        logger.info(f"Camera manager initialized with {type(self._camera).__name__}")

    @contextmanager
    def camera_session(self):
        """Context manager for camera operations."""
        try:
            self._camera.start()
            yield self._camera
        finally:
            self._camera.stop()

    def request_frame(self) -> np.ndarray:
        """Capture one frame. Raises CaptureUnavailable when none can be produced."""
        if not self._camera.is_available():
            raise CaptureUnavailable("Camera is not running")

        frame = self._camera.capture_frame()
        if frame is None:
            raise CaptureUnavailable("Camera returned no frame")
        return frame

    def start(self) -> None:
        self._camera.start()

    def stop(self) -> None:
        self._camera.stop()

    def is_operational(self) -> bool:
        return self._camera.is_available()

    def get_system_info(self) -> dict:
        """Get comprehensive camera system information."""
        return {
            "camera_type": type(self._camera).__name__,
            "configuration": {
                "backend": self.config.camera.backend,
                "source": self.config.camera.source,
                "resolution": self.config.camera.resolution,
            },
            "stats": self._camera.get_stats(),
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
