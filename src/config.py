"""
Configuration for the door monitoring system.

Settings are grouped into validated dataclass sections. Values come from the
environment (optionally seeded from a .env file) using SECTION_FIELD names,
e.g. SCHEDULE_CAPTURE_INTERVAL=50 or ACTUATOR_HOST=10.0.0.29.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CAMERA_BACKENDS = ("opencv", "picamera", "mock")
DETECTION_BACKENDS = ("roboflow", "mock")
TIE_BREAK_RULES = ("highest_confidence", "priority", "first_match")


@dataclass
class CameraConfig:
    """Capture device settings."""
    backend: str = "opencv"
    source: str = "0"  # device index or stream URL
    resolution: Tuple[int, int] = (1280, 720)
    startup_delay: float = 2.0

    def __post_init__(self):
        if self.backend not in CAMERA_BACKENDS:
            raise ValueError(f"Invalid camera backend: {self.backend}")
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Invalid camera resolution: {self.resolution}")
        if self.startup_delay < 0:
            raise ValueError("Startup delay cannot be negative")


@dataclass
class ImageConfig:
    """Canonical image settings (quality values are JPEG 1-100)."""
    max_dimension: int = 320
    max_size_kb: int = 500
    quality_start: int = 100
    quality_step: int = 10
    quality_floor: int = 10

    def __post_init__(self):
        if self.max_dimension <= 0:
            raise ValueError("Max dimension must be positive")
        if self.max_size_kb <= 0:
            raise ValueError("Max size must be positive")
        if not 1 <= self.quality_floor <= self.quality_start <= 100:
            raise ValueError(
                f"Invalid quality range: floor={self.quality_floor}, start={self.quality_start}"
            )
        if self.quality_step <= 0:
            raise ValueError("Quality step must be positive")


@dataclass
class DetectionConfig:
    """Object detection model and decision settings."""
    backend: str = "roboflow"
    api_key: str = ""
    model_name: str = ""
    model_version: int = 1
    api_url: str = "https://detect.roboflow.com"
    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5
    max_detections: int = 10
    door_confidence_threshold: float = 0.7
    tie_break: str = "highest_confidence"
    request_timeout: float = 30.0

    def __post_init__(self):
        if self.backend not in DETECTION_BACKENDS:
            raise ValueError(f"Invalid detection backend: {self.backend}")
        for name in ("confidence_threshold", "overlap_threshold", "door_confidence_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.max_detections <= 0:
            raise ValueError("Max detections must be positive")
        if self.tie_break not in TIE_BREAK_RULES:
            raise ValueError(f"Invalid tie-break rule: {self.tie_break}")
        if self.request_timeout <= 0:
            raise ValueError("Request timeout must be positive")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and bool(self.model_name)


@dataclass
class ScheduleConfig:
    """Countdown and capture cadence."""
    countdown_seconds: int = 10
    countdown_tick: float = 1.0
    capture_interval: float = 5.0
    max_photos: int = 0  # 0 = run until stopped
    discard_stale_results: bool = True

    def __post_init__(self):
        if self.countdown_seconds < 0:
            raise ValueError("Countdown cannot be negative")
        if self.countdown_tick <= 0:
            raise ValueError("Countdown tick must be positive")
        if self.capture_interval <= 0:
            raise ValueError("Capture interval must be positive")
        if self.max_photos < 0:
            raise ValueError("Max photos cannot be negative")


@dataclass
class ActuatorConfig:
    """Remote door actuator endpoint."""
    host: str = ""
    port: int = 80
    timeout: float = 60.0
    open_path: str = "/open"
    closed_path: str = "/closed"
    probe_path: str = "/"

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid actuator port: {self.port}")
        if self.timeout <= 0:
            raise ValueError("Actuator timeout must be positive")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class StorageConfig:
    """Local image persistence."""
    data_dir: Path = Path("data")
    image_prefix: str = "door_"
    save_images: bool = True
    max_images: int = 500
    image_dir: Optional[Path] = None
    logs_dir: Optional[Path] = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.image_dir is None:
            self.image_dir = self.data_dir / "images"
        if self.logs_dir is None:
            self.logs_dir = self.data_dir / "logs"
        if self.max_images <= 0:
            raise ValueError("Max images must be positive")


@dataclass
class PerformanceConfig:
    """Resource limits."""
    memory_threshold: float = 0.9
    worker_threads: int = 4

    def __post_init__(self):
        if not 0.0 < self.memory_threshold < 1.0:
            raise ValueError("Memory threshold must be between 0 and 1")
        if self.worker_threads <= 0:
            raise ValueError("Worker threads must be positive")


def _get_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value.strip() if value is not None else default


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {value!r}, using default {default}")
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {value!r}, using default {default}")
        return default


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_resolution(name: str, default: Tuple[int, int]) -> Tuple[int, int]:
    value = os.getenv(name)
    if not value:
        return default
    try:
        width, height = value.lower().split("x")
        return int(width), int(height)
    except ValueError:
        logger.warning(f"Invalid resolution format for {name}: {value!r}, using default")
        return default


class Config:
    """Top-level configuration assembled from the environment."""

    def __init__(self, load_env_file: bool = True):
        if load_env_file:
            load_dotenv()

        try:
            self.camera = CameraConfig(
                backend=_get_str("CAMERA_BACKEND", "opencv").lower(),
                source=_get_str("CAMERA_SOURCE", "0"),
                resolution=_get_resolution("CAMERA_RESOLUTION", (1280, 720)),
                startup_delay=_get_float("CAMERA_STARTUP_DELAY", 2.0),
            )
            self.image = ImageConfig(
                max_dimension=_get_int("IMAGE_MAX_DIMENSION", 320),
                max_size_kb=_get_int("IMAGE_MAX_SIZE_KB", 500),
                quality_start=_get_int("IMAGE_QUALITY_START", 100),
                quality_step=_get_int("IMAGE_QUALITY_STEP", 10),
                quality_floor=_get_int("IMAGE_QUALITY_FLOOR", 10),
            )
            self.detection = DetectionConfig(
                backend=_get_str("DETECTION_BACKEND", "roboflow").lower(),
                api_key=_get_str("ROBOFLOW_API_KEY", ""),
                model_name=_get_str("ROBOFLOW_MODEL", ""),
                model_version=_get_int("ROBOFLOW_MODEL_VERSION", 1),
                api_url=_get_str("ROBOFLOW_API_URL", "https://detect.roboflow.com"),
                confidence_threshold=_get_float("DETECTION_CONFIDENCE_THRESHOLD", 0.5),
                overlap_threshold=_get_float("DETECTION_OVERLAP_THRESHOLD", 0.5),
                max_detections=_get_int("DETECTION_MAX_DETECTIONS", 10),
                door_confidence_threshold=_get_float("DETECTION_DOOR_CONFIDENCE", 0.7),
                tie_break=_get_str("DETECTION_TIE_BREAK", "highest_confidence").lower(),
                request_timeout=_get_float("DETECTION_REQUEST_TIMEOUT", 30.0),
            )
            self.schedule = ScheduleConfig(
                countdown_seconds=_get_int("SCHEDULE_COUNTDOWN_SECONDS", 10),
                countdown_tick=_get_float("SCHEDULE_COUNTDOWN_TICK", 1.0),
                capture_interval=_get_float("SCHEDULE_CAPTURE_INTERVAL", 5.0),
                max_photos=_get_int("SCHEDULE_MAX_PHOTOS", 0),
                discard_stale_results=_get_bool("SCHEDULE_DISCARD_STALE_RESULTS", True),
            )
            self.actuator = ActuatorConfig(
                host=_get_str("ACTUATOR_HOST", ""),
                port=_get_int("ACTUATOR_PORT", 80),
                timeout=_get_float("ACTUATOR_TIMEOUT", 60.0),
            )
            self.storage = StorageConfig(
                data_dir=Path(_get_str("STORAGE_DATA_DIR", "data")),
                image_prefix=_get_str("STORAGE_IMAGE_PREFIX", "door_"),
                save_images=_get_bool("STORAGE_SAVE_IMAGES", True),
                max_images=_get_int("STORAGE_MAX_IMAGES", 500),
            )
            self.performance = PerformanceConfig(
                memory_threshold=_get_float("PERFORMANCE_MEMORY_THRESHOLD", 0.9),
                worker_threads=_get_int("PERFORMANCE_WORKER_THREADS", 4),
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self._validate()

    def _validate(self) -> None:
        """Cross-section checks."""
        if not self.actuator.host:
            raise ConfigurationError("Please set ACTUATOR_HOST in .env file")
        if self.schedule.capture_interval < self.schedule.countdown_tick:
            logger.warning(
                f"Capture interval ({self.schedule.capture_interval}s) is shorter than "
                f"the countdown tick ({self.schedule.countdown_tick}s)"
            )

    @classmethod
    def create_test_config(cls, **overrides) -> "Config":
        """
        Build a configuration with mock collaborators for tests.

        Keyword overrides use environment variable names, e.g.
        Config.create_test_config(SCHEDULE_CAPTURE_INTERVAL='50').
        Variables already present in the environment take precedence over
        the test defaults but not over explicit overrides.
        """
        test_env = {
            "ACTUATOR_HOST": "127.0.0.1",
            "CAMERA_BACKEND": "mock",
            "DETECTION_BACKEND": "mock",
        }
        values = {k: v for k, v in test_env.items() if k not in os.environ}
        values.update({k: str(v) for k, v in overrides.items()})

        saved = {k: os.environ.get(k) for k in values}
        os.environ.update(values)
        try:
            return cls(load_env_file=False)
        finally:
            for key, old in saved.items():
                if old is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = old

    def get_summary(self) -> dict:
        """Return a loggable summary (no credentials)."""
        return {
            "camera": {
                "backend": self.camera.backend,
                "source": self.camera.source,
                "resolution": self.camera.resolution,
            },
            "image": {
                "max_dimension": self.image.max_dimension,
                "max_size_kb": self.image.max_size_kb,
            },
            "detection": {
                "backend": self.detection.backend,
                "model": f"{self.detection.model_name}/{self.detection.model_version}",
                "api_key_set": bool(self.detection.api_key),
                "confidence_threshold": self.detection.confidence_threshold,
                "door_confidence_threshold": self.detection.door_confidence_threshold,
                "tie_break": self.detection.tie_break,
            },
            "schedule": {
                "countdown_seconds": self.schedule.countdown_seconds,
                "capture_interval": self.schedule.capture_interval,
                "max_photos": self.schedule.max_photos,
            },
            "actuator": {
                "url": self.actuator.base_url,
                "timeout": self.actuator.timeout,
            },
            "storage": {
                "image_dir": str(self.storage.image_dir),
                "save_images": self.storage.save_images,
                "max_images": self.storage.max_images,
            },
        }
