"""
Resource management for the door monitoring system.

Consolidates memory monitoring, processed image persistence and system
status reporting into a cohesive module for small single-board deployments.
"""

import gc
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import psutil

from config import Config
from exceptions import PermissionDenied, StoreFailed
from models import ProcessedImage

logger = logging.getLogger(__name__)


class MemoryManager:
    """Memory management utilities."""

    def __init__(self, config: Config):
        self.config = config
        self.memory_threshold = config.performance.memory_threshold

    def get_memory_usage(self) -> float:
        """Get current memory usage as a ratio (0.0 to 1.0)."""
        try:
            return psutil.virtual_memory().percent / 100.0
        except Exception as e:
            logger.error(f"Error getting memory usage: {e}")
            return 0.5  # Default to 50% if unable to determine

    def is_memory_available(self) -> bool:
        """Check if memory usage is below threshold."""
        return self.get_memory_usage() < self.memory_threshold

    def force_cleanup(self) -> int:
        """Force garbage collection."""
        return gc.collect()

    def get_memory_info(self) -> Optional[dict]:
        """Get detailed memory information."""
        try:
            mem = psutil.virtual_memory()
            return {
                'total_mb': mem.total / (1024 * 1024),
                'available_mb': mem.available / (1024 * 1024),
                'used_mb': mem.used / (1024 * 1024),
                'percent': mem.percent,
            }
        except Exception as e:
            logger.error(f"Error getting memory info: {e}")
            return None


class ImageStore:
    """
    Persistence collaborator: writes processed images to the image directory
    and keeps at most ``storage.max_images`` of them.
    """

    def __init__(self, config: Config):
        self.config = config
        self.image_dir = Path(config.storage.image_dir)
        self.prefix = config.storage.image_prefix
        self.max_images = config.storage.max_images

    def ensure_directories(self) -> bool:
        """Ensure all required directories exist."""
        try:
            for directory in (self.config.storage.data_dir, self.image_dir,
                              self.config.storage.logs_dir):
                Path(directory).mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Error creating directories: {e}")
            return False

    def store(self, image: ProcessedImage) -> Path:
        """Write one image. Raises PermissionDenied or StoreFailed."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        file_path = self.image_dir / f"{self.prefix}{timestamp}.jpg"

        try:
            self.image_dir.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(image.data)
        except PermissionError as e:
            raise PermissionDenied(f"Image directory access denied: {e}") from e
        except OSError as e:
            raise StoreFailed(f"Failed to save image: {e}") from e

        logger.debug(f"Image saved: {file_path} ({image.size_kb}KB)")
        self.cleanup_old_images()
        return file_path

    def list_images(self) -> List[Path]:
        """Stored images, oldest first."""
        if not self.image_dir.exists():
            return []
        files = list(self.image_dir.glob(f"{self.prefix}*.jpg"))
        return sorted(files, key=lambda f: (f.stat().st_mtime, f.name))

    def cleanup_old_images(self) -> int:
        """Delete the oldest images beyond the retention limit."""
        try:
            files = self.list_images()
        except OSError as e:
            logger.error(f"Error listing images: {e}", exc_info=True)
            return 0

        excess = len(files) - self.max_images
        if excess <= 0:
            return 0

        deleted = 0
        for file_path in files[:excess]:
            try:
                file_path.unlink()
                deleted += 1
            except OSError as e:
                logger.error(f"Error deleting {file_path}: {e}", exc_info=True)

        logger.info(f"Cleaned up {deleted} old images")
        return deleted

    def get_image_count(self) -> int:
        try:
            return len(self.list_images())
        except OSError as e:
            logger.error(f"Error counting images: {e}")
            return 0

    def get_storage_info(self) -> Optional[dict]:
        """Get storage space information."""
        try:
            usage = psutil.disk_usage(str(self.config.storage.data_dir))
            return {
                'total_mb': usage.total / (1024 * 1024),
                'used_mb': usage.used / (1024 * 1024),
                'free_mb': usage.free / (1024 * 1024),
                'percent': (usage.used / usage.total) * 100
            }
        except Exception as e:
            logger.error(f"Error getting storage info: {e}")
            return None


class SystemMonitor:
    """
    Unified system resource monitoring.

    Combines memory monitoring, image storage usage and CPU temperature
    tracking into a single interface.
    """

    def __init__(self, config: Config, image_store: Optional[ImageStore] = None):
        self.config = config
        self.memory_manager = MemoryManager(config)
        self.image_store = image_store or ImageStore(config)

    def get_system_status(self) -> dict:
        """Get comprehensive system status."""
        return {
            'timestamp': datetime.now().isoformat(),
            'memory': self.memory_manager.get_memory_info(),
            'storage': self.image_store.get_storage_info(),
            'image_count': self.image_store.get_image_count(),
            'memory_available': self.memory_manager.is_memory_available(),
            'cpu_temp': self.get_cpu_temperature()
        }

    def should_skip_processing(self) -> bool:
        """Determine if processing should be skipped due to resource constraints."""
        if not self.memory_manager.is_memory_available():
            logger.warning(f"Skipping processing: Memory usage above "
                           f"{self.config.performance.memory_threshold * 100:.0f}%")
            return True
        return False

    def log_system_status(self) -> None:
        """Log current system status."""
        status = self.get_system_status()
        if status['memory']:
            logger.info(f"Memory: {status['memory']['percent']:.1f}% used "
                        f"({status['memory']['available_mb']:.0f}MB available)")
        if status['storage']:
            logger.info(f"Storage: {status['storage']['percent']:.1f}% used "
                        f"({status['storage']['free_mb']:.0f}MB free)")
        if status['cpu_temp']:
            logger.info(f"CPU Temp: {status['cpu_temp']:.1f}°C")
        logger.info(f"Images stored: {status['image_count']}")

    def get_cpu_temperature(self) -> Optional[float]:
        """Get SoC temperature from sysfs. Returns None where unavailable."""
        try:
            with open("/sys/class/thermal/thermal_zone0/temp", "r") as f:
                temp_str = f.read()
            return float(temp_str) / 1000.0
        except (OSError, ValueError) as e:
            logger.debug(f"CPU temperature not available: {e}")
            return None
