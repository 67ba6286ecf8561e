"""
Utility helpers for the door monitoring system.

This module contains:
- PerformanceTimer: Timing utility for performance measurement
- DetectionFormatter: Log formatting for inference results
"""

import logging
import time
from typing import Sequence

from models import RawDetection

logger = logging.getLogger(__name__)


class PerformanceTimer:
    """Performance timing utility."""

    def __init__(self, operation_name="Operation", slow_threshold=1.0):
        self.operation_name = operation_name
        self.slow_threshold = slow_threshold
        self.start_time = None
        self.end_time = None

    def start(self):
        """Start timing."""
        self.start_time = time.time()
        return self

    def stop(self):
        """Stop timing and return duration."""
        if self.start_time is None:
            return 0.0

        self.end_time = time.time()
        duration = self.end_time - self.start_time
        return duration

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        duration = self.stop()
        if duration > self.slow_threshold:
            logger.info(f"{self.operation_name} took {duration:.2f}s")


class DetectionFormatter:
    """Human-readable summaries of detection batches."""

    @staticmethod
    def summary(detections: Sequence[RawDetection]) -> str:
        if not detections:
            return "No detections found"
        return f"Found {len(detections)} objects"

    @staticmethod
    def format_detections(detections: Sequence[RawDetection]) -> str:
        """One line per detection, e.g. '1. door_open (0.92)'."""
        if not detections:
            return "no objects detected"
        return "\n".join(
            f"{index}. {detection.label} ({detection.confidence:.2f})"
            for index, detection in enumerate(detections, start=1)
        )
