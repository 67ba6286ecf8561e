"""
Consolidated exception hierarchy for the door monitoring system.

This module provides a unified exception hierarchy that allows for:
- Cycle-scoped error handling in the capture loop
- Hierarchical exception catching (e.g., catch all CameraError)
- Clear categorization of error types
"""


# =============================================================================
# Base Exception
# =============================================================================

class DoorMonitorError(Exception):
    """Base exception for all door monitor errors."""
    pass


class ConfigurationError(DoorMonitorError):
    """Raised when required configuration is missing or inconsistent."""
    pass


# =============================================================================
# Hardware Errors
# =============================================================================

class HardwareError(DoorMonitorError):
    """Base exception for hardware-related errors."""
    pass


# Camera Errors
class CameraError(HardwareError):
    """Base exception for camera-related errors."""
    pass


class CameraInitializationError(CameraError):
    """Raised when camera initialization fails."""
    pass


class CaptureUnavailable(CameraError):
    """Raised when a frame cannot be captured for the current cycle."""
    pass


# =============================================================================
# Processing Errors
# =============================================================================

class ProcessingError(DoorMonitorError):
    """Base exception for processing-related errors."""
    pass


class PipelineError(ProcessingError):
    """Raised when a captured frame cannot be turned into a processed image."""

    DECODE_FAILED = "decode_failed"
    ENCODE_FAILED = "encode_failed"

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)


# Inference Errors
class InferenceError(ProcessingError):
    """Raised when door detection inference fails."""
    pass


class ModelNotReady(InferenceError):
    """Raised when inference is requested before the model is loaded."""
    pass


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(DoorMonitorError):
    """Base exception for image persistence errors."""
    pass


class StoreFailed(StorageError):
    """Raised when an image could not be written."""
    pass


class PermissionDenied(StorageError):
    """Raised when the image directory is not writable."""
    pass


# =============================================================================
# Notification Errors
# =============================================================================

class NotificationError(DoorMonitorError):
    """Base exception for notification-related errors."""
    pass


class NotifyFailed(NotificationError):
    """Raised when the actuator did not acknowledge a request."""

    def __init__(self, message: str, status_code=None):
        self.status_code = status_code
        super().__init__(message)
