"""
Consolidated data models for the door monitoring system.

This module contains the value types passed around the capture loop:
- Raw detections from the inference collaborator
- The door state and scheduler phase enumerations
- Processed images
- Status snapshots published to observers
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


# =============================================================================
# Detection Models
# =============================================================================

class DoorState(Enum):
    """Discrete physical state of the door."""
    UNKNOWN = "unknown"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class RawDetection:
    """One per-object inference result. Geometry is carried but not interpreted."""
    label: str
    confidence: float
    bbox: Optional[Tuple[float, float, float, float]] = None  # x, y, width, height

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0 and 1, got {self.confidence}")


# =============================================================================
# Image Models
# =============================================================================

@dataclass(frozen=True)
class ProcessedImage:
    """Canonical grayscale JPEG, shared read-only between consumers."""
    data: bytes
    width: int
    height: int
    quality: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def size_kb(self) -> int:
        return len(self.data) // 1024


# =============================================================================
# Scheduler Models
# =============================================================================

class SchedulerPhase(Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    CAPTURING = "capturing"


@dataclass(frozen=True)
class CaptureCycle:
    """Snapshot of the countdown/capture timer."""
    phase: SchedulerPhase = SchedulerPhase.IDLE
    seconds_remaining: int = 0
    photos_taken: int = 0
    is_running: bool = False

    @property
    def is_countdown_phase(self) -> bool:
        return self.phase == SchedulerPhase.COUNTDOWN


# =============================================================================
# Status Models
# =============================================================================

@dataclass(frozen=True)
class ConnectivityStatus:
    """Actuator link status as of the last completed request."""
    is_connected: bool = False
    last_sent_state: str = ""
    status_text: str = "Not connected"
    last_status_code: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class PipelineStatus:
    """Fields published by the orchestrator for display."""
    is_model_loaded: bool = False
    inference_status: str = ""
    is_saving: bool = False
    save_status: str = ""
    images_saved: int = 0
    current_state: DoorState = DoorState.UNKNOWN
    last_detections: Tuple[RawDetection, ...] = field(default_factory=tuple)
    cycles_started: int = 0
    cycles_completed: int = 0
