"""
Reduces per-frame detections to a single authoritative door state.

Pass 1 looks for explicit state labels ("open"/"opened", "closed"/"shut").
Pass 2 runs only when pass 1 finds nothing: a confident generic "door"
detection is taken to mean the door is open. Anything else is no change.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from config import Config, TIE_BREAK_RULES
from models import DoorState, RawDetection

logger = logging.getLogger(__name__)

OPEN_KEYWORDS = ("open", "opened")
CLOSED_KEYWORDS = ("closed", "shut")
DOOR_KEYWORD = "door"


def label_polarity(label: str) -> Optional[DoorState]:
    """Explicit state named by a label, if any (case-insensitive substring)."""
    lowered = label.lower()
    if any(keyword in lowered for keyword in OPEN_KEYWORDS):
        return DoorState.OPEN
    if any(keyword in lowered for keyword in CLOSED_KEYWORDS):
        return DoorState.CLOSED
    return None


class DetectionClassifier:
    """
    Two-pass door state classifier.

    ``classify`` returns DoorState.OPEN, DoorState.CLOSED or None. None means
    no authoritative state could be derived and the caller keeps its previous
    state.

    When a batch holds both open and closed labels the ``tie_break`` rule
    decides:

    - ``highest_confidence``: the most confident explicit label wins, open on
      equal confidence
    - ``priority``: open wins over closed
    - ``first_match``: the first explicit label in iteration order wins
    """

    def __init__(self, door_confidence_threshold: float = 0.7,
                 tie_break: str = "highest_confidence"):
        if tie_break not in TIE_BREAK_RULES:
            raise ValueError(f"Invalid tie-break rule: {tie_break}")
        self.door_confidence_threshold = door_confidence_threshold
        self.tie_break = tie_break

    @classmethod
    def from_config(cls, config: Config) -> "DetectionClassifier":
        return cls(
            door_confidence_threshold=config.detection.door_confidence_threshold,
            tie_break=config.detection.tie_break,
        )

    def classify(self, detections: Iterable[RawDetection]) -> Optional[DoorState]:
        detections = list(detections)
        if not detections:
            return None

        state = self._explicit_state(detections)
        if state is not None:
            return state

        for detection in detections:
            if (detection.confidence > self.door_confidence_threshold
                    and DOOR_KEYWORD in detection.label.lower()):
                logger.debug(f"Generic door detection '{detection.label}' "
                             f"({detection.confidence:.2f}) classified as open")
                return DoorState.OPEN

        return None

    def _explicit_state(self, detections: List[RawDetection]) -> Optional[DoorState]:
        matches: List[Tuple[DoorState, RawDetection]] = []
        for detection in detections:
            polarity = label_polarity(detection.label)
            if polarity is not None:
                matches.append((polarity, detection))

        if not matches:
            return None

        states = {state for state, _ in matches}
        if len(states) == 1:
            return matches[0][0]

        labels = ", ".join(f"{d.label} ({d.confidence:.2f})" for _, d in matches)
        if self.tie_break == "first_match":
            winner = matches[0][0]
        elif self.tie_break == "priority":
            winner = DoorState.OPEN
        else:
            winner = max(
                matches,
                key=lambda m: (m[1].confidence, m[0] == DoorState.OPEN),
            )[0]
        logger.warning(f"Conflicting door labels [{labels}], {self.tie_break} picked {winner.value}")
        return winner
