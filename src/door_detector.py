"""
Door detection using a Roboflow object-detection model.

The hosted inference API receives the processed JPEG and returns labelled
boxes. Results are reduced to RawDetection records; deciding what they mean
is left to the classifier.
"""

import base64
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

import requests

from config import Config
from exceptions import InferenceError, ModelNotReady
from models import ProcessedImage, RawDetection

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"
PLACEHOLDER_MODEL = "YOUR_MODEL_NAME"


def cap_detections(detections: Sequence[RawDetection], max_detections: int) -> List[RawDetection]:
    """Keep the most confident detections without reordering the survivors."""
    if len(detections) <= max_detections:
        return list(detections)
    ranked = sorted(range(len(detections)), key=lambda i: detections[i].confidence, reverse=True)
    keep = sorted(ranked[:max_detections])
    return [detections[i] for i in keep]


class DoorDetectorInterface(ABC):
    """Inference collaborator contract."""

    @property
    @abstractmethod
    def is_model_loaded(self) -> bool:
        pass

    @property
    @abstractmethod
    def model_status(self) -> str:
        pass

    @abstractmethod
    def load_model(self) -> bool:
        """Prepare the model. Returns readiness."""
        pass

    @abstractmethod
    def detect(self, image: ProcessedImage) -> List[RawDetection]:
        """Run inference. Raises ModelNotReady or InferenceError."""
        pass

    def reload_model(self) -> bool:
        logger.info("Reloading detection model")
        return self.load_model()


class RoboflowDetector(DoorDetectorInterface):
    """
    Client for the Roboflow hosted detection API.

    Each call posts the base64 encoded JPEG to
    ``{api_url}/{model}/{version}`` with confidence and overlap given in
    percent, as the API expects.
    """

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        self._model_loaded = False
        self._model_status = ""
        self._model_url: Optional[str] = None

    @property
    def is_model_loaded(self) -> bool:
        return self._model_loaded

    @property
    def model_status(self) -> str:
        return self._model_status

    def load_model(self) -> bool:
        detection = self.config.detection
        self._model_loaded = False
        self._model_url = None

        if not detection.api_key or detection.api_key == PLACEHOLDER_API_KEY:
            logger.warning("Roboflow API key is not configured (ROBOFLOW_API_KEY)")
            self._model_status = "Please configure API key"
            return False

        if not detection.model_name or detection.model_name == PLACEHOLDER_MODEL:
            logger.warning("Roboflow model name is not configured (ROBOFLOW_MODEL)")
            self._model_status = "Please configure model name"
            return False

        self._model_status = "Loading model..."
        self._model_url = (f"{detection.api_url.rstrip('/')}/"
                           f"{detection.model_name}/{detection.model_version}")
        self._model_loaded = True
        self._model_status = "Model loaded successfully"
        logger.info(f"Roboflow model ready: {detection.model_name}/{detection.model_version} "
                    f"(confidence: {detection.confidence_threshold}, "
                    f"overlap: {detection.overlap_threshold}, "
                    f"max objects: {detection.max_detections})")
        return True

    def detect(self, image: ProcessedImage) -> List[RawDetection]:
        if not self._model_loaded or self._model_url is None:
            raise ModelNotReady("Model not loaded")

        detection = self.config.detection
        params = {
            "api_key": detection.api_key,
            "confidence": int(round(detection.confidence_threshold * 100)),
            "overlap": int(round(detection.overlap_threshold * 100)),
        }
        start_time = time.time()

        try:
            response = self._session.post(
                self._model_url,
                params=params,
                data=base64.b64encode(image.data),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=detection.request_timeout,
            )
        except requests.RequestException as e:
            raise InferenceError(f"Inference request failed: {e}") from e

        if response.status_code != 200:
            raise InferenceError(f"Inference HTTP error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise InferenceError(f"Invalid inference response: {e}") from e

        if not isinstance(payload, dict):
            raise InferenceError(f"Invalid inference response: expected an object, got {type(payload).__name__}")
        predictions = payload.get("predictions", [])
        if not isinstance(predictions, list):
            raise InferenceError(f"Invalid inference response: predictions is {type(predictions).__name__}")

        detections = self._parse_predictions(predictions)
        logger.debug(f"Roboflow inference took {time.time() - start_time:.2f}s")
        return cap_detections(detections, detection.max_detections)

    @staticmethod
    def _parse_predictions(predictions: Iterable[dict]) -> List[RawDetection]:
        detections = []
        for prediction in predictions:
            try:
                label = str(prediction["class"])
                confidence = min(1.0, max(0.0, float(prediction["confidence"])))
                bbox = None
                if all(k in prediction for k in ("x", "y", "width", "height")):
                    bbox = (float(prediction["x"]), float(prediction["y"]),
                            float(prediction["width"]), float(prediction["height"]))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed prediction {prediction!r}: {e}")
                continue

            detections.append(RawDetection(label=label, confidence=confidence, bbox=bbox))
        return detections


class MockDoorDetector(DoorDetectorInterface):
    """
    Scripted detector for tests and development.

    Returns the given batches in turn, repeating the last one. An optional
    per-call delay simulates slow inference.
    """

    def __init__(self, config: Config, batches: Optional[List[List[RawDetection]]] = None,
                 delay: float = 0.0, loaded: bool = True):
        self.config = config
        self.batches = batches if batches is not None else [
            [RawDetection(label="door_closed", confidence=0.9)]
        ]
        self.delay = delay
        self.calls = 0
        self._calls_lock = threading.Lock()
        self._auto_load = loaded
        self._model_loaded = False
        self._model_status = ""

    @property
    def is_model_loaded(self) -> bool:
        return self._model_loaded

    @property
    def model_status(self) -> str:
        return self._model_status

    def load_model(self) -> bool:
        self._model_loaded = self._auto_load
        self._model_status = "Model loaded successfully" if self._auto_load else "Model not loaded"
        return self._model_loaded

    def detect(self, image: ProcessedImage) -> List[RawDetection]:
        if not self._model_loaded:
            raise ModelNotReady("Model not loaded")
        if self.delay:
            time.sleep(self.delay)

        with self._calls_lock:
            index = self.calls
            self.calls += 1
        if not self.batches:
            return []
        index = min(index, len(self.batches) - 1)
        return cap_detections(self.batches[index], self.config.detection.max_detections)


def create_detector(config: Config, use_mock: bool = False) -> DoorDetectorInterface:
    if use_mock or config.detection.backend == "mock":
        return MockDoorDetector(config)
    return RoboflowDetector(config)
