#!/usr/bin/env python3
"""
Test the detection path on a single image.

Runs one image (a file, or a fresh frame from the configured camera) through
the image pipeline, the configured detector and the door state classifier,
then prints what the capture loop would decide.

Usage:
    python scripts/test_detection.py                 # capture from camera
    python scripts/test_detection.py door.jpg        # use an image file
    python scripts/test_detection.py door.jpg --save # also write processed.jpg
"""

import sys
import logging
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from camera_manager import CameraManager
from config import Config, ConfigurationError
from detection_classifier import DetectionClassifier
from door_detector import create_detector
from exceptions import CaptureUnavailable, InferenceError, PipelineError
from image_pipeline import ImagePipeline
from utils import DetectionFormatter, PerformanceTimer

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_raw_image(config: Config, image_path: Path):
    if image_path is not None:
        logger.info(f"Loading {image_path}")
        return image_path.read_bytes()

    logger.info("Capturing frame from camera...")
    with CameraManager(config) as camera:
        return camera.request_frame()


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    save = "--save" in sys.argv[1:]
    image_path = Path(args[0]) if args else None

    try:
        config = Config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        raw = load_raw_image(config, image_path)
        image = ImagePipeline(config).process(raw)
    except (OSError, CaptureUnavailable, PipelineError) as e:
        logger.error(f"❌ Could not prepare image: {e}")
        sys.exit(1)

    logger.info(f"Processed image: {image.width}x{image.height}, "
                f"{image.size_kb}KB at quality {image.quality}")
    if save:
        Path("processed.jpg").write_bytes(image.data)
        logger.info("Saved processed.jpg")

    detector = create_detector(config)
    if not detector.load_model():
        logger.error(f"❌ {detector.model_status}")
        sys.exit(1)

    try:
        with PerformanceTimer("Inference", slow_threshold=0.0):
            detections = detector.detect(image)
    except InferenceError as e:
        logger.error(f"❌ Inference failed: {e}")
        sys.exit(1)

    print(DetectionFormatter.summary(detections))
    print(DetectionFormatter.format_detections(detections))

    decision = DetectionClassifier.from_config(config).classify(detections)
    if decision is None:
        print("Door state: no change")
    else:
        print(f"Door state: {decision.value}")


if __name__ == "__main__":
    main()
