#!/usr/bin/env python3
"""
Door Monitor.
Captures a frame every few seconds, detects whether the door is open or
closed and tells the actuator controller whenever the state changes.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import Optional

from camera_manager import CameraManager
from capture_orchestrator import CaptureOrchestrator
from capture_scheduler import CaptureScheduler
from config import Config
from door_detector import create_detector
from exceptions import DoorMonitorError
from models import CaptureCycle, ConnectivityStatus
from notification_link import NotificationLink
from resource_manager import ImageStore, SystemMonitor

logger = logging.getLogger(__name__)


class DoorMonitor:
    """
    Wires the capture loop together and runs it until cancelled.
    """

    def __init__(self, config: Optional[Config] = None, use_mock: bool = False):
        self.config = config or Config()

        self.camera = CameraManager(self.config, use_mock=use_mock)
        self.detector = create_detector(self.config, use_mock=use_mock)
        self.image_store = ImageStore(self.config)
        self.system_monitor = SystemMonitor(self.config, self.image_store)
        self.link = NotificationLink(self.config)
        self.scheduler = CaptureScheduler.from_config(self.config)
        self.orchestrator = CaptureOrchestrator(
            self.config,
            camera=self.camera,
            detector=self.detector,
            link=self.link,
            scheduler=self.scheduler,
            image_store=self.image_store if self.config.storage.save_images else None,
            system_monitor=self.system_monitor,
        )

        self.image_store.ensure_directories()
        self.link.subscribe(self._log_connectivity)
        self.scheduler.add_listener(self._log_progress)

    @staticmethod
    def _log_connectivity(status: ConnectivityStatus) -> None:
        logger.info(f"Actuator link: {status.status_text}")

    @staticmethod
    def _log_progress(cycle: CaptureCycle) -> None:
        if cycle.is_countdown_phase and cycle.is_running:
            logger.debug(f"Get ready: {cycle.seconds_remaining}")

    def log_configuration(self) -> None:
        summary = self.config.get_summary()
        logger.info("Door Monitor configuration:")
        logger.info(f"- Camera: {summary['camera']['backend']} "
                    f"(source {summary['camera']['source']}, {summary['camera']['resolution']})")
        logger.info(f"- Image: max {summary['image']['max_dimension']}px, "
                    f"max {summary['image']['max_size_kb']}KB")
        logger.info(f"- Detection: {summary['detection']['backend']} "
                    f"model {summary['detection']['model']} "
                    f"(door confidence > {summary['detection']['door_confidence_threshold']}, "
                    f"tie-break: {summary['detection']['tie_break']})")
        logger.info(f"- Schedule: {summary['schedule']['countdown_seconds']}s countdown, "
                    f"capture every {summary['schedule']['capture_interval']}s")
        logger.info(f"- Actuator: {summary['actuator']['url']}")
        if summary['storage']['save_images']:
            logger.info(f"- Saving images to {summary['storage']['image_dir']} "
                        f"(keeping {summary['storage']['max_images']})")
        else:
            logger.info("- Image saving disabled")

    async def run(self) -> None:
        """Main loop for door monitoring."""
        logger.info("Door Monitor is starting...")
        self.log_configuration()
        self.system_monitor.log_system_status()

        logger.info("Initializing camera...")
        with self.camera.camera_session():
            logger.info("Camera initialized successfully!")

            await self.link.test_connectivity()
            if not self.orchestrator.load_model():
                logger.warning(f"Detection model not ready: {self.detector.model_status}")

            self.orchestrator.start()
            try:
                await asyncio.Event().wait()
            finally:
                logger.info("Cleaning up resources...")
                await self.orchestrator.shutdown()
                self.link.close()


def setup_logging(config: Config, level: str = "INFO") -> None:
    """Console and file logging, quieter third-party loggers."""
    handlers = [logging.StreamHandler()]
    try:
        config.storage.logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.storage.logs_dir / "door_monitor.log"))
    except OSError as e:
        print(f"File logging disabled: {e}", file=sys.stderr)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('picamera2').setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Camera-based door state monitor")
    parser.add_argument("--mock", action="store_true",
                        help="use the mock camera and detector")
    parser.add_argument("--probe", action="store_true",
                        help="test the actuator connection and exit")
    parser.add_argument("--countdown", type=int,
                        help="countdown length in seconds before capturing starts")
    parser.add_argument("--interval", type=float,
                        help="seconds between captures")
    parser.add_argument("--log-level", default="INFO",
                        help="logging level (default: INFO)")
    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command line overrides, re-running section validation."""
    changes = {}
    if args.countdown is not None:
        changes["countdown_seconds"] = args.countdown
    if args.interval is not None:
        changes["capture_interval"] = args.interval
    if changes:
        config.schedule = dataclasses.replace(config.schedule, **changes)
    return config


async def probe(config: Config) -> bool:
    link = NotificationLink(config)
    try:
        connected = await link.test_connectivity()
        print(link.status.status_text)
        return connected
    finally:
        link.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = apply_overrides(Config(), args)
    except (DoorMonitorError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config, args.log_level)

    if args.probe:
        return 0 if asyncio.run(probe(config)) else 1

    monitor = DoorMonitor(config, use_mock=args.mock)
    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except DoorMonitorError as e:
        logger.error(f"Door Monitor failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
