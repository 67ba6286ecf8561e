"""
Capture loop orchestration.

Every capture tick starts an independent cycle:
capture -> image pipeline -> (save) -> inference -> classification -> notify.
Cycles run as asyncio tasks and push blocking collaborator calls into a
worker pool, so a slow camera, model or network never delays the next tick.
Door state is only ever written from the event loop.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Coroutine, List, Optional, Set

from camera_manager import CameraManager
from capture_scheduler import CaptureScheduler
from config import Config
from detection_classifier import DetectionClassifier
from door_detector import DoorDetectorInterface
from exceptions import (
    CaptureUnavailable, InferenceError, ModelNotReady, PermissionDenied,
    PipelineError, StoreFailed,
)
from image_pipeline import ImagePipeline
from models import DoorState, PipelineStatus, ProcessedImage, RawDetection
from notification_link import NotificationLink
from resource_manager import ImageStore, SystemMonitor
from status import StatusCell
from utils import DetectionFormatter, PerformanceTimer

logger = logging.getLogger(__name__)


class CaptureOrchestrator:
    """
    Owns the current door state and turns capture ticks into notifications.

    A state change is applied only when the scheduler is still running for
    the run that produced the result. With ``schedule.discard_stale_results``
    enabled, a result from an older cycle than the newest applied one is
    dropped; otherwise the last result to arrive wins.
    """

    def __init__(self, config: Config, camera: CameraManager,
                 detector: DoorDetectorInterface, link: NotificationLink,
                 scheduler: Optional[CaptureScheduler] = None,
                 pipeline: Optional[ImagePipeline] = None,
                 classifier: Optional[DetectionClassifier] = None,
                 image_store: Optional[ImageStore] = None,
                 system_monitor: Optional[SystemMonitor] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.config = config
        self.camera = camera
        self.detector = detector
        self.link = link
        self.scheduler = scheduler or CaptureScheduler.from_config(config)
        self.pipeline = pipeline or ImagePipeline(config)
        self.classifier = classifier or DetectionClassifier.from_config(config)
        self.image_store = image_store
        self.system_monitor = system_monitor

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.performance.worker_threads,
            thread_name_prefix="doorwatch",
        )

        self.discard_stale_results = config.schedule.discard_stale_results
        self.max_photos = config.schedule.max_photos

        self._current_state = DoorState.UNKNOWN
        self._status = StatusCell(PipelineStatus())
        self._tasks: Set[asyncio.Task] = set()
        self._cycle_counter = 0
        self._last_applied_cycle = 0
        self._generation = 0
        self._saves_in_flight = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def current_door_state(self) -> DoorState:
        return self._current_state

    @property
    def status(self) -> PipelineStatus:
        return self._status.get()

    def subscribe(self, listener: Callable[[PipelineStatus], None]) -> Callable[[], None]:
        return self._status.subscribe(listener)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def load_model(self) -> bool:
        ready = self.detector.load_model()
        self._status.update(is_model_loaded=ready, inference_status=self.detector.model_status)
        return ready

    def reload_model(self) -> bool:
        self._status.update(is_model_loaded=False, inference_status="Loading model...")
        ready = self.detector.reload_model()
        self._status.update(is_model_loaded=ready, inference_status=self.detector.model_status)
        return ready

    def start(self) -> None:
        """Start (or restart) the countdown and capture loop."""
        self._generation += 1
        self._last_applied_cycle = self._cycle_counter
        self.scheduler.start(self._on_countdown_complete, self._on_photo_capture)

    def stop(self) -> None:
        """Stop future ticks. In-flight cycles finish but their results are discarded."""
        self.scheduler.stop()

    def reset(self) -> None:
        """Stop, clear counters and forget the current door state."""
        self.scheduler.reset()
        self._current_state = DoorState.UNKNOWN
        self._status.update(current_state=DoorState.UNKNOWN, last_detections=())

    def reset_saved_counter(self) -> None:
        self._status.update(images_saved=0, save_status="")

    async def wait_idle(self) -> None:
        """Wait until all in-flight cycles, saves and notifications finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.link.wait_pending()

    async def shutdown(self) -> None:
        """Stop the loop, cancel pending cycles and release the worker pool."""
        logger.info("Shutting down capture loop...")
        self.scheduler.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.link.wait_pending()
        if self._owns_executor:
            self._executor.shutdown(wait=True, cancel_futures=True)

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------

    def _on_countdown_complete(self) -> None:
        logger.info("Countdown finished, capture cycles starting")

    def _on_photo_capture(self, photos_taken: int) -> None:
        if self.max_photos and self._collected_count() >= self.max_photos:
            logger.info(f"Collection complete ({self.max_photos} photos)")
            self._status.update(save_status="Collection complete")
            self.scheduler.stop()
            return

        self._cycle_counter += 1
        self._spawn(self.run_cycle(self._cycle_counter, self._generation))

    def _collected_count(self) -> int:
        if self.image_store is not None:
            return self._status.get().images_saved
        return self._status.get().cycles_started

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, cycle_id: int, generation: int) -> Optional[DoorState]:
        """One capture -> notify pass. Every failure ends only this cycle."""
        self._status.update(cycles_started=self._status.get().cycles_started + 1)
        try:
            return await self._run_cycle(cycle_id, generation)
        except Exception as e:
            logger.error(f"Cycle {cycle_id}: unexpected error: {e}", exc_info=True)
            self._status.update(inference_status=f"Cycle failed: {e}")
            return None
        finally:
            self._status.update(cycles_completed=self._status.get().cycles_completed + 1)

    async def _run_cycle(self, cycle_id: int, generation: int) -> Optional[DoorState]:
        if self.system_monitor is not None and self.system_monitor.should_skip_processing():
            self.system_monitor.memory_manager.force_cleanup()
            self._status.update(inference_status="Skipped: memory pressure")
            return None

        loop = asyncio.get_running_loop()

        try:
            frame = await loop.run_in_executor(self._executor, self.camera.request_frame)
        except CaptureUnavailable as e:
            logger.warning(f"Cycle {cycle_id}: capture failed, skipping: {e}")
            self._status.update(inference_status=f"Capture failed: {e}")
            return None

        try:
            image = await loop.run_in_executor(self._executor, self.pipeline.process, frame)
        except PipelineError as e:
            logger.error(f"Cycle {cycle_id}: failed to process image: {e}")
            self._status.update(inference_status=f"Image processing failed: {e}")
            return None
        logger.info(f"Cycle {cycle_id}: processed image size {image.size_kb}KB")

        if self.image_store is not None:
            self._spawn(self._save_image(image))

        if not self.detector.is_model_loaded:
            logger.warning(f"Cycle {cycle_id}: model not loaded yet")
            self._status.update(is_model_loaded=False, inference_status="Model not loaded")
            return None

        self._status.update(inference_status="Running inference...")
        try:
            with PerformanceTimer(f"Cycle {cycle_id} inference"):
                detections = await loop.run_in_executor(self._executor, self.detector.detect, image)
        except ModelNotReady as e:
            self._status.update(is_model_loaded=False, inference_status=str(e))
            return None
        except InferenceError as e:
            logger.error(f"Cycle {cycle_id}: inference failed: {e}")
            self._status.update(inference_status=f"Inference failed: {e}")
            return None

        return self.apply_detections(cycle_id, generation, detections)

    def apply_detections(self, cycle_id: int, generation: int,
                         detections: List[RawDetection]) -> Optional[DoorState]:
        """
        Classify a batch and notify on change. Returns the new state when the
        door state changed, otherwise None.
        """
        if generation != self._generation or not self.scheduler.is_running:
            logger.info(f"Cycle {cycle_id}: result arrived after stop, discarded")
            return None

        if self.discard_stale_results and cycle_id < self._last_applied_cycle:
            logger.info(f"Cycle {cycle_id}: stale result (newest applied is "
                        f"{self._last_applied_cycle}), discarded")
            return None
        self._last_applied_cycle = max(self._last_applied_cycle, cycle_id)

        logger.info(f"Cycle {cycle_id}: {DetectionFormatter.summary(detections)}")
        if detections:
            logger.debug(DetectionFormatter.format_detections(detections))
        self._status.update(
            last_detections=tuple(detections),
            inference_status=DetectionFormatter.summary(detections),
        )

        decision = self.classifier.classify(detections)
        if decision is None or decision == self._current_state:
            return None

        previous = self._current_state
        self._current_state = decision
        self._status.update(current_state=decision)
        logger.info(f"Door state changed: {previous.value} -> {decision.value}")
        self.link.notify_nowait(decision)
        return decision

    async def _save_image(self, image: ProcessedImage) -> None:
        loop = asyncio.get_running_loop()
        self._saves_in_flight += 1
        self._status.update(is_saving=True, save_status="Saving image...")
        try:
            await loop.run_in_executor(self._executor, self.image_store.store, image)
        except PermissionDenied as e:
            logger.error(f"Image not saved: {e}")
            self._status.update(save_status="Image directory access denied")
        except StoreFailed as e:
            logger.error(f"Image not saved: {e}")
            self._status.update(save_status=f"Failed to save: {e}")
        else:
            saved = self._status.get().images_saved + 1
            self._status.update(images_saved=saved, save_status=f"Saved {saved} images")
        finally:
            self._saves_in_flight -= 1
            self._status.update(is_saving=self._saves_in_flight > 0)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}", exc_info=task.exception())
