"""
Two-phase capture timer: a countdown followed by periodic capture ticks.

Both phases run inside a single asyncio task, so the countdown and the
capture timer can never tick at the same time. Ticks are scheduled against
absolute deadlines on the loop clock; a slow callback delays at most the tick
it runs in and does not shift the ones after it.
"""

import asyncio
import logging
from typing import Callable, Optional

from config import Config
from models import CaptureCycle, SchedulerPhase
from status import StatusCell

logger = logging.getLogger(__name__)

CountdownCallback = Callable[[], None]
CaptureCallback = Callable[[int], None]


class CaptureScheduler:
    """
    Countdown -> Capturing state machine driven by the running event loop.

    ``on_photo_capture`` receives the updated ``photos_taken`` count. Both
    callbacks run on the event loop and must not block; exceptions they raise
    are logged and the timer keeps going.
    """

    def __init__(self, countdown_seconds: int = 10, capture_interval: float = 5.0,
                 countdown_tick: float = 1.0):
        if countdown_seconds < 0:
            raise ValueError("Countdown cannot be negative")
        if capture_interval <= 0 or countdown_tick <= 0:
            raise ValueError("Timer intervals must be positive")

        self.countdown_seconds = countdown_seconds
        self.capture_interval = capture_interval
        self.countdown_tick = countdown_tick

        self._status = StatusCell(CaptureCycle(seconds_remaining=countdown_seconds))
        self._task: Optional[asyncio.Task] = None
        self._on_countdown_complete: Optional[CountdownCallback] = None
        self._on_photo_capture: Optional[CaptureCallback] = None

    @classmethod
    def from_config(cls, config: Config) -> "CaptureScheduler":
        return cls(
            countdown_seconds=config.schedule.countdown_seconds,
            capture_interval=config.schedule.capture_interval,
            countdown_tick=config.schedule.countdown_tick,
        )

    @property
    def snapshot(self) -> CaptureCycle:
        return self._status.get()

    @property
    def is_running(self) -> bool:
        return self._status.get().is_running

    @property
    def phase(self) -> SchedulerPhase:
        return self._status.get().phase

    @property
    def seconds_remaining(self) -> int:
        return self._status.get().seconds_remaining

    @property
    def photos_taken(self) -> int:
        return self._status.get().photos_taken

    def add_listener(self, listener: Callable[[CaptureCycle], None]) -> Callable[[], None]:
        """Receive a snapshot after every transition and tick."""
        return self._status.subscribe(listener)

    def start(self, on_countdown_complete: CountdownCallback,
              on_photo_capture: CaptureCallback) -> None:
        """Begin (or restart) the countdown. Must be called from the event loop."""
        loop = asyncio.get_running_loop()
        if self._task is not None:
            logger.info("Scheduler already running, restarting countdown")
            self._cancel_task()

        self._on_countdown_complete = on_countdown_complete
        self._on_photo_capture = on_photo_capture
        self._status.update(
            phase=SchedulerPhase.COUNTDOWN,
            seconds_remaining=self.countdown_seconds,
            photos_taken=0,
            is_running=True,
        )
        self._task = loop.create_task(self._run())
        logger.info(f"Countdown started: {self.countdown_seconds}s, "
                    f"then capturing every {self.capture_interval}s")

    def stop(self) -> None:
        """Cancel both timers. Counters are kept for display."""
        was_running = self._task is not None
        self._cancel_task()
        self._status.update(phase=SchedulerPhase.IDLE, is_running=False)
        if was_running:
            logger.info(f"Scheduler stopped after {self.photos_taken} photos")

    def reset(self) -> None:
        """Stop and return all counters to their initial values."""
        self.stop()
        self._status.update(seconds_remaining=self.countdown_seconds, photos_taken=0)

    def _cancel_task(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()

        remaining = self.countdown_seconds
        while remaining > 0:
            deadline = await self._sleep_until_next(deadline, self.countdown_tick)
            remaining -= 1
            self._status.update(seconds_remaining=remaining)

        self._status.update(phase=SchedulerPhase.CAPTURING)
        logger.info("Countdown finished, starting photo capture")
        self._invoke(self._on_countdown_complete)

        photos = 0
        while True:
            deadline = await self._sleep_until_next(deadline, self.capture_interval)
            photos += 1
            self._status.update(photos_taken=photos)
            self._invoke(self._on_photo_capture, photos)

    async def _sleep_until_next(self, deadline: float, interval: float) -> float:
        """Sleep until deadline + interval, skipping ticks that were missed entirely."""
        loop = asyncio.get_running_loop()
        deadline += interval
        late = loop.time() - deadline
        if late >= interval:
            missed = int(late // interval)
            deadline += missed * interval
            logger.warning(f"Event loop stalled, skipped {missed} tick(s)")

        await asyncio.sleep(max(0.0, deadline - loop.time()))
        return deadline

    def _invoke(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Scheduler callback failed: {e}", exc_info=True)
