"""
Notification link to the door actuator controller.

Sends door state changes to a small HTTP server (ESP32-class device) on the
local network and tracks connectivity. Delivery is best effort: one request
per state change, no retry, no queue.
"""

import asyncio
import functools
import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Callable, Optional, Set

import requests

from config import Config
from exceptions import NotifyFailed
from models import ConnectivityStatus, DoorState
from status import StatusCell

logger = logging.getLogger(__name__)


class NotificationLink:
    """
    HTTP notifier with observable connectivity status.

    Status is written only after a request completes, exactly once per
    request. Blocking HTTP calls run in ``executor`` (the loop default when
    None) so callers on the event loop never wait on the network.
    """

    def __init__(self, config: Config, executor: Optional[Executor] = None,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.actuator.base_url
        self.timeout = config.actuator.timeout
        self._executor = executor
        self._session = session or requests.Session()
        self._status = StatusCell(ConnectivityStatus())
        self._pending: Set[asyncio.Task] = set()

    @property
    def status(self) -> ConnectivityStatus:
        return self._status.get()

    def subscribe(self, listener: Callable[[ConnectivityStatus], None]) -> Callable[[], None]:
        return self._status.subscribe(listener)

    def endpoint_for(self, state: DoorState) -> str:
        if state == DoorState.OPEN:
            return self.config.actuator.open_path
        if state == DoorState.CLOSED:
            return self.config.actuator.closed_path
        raise ValueError(f"Cannot notify door state: {state.value}")

    async def notify(self, state: DoorState) -> bool:
        """Send a door state. Returns True when the actuator acknowledged it."""
        path = self.endpoint_for(state)
        logger.info(f"Sending door state '{state.value}' to actuator at {self.base_url}{path}")

        try:
            status_code = await self._send(path)
        except NotifyFailed as e:
            logger.error(f"Door state '{state.value}' not delivered: {e}")
            self._status.update(
                is_connected=False,
                status_text=str(e),
                last_status_code=e.status_code,
                updated_at=datetime.now(),
            )
            return False

        logger.info(f"Door state '{state.value}' sent successfully")
        self._status.update(
            is_connected=True,
            last_sent_state=state.value,
            status_text=f"Connected - Last sent: {state.value}",
            last_status_code=status_code,
            updated_at=datetime.now(),
        )
        return True

    def notify_nowait(self, state: DoorState) -> asyncio.Task:
        """Fire-and-forget variant of notify; the task is tracked until done."""
        task = asyncio.get_running_loop().create_task(self.notify(state))
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    async def test_connectivity(self) -> bool:
        """Probe the actuator root path. Never changes last_sent_state."""
        logger.info(f"Testing connection to actuator at {self.base_url}")

        try:
            status_code = await self._send(self.config.actuator.probe_path)
        except NotifyFailed as e:
            logger.error(f"Connection test failed: {e}")
            self._status.update(
                is_connected=False,
                status_text=str(e),
                last_status_code=e.status_code,
                updated_at=datetime.now(),
            )
            return False

        logger.info("Connection to actuator successful")
        self._status.update(
            is_connected=True,
            status_text="Connected to actuator",
            last_status_code=status_code,
            updated_at=datetime.now(),
        )
        return True

    async def wait_pending(self) -> None:
        """Wait for in-flight fire-and-forget notifications."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        self._session.close()

    async def _send(self, path: str) -> int:
        """GET base_url + path. Raises NotifyFailed on transport error or non-2xx."""
        url = f"{self.base_url}{path}"
        loop = asyncio.get_running_loop()
        request = functools.partial(self._session.get, url, timeout=self.timeout)

        try:
            response = await loop.run_in_executor(self._executor, request)
        except requests.RequestException as e:
            raise NotifyFailed(f"Connection failed: {e}") from e

        if response.text:
            logger.debug(f"Actuator response: {response.text}")

        if not 200 <= response.status_code < 300:
            raise NotifyFailed(f"HTTP error: {response.status_code}", status_code=response.status_code)
        return response.status_code

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Notification task failed: {task.exception()}", exc_info=task.exception())
