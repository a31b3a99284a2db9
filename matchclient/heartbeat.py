from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional

from shared.log import get_logger

logger = get_logger(__name__)


class HeartbeatMonitor:
    """
    Sends a keepalive every ``interval`` seconds while ``is_connected()`` holds.

    One instance per opened connection; ``stop()`` is synchronous and final.
    """

    def __init__(
        self,
        send_heartbeat: Callable[[], Awaitable[bool]],
        is_connected: Callable[[], bool],
        interval: float = 30.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        self._send_heartbeat = send_heartbeat
        self._is_connected = is_connected
        self.interval = interval
        self.beats_sent = 0
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("HeartbeatMonitor cannot be restarted; create a new one")
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            if self._task is not asyncio.current_task():
                self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped or not self._is_connected():
                break
            if await self._send_heartbeat():
                self.beats_sent += 1
        logger.debug("Heartbeat loop finished after %d beats", self.beats_sent)
