from __future__ import annotations
import asyncio
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

from shared.log import get_logger

logger = get_logger(__name__)


class SupervisorState(Enum):
    DISARMED = auto()
    ARMED = auto()

    def __str__(self) -> str:
        return self.name


class ReconnectionSupervisor:
    """
    Single-shot reconnection after an unexpected close.

    ``arm()`` schedules one attempt ``delay`` seconds later; ``disarm()`` cancels it.
    When the timer fires the supervisor disarms itself first, then calls
    ``reconnect()`` only if ``is_disconnected()`` still holds. A failed attempt
    ends in another close, which arms the supervisor again: fixed-delay retry,
    no backoff.
    """

    def __init__(
        self,
        reconnect: Callable[[], Awaitable[bool]],
        is_disconnected: Callable[[], bool],
        delay: float = 5.0,
    ) -> None:
        if delay < 0:
            raise ValueError("reconnect delay must not be negative")
        self._reconnect = reconnect
        self._is_disconnected = is_disconnected
        self.delay = delay
        self.state = SupervisorState.DISARMED
        self.attempts = 0
        self.skipped = 0
        self._timer: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self.state is SupervisorState.ARMED

    def arm(self) -> None:
        self.disarm()
        self.state = SupervisorState.ARMED
        self._timer = asyncio.create_task(self._fire())
        logger.info("Reconnection scheduled in %.1fs", self.delay)

    def disarm(self) -> None:
        timer, self._timer = self._timer, None
        self.state = SupervisorState.DISARMED
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        if not self.armed:
            return
        self.state = SupervisorState.DISARMED
        self._timer = None
        if not self._is_disconnected():
            self.skipped += 1
            logger.info("Reconnection skipped: connection already re-established")
            return
        self.attempts += 1
        logger.info("Attempting to reconnect (attempt %d)", self.attempts)
        try:
            await self._reconnect()
        except Exception as e:
            logger.error("Reconnection attempt failed: %s", e)
