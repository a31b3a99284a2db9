from __future__ import annotations
import asyncio
from typing import Callable, Set


class StateWaiter:
    """
    Cancellable "wait for predicate or timeout" over the event loop.

    Waiters sleep on a future that the owner resolves through ``notify()``
    whenever its state changes, then re-check their predicate. ``abort()``
    releases every pending wait with a False result.
    """

    def __init__(self) -> None:
        self._pending: Set[asyncio.Future] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def notify(self) -> None:
        for fut in list(self._pending):
            if not fut.done():
                fut.set_result(True)

    def abort(self) -> None:
        for fut in list(self._pending):
            if not fut.done():
                fut.set_result(False)

    async def wait_for(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Return True once ``predicate()`` holds, False on timeout or abort."""
        if predicate():
            return True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return predicate()
            fut = loop.create_future()
            self._pending.add(fut)
            try:
                keep_waiting = await asyncio.wait_for(fut, remaining)
            except asyncio.TimeoutError:
                return predicate()
            finally:
                self._pending.discard(fut)
            if predicate():
                return True
            if not keep_waiting:
                return False
