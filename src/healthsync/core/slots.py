"""
Execution slots: a bounded, numbered counting resource with FIFO waiters.
"""

import asyncio
from collections import deque

from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.slots")


class SlotPool:
    """
    Fixed pool of numbered execution slots.

    ``acquire`` hands out the lowest free slot number, or queues the caller
    behind earlier waiters. ``release`` passes the slot straight to the
    oldest waiter, so a later arrival can never overtake a queued one.

    ``in_use`` never exceeds ``capacity``.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._free: list[int] = list(range(1, capacity + 1))
        self._waiters: deque[asyncio.Future[int]] = deque()

    @property
    def in_use(self) -> int:
        return self.capacity - len(self._free)

    @property
    def available(self) -> int:
        return len(self._free)

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> int:
        """
        Wait for a slot and return its number.

        Cancelling a waiting caller removes it from the queue; a slot that
        was already handed to it is passed on.
        """
        if self._free and not self.waiting:
            return self._take()

        waiter: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was granted just before cancellation
                self.release(waiter.result())
            raise
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def release(self, slot: int) -> None:
        """Return a slot, handing it to the oldest live waiter if any."""
        if slot in self._free or not 1 <= slot <= self.capacity:
            raise ValueError(f"Slot {slot} is not held")

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(slot)
                return

        self._free.append(slot)
        self._free.sort()

    def _take(self) -> int:
        slot = self._free.pop(0)
        logger.debug(f"Slot {slot} taken ({self.in_use}/{self.capacity} in use)")
        return slot
