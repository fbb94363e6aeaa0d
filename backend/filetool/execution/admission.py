"""
Admission controller.

Bounded counting semaphore limiting concurrently executing backends
system-wide. Waiters suspend on futures (no polling) and are served in
strict FIFO order.

Design rules:
- The slot counter and waiter queue are the only cross-job state
- Mutated only on the event loop, through acquire()/release()
- A released slot is handed directly to the oldest live waiter, so a
  newcomer can never overtake the queue
- Each slot is released exactly once; a second release is a bug and raises
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from ..errors import CapacityExceededError

logger = logging.getLogger(__name__)


@dataclass
class AdmissionSlot:
    """One unit of concurrency capacity."""

    slot_id: int
    job_id: Optional[str] = None
    released: bool = field(default=False, repr=False)


class AdmissionController:
    """
    FIFO counting semaphore with optional queue-depth rejection.

    Args:
        max_concurrent: Slots available (MAX_CONCURRENT)
        max_queue_depth: Waiters allowed before CapacityExceeded (None = unbounded)
    """

    def __init__(self, max_concurrent: int, max_queue_depth: Optional[int] = None):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.capacity = max_concurrent
        self.max_queue_depth = max_queue_depth
        self._in_use = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._ids = itertools.count(1)

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def snapshot(self) -> dict:
        """Current usage for the health endpoint."""
        return {
            "capacity": self.capacity,
            "in_use": self._in_use,
            "waiting": self.waiting,
            "max_queue_depth": self.max_queue_depth,
        }

    async def acquire(self, job_id: Optional[str] = None) -> AdmissionSlot:
        """
        Obtain a slot, suspending until one is free.

        Raises:
            CapacityExceededError: Waiter queue is full
            asyncio.CancelledError: Caller went away while waiting
        """
        if self._in_use < self.capacity and not self.waiting:
            self._in_use += 1
            return self._issue(job_id)

        if self.max_queue_depth is not None and self.waiting >= self.max_queue_depth:
            logger.warning(
                f"[Admission] Rejecting job {job_id}: {self.waiting} waiting, "
                f"queue depth limit {self.max_queue_depth}"
            )
            raise CapacityExceededError(
                f"Server is busy: {self._in_use} jobs running and {self.waiting} queued"
            )

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"[Admission] Job {job_id} waiting at position {self.waiting}")

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # A slot was handed over just as we were cancelled: pass it on.
                self._hand_off()
            else:
                self._discard(waiter)
            raise

        # The releaser kept _in_use constant and transferred its slot to us.
        return self._issue(job_id)

    def release(self, slot: AdmissionSlot) -> None:
        """
        Return a slot, waking the oldest waiter.

        Raises:
            RuntimeError: Slot already released
        """
        if slot.released:
            raise RuntimeError(f"Admission slot {slot.slot_id} released twice")
        slot.released = True
        logger.debug(f"[Admission] Slot {slot.slot_id} released by job {slot.job_id}")
        self._hand_off()

    def _hand_off(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._in_use -= 1

    def _discard(self, waiter: asyncio.Future) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _issue(self, job_id: Optional[str]) -> AdmissionSlot:
        slot = AdmissionSlot(slot_id=next(self._ids), job_id=job_id)
        logger.debug(f"[Admission] Slot {slot.slot_id} acquired by job {job_id} ({self._in_use}/{self.capacity})")
        return slot
