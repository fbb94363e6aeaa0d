"""
Job resource scope.

Everything a job holds that must be given back: its workspace and, once
admitted, its admission slot. Threaded explicitly through the job instead
of being stashed on the request.

INVARIANT: the teardown runs exactly once, whichever exit path reaches it
first (error handler, streamer completion, disconnect).

INVARIANT: the admission slot is not returned while a backend worker for
the job is still executing. A worker that outlived its deadline keeps the
slot until it actually returns, even though the workspace is gone.
"""

import asyncio
import logging
import threading
from typing import Optional

from starlette.concurrency import run_in_threadpool

from .admission import AdmissionController, AdmissionSlot
from .workspace import Workspace

logger = logging.getLogger(__name__)


class JobScope:
    """
    Workspace + admission slot with a one-shot teardown.

    Args:
        workspace: The job's workspace (opened before validation)
        admission: Controller the slot is returned to
        kill_grace_seconds: Grace given to a still-running process on close
    """

    def __init__(
        self,
        workspace: Workspace,
        admission: AdmissionController,
        kill_grace_seconds: float = 0,
    ):
        self.workspace = workspace
        self._admission = admission
        self._kill_grace = kill_grace_seconds
        self._slot: Optional[AdmissionSlot] = None
        self._straggler: Optional[asyncio.Future] = None
        self._lock = threading.Lock()
        self._finalized = False

    @property
    def job_id(self) -> str:
        return self.workspace.job_id

    @property
    def slot(self) -> Optional[AdmissionSlot]:
        return self._slot

    @property
    def finalized(self) -> bool:
        return self._finalized

    def bind_slot(self, slot: AdmissionSlot) -> None:
        """Attach the admission slot obtained for this job."""
        if self._slot is not None:
            raise RuntimeError(f"Job {self.job_id} already holds slot {self._slot.slot_id}")
        if self._finalized:
            # Admitted after teardown already ran: give the slot straight back.
            self._admission.release(slot)
            raise RuntimeError(f"Job {self.job_id} scope already finalized")
        self._slot = slot

    def hold_slot_until(self, worker: asyncio.Future) -> None:
        """Keep the slot until `worker` completes, even past finalize()."""
        self._straggler = worker

    async def finalize(self) -> bool:
        """
        Close the workspace and release the slot.

        The directory removal and any process kill-wait run in the
        threadpool; the slot is released on the event loop, which owns the
        counter. Idempotent.

        Returns:
            True if this call performed the teardown
        """
        if not self._claim():
            return False
        try:
            await run_in_threadpool(self.workspace.close, self._kill_grace)
        except asyncio.CancelledError:
            if not self.workspace.closed:
                self.workspace.close(self._kill_grace)
            raise
        finally:
            self._release_slot()
        logger.info(f"[Scope] Job {self.job_id} finalized")
        return True

    def _claim(self) -> bool:
        with self._lock:
            if self._finalized:
                return False
            self._finalized = True
            return True

    def _release_slot(self) -> None:
        slot = self._slot
        if slot is None:
            return
        worker = self._straggler
        if worker is not None and not worker.done():
            logger.warning(
                f"[Scope] Job {self.job_id} worker still executing, "
                f"slot {slot.slot_id} held until it returns"
            )
            worker.add_done_callback(lambda _: self._admission.release(slot))
            return
        self._admission.release(slot)
