"""
Timeout guard.

Runs blocking backend work in a worker thread and races it against the
job deadline. The worker cannot be interrupted directly; instead the
workspace is cancelled, which kills the attached process tree and
forbids new spawns, and the worker unwinds on its own.

In-process work (Pillow, gzip, PyMuPDF) has no process to kill. If the
worker is still busy after the grace window, the job scope keeps the
admission slot until the worker returns, so it still counts against
MAX_CONCURRENT.

Exit paths:
- Completed in time → result returned
- Deadline hit → process killed, JobTimedOutError raised
- Caller cancelled (client disconnect) → process killed, CancelledError re-raised
"""

import asyncio
import logging
from typing import Callable, TypeVar

from starlette.concurrency import run_in_threadpool

from ..errors import JobTimedOutError
from .scope import JobScope

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_deadline(
    func: Callable[..., T],
    scope: JobScope,
    timeout_seconds: float,
    kill_grace_seconds: float,
    *args,
    **kwargs,
) -> T:
    """
    Execute `func(*args, **kwargs)` in the threadpool under a deadline.

    Args:
        func: Blocking callable (a backend's produce)
        scope: Job scope; its workspace process is killed on expiry
        timeout_seconds: Deadline for the call
        kill_grace_seconds: SIGTERM → SIGKILL window, also bounds the wait
            for the worker to unwind

    Returns:
        Whatever func returns

    Raises:
        JobTimedOutError: Deadline exceeded
        asyncio.CancelledError: Caller was cancelled
    """
    task = asyncio.ensure_future(run_in_threadpool(func, *args, **kwargs))
    job_id = scope.job_id

    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"[Timeout] Job {job_id} exceeded {timeout_seconds:g}s, terminating process")
        await _terminate(task, scope, kill_grace_seconds)
        raise JobTimedOutError(job_id, timeout_seconds) from None
    except asyncio.CancelledError:
        logger.warning(f"[Timeout] Job {job_id} cancelled, terminating process")
        await _terminate(task, scope, kill_grace_seconds)
        raise


async def _terminate(task: "asyncio.Future", scope: JobScope, grace_seconds: float) -> None:
    await run_in_threadpool(scope.workspace.cancel, grace_seconds)

    # Give the worker a bounded window to observe the dead process.
    done, _ = await asyncio.wait({task}, timeout=grace_seconds + 1.0)
    if task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[Timeout] Job {scope.job_id} worker unwound: {task.exception()}")
    else:
        logger.error(f"[Timeout] Job {scope.job_id} worker still busy after termination")
        scope.hold_slot_until(task)
        task.add_done_callback(_consume_result)


def _consume_result(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()
