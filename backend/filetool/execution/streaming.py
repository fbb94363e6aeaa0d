"""
Result streamer.

Sends the output artifact to the client and fires the job's teardown
callback exactly once, however the transfer ends.

CRITICAL RULES:
1. An artifact is never streamed unless it exists and is non-empty
2. Verification happens before any header is written
3. Completion, stream error and disconnect all reach the callback
"""

import logging
import os
import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

from starlette.responses import FileResponse
from starlette.types import Receive, Scope, Send

from ..errors import ProcessingFailure

logger = logging.getLogger(__name__)

FinishCallback = Callable[[Optional[BaseException]], Awaitable[None]]


def verify_artifact(path: Path) -> os.stat_result:
    """
    Check an output file is streamable.

    Returns:
        stat result (reused for Content-Length)

    Raises:
        ProcessingFailure: Missing, not a regular file, or empty
    """
    try:
        stat = os.stat(path)
    except FileNotFoundError:
        raise ProcessingFailure("Backend produced no output file")
    if not os.path.isfile(path):
        raise ProcessingFailure("Backend output is not a regular file")
    if stat.st_size == 0:
        raise ProcessingFailure("Backend produced an empty output file")
    return stat


class ArtifactResponse(FileResponse):
    """
    FileResponse that reports how the transfer ended.

    Args:
        path: Output artifact inside the job workspace
        download_name: Filename for Content-Disposition
        media_type: Content-Type of the artifact
        on_finish: Called once with None on success or the exception that
            ended the transfer
    """

    def __init__(
        self,
        path: Path,
        download_name: str,
        media_type: str,
        on_finish: Optional[FinishCallback] = None,
    ):
        stat = verify_artifact(path)
        super().__init__(
            path,
            media_type=media_type,
            filename=download_name,
            stat_result=stat,
            content_disposition_type="attachment",
        )
        self._on_finish = on_finish
        self._finish_lock = threading.Lock()
        self._finished = False

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except BaseException as e:
            logger.warning(f"[Stream] Transfer of {self.path} ended early: {type(e).__name__}: {e}")
            await self.finish(e)
            raise
        else:
            await self.finish(None)

    async def finish(self, error: Optional[BaseException]) -> None:
        """Run the completion callback once."""
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
        if self._on_finish is not None:
            await self._on_finish(error)
