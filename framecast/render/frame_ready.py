"""
Tracks pending async side-channel work that must finish before a capture.

Render loop:
1. Advance the frame
2. Wait for rasterization
3. wait_for_all_frames_with_timeout()
4. Capture

Async producers (e.g. a decoder materializing an embedded video frame):
1. register_pending() before starting work
2. mark_ready() / mark_failed() when the work ends
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


def _retrieve_exception(future: asyncio.Future) -> None:
    # Failed operations never fail the wait; mark the exception as retrieved
    if not future.cancelled():
        future.exception()


class FrameReadyNotifier:
    """Registry of pending frame operations."""

    def __init__(self):
        self._pending: set[asyncio.Future] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def register_pending(self) -> asyncio.Future:
        """Register an operation; settle the returned future via mark_ready/mark_failed."""
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_retrieve_exception)
        self._pending.add(future)
        return future

    def mark_ready(self, future: asyncio.Future) -> None:
        if not future.done():
            future.set_result(None)
        self._pending.discard(future)

    def mark_failed(self, future: asyncio.Future, error: BaseException) -> None:
        logger.warning(f"[RENDER] Pending frame operation failed: {error}")
        if not future.done():
            future.set_exception(error)
        self._pending.discard(future)

    async def wait_for_all_frames(self) -> None:
        """Wait for every currently pending operation; failures are ignored."""
        if not self._pending:
            return
        await asyncio.wait(set(self._pending))

    async def wait_for_all_frames_with_timeout(self, timeout: float) -> bool:
        """
        Wait for pending operations for at most `timeout` seconds.

        Pending futures are not cancelled when the timeout expires.

        Returns:
            True if everything completed in time, False on timeout
        """
        if not self._pending:
            return True
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        return not not_done

    def clear_pending(self) -> None:
        """Cancel every pending operation. Only for aborting a render."""
        for future in self._pending:
            if not future.done():
                future.cancel()
        self._pending.clear()

    @asynccontextmanager
    async def pending(self) -> AsyncIterator[asyncio.Future]:
        """Register an operation for the duration of the block."""
        future = self.register_pending()
        try:
            yield future
        except Exception as e:
            self.mark_failed(future, e)
            raise
        else:
            self.mark_ready(future)
