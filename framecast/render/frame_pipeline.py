"""
Bounded producer/consumer buffer between frame capture and encoder writes.

The producer (capture loop) can run ahead of the consumer (encoder writer)
by at most max_buffer_size frames. A slot stays occupied from add_frame()
until the consumer calls frame_consumed(), so a full buffer suspends the
producer until the encoder has actually accepted a frame.

Single producer, single consumer. Frames come out in the order they went in.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator

from framecast.exceptions import PipelineError

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 5


def _wake(waiter: asyncio.Future | None) -> None:
    if waiter is not None and not waiter.done():
        waiter.set_result(None)


class FramePipeline:
    """
    FIFO frame buffer with backpressure.

    For 1080p RGBA each frame is ~8 MB, so the default of 5 frames holds
    ~40 MB. A larger buffer gives more overlap at the cost of memory.
    """

    def __init__(self, max_buffer_size: int = DEFAULT_BUFFER_SIZE):
        if max_buffer_size < 1:
            raise ValueError(f"max_buffer_size must be >= 1, got {max_buffer_size}")
        self.max_buffer_size = max_buffer_size
        self._queue: deque[bytes] = deque()
        self._occupied = 0
        self._closed = False
        self._consumer_attached = False
        self._space_waiter: asyncio.Future | None = None
        self._data_waiter: asyncio.Future | None = None
        self._drain_waiters: list[asyncio.Future] = []
        self.frames_added = 0
        self.producer_waits = 0

    @property
    def buffered_frames(self) -> int:
        """Occupied slots: frames added but not yet released by frame_consumed()."""
        return self._occupied

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_full(self) -> bool:
        return self._occupied >= self.max_buffer_size

    async def add_frame(self, data: bytes) -> None:
        """
        Enqueue one frame, suspending while the buffer is full.

        Raises:
            PipelineError: Pipeline is closed, or was closed while waiting
        """
        if self._closed:
            raise PipelineError("Cannot add frame to closed pipeline")

        while self._occupied >= self.max_buffer_size:
            self.producer_waits += 1
            self._space_waiter = asyncio.get_running_loop().create_future()
            try:
                await self._space_waiter
            finally:
                self._space_waiter = None
            if self._closed:
                raise PipelineError("Pipeline closed while waiting to add frame")

        self._occupied += 1
        self._queue.append(data)
        self.frames_added += 1
        _wake(self._data_waiter)

    def frame_consumed(self) -> None:
        """
        Release one occupied slot and wake a waiting producer.

        Raises:
            PipelineError: No slot is occupied
        """
        if self._occupied <= 0:
            raise PipelineError("frame_consumed() called with no occupied slot")
        self._occupied -= 1
        _wake(self._space_waiter)
        if self._closed and self._occupied == 0:
            self._release_drain_waiters()

    def close(self) -> None:
        """Signal that no more frames will be added.

        The consumer keeps receiving buffered frames and stops once the
        queue is empty. A producer suspended in add_frame() fails with
        PipelineError. Calling close() again has no effect.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug(
            f"[PIPELINE] Closed after {self.frames_added} frames "
            f"({len(self._queue)} still queued, producer waited {self.producer_waits}x)"
        )
        _wake(self._space_waiter)
        _wake(self._data_waiter)
        if self._occupied == 0:
            self._release_drain_waiters()

    async def drained(self) -> None:
        """Wait until the pipeline is closed and every slot has been released."""
        if self._closed and self._occupied == 0:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._drain_waiters.append(waiter)
        await waiter

    @property
    def frames(self) -> AsyncIterator[bytes]:
        """
        The single consumer's view of the pipeline.

        Raises:
            PipelineError: A consumer is already attached
        """
        if self._consumer_attached:
            raise PipelineError("FramePipeline supports a single consumer")
        self._consumer_attached = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            while not self._queue and not self._closed:
                self._data_waiter = asyncio.get_running_loop().create_future()
                try:
                    await self._data_waiter
                finally:
                    self._data_waiter = None
            if not self._queue:
                return
            yield self._queue.popleft()

    def _release_drain_waiters(self) -> None:
        waiters, self._drain_waiters = self._drain_waiters, []
        for waiter in waiters:
            _wake(waiter)
