"""
Single-consumer ingestion queue.

Producers only enqueue. One drain task at a time pulls items in arrival
order and awaits the processor for each before taking the next, so
transcription calls never overlap and ingested text stays chronological.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QueuedSegment:
    """One audio chunk waiting for transcription."""

    audio: bytes
    mime_type: str
    start_ms: int
    end_ms: int
    generation: int


Processor = Callable[[QueuedSegment], Awaitable[None]]


class IngestionQueue:
    """FIFO with a strict one-at-a-time drain."""

    def __init__(self, processor: Processor) -> None:
        self.processor = processor
        self._items: deque[QueuedSegment] = deque()
        self._drain_task: asyncio.Task | None = None
        self._stopped = False
        self.processed = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, segment: QueuedSegment) -> None:
        """Append a segment and make sure a drain is running. Never awaits."""
        if self._stopped:
            logger.debug("enqueue_after_stop", start_ms=segment.start_ms)
            return
        self._items.append(segment)
        if not self.draining:
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._items and not self._stopped:
            segment = self._items.popleft()
            try:
                await self.processor(segment)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One bad chunk must not stall the rest of the queue
                logger.error(
                    "segment_processing_failed",
                    start_ms=segment.start_ms,
                    end_ms=segment.end_ms,
                    error=str(e),
                )
            self.processed += 1

    async def join(self) -> None:
        """Wait until the queue is empty and no drain is running."""
        while self.draining:
            await asyncio.wait({self._drain_task})

    def stop(self) -> None:
        """Drop pending items and cancel the drain. Synchronous and idempotent."""
        self._stopped = True
        self._items.clear()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None

    def reset(self) -> None:
        """Allow enqueueing again after a stop."""
        self.stop()
        self._stopped = False
