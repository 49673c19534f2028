"""
Segment clock.

Cuts a continuous capture into fixed-interval chunk windows and tracks
the recorder generation used to discard late callbacks from a recorder
that has since been replaced.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(frozen=True)
class ChunkWindow:
    """`[start_ms, end_ms)` relative to capture start."""

    start_ms: int
    end_ms: int


class SegmentClock:
    """
    Chunk window accounting plus recorder generations.

    Windows never overlap and never start before zero:
    `start = max(previous_end, max(0, end - chunk_ms))`.
    """

    def __init__(self, chunk_ms: int = 10_000, clock: Callable[[], int] = monotonic_ms) -> None:
        self.chunk_ms = chunk_ms
        self.clock = clock
        self.generation = 0
        self._t0: int | None = None
        self._previous_end = 0

    def begin(self) -> None:
        """Mark capture start; window times are relative to this instant."""
        self._t0 = self.clock()
        self._previous_end = 0

    @property
    def started(self) -> bool:
        return self._t0 is not None

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def window(self, now: int | None = None) -> ChunkWindow:
        """Close the current window at `now` and return it."""
        if self._t0 is None:
            self.begin()
        now = self.clock() if now is None else now
        end = max(0, round(now - self._t0))
        start = max(self._previous_end, max(0, end - self.chunk_ms))
        end = max(end, start)
        self._previous_end = end
        return ChunkWindow(start_ms=start, end_ms=end)

    async def run(self, tick: Callable[[], Awaitable[None]]) -> None:
        """Call `tick` every interval until cancelled."""
        interval = self.chunk_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("segment_tick_failed", error=str(e), generation=self.generation)
