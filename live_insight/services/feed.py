"""
Realtime event feed subscription.

Reads the workshop server's server-sent event stream with httpx and
hands each named event to a callback. A dropped connection is reopened
after a fixed delay for as long as the subscription is open.
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import httpx
import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, str], object]

IGNORED_EVENTS = frozenset({"open", "ping"})


@dataclass
class ServerSentEvent:
    event: str = "message"
    data_lines: list[str] = field(default_factory=list)
    id: str | None = None

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Parse SSE wire lines into events. Comment lines (`: ping`) are skipped."""
    current = ServerSentEvent()
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if current.data_lines:
                yield current
            current = ServerSentEvent()
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            current.event = value
        elif name == "data":
            current.data_lines.append(value)
        elif name == "id":
            current.id = value

    if current.data_lines:
        yield current


class FeedSubscription:
    """
    One session's subscription to the event feed.

    `open()` starts a background reader; `close()` cancels it
    synchronously. Both are idempotent.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        session_id: str,
        handler: EventHandler,
        reconnect_delay_s: float = 3.0,
    ) -> None:
        self.client = client
        self.session_id = session_id
        self.handler = handler
        self.reconnect_delay_s = reconnect_delay_s
        self.connections = 0
        self._task: asyncio.Task | None = None

    @property
    def path(self) -> str:
        return f"/workshops/{self.session_id}/events"

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    def open(self) -> None:
        if self.is_open:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self._read_once()
                logger.info("feed_closed_by_server", session_id=self.session_id)
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                logger.warning("feed_connection_lost", session_id=self.session_id, error=str(e))
            await asyncio.sleep(self.reconnect_delay_s)

    async def _read_once(self) -> None:
        async with self.client.stream(
            "GET",
            self.path,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            timeout=httpx.Timeout(10.0, read=None),
        ) as response:
            response.raise_for_status()
            self.connections += 1
            logger.info("feed_connected", session_id=self.session_id, attempt=self.connections)

            async for event in iter_sse(response.aiter_lines()):
                if event.event in IGNORED_EVENTS:
                    continue
                try:
                    self.handler(event.event, event.data)
                except Exception as e:
                    logger.error(
                        "feed_handler_failed",
                        session_id=self.session_id,
                        event_name=event.event,
                        error=str(e),
                    )
