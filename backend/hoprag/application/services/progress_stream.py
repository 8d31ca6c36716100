"""Progress stream — per-request SSE channel for plan execution updates."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

logger = logging.getLogger(__name__)


class ProgressStream:
    """Queue-backed event channel owned by a single request.

    ``publish`` is shaped as a RequestContext progress callback; ``events``
    yields formatted SSE strings until ``close`` is called.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        if self._closed:
            return
        sse_message = f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
        try:
            self._queue.put_nowait(sse_message)
        except asyncio.QueueFull:
            logger.warning("Progress queue full — dropping %s event", event_type)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    async def events(self) -> AsyncGenerator[str, None]:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event

    @property
    def closed(self) -> bool:
        return self._closed
