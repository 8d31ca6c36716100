"""Per-request execution context — tenant, progress reporting, time budget."""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], Awaitable[None]]


@dataclass
class RequestContext:
    """State that belongs to a single query and is passed explicitly down the call chain.

    ``progress`` receives ``(event, data)`` notifications; a failing callback
    never interrupts retrieval.
    """

    tenant_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    progress: ProgressCallback | None = None
    time_budget_seconds: float | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def budget_exceeded(self) -> bool:
        if self.time_budget_seconds is None:
            return False
        return self.elapsed_seconds >= self.time_budget_seconds

    async def notify(self, event: str, **data: Any) -> None:
        if self.progress is None:
            return
        try:
            await self.progress(event, {"request_id": self.request_id, **data})
        except Exception as exc:
            logger.warning("Progress callback failed for %s: %s", event, exc)
