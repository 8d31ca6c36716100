"""Abstract interface (port) for the critique collaborator."""

from abc import ABC, abstractmethod
from typing import Any

from hoprag.domain.entities.iteration import CritiqueResult


class Critic(ABC):
    """Checks a narrative against the raw data it was derived from."""

    @abstractmethod
    async def critique(self, narrative: str, raw_data: list[dict[str, Any]]) -> CritiqueResult:
        ...
