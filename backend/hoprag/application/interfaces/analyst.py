"""Abstract interface (port) for the analysis collaborator."""

from abc import ABC, abstractmethod

from hoprag.domain.entities.iteration import CritiqueResult
from hoprag.domain.entities.retrieval import PlanExecutionResult


class Analyst(ABC):
    """Turns retrieved data into a narrative answer (usually an LLM call)."""

    @abstractmethod
    async def analyze(
        self,
        question: str,
        execution: PlanExecutionResult,
        feedback: CritiqueResult | None = None,
    ) -> str:
        """Produce a narrative for ``question``.

        ``feedback`` carries the previous critique when re-analysing.
        """
        ...
