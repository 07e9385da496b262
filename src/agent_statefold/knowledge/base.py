"""Base classes for knowledge-base connectors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class KnowledgeResult:
    """One fragment returned by an external knowledge base."""
    content: str
    relevance: float
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        snippet = self.content[:200] + "..." if len(self.content) > 200 else self.content
        return f"[{self.source}] (relevance: {self.relevance:.3f})\n  > {snippet}"


class KnowledgeBaseConnector(ABC):
    """
    Pluggable outside corpus consulted by the orchestrator.

    Implementations:
    - StaticKnowledgeBase: in-memory keyword search over fixed documents
    - HTTPKnowledgeBase: remote search service over HTTP

    Either method may raise; the orchestrator degrades to local scoring.
    """

    @abstractmethod
    async def search(self, query: str, concepts: List[str]) -> List[KnowledgeResult]:
        """
        Search for fragments relevant to the turn.

        Args:
            query: Current user text
            concepts: Concepts extracted (and expanded) for this turn

        Returns:
            KnowledgeResult list, most relevant first
        """
        pass

    @abstractmethod
    async def get_related_concepts(self, concepts: List[str]) -> List[str]:
        """Suggest concepts related to ``concepts``."""
        pass

    async def close(self) -> None:
        """Cleanup resources. Override if needed."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
