"""In-memory knowledge base over a fixed set of documents."""

from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..orchestrator.concepts import extract_concepts, tokenize
from .base import KnowledgeBaseConnector, KnowledgeResult


class StaticKnowledgeBase(KnowledgeBaseConnector):
    """
    Keyword search over documents held in memory.

    Relevance is the fraction of the turn's concepts found in a document.
    Related concepts come from an explicit adjacency table, looked up in
    both directions.

    Usage:
        kb = StaticKnowledgeBase(
            documents=[{"source": "faq.md", "content": "Hooks let ..."}],
            related_concepts={"react": ["hooks", "jsx"]},
        )
    """

    def __init__(
        self,
        documents: Iterable[Union[KnowledgeResult, Mapping]] = (),
        related_concepts: Optional[Mapping[str, Iterable[str]]] = None,
        max_results: int = 5,
        min_relevance: float = 0.0
    ):
        self.documents: List[KnowledgeResult] = [
            d if isinstance(d, KnowledgeResult) else KnowledgeResult(
                content=d["content"],
                relevance=float(d.get("relevance", 1.0)),
                source=d.get("source", "static"),
                metadata=dict(d.get("metadata") or {}),
            )
            for d in documents
        ]
        self.max_results = max_results
        self.min_relevance = min_relevance

        self._related: Dict[str, List[str]] = {}
        for concept, related in (related_concepts or {}).items():
            concept = concept.lower()
            for other in related:
                other = other.lower()
                self._link(concept, other)
                self._link(other, concept)

    def _link(self, a: str, b: str):
        bucket = self._related.setdefault(a, [])
        if b not in bucket:
            bucket.append(b)

    def add_document(self, content: str, source: str = "static", **metadata):
        self.documents.append(KnowledgeResult(
            content=content,
            relevance=1.0,
            source=source,
            metadata=metadata,
        ))

    async def search(self, query: str, concepts: List[str]) -> List[KnowledgeResult]:
        terms = set(concepts) | set(extract_concepts(query))
        if not terms:
            return []

        results = []
        for doc in self.documents:
            words = set(tokenize(doc.content))
            hits = len(terms & words)
            if not hits:
                continue
            relevance = (hits / len(terms)) * doc.relevance
            if relevance < self.min_relevance:
                continue
            results.append(KnowledgeResult(
                content=doc.content,
                relevance=min(relevance, 1.0),
                source=doc.source,
                metadata=dict(doc.metadata),
            ))

        results.sort(key=lambda r: (-r.relevance, r.source))
        return results[:self.max_results]

    async def get_related_concepts(self, concepts: List[str]) -> List[str]:
        asked = {c.lower() for c in concepts}
        related = []
        for concept in concepts:
            for other in self._related.get(concept.lower(), []):
                if other not in asked and other not in related:
                    related.append(other)
        return related
