"""Data types produced while orchestrating one turn."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

SOURCE_CONTEXT = "context"
SOURCE_KNOWLEDGE = "knowledge_base"

STRATEGY_FULL = "full"
STRATEGY_FILTERED = "filtered"
STRATEGY_SUMMARIZED = "summarized"
STRATEGY_MINIMAL = "minimal"


@dataclass
class Candidate:
    """A piece of text that may be injected this turn."""
    key: str
    content: str
    source: str = SOURCE_CONTEXT
    priority: int = 0
    relevance: float = 0.0  # knowledge-base relevance; unused for contexts
    origin: str = ""


@dataclass
class ScoredContext:
    """Candidate with its combined relevance score."""
    candidate: Candidate
    score: float
    breakdown: Dict[str, Any] = field(default_factory=dict)
    # breakdown: {keyword: 0.5, concept: 0.3, priority: 1.0, matched_keywords: [...]}
    tokens: int = 0
    summarized: bool = False
    truncated: bool = False

    @property
    def key(self) -> str:
        return self.candidate.key

    @property
    def content(self) -> str:
        return self.candidate.content

    @property
    def source(self) -> str:
        return self.candidate.source

    @property
    def priority(self) -> int:
        return self.candidate.priority

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "source": self.source,
            "score": round(self.score, 4),
            "tokens": self.tokens,
            "summarized": self.summarized,
            "truncated": self.truncated,
            "breakdown": dict(self.breakdown),
        }


@dataclass
class Allocation:
    """Outcome of fitting ranked candidates into the token budget."""
    selected: List[ScoredContext]
    strategy: str
    tokens_used: int
    budget: int
    dropped: List[ScoredContext] = field(default_factory=list)

    @property
    def utilization(self) -> float:
        return self.tokens_used / self.budget if self.budget > 0 else 0.0


@dataclass
class OrchestrationResult:
    """Everything decided for one turn."""
    selected_contexts: List[str]
    context_strategy: str
    total_relevance_score: float
    concept_map: List[Tuple[str, float]]
    reasoning_chain: List[str]

    # Debug info
    selected: List[ScoredContext] = field(default_factory=list)
    tokens_used: int = 0
    budget: int = 0
    dropped: int = 0
    filtered: int = 0
    clustered: int = 0
    knowledge_degraded: bool = False
    turn: int = 0
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_contexts": list(self.selected_contexts),
            "context_strategy": self.context_strategy,
            "total_relevance_score": round(self.total_relevance_score, 4),
            "concept_map": [[c, round(s, 4)] for c, s in self.concept_map],
            "reasoning_chain": list(self.reasoning_chain),
            "selected": [s.to_dict() for s in self.selected],
            "tokens_used": self.tokens_used,
            "budget": self.budget,
            "dropped": self.dropped,
            "filtered": self.filtered,
            "clustered": self.clustered,
            "knowledge_degraded": self.knowledge_degraded,
            "turn": self.turn,
            "latency_ms": round(self.latency_ms, 2),
        }
