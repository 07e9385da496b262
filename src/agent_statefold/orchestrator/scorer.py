"""Relevance scoring for context candidates."""

from typing import Dict, List, Sequence

from .concepts import ConceptMap, tokenize
from .types import SOURCE_KNOWLEDGE, Candidate, ScoredContext

KEYWORD_WEIGHT = 0.4
CONCEPT_WEIGHT = 0.35
PRIORITY_WEIGHT = 0.25


def rank_key(scored: ScoredContext):
    """Score desc, then priority desc, then key."""
    return (-scored.score, -scored.priority, scored.key)


class RelevanceScorer:
    """
    Multi-factor relevance scoring for context candidates.

    Combines:
    - Keyword overlap (share of the query's keywords found in the text)
    - Concept overlap (share of concept-map strength found in the text)
    - Priority (declared priority, normalized; knowledge-base relevance)
    """

    def __init__(
        self,
        keyword_weight: float = KEYWORD_WEIGHT,
        concept_weight: float = CONCEPT_WEIGHT,
        priority_weight: float = PRIORITY_WEIGHT
    ):
        """
        Initialize scorer with configurable weights.

        Args:
            keyword_weight: Weight for keyword overlap [0-1]
            concept_weight: Weight for concept overlap [0-1]
            priority_weight: Weight for priority [0-1]
        """
        self.weights = {
            "keyword": keyword_weight,
            "concept": concept_weight,
            "priority": priority_weight,
        }

        # Validate weights sum to ~1.0
        total = sum(self.weights.values())
        if total > 0 and abs(total - 1.0) > 0.01:
            for k in self.weights:
                self.weights[k] /= total

    def score(
        self,
        keywords: Sequence[str],
        candidates: List[Candidate],
        concept_map: ConceptMap
    ) -> List[ScoredContext]:
        """
        Score every candidate against the turn.

        Args:
            keywords: Concepts extracted from the user text
            candidates: Context and knowledge-base candidates
            concept_map: Working concept map for this turn

        Returns:
            List of ScoredContext in rank order
        """
        if not candidates:
            return []

        max_priority = max(
            (c.priority for c in candidates if c.source != SOURCE_KNOWLEDGE),
            default=0,
        )
        total_strength = concept_map.total_strength()
        strengths = {c: e.strength for c, e in concept_map.items()}

        scored = []
        for candidate in candidates:
            words = set(tokenize(candidate.content))

            matched = [k for k in keywords if k in words]
            keyword = len(matched) / len(keywords) if keywords else 0.0

            concept = 0.0
            if total_strength > 0:
                concept = sum(s for c, s in strengths.items() if c in words) / total_strength

            priority = self._priority(candidate, max_priority)

            final_score = (
                self.weights["keyword"] * keyword +
                self.weights["concept"] * concept +
                self.weights["priority"] * priority
            )

            scored.append(ScoredContext(
                candidate=candidate,
                score=final_score,
                breakdown={
                    "keyword": keyword,
                    "concept": concept,
                    "priority": priority,
                    "matched_keywords": matched,
                    "matched_concepts": [c for c in strengths if c in words],
                },
            ))

        scored.sort(key=rank_key)
        return scored

    @staticmethod
    def _priority(candidate: Candidate, max_priority: int) -> float:
        if candidate.source == SOURCE_KNOWLEDGE:
            return min(max(candidate.relevance, 0.0), 1.0)
        if max_priority <= 0:
            return 0.0
        return min(max(candidate.priority / max_priority, 0.0), 1.0)

    def get_weights(self) -> Dict[str, float]:
        """Get current scoring weights."""
        return self.weights.copy()
