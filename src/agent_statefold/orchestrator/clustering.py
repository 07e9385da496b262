"""Duplicate removal and greedy similarity clustering of scored candidates."""

from typing import FrozenSet, List, Tuple

from .concepts import tokenize
from .scorer import rank_key
from .types import ScoredContext


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    """Jaccard similarity of two token sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def deduplicate(scored: List[ScoredContext]) -> Tuple[List[ScoredContext], int]:
    """
    Collapse candidates with identical text, keeping the best-ranked one.

    Returns:
        (survivors in rank order, number removed)
    """
    best = {}
    for sc in sorted(scored, key=rank_key):
        text = sc.content.strip()
        if text not in best:
            best[text] = sc
    survivors = sorted(best.values(), key=rank_key)
    return survivors, len(scored) - len(survivors)


def cluster(scored: List[ScoredContext], cutoff: float) -> Tuple[List[ScoredContext], List[ScoredContext]]:
    """
    Greedy clustering in rank order.

    Each candidate becomes a representative unless its token-set Jaccard
    similarity to an existing representative is at least ``cutoff``, in
    which case it is merged away.

    Args:
        scored: Candidates in any order
        cutoff: Similarity in (0, 1] at which two texts count as the same

    Returns:
        (representatives in rank order, merged candidates)
    """
    representatives: List[Tuple[ScoredContext, FrozenSet[str]]] = []
    merged: List[ScoredContext] = []

    for sc in sorted(scored, key=rank_key):
        words = frozenset(tokenize(sc.content))
        if any(jaccard(words, rep_words) >= cutoff for _, rep_words in representatives):
            merged.append(sc)
            continue
        representatives.append((sc, words))

    return [sc for sc, _ in representatives], merged
