"""Concept extraction and the decaying, reinforcing concept map."""

import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

_WORD = re.compile(r"\w+")

STOPWORDS = frozenset({
    # articles, pronouns, determiners
    "a", "an", "the", "this", "that", "these", "those", "it", "its", "i", "me",
    "my", "mine", "we", "us", "our", "you", "your", "yours", "he", "him", "his",
    "she", "her", "they", "them", "their", "what", "which", "who", "whom",
    "whose", "where", "when", "why", "how", "there", "here", "some", "any",
    "all", "each", "every", "both", "few", "more", "most", "other", "such",
    # auxiliaries
    "am", "is", "are", "was", "were", "be", "been", "being", "do", "does",
    "did", "doing", "have", "has", "had", "having", "can", "could", "will",
    "would", "shall", "should", "may", "might", "must",
    # prepositions and conjunctions
    "and", "or", "but", "nor", "so", "if", "then", "than", "because", "as",
    "of", "at", "by", "for", "with", "about", "into", "through", "to", "from",
    "in", "on", "off", "out", "over", "under", "up", "down", "again", "also",
    "just", "only", "very", "too", "not", "no", "yes",
    # conversational filler
    "tell", "please", "thanks", "thank", "hi", "hello", "hey", "ok", "okay",
    "know", "want", "need", "like", "let", "get", "give", "show", "explain",
    "something", "anything", "thing", "things", "really", "much", "many",
})


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens of ``text``, in order, with repeats."""
    return _WORD.findall((text or "").lower())


def _is_concept(token: str) -> bool:
    return len(token) >= 2 and not token.isdigit() and token not in STOPWORDS


def count_concepts(text: str) -> Dict[str, int]:
    """Occurrences of each concept in ``text``, keyed in order of first appearance."""
    counts: Dict[str, int] = {}
    for token in tokenize(text):
        if _is_concept(token):
            counts[token] = counts.get(token, 0) + 1
    return counts


def extract_concepts(text: str) -> List[str]:
    """De-duplicated concepts of ``text`` in order of first appearance."""
    return list(count_concepts(text))


@dataclass
class ConceptEntry:
    """Strength of one concept plus when and how often it was reinforced."""
    strength: float
    last_touched: int = 0
    mentions: int = 0


class ConceptMap:
    """
    Session-scoped map of concept -> strength.

    Strength decays each turn a concept is not mentioned and grows each time
    it is. Entries under the pruning floor disappear.
    """

    def __init__(self, entries: Optional[Dict[str, ConceptEntry]] = None):
        self._entries: Dict[str, ConceptEntry] = dict(entries or {})

    def __contains__(self, concept: str) -> bool:
        return concept in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, concept: str) -> Optional[ConceptEntry]:
        return self._entries.get(concept)

    def strength(self, concept: str) -> float:
        entry = self._entries.get(concept)
        return entry.strength if entry else 0.0

    def items(self) -> List[Tuple[str, ConceptEntry]]:
        return list(self._entries.items())

    def decay(self, factor: float, floor: float, exempt: Iterable[str] = ()) -> List[str]:
        """
        Multiply every non-exempt strength by ``1 - factor``.

        Args:
            factor: Per-turn decay in [0, 1]
            floor: Entries that end up below this are pruned
            exempt: Concepts mentioned this turn; left untouched

        Returns:
            Pruned concepts
        """
        exempt = set(exempt)
        keep = 1.0 - factor
        pruned = []
        for concept in list(self._entries):
            if concept in exempt:
                continue
            entry = self._entries[concept]
            entry.strength *= keep
            if entry.strength < floor:
                del self._entries[concept]
                pruned.append(concept)
        return pruned

    def reinforce(
        self,
        concept: str,
        amount: float = 1.0,
        turn: int = 0,
        mention: bool = True
    ) -> ConceptEntry:
        """
        Add ``amount`` to ``concept``, creating it if needed.

        ``mention`` counts this as a turn in which the user raised the
        concept; reinforcement from agent replies passes False.
        """
        entry = self._entries.get(concept)
        if entry is None:
            entry = ConceptEntry(strength=0.0)
            self._entries[concept] = entry
        entry.strength += amount
        entry.last_touched = turn
        if mention:
            entry.mentions += 1
        return entry

    def add_related(self, concept: str, strength: float, turn: int = 0) -> bool:
        """Seed ``concept`` at ``strength`` unless it is already present."""
        if concept in self._entries:
            return False
        self._entries[concept] = ConceptEntry(strength=strength, last_touched=turn)
        return True

    def total_strength(self) -> float:
        return sum(e.strength for e in self._entries.values())

    def snapshot(self) -> List[Tuple[str, float]]:
        """``(concept, strength)`` pairs, strongest first, ties by concept."""
        return sorted(
            ((c, e.strength) for c, e in self._entries.items()),
            key=lambda item: (-item[1], item[0]),
        )

    def top(self, n: int = 10) -> List[Tuple[str, float]]:
        return self.snapshot()[:n]

    def copy(self) -> "ConceptMap":
        return ConceptMap({c: replace(e) for c, e in self._entries.items()})

    def clear(self):
        self._entries.clear()
