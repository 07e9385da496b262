"""Bounded history of orchestration decisions."""

from collections import deque
from typing import Iterable, List, Optional


class ReasoningChain:
    """Ordered reasoning entries; the oldest is evicted once ``max_entries`` is reached."""

    def __init__(self, max_entries: int = 20, entries: Optional[Iterable[str]] = None):
        self.max_entries = max_entries
        self._entries = deque(entries or (), maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: str):
        self._entries.append(entry)

    def last(self) -> Optional[str]:
        return self._entries[-1] if self._entries else None

    def snapshot(self) -> List[str]:
        return list(self._entries)

    def copy(self) -> "ReasoningChain":
        return ReasoningChain(self.max_entries, self._entries)

    def clear(self):
        self._entries.clear()
