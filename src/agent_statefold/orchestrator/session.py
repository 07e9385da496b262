"""Per-session orchestration state."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .concepts import ConceptMap
from .reasoning import ReasoningChain


@dataclass
class SessionState:
    """
    Maintains state across a conversation session.

    Tracks:
    - The decaying concept map
    - The reasoning chain
    - Turn count and timing

    Turns mutate copies and hand them to ``commit``; the lock serializes
    turns of the same session.
    """
    session_id: str
    max_reasoning_history: int = 20
    created_at: datetime = field(default_factory=datetime.utcnow)

    concept_map: ConceptMap = field(default_factory=ConceptMap)
    reasoning: ReasoningChain = field(default=None)

    turn_count: int = 0
    last_turn_at: Optional[datetime] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def __post_init__(self):
        if self.reasoning is None:
            self.reasoning = ReasoningChain(self.max_reasoning_history)

    def commit(self, concept_map: ConceptMap, reasoning: ReasoningChain, advance_turn: bool = True):
        """Replace concept map and reasoning chain in one step."""
        self.concept_map = concept_map
        self.reasoning = reasoning
        if advance_turn:
            self.turn_count += 1
            self.last_turn_at = datetime.utcnow()

    def get_session_duration_minutes(self) -> float:
        """Get session duration in minutes."""
        return (datetime.utcnow() - self.created_at).total_seconds() / 60

    def get_stats(self, top_n: int = 10) -> Dict:
        """Get session statistics."""
        return {
            "session_id": self.session_id,
            "turn_count": self.turn_count,
            "duration_minutes": self.get_session_duration_minutes(),
            "concepts": len(self.concept_map),
            "top_concepts": self.concept_map.top(top_n),
            "reasoning_chain": self.reasoning.snapshot(),
        }

    def reset(self):
        """Reset session state."""
        self.concept_map = ConceptMap()
        self.reasoning = ReasoningChain(self.max_reasoning_history)
        self.turn_count = 0
        self.last_turn_at = None


class SessionRegistry:
    """Session states keyed by session id, owned by one orchestrator."""

    def __init__(self, max_reasoning_history: int = 20):
        self.max_reasoning_history = max_reasoning_history
        self._sessions: Dict[str, SessionState] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionState(
                session_id=session_id,
                max_reasoning_history=self.max_reasoning_history,
            )
            self._sessions[session_id] = session
        return session

    def remove(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.pop(session_id, None)

    def session_ids(self) -> List[str]:
        return list(self._sessions)
