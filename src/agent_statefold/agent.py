"""
Thin agent façade: one call per user turn.

intent selection -> leaf lookup -> entry guard (or redirect) -> context orchestration
-> LLM call -> persistence -> exit guard
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from .errors import StateNotFoundError
from .orchestrator import ContextOrchestrator, OrchestrationResult
from .orchestrator.concepts import extract_concepts, tokenize
from .state import StateResolver, evaluate_guard
from .types import (
    ACTION_CUSTOM_RESPONSE,
    ACTION_FALLBACK_STATE,
    GuardResult,
    ModelParameters,
    ResolvedState,
    StateSummary,
)

logger = structlog.get_logger(__name__)

DEFAULT_DENIAL = "Action not allowed."

Message = Dict[str, Any]

# What intent selection may return: a candidate, a path, or a key
Selection = Union[StateSummary, Sequence[str], str]


@dataclass
class LLMResponse:
    """What a model call produced."""
    content: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    raw: Any = None


class LLMProvider(ABC):
    """Model backend. Implementations own transport, retries and tool execution."""

    @abstractmethod
    async def generate_response(
        self,
        messages: List[Message],
        tools: List[Dict[str, Any]],
        parameters: Optional[ModelParameters] = None
    ) -> LLMResponse:
        """
        Produce the assistant reply.

        Args:
            messages: Chat messages, system message first
            tools: Tool schemas in function-calling form
            parameters: Resolved model parameters of the active leaf
        """
        pass


class IntentAnalyzer(ABC):
    """Chooses which leaf state answers a turn."""

    @abstractmethod
    async def select_state(
        self,
        user_text: str,
        candidates: List[StateSummary],
        history: Sequence[Message]
    ) -> Optional[Selection]:
        """
        Choose the leaf that answers the turn.

        Returns:
            The chosen candidate (or its path), or None when nothing fits.
            A bare key is accepted too; it resolves to the first leaf with
            that key.
        """
        pass


class KeywordIntentAnalyzer(IntentAnalyzer):
    """
    Picks the leaf whose key, description and path share the most concepts
    with the user text. Ties go to the earlier leaf.
    """

    async def select_state(
        self,
        user_text: str,
        candidates: List[StateSummary],
        history: Sequence[Message]
    ) -> Optional[StateSummary]:
        concepts = set(extract_concepts(user_text))
        if not concepts:
            return None

        best, best_hits = None, 0
        for candidate in candidates:
            words = set(tokenize(" ".join([candidate.description, *candidate.path])))
            words.update(tokenize(candidate.key.replace("_", " ")))
            hits = len(concepts & words)
            if hits > best_hits:
                best, best_hits = candidate, hits
        return best


class ConversationStore(ABC):
    """Conversation persistence."""

    @abstractmethod
    async def store_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    @abstractmethod
    async def query_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """Most recent ``limit`` messages of a session, oldest first."""
        pass


class InMemoryConversationStore(ConversationStore):
    """Process-local store, for tests and the CLI."""

    def __init__(self):
        self._messages: Dict[str, List[Message]] = {}

    async def store_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        self._messages.setdefault(session_id, []).append({
            "role": role,
            "content": content,
            "timestamp": datetime.utcnow().isoformat(),
            "metadata": dict(metadata or {}),
        })

    async def query_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        messages = self._messages.get(session_id, [])
        if limit:
            messages = messages[-limit:]
        return [dict(m) for m in messages]


@dataclass
class TurnResult:
    """Outcome of one processed turn."""
    response: str
    state: ResolvedState
    entered: bool = True
    orchestration: Optional[OrchestrationResult] = None
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    exit_denied: Optional[str] = None
    redirected_from: Optional[ResolvedState] = None


def build_system_message(full_prompt: str, contexts: Sequence[str]) -> str:
    """Leaf prompt followed by the selected context fragments."""
    parts = [full_prompt] if full_prompt else []
    if contexts:
        parts.append("Relevant context:\n\n" + "\n\n".join(contexts))
    return "\n\n".join(parts)


class Agent:
    """
    Wires resolver, orchestrator, intent selection, model and storage.

    Usage:
        agent = Agent(resolver, orchestrator, llm=MyProvider())
        result = await agent.process_turn("user-42", "how do hooks work?")
        print(result.state.key, result.response)
    """

    def __init__(
        self,
        resolver: StateResolver,
        orchestrator: ContextOrchestrator,
        llm: LLMProvider,
        intent_analyzer: Optional[IntentAnalyzer] = None,
        store: Optional[ConversationStore] = None,
        fallback_state: Optional[str] = None,
        history_limit: int = 20
    ):
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.llm = llm
        self.intent_analyzer = intent_analyzer or KeywordIntentAnalyzer()
        self.store = store or InMemoryConversationStore()
        self.fallback_state = fallback_state
        self.history_limit = history_limit

    async def process_turn(
        self,
        session_id: str,
        user_text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TurnResult:
        """
        Answer one user message.

        An entry guard that denies with ``alternative_action="fallback_state"``
        moves the turn to that leaf, whose own entry guard then runs once;
        a second denial is final.

        Raises:
            StateNotFoundError: intent selection failed and there is no leaf
                to fall back on
        """
        metadata = dict(metadata or {})
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            history = await self.store.query_messages(session_id, self.history_limit)
            state = await self._select_state(user_text, history)
            redirected_from = None

            guard = await evaluate_guard(state.on_enter, user_text, metadata, state.key)
            if not guard.allowed:
                fallback = self._guard_fallback(guard, state)
                if fallback is None:
                    return await self._deny(session_id, user_text, metadata, state, guard)

                logger.info("Entry guard redirected turn", state=state.key, fallback=fallback.key)
                redirected_from, state = state, fallback
                guard = await evaluate_guard(state.on_enter, user_text, metadata, state.key)
                if not guard.allowed:
                    return await self._deny(session_id, user_text, metadata, state, guard)

            orchestration = await self.orchestrator.orchestrate(
                session_id, user_text, state, history=history
            )

            messages = [{
                "role": "system",
                "content": build_system_message(state.full_prompt, orchestration.selected_contexts),
            }]
            messages.extend({"role": m["role"], "content": m["content"]} for m in history)
            messages.append({"role": "user", "content": user_text})

            await self.store.store_message(session_id, "user", user_text, metadata)
            reply = await self.llm.generate_response(
                messages,
                state.tool_schemas(),
                state.model_parameters,
            )
            await self.orchestrator.observe_response(session_id, reply.content, reply.tool_calls)

            reply_metadata = {"state": state.key, "strategy": orchestration.context_strategy}
            if redirected_from is not None:
                reply_metadata["redirected_from"] = redirected_from.key
            await self.store.store_message(session_id, "assistant", reply.content, reply_metadata)

            result = TurnResult(
                response=reply.content,
                state=state,
                orchestration=orchestration,
                tool_calls=list(reply.tool_calls),
                redirected_from=redirected_from,
            )

            exit_guard = await evaluate_guard(state.on_exit, user_text, metadata, state.key)
            if not exit_guard.allowed:
                result.exit_denied = exit_guard.message or DEFAULT_DENIAL
                logger.warning("Exit guard denied leaving state", state=state.key,
                               message=result.exit_denied)

            return result

    def _guard_fallback(self, guard: GuardResult, state: ResolvedState) -> Optional[ResolvedState]:
        if guard.alternative_action != ACTION_FALLBACK_STATE:
            return None
        fallback = self.resolver.find_leaf(guard.fallback_state) if guard.fallback_state else None
        if fallback is None or fallback.path == state.path:
            logger.warning("Guard fallback state unusable", state=state.key,
                           fallback=guard.fallback_state)
            return None
        return fallback

    async def _deny(
        self,
        session_id: str,
        user_text: str,
        metadata: Dict[str, Any],
        state: ResolvedState,
        guard: GuardResult
    ) -> TurnResult:
        if guard.alternative_action == ACTION_CUSTOM_RESPONSE:
            response = guard.custom_message or guard.message or DEFAULT_DENIAL
        else:
            response = guard.message or guard.custom_message or DEFAULT_DENIAL

        await self.store.store_message(session_id, "user", user_text, metadata)
        await self.store.store_message(session_id, "assistant", response, {
            "state": state.key,
            "guard_denied": True,
        })
        return TurnResult(response=response, state=state, entered=False)

    async def _select_state(self, user_text: str, history: Sequence[Message]) -> ResolvedState:
        candidates = self.resolver.get_leaf_state_tree()
        try:
            choice = await self.intent_analyzer.select_state(user_text, candidates, history)
        except Exception as e:
            logger.warning("Intent selection failed, falling back", error=str(e))
            choice = None

        state = self.resolver.find_leaf(choice) if choice else None
        if state is not None:
            return state

        if choice:
            logger.warning("Intent selected an unknown state", choice=str(choice))
        if self.fallback_state:
            state = self.resolver.find_leaf(self.fallback_state)
        if state is None and self.resolver.leaves:
            state = self.resolver.leaves[0]
        if state is None:
            raise StateNotFoundError(f"No leaf state for '{choice}' and no fallback available")
        return state
