"""The context orchestrator ("scanning ball")."""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import (
    Any, AsyncIterator, Awaitable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
)

import structlog

from ..knowledge.base import KnowledgeBaseConnector, KnowledgeResult
from ..summarizers.base import Summarizer
from ..types import ResolvedState
from .accessors import read_contexts
from .budget import TokenBudget
from .clustering import cluster, deduplicate
from .concepts import ConceptMap, count_concepts, extract_concepts
from .config import OrchestratorConfig
from .levels import get_preset
from .scorer import RelevanceScorer
from .session import SessionRegistry, SessionState
from .telemetry import SessionMetrics, TelemetryLogger, TurnMetrics
from .types import SOURCE_KNOWLEDGE, Allocation, Candidate, OrchestrationResult

logger = structlog.get_logger(__name__)

History = Sequence[Mapping[str, Any]]

_TOOL_FIELDS = ("arguments", "result", "content", "output")


class ContextOrchestrator:
    """
    Picks the context fragments injected for each turn.

    Per turn:
    1. Extracts concepts from the user text
    2. Decays the session's concept map and reinforces this turn's concepts
    3. Reads the leaf's contexts and queries the knowledge base
    4. Scores, filters, de-duplicates and (optionally) clusters candidates
    5. Fills the token budget, summarizing or truncating when needed
    6. Records a reasoning entry and commits the session state

    Usage:
        orchestrator = ContextOrchestrator(
            OrchestratorConfig.from_level("balanced"),
            knowledge_base=StaticKnowledgeBase(documents),
        )

        result = await orchestrator.orchestrate("user-42", "tell me about react", state)
        print(result.selected_contexts)  # Inject into the system message
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        knowledge_base: Optional[KnowledgeBaseConnector] = None,
        summarizer: Optional[Summarizer] = None,
        telemetry_path: Optional[str] = None,
        scorer: Optional[RelevanceScorer] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Options (default: balanced level)
            knowledge_base: Optional outside corpus
            summarizer: Optional summarizer for contexts that overflow
            telemetry_path: JSONL telemetry file; no telemetry when None
            scorer: Scorer override (custom weights)
        """
        self.config = config or OrchestratorConfig()
        self.knowledge_base = knowledge_base
        self.summarizer = summarizer
        self.scorer = scorer or RelevanceScorer()
        self.budget = self._make_budget(self.config)
        self.sessions = SessionRegistry(self.config.max_reasoning_history)
        self.telemetry = TelemetryLogger(telemetry_path) if telemetry_path else None

    @staticmethod
    def _make_budget(config: OrchestratorConfig) -> TokenBudget:
        return TokenBudget(
            total_budget=config.max_context_tokens,
            estimator=config.token_estimator,
            chars_per_token=config.chars_per_token,
            encoding=config.tiktoken_encoding,
            min_summary_tokens=config.min_summary_tokens,
        )

    async def orchestrate(
        self,
        session_id: str,
        user_text: str,
        state: ResolvedState,
        history: Optional[History] = None,
        dry_run: bool = False
    ) -> OrchestrationResult:
        """
        Run the scanning ball for one turn.

        Turns of the same session run one at a time; different sessions run
        concurrently. Session state changes are committed in one step at the
        end, so a cancelled or failed turn leaves the session untouched.

        Args:
            session_id: Conversation identifier
            user_text: Current user message
            state: Active leaf state
            history: Earlier messages (``{"role", "content"}``), oldest first.
                Used for keywords only when the user text has none
            dry_run: Compute the result without committing session state or
                writing telemetry

        Returns:
            OrchestrationResult
        """
        async with self._live_session(session_id) as session:
            return await self._run_turn(session, user_text, state, history, dry_run)

    @asynccontextmanager
    async def _live_session(self, session_id: str) -> AsyncIterator[SessionState]:
        """
        Hold the lock of the registered session for ``session_id``.

        A session ended while this call waited for its lock is not reused;
        the turn goes to a fresh session instead.
        """
        while True:
            session = self.sessions.get_or_create(session_id)
            async with session.lock:
                if self.sessions.get(session_id) is session:
                    yield session
                    return

    async def _run_turn(
        self,
        session: SessionState,
        user_text: str,
        state: ResolvedState,
        history: Optional[History],
        dry_run: bool
    ) -> OrchestrationResult:
        start_time = time.perf_counter()
        config = self.config
        budget = self.budget
        log = logger.bind(session_id=session.session_id, state=state.key)
        turn = session.turn_count + 1

        # 1. Extract concepts
        counts = count_concepts(user_text)
        concepts = list(counts)
        keywords = concepts or self._history_keywords(history)

        # 2-3. Decay and reinforce on a working copy
        if config.enable_concept_mapping:
            concept_map = session.concept_map.copy()
            prior_mentions = {c: e.mentions for c, e in concept_map.items()}
            pruned = concept_map.decay(
                config.time_decay_factor,
                config.concept_floor,
                exempt=concepts,
            )
            if pruned:
                log.debug("Pruned faded concepts", concepts=pruned)
        else:
            concept_map = ConceptMap()
            prior_mentions = {}

        for concept, count in counts.items():
            concept_map.reinforce(concept, float(count), turn=turn)

        reasoning = session.reasoning.copy()

        # 4. Related concepts from the knowledge base
        knowledge_failures = 0
        related_added: List[str] = []
        if self.knowledge_base is not None and concepts:
            related, ok = await self._consult(
                "get_related_concepts",
                self.knowledge_base.get_related_concepts(concepts),
                config.knowledge_timeout,
            )
            if not ok:
                knowledge_failures += 1
            for concept in related or []:
                concept = str(concept).lower()
                if concept_map.add_related(concept, config.related_concept_strength, turn=turn):
                    related_added.append(concept)

        # 5. Gather candidates: leaf contexts and knowledge-base results
        reads, (results, ok) = await asyncio.gather(
            read_contexts(state.contexts, config.accessor_timeout),
            self._search(user_text, concepts + related_added, config.knowledge_timeout),
        )
        if not ok:
            knowledge_failures += 1

        candidates = [
            Candidate(key=ctx.key, content=text, priority=ctx.priority, origin=ctx.description)
            for ctx, text in reads
        ]
        for i, result in enumerate((results or [])[:config.max_knowledge_results]):
            candidates.append(Candidate(
                key=f"kb:{result.source}#{i}",
                content=result.content,
                source=SOURCE_KNOWLEDGE,
                relevance=result.relevance,
                origin=result.source,
            ))

        # 6. Score, threshold, de-duplicate, cluster
        scored = self.scorer.score(keywords, candidates, concept_map)
        above = [sc for sc in scored if sc.score >= config.relevance_threshold]
        filtered_count = len(scored) - len(above)
        above, _ = deduplicate(above)

        clustered_count = 0
        if config.enable_semantic_clustering:
            above, merged = cluster(above, config.similarity_cutoff)
            clustered_count = len(merged)

        # 7. Fill the budget
        allocation = await budget.allocate(above, self.summarizer, query=user_text)

        # 8. Reasoning entry
        reasoning.append(self._describe_turn(turn, state, allocation, concepts, prior_mentions))

        latency = (time.perf_counter() - start_time) * 1000
        result = OrchestrationResult(
            selected_contexts=[sc.content for sc in allocation.selected],
            context_strategy=allocation.strategy,
            total_relevance_score=sum(sc.score for sc in allocation.selected),
            concept_map=concept_map.snapshot(),
            reasoning_chain=reasoning.snapshot(),
            selected=allocation.selected,
            tokens_used=allocation.tokens_used,
            budget=allocation.budget,
            dropped=len(allocation.dropped),
            filtered=filtered_count,
            clustered=clustered_count,
            knowledge_degraded=knowledge_failures > 0,
            turn=turn,
            latency_ms=latency,
        )

        if dry_run:
            return result

        # 9. Commit in one step
        session.commit(
            concept_map if config.enable_concept_mapping else session.concept_map,
            reasoning,
        )

        log.info(
            "Orchestrated turn",
            turn=turn,
            strategy=allocation.strategy,
            selected=[sc.key for sc in allocation.selected],
            tokens=allocation.tokens_used,
            budget=allocation.budget,
            knowledge_degraded=result.knowledge_degraded,
        )

        if self.telemetry is not None:
            # File writes and rotation stay off the event loop
            await asyncio.to_thread(self.telemetry.log_turn, TurnMetrics(
                timestamp=datetime.utcnow().isoformat(),
                session_id=session.session_id,
                turn_number=turn,
                state_key=state.key,
                concepts_extracted=len(concepts),
                concepts_tracked=len(concept_map),
                related_concepts_added=len(related_added),
                candidates_scored=len(scored),
                contexts_selected=len(allocation.selected),
                contexts_dropped=len(allocation.dropped),
                contexts_filtered=filtered_count,
                contexts_clustered=clustered_count,
                knowledge_results=sum(1 for c in candidates if c.source == SOURCE_KNOWLEDGE),
                knowledge_failures=knowledge_failures,
                strategy=allocation.strategy,
                tokens_used=allocation.tokens_used,
                budget=allocation.budget,
                total_relevance=result.total_relevance_score,
                latency_ms=latency,
                top_contexts=[
                    {"key": sc.key, "source": sc.source, "score": round(sc.score, 4)}
                    for sc in allocation.selected[:5]
                ],
            ))

        return result

    async def _search(
        self,
        user_text: str,
        concepts: List[str],
        timeout: Optional[float]
    ) -> Tuple[Optional[List[KnowledgeResult]], bool]:
        if self.knowledge_base is None:
            return [], True
        return await self._consult(
            "search",
            self.knowledge_base.search(user_text, concepts),
            timeout,
        )

    async def _consult(
        self,
        operation: str,
        call: Awaitable[Any],
        timeout: Optional[float]
    ) -> Tuple[Any, bool]:
        """Await a knowledge-base call; failures degrade to (None, False)."""
        try:
            return await asyncio.wait_for(call, timeout=timeout), True
        except asyncio.TimeoutError:
            logger.warning("Knowledge base timed out", operation=operation, timeout=timeout)
        except Exception as e:
            logger.warning("Knowledge base failed", operation=operation, error=str(e))
        return None, False

    @staticmethod
    def _history_keywords(history: Optional[History]) -> List[str]:
        """Concepts of the most recent user message that has any."""
        for message in reversed(list(history or [])):
            if message.get("role", "user") != "user":
                continue
            concepts = extract_concepts(str(message.get("content", "")))
            if concepts:
                return concepts
        return []

    @staticmethod
    def _describe_turn(
        turn: int,
        state: ResolvedState,
        allocation: Allocation,
        concepts: List[str],
        prior_mentions: Dict[str, int]
    ) -> str:
        if not allocation.selected:
            return (
                f"Turn {turn} [{state.key}]: no context selected "
                f"(concepts: {', '.join(concepts) or 'none'})"
            )

        top = allocation.selected[:3]
        carried: List[str] = []
        matched: List[str] = []
        for sc in top:
            for concept in sc.breakdown.get("matched_concepts", []):
                if concept not in carried:
                    carried.append(concept)
            for keyword in sc.breakdown.get("matched_keywords", []):
                if keyword not in matched:
                    matched.append(keyword)

        def label(concept: str) -> str:
            prior = prior_mentions.get(concept, 0)
            if not prior:
                return f"{concept} (new)"
            return f"{concept} ({prior} prior turn{'s' if prior != 1 else ''})"

        return (
            f"Turn {turn} [{state.key}]: selected {', '.join(sc.key for sc in top)} "
            f"({allocation.strategy}); concepts: {', '.join(label(c) for c in carried) or 'none'}; "
            f"keywords: {', '.join(matched) or 'none'}"
        )

    async def observe_response(
        self,
        session_id: str,
        response_text: str,
        tool_results: Optional[Sequence[Any]] = None
    ) -> List[str]:
        """
        Fold the agent's reply back into the session.

        Concepts in the reply, and in the names, arguments and results of the
        tools it used, are reinforced at ``related_concept_strength`` (no
        decay step). A reasoning entry names the tools.

        Args:
            session_id: Conversation identifier
            response_text: Assistant reply
            tool_results: Tool calls or results, as mappings with ``name``
                (or an OpenAI-style ``function``) and any of arguments,
                result, content or output; plain values are read as text

        Returns:
            Concepts reinforced
        """
        tool_names: List[str] = []
        texts = [response_text]
        for item in tool_results or []:
            name, text = _describe_tool(item)
            if name and name not in tool_names:
                tool_names.append(name)
            texts.append(text)

        async with self._live_session(session_id) as session:
            config = self.config
            concepts = extract_concepts(" ".join(texts))
            concept_map = session.concept_map
            if config.enable_concept_mapping:
                concept_map = concept_map.copy()
                for concept in concepts:
                    concept_map.reinforce(
                        concept,
                        config.related_concept_strength,
                        turn=session.turn_count,
                        mention=False,
                    )
            else:
                concepts = []

            entry = (
                f"Response to turn {session.turn_count}: reinforced "
                f"{', '.join(concepts[:10]) or 'nothing'}"
            )
            if tool_names:
                entry += f"; tools: {', '.join(tool_names)}"
            reasoning = session.reasoning.copy()
            reasoning.append(entry)
            session.commit(concept_map, reasoning, advance_turn=False)
            return concepts

    def get_session_insights(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Turn count, top concepts and reasoning chain of a session."""
        session = self.sessions.get(session_id)
        if session is None:
            return None
        insights = session.get_stats()
        insights["level"] = self.config.level
        return insights

    def get_concept_map(self, session_id: str) -> List[Tuple[str, float]]:
        session = self.sessions.get(session_id)
        return session.concept_map.snapshot() if session else []

    async def reset_session(self, session_id: str):
        """Forget concepts and reasoning but keep the session registered."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        async with session.lock:
            session.reset()

    async def end_session(self, session_id: str) -> Optional[SessionMetrics]:
        """
        End a session and log summary.

        Args:
            session_id: Session to end

        Returns:
            SessionMetrics when telemetry is enabled and the session had turns
        """
        session = self.sessions.get(session_id)
        if session is not None:
            async with session.lock:
                if self.sessions.get(session_id) is session:
                    self.sessions.remove(session_id)
        if self.telemetry is None:
            return None
        return await asyncio.to_thread(self.telemetry.log_session_end, session_id)

    def get_telemetry_summary(self, **kwargs) -> Dict:
        """Get telemetry summary."""
        if self.telemetry is None:
            return {"status": "no_data", "message": "Telemetry is disabled"}
        return self.telemetry.get_summary(**kwargs)

    def get_level(self) -> Optional[int]:
        """Current curation level, or None if options were set by hand."""
        return self.config.level

    def set_level(self, level: Union[int, str]):
        """
        Set curation level.

        Args:
            level: Level 1-5, name ("minimal"/"balanced"/"full"), or "auto"
        """
        self.config = self.config.with_level(level)
        self.budget = self._make_budget(self.config)
        logger.info("Curation level changed", level=self.config.level)

    def get_level_info(self) -> Dict[str, Any]:
        """Get information about current level settings."""
        level = self.config.level
        preset = get_preset(level) if level is not None else None
        return {
            "level": level,
            "name": preset.name if preset else "custom",
            "description": preset.description if preset else "Options set explicitly.",
            "max_context_tokens": self.config.max_context_tokens,
            "relevance_threshold": self.config.relevance_threshold,
            "max_knowledge_results": self.config.max_knowledge_results,
            "time_decay_factor": self.config.time_decay_factor,
        }

    async def close(self):
        if self.knowledge_base is not None:
            await self.knowledge_base.close()
        if self.summarizer is not None:
            await self.summarizer.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _describe_tool(item: Any) -> Tuple[str, str]:
    """Tool name and searchable text of one tool call or result."""
    if not isinstance(item, Mapping):
        return "", str(item)

    function = item.get("function")
    if not isinstance(function, Mapping):
        function = {}
    name = str(item.get("name") or item.get("tool_name") or function.get("name") or "")

    parts = [name.replace("_", " ")]
    for key in _TOOL_FIELDS:
        value = item.get(key, function.get(key))
        if value in (None, ""):
            continue
        parts.append(value if isinstance(value, str) else json.dumps(value, default=str))
    return name, " ".join(parts)
