"""Scenario tests for the context orchestrator."""

import asyncio
import json
import threading

import pytest

from conftest import NODE_TEXT, REACT_TEXT, make_leaf

from agent_statefold.knowledge import KnowledgeBaseConnector, StaticKnowledgeBase
from agent_statefold.orchestrator import ContextOrchestrator, OrchestratorConfig
from agent_statefold.orchestrator.types import SOURCE_KNOWLEDGE
from agent_statefold.types import Context


class FailingKnowledgeBase(KnowledgeBaseConnector):
    def __init__(self, delay=None):
        self.delay = delay
        self.closed = False

    async def search(self, query, concepts):
        if self.delay:
            await asyncio.sleep(self.delay)
            return []
        raise ConnectionError("knowledge base unreachable")

    async def get_related_concepts(self, concepts):
        if self.delay:
            await asyncio.sleep(self.delay)
            return []
        raise ConnectionError("knowledge base unreachable")

    async def close(self):
        self.closed = True


@pytest.fixture
def orchestrator():
    return ContextOrchestrator(OrchestratorConfig())


class TestScanningBall:
    """Turn-over-turn behavior of one session."""

    @pytest.mark.asyncio
    async def test_two_turn_conversation(self, orchestrator, dev_leaf):
        first = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)

        assert first.context_strategy == "full"
        assert first.selected_contexts == [REACT_TEXT, NODE_TEXT]
        assert first.selected[0].score == pytest.approx(1.0)
        assert first.selected[1].score == pytest.approx(0.25 * 5 / 9)
        assert first.concept_map == [("react", 1.0)]
        assert first.reasoning_chain == [
            "Turn 1 [dev_help]: selected react_docs, node_docs (full); "
            "concepts: react (new); keywords: react"
        ]

        second = await orchestrator.orchestrate("s1", "and node?", dev_leaf)

        assert [sc.key for sc in second.selected] == ["node_docs", "react_docs"]
        assert second.selected[0].score == pytest.approx(0.4 + 0.35 / 1.9 + 0.25 * 5 / 9)
        assert second.selected[1].score == pytest.approx(0.35 * 0.9 / 1.9 + 0.25)
        assert second.concept_map == [("node", 1.0), ("react", pytest.approx(0.9))]
        assert len(second.reasoning_chain) == 2
        entry = second.reasoning_chain[-1]
        assert "node_docs" in entry
        assert "node (new)" in entry
        assert "react (1 prior turn)" in entry
        assert "keywords: node" in entry
        assert second.turn == 2

    @pytest.mark.asyncio
    async def test_unmentioned_concepts_decay_monotonically(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        strengths = []
        for _ in range(5):
            await orchestrator.orchestrate("s1", "servers", dev_leaf)
            strengths.append(dict(orchestrator.get_concept_map("s1"))["react"])
        assert strengths == sorted(strengths, reverse=True)
        assert len(set(strengths)) == len(strengths)

    @pytest.mark.asyncio
    async def test_repeated_mentions_reinforce(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react react", dev_leaf)
        await orchestrator.orchestrate("s1", "react again", dev_leaf)
        assert dict(orchestrator.get_concept_map("s1"))["react"] == 3.0

    @pytest.mark.asyncio
    async def test_faded_concepts_pruned(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(time_decay_factor=0.9, concept_floor=0.05))
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        await orchestrator.orchestrate("s1", "node", dev_leaf)
        await orchestrator.orchestrate("s1", "servers", dev_leaf)
        assert "react" not in dict(orchestrator.get_concept_map("s1"))

    @pytest.mark.asyncio
    async def test_concept_mapping_disabled(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(enable_concept_mapping=False))
        await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        second = await orchestrator.orchestrate("s1", "and node?", dev_leaf)

        assert second.concept_map == [("node", 1.0)]
        assert orchestrator.get_concept_map("s1") == []
        assert len(second.reasoning_chain) == 2

    @pytest.mark.asyncio
    async def test_keywords_fall_back_to_history(self, orchestrator, dev_leaf):
        history = [
            {"role": "user", "content": "tell me about react"},
            {"role": "assistant", "content": "Node is great too."},
        ]
        result = await orchestrator.orchestrate("s1", "what about it?", dev_leaf, history=history)

        react = next(sc for sc in result.selected if sc.key == "react_docs")
        assert react.score == pytest.approx(0.65)
        assert result.concept_map == []
        assert "keywords: react" in result.reasoning_chain[-1]

    @pytest.mark.asyncio
    async def test_no_contexts_selected(self, orchestrator):
        leaf = make_leaf("empty", [])
        result = await orchestrator.orchestrate("s1", "tell me about react", leaf)
        assert result.selected_contexts == []
        assert result.total_relevance_score == 0.0
        assert result.reasoning_chain == [
            "Turn 1 [empty]: no context selected (concepts: react)"
        ]

    @pytest.mark.asyncio
    async def test_reasoning_chain_bounded(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(max_reasoning_history=3))
        for text in ["react", "node", "servers", "hooks", "npm"]:
            result = await orchestrator.orchestrate("s1", text, dev_leaf)
        assert len(result.reasoning_chain) == 3
        assert result.reasoning_chain[0].startswith("Turn 3 ")


class TestSelection:
    """Threshold, budget, de-duplication and clustering."""

    @pytest.mark.asyncio
    async def test_threshold_filters(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(relevance_threshold=0.35))
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert [sc.key for sc in result.selected] == ["react_docs"]
        assert result.filtered == 1
        assert result.context_strategy == "full"

    @pytest.mark.asyncio
    async def test_budget_filters(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(max_context_tokens=16))
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert result.context_strategy == "filtered"
        assert result.tokens_used <= 16
        assert result.dropped == 1

    @pytest.mark.asyncio
    async def test_tiny_budget_truncates(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(max_context_tokens=10))
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert result.context_strategy == "minimal"
        assert result.selected_contexts == [REACT_TEXT[:40]]

    @pytest.mark.asyncio
    async def test_zero_budget(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(max_context_tokens=0))
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert result.selected_contexts == []
        assert result.tokens_used == 0

    @pytest.mark.asyncio
    async def test_duplicate_texts_collapse(self, orchestrator, react_context):
        copy = Context(key="react_copy", content=REACT_TEXT, priority=1)
        leaf = make_leaf("dup", [react_context, copy])
        result = await orchestrator.orchestrate("s1", "react", leaf)
        assert [sc.key for sc in result.selected] == ["react_docs"]

    @pytest.mark.asyncio
    async def test_clustering_merges_similar_contexts(self):
        leaf = make_leaf("hooks", [
            Context(key="a_short", content="react hooks state", priority=5),
            Context(key="b_long", content="react hooks state management", priority=5),
        ])
        orchestrator = ContextOrchestrator(OrchestratorConfig(
            enable_semantic_clustering=True,
            similarity_cutoff=0.6,
        ))
        result = await orchestrator.orchestrate("s1", "react hooks", leaf)
        assert [sc.key for sc in result.selected] == ["a_short"]
        assert result.clustered == 1

    @pytest.mark.asyncio
    async def test_clustering_off_keeps_both(self, orchestrator):
        leaf = make_leaf("hooks", [
            Context(key="a_short", content="react hooks state", priority=5),
            Context(key="b_long", content="react hooks state management", priority=5),
        ])
        result = await orchestrator.orchestrate("s1", "react hooks", leaf)
        assert len(result.selected) == 2
        assert result.clustered == 0


class TestKnowledgeBase:

    @pytest.mark.asyncio
    async def test_static_knowledge_base_contributes(self, dev_leaf):
        kb = StaticKnowledgeBase(
            documents=[{"source": "hooks.md", "content": "React hooks let function components use state."}],
            related_concepts={"react": ["hooks"]},
        )
        orchestrator = ContextOrchestrator(OrchestratorConfig(), knowledge_base=kb)
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)

        top = result.selected[0]
        assert top.key == "kb:hooks.md#0"
        assert top.source == SOURCE_KNOWLEDGE
        assert top.score == pytest.approx(1.0)
        assert dict(result.concept_map)["hooks"] == 0.5
        assert not result.knowledge_degraded

    @pytest.mark.asyncio
    async def test_knowledge_results_capped(self, dev_leaf):
        kb = StaticKnowledgeBase(
            documents=[{"source": f"doc{i}.md", "content": f"react note {i} v{i}"} for i in range(6)],
            max_results=10,
        )
        orchestrator = ContextOrchestrator(OrchestratorConfig(max_knowledge_results=2), knowledge_base=kb)
        result = await orchestrator.orchestrate("s1", "react", dev_leaf)
        kb_keys = [sc.key for sc in result.selected if sc.source == SOURCE_KNOWLEDGE]
        assert kb_keys == ["kb:doc0.md#0", "kb:doc1.md#1"]

    @pytest.mark.asyncio
    async def test_failing_knowledge_base_degrades(self, dev_leaf):
        orchestrator = ContextOrchestrator(OrchestratorConfig(), knowledge_base=FailingKnowledgeBase())
        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert result.knowledge_degraded
        assert [sc.key for sc in result.selected] == ["react_docs", "node_docs"]

    @pytest.mark.asyncio
    async def test_slow_knowledge_base_times_out(self, dev_leaf):
        orchestrator = ContextOrchestrator(
            OrchestratorConfig(knowledge_timeout=0.05),
            knowledge_base=FailingKnowledgeBase(delay=5),
        )
        result = await asyncio.wait_for(
            orchestrator.orchestrate("s1", "tell me about react", dev_leaf),
            timeout=2,
        )
        assert result.knowledge_degraded
        assert result.selected_contexts[0] == REACT_TEXT

    @pytest.mark.asyncio
    async def test_close_closes_knowledge_base(self):
        kb = FailingKnowledgeBase()
        async with ContextOrchestrator(knowledge_base=kb):
            pass
        assert kb.closed


class TestAccessors:

    @pytest.mark.asyncio
    async def test_failing_accessor_omitted(self, orchestrator, react_context):
        def broken():
            raise RuntimeError("feed down")

        leaf = make_leaf("dev", [react_context, Context(key="feed", content=broken, priority=9)])
        result = await orchestrator.orchestrate("s1", "react", leaf)
        assert [sc.key for sc in result.selected] == ["react_docs"]

    @pytest.mark.asyncio
    async def test_slow_accessor_omitted(self, react_context):
        async def slow():
            await asyncio.sleep(5)
            return "react late"

        leaf = make_leaf("dev", [react_context, Context(key="slow", content=slow, priority=9)])
        orchestrator = ContextOrchestrator(OrchestratorConfig(accessor_timeout=0.05))
        result = await asyncio.wait_for(orchestrator.orchestrate("s1", "react", leaf), timeout=2)
        assert [sc.key for sc in result.selected] == ["react_docs"]

    @pytest.mark.asyncio
    async def test_dynamic_context_read_each_turn(self, orchestrator):
        versions = iter(["react v1", "react v2"])
        leaf = make_leaf("dev", [Context(key="live", content=lambda: next(versions), priority=1)])
        first = await orchestrator.orchestrate("s1", "react", leaf)
        second = await orchestrator.orchestrate("s1", "react", leaf)
        assert first.selected_contexts == ["react v1"]
        assert second.selected_contexts == ["react v2"]


class TestSessionSafety:
    """Atomic commits, dry runs and concurrency."""

    @pytest.mark.asyncio
    async def test_cancelled_turn_leaves_session_untouched(self, orchestrator, react_context):
        started = asyncio.Event()

        async def hanging():
            started.set()
            await asyncio.sleep(60)
            return "never"

        await orchestrator.orchestrate("s1", "react", make_leaf("dev", [react_context]))
        before_map = orchestrator.get_concept_map("s1")
        before = orchestrator.get_session_insights("s1")

        leaf = make_leaf("dev", [Context(key="hang", content=hanging)])
        orchestrator.config = OrchestratorConfig(accessor_timeout=None)
        task = asyncio.create_task(orchestrator.orchestrate("s1", "node servers", leaf))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        after = orchestrator.get_session_insights("s1")
        assert orchestrator.get_concept_map("s1") == before_map
        assert after["turn_count"] == before["turn_count"] == 1
        assert after["reasoning_chain"] == before["reasoning_chain"]

    @pytest.mark.asyncio
    async def test_dry_run_does_not_commit(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        first = await orchestrator.orchestrate("s1", "node", dev_leaf, dry_run=True)
        second = await orchestrator.orchestrate("s1", "node", dev_leaf, dry_run=True)

        assert first.concept_map == second.concept_map
        assert first.reasoning_chain == second.reasoning_chain
        assert first.turn == second.turn == 2
        assert orchestrator.get_concept_map("s1") == [("react", 1.0)]

    @pytest.mark.asyncio
    async def test_same_session_turns_serialized(self, orchestrator, dev_leaf):
        results = await asyncio.gather(*(
            orchestrator.orchestrate("s1", text, dev_leaf)
            for text in ["react", "node", "servers"]
        ))
        assert sorted(r.turn for r in results) == [1, 2, 3]
        insights = orchestrator.get_session_insights("s1")
        assert insights["turn_count"] == 3
        assert len(insights["reasoning_chain"]) == 3
        assert set(dict(orchestrator.get_concept_map("s1"))) == {"react", "node", "servers"}

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self, orchestrator):
        arrived = []
        both_in = asyncio.Event()

        async def rendezvous():
            arrived.append(1)
            if len(arrived) == 2:
                both_in.set()
            await asyncio.wait_for(both_in.wait(), timeout=1.0)
            return "react rendezvous"

        leaf = make_leaf("dev", [Context(key="meet", content=rendezvous)])
        first, second = await asyncio.gather(
            orchestrator.orchestrate("a", "react", leaf),
            orchestrator.orchestrate("b", "react", leaf),
        )
        assert first.selected_contexts == ["react rendezvous"]
        assert second.selected_contexts == ["react rendezvous"]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("a", "react", dev_leaf)
        await orchestrator.orchestrate("b", "node", dev_leaf)
        assert orchestrator.get_concept_map("a") == [("react", 1.0)]
        assert orchestrator.get_concept_map("b") == [("node", 1.0)]


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_observe_response_reinforces(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        concepts = await orchestrator.observe_response("s1", "Hooks extend React.")

        assert concepts == ["hooks", "extend", "react"]
        cmap = dict(orchestrator.get_concept_map("s1"))
        assert cmap["react"] == 1.5
        assert cmap["hooks"] == 0.5
        insights = orchestrator.get_session_insights("s1")
        assert insights["turn_count"] == 1
        assert insights["reasoning_chain"][-1] == "Response to turn 1: reinforced hooks, extend, react"

    @pytest.mark.asyncio
    async def test_observe_response_reads_tool_results(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "where is my order", dev_leaf)
        concepts = await orchestrator.observe_response(
            "s1",
            "It shipped.",
            [
                {"name": "lookup_order", "result": {"carrier": "ups"}},
                {"type": "function", "function": {"name": "lookup_order", "arguments": "{}"}},
                "tracking delayed",
            ],
        )

        assert concepts == ["shipped", "lookup", "order", "carrier", "ups", "tracking", "delayed"]
        cmap = dict(orchestrator.get_concept_map("s1"))
        assert cmap["order"] == 1.5
        assert cmap["carrier"] == 0.5
        reasoning = orchestrator.get_session_insights("s1")["reasoning_chain"]
        assert reasoning[-1] == (
            "Response to turn 1: reinforced shipped, lookup, order, carrier, ups, "
            "tracking, delayed; tools: lookup_order"
        )

    @pytest.mark.asyncio
    async def test_observed_concepts_not_counted_as_mentions(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        await orchestrator.observe_response("s1", "Hooks are useful.")
        result = await orchestrator.orchestrate("s1", "hooks", dev_leaf)
        assert result.turn == 2
        session = orchestrator.sessions.get("s1")
        assert session.concept_map.get("hooks").mentions == 1

    @pytest.mark.asyncio
    async def test_reset_session(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        await orchestrator.reset_session("s1")
        insights = orchestrator.get_session_insights("s1")
        assert insights["turn_count"] == 0
        assert insights["reasoning_chain"] == []
        assert orchestrator.get_concept_map("s1") == []
        await orchestrator.reset_session("unknown")

    @pytest.mark.asyncio
    async def test_end_session_writes_telemetry(self, tmp_path, dev_leaf):
        path = tmp_path / "telemetry.jsonl"
        orchestrator = ContextOrchestrator(OrchestratorConfig(), telemetry_path=str(path))
        await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        await orchestrator.orchestrate("s1", "and node?", dev_leaf)

        metrics = await orchestrator.end_session("s1")
        assert metrics.total_turns == 2
        assert metrics.states_visited == ["dev_help"]
        assert metrics.strategies == {"full": 2}
        assert orchestrator.get_session_insights("s1") is None

        entries = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["type"] for e in entries] == ["turn", "turn", "session_summary"]
        assert entries[0]["state_key"] == "dev_help"
        assert entries[1]["top_contexts"][0]["key"] == "node_docs"

        summary = orchestrator.get_telemetry_summary()
        assert summary["period"]["total_turns"] == 2

    @pytest.mark.asyncio
    async def test_end_session_without_telemetry(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "react", dev_leaf)
        assert await orchestrator.end_session("s1") is None
        assert orchestrator.get_telemetry_summary()["status"] == "no_data"

    @pytest.mark.asyncio
    async def test_dry_run_writes_no_telemetry(self, tmp_path, dev_leaf):
        path = tmp_path / "telemetry.jsonl"
        orchestrator = ContextOrchestrator(telemetry_path=str(path))
        await orchestrator.orchestrate("s1", "react", dev_leaf, dry_run=True)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_telemetry_written_off_event_loop(self, tmp_path, dev_leaf):
        path = tmp_path / "telemetry.jsonl"
        orchestrator = ContextOrchestrator(telemetry_path=str(path))
        threads = []
        log_turn = orchestrator.telemetry.log_turn

        def recording_log_turn(metrics):
            threads.append(threading.current_thread())
            log_turn(metrics)

        orchestrator.telemetry.log_turn = recording_log_turn
        await orchestrator.orchestrate("s1", "react", dev_leaf)

        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()
        assert path.exists()

    @pytest.mark.asyncio
    async def test_turn_waiting_on_ended_session_starts_fresh(self, orchestrator, dev_leaf):
        await orchestrator.orchestrate("s1", "node", dev_leaf)
        session = orchestrator.sessions.get("s1")

        await session.lock.acquire()
        ending = asyncio.create_task(orchestrator.end_session("s1"))
        await asyncio.sleep(0)
        turn = asyncio.create_task(orchestrator.orchestrate("s1", "react", dev_leaf))
        await asyncio.sleep(0)
        session.lock.release()

        await ending
        result = await turn

        assert result.turn == 1
        assert orchestrator.sessions.get("s1") is not session
        assert orchestrator.get_concept_map("s1") == [("react", 1.0)]
        assert orchestrator.get_session_insights("s1")["turn_count"] == 1


class TestLevels:

    def test_default_level_info(self, orchestrator):
        info = orchestrator.get_level_info()
        assert info["name"] == "custom"
        assert info["max_context_tokens"] == 1500

    @pytest.mark.asyncio
    async def test_set_level_changes_selection(self, orchestrator, dev_leaf):
        orchestrator.set_level("minimal")
        assert orchestrator.get_level() == 1
        assert orchestrator.budget.total_budget == 300

        result = await orchestrator.orchestrate("s1", "tell me about react", dev_leaf)
        assert [sc.key for sc in result.selected] == ["react_docs"]
        assert result.budget == 300

    def test_level_info_after_set(self, orchestrator):
        orchestrator.set_level(5)
        info = orchestrator.get_level_info()
        assert info == {
            "level": 5,
            "name": "full",
            "description": "Everything that fits. Safe but expensive.",
            "max_context_tokens": 5000,
            "relevance_threshold": 0.0,
            "max_knowledge_results": 12,
            "time_decay_factor": 0.02,
        }

    def test_auto_is_balanced(self, orchestrator):
        orchestrator.set_level("auto")
        assert orchestrator.get_level() == 3
