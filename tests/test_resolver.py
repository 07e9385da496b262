"""Tests for state tree resolution."""

import pytest

from agent_statefold.errors import CyclicTreeError, StructuralConfigError, TreeDepthError
from agent_statefold.state import PROMPT_SEPARATOR, StateResolver, resolve_tree
from agent_statefold.types import Context, GuardResult, ModelParameters, StateNode


class TestResolveTree:
    """Inheritance and merge rules."""

    @pytest.fixture
    def resolution(self, support_tree, contexts, tools):
        return resolve_tree(support_tree, contexts, tools)

    def test_leaves_in_depth_first_order(self, resolution):
        assert [leaf.key for leaf in resolution.leaves] == ["refunds", "tech"]
        assert all(leaf.is_leaf for leaf in resolution.leaves)

    def test_full_prompt_joins_root_to_leaf(self, resolution):
        refunds = resolution.leaves[0]
        assert refunds.full_prompt == PROMPT_SEPARATOR.join([
            "You are Acme support.",
            "Handle billing carefully.",
            "Follow the refund policy.",
        ])

    def test_leaf_without_prompt_keeps_ancestors(self, resolution):
        tech = resolution.leaves[1]
        assert tech.full_prompt == "You are Acme support."

    def test_no_prompts_anywhere_gives_empty_string(self):
        result = resolve_tree([StateNode(key="solo")], [], [])
        assert result.leaves[0].full_prompt == ""

    def test_contexts_deduplicated_and_ordered_by_priority(self, resolution):
        refunds = resolution.leaves[0]
        # company (1) declared first, billing_faq (5) before refund_policy (5)
        assert refunds.context_keys() == ["billing_faq", "refund_policy", "company"]

    def test_unknown_references_dropped(self, resolution):
        refunds = resolution.leaves[0]
        assert "missing_context" not in refunds.context_keys()
        assert "unknown_tool" not in refunds.tool_names()

    def test_tools_deduplicated_in_declaration_order(self, resolution):
        assert resolution.leaves[0].tool_names() == ["search", "refund"]

    def test_model_parameters_most_specific_non_empty_wins(self, resolution):
        params = resolution.leaves[0].model_parameters
        assert params.provider == "openai"
        assert params.model == "gpt-4o"  # "" on billing does not override
        assert params.temperature == 0.1

    def test_default_model_parameters_fill_gaps(self, support_tree, contexts, tools):
        defaults = ModelParameters(provider="anthropic", max_tokens=512)
        result = resolve_tree(support_tree, contexts, tools, default_model_parameters=defaults)
        params = result.leaves[1].model_parameters
        assert params.provider == "openai"
        assert params.max_tokens == 512

    def test_siblings_do_not_share_inheritance(self, resolution):
        tech = resolution.leaves[1]
        assert tech.context_keys() == ["company"]
        assert tech.tool_names() == ["search"]
        assert tech.model_parameters.temperature == 0.5

    def test_metadata_merged_most_specific_wins(self, resolution):
        refunds, tech = resolution.leaves
        assert dict(refunds.metadata) == {"team": "support", "tier": 2}
        assert dict(tech.metadata) == {"team": "support", "tier": 1}

    def test_path_recorded(self, resolution):
        assert resolution.leaves[0].path == ("support", "billing", "refunds")
        assert resolution.leaves[0].path_label == "support > billing > refunds"

    def test_empty_tree(self):
        result = resolve_tree([], [], [])
        assert result.leaves == ()

    def test_empty_children_list_is_leaf(self):
        result = resolve_tree([StateNode(key="a", children=[])], [], [])
        assert [leaf.key for leaf in result.leaves] == ["a"]

    def test_flat_tables_last_definition_wins(self):
        contexts = [Context(key="x", content="first"), Context(key="x", content="second")]
        result = resolve_tree([], contexts, [])
        assert result.flat_contexts["x"].content == "second"

    def test_resolution_is_deterministic(self, support_tree, contexts, tools):
        first = resolve_tree(support_tree, contexts, tools)
        second = resolve_tree(support_tree, contexts, tools)
        assert first.leaves == second.leaves

    def test_guards_inherited_from_nearest_ancestor(self):
        def root_guard(ctx):
            return True

        def leaf_guard(ctx):
            return GuardResult(allowed=False)

        tree = [StateNode(
            key="root",
            on_enter=root_guard,
            children=[
                StateNode(key="plain"),
                StateNode(key="guarded", on_enter=leaf_guard),
            ],
        )]
        plain, guarded = resolve_tree(tree, [], []).leaves
        assert plain.on_enter is root_guard
        assert guarded.on_enter is leaf_guard


class TestStructuralErrors:
    """Depth and cycle checks."""

    @staticmethod
    def chain(depth):
        node = StateNode(key=f"n{depth - 1}")
        for i in range(depth - 2, -1, -1):
            node = StateNode(key=f"n{i}", children=[node])
        return [node]

    def test_depth_limit(self):
        with pytest.raises(TreeDepthError) as exc:
            resolve_tree(self.chain(5), [], [], max_depth=4)
        assert isinstance(exc.value, StructuralConfigError)
        assert len(exc.value.path) == 5

    def test_depth_at_limit_resolves(self):
        result = resolve_tree(self.chain(4), [], [], max_depth=4)
        assert result.leaves[0].depth == 4

    def test_very_deep_tree_does_not_recurse(self):
        result = resolve_tree(self.chain(3000), [], [], max_depth=5000)
        assert result.leaves[0].key == "n2999"

    def test_cycle_detected(self):
        a = StateNode(key="a")
        b = StateNode(key="b", children=[a])
        a.children.append(b)
        with pytest.raises(CyclicTreeError):
            resolve_tree([a], [], [])


class TestStateResolver:
    """Lookups on a resolved tree."""

    @pytest.fixture
    def resolver(self, support_tree, contexts, tools):
        return StateResolver(support_tree, contexts, tools)

    def test_get_leaf_by_key(self, resolver):
        assert resolver.get_leaf_by_key("tech").path == ("support", "tech")
        assert resolver.get_leaf_by_key("billing") is None  # branch
        assert resolver.get_leaf_by_key("nope") is None

    def test_duplicate_keys_distinguished_by_path(self, contexts, tools):
        tree = [
            StateNode(key="sales", children=[StateNode(key="faq", prompt="sales faq")]),
            StateNode(key="support", children=[StateNode(key="faq", prompt="support faq")]),
        ]
        resolver = StateResolver(tree, contexts, tools)
        leaves = resolver.get_leaves_by_key("faq")
        assert [leaf.path for leaf in leaves] == [("sales", "faq"), ("support", "faq")]
        assert resolver.get_leaf_by_key("faq").full_prompt == "sales faq"
        assert resolver.get_leaf_by_path(["support", "faq"]).full_prompt == "support faq"

    def test_find_leaf_by_summary_path_or_key(self, contexts, tools):
        tree = [
            StateNode(key="sales", children=[StateNode(key="faq", prompt="sales faq")]),
            StateNode(key="support", children=[StateNode(key="faq", prompt="support faq")]),
        ]
        resolver = StateResolver(tree, contexts, tools)
        support_summary = resolver.get_leaf_state_tree()[1]

        assert resolver.find_leaf(support_summary).full_prompt == "support faq"
        assert resolver.find_leaf(("support", "faq")).full_prompt == "support faq"
        assert resolver.find_leaf("support > faq").full_prompt == "support faq"
        assert resolver.find_leaf("support>faq").full_prompt == "support faq"
        assert resolver.find_leaf("faq").full_prompt == "sales faq"
        assert resolver.find_leaf("support > nope") is None
        assert resolver.find_leaf("support") is None

    def test_leaf_state_tree_projection(self, resolver):
        summaries = resolver.get_leaf_state_tree()
        assert [s.to_dict() for s in summaries] == [
            {
                "key": "refunds",
                "description": "Refund requests",
                "path": ["support", "billing", "refunds"],
                "is_leaf": True,
            },
            {
                "key": "tech",
                "description": "Technical problems",
                "path": ["support", "tech"],
                "is_leaf": True,
            },
        ]

    def test_state_tree_includes_branches(self, resolver):
        nodes = resolver.get_state_tree()
        assert [(n.key, n.is_leaf) for n in nodes] == [
            ("support", False),
            ("billing", False),
            ("refunds", True),
            ("tech", True),
        ]

    def test_flat_lookups(self, resolver):
        assert resolver.get_context("company").content == "Acme sells widgets."
        assert resolver.get_tool("refund").name == "refund"
        assert len(resolver.all_contexts()) == 3
        assert len(resolver.all_tools()) == 2

    def test_reconfigure_replaces_tables(self, resolver):
        resolver.reconfigure([StateNode(key="only")])
        assert [leaf.key for leaf in resolver.leaves] == ["only"]
        assert resolver.get_context("company") is None

    def test_structural_error_at_construction(self):
        a = StateNode(key="a")
        a.children.append(a)
        with pytest.raises(CyclicTreeError):
            StateResolver([a])


class TestDynamicContexts:
    """Context accessors resolve at read time."""

    @pytest.mark.asyncio
    async def test_literal_and_callable_contents(self):
        calls = []

        def sync_source():
            calls.append("sync")
            return "from sync"

        async def async_source():
            return "from async"

        tree = [StateNode(key="leaf", contexts=["lit", "sync", "async"])]
        resolver = StateResolver(tree, [
            Context(key="lit", content="literal"),
            Context(key="sync", content=sync_source),
            Context(key="async", content=async_source),
        ])
        leaf = resolver.get_leaf_by_key("leaf")

        texts = [await c.read() for c in leaf.contexts]
        assert texts == ["literal", "from sync", "from async"]
        assert leaf.contexts[1].is_dynamic
        assert calls == ["sync"]
