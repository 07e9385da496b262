"""
Shared fixtures for the agent-statefold test suite.

Provides a small support-desk state tree and a two-context leaf used by the
orchestrator scenarios, so individual modules can focus on behavior.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent_statefold.types import Context, ModelParameters, ResolvedState, StateNode, Tool  # noqa: E402


REACT_TEXT = "React is a library for building user interfaces with components."
NODE_TEXT = "Node is a JavaScript runtime for building servers."


@pytest.fixture()
def contexts():
    return [
        Context(key="company", description="Company facts", content="Acme sells widgets.", priority=1),
        Context(key="billing_faq", description="Billing FAQ", content="Invoices go out monthly.", priority=5),
        Context(key="refund_policy", description="Refunds", content="Refunds within 30 days.", priority=5),
    ]


@pytest.fixture()
def tools():
    return [
        Tool(name="search", description="Search the help center"),
        Tool(name="refund", description="Issue a refund"),
    ]


@pytest.fixture()
def support_tree():
    """support > billing > refunds, plus support > tech."""
    return [
        StateNode(
            key="support",
            description="Customer support",
            prompt="You are Acme support.",
            contexts=["company"],
            tools=["search"],
            model_parameters={"provider": "openai", "model": "gpt-4o", "temperature": 0.5},
            metadata={"team": "support", "tier": 1},
            children=[
                StateNode(
                    key="billing",
                    description="Billing questions",
                    prompt="Handle billing carefully.",
                    contexts=["billing_faq", "company"],
                    tools=["refund"],
                    model_parameters={"temperature": 0.1, "model": ""},
                    metadata={"tier": 2},
                    children=[
                        StateNode(
                            key="refunds",
                            description="Refund requests",
                            prompt="Follow the refund policy.",
                            contexts=["refund_policy", "missing_context"],
                            tools=["search", "unknown_tool"],
                        ),
                    ],
                ),
                StateNode(key="tech", description="Technical problems"),
            ],
        ),
    ]


@pytest.fixture()
def react_context():
    return Context(key="react_docs", description="React primer", content=REACT_TEXT, priority=9)


@pytest.fixture()
def node_context():
    return Context(key="node_docs", description="Node primer", content=NODE_TEXT, priority=5)


def make_leaf(key, contexts, prompt="", **kwargs) -> ResolvedState:
    """A resolved leaf built by hand, for orchestrator tests."""
    return ResolvedState(
        key=key,
        description=kwargs.pop("description", key),
        full_prompt=prompt,
        contexts=tuple(contexts),
        tools=tuple(kwargs.pop("tools", ())),
        model_parameters=kwargs.pop("model_parameters", ModelParameters()),
        path=(key,),
        **kwargs,
    )


@pytest.fixture()
def dev_leaf(react_context, node_context):
    return make_leaf("dev_help", [react_context, node_context], prompt="Help developers.")
