#!/usr/bin/env python3
"""
Standalone example of agent-statefold usage.

Run from this directory:
    python example.py
"""

import asyncio
from pathlib import Path
import sys

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from agent_statefold import (
    Agent,
    Config,
    ContextOrchestrator,
    GuardResult,
    LLMProvider,
    LLMResponse,
    OrchestratorConfig,
    StateNode,
    StaticKnowledgeBase,
    build_resolver,
)


class EchoLLM(LLMProvider):
    """Stands in for a real model: reports what it was given."""

    async def generate_response(self, messages, tools, parameters=None):
        system = messages[0]["content"]
        return LLMResponse(
            content=f"(model {parameters.model}) I had {len(system)} chars of system prompt "
                    f"and {len(tools)} tools."
        )


def require_order_number(ctx):
    if "order" in ctx.user_query.lower():
        return True
    return GuardResult(allowed=False, message="Please include your order number.")


async def run():
    config = Config.default()
    config.states[0].children.append(
        StateNode(
            key="order_status",
            description="Where is my order, shipping and delivery",
            prompt="Look up the order before answering.",
            on_enter=require_order_number,
        )
    )
    resolver = build_resolver(config)

    print("=== agent-statefold Example ===\n")

    print("Leaf states:")
    for leaf in resolver.get_leaf_state_tree():
        print(f"  [{leaf.key}] {' > '.join(leaf.path)}: {leaf.description}")

    state = resolver.get_leaf_by_key("react_help")
    print(f"\nResolved prompt for {state.path_label}:")
    print(f"  {state.full_prompt!r}")
    print(f"  contexts: {state.context_keys()}")

    knowledge_base = StaticKnowledgeBase(
        documents=[
            {"source": "hooks.md", "content": "React hooks let function components use state."},
            {"source": "express.md", "content": "Express is a small Node web framework."},
        ],
        related_concepts={"react": ["hooks"], "node": ["express"]},
    )
    orchestrator = ContextOrchestrator(
        OrchestratorConfig.from_level("lean"),
        knowledge_base=knowledge_base,
    )

    # Scanning ball on its own
    print("\n--- Testing Orchestration ---\n")
    for text in ["tell me about react", "and node?"]:
        result = await orchestrator.orchestrate("demo", text, state)
        print(f"Query: {text!r}")
        print(f"  strategy: {result.context_strategy}, tokens: {result.tokens_used}/{result.budget}")
        for sc in result.selected:
            print(f"  [{sc.key}] score={sc.score:.2f}")
        print(f"  concepts: {result.concept_map[:5]}")
        print(f"  reasoning: {result.reasoning_chain[-1]}")

    # Full turns through the agent
    print("\n--- Testing Agent Turns ---\n")
    agent = Agent(resolver, orchestrator, EchoLLM(), fallback_state="general")
    for text in ["how do react hooks work?", "where is my delivery?", "my order 1234 delivery"]:
        turn = await agent.process_turn("agent-demo", text)
        print(f"User: {text}")
        print(f"  state: {turn.state.key} (entered: {turn.entered})")
        print(f"  reply: {turn.response}")

    await orchestrator.close()
    print("\n✓ Example complete!")


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
