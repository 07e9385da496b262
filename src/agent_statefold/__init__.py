"""
agent-statefold: hierarchical agent states and a "scanning ball" context orchestrator

Two cores:
- StateResolver: flattens an inheritable state tree into resolved leaf states
- ContextOrchestrator: per-session decaying concept map that scores,
  clusters and budgets context fragments every turn

Usage:
    from agent_statefold import Config, build_resolver, build_orchestrator

    config = Config.load("./statefold.yaml")
    resolver = build_resolver(config)
    orchestrator = build_orchestrator(config)

    state = resolver.get_leaf_by_key("react_help")
    result = await orchestrator.orchestrate("session-1", "tell me about react", state)
    print(result.selected_contexts)
"""

from .errors import (
    ConfigurationError,
    CyclicTreeError,
    StateNotFoundError,
    StatefoldError,
    StructuralConfigError,
    TreeDepthError,
)
from .types import (
    ACTION_CUSTOM_RESPONSE,
    ACTION_FALLBACK_STATE,
    Context,
    GuardContext,
    GuardResult,
    ModelParameters,
    ResolvedState,
    StateNode,
    StateSummary,
    Tool,
)
from .state import StateResolver, evaluate_guard, resolve_tree
from .knowledge import HTTPKnowledgeBase, KnowledgeBaseConnector, KnowledgeResult, StaticKnowledgeBase
from .summarizers import ChatCompletionSummarizer, Summarizer
from .orchestrator import ContextOrchestrator, OrchestrationResult, OrchestratorConfig
from .config import Config, build_orchestrator, build_resolver
from .agent import (
    Agent,
    ConversationStore,
    InMemoryConversationStore,
    IntentAnalyzer,
    KeywordIntentAnalyzer,
    LLMProvider,
    LLMResponse,
    TurnResult,
)
from .logs import setup_logging

__version__ = "0.1.0"
__all__ = [
    "StatefoldError",
    "ConfigurationError",
    "StructuralConfigError",
    "TreeDepthError",
    "CyclicTreeError",
    "StateNotFoundError",
    "ACTION_CUSTOM_RESPONSE",
    "ACTION_FALLBACK_STATE",
    "Context",
    "GuardContext",
    "GuardResult",
    "ModelParameters",
    "ResolvedState",
    "StateNode",
    "StateSummary",
    "Tool",
    "StateResolver",
    "evaluate_guard",
    "resolve_tree",
    "KnowledgeBaseConnector",
    "KnowledgeResult",
    "StaticKnowledgeBase",
    "HTTPKnowledgeBase",
    "Summarizer",
    "ChatCompletionSummarizer",
    "ContextOrchestrator",
    "OrchestrationResult",
    "OrchestratorConfig",
    "Config",
    "build_resolver",
    "build_orchestrator",
    "Agent",
    "ConversationStore",
    "InMemoryConversationStore",
    "IntentAnalyzer",
    "KeywordIntentAnalyzer",
    "LLMProvider",
    "LLMResponse",
    "TurnResult",
    "setup_logging",
]
