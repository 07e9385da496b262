"""
Context orchestration: concept map, scoring, clustering and token budgeting.

Usage:
    from agent_statefold.orchestrator import ContextOrchestrator, OrchestratorConfig

    orchestrator = ContextOrchestrator(OrchestratorConfig.from_level("lean"))
    result = await orchestrator.orchestrate("session-1", "tell me about react", state)
"""

from .concepts import STOPWORDS, ConceptEntry, ConceptMap, count_concepts, extract_concepts, tokenize
from .reasoning import ReasoningChain
from .types import Allocation, Candidate, OrchestrationResult, ScoredContext
from .scorer import RelevanceScorer
from .clustering import cluster, deduplicate, jaccard
from .budget import TokenBudget
from .accessors import read_context, read_contexts
from .session import SessionRegistry, SessionState
from .levels import LEVEL_PRESETS, LevelPreset, describe_levels, get_preset, resolve_level
from .telemetry import SessionMetrics, TelemetryLogger, TurnMetrics
from .config import OrchestratorConfig
from .orchestrator import ContextOrchestrator

__all__ = [
    "STOPWORDS",
    "ConceptEntry",
    "ConceptMap",
    "count_concepts",
    "extract_concepts",
    "tokenize",
    "ReasoningChain",
    "Allocation",
    "Candidate",
    "OrchestrationResult",
    "ScoredContext",
    "RelevanceScorer",
    "cluster",
    "deduplicate",
    "jaccard",
    "TokenBudget",
    "read_context",
    "read_contexts",
    "SessionRegistry",
    "SessionState",
    "LEVEL_PRESETS",
    "LevelPreset",
    "describe_levels",
    "get_preset",
    "resolve_level",
    "SessionMetrics",
    "TelemetryLogger",
    "TurnMetrics",
    "OrchestratorConfig",
    "ContextOrchestrator",
]
