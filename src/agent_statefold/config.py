"""Configuration loader for agent-statefold."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .knowledge import HTTPKnowledgeBase, KnowledgeBaseConnector, StaticKnowledgeBase
from .orchestrator import ContextOrchestrator, OrchestratorConfig
from .state import DEFAULT_MAX_DEPTH, StateResolver
from .summarizers import ChatCompletionSummarizer, Summarizer
from .types import Context, ModelParameters, StateNode, Tool

KB_API_KEY_ENV = "STATEFOLD_KB_API_KEY"
SUMMARIZER_API_KEY_ENV = "STATEFOLD_SUMMARIZER_API_KEY"

KNOWLEDGE_BASE_TYPES = ("none", "static", "http")
SUMMARIZER_BACKENDS = ("none", "chat")
LOG_FORMATS = ("console", "json")


@dataclass
class KnowledgeBaseConfig:
    """Configuration for the knowledge base consulted each turn."""
    type: str = "none"  # "none", "static" or "http"
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0
    documents: List[Dict[str, Any]] = field(default_factory=list)
    related_concepts: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        if self.type not in KNOWLEDGE_BASE_TYPES:
            raise ConfigurationError(
                f"knowledge_base.type must be one of {', '.join(KNOWLEDGE_BASE_TYPES)}, "
                f"got '{self.type}'"
            )
        if self.type == "http" and not self.url:
            raise ConfigurationError("knowledge_base.url is required for the http type")


@dataclass
class SummarizerConfig:
    """Configuration for the overflow summarizer."""
    backend: str = "none"  # "none" or "chat"
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout: float = 30.0

    def __post_init__(self):
        if self.backend not in SUMMARIZER_BACKENDS:
            raise ConfigurationError(
                f"summarizer.backend must be one of {', '.join(SUMMARIZER_BACKENDS)}, "
                f"got '{self.backend}'"
            )


@dataclass
class Config:
    """Main configuration for agent-statefold."""
    states: List[StateNode] = field(default_factory=list)
    contexts: List[Context] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)
    default_model: ModelParameters = field(default_factory=ModelParameters)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    knowledge_base: KnowledgeBaseConfig = field(default_factory=KnowledgeBaseConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    max_depth: int = DEFAULT_MAX_DEPTH
    telemetry_path: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "console"

    def __post_init__(self):
        """Convert dicts to proper config objects."""
        self.states = [
            StateNode.from_dict(s) if isinstance(s, dict) else s
            for s in self.states
        ]
        self.contexts = [
            Context.from_dict(c) if isinstance(c, dict) else c
            for c in self.contexts
        ]
        self.tools = [
            Tool.from_dict(t) if isinstance(t, dict) else t
            for t in self.tools
        ]
        if isinstance(self.default_model, dict):
            self.default_model = ModelParameters.from_dict(self.default_model)
        if isinstance(self.orchestrator, dict):
            self.orchestrator = OrchestratorConfig.from_dict(self.orchestrator)
        if isinstance(self.knowledge_base, dict):
            self.knowledge_base = KnowledgeBaseConfig(**self.knowledge_base)
        if isinstance(self.summarizer, dict):
            self.summarizer = SummarizerConfig(**self.summarizer)
        if self.log_format not in LOG_FORMATS:
            raise ConfigurationError(
                f"log_format must be one of {', '.join(LOG_FORMATS)}, got '{self.log_format}'"
            )

    @classmethod
    def load(cls, path: str) -> "Config":
        """Load configuration from YAML or JSON file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        try:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content)
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not parse {path}: {e}") from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        try:
            return cls(
                states=[StateNode.from_dict(s) for s in data.get("states") or []],
                contexts=[Context.from_dict(c) for c in data.get("contexts") or []],
                tools=[Tool.from_dict(t) for t in data.get("tools") or []],
                default_model=ModelParameters.from_dict(data.get("default_model")),
                orchestrator=OrchestratorConfig.from_dict(data.get("orchestrator")),
                knowledge_base=KnowledgeBaseConfig(**(data.get("knowledge_base") or {})),
                summarizer=SummarizerConfig(**(data.get("summarizer") or {})),
                max_depth=int(data.get("max_depth", DEFAULT_MAX_DEPTH)),
                telemetry_path=data.get("telemetry_path"),
                log_level=data.get("log_level", "INFO"),
                log_format=data.get("log_format", "console"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e!r}") from e

    @classmethod
    def default(cls) -> "Config":
        """A small working configuration, used by ``statefold init``."""
        return cls(
            states=[
                StateNode(
                    key="assistant",
                    description="General technical assistant",
                    prompt="You are a concise, friendly technical assistant.",
                    contexts=["style_guide"],
                    model_parameters=ModelParameters(temperature=0.3),
                    children=[
                        StateNode(
                            key="react_help",
                            description="Questions about React, components and hooks",
                            prompt="Answer React questions with short code samples.",
                            contexts=["react_docs", "node_docs"],
                        ),
                        StateNode(
                            key="node_help",
                            description="Questions about Node.js, npm and servers",
                            prompt="Answer Node.js questions with runnable snippets.",
                            contexts=["node_docs", "react_docs"],
                        ),
                        StateNode(
                            key="general",
                            description="Anything else",
                        ),
                    ],
                ),
            ],
            contexts=[
                Context(
                    key="style_guide",
                    description="House answer style",
                    content="Keep answers short. Prefer examples over prose.",
                    priority=1,
                ),
                Context(
                    key="react_docs",
                    description="React primer",
                    content="React builds user interfaces from components. Hooks such as "
                            "useState and useEffect manage state and side effects.",
                    priority=5,
                ),
                Context(
                    key="node_docs",
                    description="Node.js primer",
                    content="Node runs JavaScript on the server. npm installs packages and "
                            "the http module serves requests.",
                    priority=5,
                ),
            ],
            default_model=ModelParameters(provider="openai", model="gpt-4o-mini"),
        )

    def to_dict(self) -> dict:
        """
        Convert config to dictionary.

        Dynamic (callable) contexts are code-only and are left out.
        """
        orchestrator = self.orchestrator.to_dict()
        if orchestrator.get("level") is None:
            orchestrator.pop("level", None)

        knowledge_base = {
            "type": self.knowledge_base.type,
            "url": self.knowledge_base.url,
            "timeout": self.knowledge_base.timeout,
            "documents": list(self.knowledge_base.documents),
            "related_concepts": dict(self.knowledge_base.related_concepts),
        }
        if self.knowledge_base.api_key:
            knowledge_base["api_key"] = self.knowledge_base.api_key

        summarizer = {
            "backend": self.summarizer.backend,
            "base_url": self.summarizer.base_url,
            "model": self.summarizer.model,
            "timeout": self.summarizer.timeout,
        }
        if self.summarizer.api_key:
            summarizer["api_key"] = self.summarizer.api_key

        return {
            "states": [s.to_dict() for s in self.states],
            "contexts": [c.to_dict() for c in self.contexts if not c.is_dynamic],
            "tools": [t.to_dict() for t in self.tools],
            "default_model": self.default_model.to_dict(),
            "orchestrator": orchestrator,
            "knowledge_base": knowledge_base,
            "summarizer": summarizer,
            "max_depth": self.max_depth,
            "telemetry_path": self.telemetry_path,
            "log_level": self.log_level,
            "log_format": self.log_format,
        }

    def save(self, path: str):
        """Save configuration to file."""
        path = Path(path)
        data = self.to_dict()

        if path.suffix in (".yaml", ".yml"):
            content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.write_text(content)


def build_resolver(config: Config) -> StateResolver:
    """Resolve the configured state tree."""
    return StateResolver(
        config.states,
        config.contexts,
        config.tools,
        default_model_parameters=config.default_model,
        max_depth=config.max_depth,
    )


def build_knowledge_base(config: Config) -> Optional[KnowledgeBaseConnector]:
    kb = config.knowledge_base
    if kb.type == "static":
        return StaticKnowledgeBase(
            documents=kb.documents,
            related_concepts=kb.related_concepts,
            max_results=config.orchestrator.max_knowledge_results,
        )
    if kb.type == "http":
        return HTTPKnowledgeBase(
            base_url=kb.url,
            api_key=kb.api_key or os.getenv(KB_API_KEY_ENV),
            timeout=kb.timeout,
            max_results=config.orchestrator.max_knowledge_results,
        )
    return None


def build_summarizer(config: Config) -> Optional[Summarizer]:
    s = config.summarizer
    if s.backend == "chat":
        return ChatCompletionSummarizer(
            api_key=s.api_key or os.getenv(SUMMARIZER_API_KEY_ENV, ""),
            base_url=s.base_url,
            model=s.model,
            timeout=s.timeout,
        )
    return None


def build_orchestrator(config: Config) -> ContextOrchestrator:
    """Wire an orchestrator with the configured knowledge base, summarizer and telemetry."""
    return ContextOrchestrator(
        config.orchestrator,
        knowledge_base=build_knowledge_base(config),
        summarizer=build_summarizer(config),
        telemetry_path=config.telemetry_path,
    )
