"""Options for the context orchestrator."""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import ConfigurationError
from .budget import ESTIMATORS
from .levels import get_preset, resolve_level


@dataclass
class OrchestratorConfig:
    """
    Tuning for the scanning ball.

    Defaults match the "balanced" curation level.
    """
    max_context_tokens: int = 1500
    max_reasoning_history: int = 20
    relevance_threshold: float = 0.1
    enable_concept_mapping: bool = True
    enable_semantic_clustering: bool = False
    time_decay_factor: float = 0.1
    similarity_cutoff: float = 0.6
    chars_per_token: int = 4
    token_estimator: str = "chars"  # "chars" or "tiktoken"
    tiktoken_encoding: str = "cl100k_base"
    accessor_timeout: Optional[float] = 2.0
    knowledge_timeout: Optional[float] = 5.0
    related_concept_strength: float = 0.5
    concept_floor: float = 0.01
    min_summary_tokens: int = 32
    max_knowledge_results: int = 5
    level: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigurationError on any out-of-range option."""
        if self.max_context_tokens < 0:
            raise ConfigurationError(
                f"max_context_tokens must be >= 0, got {self.max_context_tokens}"
            )
        if self.max_reasoning_history < 1:
            raise ConfigurationError(
                f"max_reasoning_history must be >= 1, got {self.max_reasoning_history}"
            )
        if self.relevance_threshold < 0:
            raise ConfigurationError(
                f"relevance_threshold must be >= 0, got {self.relevance_threshold}"
            )
        if not 0.0 <= self.time_decay_factor <= 1.0:
            raise ConfigurationError(
                f"time_decay_factor must be in [0, 1], got {self.time_decay_factor}"
            )
        if not 0.0 < self.similarity_cutoff <= 1.0:
            raise ConfigurationError(
                f"similarity_cutoff must be in (0, 1], got {self.similarity_cutoff}"
            )
        if self.chars_per_token < 1:
            raise ConfigurationError(
                f"chars_per_token must be >= 1, got {self.chars_per_token}"
            )
        if self.token_estimator not in ESTIMATORS:
            raise ConfigurationError(
                f"token_estimator must be one of {', '.join(ESTIMATORS)}, "
                f"got '{self.token_estimator}'"
            )
        for name in ("accessor_timeout", "knowledge_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be > 0 or null, got {value}")
        if self.related_concept_strength < 0 or self.concept_floor < 0:
            raise ConfigurationError("Concept strengths must be >= 0")
        if self.min_summary_tokens < 0 or self.max_knowledge_results < 0:
            raise ConfigurationError(
                "min_summary_tokens and max_knowledge_results must be >= 0"
            )

    @classmethod
    def from_level(cls, level: Union[int, str, None] = None, **overrides) -> "OrchestratorConfig":
        """
        Build options from a curation level preset.

        Args:
            level: 1-5, a level name, "auto" or None (balanced)
            **overrides: Options that win over the preset
        """
        numeric = resolve_level(level)
        preset = get_preset(numeric)
        values = {
            "max_context_tokens": preset.token_budget,
            "relevance_threshold": preset.relevance_threshold,
            "max_knowledge_results": preset.max_knowledge_results,
            "time_decay_factor": preset.time_decay_factor,
            "level": numeric,
        }
        values.update(overrides)
        unknown = sorted(set(values) - {f.name for f in fields(cls)})
        if unknown:
            raise ConfigurationError(f"Unknown orchestrator option(s): {', '.join(unknown)}")
        return cls._build(values)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "OrchestratorConfig":
        """
        Create options from a mapping.

        A ``level`` key selects a preset that the remaining keys override.
        Unknown keys raise ConfigurationError.
        """
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown orchestrator option(s): {', '.join(unknown)}")

        if data.get("level") is not None:
            level = data.pop("level")
            return cls.from_level(level, **data)
        return cls._build(data)

    @classmethod
    def _build(cls, values: Mapping[str, Any]) -> "OrchestratorConfig":
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid orchestrator options: {e}") from e

    def with_level(self, level: Union[int, str, None]) -> "OrchestratorConfig":
        """Copy with the preset fields of ``level`` applied."""
        preset = get_preset(level)
        return replace(
            self,
            max_context_tokens=preset.token_budget,
            relevance_threshold=preset.relevance_threshold,
            max_knowledge_results=preset.max_knowledge_results,
            time_decay_factor=preset.time_decay_factor,
            level=resolve_level(level),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
