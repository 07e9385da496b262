"""Curation level presets for controlling how much context is injected."""

from dataclasses import dataclass
from typing import Dict, Union


@dataclass
class LevelPreset:
    """Configuration preset for a curation level."""
    name: str
    token_budget: int
    relevance_threshold: float
    max_knowledge_results: int
    time_decay_factor: float  # How quickly old concepts fade
    description: str


# Level presets: 1 (minimal) to 5 (full)
LEVEL_PRESETS: Dict[int, LevelPreset] = {
    1: LevelPreset(
        name="minimal",
        token_budget=300,
        relevance_threshold=0.35,
        max_knowledge_results=2,
        time_decay_factor=0.3,
        description="Only strongly matching contexts. Fast, cheap, forgetful."
    ),
    2: LevelPreset(
        name="lean",
        token_budget=800,
        relevance_threshold=0.2,
        max_knowledge_results=3,
        time_decay_factor=0.2,
        description="High-confidence contexts only."
    ),
    3: LevelPreset(
        name="balanced",
        token_budget=1500,
        relevance_threshold=0.1,
        max_knowledge_results=5,
        time_decay_factor=0.1,
        description="Default. Good coverage, reasonable cost."
    ),
    4: LevelPreset(
        name="rich",
        token_budget=3000,
        relevance_threshold=0.05,
        max_knowledge_results=8,
        time_decay_factor=0.05,
        description="Include 'probably relevant' contexts, long topic memory."
    ),
    5: LevelPreset(
        name="full",
        token_budget=5000,
        relevance_threshold=0.0,
        max_knowledge_results=12,
        time_decay_factor=0.02,
        description="Everything that fits. Safe but expensive."
    ),
}

# Name aliases
LEVEL_NAMES: Dict[str, int] = {
    "minimal": 1,
    "lean": 2,
    "balanced": 3,
    "rich": 4,
    "full": 5,
    "auto": 3,  # Auto defaults to balanced
}

DEFAULT_LEVEL = 3


def resolve_level(level: Union[int, str, None]) -> int:
    """
    Resolve a level specification to a numeric level.

    Args:
        level: Level as int (1-5), name ("minimal", "balanced", etc.),
               "auto", or None (uses default)

    Returns:
        Numeric level 1-5
    """
    if level is None:
        return DEFAULT_LEVEL

    if isinstance(level, int):
        return max(1, min(5, level))  # Clamp to 1-5

    if isinstance(level, str):
        level_lower = level.lower().strip()
        if level_lower in LEVEL_NAMES:
            return LEVEL_NAMES[level_lower]
        try:
            return max(1, min(5, int(level_lower)))
        except ValueError:
            pass

    return DEFAULT_LEVEL


def get_preset(level: Union[int, str, None]) -> LevelPreset:
    """Get the preset for a given level."""
    return LEVEL_PRESETS[resolve_level(level)]


def describe_levels() -> str:
    """Get a human-readable description of all levels."""
    lines = ["Curation Levels:", ""]
    for num, preset in sorted(LEVEL_PRESETS.items()):
        lines.append(f"  {num}. {preset.name.capitalize()}")
        lines.append(f"     {preset.description}")
        lines.append(f"     Budget: ~{preset.token_budget} tokens, "
                     f"threshold: {preset.relevance_threshold:.2f}, "
                     f"decay: {preset.time_decay_factor:.2f}")
        lines.append("")
    return "\n".join(lines)
