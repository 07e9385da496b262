"""State hierarchy resolution and guard evaluation."""

from .resolver import (
    DEFAULT_MAX_DEPTH,
    PATH_SEPARATOR,
    PROMPT_SEPARATOR,
    Resolution,
    StateResolver,
    resolve_tree,
)
from .guards import evaluate_guard, normalize_guard_result

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "PATH_SEPARATOR",
    "PROMPT_SEPARATOR",
    "Resolution",
    "StateResolver",
    "resolve_tree",
    "evaluate_guard",
    "normalize_guard_result",
]
