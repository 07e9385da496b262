"""Evaluation of state entry/exit guards."""

import inspect
from typing import Any, Dict, Mapping, Optional

import structlog

from ..types import Guard, GuardContext, GuardResult

logger = structlog.get_logger(__name__)


def normalize_guard_result(value: Any) -> GuardResult:
    """
    Coerce whatever a guard returned into a GuardResult.

    Accepts a bool, a GuardResult, or a mapping with ``allowed`` and the
    optional ``message`` (or ``reason``), ``alternative_action``,
    ``fallback_state`` (or ``fallback_state_key``) and ``custom_message``
    keys; camelCase spellings are read as well. Anything else denies.
    """
    if isinstance(value, GuardResult):
        return value
    if isinstance(value, bool):
        return GuardResult(allowed=value)
    if isinstance(value, Mapping) and "allowed" in value:
        return GuardResult(
            allowed=bool(value["allowed"]),
            message=_first(value, "message", "reason"),
            alternative_action=_first(value, "alternative_action", "alternativeAction"),
            fallback_state=_first(
                value, "fallback_state", "fallback_state_key", "fallbackStateKey"
            ),
            custom_message=_first(value, "custom_message", "customMessage"),
        )
    return GuardResult(
        allowed=False,
        message=f"Guard returned an unsupported value of type {type(value).__name__}",
    )


def _first(value: Mapping, *keys: str) -> Optional[str]:
    for key in keys:
        if value.get(key):
            return value[key]
    return None


async def evaluate_guard(
    guard: Optional[Guard],
    user_query: str,
    metadata: Optional[Dict[str, Any]] = None,
    state_key: str = ""
) -> GuardResult:
    """
    Run a guard immediately before entering (or leaving) a state.

    A missing guard allows. A guard that raises denies; the failure is
    logged and reported in ``message`` instead of propagating.

    Args:
        guard: Sync or async callable taking a GuardContext
        user_query: Current user text
        metadata: Turn metadata handed to the guard
        state_key: Used only for logging

    Returns:
        GuardResult
    """
    if guard is None:
        return GuardResult(allowed=True)

    context = GuardContext(user_query=user_query, metadata=dict(metadata or {}))
    try:
        value = guard(context)
        if inspect.isawaitable(value):
            value = await value
    except Exception as e:
        logger.error("Guard raised, denying", state=state_key, error=str(e))
        return GuardResult(allowed=False, message=f"Guard check failed: {e}")

    result = normalize_guard_result(value)
    if not result.allowed:
        logger.info("Guard denied", state=state_key, message=result.message)
    return result
