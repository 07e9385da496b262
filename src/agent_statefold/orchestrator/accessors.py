"""Concurrent evaluation of context accessors."""

import asyncio
from typing import List, Optional, Sequence, Tuple

import structlog

from ..types import Context

logger = structlog.get_logger(__name__)


async def read_context(context: Context, timeout: Optional[float]) -> Optional[str]:
    """
    Read one context, bounded by ``timeout`` seconds.

    Returns None when the accessor raises or times out; the failure is
    logged and the context is left out of this turn.
    """
    try:
        return await asyncio.wait_for(context.read(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Context accessor timed out", key=context.key, timeout=timeout)
    except Exception as e:
        logger.warning("Context accessor failed", key=context.key, error=str(e))
    return None


async def read_contexts(
    contexts: Sequence[Context],
    timeout: Optional[float] = 2.0
) -> List[Tuple[Context, str]]:
    """
    Read every context concurrently.

    Args:
        contexts: Contexts of the active leaf
        timeout: Per-context timeout in seconds (None waits forever)

    Returns:
        (context, text) pairs in input order, failed reads omitted
    """
    if not contexts:
        return []
    texts = await asyncio.gather(*(read_context(c, timeout) for c in contexts))
    return [(c, text) for c, text in zip(contexts, texts) if text is not None]
