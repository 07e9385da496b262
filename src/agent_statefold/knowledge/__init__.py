"""Knowledge-base connectors consulted during context orchestration."""

from .base import KnowledgeBaseConnector, KnowledgeResult
from .static import StaticKnowledgeBase
from .http import HTTPKnowledgeBase

__all__ = [
    "KnowledgeBaseConnector",
    "KnowledgeResult",
    "StaticKnowledgeBase",
    "HTTPKnowledgeBase",
]
