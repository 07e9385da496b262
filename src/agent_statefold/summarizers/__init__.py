"""Summarizers used when contexts overflow the token budget."""

from .base import Summarizer
from .chat import ChatCompletionSummarizer

__all__ = ["Summarizer", "ChatCompletionSummarizer"]
