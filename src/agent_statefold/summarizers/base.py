"""
Base summarizer interface for context condensation.

Abstract base class for summarization backends.
Different implementations can use different APIs or local models.
"""

from abc import ABC, abstractmethod


class Summarizer(ABC):
    """
    Abstract base class for context summarization.

    Implementations:
    - ChatCompletionSummarizer: any OpenAI-compatible chat completions API
    """

    @abstractmethod
    async def summarize(self, text: str, target_tokens: int, query: str = "") -> str:
        """
        Condense ``text`` to roughly ``target_tokens``.

        Args:
            text: Context content to summarize
            target_tokens: Token budget the summary should fit
            query: Current user text (for focus)

        Returns:
            Summarized content
        """
        pass

    async def close(self) -> None:
        """Cleanup resources. Override if needed."""
        pass
