"""Token budget management for context selection."""

import math
import sys
from dataclasses import replace
from typing import TYPE_CHECKING, List, Optional

import structlog

from .scorer import rank_key
from .types import (
    STRATEGY_FILTERED,
    STRATEGY_FULL,
    STRATEGY_MINIMAL,
    STRATEGY_SUMMARIZED,
    Allocation,
    ScoredContext,
)

if TYPE_CHECKING:
    from ..summarizers.base import Summarizer

logger = structlog.get_logger(__name__)

ESTIMATORS = ("chars", "tiktoken")


class TokenBudget:
    """
    Fills a fixed token budget with the best-ranked candidates.

    A candidate that does not fit is skipped and the fill continues. Skipped
    candidates may then be summarized into whatever budget is left, and if
    nothing fits at all the top candidate is truncated.
    """

    def __init__(
        self,
        total_budget: int = 1500,
        estimator: str = "chars",
        chars_per_token: int = 4,
        encoding: str = "cl100k_base",
        min_summary_tokens: int = 32
    ):
        """
        Initialize budget manager.

        Args:
            total_budget: Ceiling on estimated tokens of the selected texts
            estimator: "chars" (length / chars_per_token) or "tiktoken"
            chars_per_token: Divisor for the chars estimator
            encoding: Tiktoken encoding name
            min_summary_tokens: Smallest remaining budget worth summarizing into
        """
        self.total_budget = total_budget
        self.estimator = estimator
        self.chars_per_token = chars_per_token
        self.min_summary_tokens = min_summary_tokens
        self._encoding = encoding
        self._tokenizer = None

    @property
    def tokenizer(self):
        """Lazy-load tokenizer."""
        if self._tokenizer is None:
            import tiktoken
            self._tokenizer = tiktoken.get_encoding(self._encoding)
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        """
        Estimate tokens in text.

        An estimation failure makes the text cost ``sys.maxsize`` so it can
        never be selected.
        """
        try:
            if self.estimator == "tiktoken":
                return len(self.tokenizer.encode(text))
            return math.ceil(len(text) / self.chars_per_token)
        except Exception as e:
            logger.warning("Token estimation failed", estimator=self.estimator, error=str(e))
            return sys.maxsize

    def truncate(self, text: str, max_tokens: int) -> str:
        """Cut ``text`` down to at most ``max_tokens``."""
        if max_tokens <= 0:
            return ""
        try:
            if self.estimator == "tiktoken":
                tokens = self.tokenizer.encode(text)
                return self.tokenizer.decode(tokens[:max_tokens])
        except Exception as e:
            logger.warning("Token truncation failed", estimator=self.estimator, error=str(e))
            return ""
        return text[:max_tokens * self.chars_per_token]

    async def allocate(
        self,
        ranked: List[ScoredContext],
        summarizer: Optional["Summarizer"] = None,
        query: str = ""
    ) -> Allocation:
        """
        Fill budget with highest-ranked candidates.

        Args:
            ranked: Candidates in rank order
            summarizer: Optional summarizer for candidates that did not fit
            query: User text, handed to the summarizer

        Returns:
            Allocation with selected candidates (rank order) and strategy
        """
        available = self.total_budget
        selected: List[ScoredContext] = []
        skipped: List[ScoredContext] = []
        total_tokens = 0

        for sc in ranked:
            sc.tokens = self.count_tokens(sc.content)
            if total_tokens + sc.tokens <= available:
                selected.append(sc)
                total_tokens += sc.tokens
            else:
                skipped.append(sc)

        summarized = False
        if summarizer is not None and skipped:
            dropped = []
            for sc in skipped:
                remaining = available - total_tokens
                if remaining < self.min_summary_tokens:
                    dropped.append(sc)
                    continue
                summary = await self._summarize(summarizer, sc, remaining, query)
                tokens = self.count_tokens(summary) if summary else sys.maxsize
                if tokens > remaining:
                    dropped.append(sc)
                    continue
                selected.append(replace(
                    sc,
                    candidate=replace(sc.candidate, content=summary),
                    tokens=tokens,
                    summarized=True,
                ))
                total_tokens += tokens
                summarized = True
            skipped = dropped

        truncated = False
        if not selected and ranked and available > 0:
            top = ranked[0]
            text = self.truncate(top.content, available)
            tokens = self.count_tokens(text) if text else sys.maxsize
            if tokens <= available:
                selected.append(replace(
                    top,
                    candidate=replace(top.candidate, content=text),
                    tokens=tokens,
                    truncated=True,
                ))
                total_tokens = tokens
                skipped = skipped[1:] if skipped and skipped[0] is top else skipped
                truncated = True

        if summarized:
            strategy = STRATEGY_SUMMARIZED
        elif truncated:
            strategy = STRATEGY_MINIMAL
        elif skipped:
            strategy = STRATEGY_FILTERED
        else:
            strategy = STRATEGY_FULL

        selected.sort(key=rank_key)
        return Allocation(
            selected=selected,
            strategy=strategy,
            tokens_used=total_tokens,
            budget=self.total_budget,
            dropped=skipped,
        )

    async def _summarize(
        self,
        summarizer: "Summarizer",
        sc: ScoredContext,
        target_tokens: int,
        query: str
    ) -> str:
        try:
            return await summarizer.summarize(sc.content, target_tokens, query=query)
        except Exception as e:
            logger.warning("Summarization failed, skipping context", key=sc.key, error=str(e))
            return ""
