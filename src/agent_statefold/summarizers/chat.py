"""
Chat-completion summarization for contexts that overflow the budget.

Condenses lower-ranked contexts into the remaining budget while
preserving what is relevant to the current user text.
"""

from typing import Optional

import httpx
import structlog

from .base import Summarizer

logger = structlog.get_logger(__name__)


class ChatCompletionSummarizer(Summarizer):
    """
    Summarizes contexts through an OpenAI-compatible API.

    Posts to ``{base_url}/v1/chat/completions``. Any HTTP or decoding
    error is logged and the original text is returned; the budget step
    then skips it because it still does not fit.
    """

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.openai.com",
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize summarizer.

        Args:
            api_key: Bearer token
            base_url: API base URL, without the /v1 suffix
            model: Model to use for summarization
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def summarize(self, text: str, target_tokens: int, query: str = "") -> str:
        system_prompt = f"""You are a context compression assistant.
Summarize the reference material below while preserving every detail
relevant to the user's current message.

Target length: at most {target_tokens} tokens.

Preserve:
- Key facts and decisions
- Technical details and code
- Important names, dates, numbers

Output only the summarized content, no explanations."""

        user_content = f"""Reference material:

{text}

Current user message: {query or 'general conversation'}

Summary:"""

        try:
            summary = await self._call_api(system_prompt, user_content, target_tokens)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("Summarization request failed, keeping original", error=str(e))
            return text
        return summary.strip() if summary else text

    async def _call_api(self, system_prompt: str, user_content: str, target_tokens: int) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": max(target_tokens, 1),
            "temperature": 0.3,  # Low temp for consistent summaries
        }

        response = await self._client.post(f"{self.base_url}/v1/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()

        if data.get("choices"):
            return data["choices"][0]["message"]["content"] or ""
        return ""

    async def close(self) -> None:
        await self._client.aclose()
