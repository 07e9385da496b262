"""Remote knowledge base reached over HTTP."""

from typing import List, Optional

import httpx

from .base import KnowledgeBaseConnector, KnowledgeResult


class HTTPKnowledgeBase(KnowledgeBaseConnector):
    """
    Knowledge base served by a JSON HTTP API.

    Endpoints:
        POST {base_url}/search   {"query", "concepts", "limit"}
                                 -> {"results": [{"content", "relevance", "source", "metadata"}]}
        POST {base_url}/related  {"concepts"} -> {"concepts": [...]}

    HTTP and decoding errors propagate; the orchestrator treats them as a
    degraded turn.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_results: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the connector.

        Args:
            base_url: Service root, without trailing slash
            api_key: Sent as a bearer token when set
            timeout: Per-request timeout in seconds
            max_results: ``limit`` sent with every search
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.max_results = max_results

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def search(self, query: str, concepts: List[str]) -> List[KnowledgeResult]:
        response = await self._client.post("/search", json={
            "query": query,
            "concepts": list(concepts),
            "limit": self.max_results,
        })
        response.raise_for_status()
        data = response.json()

        return [
            KnowledgeResult(
                content=item["content"],
                relevance=float(item.get("relevance", 0.0)),
                source=item.get("source", self.base_url),
                metadata=dict(item.get("metadata") or {}),
            )
            for item in data.get("results", [])
            if item.get("content")
        ]

    async def get_related_concepts(self, concepts: List[str]) -> List[str]:
        if not concepts:
            return []
        response = await self._client.post("/related", json={"concepts": list(concepts)})
        response.raise_for_status()
        return [str(c).lower() for c in response.json().get("concepts", [])]

    async def close(self) -> None:
        await self._client.aclose()
