"""Embedding API client."""

from __future__ import annotations

from typing import Optional

import httpx

from src.assistant_router.errors import EmbeddingUnavailable
from src.assistant_router.yaml_config import EmbeddingApiConfig

from .http import ApiClient


class EmbeddingClient(ApiClient):
    """Turns text into a vector of the deployment's fixed dimension."""

    error_cls = EmbeddingUnavailable

    def __init__(
        self,
        config: EmbeddingApiConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(config, http_client)
        self.dimension = config.dimension

    async def embed(self, text: str) -> list[float]:
        """Embed text as-is. Raises EmbeddingUnavailable on any failure or dimension mismatch."""
        data = await self.post_json("/embeddings", {"input": text})
        try:
            vector = [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingUnavailable(
                f"unexpected response shape: {e!r}", self._url("/embeddings")
            ) from e

        if len(vector) != self.dimension:
            raise EmbeddingUnavailable(
                f"expected a {self.dimension}-dimensional vector, got {len(vector)}",
                self._url("/embeddings"),
            )
        return vector

    async def embed_query(self, query: str) -> list[float]:
        """Embed a user query, applying the configured instruction/query prefixes."""
        return await self.embed(self.config.prompt_template.apply(query))
