"""Reranking API client."""

from __future__ import annotations

import math
from typing import Sequence

from src.assistant_router.errors import RerankUnavailable

from .http import ApiClient


class RerankingClient(ApiClient):
    """Scores (query, document) pairs in a single batch call."""

    error_cls = RerankUnavailable

    async def score(self, query: str, documents: Sequence[str]) -> list[float]:
        """Return one relevance score per document, in the order given."""
        if not documents:
            return []

        data = await self.post_json("/rerank", {"query": query, "documents": list(documents)})
        scores: list[float | None] = [None] * len(documents)
        try:
            for result in data["results"]:
                index = int(result["index"])
                score = float(result["relevance_score"])
                if index < 0:
                    raise IndexError(f"negative document index {index}")
                if not math.isfinite(score):
                    raise ValueError(f"non-finite score {score} for document {index}")
                scores[index] = score
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RerankUnavailable(f"unexpected response shape: {e!r}", self._url("/rerank")) from e

        missing = [i for i, s in enumerate(scores) if s is None]
        if missing:
            raise RerankUnavailable(
                f"no score returned for document(s) {missing}", self._url("/rerank")
            )
        return scores  # type: ignore[return-value]
