"""Semantic retrieval of catalog candidates for a query."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, Sequence

from src.assistant_router.catalog.models import RetrievalCandidate
from src.assistant_router.catalog.store import CatalogStore
from src.utils.logger import get_logger


class Embedder(Protocol):
    async def embed_query(self, query: str) -> list[float]: ...


class ToolRetriever(ABC):
    """Abstract interface for tool retrieval strategies."""

    @abstractmethod
    async def retrieve(self, query: str, k: int) -> list[RetrievalCandidate]:
        """Return at most k candidates ordered by ascending distance.

        An empty result is a valid outcome (nothing close enough), not an error.
        """
        ...


class EmbeddingRetriever(ToolRetriever):
    """Embeds the query and asks the catalog for its nearest descriptors.

    Candidates farther than ``distance_cutoff`` are dropped here; the rerank
    threshold downstream is an independent knob.
    """

    def __init__(self, embedder: Embedder, store: CatalogStore, distance_cutoff: float) -> None:
        self.embedder = embedder
        self.store = store
        self.distance_cutoff = distance_cutoff
        self.logger = get_logger("Retriever")

    async def retrieve(self, query: str, k: int) -> list[RetrievalCandidate]:
        if k <= 0:
            return []

        # Raises EmbeddingUnavailable on transport errors or dimension mismatch
        vector = await self.embedder.embed_query(query)
        nearest: Sequence[RetrievalCandidate] = await self.store.nearest(vector, k)

        candidates = [c for c in nearest if c.distance <= self.distance_cutoff]
        dropped = len(nearest) - len(candidates)
        if dropped:
            self.logger.debug(
                f"Dropped {dropped} candidate(s) beyond distance cutoff {self.distance_cutoff}"
            )
        summary = ", ".join(f"{c.descriptor.label} ({c.distance:.3f})" for c in candidates)
        self.logger.debug(f"Retrieved: {summary or 'nothing'}")
        return candidates[:k]
