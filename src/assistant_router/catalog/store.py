"""Catalog store read contract and the in-memory implementation.

Single writer (bootstrap/import), many readers (pipeline turns). Readers only
ever call ``nearest``; a turn may or may not see a descriptor upserted while
it runs.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Sequence

import yaml
from pydantic import ValidationError

from src.utils.logger import get_logger

from .models import RetrievalCandidate, ToolDescriptor

logger = get_logger("CatalogStore")


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """1 - cosine similarity. Zero vectors are maximally distant."""
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


class CatalogStore(ABC):
    """Read contract consumed by the retriever."""

    @abstractmethod
    async def nearest(self, vector: Sequence[float], k: int) -> list[RetrievalCandidate]:
        """Return up to k candidates ordered by ascending distance.

        Ties are broken by ascending (path, method). An empty catalog yields [].
        """
        ...

    @abstractmethod
    def __len__(self) -> int: ...


class InMemoryCatalogStore(CatalogStore):
    """Brute-force cosine search over descriptors held in a dict."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        self._descriptors: dict[tuple[str, str], ToolDescriptor] = {}
        for descriptor in descriptors:
            self.upsert(descriptor)

    def __len__(self) -> int:
        return len(self._descriptors)

    def upsert(self, descriptor: ToolDescriptor) -> None:
        """Insert or replace by (path, method). Registration path only."""
        self._descriptors[descriptor.key] = descriptor

    def remove(self, path: str, method: str) -> bool:
        return self._descriptors.pop((path, method.upper()), None) is not None

    def get(self, path: str, method: str) -> Optional[ToolDescriptor]:
        return self._descriptors.get((path, method.upper()))

    def descriptors(self) -> list[ToolDescriptor]:
        return sorted(self._descriptors.values(), key=lambda d: d.key)

    def missing_embeddings(self) -> list[ToolDescriptor]:
        return [d for d in self.descriptors() if not d.embedding]

    async def nearest(self, vector: Sequence[float], k: int) -> list[RetrievalCandidate]:
        if k <= 0 or not self._descriptors:
            return []

        # Snapshot so a concurrent upsert cannot change the dict mid-scan
        snapshot = list(self._descriptors.values())
        scored: list[RetrievalCandidate] = []
        for descriptor in snapshot:
            if not descriptor.embedding:
                continue
            if len(descriptor.embedding) != len(vector):
                logger.warning(
                    f"⚠️ Skipping {descriptor.label}: embedding dimension "
                    f"{len(descriptor.embedding)} != query dimension {len(vector)}"
                )
                continue
            scored.append(
                RetrievalCandidate(
                    descriptor=descriptor,
                    distance=cosine_distance(vector, descriptor.embedding),
                )
            )

        scored.sort(key=lambda c: (c.distance, c.descriptor.path, c.descriptor.method))
        return scored[:k]


def load_catalog(path: Path) -> InMemoryCatalogStore:
    """Load descriptors from a YAML catalog file.

    Missing file → empty store. Invalid entries are logged and skipped so one
    bad descriptor does not take the whole catalog down.
    """
    store = InMemoryCatalogStore()
    if not path.exists():
        logger.warning(f"⚠️ Catalog file {path} not found, starting with an empty catalog")
        return store

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    entries = raw.get("descriptors", []) if isinstance(raw, dict) else raw
    for i, entry in enumerate(entries or []):
        try:
            store.upsert(ToolDescriptor.model_validate(entry))
        except ValidationError as e:
            logger.error(f"❌ Skipping invalid catalog entry #{i} in {path}: {e}")

    logger.info(f"📚 Loaded {len(store)} descriptor(s) from {path}")
    return store


def save_catalog(store: InMemoryCatalogStore, path: Path) -> None:
    """Write every descriptor (embeddings included) to a YAML catalog file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "descriptors": [
            d.model_dump(by_alias=True, exclude_none=True) for d in store.descriptors()
        ]
    }
    with open(path, "w") as f:
        yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
