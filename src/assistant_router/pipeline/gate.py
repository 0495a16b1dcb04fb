"""Rerank retrieval candidates and gate the winner on a score threshold."""

from __future__ import annotations

import math
from typing import Protocol, Sequence

from src.assistant_router.catalog.models import RetrievalCandidate
from src.utils.logger import get_logger

from .models import GateDecision, RerankedCandidate


class Scorer(Protocol):
    async def score(self, query: str, documents: Sequence[str]) -> list[float]: ...


class RerankGate:
    """Scores every candidate in one batch and accepts only the top one.

    Below-threshold is a designed rejection, not an error. There is no
    fallback to the runner-up: whatever happens to the accepted candidate
    later, the others are gone.
    """

    def __init__(self, scorer: Scorer, threshold: float) -> None:
        self.scorer = scorer
        self.threshold = threshold
        self.logger = get_logger("RerankGate")

    async def rerank_and_gate(
        self,
        query: str,
        candidates: Sequence[RetrievalCandidate],
    ) -> GateDecision:
        if not candidates:
            return GateDecision(accepted=None, ranked=[], threshold=self.threshold)

        # Raises RerankUnavailable for the whole batch
        scores = await self.scorer.score(query, [c.descriptor.description for c in candidates])

        # Stable sort: equal scores keep retrieval (distance) order, NaN sorts last
        ranked = sorted(
            (RerankedCandidate(candidate=c, score=s) for c, s in zip(candidates, scores)),
            key=lambda r: float("-inf") if math.isnan(r.score) else r.score,
            reverse=True,
        )
        top = ranked[0]
        if not top.score >= self.threshold:
            self.logger.info(
                f"🚫 Rejected: best candidate {top.descriptor.label} scored "
                f"{top.score:.3f} < threshold {self.threshold}"
            )
            return GateDecision(accepted=None, ranked=ranked, threshold=self.threshold)

        self.logger.info(
            f"✅ Accepted {top.descriptor.label} with score {top.score:.3f}"
        )
        return GateDecision(accepted=top, ranked=ranked, threshold=self.threshold)
