"""Abstract logging interface for pipeline events."""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.assistant_router.catalog.models import RetrievalCandidate
from src.utils.logger import get_logger

from .models import GateDecision, PipelineState


class PipelineLogger(ABC):
    """Abstract interface for pipeline event logging."""

    @abstractmethod
    async def log_retrieval(
        self,
        session_id: str,
        query: str,
        candidates: list[RetrievalCandidate],
        latency_ms: float,
    ) -> None: ...

    @abstractmethod
    async def log_gate_decision(
        self,
        session_id: str,
        decision: GateDecision,
    ) -> None: ...

    @abstractmethod
    async def log_turn_outcome(
        self,
        session_id: str,
        state: PipelineState,
        error_kind: str | None,
        latency_ms: float,
    ) -> None: ...


class NullLogger(PipelineLogger):
    """No-op logger. Default when no logger configured."""

    async def log_retrieval(
        self,
        session_id: str,
        query: str,
        candidates: list[RetrievalCandidate],
        latency_ms: float,
    ) -> None:
        pass

    async def log_gate_decision(
        self,
        session_id: str,
        decision: GateDecision,
    ) -> None:
        pass

    async def log_turn_outcome(
        self,
        session_id: str,
        state: PipelineState,
        error_kind: str | None,
        latency_ms: float,
    ) -> None:
        pass


class LoguruPipelineLogger(PipelineLogger):
    """Writes pipeline events as structured loguru records."""

    def __init__(self) -> None:
        self.logger = get_logger("PipelineEvents")

    async def log_retrieval(
        self,
        session_id: str,
        query: str,
        candidates: list[RetrievalCandidate],
        latency_ms: float,
    ) -> None:
        self.logger.bind(
            session_id=session_id,
            candidates=[c.descriptor.label for c in candidates],
        ).info(f"🔎 [{session_id}] retrieval: {len(candidates)} candidate(s) in {latency_ms:.0f}ms")

    async def log_gate_decision(
        self,
        session_id: str,
        decision: GateDecision,
    ) -> None:
        verdict = "rejected" if decision.rejected else f"accepted {decision.accepted.descriptor.label}"
        top = "n/a" if decision.top_score is None else f"{decision.top_score:.3f}"
        self.logger.bind(session_id=session_id).info(
            f"🚦 [{session_id}] gate {verdict} (top score {top}, threshold {decision.threshold})"
        )

    async def log_turn_outcome(
        self,
        session_id: str,
        state: PipelineState,
        error_kind: str | None,
        latency_ms: float,
    ) -> None:
        suffix = f" ({error_kind})" if error_kind else ""
        self.logger.bind(session_id=session_id).info(
            f"🏁 [{session_id}] turn finished: {state.value}{suffix} in {latency_ms:.0f}ms"
        )
