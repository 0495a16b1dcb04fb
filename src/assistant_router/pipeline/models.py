"""Core data models for the tool-retrieval-and-dispatch pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from src.assistant_router.catalog.models import RetrievalCandidate, ToolDescriptor

Role = Literal["system", "user", "assistant"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """One conversation entry."""
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_chat(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class RerankedCandidate:
    """A retrieval candidate annotated with its rerank score."""
    candidate: RetrievalCandidate
    score: float

    @property
    def descriptor(self) -> ToolDescriptor:
        return self.candidate.descriptor


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the rerank gate. ``accepted`` is None on rejection."""
    accepted: Optional[RerankedCandidate]
    ranked: list[RerankedCandidate]
    threshold: float

    @property
    def rejected(self) -> bool:
        return self.accepted is None

    @property
    def top_score(self) -> Optional[float]:
        return self.ranked[0].score if self.ranked else None


@dataclass(frozen=True)
class DispatchPlan:
    """A descriptor plus a payload already validated against its schemas."""
    descriptor: ToolDescriptor
    params: Optional[dict[str, Any]] = None
    body: Optional[Any] = None

    @property
    def method(self) -> str:
        return self.descriptor.method

    @property
    def path(self) -> str:
        return self.descriptor.path

    def as_request(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "params": self.params,
            "body": self.body,
        }

    def to_message_content(self) -> str:
        return json.dumps(self.as_request(), indent=2, ensure_ascii=False)


class DispatchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNEXPECTED_STATUS = "unexpected_status"


@dataclass(frozen=True)
class DispatchResult:
    """What the target endpoint returned, or why nothing came back."""
    status_code: Optional[int]
    body: str
    error: Optional[DispatchErrorKind] = None
    reason: str = ""
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_class(self) -> Optional[str]:
        if self.status_code is None:
            return None
        return f"{self.status_code // 100}xx"


class PipelineState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    GATING = "gating"
    REJECTED = "rejected"
    SYNTHESIZING = "synthesizing"
    SYNTHESIS_FAILED = "synthesis_failed"
    DISPATCHING = "dispatching"
    CONTEXT_UPDATING = "context_updating"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    PipelineState.REJECTED,
    PipelineState.SYNTHESIS_FAILED,
    PipelineState.DONE,
    PipelineState.FAILED,
    PipelineState.CANCELLED,
})


@dataclass
class PipelineConfig:
    """Decision knobs consumed by the pipeline, with sensible defaults."""
    top_k: int = 5
    distance_cutoff: float = 0.6
    rerank_threshold: float = 0.5
    synthesis_attempts: int = 3
    max_response_chars: int = 4000
