"""Tool-retrieval-and-dispatch pipeline."""

from .context import ConversationContext, length_cost
from .dispatcher import Dispatcher
from .gate import RerankGate
from .logging import LoguruPipelineLogger, NullLogger, PipelineLogger
from .models import (
    DispatchErrorKind,
    DispatchPlan,
    DispatchResult,
    GateDecision,
    Message,
    PipelineConfig,
    PipelineState,
    RerankedCandidate,
)
from .pipeline import AssistantPipeline, Turn
from .retriever import EmbeddingRetriever, ToolRetriever
from .session import Session, SessionStore
from .summarizer import CancellationToken, Summarizer, SummaryStream
from .synthesizer import RequestSynthesizer
from .validation import JsonSchemaValidator, SchemaValidator

__all__ = [
    "AssistantPipeline",
    "CancellationToken",
    "ConversationContext",
    "DispatchErrorKind",
    "DispatchPlan",
    "DispatchResult",
    "Dispatcher",
    "EmbeddingRetriever",
    "GateDecision",
    "JsonSchemaValidator",
    "LoguruPipelineLogger",
    "Message",
    "NullLogger",
    "PipelineConfig",
    "PipelineLogger",
    "PipelineState",
    "RequestSynthesizer",
    "RerankGate",
    "RerankedCandidate",
    "SchemaValidator",
    "Session",
    "SessionStore",
    "Summarizer",
    "SummaryStream",
    "ToolRetriever",
    "Turn",
    "length_cost",
]
