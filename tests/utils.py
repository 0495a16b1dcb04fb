"""Shared fakes for pipeline tests.

The fakes stand in for the external model services and record every call so
tests can assert on how many times each collaborator was hit.
"""

import asyncio
import json
from typing import Any, Callable, Optional

import httpx

from src.assistant_router.catalog.models import ToolDescriptor
from src.assistant_router.catalog.store import InMemoryCatalogStore
from src.assistant_router.errors import GenerationUnavailable
from src.assistant_router.pipeline import (
    AssistantPipeline,
    Dispatcher,
    EmbeddingRetriever,
    JsonSchemaValidator,
    PipelineConfig,
    RequestSynthesizer,
    RerankGate,
    Summarizer,
)
from src.assistant_router.yaml_config import DispatchConfig

TARGET_URL = "http://target.test"

TODO_BODY_SCHEMA = {
    "type": "object",
    "properties": {"item": {"type": "string"}},
    "required": ["item"],
    "additionalProperties": False,
}


def make_descriptor(
    path: str = "/todos",
    method: str = "POST",
    description: str = "Add an item to the user's todo list",
    params: Optional[dict] = None,
    body: Optional[dict] = None,
    embedding: Optional[list[float]] = None,
) -> ToolDescriptor:
    return ToolDescriptor(
        path=path,
        method=method,
        description=description,
        params=params,
        body=body,
        embedding=embedding,
    )


def todo_catalog() -> InMemoryCatalogStore:
    return InMemoryCatalogStore(
        [
            make_descriptor(body=TODO_BODY_SCHEMA, embedding=[1.0, 0.0, 0.0]),
            make_descriptor(
                path="/todos",
                method="GET",
                description="List the user's todo items",
                params={
                    "type": "object",
                    "properties": {"done": {"type": "boolean"}},
                    "additionalProperties": False,
                },
                embedding=[0.0, 0.0, 1.0],
            ),
        ]
    )


class FakeEmbedder:
    """Returns a fixed vector per query (or a default one)."""

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None, default=None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.calls: list[str] = []
        self.error: Optional[Exception] = None

    async def embed_query(self, query: str) -> list[float]:
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return self.vectors.get(query, self.default)


class FakeScorer:
    """Scores documents by description lookup."""

    def __init__(self, scores: Optional[dict[str, float]] = None, default: float = 0.0):
        self.scores = scores or {}
        self.default = default
        self.calls: list[tuple[str, list[str]]] = []
        self.error: Optional[Exception] = None

    async def score(self, query: str, documents) -> list[float]:
        self.calls.append((query, list(documents)))
        if self.error is not None:
            raise self.error
        return [self.scores.get(d, self.default) for d in documents]


class FakeGenerator:
    """Scripted completions plus a scripted answer stream.

    ``replies`` items are returned in order by ``complete``; an Exception item
    is raised instead. ``chunks`` are streamed by ``stream``; an Exception item
    is raised mid-stream, and ``hang_after`` stalls the stream after that many
    chunks until it is cancelled.
    """

    def __init__(
        self,
        replies: Optional[list[Any]] = None,
        chunks: Optional[list[Any]] = None,
        hang_after: Optional[int] = None,
    ):
        self.replies = list(replies or [])
        self.chunks = list(chunks or [])
        self.hang_after = hang_after
        self.complete_calls: list[dict[str, Any]] = []
        self.stream_calls: list[list[dict[str, str]]] = []
        self.stream_closed = False

    @property
    def call_count(self) -> int:
        return len(self.complete_calls) + len(self.stream_calls)

    async def complete(self, messages, response_format=None) -> str:
        self.complete_calls.append({"messages": list(messages), "response_format": response_format})
        if not self.replies:
            raise GenerationUnavailable("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, messages):
        self.stream_calls.append(list(messages))
        try:
            for i, chunk in enumerate(self.chunks):
                if self.hang_after is not None and i >= self.hang_after:
                    await asyncio.Event().wait()
                if isinstance(chunk, Exception):
                    raise chunk
                await asyncio.sleep(0)
                yield chunk
            if self.hang_after is not None and self.hang_after >= len(self.chunks):
                await asyncio.Event().wait()
        finally:
            self.stream_closed = True


def request_json(path: str, method: str, params=None, body=None) -> str:
    return json.dumps({"path": path, "method": method, "params": params, "body": body})


class RecordingTarget:
    """httpx MockTransport handler for the internal target API."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, text="ok"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def dispatcher(self, audit=None, timeout_seconds: float = 10.0) -> Dispatcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self), base_url=TARGET_URL)
        config = DispatchConfig(base_url=TARGET_URL, timeout_seconds=timeout_seconds)
        return Dispatcher(config, http_client=client, audit=audit)


def build_pipeline(
    catalog: InMemoryCatalogStore,
    embedder: FakeEmbedder,
    scorer: FakeScorer,
    generator: FakeGenerator,
    target: RecordingTarget,
    config: Optional[PipelineConfig] = None,
    events=None,
) -> AssistantPipeline:
    config = config or PipelineConfig()
    return AssistantPipeline(
        retriever=EmbeddingRetriever(embedder, catalog, config.distance_cutoff),
        gate=RerankGate(scorer, config.rerank_threshold),
        synthesizer=RequestSynthesizer(generator, JsonSchemaValidator(), config.synthesis_attempts),
        dispatcher=target.dispatcher(),
        summarizer=Summarizer(generator),
        config=config,
        events=events,
    )
