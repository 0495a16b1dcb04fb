import asyncio
import hmac
import json
import signal
from pathlib import Path
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Literal, Optional

import uvicorn
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from src.assistant_router import prompts
from src.assistant_router.catalog.store import InMemoryCatalogStore, load_catalog
from src.assistant_router.clients import EmbeddingClient, GenerationClient, RerankingClient
from src.assistant_router.errors import ConfigurationError, EmbeddingUnavailable, SessionBusy
from src.assistant_router.pipeline import (
    AssistantPipeline,
    Dispatcher,
    EmbeddingRetriever,
    JsonSchemaValidator,
    LoguruPipelineLogger,
    Message,
    PipelineConfig,
    RequestSynthesizer,
    RerankGate,
    SessionStore,
    Summarizer,
    length_cost,
)
from src.assistant_router.utils.audit import DispatchAuditLogger
from src.assistant_router.yaml_config import RouterConfig, load_config
from src.utils.logger import configure_logging, get_logger

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "assistant-router" / "config.yaml"
DEFAULT_CATALOG_PATH = Path.home() / ".config" / "assistant-router" / "catalog.yaml"


class RouterSettings(BaseSettings):
    """Process settings for the assistant router."""

    host: str = "127.0.0.1"
    port: int = 6969
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    debug: bool = False  # Expose exception details in error responses (env: ASSISTANT_ROUTER_DEBUG)
    config: Optional[str] = None
    catalog: Optional[str] = None
    api_key: Optional[str] = None  # API key for authentication (env: ASSISTANT_ROUTER_API_KEY)
    audit_log_dir: Optional[str] = None  # Enables auditing into this directory, over audit.log_dir
    log_file: Optional[str] = None  # Rotating plain-text log in addition to stderr

    model_config = SettingsConfigDict(env_prefix="ASSISTANT_ROUTER_")


class ChatRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=128)
    message: str = Field(min_length=1)


def sse_event(data: Any) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return f"data: {payload}\n\n"


def sse_chunk(content: str) -> str:
    return sse_event({"choices": [{"delta": {"content": content}}]})


class TurnStream:
    """Answer chunks of one turn; closing it always frees the session.

    Closing works whether or not iteration ever started, so a client that
    goes away before the first chunk cannot leave the session busy.
    """

    def __init__(self, chunks: AsyncGenerator[str, None], release: Callable[[], None]):
        self._chunks = chunks
        self._release = release

    def __aiter__(self) -> "TurnStream":
        return self

    async def __anext__(self) -> str:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        try:
            await self._chunks.aclose()
        finally:
            self._release()


class TurnStreamingResponse(StreamingResponse):
    """SSE response that closes its turn however the ASGI send ends."""

    def __init__(self, turn: TurnStream, content: AsyncIterator[str], **kwargs: Any):
        super().__init__(content, **kwargs)
        self.turn = turn

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.turn.aclose()


class AssistantRouter:
    def __init__(
        self,
        router_config: Optional[RouterConfig] = None,
        catalog_store: Optional[InMemoryCatalogStore] = None,
        **settings: Any,
    ):
        self.settings = RouterSettings(**settings)
        configure_logging(level=self.settings.log_level, log_file=self.settings.log_file)
        self.logger = get_logger("AssistantRouter")

        self.config_path = Path(self.settings.config) if self.settings.config else DEFAULT_CONFIG_PATH
        self.config = router_config or load_config(self.config_path)
        self.validate()
        catalog_path = self.settings.catalog or self.config.catalog_path
        self.catalog_path = Path(catalog_path) if catalog_path else DEFAULT_CATALOG_PATH
        self.catalog = catalog_store if catalog_store is not None else load_catalog(self.catalog_path)

        self.embedding_client = EmbeddingClient(self.config.embedding)
        self.reranking_client = RerankingClient(self.config.reranking)
        self.generation_client = GenerationClient(self.config.generation)
        audit_config = self.config.audit
        if self.settings.audit_log_dir:
            audit_config = audit_config.model_copy(
                update={"enabled": True, "log_dir": self.settings.audit_log_dir}
            )
        self.audit = DispatchAuditLogger(config=audit_config) if audit_config.enabled else None

        knobs = self.config.pipeline
        self.sessions = SessionStore(
            prompts.SYSTEM_PREAMBLE,
            knobs.context_token_budget,
            length_cost(knobs.chars_per_token),
        )
        self.pipeline = AssistantPipeline(
            retriever=EmbeddingRetriever(self.embedding_client, self.catalog, knobs.distance_cutoff),
            gate=RerankGate(self.reranking_client, knobs.rerank_threshold),
            synthesizer=RequestSynthesizer(
                self.generation_client, JsonSchemaValidator(), knobs.synthesis_attempts
            ),
            dispatcher=Dispatcher(self.config.dispatch, audit=self.audit),
            summarizer=Summarizer(self.generation_client),
            config=PipelineConfig(
                top_k=knobs.top_k,
                distance_cutoff=knobs.distance_cutoff,
                rerank_threshold=knobs.rerank_threshold,
                synthesis_attempts=knobs.synthesis_attempts,
                max_response_chars=knobs.max_response_chars,
            ),
            events=LoguruPipelineLogger(),
        )

    @property
    def auth_enabled(self) -> bool:
        """Check if API key authentication is enabled."""
        return self.settings.api_key is not None and len(self.settings.api_key) > 0

    def validate(self) -> None:
        """Reject configurations that could never serve a request."""
        knobs = self.config.pipeline
        if knobs.top_k < 1:
            raise ConfigurationError("pipeline.top_k must be at least 1")
        if knobs.synthesis_attempts < 1:
            raise ConfigurationError("pipeline.synthesis_attempts must be at least 1")
        if self.config.embedding.dimension < 1:
            raise ConfigurationError("embedding.dimension must be positive")
        preamble_cost = length_cost(knobs.chars_per_token)(
            Message(role="system", content=prompts.SYSTEM_PREAMBLE)
        )
        if preamble_cost > knobs.context_token_budget:
            raise ConfigurationError(
                f"pipeline.context_token_budget {knobs.context_token_budget} is smaller than "
                f"the system preamble cost {preamble_cost}"
            )

    async def initialize(self) -> None:
        """Embed any catalog entries loaded without vectors."""
        missing = self.catalog.missing_embeddings()
        if not missing:
            return
        self.logger.info(f"🧮 Embedding {len(missing)} catalog descriptor(s) without vectors...")
        for descriptor in missing:
            try:
                vector = await self.embedding_client.embed(descriptor.description)
            except EmbeddingUnavailable as e:
                self.logger.error(f"❌ Could not embed {descriptor.label}: {e}")
                continue
            self.catalog.upsert(descriptor.model_copy(update={"embedding": vector}))

    async def chat(self, session_id: str, message: str) -> TurnStream:
        """Run one turn for a session and yield the answer chunks.

        Raises SessionBusy before yielding anything if a turn is already running.
        The session is released when the stream is exhausted or closed.
        """
        session = self.sessions.begin_turn(session_id)
        released = False

        def release() -> None:
            nonlocal released
            if not released:
                released = True
                self.sessions.end_turn(session_id)

        return TurnStream(self._run_turn(session_id, message, session, release), release)

    async def _run_turn(
        self, session_id: str, message: str, session, release: Callable[[], None]
    ) -> AsyncGenerator[str, None]:
        try:
            turn = await self.pipeline.run_turn(
                session.context, message, token=session.token, session_id=session_id
            )
            async for chunk in turn.stream():
                yield chunk
        finally:
            release()

    async def aclose(self) -> None:
        await self.embedding_client.aclose()
        await self.reranking_client.aclose()
        await self.generation_client.aclose()
        await self.pipeline.dispatcher.aclose()
        if self.audit is not None:
            self.audit.close()

    def _check_auth(self, request: Request) -> Optional[JSONResponse]:
        """
        Check if request is authenticated.

        Accepts Authorization: Bearer <token> header.
        Returns None if authenticated, JSONResponse with 401 if not.
        """
        if not self.auth_enabled:
            return None

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return JSONResponse(
                {"error": "Unauthorized: Missing Authorization header"}, status_code=401
            )
        if not auth_header.startswith("Bearer "):
            return JSONResponse(
                {"error": "Unauthorized: Invalid Authorization format (expected 'Bearer <token>')"},
                status_code=401,
            )
        token = auth_header[7:]
        if hmac.compare_digest(token, self.settings.api_key):
            return None
        return JSONResponse({"error": "Unauthorized: Invalid API key"}, status_code=401)

    async def _auth_wrapper(self, handler, request: Request):
        """Wrapper to apply authentication check to endpoint handlers."""
        auth_error = self._check_auth(request)
        if auth_error:
            return auth_error
        return await handler(request)

    def create_starlette_app(self) -> Starlette:
        """Create Starlette app with routes and optional auth."""

        async def auth_chat(request):
            return await self._auth_wrapper(self.handle_chat, request)

        async def auth_session(request):
            return await self._auth_wrapper(self.handle_session, request)

        async def auth_cancel(request):
            return await self._auth_wrapper(self.handle_cancel, request)

        async def auth_health(request):
            return await self._auth_wrapper(self.handle_health, request)

        return Starlette(
            debug=self.settings.debug,
            routes=[
                Route("/chat", endpoint=auth_chat, methods=["POST"]),
                Route("/sessions/{session_id}", endpoint=auth_session, methods=["GET", "DELETE"]),
                Route("/sessions/{session_id}/cancel", endpoint=auth_cancel, methods=["POST"]),
                Route("/health", endpoint=auth_health, methods=["GET"]),
            ],
        )

    async def handle_chat(self, request: Request):
        """Stream one turn's answer as OpenAI-style SSE delta chunks ending in [DONE]."""
        try:
            payload = ChatRequest.model_validate(await request.json())
        except (ValidationError, ValueError) as e:
            return JSONResponse(
                {"error": "Invalid chat request", "detail": str(e) if self.settings.debug else None},
                status_code=400,
            )

        try:
            chunks = await self.chat(payload.session_id, payload.message)
        except SessionBusy as e:
            return JSONResponse({"error": str(e)}, status_code=409)

        async def event_stream() -> AsyncIterator[str]:
            try:
                async for chunk in chunks:
                    yield sse_chunk(chunk)
            finally:
                await chunks.aclose()
            yield sse_event("[DONE]")

        return TurnStreamingResponse(chunks, event_stream(), media_type="text/event-stream")

    async def handle_session(self, request: Request) -> JSONResponse:
        """GET returns the context snapshot; DELETE drops the session."""
        session_id = request.path_params["session_id"]
        session = self.sessions.get(session_id)
        if session is None:
            return JSONResponse({"error": f"Unknown session: {session_id}"}, status_code=404)

        if request.method == "DELETE":
            if session.busy:
                return JSONResponse(
                    {"error": f"Session '{session_id}' has a turn in flight"}, status_code=409
                )
            self.sessions.cleanup_session(session_id)
            return JSONResponse({"message": f"Deleted session '{session_id}'"})

        return JSONResponse(
            {
                "session_id": session_id,
                "busy": session.busy,
                "token_cost": session.context.total_cost(),
                "token_budget": session.context.budget,
                "messages": [
                    {
                        "role": m.role,
                        "content": m.content,
                        "timestamp": m.timestamp.isoformat(),
                    }
                    for m in session.context.snapshot()
                ],
            }
        )

    async def handle_cancel(self, request: Request) -> JSONResponse:
        session_id = request.path_params["session_id"]
        if self.sessions.cancel(session_id):
            return JSONResponse({"message": f"Cancelling turn for '{session_id}'"})
        return JSONResponse({"error": f"No turn in flight for '{session_id}'"}, status_code=404)

    async def handle_health(self, request: Request) -> JSONResponse:
        """Return health status with catalog size and session count."""
        return JSONResponse(
            {
                "status": "healthy",
                "catalog_size": len(self.catalog),
                "sessions": len(self.sessions),
            }
        )

    async def run(self) -> None:
        """Entry point: prepare the catalog, then serve HTTP until signalled."""
        self.logger.info(f"🚀 Starting assistant router on {self.settings.host}:{self.settings.port}")
        await self.initialize()

        config = uvicorn.Config(
            self.create_starlette_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)

        loop = asyncio.get_running_loop()

        def _signal_handler(sig: int) -> None:
            sig_name = signal.Signals(sig).name
            self.logger.info(f"🛑 Received {sig_name}, initiating graceful shutdown...")
            server.should_exit = True

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler, sig)

        try:
            await server.serve()
        finally:
            await self.aclose()
            self.logger.info("✅ Shutdown complete")
