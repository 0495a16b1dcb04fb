"""AssistantPipeline: single entry point for one user turn."""

from __future__ import annotations

import time
from typing import AsyncIterator, Optional

from src.assistant_router import prompts
from src.assistant_router.errors import ClientUnavailable, SynthesisFailed
from src.utils.logger import get_logger

from .context import ConversationContext
from .dispatcher import Dispatcher
from .gate import RerankGate
from .logging import NullLogger, PipelineLogger
from .models import (
    DispatchPlan,
    DispatchResult,
    GateDecision,
    Message,
    PipelineConfig,
    PipelineState,
)
from .retriever import ToolRetriever
from .summarizer import CancellationToken, Summarizer, SummaryStream
from .synthesizer import RequestSynthesizer


def describe_result(result: DispatchResult, max_chars: int) -> str:
    """Render a dispatch outcome as the user-role message folded into context."""
    if result.status_code is not None:
        status_line = f"Status: {result.status_code} {result.reason}".rstrip()
        if result.error is not None:
            status_line += f" ({result.error.value})"
    else:
        status_line = f"Request failed ({result.error.value}): {result.reason}"

    body = result.body
    if len(body) > max_chars:
        body = body[:max_chars] + f"\n… [truncated {len(result.body) - max_chars} characters]"
    return prompts.dispatch_report(status_line, body)


class Turn:
    """State and output of one pipeline run.

    Stages up to dispatch run inside ``AssistantPipeline.run_turn``; the
    answer itself is produced lazily by iterating ``stream()``.
    """

    def __init__(self, session_id: str, query: str, events: PipelineLogger) -> None:
        self.session_id = session_id
        self.query = query
        self.state = PipelineState.IDLE
        self.transitions: list[PipelineState] = [PipelineState.IDLE]
        self.error_kind: Optional[str] = None
        self.error: Optional[Exception] = None
        self.decision: Optional[GateDecision] = None
        self.plan: Optional[DispatchPlan] = None
        self.result: Optional[DispatchResult] = None
        self.reply: Optional[str] = None
        self.summary: Optional[SummaryStream] = None
        self._events = events
        self._started = time.monotonic()
        self._finished = False
        self._consumed = False
        self.logger = get_logger("Turn")

    def transition(self, state: PipelineState) -> None:
        self.logger.debug(f"[{self.session_id}] {self.state.value} → {state.value}")
        self.state = state
        self.transitions.append(state)

    async def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        await self._events.log_turn_outcome(
            self.session_id,
            self.state,
            self.error_kind,
            (time.monotonic() - self._started) * 1000,
        )

    async def stream(self) -> AsyncIterator[str]:
        """Yield the answer text. Single pass."""
        if self._consumed:
            raise RuntimeError("Turn output has already been consumed")
        self._consumed = True

        if self.summary is None:
            if self.reply:
                yield self.reply
            await self.finish()
            return

        emitted = False
        try:
            async for chunk in self.summary:
                emitted = True
                yield chunk
        except ClientUnavailable as e:
            self.logger.error(f"❌ [{self.session_id}] summary stream failed: {e}")
            self.error, self.error_kind = e, e.kind
            self.transition(PipelineState.FAILED)
            yield ("\n\n" if emitted else "") + prompts.FAILURE_REPLY
        finally:
            if self.state == PipelineState.SUMMARIZING:
                if self.summary.completed:
                    self.transition(PipelineState.DONE)
                else:
                    # Token fired or the consumer walked away mid-stream
                    self.transition(PipelineState.CANCELLED)
                    await self.summary.aclose()
            await self.finish()

    async def text(self) -> str:
        return "".join([chunk async for chunk in self.stream()])


class AssistantPipeline:
    """Retriever → Reranker & Gate → Synthesizer → Dispatcher → Summarizer.

    Rejection (nothing close enough, or below threshold) is a designed outcome
    answered with a fixed reply. Client failures before dispatch end the turn
    as FAILED. Dispatch failures are folded into the context and summarized
    like any other response.
    """

    def __init__(
        self,
        retriever: ToolRetriever,
        gate: RerankGate,
        synthesizer: RequestSynthesizer,
        dispatcher: Dispatcher,
        summarizer: Summarizer,
        config: PipelineConfig,
        events: Optional[PipelineLogger] = None,
    ) -> None:
        self.retriever = retriever
        self.gate = gate
        self.synthesizer = synthesizer
        self.dispatcher = dispatcher
        self.summarizer = summarizer
        self.config = config
        self.events = events or NullLogger()
        self.logger = get_logger("AssistantPipeline")

    async def _reject(self, turn: Turn, context: ConversationContext) -> Turn:
        turn.transition(PipelineState.REJECTED)
        turn.reply = prompts.NO_CAPABILITY_REPLY
        context.append(Message(role="assistant", content=turn.reply))
        await turn.finish()
        return turn

    async def _fail(self, turn: Turn, state: PipelineState, error: Exception, reply: str) -> Turn:
        turn.error = error
        turn.error_kind = getattr(error, "kind", type(error).__name__)
        turn.reply = reply
        turn.transition(state)
        await turn.finish()
        return turn

    async def run_turn(
        self,
        context: ConversationContext,
        query: str,
        token: Optional[CancellationToken] = None,
        session_id: str = "default",
    ) -> Turn:
        """Run every stage up to summarization and return the turn.

        The user query is committed first, so it survives any later failure.
        """
        turn = Turn(session_id, query, self.events)
        context.append(Message(role="user", content=query))

        try:
            turn.transition(PipelineState.RETRIEVING)
            started = time.monotonic()
            candidates = await self.retriever.retrieve(query, self.config.top_k)
            await self.events.log_retrieval(
                session_id, query, candidates, (time.monotonic() - started) * 1000
            )
            if not candidates:
                self.logger.info(f"🚫 [{session_id}] no catalog entry close enough to the query")
                return await self._reject(turn, context)

            turn.transition(PipelineState.GATING)
            turn.decision = await self.gate.rerank_and_gate(query, candidates)
            await self.events.log_gate_decision(session_id, turn.decision)
            if turn.decision.accepted is None:
                return await self._reject(turn, context)

            turn.transition(PipelineState.SYNTHESIZING)
            turn.plan = await self.synthesizer.synthesize(context, turn.decision.accepted.descriptor)
        except SynthesisFailed as e:
            self.logger.error(f"❌ [{session_id}] {e}")
            return await self._fail(turn, PipelineState.SYNTHESIS_FAILED, e, prompts.SYNTHESIS_FAILED_REPLY)
        except ClientUnavailable as e:
            self.logger.error(f"❌ [{session_id}] {turn.state.value} failed: {e}")
            return await self._fail(turn, PipelineState.FAILED, e, prompts.FAILURE_REPLY)

        turn.transition(PipelineState.DISPATCHING)
        turn.result = await self.dispatcher.dispatch(turn.plan)

        turn.transition(PipelineState.CONTEXT_UPDATING)
        context.append(
            Message(role="user", content=describe_result(turn.result, self.config.max_response_chars))
        )

        turn.transition(PipelineState.SUMMARIZING)
        turn.summary = self.summarizer.summarize(context, token)
        return turn
