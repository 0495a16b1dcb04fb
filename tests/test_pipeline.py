"""End-to-end tests for AssistantPipeline turns over fake model services."""
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.assistant_router import prompts
from src.assistant_router.catalog import InMemoryCatalogStore
from src.assistant_router.errors import EmbeddingUnavailable, GenerationUnavailable, RerankUnavailable
from src.assistant_router.pipeline import (
    CancellationToken,
    ConversationContext,
    DispatchErrorKind,
    DispatchResult,
    PipelineConfig,
    PipelineState,
)
from src.assistant_router.pipeline.pipeline import describe_result
from tests.utils import (
    FakeEmbedder,
    FakeGenerator,
    FakeScorer,
    RecordingTarget,
    build_pipeline,
    request_json,
    todo_catalog,
)

MILK = "remind me to buy milk"
WEATHER = "what's the weather"
ADD_TODO = "Add an item to the user's todo list"


def new_context() -> ConversationContext:
    return ConversationContext(prompts.SYSTEM_PREAMBLE, budget=8000)


def created(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(201, json={"id": 7, **body})


class TestMilkScenario:
    @pytest.mark.asyncio
    async def test_successful_turn_dispatches_and_summarizes(self):
        embedder = FakeEmbedder({MILK: [1.0, 0.0, 0.0]})
        scorer = FakeScorer({ADD_TODO: 0.92})
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "buy milk"})],
            chunks=["I've added ", "buy milk", " to your todo list."],
        )
        target = RecordingTarget(created)
        events = AsyncMock()
        pipeline = build_pipeline(todo_catalog(), embedder, scorer, generator, target, events=events)
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK, session_id="s1")
        answer = await turn.text()

        assert answer == "I've added buy milk to your todo list."
        assert len(target.requests) == 1
        assert target.requests[0].method == "POST"
        assert target.requests[0].url.path == "/todos"
        assert json.loads(target.requests[0].content) == {"item": "buy milk"}
        assert turn.result.status_code == 201

        # query, synthesized request, dispatch report, summary
        messages = ctx.snapshot()
        assert len(messages) == 5
        assert [m.role for m in messages[1:]] == ["user", "assistant", "user", "assistant"]
        assert messages[1].content == MILK
        assert json.loads(messages[2].content)["path"] == "/todos"
        assert "Status: 201 Created" in messages[3].content
        assert messages[4].content == answer

        assert turn.state == PipelineState.DONE
        assert turn.transitions == [
            PipelineState.IDLE,
            PipelineState.RETRIEVING,
            PipelineState.GATING,
            PipelineState.SYNTHESIZING,
            PipelineState.DISPATCHING,
            PipelineState.CONTEXT_UPDATING,
            PipelineState.SUMMARIZING,
            PipelineState.DONE,
        ]
        assert len(embedder.calls) == 1
        assert len(scorer.calls) == 1
        events.log_retrieval.assert_awaited_once()
        events.log_gate_decision.assert_awaited_once()
        events.log_turn_outcome.assert_awaited_once()
        assert events.log_turn_outcome.await_args.args[1] == PipelineState.DONE

    @pytest.mark.asyncio
    async def test_turn_output_is_single_pass(self):
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "milk"})], chunks=["done"]
        )
        pipeline = build_pipeline(
            todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, RecordingTarget(created)
        )
        turn = await pipeline.run_turn(new_context(), MILK)
        await turn.text()
        with pytest.raises(RuntimeError):
            await turn.text()

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_summarized_not_raised(self):
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "milk"})],
            chunks=["Sorry, the todo service had an error."],
        )
        target = RecordingTarget(lambda r: httpx.Response(500, text="database locked"))
        pipeline = build_pipeline(todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, target)
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK)
        await turn.text()

        assert turn.state == PipelineState.DONE
        assert turn.result.error == DispatchErrorKind.SERVER_ERROR
        report = ctx.snapshot()[3].content
        assert "Status: 500 Internal Server Error (server_error)" in report
        assert "database locked" in report
        assert len(ctx) == 5


class TestRejection:
    @pytest.mark.asyncio
    async def test_low_rerank_score_answers_without_generation(self):
        embedder = FakeEmbedder({WEATHER: [0.8, 0.6, 0.0]})
        scorer = FakeScorer(default=0.05)
        generator = FakeGenerator()
        target = RecordingTarget()
        pipeline = build_pipeline(todo_catalog(), embedder, scorer, generator, target)
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, WEATHER)
        answer = await turn.text()

        assert turn.state == PipelineState.REJECTED
        assert answer == prompts.NO_CAPABILITY_REPLY
        assert len(embedder.calls) == 1
        assert len(scorer.calls) == 1
        assert generator.call_count == 0
        assert target.requests == []
        assert [(m.role, m.content) for m in ctx.snapshot()[1:]] == [
            ("user", WEATHER),
            ("assistant", prompts.NO_CAPABILITY_REPLY),
        ]

    @pytest.mark.asyncio
    async def test_empty_catalog_skips_reranking(self):
        embedder = FakeEmbedder()
        scorer = FakeScorer(default=1.0)
        generator = FakeGenerator()
        pipeline = build_pipeline(InMemoryCatalogStore(), embedder, scorer, generator, RecordingTarget())

        turn = await pipeline.run_turn(new_context(), "anything at all")

        assert await turn.text() == prompts.NO_CAPABILITY_REPLY
        assert turn.transitions == [PipelineState.IDLE, PipelineState.RETRIEVING, PipelineState.REJECTED]
        assert scorer.calls == []
        assert generator.call_count == 0

    @pytest.mark.asyncio
    async def test_nothing_within_distance_cutoff_skips_reranking(self):
        embedder = FakeEmbedder(default=[0.0, 1.0, 0.0])
        scorer = FakeScorer(default=1.0)
        pipeline = build_pipeline(todo_catalog(), embedder, scorer, FakeGenerator(), RecordingTarget())

        turn = await pipeline.run_turn(new_context(), "unrelated")

        assert turn.state == PipelineState.REJECTED
        assert scorer.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_rerank_outage_fails_turn_keeping_only_the_query(self):
        scorer = FakeScorer()
        scorer.error = RerankUnavailable("connection refused")
        target = RecordingTarget()
        pipeline = build_pipeline(todo_catalog(), FakeEmbedder(), scorer, FakeGenerator(), target)
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK)

        assert turn.state == PipelineState.FAILED
        assert turn.error_kind == "rerank_unavailable"
        assert await turn.text() == prompts.FAILURE_REPLY
        assert [m.content for m in ctx.snapshot()[1:]] == [MILK]
        assert target.requests == []

    @pytest.mark.asyncio
    async def test_embedding_outage_fails_turn(self):
        embedder = FakeEmbedder()
        embedder.error = EmbeddingUnavailable("timed out")
        pipeline = build_pipeline(todo_catalog(), embedder, FakeScorer(), FakeGenerator(), RecordingTarget())

        turn = await pipeline.run_turn(new_context(), MILK)

        assert turn.state == PipelineState.FAILED
        assert turn.error_kind == "embedding_unavailable"

    @pytest.mark.asyncio
    async def test_synthesis_failure_never_dispatches(self):
        generator = FakeGenerator(replies=["nope", "still nope", "{}"])
        target = RecordingTarget()
        pipeline = build_pipeline(todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, target)
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK)

        assert turn.state == PipelineState.SYNTHESIS_FAILED
        assert await turn.text() == prompts.SYNTHESIS_FAILED_REPLY
        assert target.requests == []
        assert len(generator.complete_calls) == 3
        assert len(ctx) == 2

    @pytest.mark.asyncio
    async def test_summary_stream_failure_ends_in_failed(self):
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "milk"})],
            chunks=["Added", GenerationUnavailable("stream dropped")],
        )
        pipeline = build_pipeline(
            todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, RecordingTarget(created)
        )
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK)
        answer = await turn.text()

        assert turn.state == PipelineState.FAILED
        assert answer.startswith("Added")
        assert answer.endswith(prompts.FAILURE_REPLY)
        # The dispatch already happened, but no summary was committed
        assert len(ctx) == 4


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_summary_leaves_context_without_summary(self):
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "milk"})],
            chunks=["Added ", "milk"],
            hang_after=1,
        )
        pipeline = build_pipeline(
            todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, RecordingTarget(created)
        )
        ctx = new_context()
        token = CancellationToken()

        turn = await pipeline.run_turn(ctx, MILK, token=token)
        received = []
        async for chunk in turn.stream():
            received.append(chunk)
            token.cancel()

        assert received == ["Added "]
        assert turn.state == PipelineState.CANCELLED
        assert len(ctx) == 4
        assert ctx.snapshot()[-1].role == "user"

    @pytest.mark.asyncio
    async def test_abandoned_stream_is_cancelled(self):
        generator = FakeGenerator(
            replies=[request_json("/todos", "POST", body={"item": "milk"})],
            chunks=["a", "b", "c"],
        )
        pipeline = build_pipeline(
            todo_catalog(), FakeEmbedder(), FakeScorer(default=0.9), generator, RecordingTarget(created)
        )
        ctx = new_context()

        turn = await pipeline.run_turn(ctx, MILK)
        stream = turn.stream()
        assert await stream.__anext__() == "a"
        await stream.aclose()

        assert turn.state == PipelineState.CANCELLED
        assert len(ctx) == 4


class TestDescribeResult:
    def test_long_bodies_are_truncated(self):
        result = DispatchResult(status_code=200, body="x" * 50, reason="OK")
        report = describe_result(result, max_chars=10)
        assert "Status: 200 OK" in report
        assert "x" * 10 in report
        assert "x" * 11 not in report
        assert "truncated 40 characters" in report

    def test_transport_failures_describe_the_error(self):
        result = DispatchResult(
            status_code=None, body="", error=DispatchErrorKind.TIMEOUT, reason="request timed out"
        )
        report = describe_result(result, max_chars=100)
        assert "Request failed (timeout): request timed out" in report



class TestBudget:
    @pytest.mark.asyncio
    async def test_repeated_turns_stay_within_budget_and_keep_preamble(self):
        ctx = ConversationContext(prompts.SYSTEM_PREAMBLE, budget=200)
        for i in range(5):
            generator = FakeGenerator(
                replies=[request_json("/todos", "POST", body={"item": f"thing {i}"})],
                chunks=[f"Added thing {i}. " * 5],
            )
            pipeline = build_pipeline(
                todo_catalog(),
                FakeEmbedder(),
                FakeScorer(default=0.9),
                generator,
                RecordingTarget(created),
                config=PipelineConfig(max_response_chars=100),
            )
            turn = await pipeline.run_turn(ctx, f"remind me about thing {i}")
            await turn.text()

            assert ctx.total_cost() <= ctx.budget
            assert ctx.snapshot()[0].content == prompts.SYSTEM_PREAMBLE
