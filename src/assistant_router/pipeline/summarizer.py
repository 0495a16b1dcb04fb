"""Streams the final answer and commits it only on clean completion."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Protocol, Sequence

from src.assistant_router import prompts
from src.utils.logger import get_logger

from .context import ConversationContext
from .models import Message


class StreamingGenerator(Protocol):
    def stream(self, messages: Sequence[dict[str, str]]) -> AsyncIterator[str]: ...


class CancellationToken:
    """Explicit, user-initiated cancellation signal for one streamed answer."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    pass


_END = object()


async def _pump(chunks: AsyncIterator[str], channel: asyncio.Queue) -> None:
    """Producer: move upstream chunks into the channel, then an end marker."""
    try:
        async for chunk in chunks:
            await channel.put(chunk)
    except Exception as e:
        await channel.put(e)
        return
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
    await channel.put(_END)


async def _receive(channel: asyncio.Queue, token: CancellationToken) -> object:
    """Await the next channel item, giving up as soon as the token fires."""
    if token.cancelled:
        raise _Cancelled()
    get_task = asyncio.create_task(channel.get())
    cancel_task = asyncio.create_task(token.wait())
    try:
        done, _ = await asyncio.wait({get_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()
    if get_task in done:
        return get_task.result()
    get_task.cancel()
    raise _Cancelled()


class SummaryStream:
    """Single-pass async iterator of answer chunks.

    Each chunk is forwarded as it arrives and accumulated. Only when the
    upstream stream ends cleanly is the full text appended to the context as
    one assistant message. Cancellation, consumer abandonment (``aclose``) or
    an upstream error leave the context exactly as it was.
    """

    def __init__(
        self,
        context: ConversationContext,
        chunks: AsyncIterator[str],
        token: CancellationToken,
    ) -> None:
        self.context = context
        self.token = token
        self.completed = False
        self.cancelled = False
        self.text = ""
        self.logger = get_logger("Summarizer")
        self._chunks = chunks
        self._gen = self._run()

    def __aiter__(self) -> "SummaryStream":
        return self

    async def __anext__(self) -> str:
        return await self._gen.__anext__()

    async def aclose(self) -> None:
        await self._gen.aclose()

    async def _run(self) -> AsyncIterator[str]:
        accumulated: list[str] = []
        channel: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(_pump(self._chunks, channel))
        try:
            while True:
                try:
                    item = await _receive(channel, self.token)
                except _Cancelled:
                    self.cancelled = True
                    self.logger.info(
                        f"🛑 Summary cancelled after {len(accumulated)} chunk(s); nothing committed"
                    )
                    return
                if item is _END:
                    break
                if isinstance(item, Exception):
                    raise item
                accumulated.append(item)
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass

        self.text = "".join(accumulated)
        self.context.append(Message(role="assistant", content=self.text))
        self.completed = True
        self.logger.debug(f"Committed summary ({len(self.text)} chars)")


class Summarizer:
    def __init__(self, generator: StreamingGenerator) -> None:
        self.generator = generator

    def _messages(self, context: ConversationContext) -> list[dict[str, str]]:
        snapshot = context.snapshot()
        system = f"{snapshot[0].content}\n\n{prompts.SUMMARY_INSTRUCTION}"
        return [{"role": "system", "content": system}, *(m.to_chat() for m in snapshot[1:])]

    def summarize(
        self,
        context: ConversationContext,
        token: Optional[CancellationToken] = None,
    ) -> SummaryStream:
        """Start streaming an answer from the full updated context."""
        chunks = self.generator.stream(self._messages(context))
        return SummaryStream(context, chunks, token or CancellationToken())
