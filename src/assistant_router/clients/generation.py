"""Chat completion API client, plain and streamed."""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Sequence

from src.assistant_router.errors import GenerationUnavailable

from .http import ApiClient

ChatMessages = Sequence[dict[str, str]]


class GenerationClient(ApiClient):
    error_cls = GenerationUnavailable

    async def complete(
        self,
        messages: ChatMessages,
        response_format: Optional[dict[str, Any]] = None,
    ) -> str:
        """Return the assistant reply text.

        ``response_format`` is passed through verbatim, e.g. a json_schema
        constraint; enforcing it is up to the serving backend.
        """
        payload: dict[str, Any] = {"messages": list(messages)}
        if response_format is not None:
            payload["response_format"] = response_format

        data = await self.post_json("/chat/completions", payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationUnavailable(
                f"unexpected response shape: {e!r}", self._url("/chat/completions")
            ) from e
        if content is None:
            raise GenerationUnavailable("empty completion", self._url("/chat/completions"))
        return content

    async def stream(self, messages: ChatMessages) -> AsyncIterator[str]:
        """Yield content deltas as they arrive. Usage-only events are skipped."""
        payload = {
            "messages": list(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        async for event in self.stream_events("/chat/completions", payload):
            choices = event.get("choices") or []
            if not choices:
                continue
            delta = choices[0].get("delta") or {}
            content = delta.get("content")
            if content:
                yield content
