"""Shared HTTP plumbing for the external model APIs."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

import httpx

from src.assistant_router.errors import ClientUnavailable
from src.assistant_router.yaml_config import ApiConfig
from src.utils.logger import get_logger

_SSE_PREFIX = "data:"
SSE_DONE = "[DONE]"


class ApiClient:
    """POSTs JSON to an OpenAI-compatible service described by an ApiConfig.

    Every transport failure, timeout, non-2xx status or undecodable body is
    raised as ``error_cls`` so callers only handle one error type per client.
    """

    error_cls: type[ClientUnavailable] = ClientUnavailable

    def __init__(
        self,
        config: ApiConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.logger = get_logger(type(self).__name__)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            headers=config.headers,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{endpoint}"

    def _payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        # Configured defaults (model name, sampling params) override the request
        return {**payload, **self.config.json_defaults}

    async def post_json(self, endpoint: str, payload: dict[str, Any]) -> Any:
        url = self._url(endpoint)
        try:
            response = await self._client.post(
                url,
                params=self.config.params,
                json=self._payload(payload),
                headers=self.config.headers,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise self.error_cls(f"timed out after {self.config.timeout_seconds}s", url) from e
        except httpx.HTTPStatusError as e:
            raise self.error_cls(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}", url
            ) from e
        except httpx.HTTPError as e:
            raise self.error_cls(f"{type(e).__name__}: {e}", url) from e
        except ValueError as e:
            raise self.error_cls(f"response is not valid JSON: {e}", url) from e

    async def stream_events(self, endpoint: str, payload: dict[str, Any]) -> AsyncIterator[Any]:
        """Yield decoded JSON objects from a server-sent event stream until [DONE]."""
        url = self._url(endpoint)
        try:
            async with self._client.stream(
                "POST",
                url,
                params=self.config.params,
                json=self._payload(payload),
                headers=self.config.headers,
                timeout=self.config.timeout_seconds,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode(errors="replace")
                    raise self.error_cls(f"HTTP {response.status_code}: {body[:200]}", url)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith(_SSE_PREFIX):
                        continue
                    data = line[len(_SSE_PREFIX):].strip()
                    if data == SSE_DONE:
                        return
                    yield json.loads(data)
        except httpx.TimeoutException as e:
            raise self.error_cls(f"stream timed out after {self.config.timeout_seconds}s", url) from e
        except httpx.HTTPError as e:
            raise self.error_cls(f"{type(e).__name__}: {e}", url) from e
        except ValueError as e:
            raise self.error_cls(f"malformed stream event: {e}", url) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
