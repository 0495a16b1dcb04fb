"""Executes a validated DispatchPlan against the internal target API."""

from __future__ import annotations

import time
from dataclasses import replace
from typing import TYPE_CHECKING, Optional

import httpx

from src.assistant_router.yaml_config import DispatchConfig
from src.utils.logger import get_logger

from .models import DispatchErrorKind, DispatchPlan, DispatchResult

if TYPE_CHECKING:
    from src.assistant_router.utils.audit import DispatchAuditLogger


def classify_status(status_code: int) -> Optional[DispatchErrorKind]:
    if 200 <= status_code < 300:
        return None
    if 400 <= status_code < 500:
        return DispatchErrorKind.CLIENT_ERROR
    if status_code >= 500:
        return DispatchErrorKind.SERVER_ERROR
    return DispatchErrorKind.UNEXPECTED_STATUS


class Dispatcher:
    """Sends exactly the synthesized request and captures whatever comes back.

    Nothing here raises for downstream trouble: timeouts, connection errors
    and non-2xx statuses all become a DispatchResult with an error kind, so
    the summarizer can explain them.
    """

    def __init__(
        self,
        config: DispatchConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        audit: Optional["DispatchAuditLogger"] = None,
    ) -> None:
        self.config = config
        self.audit = audit
        self.logger = get_logger("Dispatcher")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            headers=config.headers,
            timeout=httpx.Timeout(config.timeout_seconds),
            follow_redirects=False,
        )

    async def dispatch(self, plan: DispatchPlan) -> DispatchResult:
        started = time.monotonic()
        try:
            response = await self._client.request(
                plan.method,
                plan.path,
                params=plan.params,
                json=plan.body,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            result = DispatchResult(
                status_code=None,
                body="",
                error=DispatchErrorKind.TIMEOUT,
                reason=f"request timed out after {self.config.timeout_seconds}s ({type(e).__name__})",
            )
        except httpx.HTTPError as e:
            result = DispatchResult(
                status_code=None,
                body="",
                error=DispatchErrorKind.CONNECTION,
                reason=f"{type(e).__name__}: {e}",
            )
        else:
            result = DispatchResult(
                status_code=response.status_code,
                body=response.text,
                error=classify_status(response.status_code),
                reason=response.reason_phrase,
            )
        result = replace(result, elapsed_ms=(time.monotonic() - started) * 1000)

        if result.ok:
            self.logger.info(f"📡 {plan.method} {plan.path} → {result.status_code}")
        else:
            self.logger.warning(
                f"⚠️ {plan.method} {plan.path} failed ({result.error.value}): "
                f"{result.status_code or ''} {result.reason}".rstrip()
            )
        if self.audit is not None:
            self.audit.log_dispatch(plan, result)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
