"""Schema-constrained synthesis of a request for the accepted descriptor."""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Protocol, Sequence

from src.assistant_router import prompts
from src.assistant_router.catalog.models import ToolDescriptor
from src.assistant_router.errors import GenerationUnavailable, SynthesisFailed
from src.utils.logger import get_logger

from .context import ConversationContext
from .models import DispatchPlan, Message
from .validation import SchemaValidator, response_format

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


_QUERY_SCALARS = (str, int, float, bool)


def _optional_object(schema: Optional[dict[str, Any]]) -> bool:
    """True when ``{}`` satisfies the schema: an object with no required keys."""
    return schema is not None and schema.get("type") == "object" and not schema.get("required")


def _query_value_errors(params: Any) -> list[str]:
    # Query strings carry scalars or repeated scalar keys, nothing nested
    if not isinstance(params, dict):
        return []
    errors = []
    for key, value in params.items():
        items = value if isinstance(value, list) else [value]
        if not all(isinstance(v, _QUERY_SCALARS) for v in items):
            errors.append(f"params: {key}: query values must be scalars or lists of scalars")
    return errors


class Completer(Protocol):
    async def complete(
        self,
        messages: Sequence[dict[str, str]],
        response_format: Optional[dict[str, Any]] = None,
    ) -> str: ...


def extract_json(text: str) -> Any:
    """Decode the first JSON object in a model reply.

    Tolerates code fences and chatter around the object. Raises ValueError
    when no object can be decoded.
    """
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    start = text.find("{")
    if start < 0:
        raise ValueError("no JSON object found in reply")
    obj, _ = json.JSONDecoder().raw_decode(text[start:])
    return obj


class RequestSynthesizer:
    """Asks the generation client for a request payload and validates it.

    Invalid output is retried up to ``max_attempts`` times, each retry carrying
    the previous violations as a hint. Failed attempts never touch the
    context; only a validated plan is committed, as an assistant message.
    """

    def __init__(
        self,
        generator: Completer,
        validator: SchemaValidator,
        max_attempts: int = 3,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.validator = validator
        self.max_attempts = max_attempts
        self.logger = get_logger("RequestSynthesizer")

    def _messages(
        self,
        context: ConversationContext,
        descriptor: ToolDescriptor,
        hint: Optional[list[str]],
    ) -> list[dict[str, str]]:
        snapshot = context.snapshot()
        system = f"{snapshot[0].content}\n\n{prompts.synthesis_instruction(descriptor)}"
        messages = [{"role": "system", "content": system}]
        messages.extend(m.to_chat() for m in snapshot[1:])
        if hint:
            messages.append({"role": "user", "content": prompts.synthesis_retry_hint(hint)})
        return messages

    def _check(self, payload: Any, descriptor: ToolDescriptor) -> tuple[Optional[DispatchPlan], list[str]]:
        if not isinstance(payload, dict):
            return None, ["reply must be a JSON object"]

        errors: list[str] = []
        if payload.get("path") != descriptor.path:
            errors.append(f"path must be {descriptor.path!r}")
        if str(payload.get("method", "")).upper() != descriptor.method:
            errors.append(f"method must be {descriptor.method!r}")
        extra = set(payload) - {"path", "method", "params", "body"}
        if extra:
            errors.append(f"unexpected keys: {sorted(extra)}")

        params = payload.get("params")
        body = payload.get("body")
        # Models mix up {} and null for "nothing to send"
        if descriptor.params_schema is None and params == {}:
            params = None
        elif params is None and _optional_object(descriptor.params_schema):
            params = {}
        if descriptor.body_schema is None and body == {}:
            body = None
        elif body is None and _optional_object(descriptor.body_schema):
            body = {}

        errors.extend(f"params: {e}" for e in self.validator.validate(params, descriptor.params_schema))
        errors.extend(_query_value_errors(params))
        errors.extend(f"body: {e}" for e in self.validator.validate(body, descriptor.body_schema))
        if errors:
            return None, errors
        return DispatchPlan(descriptor=descriptor, params=params, body=body), []

    async def synthesize(self, context: ConversationContext, descriptor: ToolDescriptor) -> DispatchPlan:
        """Return a validated plan and commit it to the context.

        Raises SynthesisFailed when no attempt validates, or GenerationUnavailable
        when every attempt failed at the transport level.
        """
        constraint = response_format(descriptor)
        hint: Optional[list[str]] = None
        violations: list[str] = []
        client_error: Optional[GenerationUnavailable] = None
        produced_output = False

        for attempt in range(1, self.max_attempts + 1):
            try:
                reply = await self.generator.complete(
                    self._messages(context, descriptor, hint), response_format=constraint
                )
            except GenerationUnavailable as e:
                self.logger.warning(f"⚠️ Synthesis attempt {attempt} failed: {e}")
                client_error = e
                continue

            produced_output = True
            try:
                payload = extract_json(reply)
            except ValueError as e:
                hint = [f"reply is not valid JSON: {e}"]
            else:
                plan, hint = self._check(payload, descriptor)
                if plan is not None:
                    context.append(Message(role="assistant", content=plan.to_message_content()))
                    self.logger.info(f"🛠️ Synthesized {descriptor.label} on attempt {attempt}")
                    return plan

            violations.extend(hint)
            self.logger.warning(
                f"⚠️ Synthesis attempt {attempt}/{self.max_attempts} for {descriptor.label} "
                f"invalid: {'; '.join(hint)}"
            )

        if not produced_output and client_error is not None:
            raise client_error
        raise SynthesisFailed(descriptor.label, self.max_attempts, violations)
