"""Schema validation capability consumed by the request synthesizer.

The synthesizer only needs "does this payload conform to that schema, and if
not, why". How the generation backend enforces the schema is irrelevant here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from jsonschema import SchemaError
from jsonschema.validators import validator_for

from src.assistant_router.catalog.models import ToolDescriptor

_NO_PAYLOAD = {"type": "null"}


class SchemaValidator(ABC):
    """Abstract interface for payload validation."""

    @abstractmethod
    def validate(self, payload: Any, schema: Optional[dict[str, Any]]) -> list[str]:
        """Return human-readable violations; empty list means valid.

        A ``None`` schema means the endpoint takes no such payload, so only
        ``None`` validates against it.
        """
        ...


class JsonSchemaValidator(SchemaValidator):
    """Validates with the jsonschema draft named by ``$schema`` (latest by default)."""

    def validate(self, payload: Any, schema: Optional[dict[str, Any]]) -> list[str]:
        if schema is None:
            return [] if payload is None else ["endpoint accepts no payload here, expected null"]

        cls = validator_for(schema)
        try:
            cls.check_schema(schema)
        except SchemaError as e:
            return [f"descriptor schema is invalid: {e.message}"]

        errors = sorted(cls(schema).iter_errors(payload), key=lambda e: list(e.absolute_path))
        return [
            f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}"
            for e in errors
        ]


def request_schema(descriptor: ToolDescriptor) -> dict[str, Any]:
    """JSON Schema of the full synthesized request for one descriptor.

    Path and method are pinned with single-value enums so the model can only
    fill in params and body.
    """
    return {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "The endpoint path beginning with a forward slash",
                "enum": [descriptor.path],
            },
            "method": {
                "type": "string",
                "description": "The HTTP method to use for the request",
                "enum": [descriptor.method],
            },
            "params": _NO_PAYLOAD if descriptor.params_schema is None else descriptor.params_schema,
            "body": _NO_PAYLOAD if descriptor.body_schema is None else descriptor.body_schema,
        },
        "additionalProperties": False,
        "required": ["path", "method", "params", "body"],
    }


def response_format(descriptor: ToolDescriptor) -> dict[str, Any]:
    """OpenAI-style structured output constraint for the descriptor."""
    return {
        "type": "json_schema",
        "json_schema": {"name": "request", "schema": request_schema(descriptor)},
    }
