"""Prompt texts used by the pipeline stages."""

import json
from typing import Any, Optional

from src.assistant_router.catalog.models import ToolDescriptor

SYSTEM_PREAMBLE = (
    "You are a helpful personal assistant that acts on the user's behalf by "
    "calling HTTP endpoints. Never mention that you are a language model or "
    "that you have limitations. If you don't know the answer to something, say so."
)

NO_CAPABILITY_REPLY = (
    "Sorry, I don't have a capability for that yet. "
    "Try rephrasing, or ask me about something I can manage for you."
)

FAILURE_REPLY = (
    "Sorry, something went wrong on my end while handling that. Please try again in a moment."
)

SYNTHESIS_FAILED_REPLY = (
    "Sorry, I couldn't work out how to make that request. "
    "Could you rephrase it with a bit more detail?"
)

SUMMARY_INSTRUCTION = (
    "Your job now is to concisely summarize the HTTP response in the user's "
    "latest message as an answer to their original request. If the response "
    "indicates an error, describe the error, apologize, and ask the user to try again."
)


def synthesis_instruction(descriptor: ToolDescriptor) -> str:
    """System message for request synthesis against one descriptor."""
    sections = [
        "Your job is to construct an HTTP request that fulfills the user's latest "
        "message. Respond concisely in JSON format with the keys "
        '"path", "method", "params" and "body", and nothing else.',
        f"Endpoint: {descriptor.label}",
        f"Endpoint description: {descriptor.description}",
        _schema_section("Query parameter schema", descriptor.params_schema),
        _schema_section("JSON body schema", descriptor.body_schema),
    ]
    return "\n\n".join(sections)


def _schema_section(title: str, schema: Optional[dict[str, Any]]) -> str:
    if schema is None:
        return f"{title}: none, this endpoint takes no such payload, so use null"
    return f"{title}:\n" + json.dumps(schema, indent=2)


def synthesis_retry_hint(errors: list[str]) -> str:
    return (
        "Your previous request did not match the schema:\n"
        + "\n".join(f"- {e}" for e in errors)
        + "\nRespond again with corrected JSON only."
    )


def dispatch_report(status_line: str, body: str) -> str:
    return f"Here's the response from that request:\n\n{status_line}\n\n{body}".rstrip()
