"""Catalog data models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

HTTP_METHODS = ("DELETE", "GET", "PATCH", "POST", "PUT")


class ToolDescriptor(BaseModel):
    """Metadata plus JSON Schemas describing one callable endpoint.

    Identity is the (path, method) pair. Descriptors are read-only to the
    pipeline; only the registration path (catalog loading/import) creates them.
    """

    path: str
    method: str
    description: str
    params_schema: Optional[dict[str, Any]] = Field(default=None, alias="params")
    body_schema: Optional[dict[str, Any]] = Field(default=None, alias="body")
    embedding: Optional[list[float]] = None

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method '{value}'")
        return method

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"Endpoint path must begin with '/': {value!r}")
        return value

    @property
    def key(self) -> tuple[str, str]:
        return (self.path, self.method)

    @property
    def label(self) -> str:
        return f"{self.method} {self.path}"

    def without_embedding(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"embedding"}, exclude_none=True)


class RetrievalCandidate(BaseModel):
    """A descriptor paired with its cosine distance to the query embedding."""

    descriptor: ToolDescriptor
    distance: float

    model_config = {"frozen": True}
