"""Build ToolDescriptors from an OpenAPI 3 document.

Query parameters become the descriptor's params schema and the JSON request
body becomes its body schema. Local ``#/components/...`` references are
inlined so each descriptor is self-contained for validation.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Optional

import yaml

from src.utils.logger import get_logger

from .models import HTTP_METHODS, ToolDescriptor

logger = get_logger("OpenApiImport")

_MAX_REF_DEPTH = 16


def _resolve_pointer(document: dict, ref: str) -> Any:
    if not ref.startswith("#/"):
        raise ValueError(f"Only local references are supported: {ref}")
    node: Any = document
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        node = node[part]
    return node


def _inline_refs(schema: Any, document: dict, depth: int = 0) -> Any:
    """Recursively replace {"$ref": ...} nodes with the referenced schema."""
    if depth > _MAX_REF_DEPTH:
        raise ValueError("Reference nesting too deep (recursive schema?)")
    if isinstance(schema, dict):
        if "$ref" in schema:
            target = copy.deepcopy(_resolve_pointer(document, schema["$ref"]))
            return _inline_refs(target, document, depth + 1)
        return {k: _inline_refs(v, document, depth) for k, v in schema.items()}
    if isinstance(schema, list):
        return [_inline_refs(v, document, depth) for v in schema]
    return schema


def _params_schema(parameters: list[dict], document: dict) -> Optional[dict[str, Any]]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in parameters:
        param = _inline_refs(param, document)
        if param.get("in") != "query":
            continue
        prop = dict(param.get("schema") or {"type": "string"})
        if param.get("description"):
            prop.setdefault("description", param["description"])
        properties[param["name"]] = prop
        if param.get("required"):
            required.append(param["name"])
    if not properties:
        return None
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def _body_schema(request_body: Optional[dict], document: dict) -> Optional[dict[str, Any]]:
    if not request_body:
        return None
    request_body = _inline_refs(request_body, document)
    content = request_body.get("content", {})
    media = content.get("application/json")
    if not media or "schema" not in media:
        return None
    return media["schema"]


def descriptors_from_openapi(document: dict[str, Any]) -> list[ToolDescriptor]:
    """Extract one descriptor per (path, method) operation.

    Operations without any description or summary are skipped, as are
    templated paths (``/todos/{id}``) since the request path is pinned verbatim.
    """
    descriptors: list[ToolDescriptor] = []
    for path, item in (document.get("paths") or {}).items():
        shared_params = item.get("parameters", [])
        for method, operation in item.items():
            if method.upper() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            description = (operation.get("description") or operation.get("summary") or "").strip()
            if "{" in path:
                logger.warning(f"⚠️ Skipping {method.upper()} {path}: templated paths are not dispatchable")
                continue
            if not description:
                logger.warning(f"⚠️ Skipping {method.upper()} {path}: no description")
                continue
            try:
                params = _params_schema(shared_params + operation.get("parameters", []), document)
                body = _body_schema(operation.get("requestBody"), document)
            except (KeyError, ValueError) as e:
                logger.error(f"❌ Skipping {method.upper()} {path}: {e}")
                continue
            descriptors.append(
                ToolDescriptor(
                    path=path,
                    method=method,
                    description=description,
                    params=params,
                    body=body,
                )
            )
    return descriptors


def load_openapi_document(path: Path) -> dict[str, Any]:
    """Read an OpenAPI document in JSON or YAML form."""
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text) or {}
