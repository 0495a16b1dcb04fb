from __future__ import annotations
import sys
from pathlib import Path
from typing import Optional, TextIO
from src.assistant_router.app import DEFAULT_CATALOG_PATH, DEFAULT_CONFIG_PATH, AssistantRouter
from src.assistant_router.catalog.openapi import descriptors_from_openapi, load_openapi_document
from src.assistant_router.catalog.store import load_catalog, save_catalog
from src.assistant_router.yaml_config import load_config
from src.utils.logger import get_logger

logger = get_logger("assistant_router.cli")

_SECRET_MARKERS = ("authorization", "key", "token", "secret", "password")


def _catalog_path(config_path: Path, catalog_path: Optional[Path]) -> Path:
    if catalog_path is not None:
        return catalog_path
    configured = load_config(config_path).catalog_path
    return Path(configured) if configured else DEFAULT_CATALOG_PATH


def _mask(headers: dict[str, str]) -> dict[str, str]:
    return {
        k: ("***" if any(m in k.lower() for m in _SECRET_MARKERS) else v)
        for k, v in headers.items()
    }


def cmd_catalog(
    config_path: Path = DEFAULT_CONFIG_PATH,
    catalog_path: Optional[Path] = None,
) -> str:
    path = _catalog_path(config_path, catalog_path)
    store = load_catalog(path)
    if len(store) == 0:
        return f"Catalog is empty ({path}). Run: assistant-router import-openapi <file>"

    lines = [f"{len(store)} descriptor(s) in {path}"]
    for descriptor in store.descriptors():
        marker = "✓" if descriptor.embedding is not None else "…"
        lines.append(f"  {marker} {descriptor.method:<6} {descriptor.path}  {descriptor.description}")
    if store.missing_embeddings():
        lines.append("")
        lines.append("… = not embedded yet (filled in on next serve/ask)")
    return "\n".join(lines)


def cmd_status(
    config_path: Path = DEFAULT_CONFIG_PATH,
    catalog_path: Optional[Path] = None,
) -> str:
    config = load_config(config_path)
    source = str(config_path) if config_path.exists() else f"{config_path} (missing, using defaults)"
    knobs = config.pipeline

    lines = ["Assistant Router Status", "=" * 40, f"Config:      {source}"]
    lines.append(f"Catalog:     {_catalog_path(config_path, catalog_path)}")
    for name, api in (
        ("Embedding", config.embedding),
        ("Reranking", config.reranking),
        ("Generation", config.generation),
    ):
        lines.append(f"\n{name}")
        lines.append(f"  URL:      {api.base_url}")
        lines.append(f"  Timeout:  {api.timeout_seconds}s")
        if api.headers:
            lines.append(f"  Headers:  {_mask(api.headers)}")
        if api is config.embedding:
            lines.append(f"  Dimension: {config.embedding.dimension}")

    lines.append("\nDispatch")
    lines.append(f"  URL:      {config.dispatch.base_url}")
    lines.append(f"  Timeout:  {config.dispatch.timeout_seconds}s")

    lines.append("\nPipeline")
    lines.append(f"  top_k={knobs.top_k} distance_cutoff={knobs.distance_cutoff} "
                 f"rerank_threshold={knobs.rerank_threshold}")
    lines.append(f"  synthesis_attempts={knobs.synthesis_attempts} "
                 f"context_token_budget={knobs.context_token_budget} "
                 f"chars_per_token={knobs.chars_per_token}")
    lines.append(f"  max_response_chars={knobs.max_response_chars}")

    audit = config.audit
    lines.append("\nAudit")
    if audit.enabled:
        lines.append(f"  Log:      {Path(audit.log_dir) / audit.file_name}")
        lines.append(f"  Rotation: {audit.rotation}, retention {audit.retention}")
        lines.append(f"  Redacts:  {', '.join(audit.redact_keys) or 'nothing'}")
    else:
        lines.append("  disabled (enable with audit.enabled or --audit-log-dir)")
    return "\n".join(lines)


def cmd_import_openapi(
    document_path: Path,
    config_path: Path = DEFAULT_CONFIG_PATH,
    catalog_path: Optional[Path] = None,
) -> str:
    """Merge an OpenAPI document's operations into the catalog file.

    Descriptors whose description is unchanged keep their stored embedding.
    """
    path = _catalog_path(config_path, catalog_path)
    store = load_catalog(path)
    imported = descriptors_from_openapi(load_openapi_document(document_path))
    if not imported:
        return f"No importable operations found in {document_path}"

    added = updated = 0
    for descriptor in imported:
        existing = store.get(descriptor.path, descriptor.method)
        if existing is None:
            added += 1
        elif existing.description == descriptor.description and existing.embedding is not None:
            descriptor = descriptor.model_copy(update={"embedding": existing.embedding})
            updated += 1
        else:
            updated += 1
        store.upsert(descriptor)

    save_catalog(store, path)
    logger.info(f"📥 Imported {len(imported)} operation(s) from {document_path} into {path}")
    return f"Imported {len(imported)} operation(s): {added} added, {updated} updated → {path}"


async def cmd_ask(
    message: str,
    session_id: str = "cli",
    out: TextIO = sys.stdout,
    **settings,
) -> None:
    """Run a single turn and stream the answer to ``out``."""
    router = AssistantRouter(**settings)
    try:
        await router.initialize()
        chunks = await router.chat(session_id, message)
        async for chunk in chunks:
            out.write(chunk)
            out.flush()
        out.write("\n")
    finally:
        await router.aclose()
