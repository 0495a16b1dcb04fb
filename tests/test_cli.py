import io
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from src.assistant_router.catalog import InMemoryCatalogStore, load_catalog, save_catalog
from src.assistant_router.utils.config import AuditConfig
from src.assistant_router.yaml_config import ApiConfig, RouterConfig, save_config
from src.assistant_router.cli import cmd_ask, cmd_catalog, cmd_import_openapi, cmd_status
from tests.utils import make_descriptor

OPENAPI = {
    "openapi": "3.0.0",
    "paths": {
        "/todos": {
            "get": {"summary": "List todo items"},
            "post": {
                "description": "Add an item to the user's todo list",
                "requestBody": {
                    "content": {"application/json": {"schema": {"type": "object"}}}
                },
            },
        }
    },
}

def test_cmd_catalog_lists_descriptors_with_embedding_markers(tmp_path):
    catalog = tmp_path / "catalog.yaml"
    save_catalog(
        InMemoryCatalogStore([
            make_descriptor(embedding=[1.0, 0.0]),
            make_descriptor(method="GET", description="List todo items"),
        ]),
        catalog,
    )

    output = cmd_catalog(tmp_path / "config.yaml", catalog)
    assert "2 descriptor(s)" in output
    assert "POST" in output and "GET" in output
    assert "✓" in output
    assert "not embedded yet" in output

def test_cmd_catalog_empty(tmp_path):
    output = cmd_catalog(tmp_path / "config.yaml", tmp_path / "missing.yaml")
    assert "empty" in output.lower()

def test_cmd_catalog_uses_configured_catalog_path(tmp_path):
    catalog = tmp_path / "from-config.yaml"
    save_catalog(InMemoryCatalogStore([make_descriptor()]), catalog)
    config_path = tmp_path / "config.yaml"
    save_config(RouterConfig(catalog_path=str(catalog)), config_path)

    assert "1 descriptor(s)" in cmd_catalog(config_path)

def test_cmd_import_openapi_writes_catalog(tmp_path):
    doc = tmp_path / "api.json"
    doc.write_text(json.dumps(OPENAPI))
    catalog = tmp_path / "catalog.yaml"

    output = cmd_import_openapi(doc, tmp_path / "config.yaml", catalog)

    assert "2 added" in output
    store = load_catalog(catalog)
    assert {d.label for d in store.descriptors()} == {"GET /todos", "POST /todos"}
    assert store.get("/todos", "POST").body_schema == {"type": "object"}

def test_cmd_import_openapi_keeps_embedding_for_unchanged_description(tmp_path):
    doc = tmp_path / "api.json"
    doc.write_text(json.dumps(OPENAPI))
    catalog = tmp_path / "catalog.yaml"
    save_catalog(
        InMemoryCatalogStore([
            make_descriptor(embedding=[0.3, 0.4]),
            make_descriptor(method="GET", description="Old wording", embedding=[0.9, 0.1]),
        ]),
        catalog,
    )

    output = cmd_import_openapi(doc, tmp_path / "config.yaml", catalog)

    assert "0 added, 2 updated" in output
    store = load_catalog(catalog)
    assert store.get("/todos", "POST").embedding == [0.3, 0.4]
    # Description changed, so the stale vector is dropped and re-embedded at startup
    assert store.get("/todos", "GET").embedding is None

def test_cmd_import_openapi_nothing_importable(tmp_path):
    doc = tmp_path / "api.json"
    doc.write_text(json.dumps({"paths": {"/x/{id}": {"get": {"summary": "templated"}}}}))
    output = cmd_import_openapi(doc, tmp_path / "config.yaml", tmp_path / "catalog.yaml")
    assert "no importable operations" in output.lower()
    assert not (tmp_path / "catalog.yaml").exists()

def test_cmd_status_shows_effective_config_and_masks_secrets(tmp_path):
    config_path = tmp_path / "config.yaml"
    save_config(
        RouterConfig(generation=ApiConfig(base_url="http://llm:8000/v1", headers={"Authorization": "Bearer s3cret"})),
        config_path,
    )

    output = cmd_status(config_path)
    assert "http://llm:8000/v1" in output
    assert "top_k=5" in output
    assert "s3cret" not in output
    assert "***" in output

def test_cmd_status_without_config_file(tmp_path):
    output = cmd_status(tmp_path / "missing.yaml")
    assert "using defaults" in output


@pytest.mark.asyncio
async def test_cmd_ask_streams_answer_and_closes_router():
    async def chunks():
        yield "Added "
        yield "milk."

    router = MagicMock()
    router.initialize = AsyncMock()
    router.chat = AsyncMock(return_value=chunks())
    router.aclose = AsyncMock()
    out = io.StringIO()

    with patch("src.assistant_router.cli.AssistantRouter", return_value=router) as factory:
        await cmd_ask("remind me to buy milk", out=out, log_level="WARNING")

    factory.assert_called_once_with(log_level="WARNING")
    router.initialize.assert_awaited_once()
    router.chat.assert_awaited_once_with("cli", "remind me to buy milk")
    router.aclose.assert_awaited_once()
    assert out.getvalue() == "Added milk.\n"


def test_cmd_status_reports_audit_settings(tmp_path):
    config_path = tmp_path / "config.yaml"
    assert "Audit\n  disabled" in cmd_status(config_path)

    save_config(RouterConfig(audit=AuditConfig(enabled=True, log_dir="/var/log/ar")), config_path)
    output = cmd_status(config_path)
    assert "/var/log/ar/audit.jsonl" in output
    assert "password" in output
