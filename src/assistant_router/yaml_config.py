from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Optional
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from src.assistant_router.utils.config import AuditConfig
from src.utils.logger import get_logger

logger = get_logger("config")


def _substitute_env(value: Any) -> Any:
    """Recursively expand ${VAR} references in string values."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


class ApiConfig(BaseModel):
    base_url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    json_defaults: dict[str, Any] = Field(default_factory=dict, alias="json")
    timeout_seconds: float = 30.0

    model_config = {"populate_by_name": True}

    @field_validator("headers", "params", "json_defaults", mode="before")
    @classmethod
    def _expand_env(cls, value: Any) -> Any:
        return _substitute_env(value) if value is not None else {}


class EmbeddingPromptTemplate(BaseModel):
    instruction_prefix: Optional[str] = None
    query_prefix: Optional[str] = None

    def apply(self, query: str) -> str:
        text = f"{self.query_prefix}{query}" if self.query_prefix else query
        if self.instruction_prefix:
            return f"{self.instruction_prefix}\n{text}"
        return text


class EmbeddingApiConfig(ApiConfig):
    dimension: int = 1024
    prompt_template: EmbeddingPromptTemplate = Field(default_factory=EmbeddingPromptTemplate)


class DispatchConfig(BaseModel):
    base_url: str = "http://127.0.0.1:8000"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 10.0

    @field_validator("headers", mode="before")
    @classmethod
    def _expand_env(cls, value: Any) -> Any:
        return _substitute_env(value) if value is not None else {}


class PipelineSettings(BaseModel):
    top_k: int = 5
    distance_cutoff: float = 0.6
    rerank_threshold: float = 0.5
    synthesis_attempts: int = 3
    context_token_budget: int = 8000
    chars_per_token: int = 4
    max_response_chars: int = 4000


class RouterConfig(BaseModel):
    embedding: EmbeddingApiConfig = Field(default_factory=EmbeddingApiConfig)
    reranking: ApiConfig = Field(default_factory=ApiConfig)
    generation: ApiConfig = Field(default_factory=ApiConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    catalog_path: Optional[str] = None


def load_config(path: Path) -> RouterConfig:
    """Load YAML config from path. Returns default config if file doesn't exist or is invalid."""
    if not path.exists():
        return RouterConfig()
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return RouterConfig.model_validate(raw)
    except yaml.YAMLError as e:
        logger.error(f"❌ Invalid YAML in {path}: {e}")
        return RouterConfig()
    except (ValidationError, TypeError, ValueError) as e:
        logger.error(f"❌ Invalid config schema at {path}: {e}")
        return RouterConfig()


def save_config(config: RouterConfig, path: Path) -> None:
    """Save config to YAML file, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(
            config.model_dump(by_alias=True, exclude_none=False),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
