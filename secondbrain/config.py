"""
Engine configuration
---------------------
A single immutable RAGConfig is built once at startup (CLI command or API
lifespan) and handed to every component's constructor.  Algorithmic code
never reads the environment itself.

Resolution order (later wins):
  1. Field defaults below
  2. YAML file (config/config.yaml by default, optional)
  3. Upper-case environment variables, after load_dotenv()
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from secondbrain.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "config/config.yaml"
CONFIG_PATH_ENV = "SECONDBRAIN_CONFIG"       # lets `serve --config` reach the server process

# (embedding model, language model) used when EMBED_MODEL / LLM_MODEL are unset
PROVIDER_MODELS = {
    "ollama": ("all-minilm", "llama3"),
    "openai": ("text-embedding-3-small", "gpt-4o-mini"),
}


class RAGConfig(BaseModel):
    """Immutable engine settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Retrieval
    top_k: int = Field(default=5, ge=1)
    max_context_chars: int = Field(default=3000, ge=1)
    prefilter_limit: int = Field(default=200, ge=1)
    max_embeddings_search: int = Field(default=1000, ge=1)

    # Chunking (overlap < chunk_size is enforced again by the chunker)
    chunk_size: int = Field(default=1500, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)

    # Providers
    provider: Literal["ollama", "openai"] = "ollama"
    provider_base: str = "http://localhost:11434"
    embed_model: Optional[str] = None      # None -> PROVIDER_MODELS[provider]
    llm_model: Optional[str] = None
    embed_batch_size: int = Field(default=64, ge=1)
    request_timeout_s: float = Field(default=60.0, gt=0)

    # Generation
    generation_timeout_s: float = Field(default=90.0, gt=0)
    persist_partial_on_timeout: bool = False

    # Storage / logging
    data_dir: str = "data/store"
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/secondbrain.log"

    @model_validator(mode="before")
    @classmethod
    def _default_models(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        embed, llm = PROVIDER_MODELS.get(data.get("provider") or "ollama", (None, None))
        data = dict(data)
        if not data.get("embed_model"):
            data["embed_model"] = embed
        if not data.get("llm_model"):
            data["llm_model"] = llm
        return data

    @model_validator(mode="after")
    def _check_overlap(self) -> "RAGConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in RAGConfig.model_fields:
        value = os.getenv(name.upper())
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_config(path: str | Path | None = None, **overrides: Any) -> RAGConfig:
    """
    Build the engine configuration.

    Args:
        path:      YAML file (else $SECONDBRAIN_CONFIG, else the default);
                   a missing default file is fine, a missing explicit
                   path is an error.
        overrides: Final keyword overrides (CLI flags).

    Raises:
        ConfigurationError: unreadable file or invalid values.
    """
    load_dotenv()
    path = path or os.getenv(CONFIG_PATH_ENV) or None

    values: dict[str, Any] = {}
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        values.update(loaded)
        logger.debug(f"[Config] Loaded {len(loaded)} key(s) from {config_path}")
    elif path is not None:
        raise ConfigurationError(f"Config file not found: {config_path}")

    values.update(_env_overrides())
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return RAGConfig(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
