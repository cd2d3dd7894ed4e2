"""Provider selection from the engine configuration."""
from __future__ import annotations

from secondbrain.config import RAGConfig
from secondbrain.errors import ConfigurationError
from secondbrain.providers.base import EmbeddingClient, LLMClient
from secondbrain.providers.ollama import DEFAULT_BASE, OllamaEmbedder, OllamaGenerator


def _openai_base_url(config: RAGConfig) -> str | None:
    # The default base address points at a local Ollama server; only forward
    # an explicitly configured one (e.g. an OpenAI-compatible gateway).
    return None if config.provider_base.rstrip("/") == DEFAULT_BASE else config.provider_base


def make_embedder(config: RAGConfig) -> EmbeddingClient:
    """Instantiate the embedding client for the configured provider."""
    if config.provider == "ollama":
        return OllamaEmbedder(
            base_url=config.provider_base,
            model=config.embed_model,
            batch_size=config.embed_batch_size,
            timeout=config.request_timeout_s,
        )
    if config.provider == "openai":
        from secondbrain.providers.openai_provider import OpenAIEmbedder  # lazy import
        return OpenAIEmbedder(
            model=config.embed_model,
            batch_size=config.embed_batch_size,
            timeout=config.request_timeout_s,
            base_url=_openai_base_url(config),
        )
    raise ConfigurationError(f"Unknown provider {config.provider!r}")


def make_generator(config: RAGConfig) -> LLMClient:
    """Instantiate the language-model client for the configured provider."""
    if config.provider == "ollama":
        return OllamaGenerator(
            base_url=config.provider_base,
            model=config.llm_model,
            timeout=config.request_timeout_s,
        )
    if config.provider == "openai":
        from secondbrain.providers.openai_provider import OpenAIGenerator  # lazy import
        return OpenAIGenerator(
            model=config.llm_model,
            timeout=config.request_timeout_s,
            base_url=_openai_base_url(config),
        )
    raise ConfigurationError(f"Unknown provider {config.provider!r}")
