"""Collaborator interfaces (data, embeddings, text generation) and their implementations."""

from __future__ import annotations

from ..settings import NetworkIntelSettings
from .base import EmbeddingProvider, RelationshipDataProvider, TextGenerationProvider
from .crm import HttpRelationshipProvider, StaticRelationshipProvider
from .embedder import CheckedEmbedder, StubEmbedder, build_embedder
from .llm import HttpTextGenerator

__all__ = [
    "CheckedEmbedder",
    "EmbeddingProvider",
    "HttpRelationshipProvider",
    "HttpTextGenerator",
    "RelationshipDataProvider",
    "StaticRelationshipProvider",
    "StubEmbedder",
    "TextGenerationProvider",
    "build_embedder",
    "build_relationship_provider",
    "build_text_generator",
]


def build_relationship_provider(cfg: NetworkIntelSettings) -> RelationshipDataProvider | None:
    if cfg.crm_base_url:
        return HttpRelationshipProvider(
            base_url=cfg.crm_base_url,
            api_key=cfg.crm_api_key,
            timeout_s=cfg.provider_timeout_s,
            retry_attempts=cfg.provider_retry_attempts,
        )
    if cfg.crm_records_file:
        return StaticRelationshipProvider(cfg.crm_records_file)
    return None


def build_text_generator(cfg: NetworkIntelSettings) -> TextGenerationProvider | None:
    if not cfg.llm_base_url:
        return None
    return HttpTextGenerator(
        base_url=cfg.llm_base_url,
        api_key=cfg.llm_api_key,
        model=cfg.llm_model,
        timeout_s=cfg.provider_timeout_s,
        retry_attempts=cfg.provider_retry_attempts,
    )
