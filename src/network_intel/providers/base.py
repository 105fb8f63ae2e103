from __future__ import annotations

from typing import Any, Protocol


class RelationshipDataProvider(Protocol):
    """CRM-like source of organizations, people, pipeline stages and interactions."""

    async def fetch_external_relationships(self, list_filter: str | None = None) -> list[dict[str, Any]]: ...


class EmbeddingProvider(Protocol):
    """Fixed-length text embeddings. The same model must serve index time and query time."""

    dim: int

    async def embed(self, text: str) -> list[float]: ...


class TextGenerationProvider(Protocol):
    """Free-text generation. Output is untrusted until schema-checked by the caller."""

    async def summarize(self, text: str, instructions: str) -> str: ...
