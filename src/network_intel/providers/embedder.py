from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx
import numpy as np

from ..errors import ExternalProviderError, ValidationError
from .http import HttpClientFactory, bearer, raise_for_status, transient_retry

logger = logging.getLogger(__name__)


class Embedder:
    dim: int

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError

    async def embed(self, text: str) -> list[float]:
        return self.embed_many([text])[0]


@dataclass
class StubEmbedder(Embedder):
    """Deterministic hashed byte-position embedding. Offline, low quality."""

    dim: int = 384

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        out: list[list[float]] = []
        for t in texts:
            v = np.zeros(self.dim, dtype=np.float64)
            for i, ch in enumerate(t.lower().encode("utf-8", errors="ignore")):
                v[(i + ch) % self.dim] += 1.0
            norm = float(np.linalg.norm(v))
            if norm:
                v /= norm
            out.append(v.tolist())
        return out


class SentenceTransformersEmbedder(Embedder):
    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer

        self._m = SentenceTransformer(model_name)
        self.dim = int(self._m.get_sentence_embedding_dimension())

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        vecs = self._m.encode(texts, normalize_embeddings=True)
        return [v.tolist() for v in vecs]

    async def embed(self, text: str) -> list[float]:
        return (await asyncio.to_thread(self.embed_many, [text]))[0]


class HttpEmbeddingProvider(Embedder):
    """OpenAI-compatible `POST /embeddings` client."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        dim: int,
        timeout_s: float = 60.0,
        retry_attempts: int = 5,
        retry_initial_wait: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self.dim = dim
        self._client = HttpClientFactory.client(
            base_url, headers=bearer(api_key), read_timeout_s=timeout_s, transport=transport
        )
        self._post = transient_retry(retry_attempts, retry_initial_wait)(self._post_once)

    async def _post_once(self, text: str) -> dict:
        resp = await self._client.post(
            "/embeddings", json={"model": self.model, "input": text, "dimensions": self.dim}
        )
        raise_for_status(resp)
        return resp.json()

    async def embed(self, text: str) -> list[float]:
        try:
            data = await self._post(text)
            return [float(x) for x in data["data"][0]["embedding"]]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            raise ExternalProviderError(f"embedding request failed: {e}") from e

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError("HttpEmbeddingProvider is async-only; use embed()")

    async def aclose(self) -> None:
        await self._client.aclose()


class CheckedEmbedder:
    """Guards an embedding provider against dimensionality drift.

    A vector whose length differs from the index dimensionality raises ValidationError.
    """

    def __init__(self, inner, dim: int):
        self.inner = inner
        self.dim = dim

    async def embed(self, text: str) -> list[float]:
        v = await self.inner.embed(text)
        if len(v) != self.dim:
            raise ValidationError(
                f"embedding provider returned {len(v)} dimensions, index uses {self.dim}"
            )
        return v


def build_embedder(
    *,
    kind: str,
    dim: int,
    st_model: str | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    model: str = "text-embedding-3-large",
    timeout_s: float = 60.0,
    retry_attempts: int = 5,
) -> CheckedEmbedder:
    if kind == "sentence-transformers":
        if not st_model:
            raise ValidationError("embedding_provider=sentence-transformers requires st_model")
        inner: Embedder = SentenceTransformersEmbedder(st_model)
    elif kind == "http":
        if not base_url:
            raise ValidationError("embedding_provider=http requires llm_base_url")
        inner = HttpEmbeddingProvider(
            base_url=base_url,
            api_key=api_key,
            model=model,
            dim=dim,
            timeout_s=timeout_s,
            retry_attempts=retry_attempts,
        )
    elif kind == "stub":
        inner = StubEmbedder(dim=dim)
    else:
        raise ValidationError(f"unknown embedding provider: {kind}")
    logger.info("Using %s embedder (dim=%d)", type(inner).__name__, dim)
    return CheckedEmbedder(inner, dim)
