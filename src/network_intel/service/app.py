from __future__ import annotations

import logging
import os
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..errors import ConflictError, ExternalProviderError, NetworkIntelError, NotFoundError, ValidationError
from ..graph.store import GraphStore
from ..metrics.influence import analyze_influence
from ..providers.base import EmbeddingProvider
from ..ranking.scorer import PathScorer
from ..retrieval.progressive import ProgressiveRetrievalEngine, node_view

logger = logging.getLogger(__name__)


class ExpandIn(BaseModel):
    node_id: str
    already_loaded: list[str] = Field(default_factory=list)
    max_nodes: int | None = None


class CandidateOut(BaseModel):
    entity_id: str
    name: str
    kind: str
    score: float
    similarity: float
    relationship_strength: float
    match: str


class WarmPathOut(BaseModel):
    teammate_id: str
    teammate_name: str
    contact_id: str
    contact_name: str
    degree: int
    strength: float
    score: float


_STATUS = {
    NotFoundError: 404,
    ValidationError: 422,
    ConflictError: 409,
    ExternalProviderError: 503,
}


def _status_for(exc: NetworkIntelError) -> int:
    for cls, code in _STATUS.items():
        if isinstance(exc, cls):
            return code
    return 503


def create_app(
    store: GraphStore,
    *,
    embedder: EmbeddingProvider | None = None,
    scorer: PathScorer | None = None,
    retrieval: ProgressiveRetrievalEngine | None = None,
) -> FastAPI:
    app = FastAPI(title="network-intel", version=__version__)

    scorer = scorer or PathScorer(store, embedder)
    retrieval = retrieval or ProgressiveRetrievalEngine(store)

    @app.exception_handler(NetworkIntelError)
    async def _domain_error(_request: Request, exc: NetworkIntelError):
        code = _status_for(exc)
        if code >= 500:
            logger.error("Request failed: %s", exc)
            return JSONResponse(status_code=code, content={"detail": "service temporarily unavailable"})
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"ok": True, "host": os.uname().nodename, "version": __version__}

    @app.get("/v1/stats")
    def stats():
        return store.stats().as_dict()

    @app.get("/v1/sync")
    def sync_state(limit: int = Query(default=10, ge=1, le=100)):
        return {
            "state": store.get_sync_state().as_dict(),
            "runs": [r.as_dict() for r in store.list_sync_runs(limit=limit)],
        }

    @app.get("/v1/entities/{entity_id}")
    def get_entity(entity_id: str):
        e = store.get_entity(entity_id)
        m = store.get_metrics(entity_id)
        return {
            **node_view(e),
            "enrichment": e.enrichment.model_dump(mode="json", exclude_none=True),
            "metrics": asdict(m) if m else None,
        }

    @app.get("/v1/graph/initial")
    def graph_initial(mode: str = "overview", max_nodes: int | None = None):
        return retrieval.load_initial(mode, max_nodes).as_dict()

    @app.post("/v1/graph/expand")
    def graph_expand(payload: ExpandIn):
        return retrieval.expand(payload.node_id, payload.already_loaded, payload.max_nodes).as_dict()

    @app.get("/v1/search")
    async def search(
        q: str,
        limit: int = Query(default=10, ge=1, le=100),
        target_id: str | None = None,
    ):
        if not q.strip():
            raise HTTPException(status_code=422, detail="q must not be empty")
        res = await scorer.search(q, limit=limit, target_id=target_id)
        out = [CandidateOut(**{**asdict(c), "kind": c.kind.value}) for c in res.candidates]
        return {
            "query": q,
            "count": len(out),
            "degraded": res.degraded,
            "reason": res.reason,
            "results": [o.model_dump() for o in out],
        }

    @app.get("/v1/warm-paths/{target_id}")
    def warm_paths(
        target_id: str,
        limit: int = Query(default=10, ge=1, le=100),
        max_hops: int = Query(default=3, ge=1, le=6),
    ):
        paths = scorer.warm_paths(target_id, limit=limit, max_hops=max_hops)
        out = [WarmPathOut(**asdict(p)) for p in paths]
        return {"target_id": target_id, "count": len(out), "paths": [o.model_dump() for o in out]}

    @app.get("/v1/paths/{source_id}/{target_id}")
    def connection_path(
        source_id: str,
        target_id: str,
        strategy: str = Query(default="strongest", pattern="^(strongest|shortest)$"),
        max_hops: int = Query(default=6, ge=1, le=10),
    ):
        found = scorer.connection_path(source_id, target_id, strategy=strategy, max_hops=max_hops)
        return {"source_id": source_id, "target_id": target_id, "path": found.as_dict() if found else None}

    @app.get("/v1/influence")
    def influence(hub_min_degree: int = Query(default=5, ge=1)):
        return analyze_influence(store, hub_min_degree=hub_min_degree).as_dict()

    return app
