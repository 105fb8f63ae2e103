from __future__ import annotations

import logging
from dataclasses import dataclass

from ..dedup.engine import DedupEngine
from ..graph.analytics import GraphAnalytics, build_analytics
from ..graph.neo4j_store import Neo4jGraphMirror, build_mirror
from ..graph.sqlite_store import SQLiteGraphStore
from ..metrics.engine import MetricsEngine
from ..pipeline.orchestrator import PipelineOrchestrator
from ..pipeline.stages import EnrichmentStages
from ..providers import build_embedder, build_relationship_provider, build_text_generator
from ..providers.base import EmbeddingProvider, RelationshipDataProvider, TextGenerationProvider
from ..ranking.scorer import PathScorer
from ..retrieval.progressive import ProgressiveRetrievalEngine
from ..settings import NetworkIntelSettings

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything a process needs, built once from settings."""

    cfg: NetworkIntelSettings
    store: SQLiteGraphStore
    embedder: EmbeddingProvider
    relationship_provider: RelationshipDataProvider | None
    text_generator: TextGenerationProvider | None
    mirror: Neo4jGraphMirror | None
    analytics: GraphAnalytics | None

    @property
    def dedup(self) -> DedupEngine:
        return DedupEngine(self.store)

    @property
    def metrics(self) -> MetricsEngine:
        return MetricsEngine(self.store, self.analytics)

    @property
    def scorer(self) -> PathScorer:
        return PathScorer(self.store, self.embedder, similarity_floor=self.cfg.similarity_floor)

    @property
    def retrieval(self) -> ProgressiveRetrievalEngine:
        return ProgressiveRetrievalEngine(
            self.store,
            timeout_s=self.cfg.retrieval_timeout_s,
            max_nodes_cap=self.cfg.max_nodes_cap,
            default_max_nodes=self.cfg.default_max_nodes,
        )

    def orchestrator(self) -> PipelineOrchestrator:
        stages = EnrichmentStages(
            self.store,
            dedup=self.dedup,
            metrics=self.metrics,
            embedder=self.embedder,
            text_generator=self.text_generator,
            relationship_provider=self.relationship_provider,
            mirror=self.mirror,
            list_filter=self.cfg.crm_list_filter,
            batch_size=self.cfg.batch_size,
            batch_delay_s=self.cfg.batch_delay_s,
            portfolio_stages=self.cfg.portfolio_stages,
            delete_invalid_names=self.cfg.delete_invalid_names,
        )
        return PipelineOrchestrator(
            self.store,
            stages,
            timeout_s=self.cfg.pipeline_timeout_s,
            stale_after_s=self.cfg.stale_run_after_s,
        )

    async def aclose(self) -> None:
        for c in (self.embedder, self.relationship_provider, self.text_generator):
            inner = getattr(c, "inner", c)
            close = getattr(inner, "aclose", None)
            if close is not None:
                await close()
        if self.mirror is not None:
            self.mirror.close()


def build_components(cfg: NetworkIntelSettings, *, with_mirror: bool = True) -> Components:
    store = SQLiteGraphStore(path=cfg.db_path, embedding_dim=cfg.embedding_dim)
    store.init()

    embedder = build_embedder(
        kind=cfg.embedding_provider,
        dim=cfg.embedding_dim,
        st_model=cfg.st_model,
        base_url=cfg.llm_base_url,
        api_key=cfg.llm_api_key,
        model=cfg.embedding_model,
        timeout_s=cfg.provider_timeout_s,
        retry_attempts=cfg.provider_retry_attempts,
    )
    mirror = None
    if with_mirror:
        mirror = build_mirror(
            uri=cfg.neo4j_uri, user=cfg.neo4j_user, password=cfg.neo4j_password, database=cfg.neo4j_database
        )
    if mirror is None:
        logger.info("Neo4j mirror not configured; SQLite only")

    return Components(
        cfg=cfg,
        store=store,
        embedder=embedder,
        relationship_provider=build_relationship_provider(cfg),
        text_generator=build_text_generator(cfg),
        mirror=mirror,
        analytics=build_analytics(cfg.analytics_backend, mirror=mirror),
    )
