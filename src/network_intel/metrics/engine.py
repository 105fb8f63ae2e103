"""Composite importance scoring.

importance = CURATED_WEIGHT * curated
           + PAGERANK_WEIGHT * pagerank / max(pagerank)
           + BETWEENNESS_WEIGHT * betweenness / max(betweenness)
           + CLOSENESS_WEIGHT * closeness / max(closeness)
           + DEGREE_WEIGHT * degree / max(degree)

Without a graph-analytics backend only curated importance and degree are available and
the FALLBACK_* weights apply instead. Each weight set sums to 1 and every input is in
[0, 1], so the composite is in [0, 1].
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass

from ..graph.analytics import CentralityScores, GraphAnalytics
from ..graph.models import EntityMetrics
from ..graph.store import GraphStore

logger = logging.getLogger(__name__)

CURATED_WEIGHT = 0.30
PAGERANK_WEIGHT = 0.25
BETWEENNESS_WEIGHT = 0.20
CLOSENESS_WEIGHT = 0.15
DEGREE_WEIGHT = 0.10

FALLBACK_CURATED_WEIGHT = 0.70
FALLBACK_DEGREE_WEIGHT = 0.30

FULL_WEIGHTS = {
    "curated": CURATED_WEIGHT,
    "pagerank": PAGERANK_WEIGHT,
    "betweenness": BETWEENNESS_WEIGHT,
    "closeness": CLOSENESS_WEIGHT,
    "degree": DEGREE_WEIGHT,
}
FALLBACK_WEIGHTS = {"curated": FALLBACK_CURATED_WEIGHT, "degree": FALLBACK_DEGREE_WEIGHT}

MODE_FULL = "full"
MODE_DEGREE_ONLY = "degree_only"


def normalize_by_max(values: dict[str, float]) -> dict[str, float]:
    top = max(values.values(), default=0.0)
    if top <= 0:
        return {k: 0.0 for k in values}
    return {k: max(0.0, v) / top for k, v in values.items()}


def _clamp(x: float) -> float:
    return min(1.0, max(0.0, x))


def composite_importance(
    *,
    curated: float,
    degree: float,
    pagerank: float | None = None,
    betweenness: float | None = None,
    closeness: float | None = None,
) -> float:
    """Weighted blend of normalized inputs. Missing higher-order centralities select the fallback weights."""
    if pagerank is None or betweenness is None or closeness is None:
        return _clamp(FALLBACK_CURATED_WEIGHT * curated + FALLBACK_DEGREE_WEIGHT * degree)
    return _clamp(
        CURATED_WEIGHT * curated
        + PAGERANK_WEIGHT * pagerank
        + BETWEENNESS_WEIGHT * betweenness
        + CLOSENESS_WEIGHT * closeness
        + DEGREE_WEIGHT * degree
    )


@dataclass(slots=True)
class MetricsReport:
    mode: str
    backend: str | None
    entities: int
    relationships: int
    duration_ms: float
    reason: str | None = None
    communities: int | None = None
    modularity: float | None = None

    def as_dict(self) -> dict:
        return {
            "mode": self.mode,
            "backend": self.backend,
            "entities": self.entities,
            "relationships": self.relationships,
            "duration_ms": round(self.duration_ms, 1),
            "reason": self.reason,
            "communities": self.communities,
            "modularity": None if self.modularity is None else round(self.modularity, 4),
        }


class MetricsEngine:
    """Full-graph recomputation of centralities and composite importance."""

    def __init__(self, store: GraphStore, analytics: GraphAnalytics | None = None):
        self.store = store
        self.analytics = analytics

    def compute(self) -> tuple[list[EntityMetrics], MetricsReport]:
        t0 = time.perf_counter()
        entities = self.store.list_entities()
        relationships = self.store.list_relationships()
        node_ids = [e.id for e in entities]

        degree = Counter()
        for r in relationships:
            degree[r.source_id] += 1
            degree[r.target_id] += 1
        degree_norm = normalize_by_max({i: float(degree.get(i, 0)) for i in node_ids})

        scores: CentralityScores | None = None
        reason: str | None = None
        if self.analytics is None:
            reason = "no graph-analytics backend configured"
        else:
            try:
                scores = self.analytics.compute(
                    node_ids, [(r.source_id, r.target_id, r.weight) for r in relationships]
                )
            except Exception as e:
                reason = f"{self.analytics.name} failed: {type(e).__name__}: {e}"
                logger.exception("Graph analytics backend %s failed", self.analytics.name)

        if scores is None:
            logger.warning("Computing degree-only importance: %s", reason)
            pr = bt = cl = None
        else:
            pr = normalize_by_max({i: scores.pagerank.get(i, 0.0) for i in node_ids})
            bt = normalize_by_max({i: scores.betweenness.get(i, 0.0) for i in node_ids})
            cl = normalize_by_max({i: scores.closeness.get(i, 0.0) for i in node_ids})

        rows: list[EntityMetrics] = []
        for e in entities:
            rows.append(
                EntityMetrics(
                    entity_id=e.id,
                    degree=int(degree.get(e.id, 0)),
                    pagerank=pr[e.id] if pr is not None else None,
                    betweenness=bt[e.id] if bt is not None else None,
                    closeness=cl[e.id] if cl is not None else None,
                    importance=composite_importance(
                        curated=e.enrichment.curated_importance or 0.0,
                        degree=degree_norm[e.id],
                        pagerank=pr[e.id] if pr is not None else None,
                        betweenness=bt[e.id] if bt is not None else None,
                        closeness=cl[e.id] if cl is not None else None,
                    ),
                    community=scores.communities.get(e.id) if scores is not None else None,
                )
            )

        report = MetricsReport(
            mode=MODE_DEGREE_ONLY if scores is None else MODE_FULL,
            backend=None if scores is None else self.analytics.name,
            entities=len(entities),
            relationships=len(relationships),
            duration_ms=(time.perf_counter() - t0) * 1000.0,
            reason=reason,
            communities=len(set(scores.communities.values())) if scores and scores.communities else None,
            modularity=scores.modularity if scores is not None else None,
        )
        return rows, report

    def recompute(self) -> MetricsReport:
        rows, report = self.compute()
        self.store.replace_metrics(rows, mode=report.mode)
        logger.info(
            "Importance recomputed for %d entities (%s, %.0f ms)", report.entities, report.mode, report.duration_ms
        )
        return report
