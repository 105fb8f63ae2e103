"""Network influence summary over the stored metrics.

Groups entities into top influencers (by composite importance), hubs (high degree),
bridges (non-zero betweenness) and isolated entities, and reports whole-network
statistics. Reads the metric rows written by the last `MetricsEngine.recompute()`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import networkx as nx

from ..graph.models import EntityMetrics
from ..graph.store import GraphStore

logger = logging.getLogger(__name__)

TOP_INFLUENCERS = 10
HUB_MIN_DEGREE = 5
MAX_HUBS = 20
MAX_BRIDGES = 15
MAX_ISOLATED = 10


@dataclass(slots=True)
class InfluenceEntry:
    entity_id: str
    name: str
    degree: int
    importance: float
    betweenness: float | None = None
    community: int | None = None


@dataclass(slots=True)
class NetworkStats:
    nodes: int
    edges: int
    avg_degree: float
    density: float
    clustering: float


@dataclass(slots=True)
class InfluenceReport:
    stats: NetworkStats
    top_influencers: list[InfluenceEntry] = field(default_factory=list)
    hubs: list[InfluenceEntry] = field(default_factory=list)
    bridges: list[InfluenceEntry] = field(default_factory=list)
    isolated: list[InfluenceEntry] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def analyze_influence(store: GraphStore, *, hub_min_degree: int = HUB_MIN_DEGREE) -> InfluenceReport:
    names = {e.id: e.name for e in store.list_entities()}
    metrics = [m for m in store.list_metrics() if m.entity_id in names]

    def entry(m: EntityMetrics) -> InfluenceEntry:
        return InfluenceEntry(
            entity_id=m.entity_id,
            name=names[m.entity_id],
            degree=m.degree,
            importance=m.importance,
            betweenness=m.betweenness,
            community=m.community,
        )

    ug = nx.Graph()
    ug.add_nodes_from(names)
    ug.add_edges_from(
        (r.source_id, r.target_id) for r in store.list_relationships() if r.source_id != r.target_id
    )
    n, m = ug.number_of_nodes(), ug.number_of_edges()
    stats = NetworkStats(
        nodes=n,
        edges=m,
        avg_degree=2.0 * m / n if n else 0.0,
        density=nx.density(ug) if n > 1 else 0.0,
        clustering=nx.average_clustering(ug) if n else 0.0,
    )

    # list_metrics() is ordered by importance
    top = [entry(x) for x in metrics[:TOP_INFLUENCERS]]
    hubs = sorted((x for x in metrics if x.degree >= hub_min_degree), key=lambda x: (-x.degree, x.entity_id))
    bridges = sorted(
        (x for x in metrics if (x.betweenness or 0.0) > 0), key=lambda x: (-(x.betweenness or 0.0), x.entity_id)
    )
    isolated = sorted((x for x in metrics if x.degree == 0), key=lambda x: x.entity_id)

    if not metrics and names:
        logger.warning("No stored metrics; run a metrics refresh before analyzing influence")
    return InfluenceReport(
        stats=stats,
        top_influencers=top,
        hubs=[entry(x) for x in hubs[:MAX_HUBS]],
        bridges=[entry(x) for x in bridges[:MAX_BRIDGES]],
        isolated=[entry(x) for x in isolated[:MAX_ISOLATED]],
    )
