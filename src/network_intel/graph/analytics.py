from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

# (source_id, target_id, weight)
WeightedEdge = tuple[str, str, float]


@dataclass(slots=True)
class CentralityScores:
    pagerank: dict[str, float] = field(default_factory=dict)
    betweenness: dict[str, float] = field(default_factory=dict)
    closeness: dict[str, float] = field(default_factory=dict)
    # community id per node; 0 is the largest community
    communities: dict[str, int] = field(default_factory=dict)
    modularity: float | None = None


class GraphAnalytics(Protocol):
    """Higher-order centrality capability used by the metrics engine (optional)."""

    name: str

    def compute(self, node_ids: list[str], edges: list[WeightedEdge]) -> CentralityScores: ...


class NetworkXAnalytics:
    """In-process centralities with networkx.

    PageRank runs on the directed graph; betweenness and closeness on its undirected view.
    Betweenness is sampled (`betweenness_k` pivots, fixed seed) once the graph grows past
    `exact_betweenness_max_nodes`. Communities come from weighted Louvain on the undirected
    view with the same seed, numbered by descending size.
    """

    name = "networkx"

    def __init__(
        self,
        *,
        pagerank_alpha: float = 0.85,
        exact_betweenness_max_nodes: int = 2000,
        betweenness_k: int = 500,
        community_resolution: float = 1.0,
        seed: int = 42,
    ):
        import networkx as nx

        self._nx = nx
        self.pagerank_alpha = pagerank_alpha
        self.exact_betweenness_max_nodes = exact_betweenness_max_nodes
        self.betweenness_k = betweenness_k
        self.community_resolution = community_resolution
        self.seed = seed

    def compute(self, node_ids: list[str], edges: list[WeightedEdge]) -> CentralityScores:
        nx = self._nx
        dg = nx.DiGraph()
        dg.add_nodes_from(node_ids)
        for src, dst, w in edges:
            prev = dg.get_edge_data(src, dst)
            if prev is None or prev["weight"] < w:
                dg.add_edge(src, dst, weight=float(w))
        if dg.number_of_nodes() == 0:
            return CentralityScores()

        ug = dg.to_undirected()
        pagerank = nx.pagerank(dg, alpha=self.pagerank_alpha, weight="weight")

        n = ug.number_of_nodes()
        if n > self.exact_betweenness_max_nodes:
            k = min(self.betweenness_k, n)
            logger.info("Sampling betweenness with k=%d pivots over %d nodes", k, n)
            betweenness = nx.betweenness_centrality(ug, k=k, seed=self.seed, normalized=True)
        else:
            betweenness = nx.betweenness_centrality(ug, normalized=True)
        closeness = nx.closeness_centrality(ug)
        communities, modularity = self._communities(ug)

        return CentralityScores(
            pagerank={k: float(v) for k, v in pagerank.items()},
            betweenness={k: float(v) for k, v in betweenness.items()},
            closeness={k: float(v) for k, v in closeness.items()},
            communities=communities,
            modularity=modularity,
        )

    def _communities(self, ug) -> tuple[dict[str, int], float | None]:
        nx = self._nx
        if ug.number_of_edges() == 0:
            # modularity is undefined without edges
            return {n: i for i, n in enumerate(sorted(ug.nodes))}, None
        parts = nx.community.louvain_communities(
            ug, weight="weight", resolution=self.community_resolution, seed=self.seed
        )
        modularity = nx.community.modularity(ug, parts, weight="weight", resolution=self.community_resolution)
        ordered = sorted(parts, key=lambda c: (-len(c), min(c)))
        return {n: i for i, part in enumerate(ordered) for n in part}, float(modularity)


def build_analytics(kind: str | None, *, mirror=None) -> GraphAnalytics | None:
    """Resolve the configured analytics backend.

    Returns None (degree-only metrics) when the backend is disabled or its library is
    not installed.
    """
    if not kind or kind == "none":
        return None
    if kind == "networkx":
        try:
            return NetworkXAnalytics()
        except ImportError as e:
            logger.warning("networkx unavailable (%s); metrics will be degree-only", e)
            return None
    if kind == "neo4j-gds":
        if mirror is None:
            logger.warning("neo4j-gds analytics requested but Neo4j is not configured")
            return None
        from .neo4j_store import Neo4jGdsAnalytics

        return Neo4jGdsAnalytics(mirror)
    raise ValueError(f"unknown analytics backend: {kind}")
