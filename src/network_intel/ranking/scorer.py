from __future__ import annotations

import heapq
import logging
import math
import re
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass, field

import numpy as np

from ..errors import ExternalProviderError, ValidationError
from ..graph.models import Entity, EntityKind, Relationship
from ..graph.store import GraphStore
from ..providers.base import EmbeddingProvider

logger = logging.getLogger(__name__)

# search(): score = SIMILARITY_WEIGHT * similarity + STRENGTH_WEIGHT * relationship strength
SIMILARITY_WEIGHT = 0.7
STRENGTH_WEIGHT = 0.3
DEFAULT_SIMILARITY_FLOOR = 0.3

# warm_paths(): score = PATH_STRENGTH_WEIGHT * strength + PATH_DEGREE_WEIGHT * DEGREE_WEIGHTS[degree]
PATH_STRENGTH_WEIGHT = 0.7
PATH_DEGREE_WEIGHT = 0.3
DEGREE_WEIGHTS = {1: 1.0, 2: 0.6, 3: 0.3}
FAR_DEGREE_WEIGHT = 0.2

# connection_path(): hop limit for both strategies
MAX_PATH_HOPS = 6
PATH_SHORTEST = "shortest"
PATH_STRONGEST = "strongest"

_TOKEN_RE = re.compile(r"\w+")


def degree_weight(degree: int) -> float:
    return DEGREE_WEIGHTS.get(degree, FAR_DEGREE_WEIGHT)


def cosine_similarities(query: list[float], matrix: np.ndarray) -> np.ndarray:
    q = np.asarray(query, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise ValidationError(
            f"query embedding has {q.shape[0]} dimensions, stored embeddings have "
            f"{matrix.shape[1] if matrix.ndim == 2 else '?'}"
        )
    qn = float(np.linalg.norm(q))
    norms = np.linalg.norm(matrix, axis=1)
    denom = np.where(norms * qn == 0, 1.0, norms * qn)
    return (matrix @ q) / denom


def keyword_similarity(query: str, entity: Entity) -> float:
    """Fraction of query tokens found in the entity's name, description, tags or industry."""
    tokens = {t for t in _TOKEN_RE.findall(query.lower()) if len(t) > 1}
    if not tokens:
        return 0.0
    hay = " ".join(
        [entity.name, entity.description or "", " ".join(entity.tags), entity.enrichment.industry or ""]
    ).lower()
    words = set(_TOKEN_RE.findall(hay))
    return sum(1 for t in tokens if t in words) / len(tokens)


def _undirected_strengths(relationships: Iterable[Relationship]) -> dict[str, dict[str, float]]:
    adj: dict[str, dict[str, float]] = defaultdict(dict)
    for r in relationships:
        for a, b in ((r.source_id, r.target_id), (r.target_id, r.source_id)):
            if adj[a].get(b, -1.0) < r.weight:
                adj[a][b] = r.weight
    return adj


@dataclass(slots=True)
class ScoredCandidate:
    entity_id: str
    name: str
    kind: EntityKind
    score: float
    similarity: float
    relationship_strength: float
    match: str


@dataclass(slots=True)
class SearchResult:
    query: str
    candidates: list[ScoredCandidate] = field(default_factory=list)
    degraded: bool = False
    reason: str | None = None


@dataclass(slots=True)
class WarmPath:
    teammate_id: str
    teammate_name: str
    contact_id: str
    contact_name: str
    degree: int
    strength: float
    score: float


@dataclass(slots=True)
class ConnectionPath:
    strategy: str
    node_ids: list[str]
    names: list[str]
    # one entry per hop, the strongest edge between consecutive nodes
    edge_strengths: list[float]

    @property
    def hops(self) -> int:
        return len(self.node_ids) - 1

    @property
    def strength(self) -> float:
        """Product of hop strengths; 1.0 for the trivial path."""
        return math.prod(self.edge_strengths)

    def as_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "node_ids": self.node_ids,
            "names": self.names,
            "edge_strengths": self.edge_strengths,
            "hops": self.hops,
            "strength": self.strength,
        }


class PathScorer:
    """Ranks contacts for a free-text query and finds warm introduction paths."""

    def __init__(
        self,
        store: GraphStore,
        embedder: EmbeddingProvider | None = None,
        *,
        similarity_floor: float = DEFAULT_SIMILARITY_FLOOR,
    ):
        self.store = store
        self.embedder = embedder
        self.similarity_floor = similarity_floor

    async def _semantic(self, query: str, embedded: list[Entity]) -> tuple[dict[str, float], str | None]:
        if self.embedder is None:
            return {}, "no embedding provider configured"
        if not embedded:
            return {}, "no entity embeddings available"
        try:
            qv = await self.embedder.embed(query)
        except ExternalProviderError as e:
            logger.warning("Embedding provider unavailable, using keyword fallback: %s", e)
            return {}, "embedding provider unavailable"
        sims = cosine_similarities(qv, np.asarray([e.embedding for e in embedded], dtype=np.float64))
        hits = {e.id: float(s) for e, s in zip(embedded, sims) if s >= self.similarity_floor}
        return hits, None if hits else "no semantic match above similarity floor"

    async def search(self, query: str, *, limit: int = 10, target_id: str | None = None) -> SearchResult:
        if not query or not query.strip():
            raise ValidationError("query is required")
        if target_id is not None:
            self.store.get_entity(target_id)

        entities = [e for e in self.store.list_entities(include_embeddings=True) if e.id != target_id]
        by_id = {e.id: e for e in entities}

        semantic, reason = await self._semantic(query, [e for e in entities if e.embedding is not None])
        matches: dict[str, tuple[float, str]] = {k: (v, "semantic") for k, v in semantic.items()}
        if reason is not None:
            for e in entities:
                if e.id not in matches:
                    s = keyword_similarity(query, e)
                    if s > 0:
                        matches[e.id] = (s, "keyword")

        strengths = self._strengths(matches.keys(), target_id, entities)
        out = []
        for eid, (sim, how) in matches.items():
            strength = strengths.get(eid, 0.0)
            e = by_id[eid]
            out.append(
                ScoredCandidate(
                    entity_id=eid,
                    name=e.name,
                    kind=e.kind,
                    score=SIMILARITY_WEIGHT * sim + STRENGTH_WEIGHT * strength,
                    similarity=sim,
                    relationship_strength=strength,
                    match=how,
                )
            )
        out.sort(key=lambda c: (-c.score, c.entity_id))
        return SearchResult(query=query, candidates=out[: max(1, limit)], degraded=reason is not None, reason=reason)

    def _strengths(
        self, candidate_ids: Iterable[str], target_id: str | None, entities: list[Entity]
    ) -> dict[str, float]:
        """Strongest edge between each candidate and the target (or, without one, any internal entity)."""
        wanted = set(candidate_ids)
        if not wanted:
            return {}
        if target_id is not None:
            anchors = {target_id}
            rels = self.store.relationships_for(target_id)
        else:
            anchors = {e.id for e in entities if e.is_internal}
            rels = self.store.list_relationships() if anchors else []
        out: dict[str, float] = {}
        for r in rels:
            for a, b in ((r.source_id, r.target_id), (r.target_id, r.source_id)):
                if a in anchors and b in wanted and b not in anchors:
                    out[b] = max(out.get(b, 0.0), min(1.0, max(0.0, r.weight)))
        return out

    def warm_paths(self, target_id: str, *, limit: int = 10, max_hops: int = 3) -> list[WarmPath]:
        """Teammate -> external contact pairs that lead to `target_id`.

        degree is 1 for a contact who is the target itself, 2 for a contact adjacent to
        the target, and so on up to `max_hops`.
        """
        target = self.store.get_entity(target_id)
        adj = _undirected_strengths(self.store.list_relationships())

        # hops from target, bounded so 1 + hops <= max_hops
        dist = {target.id: 0}
        queue = deque([target.id])
        while queue:
            node = queue.popleft()
            if dist[node] >= max_hops - 1:
                continue
            for nxt in adj.get(node, {}):
                if nxt not in dist:
                    dist[nxt] = dist[node] + 1
                    queue.append(nxt)

        entities = {e.id: e for e in self.store.list_entities()}
        paths: list[WarmPath] = []
        for t in entities.values():
            if not t.is_internal or t.kind != EntityKind.PERSON or t.id == target.id:
                continue
            for contact_id, strength in adj.get(t.id, {}).items():
                contact = entities.get(contact_id)
                if contact is None or contact_id not in dist:
                    continue
                if contact.is_internal and contact_id != target.id:
                    continue
                degree = 1 + dist[contact_id]
                paths.append(
                    WarmPath(
                        teammate_id=t.id,
                        teammate_name=t.name,
                        contact_id=contact_id,
                        contact_name=contact.name,
                        degree=degree,
                        strength=strength,
                        score=PATH_STRENGTH_WEIGHT * strength + PATH_DEGREE_WEIGHT * degree_weight(degree),
                    )
                )
        paths.sort(key=lambda p: (-p.score, p.teammate_id, p.contact_id))
        return paths[: max(1, limit)]

    def connection_path(
        self,
        source_id: str,
        target_id: str,
        *,
        strategy: str = PATH_STRONGEST,
        max_hops: int = MAX_PATH_HOPS,
    ) -> ConnectionPath | None:
        """Best path from `source_id` to `target_id` over undirected edges, or None.

        `shortest` minimizes hops (ties broken by strength); `strongest` maximizes the
        product of edge strengths, so one weak link costs more than an extra strong hop.
        Both are limited to `max_hops`.
        """
        if strategy not in (PATH_SHORTEST, PATH_STRONGEST):
            raise ValidationError(f"unknown path strategy: {strategy}")
        if max_hops < 1:
            raise ValidationError("max_hops must be at least 1")
        source = self.store.get_entity(source_id)
        target = self.store.get_entity(target_id)
        adj = _undirected_strengths(self.store.list_relationships())

        if source.id == target.id:
            nodes = [source.id]
        elif strategy == PATH_SHORTEST:
            nodes = _fewest_hops(adj, source.id, target.id, max_hops)
        else:
            nodes = _strongest(adj, source.id, target.id, max_hops)
        if nodes is None:
            return None

        names = {e.id: e.name for e in self.store.get_entities(nodes)}
        return ConnectionPath(
            strategy=strategy,
            node_ids=nodes,
            names=[names.get(n, n) for n in nodes],
            edge_strengths=[_hop_strength(adj[a][b]) for a, b in zip(nodes, nodes[1:])],
        )


def _fewest_hops(adj: dict[str, dict[str, float]], source: str, target: str, max_hops: int) -> list[str] | None:
    # BFS by layers; within a layer keep the predecessor with the strongest path so far
    best = {source: (1.0, None)}
    frontier = [source]
    for _ in range(max_hops):
        layer: dict[str, tuple[float, str]] = {}
        for node in frontier:
            strength = best[node][0]
            for nxt, w in adj.get(node, {}).items():
                if nxt in best:
                    continue
                cand = strength * _hop_strength(w)
                if nxt not in layer or cand > layer[nxt][0] or (cand == layer[nxt][0] and node < layer[nxt][1]):
                    layer[nxt] = (cand, node)
        if not layer:
            return None
        best.update(layer)
        if target in layer:
            return _unwind(best, target)
        frontier = sorted(layer)
    return None


def _strongest(adj: dict[str, dict[str, float]], source: str, target: str, max_hops: int) -> list[str] | None:
    # Dijkstra on -log(strength) over (node, hops) states so the hop limit stays exact
    heap: list[tuple[float, int, str, tuple[str, ...]]] = [(0.0, 0, source, (source,))]
    settled: set[tuple[str, int]] = set()
    while heap:
        cost, hops, node, path = heapq.heappop(heap)
        if node == target:
            return list(path)
        if (node, hops) in settled or hops >= max_hops:
            continue
        settled.add((node, hops))
        for nxt, w in adj.get(node, {}).items():
            s = _hop_strength(w)
            if s <= 0.0 or nxt in path:
                continue
            heapq.heappush(heap, (cost - math.log(s), hops + 1, nxt, path + (nxt,)))
    return None


def _hop_strength(weight: float) -> float:
    return min(1.0, max(0.0, weight))


def _unwind(best: dict[str, tuple[float, str | None]], node: str) -> list[str]:
    out = [node]
    while best[node][1] is not None:
        node = best[node][1]
        out.append(node)
    return out[::-1]
