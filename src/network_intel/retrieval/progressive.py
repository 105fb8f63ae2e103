from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ValidationError
from ..graph.models import Entity, Relationship
from ..graph.store import GraphStore
from ..graph.util import to_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 50
MAX_NODES_CAP = 200
DEFAULT_TIMEOUT_S = 5.0


class RetrievalMode(str, Enum):
    OVERVIEW = "overview"
    HIGH_IMPORTANCE = "high-importance"
    PORTFOLIO = "portfolio"
    INTERNAL = "internal"
    PIPELINE = "pipeline"
    RECENT = "recent"
    HUBS = "hubs"

    @classmethod
    def parse(cls, value: str | RetrievalMode) -> RetrievalMode:
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValidationError(f"unknown retrieval mode {value!r} (expected one of: {choices})") from None


SortKey = Callable[[Entity], Any]


@dataclass(frozen=True, slots=True)
class ModePreset:
    keep: Callable[[Entity], bool]
    order: Callable[[dict[str, int]], SortKey]


def _by_importance(_degrees: dict[str, int]) -> SortKey:
    return lambda e: (-e.importance, e.name.lower(), e.id)


PRESETS: dict[RetrievalMode, ModePreset] = {
    RetrievalMode.OVERVIEW: ModePreset(
        keep=lambda e: e.is_internal or e.importance >= 0.5,
        order=lambda _d: lambda e: (not e.is_internal, -e.importance, e.name.lower(), e.id),
    ),
    RetrievalMode.HIGH_IMPORTANCE: ModePreset(keep=lambda e: e.importance >= 0.7, order=_by_importance),
    RetrievalMode.PORTFOLIO: ModePreset(keep=lambda e: e.is_portfolio, order=_by_importance),
    RetrievalMode.INTERNAL: ModePreset(keep=lambda e: e.is_internal, order=_by_importance),
    RetrievalMode.PIPELINE: ModePreset(keep=lambda e: e.is_pipeline, order=_by_importance),
    RetrievalMode.RECENT: ModePreset(
        keep=lambda e: True,
        order=lambda _d: lambda e: (-e.updated_at.timestamp(), e.id),
    ),
    RetrievalMode.HUBS: ModePreset(
        keep=lambda e: True,
        order=lambda d: lambda e: (-d.get(e.id, 0), -e.importance, e.id),
    ),
}


def node_view(e: Entity) -> dict[str, Any]:
    return {
        "id": e.id,
        "name": e.name,
        "kind": e.kind.value,
        "description": e.description,
        "tags": list(e.tags),
        "importance": e.importance,
        "is_internal": e.is_internal,
        "is_portfolio": e.is_portfolio,
        "is_pipeline": e.is_pipeline,
        "industry": e.enrichment.industry,
        "pipeline_stage": e.enrichment.pipeline_stage,
        "updated_at": to_iso(e.updated_at),
    }


def edge_view(r: Relationship) -> dict[str, Any]:
    return {
        "source_id": r.source_id,
        "target_id": r.target_id,
        "kind": r.kind,
        "weight": r.weight,
        "evidence_count": len(r.evidence),
        "last_seen": to_iso(r.last_seen),
    }


@dataclass(slots=True)
class GraphSlice:
    nodes: list[Entity] = field(default_factory=list)
    edges: list[Relationship] = field(default_factory=list)
    has_more: bool = False
    total_available: int = 0
    truncated: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node_view(e) for e in self.nodes],
            "edges": [edge_view(r) for r in self.edges],
            "has_more": self.has_more,
            "total_available": self.total_available,
            "truncated": self.truncated,
        }


class _Deadline:
    def __init__(self, timeout_s: float, clock: Callable[[], float]):
        self._clock = clock
        self._at = clock() + timeout_s

    def passed(self) -> bool:
        return self._clock() >= self._at


class ProgressiveRetrievalEngine:
    """Serves the graph in bounded slices: an initial view per mode, then 1-hop expansions.

    Calls are stateless. The caller passes the ids it already holds so expansions never
    resend a node. Node gathering is bounded by a deadline; when it passes, the nodes gathered
    so far are returned with their edges, `has_more=True` and `truncated=True`.
    """

    def __init__(
        self,
        store: GraphStore,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_nodes_cap: int = MAX_NODES_CAP,
        default_max_nodes: int = DEFAULT_MAX_NODES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.timeout_s = timeout_s
        self.max_nodes_cap = max_nodes_cap
        self.default_max_nodes = default_max_nodes
        self._clock = clock

    def clamp(self, max_nodes: int | None) -> int:
        if max_nodes is None:
            max_nodes = self.default_max_nodes
        return max(1, min(int(max_nodes), self.max_nodes_cap))

    def _take(self, ranked: list[Entity], limit: int, deadline: _Deadline) -> tuple[list[Entity], bool]:
        out: list[Entity] = []
        for e in ranked[:limit]:
            if deadline.passed():
                return out, True
            out.append(e)
        return out, False

    def load_initial(self, mode: str | RetrievalMode = RetrievalMode.OVERVIEW, max_nodes: int | None = None) -> GraphSlice:
        deadline = _Deadline(self.timeout_s, self._clock)
        mode = RetrievalMode.parse(mode)
        preset = PRESETS[mode]
        limit = self.clamp(max_nodes)

        degrees = self.store.degrees() if mode == RetrievalMode.HUBS else {}
        matched = [e for e in self.store.list_entities() if preset.keep(e)]
        matched.sort(key=preset.order(degrees))

        nodes, truncated = self._take(matched, limit, deadline)
        # edges always accompany the nodes actually returned, even on a truncated slice
        edges = self.store.relationships_among(e.id for e in nodes) if nodes else []

        if truncated:
            logger.warning("load_initial(%s) hit the %.1fs deadline after %d nodes", mode.value, self.timeout_s, len(nodes))
        return GraphSlice(
            nodes=nodes,
            edges=edges,
            has_more=truncated or len(matched) > len(nodes),
            total_available=len(matched),
            truncated=truncated,
        )

    def expand(self, node_id: str, already_loaded: Iterable[str] = (), max_nodes: int | None = None) -> GraphSlice:
        deadline = _Deadline(self.timeout_s, self._clock)
        self.store.get_entity(node_id)
        loaded = set(already_loaded)
        limit = self.clamp(max_nodes)

        weight_to: dict[str, float] = {}
        for r in self.store.relationships_for(node_id):
            other = r.other(node_id)
            if other == node_id or other in loaded:
                continue
            weight_to[other] = max(weight_to.get(other, 0.0), r.weight)

        if not weight_to:
            return GraphSlice()

        candidates = self.store.get_entities(weight_to)
        candidates.sort(key=lambda e: (-weight_to[e.id], -e.importance, e.id))

        nodes, truncated = self._take(candidates, limit, deadline)
        edges: list[Relationship] = []
        if nodes:
            new_ids = {e.id for e in nodes}
            visible = new_ids | loaded | {node_id}
            edges = [
                r
                for r in self.store.relationships_among(visible)
                if r.source_id in new_ids or r.target_id in new_ids
            ]

        if truncated:
            logger.warning("expand(%s) hit the %.1fs deadline after %d nodes", node_id, self.timeout_s, len(nodes))
        return GraphSlice(
            nodes=nodes,
            edges=edges,
            has_more=truncated or len(candidates) > len(nodes),
            total_available=len(candidates),
            truncated=truncated,
        )
