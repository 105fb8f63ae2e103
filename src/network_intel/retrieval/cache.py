from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


def edge_key(edge: dict[str, Any]) -> str:
    return f"{edge['source_id']}|{edge['target_id']}|{edge['kind']}"


@dataclass
class GraphView:
    """Client-side accumulation of graph slices.

    Merging is idempotent: nodes are keyed by id and edges by (source, target, kind), and a
    later copy of a node or edge replaces the earlier one.
    """

    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    edges: dict[str, dict[str, Any]] = field(default_factory=dict)
    has_more: bool = False

    def merge(self, payload: dict[str, Any]) -> tuple[int, int]:
        """Merge one slice (as returned by the API); returns (new nodes, new edges)."""
        added_nodes = added_edges = 0
        for n in payload.get("nodes") or []:
            if n["id"] not in self.nodes:
                added_nodes += 1
            self.nodes[n["id"]] = n
        for e in payload.get("edges") or []:
            k = edge_key(e)
            if k not in self.edges:
                added_edges += 1
            self.edges[k] = e
        self.has_more = bool(payload.get("has_more", False))
        return added_nodes, added_edges

    def known_ids(self) -> list[str]:
        return sorted(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes


@dataclass(slots=True)
class _Entry:
    value: GraphView
    stored_at: float


class GraphViewCache:
    """Bounded, age-limited cache of GraphViews keyed by an arbitrary string (e.g. mode)."""

    def __init__(
        self,
        *,
        max_age_s: float = 300.0,
        max_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_age_s = max_age_s
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    def get(self, key: str) -> GraphView | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.max_age_s:
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, view: GraphView) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = _Entry(value=view, stored_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
