from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from .models import (
    Entity,
    EntityCandidate,
    EntityKind,
    EntityMetrics,
    Evidence,
    GraphStats,
    Interaction,
    MergeOutcome,
    Relationship,
    SyncRun,
    SyncState,
    SyncStatus,
)


class GraphStore(Protocol):
    """Read/write contract of the entity/edge store.

    Implementations are the only writers of entities and relationships and own the
    key-uniqueness and cascade-delete invariants.
    """

    embedding_dim: int

    def init(self) -> None: ...

    # --- entities ---
    def upsert_entity(self, candidate: EntityCandidate) -> str: ...

    def delete_entity(self, entity_id: str) -> None: ...

    def get_entity(self, entity_id: str) -> Entity: ...

    def get_entities(self, ids: Iterable[str], *, include_embeddings: bool = False) -> list[Entity]: ...

    def find_entity(self, name: str, kind: EntityKind | str) -> Entity | None: ...

    def list_entities(
        self, *, kind: EntityKind | str | None = None, include_embeddings: bool = False
    ) -> list[Entity]: ...

    def entities_missing_embedding(self, *, kind: EntityKind | str | None = None) -> list[Entity]: ...

    def set_entity_embedding(self, entity_id: str, vector: list[float]) -> None: ...

    def set_flags(
        self,
        ids: Iterable[str],
        *,
        is_internal: bool | None = None,
        is_portfolio: bool | None = None,
        is_pipeline: bool | None = None,
    ) -> int: ...

    def merge_entities(self, survivor_id: str, duplicate_ids: list[str]) -> MergeOutcome: ...

    # --- relationships ---
    def upsert_relationship(
        self,
        source_id: str,
        target_id: str,
        kind: str,
        weight: float = 0.5,
        evidence: Iterable[Evidence] = (),
    ) -> Relationship: ...

    def list_relationships(self) -> list[Relationship]: ...

    def relationships_for(self, entity_id: str) -> list[Relationship]: ...

    def relationships_among(self, ids: Iterable[str]) -> list[Relationship]: ...

    def neighbor_ids(self, entity_id: str) -> set[str]: ...

    def degrees(self) -> dict[str, int]: ...

    # --- interactions ---
    def add_interaction(self, interaction: Interaction) -> str: ...

    def list_interactions(self, entity_id: str) -> list[Interaction]: ...

    def interactions_missing_summary(self, *, limit: int | None = None) -> list[Interaction]: ...

    def interactions_missing_embedding(self, *, limit: int | None = None) -> list[Interaction]: ...

    def set_interaction_summary(self, interaction_id: str, summary: str, themes: list[str]) -> None: ...

    def set_interaction_embedding(self, interaction_id: str, vector: list[float]) -> None: ...

    # --- metrics ---
    def replace_metrics(self, rows: list[EntityMetrics], *, mode: str) -> None: ...

    def get_metrics(self, entity_id: str) -> EntityMetrics | None: ...

    def list_metrics(self) -> list[EntityMetrics]: ...

    # --- sync state ---
    def try_begin_run(self, run_id: str, message: str, *, stale_after_s: float | None = None) -> bool: ...

    def touch_run(self, run_id: str, message: str) -> None: ...

    def finish_run(
        self, run_id: str, status: SyncStatus, message: str, stages: list[dict[str, Any]]
    ) -> None: ...

    def get_sync_state(self) -> SyncState: ...

    def list_sync_runs(self, *, limit: int = 20) -> list[SyncRun]: ...

    def stats(self) -> GraphStats: ...
