"""Entity/edge storage for the network graph.

The SQLite store is authoritative. Neo4j is an optional read mirror used for graph
analytics.
"""

from .models import (
    EnrichmentPayload,
    Entity,
    EntityCandidate,
    EntityKind,
    Evidence,
    Interaction,
    Relationship,
    RelationshipKind,
    SyncStatus,
)
from .sqlite_store import SQLiteGraphStore, combine_weights
from .store import GraphStore

__all__ = [
    "EnrichmentPayload",
    "Entity",
    "EntityCandidate",
    "EntityKind",
    "Evidence",
    "GraphStore",
    "Interaction",
    "Relationship",
    "RelationshipKind",
    "SQLiteGraphStore",
    "SyncStatus",
    "combine_weights",
]
