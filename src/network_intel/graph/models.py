from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .util import to_iso, utcnow


class EntityKind(str, Enum):
    PERSON = "person"
    ORGANIZATION = "organization"


class RelationshipKind(str, Enum):
    """Known relationship kinds. Inferred kinds outside this set are still accepted."""

    WORKS_AT = "works_at"
    FOUNDER = "founder"
    OWNER = "owner"
    DEAL_TEAM = "deal_team"
    INVESTOR = "investor"
    INVESTS_IN = "invests_in"
    CONNECTION = "connection"
    BOARD_MEMBER = "board_member"
    ADVISOR = "advisor"
    COMPETITOR = "competitor"
    PARTNER = "partner"
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    PORTFOLIO_COMPANY_OF = "portfolio_company_of"
    ACQUIRED_BY = "acquired_by"


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


_KIND_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


def relationship_kind(kind: str | RelationshipKind) -> str:
    value = kind.value if isinstance(kind, RelationshipKind) else str(kind).strip().lower()
    if not _KIND_RE.match(value):
        raise ValidationError(f"invalid relationship kind: {kind!r}")
    return value


def entity_kind(kind: str | EntityKind) -> EntityKind:
    try:
        return EntityKind(kind)
    except ValueError as e:
        raise ValidationError(f"invalid entity kind: {kind!r}") from e


class EnrichmentPayload(BaseModel):
    """Versioned enrichment document attached to an entity.

    Known fields are typed; keys the providers add on top are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: int = 1

    email: str | None = None
    domain: str | None = None
    linkedin_url: str | None = None
    industry: str | None = None
    pipeline_stage: str | None = None
    fund: str | None = None
    location: str | None = None
    year_founded: int | None = None
    employee_count: int | None = None
    external_id: str | None = None
    source: str | None = None

    curated_importance: float | None = Field(default=None, ge=0.0, le=1.0)
    relationships_extracted_at: datetime | None = None

    @classmethod
    def from_raw(cls, data: dict[str, Any] | None) -> EnrichmentPayload:
        try:
            return cls.model_validate(data or {})
        except PydanticValidationError as e:
            raise ValidationError(f"invalid enrichment payload: {e}") from e

    def merged(self, other: EnrichmentPayload) -> EnrichmentPayload:
        """Key-by-key merge; keys set on `other` win, everything else is kept."""
        data = self.model_dump(exclude_none=True)
        data.update(other.model_dump(exclude_unset=True, exclude_none=True))
        return EnrichmentPayload.model_validate(data)


@dataclass(frozen=True, slots=True)
class Evidence:
    """Provenance reference for an edge. `id` is the dedup key."""

    id: str
    source: str | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "source": self.source, "note": self.note}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Evidence:
        return cls(id=str(d["id"]), source=d.get("source"), note=d.get("note"))


@dataclass(slots=True)
class EntityCandidate:
    """Input to upsert_entity. `None` means "not supplied, keep what is stored"."""

    name: str
    kind: EntityKind | str
    description: str | None = None
    enrichment: EnrichmentPayload | None = None
    tags: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    is_internal: bool | None = None
    is_portfolio: bool | None = None
    is_pipeline: bool | None = None
    id: str | None = None


@dataclass(frozen=True, slots=True)
class Entity:
    id: str
    name: str
    kind: EntityKind
    description: str | None = None
    enrichment: EnrichmentPayload = field(default_factory=EnrichmentPayload)
    tags: tuple[str, ...] = ()
    embedding: list[float] | None = None
    is_internal: bool = False
    is_portfolio: bool = False
    is_pipeline: bool = False
    importance: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class Relationship:
    """A directed, typed edge. (source_id, target_id, kind) is the natural key."""

    source_id: str
    target_id: str
    kind: str
    weight: float
    evidence: tuple[Evidence, ...] = ()
    first_seen: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source_id, self.target_id, self.kind)

    def other(self, entity_id: str) -> str:
        return self.target_id if self.source_id == entity_id else self.source_id


@dataclass(frozen=True, slots=True)
class Interaction:
    id: str
    entity_id: str | None
    kind: str
    occurred_at: datetime
    content: str = ""
    embedding: list[float] | None = None
    summary: str | None = None
    themes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SyncState:
    status: SyncStatus
    message: str | None
    run_id: str | None
    updated_at: datetime
    last_success_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "run_id": self.run_id,
            "updated_at": to_iso(self.updated_at),
            "last_success_at": to_iso(self.last_success_at),
        }


@dataclass(frozen=True, slots=True)
class SyncRun:
    id: str
    status: SyncStatus
    message: str | None
    started_at: datetime
    finished_at: datetime | None
    stages: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "message": self.message,
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "stages": self.stages,
        }


@dataclass(frozen=True, slots=True)
class EntityMetrics:
    entity_id: str
    degree: int
    pagerank: float | None
    betweenness: float | None
    closeness: float | None
    importance: float
    community: int | None = None


@dataclass(slots=True)
class MergeOutcome:
    survivor_id: str
    removed_ids: list[str]
    relationships_repointed: int = 0
    self_loops_dropped: int = 0
    interactions_repointed: int = 0


@dataclass(frozen=True, slots=True)
class GraphStats:
    entities: int
    relationships: int
    interactions: int
    entities_with_embeddings: int
    interactions_with_embeddings: int
    sync_state: SyncState

    @property
    def embedding_coverage(self) -> float:
        if not self.entities:
            return 0.0
        return self.entities_with_embeddings / self.entities

    def as_dict(self) -> dict[str, Any]:
        return {
            "entities": self.entities,
            "relationships": self.relationships,
            "interactions": self.interactions,
            "entities_with_embeddings": self.entities_with_embeddings,
            "interactions_with_embeddings": self.interactions_with_embeddings,
            "embedding_coverage": round(self.embedding_coverage, 4),
            "sync_state": self.sync_state.as_dict(),
        }
