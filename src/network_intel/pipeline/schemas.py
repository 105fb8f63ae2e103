"""Schemas for untrusted provider output (CRM records, LLM JSON).

Anything a provider returns is validated here before it reaches the store; output that
does not validate is quarantined (counted and logged) by the calling stage.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..graph.models import EntityKind, RelationshipKind

M = TypeVar("M", bound=BaseModel)


class ExternalRelationshipRef(BaseModel):
    target_name: str = Field(min_length=1)
    target_kind: EntityKind = EntityKind.ORGANIZATION
    kind: str = Field(min_length=1)
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    note: str | None = None


class ExternalInteraction(BaseModel):
    id: str = Field(min_length=1)
    kind: str = "note"
    occurred_at: datetime
    content: str = ""


class ExternalRecord(BaseModel):
    """One organization or person as exported by the relationship data provider."""

    model_config = ConfigDict(extra="ignore")

    external_id: str | None = None
    kind: EntityKind
    name: str = Field(min_length=1)
    description: str | None = None
    email: str | None = None
    domain: str | None = None
    industry: str | None = None
    location: str | None = None
    pipeline_stage: str | None = None
    fund: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_internal: bool | None = None
    relationships: list[ExternalRelationshipRef] = Field(default_factory=list)
    interactions: list[ExternalInteraction] = Field(default_factory=list)
    enrichment: dict[str, Any] = Field(default_factory=dict)


class SummaryDocument(BaseModel):
    summary: str = Field(min_length=1)
    themes: list[str] = Field(default_factory=list)


class InferredRelationship(BaseModel):
    target_name: str = Field(min_length=1)
    target_type: EntityKind
    relationship_type: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: str | None = None


class InferredRelationships(BaseModel):
    schema_version: int = 1
    relationships: list[InferredRelationship] = Field(default_factory=list)


INFERRED_KIND_MAP: dict[str, RelationshipKind] = {
    "competitor": RelationshipKind.COMPETITOR,
    "partner": RelationshipKind.PARTNER,
    "strategic_alliance": RelationshipKind.PARTNER,
    "customer": RelationshipKind.CUSTOMER,
    "vendor": RelationshipKind.SUPPLIER,
    "supplier": RelationshipKind.SUPPLIER,
    "investor": RelationshipKind.INVESTOR,
    "invested_in": RelationshipKind.INVESTS_IN,
    "board_member": RelationshipKind.BOARD_MEMBER,
    "advisor": RelationshipKind.ADVISOR,
    "subsidiary": RelationshipKind.PORTFOLIO_COMPANY_OF,
    "parent_company": RelationshipKind.ACQUIRED_BY,
    "former_employee": RelationshipKind.WORKS_AT,
    "employee": RelationshipKind.WORKS_AT,
    "founder": RelationshipKind.FOUNDER,
}


def map_inferred_kind(relationship_type: str) -> str | None:
    key = re.sub(r"[\s\-]+", "_", relationship_type.strip().lower())
    kind = INFERRED_KIND_MAP.get(key)
    return kind.value if kind is not None else None


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_model_output(model: type[M], text: str) -> M:
    """Validate generated JSON against `model`; markdown code fences are tolerated."""
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        return model.model_validate_json(cleaned)
    except PydanticValidationError as e:
        raise ValidationError(f"{model.__name__} rejected provider output: {e.error_count()} error(s)") from e


SUMMARY_INSTRUCTIONS = (
    "Summarize the interaction below for an investment team's CRM. "
    'Respond with JSON only: {"summary": "<2-3 sentences>", "themes": ["<short theme>", ...]}.'
)

INFERENCE_INSTRUCTIONS = (
    "You extract business relationships from a company or person profile. "
    "Only report relationships stated or strongly implied by the text. "
    'Respond with JSON only: {"relationships": [{"target_name": str, '
    '"target_type": "person" | "organization", "relationship_type": one of '
    f"{sorted(INFERRED_KIND_MAP)}, "
    '"confidence": number between 0 and 1, "evidence": short quote}]}.'
)
