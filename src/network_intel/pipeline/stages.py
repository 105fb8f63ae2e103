from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..dedup.engine import DedupEngine
from ..dedup.validation import DEFAULT_POLICY, NamePolicy, validate_name
from ..graph.models import (
    EnrichmentPayload,
    Entity,
    EntityCandidate,
    EntityKind,
    Evidence,
    Interaction,
    RelationshipKind,
)
from ..graph.neo4j_store import Neo4jGraphMirror
from ..graph.store import GraphStore
from ..graph.util import normalize_name, utcnow
from ..metrics.engine import MetricsEngine
from ..providers.base import EmbeddingProvider, RelationshipDataProvider, TextGenerationProvider
from .batching import run_in_batches
from .schemas import (
    INFERENCE_INSTRUCTIONS,
    SUMMARY_INSTRUCTIONS,
    ExternalRecord,
    InferredRelationships,
    SummaryDocument,
    map_inferred_kind,
    parse_model_output,
)

logger = logging.getLogger(__name__)

# People holding one of these edges into a portfolio company are portfolio people too.
PORTFOLIO_INHERITING_KINDS = frozenset(
    {RelationshipKind.FOUNDER.value, RelationshipKind.OWNER.value, RelationshipKind.DEAL_TEAM.value}
)

MAX_PROMPT_CHARS = 8000


def entity_text(e: Entity) -> str:
    """Text an entity is embedded from."""
    parts = [e.name, e.kind.value]
    if e.description:
        parts.append(e.description)
    p = e.enrichment
    parts.extend(x for x in (p.industry, p.location, p.pipeline_stage, p.fund) if x)
    if e.tags:
        parts.append(", ".join(e.tags))
    return "\n".join(parts)


def _record_key(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("external_id") or raw.get("name") or "?")
    return repr(raw)[:60]


class EnrichmentStages:
    """The pipeline's stage functions. Each is idempotent and returns a details dict."""

    def __init__(
        self,
        store: GraphStore,
        *,
        dedup: DedupEngine,
        metrics: MetricsEngine,
        embedder: EmbeddingProvider | None = None,
        text_generator: TextGenerationProvider | None = None,
        relationship_provider: RelationshipDataProvider | None = None,
        mirror: Neo4jGraphMirror | None = None,
        list_filter: str | None = None,
        batch_size: int = 10,
        batch_delay_s: float = 1.0,
        portfolio_stages: list[str] | None = None,
        delete_invalid_names: bool = False,
        name_policy: NamePolicy = DEFAULT_POLICY,
        inference_limit: int = 200,
    ):
        self.store = store
        self.dedup = dedup
        self.metrics = metrics
        self.embedder = embedder
        self.text_generator = text_generator
        self.relationship_provider = relationship_provider
        self.mirror = mirror
        self.list_filter = list_filter
        self.batch_size = batch_size
        self.batch_delay_s = batch_delay_s
        self.portfolio_stages = [s.lower() for s in (portfolio_stages or [])]
        self.delete_invalid_names = delete_invalid_names
        self.name_policy = name_policy
        self.inference_limit = inference_limit

    # (1) and (6)
    async def _cleanup(self) -> dict[str, Any]:
        report = await asyncio.to_thread(self.dedup.cleanup, dry_run=False, delete_invalid=self.delete_invalid_names)
        if report.applied and report.applied.failed:
            logger.warning("Dedup groups failed: %s", report.applied.failed)
        return report.summary()

    async def pre_cleanup(self) -> dict[str, Any]:
        return await self._cleanup()

    async def post_cleanup(self) -> dict[str, Any]:
        return await self._cleanup()

    # (2)
    def _ingest_record(self, rec: ExternalRecord) -> None:
        fields = {
            "email": rec.email,
            "domain": rec.domain,
            "industry": rec.industry,
            "location": rec.location,
            "pipeline_stage": rec.pipeline_stage,
            "fund": rec.fund,
            "external_id": rec.external_id,
            "source": "crm",
        }
        enrichment = EnrichmentPayload.from_raw(
            {**rec.enrichment, **{k: v for k, v in fields.items() if v is not None}}
        )
        entity_id = self.store.upsert_entity(
            EntityCandidate(
                name=rec.name,
                kind=rec.kind,
                description=rec.description,
                enrichment=enrichment,
                tags=list(rec.tags),
                is_internal=rec.is_internal,
            )
        )
        for ref in rec.relationships:
            target = self.store.find_entity(ref.target_name, ref.target_kind)
            target_id = (
                target.id
                if target
                else self.store.upsert_entity(
                    EntityCandidate(
                        name=ref.target_name, kind=ref.target_kind, enrichment=EnrichmentPayload(source="crm")
                    )
                )
            )
            if target_id == entity_id:
                continue
            self.store.upsert_relationship(
                entity_id,
                target_id,
                ref.kind,
                ref.weight,
                [Evidence(id=f"crm:{rec.external_id or entity_id}:{target_id}:{ref.kind}", source="crm", note=ref.note)],
            )
        for it in rec.interactions:
            self.store.add_interaction(
                Interaction(
                    id=it.id, entity_id=entity_id, kind=it.kind, occurred_at=it.occurred_at, content=it.content
                )
            )

    async def external_sync(self) -> dict[str, Any]:
        if self.relationship_provider is None:
            logger.info("No relationship provider configured; skipping external sync")
            return {"skipped": "no relationship provider configured"}
        records = await self.relationship_provider.fetch_external_relationships(self.list_filter)

        async def ingest(raw: Any) -> None:
            await asyncio.to_thread(self._ingest_record, ExternalRecord.model_validate(raw))

        # Store writes only; no provider rate limit to respect here.
        outcome = await run_in_batches(
            records, ingest, batch_size=max(self.batch_size, 50), key=_record_key, label="record"
        )
        outcome.raise_if_fatal("records")
        return {"records": outcome.as_dict()}

    # (3)
    async def enrichment(self) -> dict[str, Any]:
        details: dict[str, Any] = {}
        if self.embedder is None:
            details["entity_embeddings"] = {"skipped": "no embedding provider configured"}
        else:
            embedder = self.embedder

            async def embed_entity(e: Entity) -> None:
                vector = await embedder.embed(entity_text(e))
                await asyncio.to_thread(self.store.set_entity_embedding, e.id, vector)

            details["entity_embeddings"] = (
                await run_in_batches(
                    await asyncio.to_thread(self.store.entities_missing_embedding),
                    embed_entity,
                    batch_size=self.batch_size,
                    delay_s=self.batch_delay_s,
                    key=lambda e: e.id,
                    label="entity embedding",
                )
            ).as_dict()

        if self.text_generator is None:
            details["summaries"] = {"skipped": "no text generator configured"}
        else:
            generator = self.text_generator

            async def summarize(i: Interaction) -> None:
                raw = await generator.summarize(i.content[:MAX_PROMPT_CHARS], SUMMARY_INSTRUCTIONS)
                doc = parse_model_output(SummaryDocument, raw)
                await asyncio.to_thread(self.store.set_interaction_summary, i.id, doc.summary, doc.themes)

            details["summaries"] = (
                await run_in_batches(
                    await asyncio.to_thread(self.store.interactions_missing_summary),
                    summarize,
                    batch_size=self.batch_size,
                    delay_s=self.batch_delay_s,
                    key=lambda i: i.id,
                    label="interaction summary",
                )
            ).as_dict()

        if self.embedder is not None:
            embedder = self.embedder

            async def embed_interaction(i: Interaction) -> None:
                text = f"{i.summary}\n\n{i.content}" if i.summary else i.content
                vector = await embedder.embed(text[:MAX_PROMPT_CHARS])
                await asyncio.to_thread(self.store.set_interaction_embedding, i.id, vector)

            details["interaction_embeddings"] = (
                await run_in_batches(
                    await asyncio.to_thread(self.store.interactions_missing_embedding),
                    embed_interaction,
                    batch_size=self.batch_size,
                    delay_s=self.batch_delay_s,
                    key=lambda i: i.id,
                    label="interaction embedding",
                )
            ).as_dict()
        return details

    # (4)
    def _apply_inferred(self, source: Entity, doc: InferredRelationships) -> int:
        created = 0
        for rel in doc.relationships:
            if normalize_name(rel.target_name) == normalize_name(source.name):
                continue
            verdict = validate_name(rel.target_name, kind=rel.target_type, policy=self.name_policy)
            if not verdict.valid:
                logger.info("Skipping inferred target %r (%s)", rel.target_name, verdict.reason)
                continue
            kind = map_inferred_kind(rel.relationship_type)
            if kind is None:
                logger.info("Skipping unmapped relationship type %r", rel.relationship_type)
                continue
            target = self.store.find_entity(rel.target_name, rel.target_type)
            target_id = (
                target.id
                if target
                else self.store.upsert_entity(
                    EntityCandidate(
                        name=rel.target_name,
                        kind=rel.target_type,
                        enrichment=EnrichmentPayload(source="relationship_inference"),
                    )
                )
            )
            self.store.upsert_relationship(
                source.id,
                target_id,
                kind,
                rel.confidence,
                [Evidence(id=f"inference:{source.id}:{target_id}:{kind}", source="ai_inference", note=rel.evidence)],
            )
            created += 1
        self.store.upsert_entity(
            EntityCandidate(
                name=source.name,
                kind=source.kind,
                enrichment=EnrichmentPayload(relationships_extracted_at=utcnow()),
            )
        )
        return created

    async def relationship_inference(self) -> dict[str, Any]:
        if self.text_generator is None:
            logger.info("No text generator configured; skipping relationship inference")
            return {"skipped": "no text generator configured"}
        generator = self.text_generator
        pending = [
            e
            for e in self.store.list_entities()
            if e.enrichment.relationships_extracted_at is None and (e.description or e.enrichment.industry)
        ][: self.inference_limit]
        edges = 0

        async def infer(e: Entity) -> None:
            nonlocal edges
            raw = await generator.summarize(entity_text(e)[:MAX_PROMPT_CHARS], INFERENCE_INSTRUCTIONS)
            doc = parse_model_output(InferredRelationships, raw)
            created = await asyncio.to_thread(self._apply_inferred, e, doc)
            edges += created

        outcome = await run_in_batches(
            pending,
            infer,
            batch_size=self.batch_size,
            delay_s=self.batch_delay_s,
            key=lambda e: e.id,
            label="relationship inference",
        )
        return {"entities": outcome.as_dict(), "relationships_upserted": edges}

    # (5)
    def _is_portfolio_stage(self, stage: str | None) -> bool:
        if not stage:
            return False
        s = stage.lower()
        return any(p in s for p in self.portfolio_stages)

    async def flag_propagation(self) -> dict[str, Any]:
        orgs = self.store.list_entities(kind=EntityKind.ORGANIZATION)
        portfolio_orgs = [o.id for o in orgs if self._is_portfolio_stage(o.enrichment.pipeline_stage)]
        pipeline_orgs = [
            o.id
            for o in orgs
            if o.enrichment.pipeline_stage and not self._is_portfolio_stage(o.enrichment.pipeline_stage)
        ]
        orgs_flagged = self.store.set_flags(portfolio_orgs, is_portfolio=True)
        pipeline_flagged = self.store.set_flags(pipeline_orgs, is_pipeline=True)

        portfolio_set = set(portfolio_orgs) | {o.id for o in orgs if o.is_portfolio}
        linked = {
            r.source_id
            for r in self.store.list_relationships()
            if r.kind in PORTFOLIO_INHERITING_KINDS and r.target_id in portfolio_set
        }
        people = [e.id for e in self.store.get_entities(linked) if e.kind == EntityKind.PERSON]
        people_flagged = self.store.set_flags(people, is_portfolio=True)
        return {
            "portfolio_orgs": orgs_flagged,
            "pipeline_orgs": pipeline_flagged,
            "portfolio_people": people_flagged,
        }

    # (7)
    async def metrics_refresh(self) -> dict[str, Any]:
        details: dict[str, Any] = {}
        if self.mirror is not None and getattr(self.metrics.analytics, "name", None) == "neo4j-gds":
            # GDS reads the mirror, so it must reflect this run's edges first.
            await asyncio.to_thread(self._refresh_mirror)
        report = await asyncio.to_thread(self.metrics.recompute)
        details["metrics"] = report.as_dict()
        if self.mirror is not None:
            details["mirror"] = await asyncio.to_thread(self._refresh_mirror)
        return details

    def _refresh_mirror(self) -> dict[str, int]:
        if self.mirror is None:
            return {}
        return self.mirror.refresh(
            entities=self.store.list_entities(), relationships=self.store.list_relationships()
        )
