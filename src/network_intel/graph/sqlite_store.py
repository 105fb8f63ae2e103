from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..errors import NotFoundError, ValidationError
from .models import (
    EnrichmentPayload,
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
    entity_kind,
    relationship_kind,
)
from .util import batched, from_iso, normalize_name, to_iso, utcnow

logger = logging.getLogger(__name__)

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS entities (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  name_key TEXT NOT NULL,
  kind TEXT NOT NULL,
  description TEXT,
  enrichment_json TEXT NOT NULL DEFAULT '{}',
  tags_json TEXT NOT NULL DEFAULT '[]',
  embedding_json TEXT,
  is_internal INTEGER NOT NULL DEFAULT 0,
  is_portfolio INTEGER NOT NULL DEFAULT 0,
  is_pipeline INTEGER NOT NULL DEFAULT 0,
  importance REAL NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(name_key, kind)
);

CREATE TABLE IF NOT EXISTS relationships (
  source_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
  target_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
  kind TEXT NOT NULL,
  weight REAL NOT NULL,
  evidence_json TEXT NOT NULL DEFAULT '[]',
  first_seen TEXT NOT NULL,
  last_seen TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY (source_id, target_id, kind)
);

CREATE TABLE IF NOT EXISTS interactions (
  id TEXT PRIMARY KEY,
  entity_id TEXT REFERENCES entities(id) ON DELETE SET NULL,
  kind TEXT NOT NULL,
  occurred_at TEXT NOT NULL,
  content TEXT NOT NULL DEFAULT '',
  embedding_json TEXT,
  summary TEXT,
  themes_json TEXT NOT NULL DEFAULT '[]',
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entity_metrics (
  entity_id TEXT PRIMARY KEY REFERENCES entities(id) ON DELETE CASCADE,
  degree INTEGER NOT NULL,
  pagerank REAL,
  betweenness REAL,
  closeness REAL,
  importance REAL NOT NULL,
  community INTEGER,
  mode TEXT NOT NULL,
  computed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_state (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  status TEXT NOT NULL,
  message TEXT,
  run_id TEXT,
  updated_at TEXT NOT NULL,
  last_success_at TEXT
);

CREATE TABLE IF NOT EXISTS sync_runs (
  id TEXT PRIMARY KEY,
  status TEXT NOT NULL,
  message TEXT,
  started_at TEXT NOT NULL,
  finished_at TEXT,
  stages_json TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_id);
CREATE INDEX IF NOT EXISTS idx_interactions_entity ON interactions(entity_id);
CREATE INDEX IF NOT EXISTS idx_entities_importance ON entities(importance);
"""

_ENTITY_COLUMNS = (
    "id, name, kind, description, enrichment_json, tags_json, {embedding} AS embedding_json, "
    "is_internal, is_portfolio, is_pipeline, importance, created_at, updated_at"
)

# SQLite's default host-parameter limit is 999; stay well under it.
_MAX_VARS = 400


def combine_weights(existing: float, observed: float) -> float:
    """Weight combination rule for re-observed edges: the stronger observation wins.

    max() is order-independent, so re-running a stage or merging entities yields the
    same weight regardless of the order edges were seen in.
    """
    return max(float(existing), float(observed))


def _merge_evidence(existing: list[dict[str, Any]], new: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for ev in [*existing, *new]:
        out.setdefault(str(ev["id"]), ev)
    return list(out.values())


def _union(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    return list(dict.fromkeys([*existing, *(t.strip() for t in new if t and t.strip())]))


def _check_weight(weight: float) -> float:
    w = float(weight)
    if not 0.0 <= w <= 1.0:
        raise ValidationError(f"relationship weight must be in [0,1], got {weight}")
    return w


def _row_to_entity(row: sqlite3.Row) -> Entity:
    emb = row["embedding_json"]
    return Entity(
        id=row["id"],
        name=row["name"],
        kind=EntityKind(row["kind"]),
        description=row["description"],
        enrichment=EnrichmentPayload.model_validate_json(row["enrichment_json"]),
        tags=tuple(json.loads(row["tags_json"])),
        embedding=json.loads(emb) if emb else None,
        is_internal=bool(row["is_internal"]),
        is_portfolio=bool(row["is_portfolio"]),
        is_pipeline=bool(row["is_pipeline"]),
        importance=float(row["importance"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _row_to_relationship(row: sqlite3.Row) -> Relationship:
    return Relationship(
        source_id=row["source_id"],
        target_id=row["target_id"],
        kind=row["kind"],
        weight=float(row["weight"]),
        evidence=tuple(Evidence.from_dict(e) for e in json.loads(row["evidence_json"])),
        first_seen=from_iso(row["first_seen"]),
        last_seen=from_iso(row["last_seen"]),
    )


def _row_to_interaction(row: sqlite3.Row) -> Interaction:
    emb = row["embedding_json"]
    return Interaction(
        id=row["id"],
        entity_id=row["entity_id"],
        kind=row["kind"],
        occurred_at=from_iso(row["occurred_at"]),
        content=row["content"],
        embedding=json.loads(emb) if emb else None,
        summary=row["summary"],
        themes=tuple(json.loads(row["themes_json"])),
    )


def _row_to_sync_state(row: sqlite3.Row) -> SyncState:
    return SyncState(
        status=SyncStatus(row["status"]),
        message=row["message"],
        run_id=row["run_id"],
        updated_at=from_iso(row["updated_at"]),
        last_success_at=from_iso(row["last_success_at"]),
    )


@dataclass
class SQLiteGraphStore:
    """Transactional entity/edge store on SQLite.

    Every write runs inside a single `BEGIN IMMEDIATE` transaction, so a crash never
    leaves an entity deleted with its edges still present (or the reverse).
    """

    path: str
    embedding_dim: int = 384

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(os.path.expanduser(self.path), timeout=30.0, isolation_level=None)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON")
        return con

    def init(self) -> None:
        parent = os.path.dirname(os.path.expanduser(self.path))
        if parent:
            os.makedirs(parent, exist_ok=True)
        con = self.connect()
        try:
            con.executescript(SCHEMA)
            con.execute(
                "INSERT OR IGNORE INTO sync_state(id, status, message, updated_at) VALUES (1, ?, NULL, ?)",
                (SyncStatus.IDLE.value, to_iso(utcnow())),
            )
        finally:
            con.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        con = self.connect()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield con
            except BaseException:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        finally:
            con.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        con = self.connect()
        try:
            yield con
        finally:
            con.close()

    def _check_vector(self, vector: Iterable[float]) -> list[float]:
        v = [float(x) for x in vector]
        if len(v) != self.embedding_dim:
            raise ValidationError(
                f"embedding has {len(v)} dimensions, store expects {self.embedding_dim}"
            )
        return v

    # ------------------------------------------------------------------ entities

    def upsert_entity(self, candidate: EntityCandidate) -> str:
        name = " ".join((candidate.name or "").split())
        if not name:
            raise ValidationError("entity name is required")
        kind = entity_kind(candidate.kind)
        key = normalize_name(name)
        embedding = self._check_vector(candidate.embedding) if candidate.embedding is not None else None
        now = to_iso(utcnow())

        try:
            with self.transaction() as con:
                row = con.execute(
                    "SELECT id, enrichment_json, tags_json FROM entities WHERE name_key=? AND kind=?",
                    (key, kind.value),
                ).fetchone()

                if row is None:
                    entity_id = candidate.id or uuid.uuid4().hex
                    enrichment = candidate.enrichment or EnrichmentPayload()
                    con.execute(
                        """
                        INSERT INTO entities(
                          id, name, name_key, kind, description, enrichment_json, tags_json,
                          embedding_json, is_internal, is_portfolio, is_pipeline, importance,
                          created_at, updated_at
                        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,0,?,?)
                        """,
                        (
                            entity_id,
                            name,
                            key,
                            kind.value,
                            candidate.description,
                            enrichment.model_dump_json(exclude_none=True),
                            json.dumps(_union([], candidate.tags)),
                            json.dumps(embedding) if embedding is not None else None,
                            int(bool(candidate.is_internal)),
                            int(bool(candidate.is_portfolio)),
                            int(bool(candidate.is_pipeline)),
                            now,
                            now,
                        ),
                    )
                    return entity_id

                enrichment = EnrichmentPayload.model_validate_json(row["enrichment_json"])
                if candidate.enrichment is not None:
                    enrichment = enrichment.merged(candidate.enrichment)
                sets = ["enrichment_json=?", "tags_json=?", "updated_at=?"]
                params: list[Any] = [
                    enrichment.model_dump_json(exclude_none=True),
                    json.dumps(_union(json.loads(row["tags_json"]), candidate.tags)),
                    now,
                ]
                if candidate.description is not None:
                    sets.append("description=?")
                    params.append(candidate.description)
                if embedding is not None:
                    sets.append("embedding_json=?")
                    params.append(json.dumps(embedding))
                for flag in ("is_internal", "is_portfolio", "is_pipeline"):
                    value = getattr(candidate, flag)
                    if value is not None:
                        sets.append(f"{flag}=?")
                        params.append(int(value))
                con.execute(f"UPDATE entities SET {', '.join(sets)} WHERE id=?", (*params, row["id"]))
                return row["id"]
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"cannot upsert entity {name!r}: {e}") from e

    def delete_entity(self, entity_id: str) -> None:
        now = to_iso(utcnow())
        with self.transaction() as con:
            if con.execute("SELECT 1 FROM entities WHERE id=?", (entity_id,)).fetchone() is None:
                raise NotFoundError(f"entity {entity_id} not found")
            edges = con.execute(
                "DELETE FROM relationships WHERE source_id=? OR target_id=?", (entity_id, entity_id)
            ).rowcount
            con.execute(
                "UPDATE interactions SET entity_id=NULL, updated_at=? WHERE entity_id=?", (now, entity_id)
            )
            con.execute("DELETE FROM entity_metrics WHERE entity_id=?", (entity_id,))
            con.execute("DELETE FROM entities WHERE id=?", (entity_id,))
        logger.info("Deleted entity %s and %d relationships", entity_id, edges)

    def get_entity(self, entity_id: str) -> Entity:
        with self._read() as con:
            row = con.execute(
                f"SELECT {_ENTITY_COLUMNS.format(embedding='embedding_json')} FROM entities WHERE id=?",
                (entity_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"entity {entity_id} not found")
        return _row_to_entity(row)

    def get_entities(self, ids: Iterable[str], *, include_embeddings: bool = False) -> list[Entity]:
        wanted = list(dict.fromkeys(ids))
        cols = _ENTITY_COLUMNS.format(embedding="embedding_json" if include_embeddings else "NULL")
        found: dict[str, Entity] = {}
        with self._read() as con:
            for chunk in batched(wanted, _MAX_VARS):
                marks = ",".join("?" * len(chunk))
                for row in con.execute(f"SELECT {cols} FROM entities WHERE id IN ({marks})", chunk):
                    found[row["id"]] = _row_to_entity(row)
        return [found[i] for i in wanted if i in found]

    def find_entity(self, name: str, kind: EntityKind | str) -> Entity | None:
        with self._read() as con:
            row = con.execute(
                f"SELECT {_ENTITY_COLUMNS.format(embedding='embedding_json')} FROM entities "
                "WHERE name_key=? AND kind=?",
                (normalize_name(name), entity_kind(kind).value),
            ).fetchone()
        return _row_to_entity(row) if row else None

    def list_entities(
        self, *, kind: EntityKind | str | None = None, include_embeddings: bool = False
    ) -> list[Entity]:
        cols = _ENTITY_COLUMNS.format(embedding="embedding_json" if include_embeddings else "NULL")
        q = f"SELECT {cols} FROM entities"
        params: tuple = ()
        if kind is not None:
            q += " WHERE kind=?"
            params = (entity_kind(kind).value,)
        q += " ORDER BY created_at, id"
        with self._read() as con:
            return [_row_to_entity(r) for r in con.execute(q, params)]

    def entities_missing_embedding(self, *, kind: EntityKind | str | None = None) -> list[Entity]:
        q = f"SELECT {_ENTITY_COLUMNS.format(embedding='NULL')} FROM entities WHERE embedding_json IS NULL"
        params: tuple = ()
        if kind is not None:
            q += " AND kind=?"
            params = (entity_kind(kind).value,)
        with self._read() as con:
            return [_row_to_entity(r) for r in con.execute(q + " ORDER BY created_at, id", params)]

    def set_entity_embedding(self, entity_id: str, vector: list[float]) -> None:
        v = self._check_vector(vector)
        with self.transaction() as con:
            cur = con.execute(
                "UPDATE entities SET embedding_json=?, updated_at=? WHERE id=?",
                (json.dumps(v), to_iso(utcnow()), entity_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"entity {entity_id} not found")

    def set_flags(
        self,
        ids: Iterable[str],
        *,
        is_internal: bool | None = None,
        is_portfolio: bool | None = None,
        is_pipeline: bool | None = None,
    ) -> int:
        """Bulk flag update. Returns the number of entities whose flags changed."""
        updates = {
            k: int(v)
            for k, v in (
                ("is_internal", is_internal),
                ("is_portfolio", is_portfolio),
                ("is_pipeline", is_pipeline),
            )
            if v is not None
        }
        if not updates:
            return 0
        set_sql = ", ".join(f"{k}=?" for k in updates)
        differs = " OR ".join(f"{k}!=?" for k in updates)
        values = list(updates.values())
        now = to_iso(utcnow())
        changed = 0
        with self.transaction() as con:
            for chunk in batched(dict.fromkeys(ids), _MAX_VARS):
                marks = ",".join("?" * len(chunk))
                cur = con.execute(
                    f"UPDATE entities SET {set_sql}, updated_at=? WHERE id IN ({marks}) AND ({differs})",
                    (*values, now, *chunk, *values),
                )
                changed += cur.rowcount
        return changed

    def merge_entities(self, survivor_id: str, duplicate_ids: list[str]) -> MergeOutcome:
        """Fold `duplicate_ids` into `survivor_id` in one transaction.

        Edges and interactions are re-pointed onto the survivor before the duplicates are
        deleted. Edges that would become self-loops are dropped.
        """
        dups = [d for d in dict.fromkeys(duplicate_ids)]
        if survivor_id in dups:
            raise ValidationError("survivor cannot be one of its own duplicates")
        outcome = MergeOutcome(survivor_id=survivor_id, removed_ids=[])
        if not dups:
            return outcome

        cols = _ENTITY_COLUMNS.format(embedding="embedding_json")
        now = to_iso(utcnow())
        folded = {survivor_id, *dups}

        with self.transaction() as con:
            srow = con.execute(f"SELECT {cols} FROM entities WHERE id=?", (survivor_id,)).fetchone()
            if srow is None:
                raise NotFoundError(f"entity {survivor_id} not found")
            survivor = _row_to_entity(srow)
            enrichment = survivor.enrichment
            tags = list(survivor.tags)
            description = survivor.description
            embedding = survivor.embedding
            flags = {
                "is_internal": survivor.is_internal,
                "is_portfolio": survivor.is_portfolio,
                "is_pipeline": survivor.is_pipeline,
            }

            for dup_id in dups:
                drow = con.execute(f"SELECT {cols} FROM entities WHERE id=?", (dup_id,)).fetchone()
                if drow is None:
                    raise NotFoundError(f"entity {dup_id} not found")
                dup = _row_to_entity(drow)

                edges = con.execute(
                    "SELECT * FROM relationships WHERE source_id=? OR target_id=?", (dup_id, dup_id)
                ).fetchall()
                for e in edges:
                    src = survivor_id if e["source_id"] in folded else e["source_id"]
                    dst = survivor_id if e["target_id"] in folded else e["target_id"]
                    if src == dst:
                        outcome.self_loops_dropped += 1
                        continue
                    self._upsert_relationship_tx(
                        con,
                        src,
                        dst,
                        e["kind"],
                        float(e["weight"]),
                        json.loads(e["evidence_json"]),
                        e["first_seen"],
                        e["last_seen"],
                    )
                    outcome.relationships_repointed += 1
                con.execute(
                    "DELETE FROM relationships WHERE source_id=? OR target_id=?", (dup_id, dup_id)
                )

                outcome.interactions_repointed += con.execute(
                    "UPDATE interactions SET entity_id=?, updated_at=? WHERE entity_id=?",
                    (survivor_id, now, dup_id),
                ).rowcount

                # Survivor keys win; duplicates only fill gaps.
                enrichment = dup.enrichment.merged(enrichment)
                tags = _union(tags, dup.tags)
                description = description or dup.description
                embedding = embedding if embedding is not None else dup.embedding
                for k in flags:
                    flags[k] = flags[k] or getattr(dup, k)

                con.execute("DELETE FROM entity_metrics WHERE entity_id=?", (dup_id,))
                con.execute("DELETE FROM entities WHERE id=?", (dup_id,))
                outcome.removed_ids.append(dup_id)

            con.execute(
                """
                UPDATE entities SET enrichment_json=?, tags_json=?, description=?, embedding_json=?,
                  is_internal=?, is_portfolio=?, is_pipeline=?, updated_at=?
                WHERE id=?
                """,
                (
                    enrichment.model_dump_json(exclude_none=True),
                    json.dumps(tags),
                    description,
                    json.dumps(embedding) if embedding is not None else None,
                    int(flags["is_internal"]),
                    int(flags["is_portfolio"]),
                    int(flags["is_pipeline"]),
                    now,
                    survivor_id,
                ),
            )
        return outcome

    # ------------------------------------------------------------- relationships

    @staticmethod
    def _upsert_relationship_tx(
        con: sqlite3.Connection,
        source_id: str,
        target_id: str,
        kind: str,
        weight: float,
        evidence: list[dict[str, Any]],
        first_seen: str,
        last_seen: str,
    ) -> None:
        now = to_iso(utcnow())
        row = con.execute(
            "SELECT weight, evidence_json, first_seen, last_seen FROM relationships "
            "WHERE source_id=? AND target_id=? AND kind=?",
            (source_id, target_id, kind),
        ).fetchone()
        if row is None:
            con.execute(
                """
                INSERT INTO relationships(
                  source_id, target_id, kind, weight, evidence_json, first_seen, last_seen, updated_at
                ) VALUES (?,?,?,?,?,?,?,?)
                """,
                (
                    source_id,
                    target_id,
                    kind,
                    weight,
                    json.dumps(_merge_evidence([], evidence)),
                    first_seen,
                    last_seen,
                    now,
                ),
            )
            return
        con.execute(
            """
            UPDATE relationships SET weight=?, evidence_json=?, first_seen=?, last_seen=?, updated_at=?
            WHERE source_id=? AND target_id=? AND kind=?
            """,
            (
                combine_weights(row["weight"], weight),
                json.dumps(_merge_evidence(json.loads(row["evidence_json"]), evidence)),
                min(row["first_seen"], first_seen),
                max(row["last_seen"], last_seen),
                now,
                source_id,
                target_id,
                kind,
            ),
        )

    def upsert_relationship(
        self,
        source_id: str,
        target_id: str,
        kind: str,
        weight: float = 0.5,
        evidence: Iterable[Evidence] = (),
    ) -> Relationship:
        kind = relationship_kind(kind)
        weight = _check_weight(weight)
        if source_id == target_id:
            raise ValidationError(f"self-referencing relationship on {source_id}")
        seen = to_iso(utcnow())
        with self.transaction() as con:
            for eid in (source_id, target_id):
                if con.execute("SELECT 1 FROM entities WHERE id=?", (eid,)).fetchone() is None:
                    raise NotFoundError(f"entity {eid} not found")
            self._upsert_relationship_tx(
                con, source_id, target_id, kind, weight, [e.to_dict() for e in evidence], seen, seen
            )
            row = con.execute(
                "SELECT * FROM relationships WHERE source_id=? AND target_id=? AND kind=?",
                (source_id, target_id, kind),
            ).fetchone()
        return _row_to_relationship(row)

    def list_relationships(self) -> list[Relationship]:
        with self._read() as con:
            rows = con.execute("SELECT * FROM relationships ORDER BY source_id, target_id, kind")
            return [_row_to_relationship(r) for r in rows]

    def relationships_for(self, entity_id: str) -> list[Relationship]:
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM relationships WHERE source_id=? OR target_id=? "
                "ORDER BY source_id, target_id, kind",
                (entity_id, entity_id),
            )
            return [_row_to_relationship(r) for r in rows]

    def relationships_among(self, ids: Iterable[str]) -> list[Relationship]:
        wanted = set(ids)
        out: list[Relationship] = []
        with self._read() as con:
            for chunk in batched(sorted(wanted), _MAX_VARS):
                marks = ",".join("?" * len(chunk))
                for row in con.execute(f"SELECT * FROM relationships WHERE source_id IN ({marks})", chunk):
                    if row["target_id"] in wanted:
                        out.append(_row_to_relationship(row))
        out.sort(key=lambda r: r.key)
        return out

    def neighbor_ids(self, entity_id: str) -> set[str]:
        return {r.other(entity_id) for r in self.relationships_for(entity_id)}

    def degrees(self) -> dict[str, int]:
        """Distinct relationships touching each entity (entities with none are omitted)."""
        with self._read() as con:
            rows = con.execute(
                """
                SELECT id, COUNT(*) AS degree FROM (
                  SELECT source_id AS id FROM relationships
                  UNION ALL
                  SELECT target_id AS id FROM relationships
                ) GROUP BY id
                """
            )
            return {r["id"]: int(r["degree"]) for r in rows}

    # -------------------------------------------------------------- interactions

    def add_interaction(self, interaction: Interaction) -> str:
        """Insert or refresh an interaction's raw fields; summary and embedding are kept."""
        emb = self._check_vector(interaction.embedding) if interaction.embedding is not None else None
        try:
            with self.transaction() as con:
                con.execute(
                    """
                    INSERT INTO interactions(id, entity_id, kind, occurred_at, content, embedding_json, updated_at)
                    VALUES (?,?,?,?,?,?,?)
                    ON CONFLICT(id) DO UPDATE SET
                      entity_id=excluded.entity_id,
                      kind=excluded.kind,
                      occurred_at=excluded.occurred_at,
                      content=excluded.content,
                      updated_at=excluded.updated_at
                    """,
                    (
                        interaction.id,
                        interaction.entity_id,
                        interaction.kind,
                        to_iso(interaction.occurred_at),
                        interaction.content,
                        json.dumps(emb) if emb is not None else None,
                        to_iso(utcnow()),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise NotFoundError(f"entity {interaction.entity_id} not found for interaction {interaction.id}") from e
        return interaction.id

    def list_interactions(self, entity_id: str) -> list[Interaction]:
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM interactions WHERE entity_id=? ORDER BY occurred_at DESC, id", (entity_id,)
            )
            return [_row_to_interaction(r) for r in rows]

    def _interactions_where(self, where: str, limit: int | None) -> list[Interaction]:
        q = f"SELECT * FROM interactions WHERE {where} AND content != '' ORDER BY occurred_at, id"
        params: tuple = ()
        if limit is not None:
            q += " LIMIT ?"
            params = (int(limit),)
        with self._read() as con:
            return [_row_to_interaction(r) for r in con.execute(q, params)]

    def interactions_missing_summary(self, *, limit: int | None = None) -> list[Interaction]:
        return self._interactions_where("summary IS NULL", limit)

    def interactions_missing_embedding(self, *, limit: int | None = None) -> list[Interaction]:
        return self._interactions_where("embedding_json IS NULL", limit)

    def set_interaction_summary(self, interaction_id: str, summary: str, themes: list[str]) -> None:
        with self.transaction() as con:
            cur = con.execute(
                "UPDATE interactions SET summary=?, themes_json=?, updated_at=? WHERE id=?",
                (summary, json.dumps(list(themes)), to_iso(utcnow()), interaction_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"interaction {interaction_id} not found")

    def set_interaction_embedding(self, interaction_id: str, vector: list[float]) -> None:
        v = self._check_vector(vector)
        with self.transaction() as con:
            cur = con.execute(
                "UPDATE interactions SET embedding_json=?, updated_at=? WHERE id=?",
                (json.dumps(v), to_iso(utcnow()), interaction_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"interaction {interaction_id} not found")

    # ------------------------------------------------------------------- metrics

    def replace_metrics(self, rows: list[EntityMetrics], *, mode: str) -> None:
        """Overwrite all metric rows and importance scores in one transaction."""
        now = to_iso(utcnow())
        with self.transaction() as con:
            con.execute("DELETE FROM entity_metrics")
            con.executemany(
                """
                INSERT INTO entity_metrics(entity_id, degree, pagerank, betweenness, closeness, importance, community, mode, computed_at)
                VALUES (?,?,?,?,?,?,?,?,?)
                """,
                [
                    (m.entity_id, m.degree, m.pagerank, m.betweenness, m.closeness, m.importance, m.community, mode, now)
                    for m in rows
                ],
            )
            con.executemany(
                "UPDATE entities SET importance=?, updated_at=? WHERE id=?",
                [(m.importance, now, m.entity_id) for m in rows],
            )
            con.execute(
                "UPDATE entities SET importance=0, updated_at=? "
                "WHERE importance != 0 AND id NOT IN (SELECT entity_id FROM entity_metrics)",
                (now,),
            )

    @staticmethod
    def _metrics_from_row(row: sqlite3.Row) -> EntityMetrics:
        return EntityMetrics(
            entity_id=row["entity_id"],
            degree=int(row["degree"]),
            pagerank=row["pagerank"],
            betweenness=row["betweenness"],
            closeness=row["closeness"],
            importance=float(row["importance"]),
            community=row["community"],
        )

    def get_metrics(self, entity_id: str) -> EntityMetrics | None:
        with self._read() as con:
            row = con.execute("SELECT * FROM entity_metrics WHERE entity_id=?", (entity_id,)).fetchone()
        return None if row is None else self._metrics_from_row(row)

    def list_metrics(self) -> list[EntityMetrics]:
        with self._read() as con:
            rows = con.execute("SELECT * FROM entity_metrics ORDER BY importance DESC, entity_id").fetchall()
        return [self._metrics_from_row(r) for r in rows]

    # ---------------------------------------------------------------- sync state

    def try_begin_run(self, run_id: str, message: str, *, stale_after_s: float | None = None) -> bool:
        """Compare-and-swap the sync state to running. Returns False if another run holds it."""
        now = utcnow()
        with self.transaction() as con:
            prev = con.execute("SELECT * FROM sync_state WHERE id=1").fetchone()
            if stale_after_s is None:
                cur = con.execute(
                    "UPDATE sync_state SET status=?, message=?, run_id=?, updated_at=? "
                    "WHERE id=1 AND status != ?",
                    (SyncStatus.RUNNING.value, message, run_id, to_iso(now), SyncStatus.RUNNING.value),
                )
            else:
                cur = con.execute(
                    "UPDATE sync_state SET status=?, message=?, run_id=?, updated_at=? "
                    "WHERE id=1 AND (status != ? OR updated_at < ?)",
                    (
                        SyncStatus.RUNNING.value,
                        message,
                        run_id,
                        to_iso(now),
                        SyncStatus.RUNNING.value,
                        to_iso(now - timedelta(seconds=stale_after_s)),
                    ),
                )
            if cur.rowcount != 1:
                return False
            if prev is not None and prev["status"] == SyncStatus.RUNNING.value:
                logger.warning("Taking over stale run %s (last update %s)", prev["run_id"], prev["updated_at"])
                con.execute(
                    "UPDATE sync_runs SET status=?, message=?, finished_at=? WHERE id=? AND finished_at IS NULL",
                    (SyncStatus.ERROR.value, "abandoned (stale)", to_iso(now), prev["run_id"]),
                )
            con.execute(
                "INSERT INTO sync_runs(id, status, message, started_at) VALUES (?,?,?,?)",
                (run_id, SyncStatus.RUNNING.value, message, to_iso(now)),
            )
        return True

    def touch_run(self, run_id: str, message: str) -> None:
        with self.transaction() as con:
            con.execute(
                "UPDATE sync_state SET message=?, updated_at=? WHERE id=1 AND run_id=? AND status=?",
                (message, to_iso(utcnow()), run_id, SyncStatus.RUNNING.value),
            )

    def finish_run(
        self, run_id: str, status: SyncStatus, message: str, stages: list[dict[str, Any]]
    ) -> None:
        now = to_iso(utcnow())
        success_at = now if status == SyncStatus.IDLE else None
        with self.transaction() as con:
            con.execute(
                """
                UPDATE sync_state SET status=?, message=?, updated_at=?,
                  last_success_at=COALESCE(?, last_success_at)
                WHERE id=1 AND run_id=?
                """,
                (status.value, message, now, success_at, run_id),
            )
            con.execute(
                "UPDATE sync_runs SET status=?, message=?, finished_at=?, stages_json=? WHERE id=?",
                (status.value, message, now, json.dumps(stages, default=str), run_id),
            )

    def get_sync_state(self) -> SyncState:
        with self._read() as con:
            row = con.execute("SELECT * FROM sync_state WHERE id=1").fetchone()
        if row is None:
            raise NotFoundError("sync state not initialized; call init() first")
        return _row_to_sync_state(row)

    def list_sync_runs(self, *, limit: int = 20) -> list[SyncRun]:
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM sync_runs ORDER BY started_at DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [
            SyncRun(
                id=r["id"],
                status=SyncStatus(r["status"]),
                message=r["message"],
                started_at=from_iso(r["started_at"]),
                finished_at=from_iso(r["finished_at"]),
                stages=json.loads(r["stages_json"]),
            )
            for r in rows
        ]

    def stats(self) -> GraphStats:
        with self._read() as con:
            entities, with_emb = con.execute(
                "SELECT COUNT(*), COUNT(embedding_json) FROM entities"
            ).fetchone()
            relationships = con.execute("SELECT COUNT(*) FROM relationships").fetchone()[0]
            interactions, inter_emb = con.execute(
                "SELECT COUNT(*), COUNT(embedding_json) FROM interactions"
            ).fetchone()
        return GraphStats(
            entities=int(entities),
            relationships=int(relationships),
            interactions=int(interactions),
            entities_with_embeddings=int(with_emb),
            interactions_with_embeddings=int(inter_emb),
            sync_state=self.get_sync_state(),
        )
