from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import NotFoundError
from ..graph.models import Entity, EntityKind, MergeOutcome
from ..graph.store import GraphStore
from .validation import DEFAULT_POLICY, NameIssue, NamePolicy, validate_name

logger = logging.getLogger(__name__)

_PUNCT_RE = re.compile(r"[^\w\s]")
_URL_PREFIX_RE = re.compile(r"^(https?://)?(www\.)?")


def normalize_identity_name(name: str) -> str:
    """Looser than the store key: punctuation is dropped, so "Acme Corp." == "Acme Corp"."""
    return " ".join(_PUNCT_RE.sub(" ", name.lower()).split())


def _normalize_domain(domain: str | None) -> str:
    if not domain:
        return ""
    d = _URL_PREFIX_RE.sub("", domain.strip().lower())
    return d.split("/", 1)[0]


def identity_keys(entity: Entity) -> list[str]:
    """Keys under which two entities are considered the same real-world thing.

    People match on email when one is known, otherwise on name. Organizations match on
    name or on website domain.
    """
    kind = entity.kind.value
    if entity.kind == EntityKind.PERSON:
        email = (entity.enrichment.email or "").strip().lower()
        if email:
            return [f"{kind}:email:{email}"]
        return [f"{kind}:name:{normalize_identity_name(entity.name)}"]
    keys = [f"{kind}:name:{normalize_identity_name(entity.name)}"]
    domain = _normalize_domain(entity.enrichment.domain)
    if domain:
        keys.append(f"{kind}:domain:{domain}")
    return keys


class _UnionFind:
    """Disjoint Set Union with path compression and union by rank."""

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        if self.parent[x] != x:
            self.parent[x] = self.find(self.parent[x])
        return self.parent[x]

    def union(self, x: int, y: int) -> None:
        px, py = self.find(x), self.find(y)
        if px == py:
            return
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1


@dataclass(slots=True)
class DedupCandidate:
    """Entities believed to be the same thing. Transient; never persisted."""

    key: str
    member_ids: list[str]
    names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProposedMerge:
    key: str
    survivor_id: str
    survivor_name: str
    duplicate_ids: list[str]
    duplicate_names: list[str]


@dataclass(slots=True)
class MergeReport:
    dry_run: bool
    proposed: list[ProposedMerge] = field(default_factory=list)
    merged: list[MergeOutcome] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def entities_removed(self) -> int:
        return sum(len(m.removed_ids) for m in self.merged)


@dataclass(slots=True)
class FlaggedName:
    entity_id: str
    name: str
    kind: EntityKind
    reason: NameIssue | None
    borderline: bool


@dataclass(slots=True)
class CleanupReport:
    invalid: list[FlaggedName] = field(default_factory=list)
    borderline: list[FlaggedName] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    proposed: MergeReport | None = None
    applied: MergeReport | None = None

    def summary(self) -> dict[str, int]:
        return {
            "invalid": len(self.invalid),
            "borderline": len(self.borderline),
            "deleted": len(self.deleted),
            "groups": len(self.proposed.proposed) if self.proposed else 0,
            "merged": len(self.applied.merged) if self.applied else 0,
            "removed": self.applied.entities_removed if self.applied else 0,
            "failed": len(self.applied.failed) if self.applied else 0,
        }


def find_duplicate_groups(population: Iterable[Entity]) -> list[DedupCandidate]:
    ordered = sorted(population, key=lambda e: (e.created_at, e.id))
    uf = _UnionFind(len(ordered))
    first_by_key: dict[str, int] = {}
    for i, entity in enumerate(ordered):
        for key in identity_keys(entity):
            j = first_by_key.setdefault(key, i)
            if j != i:
                uf.union(i, j)

    components: dict[int, list[int]] = defaultdict(list)
    for i in range(len(ordered)):
        components[uf.find(i)].append(i)

    groups = []
    for members in components.values():
        if len(members) < 2:
            continue
        ents = [ordered[i] for i in members]
        groups.append(
            DedupCandidate(
                key=identity_keys(ents[0])[0],
                member_ids=[e.id for e in ents],
                names=[e.name for e in ents],
            )
        )
    groups.sort(key=lambda g: (g.key, g.member_ids[0]))
    return groups


def choose_survivor(members: Iterable[Entity]) -> Entity:
    """Earliest-created member wins; ties go to the lowest id."""
    return min(members, key=lambda e: (e.created_at, e.id))


class DedupEngine:
    def __init__(self, store: GraphStore, *, policy: NamePolicy = DEFAULT_POLICY):
        self.store = store
        self.policy = policy

    def find_duplicate_groups(self, population: Iterable[Entity] | None = None) -> list[DedupCandidate]:
        return find_duplicate_groups(self.store.list_entities() if population is None else population)

    def merge(self, groups: list[DedupCandidate], *, dry_run: bool) -> MergeReport:
        report = MergeReport(dry_run=dry_run)
        member_ids = [m for g in groups for m in g.member_ids]
        by_id = {e.id: e for e in self.store.get_entities(member_ids)}

        for group in groups:
            members = [by_id[m] for m in group.member_ids if m in by_id]
            if len(members) < 2:
                logger.info("Skipping dedup group %s: fewer than two live members", group.key)
                continue
            survivor = choose_survivor(members)
            dups = [m for m in members if m.id != survivor.id]
            report.proposed.append(
                ProposedMerge(
                    key=group.key,
                    survivor_id=survivor.id,
                    survivor_name=survivor.name,
                    duplicate_ids=[d.id for d in dups],
                    duplicate_names=[d.name for d in dups],
                )
            )
            if dry_run:
                continue

            # One bad group must not halt the rest of the batch.
            try:
                outcome = self.store.merge_entities(survivor.id, [d.id for d in dups])
            except Exception as e:
                logger.exception("Merge of group %s into %s failed", group.key, survivor.id)
                report.failed[group.key] = f"{type(e).__name__}: {e}"
                continue
            report.merged.append(outcome)
            logger.info(
                "Merged %d duplicate(s) into %s (%s): %d edges re-pointed, %d self-loops dropped",
                len(outcome.removed_ids),
                survivor.id,
                survivor.name,
                outcome.relationships_repointed,
                outcome.self_loops_dropped,
            )
        return report

    def cleanup(self, *, dry_run: bool = False, delete_invalid: bool = False) -> CleanupReport:
        """Flag invalid names, optionally delete them, then dry-run and apply dedup merges."""
        report = CleanupReport()
        entities = self.store.list_entities()
        remaining: list[Entity] = []

        for e in entities:
            verdict = validate_name(e.name, kind=e.kind, policy=self.policy)
            flagged = FlaggedName(e.id, e.name, e.kind, verdict.reason, verdict.borderline)
            if verdict.valid:
                if verdict.borderline:
                    report.borderline.append(flagged)
                    logger.info("Borderline name for review: %r (%s, %s)", e.name, e.kind.value, verdict.reason)
                remaining.append(e)
                continue

            report.invalid.append(flagged)
            if delete_invalid and not dry_run:
                try:
                    self.store.delete_entity(e.id)
                except NotFoundError:
                    logger.info("Invalid entity %s already gone", e.id)
                    continue
                report.deleted.append(e.id)
                logger.info("Deleted invalid entity %r (%s)", e.name, verdict.reason)
            else:
                logger.info("Invalid name flagged: %r (%s)", e.name, verdict.reason)
                remaining.append(e)

        groups = find_duplicate_groups(remaining)
        report.proposed = self.merge(groups, dry_run=True)
        for p in report.proposed.proposed:
            logger.info("Proposed merge %s: keep %r, fold %s", p.key, p.survivor_name, p.duplicate_names)
        if not dry_run and groups:
            report.applied = self.merge(groups, dry_run=False)
        return report
