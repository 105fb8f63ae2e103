"""
Entity/edge store tests: identity upserts, edge combination, transactional delete/merge
and the sync-state compare-and-swap.

Run: pytest tests/test_sqlite_store.py -v
"""

import pytest

from network_intel.errors import NotFoundError, ValidationError
from network_intel.graph.models import (
    EnrichmentPayload,
    EntityCandidate,
    EntityKind,
    Evidence,
    Interaction,
    SyncStatus,
)
from network_intel.graph.sqlite_store import combine_weights
from network_intel.graph.util import utcnow

ORG = EntityKind.ORGANIZATION


class TestEntityUpsert:
    def test_same_identity_returns_same_id(self, store, add):
        a = add("Jane  Smith")
        b = add(" jane smith ")
        assert a == b
        assert store.stats().entities == 1

    def test_kind_is_part_of_identity(self, store, add):
        assert add("Mercury", kind=ORG) != add("Mercury Rivers")
        assert add("Mercury", kind=ORG) != add("Mercury", kind=EntityKind.PERSON)

    def test_enrichment_merges_key_by_key(self, store, add):
        eid = add("Acme Corp", kind=ORG, enrichment=EnrichmentPayload(industry="Fintech", location="Berlin"))
        add("Acme Corp", kind=ORG, enrichment=EnrichmentPayload(industry="Payments"))
        e = store.get_entity(eid)
        assert e.enrichment.industry == "Payments"
        assert e.enrichment.location == "Berlin"

    def test_unknown_enrichment_keys_are_preserved(self, store, add):
        payload = EnrichmentPayload.from_raw({"industry": "AI", "crm_owner": "sam"})
        eid = add("Acme Corp", kind=ORG, enrichment=payload)
        assert store.get_entity(eid).enrichment.model_dump()["crm_owner"] == "sam"

    def test_wrong_enrichment_type_raises(self):
        with pytest.raises(ValidationError):
            EnrichmentPayload.from_raw({"year_founded": "long ago"})

    def test_tags_union_and_flags_only_when_supplied(self, store, add):
        eid = add("Jane Smith", tags=["angel"], is_internal=True)
        add("Jane Smith", tags=["fintech", "angel"])
        e = store.get_entity(eid)
        assert e.tags == ("angel", "fintech")
        assert e.is_internal is True

    def test_empty_name_rejected(self, store):
        with pytest.raises(ValidationError):
            store.upsert_entity(EntityCandidate(name="   ", kind=ORG))

    def test_updated_at_advances(self, store, add):
        eid = add("Jane Smith")
        before = store.get_entity(eid).updated_at
        add("Jane Smith", description="Operator")
        assert store.get_entity(eid).updated_at >= before


class TestRelationships:
    def test_combine_weights_is_max(self):
        assert combine_weights(0.4, 0.9) == 0.9
        assert combine_weights(0.9, 0.4) == 0.9

    def test_reobserving_key_combines(self, store, add):
        a, b = add("Jane Smith"), add("Acme Corp", kind=ORG)
        store.upsert_relationship(a, b, "works_at", 0.4, [Evidence(id="crm:1", source="crm")])
        r = store.upsert_relationship(a, b, "works_at", 0.8, [Evidence(id="crm:1"), Evidence(id="crm:2")])
        assert r.weight == 0.8
        assert [ev.id for ev in r.evidence] == ["crm:1", "crm:2"]
        assert r.first_seen <= r.last_seen
        assert len(store.list_relationships()) == 1

    def test_weight_order_does_not_matter(self, store, add):
        a, b, c = add("Jane Smith"), add("Acme Corp", kind=ORG), add("Beta Labs", kind=ORG)
        store.upsert_relationship(a, b, "works_at", 0.9)
        store.upsert_relationship(a, b, "works_at", 0.2)
        store.upsert_relationship(a, c, "works_at", 0.2)
        store.upsert_relationship(a, c, "works_at", 0.9)
        weights = {r.target_id: r.weight for r in store.relationships_for(a)}
        assert weights[b] == weights[c] == 0.9

    def test_custom_snake_case_kind_accepted(self, store, add):
        a, b = add("Acme Corp", kind=ORG), add("Beta Labs", kind=ORG)
        assert store.upsert_relationship(a, b, "co_investor", 0.5).kind == "co_investor"
        with pytest.raises(ValidationError):
            store.upsert_relationship(a, b, "Not A Kind", 0.5)

    def test_invalid_edges(self, store, add):
        a = add("Jane Smith")
        with pytest.raises(ValidationError):
            store.upsert_relationship(a, a, "connection", 0.5)
        with pytest.raises(NotFoundError):
            store.upsert_relationship(a, "missing", "connection", 0.5)
        b = add("John Doe Example")
        with pytest.raises(ValidationError):
            store.upsert_relationship(a, b, "connection", 1.5)

    def test_neighbors_and_degrees(self, store, add):
        a, b, c = add("Jane Smith"), add("Acme Corp", kind=ORG), add("Beta Labs", kind=ORG)
        store.upsert_relationship(a, b, "works_at", 0.5)
        store.upsert_relationship(c, a, "customer", 0.5)
        assert store.neighbor_ids(a) == {b, c}
        assert store.degrees() == {a: 2, b: 1, c: 1}
        assert [r.key for r in store.relationships_among([a, b])] == [(a, b, "works_at")]


class TestDelete:
    def test_delete_removes_edges_and_detaches_interactions(self, store, add):
        a, b, c = add("Jane Smith"), add("Acme Corp", kind=ORG), add("Beta Labs", kind=ORG)
        store.upsert_relationship(a, b, "works_at", 0.5)
        store.upsert_relationship(c, a, "customer", 0.5)
        store.upsert_relationship(b, c, "partner", 0.5)
        store.add_interaction(Interaction(id="i1", entity_id=a, kind="note", occurred_at=utcnow(), content="hi"))

        store.delete_entity(a)

        with pytest.raises(NotFoundError):
            store.get_entity(a)
        assert [r.key for r in store.list_relationships()] == [(b, c, "partner")]
        assert store.list_interactions(a) == []
        assert store.stats().interactions == 1

    def test_delete_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            store.delete_entity("nope")


class TestEmbeddings:
    def test_dimension_mismatch_rejected(self, store, add):
        eid = add("Jane Smith")
        with pytest.raises(ValidationError):
            store.set_entity_embedding(eid, [0.1, 0.2])
        store.set_entity_embedding(eid, [0.1] * 8)
        assert store.entities_missing_embedding() == []
        assert store.stats().embedding_coverage == 1.0


class TestMerge:
    def test_merge_repoints_edges_and_drops_self_loops(self, store, add):
        a = add("Acme Corp", kind=ORG, id="a")
        b = add("Acme Corp.", kind=ORG, id="b")
        c = add("Gamma Capital", kind=ORG, id="c")
        store.upsert_relationship(a, c, "partner", 0.3, [Evidence(id="e1")])
        store.upsert_relationship(b, c, "partner", 0.7, [Evidence(id="e2")])
        store.upsert_relationship(b, a, "competitor", 0.5)
        store.add_interaction(Interaction(id="i1", entity_id=b, kind="note", occurred_at=utcnow(), content="x"))

        out = store.merge_entities(a, [b])

        assert out.removed_ids == [b]
        assert out.self_loops_dropped == 1
        assert out.interactions_repointed == 1
        rels = store.list_relationships()
        assert [r.key for r in rels] == [(a, c, "partner")]
        assert rels[0].weight == 0.7
        assert {ev.id for ev in rels[0].evidence} == {"e1", "e2"}
        assert [i.id for i in store.list_interactions(a)] == ["i1"]

    def test_failed_merge_rolls_back(self, store, add):
        a = add("Acme Corp", kind=ORG)
        b = add("Acme Corp.", kind=ORG)
        c = add("Gamma Capital", kind=ORG)
        store.upsert_relationship(b, c, "partner", 0.7)
        with pytest.raises(NotFoundError):
            store.merge_entities(a, [b, "missing"])
        assert store.get_entity(b).id == b
        assert [r.source_id for r in store.list_relationships()] == [b]


class TestSyncState:
    def test_compare_and_swap(self, store):
        assert store.get_sync_state().status == SyncStatus.IDLE
        assert store.try_begin_run("r1", "started") is True
        assert store.try_begin_run("r2", "started") is False

        store.finish_run("r1", SyncStatus.IDLE, "completed", [])
        state = store.get_sync_state()
        assert state.status == SyncStatus.IDLE
        assert state.last_success_at is not None
        assert store.try_begin_run("r2", "started") is True

    def test_error_keeps_last_success(self, store):
        store.try_begin_run("r1", "started")
        store.finish_run("r1", SyncStatus.ERROR, "enrichment: boom", [])
        state = store.get_sync_state()
        assert state.status == SyncStatus.ERROR
        assert state.last_success_at is None
        # an errored run does not block the next one
        assert store.try_begin_run("r2", "started") is True

    def test_stale_run_can_be_taken_over(self, store):
        assert store.try_begin_run("r1", "started")
        assert store.try_begin_run("r2", "started", stale_after_s=3600) is False
        assert store.try_begin_run("r2", "started", stale_after_s=-1) is True
        runs = {r.id: r for r in store.list_sync_runs()}
        assert runs["r1"].status == SyncStatus.ERROR
        assert runs["r2"].status == SyncStatus.RUNNING
