"""
Dedup engine tests: grouping keys, survivor choice, merge safety and cleanup.

Run: pytest tests/test_dedup_engine.py -v
"""

from network_intel.dedup.engine import (
    DedupCandidate,
    DedupEngine,
    find_duplicate_groups,
    identity_keys,
    normalize_identity_name,
)
from network_intel.errors import NotFoundError
from network_intel.graph.models import EnrichmentPayload, EntityKind, Evidence

ORG = EntityKind.ORGANIZATION


class TestGrouping:
    def test_normalize_identity_name(self):
        assert normalize_identity_name("Acme Corp.") == normalize_identity_name("  acme   corp ")
        assert normalize_identity_name("Acme, Inc.") == "acme inc"

    def test_person_email_beats_name(self, store, add):
        a = add("Jane Smith", enrichment=EnrichmentPayload(email="Jane@Acme.com"))
        b = add("J. Smith", enrichment=EnrichmentPayload(email="jane@acme.com"))
        add("Jane Smith Two", enrichment=EnrichmentPayload(email="other@acme.com"))
        groups = find_duplicate_groups(store.list_entities())
        assert [sorted(g.member_ids) for g in groups] == [sorted([a, b])]

    def test_org_domain_links_different_names(self, store, add):
        a = add("Acme Corp", kind=ORG, enrichment=EnrichmentPayload(domain="https://www.acme.com/about"))
        b = add("ACME Holdings", kind=ORG, enrichment=EnrichmentPayload(domain="acme.com"))
        assert identity_keys(store.get_entity(b))[-1] == "organization:domain:acme.com"
        groups = find_duplicate_groups(store.list_entities())
        assert len(groups) == 1
        assert set(groups[0].member_ids) == {a, b}

    def test_keys_are_namespaced_by_kind(self, store, add):
        add("Jordan Lake Partners", kind=ORG)
        add("Jordan Lake Partners")
        assert find_duplicate_groups(store.list_entities()) == []

    def test_grouping_is_deterministic(self, store, add):
        for n in ("Beta Labs", "Beta Labs.", "Acme Corp", "Acme Corp."):
            add(n, kind=ORG)
        first = find_duplicate_groups(store.list_entities())
        second = find_duplicate_groups(list(reversed(store.list_entities())))
        assert [(g.key, g.member_ids) for g in first] == [(g.key, g.member_ids) for g in second]
        assert [g.key for g in first] == ["organization:name:acme corp", "organization:name:beta labs"]


class TestMerge:
    def test_acme_scenario(self, store, add):
        a = add("Acme Corp", kind=ORG, id="acme-1")
        b = add("Acme Corp.", kind=ORG, id="acme-2")
        c = add("Gamma Capital", kind=ORG, id="gamma")
        store.upsert_relationship(a, c, "investor", 0.4, [Evidence(id="crm:a")])
        store.upsert_relationship(b, c, "investor", 0.9, [Evidence(id="crm:b")])

        engine = DedupEngine(store)
        dry = engine.merge(engine.find_duplicate_groups(), dry_run=True)
        assert [(p.survivor_id, p.duplicate_ids) for p in dry.proposed] == [(a, [b])]
        assert store.stats().entities == 3

        report = engine.merge(engine.find_duplicate_groups(), dry_run=False)
        assert report.entities_removed == 1
        assert not report.failed
        rels = store.list_relationships()
        assert len(rels) == 1
        assert rels[0].key == (a, c, "investor")
        assert rels[0].weight == 0.9
        assert {e.id for e in rels[0].evidence} == {"crm:a", "crm:b"}

    def test_failing_group_does_not_stop_others(self, store, add, monkeypatch):
        add("Acme Corp", kind=ORG)
        add("Acme Corp.", kind=ORG)
        b1 = add("Beta Labs", kind=ORG)
        add("Beta Labs.", kind=ORG)

        real = store.merge_entities

        def flaky(survivor_id, duplicate_ids):
            if survivor_id == b1:
                raise NotFoundError("simulated")
            return real(survivor_id, duplicate_ids)

        monkeypatch.setattr(store, "merge_entities", flaky)
        report = DedupEngine(store).merge(find_duplicate_groups(store.list_entities()), dry_run=False)

        assert list(report.failed) == ["organization:name:beta labs"]
        assert len(report.merged) == 1
        assert store.stats().entities == 3

    def test_group_with_vanished_member_is_skipped(self, store, add):
        a = add("Acme Corp", kind=ORG)
        report = DedupEngine(store).merge([DedupCandidate(key="k", member_ids=[a, "gone"])], dry_run=False)
        assert report.proposed == [] and report.merged == []


class TestCleanup:
    def test_dry_run_mutates_nothing(self, store, add):
        add("CEO")
        add("Acme Corp", kind=ORG)
        add("Acme Corp.", kind=ORG)
        report = DedupEngine(store).cleanup(dry_run=True, delete_invalid=True)
        assert [f.name for f in report.invalid] == ["CEO"]
        assert report.deleted == []
        assert report.applied is None
        assert report.summary()["groups"] == 1
        assert store.stats().entities == 3

    def test_apply_with_delete_invalid(self, store, add):
        ceo = add("CEO")
        add("Christopherson")
        add("Acme Corp", kind=ORG)
        add("Acme Corp.", kind=ORG)
        report = DedupEngine(store).cleanup(dry_run=False, delete_invalid=True)
        assert report.deleted == [ceo]
        assert [f.name for f in report.borderline] == ["Christopherson"]
        assert report.summary()["removed"] == 1
        assert store.stats().entities == 2

    def test_invalid_kept_without_delete_flag(self, store, add):
        add("CEO")
        report = DedupEngine(store).cleanup(dry_run=False)
        assert len(report.invalid) == 1
        assert store.stats().entities == 1
