import math

import pytest

from network_intel.graph.analytics import NetworkXAnalytics, build_analytics
from network_intel.graph.models import EnrichmentPayload, EntityKind
from network_intel.metrics.engine import (
    FALLBACK_WEIGHTS,
    FULL_WEIGHTS,
    MODE_DEGREE_ONLY,
    MODE_FULL,
    MetricsEngine,
    composite_importance,
    normalize_by_max,
)
from network_intel.metrics.influence import analyze_influence

ORG = EntityKind.ORGANIZATION


def test_weight_sets_sum_to_one():
    assert math.isclose(sum(FULL_WEIGHTS.values()), 1.0)
    assert math.isclose(sum(FALLBACK_WEIGHTS.values()), 1.0)


def test_normalize_by_max():
    assert normalize_by_max({"a": 2.0, "b": 1.0}) == {"a": 1.0, "b": 0.5}
    assert normalize_by_max({"a": 0.0}) == {"a": 0.0}
    assert normalize_by_max({}) == {}


def test_composite_bounds():
    assert composite_importance(curated=1, degree=1, pagerank=1, betweenness=1, closeness=1) == pytest.approx(1.0)
    assert composite_importance(curated=0, degree=0) == 0.0
    assert composite_importance(curated=1, degree=0) == pytest.approx(0.7)


@pytest.fixture
def star(store, add):
    hub = add("Acme Corp", kind=ORG, enrichment=EnrichmentPayload(curated_importance=0.5))
    spokes = [add(n) for n in ("Jane Smith", "John Doe Example", "Maria Lopez")]
    for s in spokes:
        store.upsert_relationship(s, hub, "works_at", 0.8)
    lonely = add("Nobody Connected")
    return hub, spokes, lonely


def test_degree_only_fallback(store, star):
    hub, spokes, lonely = star
    report = MetricsEngine(store, analytics=None).recompute()
    assert report.mode == MODE_DEGREE_ONLY
    assert report.reason
    m = store.get_metrics(hub)
    assert m.degree == 3 and m.pagerank is None
    assert store.get_entity(hub).importance == pytest.approx(0.7 * 0.5 + 0.3 * 1.0)
    assert store.get_entity(lonely).importance == 0.0


def test_full_mode_with_networkx(store, star):
    hub, spokes, _ = star
    report = MetricsEngine(store, NetworkXAnalytics()).recompute()
    assert report.mode == MODE_FULL and report.backend == "networkx"
    hub_imp = store.get_entity(hub).importance
    assert 0.0 <= hub_imp <= 1.0
    assert all(store.get_entity(s).importance < hub_imp for s in spokes)


def test_backend_failure_falls_back(store, star):
    class Broken:
        name = "broken"

        def compute(self, node_ids, edges):
            raise RuntimeError("gds down")

    report = MetricsEngine(store, Broken()).recompute()
    assert report.mode == MODE_DEGREE_ONLY
    assert "gds down" in report.reason


def test_build_analytics():
    assert build_analytics(None) is None
    assert build_analytics("none") is None
    assert isinstance(build_analytics("networkx"), NetworkXAnalytics)
    assert build_analytics("neo4j-gds", mirror=None) is None
    with pytest.raises(ValueError):
        build_analytics("igraph")


@pytest.fixture
def two_triangles(store, add):
    for node in ("a1", "a2", "a3", "b1", "b2", "b3", "z"):
        add(f"Person {node.upper()} Example", id=node)
    for x, y in (("a1", "a2"), ("a2", "a3"), ("a1", "a3"), ("b1", "b2"), ("b2", "b3"), ("b1", "b3"), ("a3", "b1")):
        store.upsert_relationship(x, y, "connection", 1.0)


def test_louvain_communities():
    scores = NetworkXAnalytics().compute(
        ["a1", "a2", "a3", "b1", "b2", "b3", "z"],
        [("a1", "a2", 1.0), ("a2", "a3", 1.0), ("a1", "a3", 1.0), ("b1", "b2", 1.0), ("b2", "b3", 1.0),
         ("b1", "b3", 1.0), ("a3", "b1", 1.0)],
    )
    c = scores.communities
    assert c["a1"] == c["a2"] == c["a3"] == 0
    assert c["b1"] == c["b2"] == c["b3"] == 1
    assert c["z"] == 2
    assert scores.modularity == pytest.approx(2 * (3 / 7 - 0.25))


def test_communities_are_stored_and_reported(store, two_triangles):
    report = MetricsEngine(store, NetworkXAnalytics()).recompute()
    assert report.communities == 3
    assert report.modularity > 0.3
    assert report.as_dict()["communities"] == 3
    assert store.get_metrics("a2").community == store.get_metrics("a1").community
    assert store.get_metrics("b2").community != store.get_metrics("a1").community


def test_no_edges_means_singleton_communities():
    scores = NetworkXAnalytics().compute(["x", "y"], [])
    assert scores.communities == {"x": 0, "y": 1}
    assert scores.modularity is None


def test_degree_only_has_no_communities(store, two_triangles):
    report = MetricsEngine(store, analytics=None).recompute()
    assert report.communities is None and report.modularity is None
    assert store.get_metrics("a1").community is None


class TestInfluence:
    def test_groups_and_network_stats(self, store, star):
        hub, spokes, lonely = star
        MetricsEngine(store, NetworkXAnalytics()).recompute()
        report = analyze_influence(store, hub_min_degree=3)

        assert report.top_influencers[0].entity_id == hub
        assert [e.entity_id for e in report.hubs] == [hub]
        assert [e.entity_id for e in report.bridges] == [hub]
        assert [e.entity_id for e in report.isolated] == [lonely]
        assert report.stats.nodes == 5 and report.stats.edges == 3
        assert report.stats.avg_degree == pytest.approx(1.2)
        assert report.stats.density == pytest.approx(0.3)
        assert report.stats.clustering == 0.0

    def test_degree_only_metrics_have_no_bridges(self, store, star):
        hub, _, _ = star
        MetricsEngine(store, analytics=None).recompute()
        report = analyze_influence(store, hub_min_degree=3)
        assert report.bridges == []
        assert [e.entity_id for e in report.hubs] == [hub]

    def test_before_any_metrics_refresh(self, store, star):
        report = analyze_influence(store)
        assert report.top_influencers == [] and report.hubs == []
        assert report.stats.nodes == 5
        assert report.as_dict()["stats"]["edges"] == 3
