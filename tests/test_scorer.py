"""
Path scorer tests: semantic ranking, keyword fallback, warm introduction paths and
shortest/strongest connection paths.

Run: pytest tests/test_scorer.py -v
"""

import asyncio

import pytest

from network_intel.errors import ExternalProviderError, NotFoundError, ValidationError
from network_intel.graph.models import EnrichmentPayload, EntityKind
from network_intel.ranking.scorer import (
    PATH_DEGREE_WEIGHT,
    PATH_SHORTEST,
    PATH_STRENGTH_WEIGHT,
    PATH_STRONGEST,
    PathScorer,
    degree_weight,
)

ORG = EntityKind.ORGANIZATION


def unit(i, dim=8):
    v = [0.0] * dim
    v[i] = 1.0
    return v


class FakeEmbedder:
    dim = 8

    def __init__(self, vectors=None, *, fail=False, default=None):
        self.vectors = vectors or {}
        self.fail = fail
        self.default = default or unit(7)

    async def embed(self, text):
        if self.fail:
            raise ExternalProviderError("provider down")
        return self.vectors.get(text, self.default)


@pytest.fixture
def graph(store, add):
    me = add("Pat Partner Internal", is_internal=True)
    fintech = add(
        "Ledger Labs", kind=ORG, description="payments infrastructure", enrichment=EnrichmentPayload(industry="Fintech")
    )
    fintech2 = add("Coin Works", kind=ORG, enrichment=EnrichmentPayload(industry="Fintech"))
    bio = add("Helix Bio", kind=ORG, enrichment=EnrichmentPayload(industry="Biotech"))
    store.set_entity_embedding(fintech, unit(0))
    store.set_entity_embedding(fintech2, unit(0))
    store.set_entity_embedding(bio, unit(1))
    store.upsert_relationship(me, fintech2, "connection", 1.0)
    return {"me": me, "fintech": fintech, "fintech2": fintech2, "bio": bio}


class TestSearch:
    def test_semantic_with_strength_tiebreak(self, store, graph):
        scorer = PathScorer(store, FakeEmbedder({"fintech": unit(0)}))
        res = asyncio.run(scorer.search("fintech"))
        assert not res.degraded
        ids = [c.entity_id for c in res.candidates]
        assert ids == [graph["fintech2"], graph["fintech"]]
        top = res.candidates[0]
        assert top.score == pytest.approx(0.7 * 1.0 + 0.3 * 1.0)
        assert res.candidates[1].relationship_strength == 0.0
        assert all(c.match == "semantic" for c in res.candidates)

    def test_target_strength(self, store, graph):
        store.upsert_relationship(graph["fintech"], graph["bio"], "partner", 0.5)
        scorer = PathScorer(store, FakeEmbedder({"fintech": unit(0)}))
        res = asyncio.run(scorer.search("fintech", target_id=graph["bio"]))
        by_id = {c.entity_id: c for c in res.candidates}
        assert by_id[graph["fintech"]].relationship_strength == 0.5
        assert by_id[graph["fintech2"]].relationship_strength == 0.0
        assert graph["bio"] not in by_id

    def test_keyword_fallback_when_provider_fails(self, store, graph):
        scorer = PathScorer(store, FakeEmbedder(fail=True))
        res = asyncio.run(scorer.search("biotech"))
        assert res.degraded
        assert res.reason == "embedding provider unavailable"
        assert [c.entity_id for c in res.candidates] == [graph["bio"]]
        assert res.candidates[0].match == "keyword"

    def test_keyword_fallback_when_nothing_above_floor(self, store, graph):
        scorer = PathScorer(store, FakeEmbedder())
        res = asyncio.run(scorer.search("payments"))
        assert res.degraded
        assert [c.entity_id for c in res.candidates] == [graph["fintech"]]

    def test_no_embedder(self, store, graph):
        res = asyncio.run(PathScorer(store, None).search("fintech"))
        assert res.degraded
        assert {c.entity_id for c in res.candidates} == {graph["fintech"], graph["fintech2"]}

    def test_dimension_mismatch_raises(self, store, graph):
        scorer = PathScorer(store, FakeEmbedder(default=[1.0, 0.0, 0.0]))
        with pytest.raises(ValidationError):
            asyncio.run(scorer.search("fintech"))

    def test_unknown_target(self, store, graph):
        with pytest.raises(NotFoundError):
            asyncio.run(PathScorer(store, FakeEmbedder()).search("fintech", target_id="missing"))


class TestWarmPaths:
    @pytest.fixture
    def network(self, store, add):
        t1 = add("Alex Internal One", is_internal=True, id="t1")
        t2 = add("Blair Internal Two", is_internal=True, id="t2")
        x = add("Xavier Contact", id="x")
        target = add("Target Company", kind=ORG, id="target")
        store.upsert_relationship(t1, x, "connection", 0.9)
        store.upsert_relationship(x, target, "works_at", 0.6)
        store.upsert_relationship(t2, target, "connection", 0.5)
        return t1, t2, x, target

    def test_paths_ranked_by_strength_and_degree(self, store, network):
        t1, t2, x, target = network
        paths = PathScorer(store).warm_paths(target)
        assert [(p.teammate_id, p.contact_id, p.degree) for p in paths] == [(t1, x, 2), (t2, target, 1)]
        assert paths[0].score == pytest.approx(PATH_STRENGTH_WEIGHT * 0.9 + PATH_DEGREE_WEIGHT * 0.6)
        assert paths[1].score == pytest.approx(PATH_STRENGTH_WEIGHT * 0.5 + PATH_DEGREE_WEIGHT * 1.0)

    def test_max_hops_limits_reach(self, store, network):
        t1, t2, x, target = network
        paths = PathScorer(store).warm_paths(target, max_hops=1)
        assert [(p.teammate_id, p.contact_id) for p in paths] == [(t2, target)]

    def test_unknown_target(self, store):
        with pytest.raises(NotFoundError):
            PathScorer(store).warm_paths("missing")

    def test_degree_weights(self):
        assert degree_weight(1) == 1.0
        assert degree_weight(3) == 0.3
        assert degree_weight(7) == 0.2


class TestConnectionPath:
    @pytest.fixture
    def network(self, store, add):
        for node in ("a", "b", "c", "d", "e", "f"):
            add(f"Person {node.upper()} Example", id=node)
        add("Far Away Company", kind=ORG, id="far")
        store.upsert_relationship("a", "b", "connection", 0.2)
        store.upsert_relationship("a", "c", "connection", 0.9)
        store.upsert_relationship("c", "b", "works_with", 0.9)
        store.upsert_relationship("a", "d", "connection", 0.9)
        store.upsert_relationship("d", "e", "connection", 0.9)
        store.upsert_relationship("a", "f", "connection", 0.3)
        store.upsert_relationship("f", "e", "connection", 0.3)

    def test_shortest_takes_the_direct_weak_edge(self, store, network):
        path = PathScorer(store).connection_path("a", "b", strategy=PATH_SHORTEST)
        assert path.node_ids == ["a", "b"]
        assert path.hops == 1 and path.strength == pytest.approx(0.2)
        assert path.names == ["Person A Example", "Person B Example"]

    def test_strongest_prefers_two_strong_hops(self, store, network):
        path = PathScorer(store).connection_path("a", "b")
        assert path.strategy == PATH_STRONGEST
        assert path.node_ids == ["a", "c", "b"]
        assert path.edge_strengths == [0.9, 0.9]
        assert path.strength == pytest.approx(0.81)

    def test_strongest_respects_max_hops(self, store, network):
        path = PathScorer(store).connection_path("a", "b", max_hops=1)
        assert path.node_ids == ["a", "b"]

    def test_shortest_breaks_hop_ties_by_strength(self, store, network):
        path = PathScorer(store).connection_path("e", "a", strategy=PATH_SHORTEST)
        assert path.node_ids == ["e", "d", "a"]
        assert path.strength == pytest.approx(0.81)

    def test_edges_are_walked_in_both_directions(self, store, network):
        path = PathScorer(store).connection_path("b", "a")
        assert path.node_ids == ["b", "c", "a"]

    def test_unreachable_and_out_of_range(self, store, network):
        scorer = PathScorer(store)
        assert scorer.connection_path("a", "far") is None
        assert scorer.connection_path("b", "e", strategy=PATH_SHORTEST, max_hops=2) is None
        assert scorer.connection_path("b", "e", strategy=PATH_SHORTEST).hops == 3

    def test_same_node(self, store, network):
        path = PathScorer(store).connection_path("a", "a")
        assert path.node_ids == ["a"] and path.hops == 0 and path.strength == 1.0

    def test_bad_arguments(self, store, network):
        scorer = PathScorer(store)
        with pytest.raises(ValidationError):
            scorer.connection_path("a", "b", strategy="fastest")
        with pytest.raises(ValidationError):
            scorer.connection_path("a", "b", max_hops=0)
        with pytest.raises(NotFoundError):
            scorer.connection_path("a", "missing")
