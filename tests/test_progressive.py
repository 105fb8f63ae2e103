"""
Progressive retrieval tests: mode presets, clamping, expansion without duplicates and
deadline truncation.

Run: pytest tests/test_progressive.py -v
"""

import itertools

import pytest

from network_intel.errors import NotFoundError, ValidationError
from network_intel.graph.models import EntityKind, EntityMetrics
from network_intel.retrieval.cache import GraphView, edge_key
from network_intel.retrieval.progressive import ProgressiveRetrievalEngine, RetrievalMode, edge_view

ORG = EntityKind.ORGANIZATION


@pytest.fixture
def graph(store, add):
    ids = {
        "hub": add("Acme Corp", kind=ORG, id="hub"),
        "me": add("Pat Morgan", is_internal=True, id="me"),
        "a": add("Jane Smith", id="a"),
        "b": add("John Doe Example", id="b"),
        "c": add("Maria Lopez", is_portfolio=True, id="c"),
    }
    store.upsert_relationship("a", "hub", "works_at", 0.9)
    store.upsert_relationship("b", "hub", "works_at", 0.3)
    store.upsert_relationship("c", "hub", "advisor", 0.6)
    store.upsert_relationship("me", "a", "connection", 0.5)
    importance = {"hub": 0.9, "me": 0.2, "a": 0.6, "b": 0.4, "c": 0.75}
    degrees = store.degrees()
    store.replace_metrics(
        [EntityMetrics(i, degrees.get(i, 0), None, None, None, imp) for i, imp in importance.items()],
        mode="degree_only",
    )
    return ids


def ids(nodes):
    return [n.id for n in nodes]


class TestLoadInitial:
    def test_overview_puts_internal_first(self, store, graph):
        s = ProgressiveRetrievalEngine(store).load_initial("overview")
        assert ids(s.nodes) == ["me", "hub", "c", "a"]
        assert s.total_available == 4 and not s.has_more and not s.truncated
        assert {e.key for e in s.edges} == {("a", "hub", "works_at"), ("c", "hub", "advisor"), ("me", "a", "connection")}

    def test_edges_only_among_returned_nodes(self, store, graph):
        s = ProgressiveRetrievalEngine(store).load_initial(RetrievalMode.HIGH_IMPORTANCE)
        assert ids(s.nodes) == ["hub", "c"]
        assert [e.key for e in s.edges] == [("c", "hub", "advisor")]

    def test_flag_modes(self, store, graph):
        engine = ProgressiveRetrievalEngine(store)
        assert ids(engine.load_initial("portfolio").nodes) == ["c"]
        assert ids(engine.load_initial("internal").nodes) == ["me"]
        assert engine.load_initial("pipeline").nodes == []

    def test_hubs_rank_by_degree(self, store, graph):
        s = ProgressiveRetrievalEngine(store).load_initial("hubs")
        assert ids(s.nodes) == ["hub", "a", "c", "b", "me"]

    def test_max_nodes_limits_and_reports_more(self, store, graph):
        s = ProgressiveRetrievalEngine(store).load_initial("hubs", max_nodes=2)
        assert ids(s.nodes) == ["hub", "a"]
        assert s.has_more and s.total_available == 5

    def test_unknown_mode(self, store, graph):
        with pytest.raises(ValidationError):
            ProgressiveRetrievalEngine(store).load_initial("everything")

    def test_clamp(self, store):
        engine = ProgressiveRetrievalEngine(store)
        assert engine.clamp(0) == 1
        assert engine.clamp(-5) == 1
        assert engine.clamp(1000) == 200
        assert engine.clamp(None) == 50

    def test_empty_graph(self, store):
        s = ProgressiveRetrievalEngine(store).load_initial()
        assert s.nodes == [] and s.edges == [] and not s.has_more


class TestExpand:
    def test_ranks_neighbours_by_weight(self, store, graph):
        s = ProgressiveRetrievalEngine(store).expand("hub", already_loaded=["hub", "me"], max_nodes=2)
        assert ids(s.nodes) == ["a", "c"]
        assert s.has_more and s.total_available == 3
        assert {e.key for e in s.edges} == {("a", "hub", "works_at"), ("c", "hub", "advisor"), ("me", "a", "connection")}

    def test_never_resends_loaded_nodes(self, store, graph):
        engine = ProgressiveRetrievalEngine(store)
        loaded = ids(engine.load_initial("overview").nodes)
        s = engine.expand("hub", already_loaded=loaded)
        assert ids(s.nodes) == ["b"]
        assert not set(ids(s.nodes)) & set(loaded)
        assert [e.key for e in s.edges] == [("b", "hub", "works_at")]

    def test_fully_loaded_node(self, store, graph):
        s = ProgressiveRetrievalEngine(store).expand("me", already_loaded=["a"])
        assert s.nodes == [] and s.edges == []
        assert not s.has_more and s.total_available == 0

    def test_unknown_node(self, store, graph):
        with pytest.raises(NotFoundError):
            ProgressiveRetrievalEngine(store).expand("missing")


class TestDeadline:
    def test_truncated_initial_keeps_edges_of_returned_nodes(self, store, graph):
        ticks = itertools.count()
        engine = ProgressiveRetrievalEngine(store, timeout_s=2.5, clock=lambda: next(ticks))
        s = engine.load_initial("hubs")
        assert ids(s.nodes) == ["hub", "a"]
        assert s.truncated and s.has_more
        assert [e.key for e in s.edges] == [("a", "hub", "works_at")]

    def test_truncated_expand_keeps_edges_of_returned_nodes(self, store, graph):
        ticks = itertools.count()
        engine = ProgressiveRetrievalEngine(store, timeout_s=1.5, clock=lambda: next(ticks))
        s = engine.expand("hub", already_loaded=["me"])
        assert ids(s.nodes) == ["a"]
        assert s.truncated and s.has_more
        assert {e.key for e in s.edges} == {("a", "hub", "works_at"), ("me", "a", "connection")}

    def test_view_built_from_truncated_slice_is_complete(self, store, graph):
        ticks = itertools.count()
        view = GraphView()
        view.merge(ProgressiveRetrievalEngine(store, timeout_s=2.5, clock=lambda: next(ticks)).load_initial("hubs").as_dict())

        engine = ProgressiveRetrievalEngine(store)
        for node_id in list(view.known_ids()):
            view.merge(engine.expand(node_id, view.known_ids()).as_dict())

        expected = {edge_key(edge_view(r)) for r in store.relationships_among(view.known_ids())}
        assert set(view.edges) == expected
        assert "a|hub|works_at" in view.edges

    def test_zero_timeout_returns_partial(self, store, graph):
        s = ProgressiveRetrievalEngine(store, timeout_s=0).expand("hub")
        assert s.truncated and s.has_more
        assert s.nodes == [] and s.edges == []
