import pytest

from network_intel.retrieval.cache import GraphView, GraphViewCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def node(i, **kw):
    return {"id": i, "name": i.upper(), **kw}


def edge(s, t, kind="connection", weight=0.5):
    return {"source_id": s, "target_id": t, "kind": kind, "weight": weight}


def test_merge_is_idempotent():
    view = GraphView()
    payload = {"nodes": [node("a"), node("b")], "edges": [edge("a", "b")], "has_more": True}
    assert view.merge(payload) == (2, 1)
    assert view.merge(payload) == (0, 0)
    assert view.known_ids() == ["a", "b"]
    assert view.has_more
    assert "a" in view and "z" not in view


def test_later_copy_replaces_earlier():
    view = GraphView()
    view.merge({"nodes": [node("a", importance=0.1)], "edges": [edge("a", "b", weight=0.2)]})
    view.merge({"nodes": [node("a", importance=0.9)], "edges": [edge("a", "b", weight=0.8)], "has_more": False})
    assert view.nodes["a"]["importance"] == 0.9
    assert view.edges["a|b|connection"]["weight"] == 0.8
    assert not view.has_more


class TestGraphViewCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = GraphViewCache(max_age_s=10, clock=clock)
        v = GraphView()
        cache.put("overview", v)
        clock.now = 10
        assert cache.get("overview") is v
        clock.now = 10.5
        assert cache.get("overview") is None
        assert len(cache) == 0

    def test_evicts_oldest(self):
        cache = GraphViewCache(max_size=2, clock=FakeClock())
        for key in ("a", "b", "c"):
            cache.put(key, GraphView())
        assert cache.get("a") is None
        assert cache.get("b") is not None and cache.get("c") is not None

    def test_reput_refreshes_position(self):
        cache = GraphViewCache(max_size=2, clock=FakeClock())
        cache.put("a", GraphView())
        cache.put("b", GraphView())
        cache.put("a", GraphView())
        cache.put("c", GraphView())
        assert cache.get("b") is None
        assert cache.get("a") is not None

    def test_clear(self):
        cache = GraphViewCache()
        cache.put("a", GraphView())
        cache.clear()
        assert len(cache) == 0

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            GraphViewCache(max_size=0)
