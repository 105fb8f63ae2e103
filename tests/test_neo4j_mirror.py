"""
Neo4j mirror tests against a recording fake driver (no server needed).

Run: pytest tests/test_neo4j_mirror.py -v
"""

from network_intel.graph.models import Entity, EntityKind, Relationship
from network_intel.graph.neo4j_store import Neo4jConfig, Neo4jGdsAnalytics, Neo4jGraphMirror, build_mirror


class FakeResult(list):
    def single(self):
        return self[0] if self else None


class FakeSession:
    def __init__(self, driver):
        self.driver = driver

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def run(self, query, **params):
        self.driver.queries.append((" ".join(query.split()), params))
        return FakeResult(self.driver.responder(query, params))

    def execute_write(self, fn, *args):
        self.driver.writes += 1
        return fn(self, *args)


class FakeDriver:
    def __init__(self, responder=None):
        self.queries = []
        self.writes = 0
        self.closed = False
        self.responder = responder or (lambda q, p: [{"n": 1}])

    def session(self, database=None):
        self.database = database
        return FakeSession(self)

    def close(self):
        self.closed = True


def mirror(driver, batch_size=2):
    return Neo4jGraphMirror(Neo4jConfig(uri="bolt://x", user="u", password="p", batch_size=batch_size), driver=driver)


def test_ensure_schema_creates_constraint_and_indexes():
    driver = FakeDriver()
    mirror(driver).ensure_schema()
    assert len(driver.queries) == 3
    assert "REQUIRE n.id IS UNIQUE" in driver.queries[0][0]


def test_refresh_batches_and_prunes_with_one_tag():
    driver = FakeDriver()
    entities = [Entity(id=f"e{i}", name=f"Entity {i}", kind=EntityKind.ORGANIZATION) for i in range(3)]
    rels = [Relationship(source_id="e0", target_id="e1", kind="partner", weight=0.5)]

    counts = mirror(driver).refresh(entities=entities, relationships=rels)

    assert counts == {"entities": 3, "relationships": 1, "removed": 2}
    # 2 node batches, 1 edge batch, 1 prune
    assert driver.writes == 4
    tags = {p["tag"] for _, p in driver.queries}
    assert len(tags) == 1
    node_rows = [r for q, p in driver.queries if "MERGE (n:Entity" in q for r in p["rows"]]
    assert [r["id"] for r in node_rows] == ["e0", "e1", "e2"]
    assert node_rows[0]["kind"] == "organization"
    [(_, edge_params)] = [(q, p) for q, p in driver.queries if "MERGE (a)-[r:RELATES" in q]
    assert edge_params["rows"] == [{"src": "e0", "dst": "e1", "kind": "partner", "weight": 0.5}]
    assert driver.database == "neo4j"


def test_close():
    driver = FakeDriver()
    mirror(driver).close()
    assert driver.closed


def test_build_mirror_needs_credentials():
    assert build_mirror(uri=None, user="u", password="p") is None
    assert build_mirror(uri="bolt://x", user="u", password=None) is None


def test_gds_analytics_streams_scores_and_scopes_to_nodes():
    def responder(query, params):
        if "stream" in query:
            return [{"id": "a", "score": 0.5}, {"id": "gone", "score": 0.9}]
        return [{"graphName": params.get("g")}]

    driver = FakeDriver(responder)
    scores = Neo4jGdsAnalytics(mirror(driver)).compute(["a", "b"], [("a", "b", 1.0)])

    assert scores.pagerank == {"a": 0.5}
    assert scores.betweenness == {"a": 0.5}
    assert scores.closeness == {"a": 0.5}
    statements = [q for q, _ in driver.queries]
    assert "gds.graph.project" in statements[1]
    assert "gds.graph.drop" in statements[-1]
