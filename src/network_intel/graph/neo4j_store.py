from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from .analytics import CentralityScores, WeightedEdge
from .models import Entity, Relationship
from .util import batched

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Neo4jConfig:
    uri: str
    user: str
    password: str
    database: str = "neo4j"
    # ingestion performance
    batch_size: int = 500


class Neo4jGraphMirror:
    """Read-optimized copy of the graph in Neo4j.

    The SQLite store stays authoritative; the mirror is refreshed at the end of each
    pipeline run and serves graph-analytics (GDS) workloads.

    Dependency: neo4j>=5 (optional extra).
    """

    def __init__(self, cfg: Neo4jConfig, *, driver: Any | None = None):
        self.cfg = cfg
        if driver is None:
            from neo4j import GraphDatabase  # type: ignore

            # Driver is thread-safe; sessions are lightweight.
            driver = GraphDatabase.driver(cfg.uri, auth=(cfg.user, cfg.password))
        self._driver = driver

    def close(self) -> None:
        self._driver.close()

    def ensure_schema(self) -> None:
        stmts = [
            "CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (n:Entity) REQUIRE n.id IS UNIQUE",
            "CREATE INDEX entity_name IF NOT EXISTS FOR (n:Entity) ON (n.name)",
            "CREATE INDEX entity_importance IF NOT EXISTS FOR (n:Entity) ON (n.importance)",
        ]
        with self._driver.session(database=self.cfg.database) as s:
            for q in stmts:
                s.run(q)

    def refresh(self, *, entities: list[Entity], relationships: list[Relationship]) -> dict[str, int]:
        """Upsert every entity/edge, then drop mirror nodes and edges no longer in the store."""
        tag = uuid.uuid4().hex
        with self._driver.session(database=self.cfg.database) as s:
            for batch in batched(entities, self.cfg.batch_size):
                s.execute_write(self._upsert_nodes_tx, batch, tag)
            for batch in batched(relationships, self.cfg.batch_size):
                s.execute_write(self._upsert_rels_tx, batch, tag)
            removed = s.execute_write(self._prune_tx, tag)
        logger.info(
            "Neo4j mirror refreshed: %d entities, %d relationships, %d stale removed",
            len(entities),
            len(relationships),
            removed,
        )
        return {"entities": len(entities), "relationships": len(relationships), "removed": removed}

    @staticmethod
    def _upsert_nodes_tx(tx, batch: list[Entity], tag: str):
        rows = [
            {
                "id": e.id,
                "name": e.name,
                "kind": e.kind.value,
                "importance": e.importance,
                "is_internal": e.is_internal,
                "is_portfolio": e.is_portfolio,
                "is_pipeline": e.is_pipeline,
                "tags": list(e.tags),
            }
            for e in batch
        ]
        q = """
        UNWIND $rows AS row
        MERGE (n:Entity {id: row.id})
        SET n.name = row.name,
            n.kind = row.kind,
            n.importance = row.importance,
            n.is_internal = row.is_internal,
            n.is_portfolio = row.is_portfolio,
            n.is_pipeline = row.is_pipeline,
            n.tags = row.tags,
            n.sync_tag = $tag
        RETURN count(*) AS n
        """
        tx.run(q, rows=rows, tag=tag)

    @staticmethod
    def _upsert_rels_tx(tx, batch: list[Relationship], tag: str):
        rows = [
            {"src": r.source_id, "dst": r.target_id, "kind": r.kind, "weight": float(r.weight)}
            for r in batch
        ]
        # Relationship types cannot be parameterized; the kind is a property on :RELATES.
        q = """
        UNWIND $rows AS row
        MATCH (a:Entity {id: row.src})
        MATCH (b:Entity {id: row.dst})
        MERGE (a)-[r:RELATES {kind: row.kind}]->(b)
        SET r.weight = row.weight, r.sync_tag = $tag
        RETURN count(*) AS n
        """
        tx.run(q, rows=rows, tag=tag)

    @staticmethod
    def _prune_tx(tx, tag: str) -> int:
        rels = tx.run(
            "MATCH ()-[r:RELATES]->() WHERE r.sync_tag <> $tag DELETE r RETURN count(r) AS n", tag=tag
        ).single()
        nodes = tx.run(
            "MATCH (n:Entity) WHERE n.sync_tag <> $tag DETACH DELETE n RETURN count(n) AS n", tag=tag
        ).single()
        return int((rels["n"] if rels else 0) + (nodes["n"] if nodes else 0))

    def query(self, cypher: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        with self._driver.session(database=self.cfg.database) as s:
            res = s.run(cypher, **(params or {}))
            return [dict(r) for r in res]


class Neo4jGdsAnalytics:
    """Centralities from the Neo4j Graph Data Science library, over the mirrored graph.

    The mirror must have been refreshed first; node/edge arguments only scope the result.
    """

    name = "neo4j-gds"
    graph_name = "network_intel_metrics"

    def __init__(self, mirror: Neo4jGraphMirror):
        self.mirror = mirror

    def _stream(self, proc: str) -> dict[str, float]:
        rows = self.mirror.query(
            f"CALL gds.{proc}.stream($g) YIELD nodeId, score "
            "RETURN gds.util.asNode(nodeId).id AS id, score",
            {"g": self.graph_name},
        )
        return {r["id"]: float(r["score"]) for r in rows}

    def compute(self, node_ids: list[str], edges: list[WeightedEdge]) -> CentralityScores:
        wanted = set(node_ids)
        self.mirror.query("CALL gds.graph.drop($g, false) YIELD graphName RETURN graphName", {"g": self.graph_name})
        self.mirror.query(
            "CALL gds.graph.project($g, 'Entity', {RELATES: {orientation: 'UNDIRECTED', properties: 'weight'}}) "
            "YIELD graphName RETURN graphName",
            {"g": self.graph_name},
        )
        try:
            scores = CentralityScores(
                pagerank=self._stream("pageRank"),
                betweenness=self._stream("betweenness"),
                closeness=self._stream("closeness"),
            )
        finally:
            self.mirror.query(
                "CALL gds.graph.drop($g, false) YIELD graphName RETURN graphName", {"g": self.graph_name}
            )
        for d in (scores.pagerank, scores.betweenness, scores.closeness):
            for k in [k for k in d if k not in wanted]:
                del d[k]
        return scores


def build_mirror(
    *, uri: str | None, user: str | None, password: str | None, database: str = "neo4j"
) -> Neo4jGraphMirror | None:
    if not (uri and user and password):
        return None
    mirror = Neo4jGraphMirror(Neo4jConfig(uri=uri, user=user, password=password, database=database))
    mirror.ensure_schema()
    return mirror
