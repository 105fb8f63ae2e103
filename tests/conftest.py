import pytest

from network_intel.graph.models import EntityCandidate, EntityKind
from network_intel.graph.sqlite_store import SQLiteGraphStore

DIM = 8


@pytest.fixture
def store(tmp_path):
    s = SQLiteGraphStore(path=str(tmp_path / "graph.db"), embedding_dim=DIM)
    s.init()
    return s


@pytest.fixture
def add(store):
    """Shortcut: add(name, kind="person", **candidate_fields) -> id"""

    def _add(name, kind=EntityKind.PERSON, **kw):
        return store.upsert_entity(EntityCandidate(name=name, kind=kind, **kw))

    return _add
