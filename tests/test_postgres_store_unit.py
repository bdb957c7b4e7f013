from datetime import datetime, timezone

import pytest
from psycopg.types.json import Jsonb

from littleagent.storage.postgres import PostgresStore, _adapt, _escape_like


class DummyPool:
    def connection(self):
        raise AssertionError("database access should be stubbed in unit tests")


@pytest.fixture
def pg_store():
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = DummyPool()
    return store


def test_like_patterns_are_escaped():
    assert _escape_like("100%_off\\") == "100\\%\\_off\\\\"


def test_json_columns_are_wrapped():
    assert isinstance(_adapt("tags", ["tech"]), Jsonb)
    assert isinstance(_adapt("meta", {"usage": {}}), Jsonb)
    assert _adapt("tags", None) is None
    assert _adapt("name", "Acme") == "Acme"


def test_row_to_brand_defaults_tags():
    now = datetime.now(timezone.utc)
    brand = PostgresStore._row_to_brand(
        {"id": "b1", "workspace_id": "w1", "name": "Acme", "tags": None, "created_at": now, "updated_at": now}
    )
    assert brand.tags == []
    assert brand.pipeline_stage == "research"


def test_unknown_brand_fields_rejected_before_io(pg_store):
    with pytest.raises(ValueError):
        pg_store.create_brand("w1", "Acme", owner_id="someone-else")
