"""
Tests for metric_node.api module.

Exercises the HTTP contract with FastAPI's TestClient.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from metric_node.api import IDENTIFY_MESSAGE, create_app
from metric_node.errors import StoreQueryError
from metric_node.query import QueryTranslator, SearchProvider
from metric_node.store import Sample

RANGE = {"from": "2024-01-01T00:00:00Z", "to": "2024-01-01T01:00:00Z"}
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def registry(make_registry):
    return make_registry(
        {"name": "cpu", "interval": 5},
        {"name": "disk", "active": False, "interval": 5},
    )


@pytest.fixture
def client(registry, store):
    store.write(Sample("cpu", 1.5, T0))
    app = create_app(QueryTranslator(registry, store), SearchProvider(registry))
    return TestClient(app)


class TestStaticRoutes:
    @pytest.mark.parametrize("method", ["get", "post"])
    def test_identify(self, client, method):
        response = getattr(client, method)("/")
        assert response.status_code == 200
        assert response.json() == {"message": IDENTIFY_MESSAGE}

    @pytest.mark.parametrize("path", ["/annotations", "/tag-keys", "/tag-values"])
    @pytest.mark.parametrize("method", ["get", "post"])
    def test_empty_lists(self, client, path, method):
        response = getattr(client, method)(path)
        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.parametrize("method", ["get", "post"])
    def test_search(self, client, method):
        response = getattr(client, method)("/search")
        assert response.json() == ["cpu"]


class TestQueryRoute:
    def test_query(self, client):
        response = client.post("/query", json={"targets": [{"target": "cpu"}], "range": RANGE})

        assert response.status_code == 200
        assert response.json() == [{"target": "cpu", "datapoints": [[1.5, 1704067200000]]}]

    def test_query_via_get_with_body(self, client):
        response = client.request(
            "GET",
            "/query",
            json={"targets": [{"target": "cpu", "type": "table"}], "range": RANGE},
        )

        assert response.status_code == 200
        assert response.json()[0]["rows"] == [["cpu", 1.5, 1704067200000]]

    def test_missing_body(self, client):
        assert client.post("/query").status_code == 400

    def test_invalid_json(self, client):
        response = client.post("/query", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_bad_range(self, client):
        response = client.post("/query", json={"targets": [], "range": {"from": "soon", "to": "later"}})
        assert response.status_code == 400

    def test_out_of_range_epoch_is_400(self, client):
        response = client.post("/query", json={"targets": [{"target": "cpu"}], "range": {"from": 0, "to": 10**20}})
        assert response.status_code == 400

    def test_store_failure_is_502(self, registry):
        class FailingStore:
            def query(self, range_filter):
                raise StoreQueryError("database is locked")

        app = create_app(QueryTranslator(registry, FailingStore()), SearchProvider(registry))
        response = TestClient(app).post("/query", json={"targets": [{"target": "cpu"}], "range": RANGE})

        assert response.status_code == 502
        assert "locked" in response.json()["detail"]
