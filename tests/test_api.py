"""
HTTP API over the record store, query engine and ingestion pipeline.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedEmbedding
from vecsearch.api.main import create_app
from vecsearch.api.schemas import ErrorResponse
from vecsearch.vector.embeddings import EmbedderUnavailableError


@pytest.fixture
def embedder():
    return ScriptedEmbedding(dimension=2, vectors={
        "smartphone": [1.0, 0.0],
        "Phone. A phone": [1.0, 0.0],
        "Tablet. A tablet": [0.9, 0.1],
        "Speaker. A speaker": [0.0, 1.0],
    })


@pytest.fixture
def client(store, embedder):
    with TestClient(create_app(store=store, embedder=embedder)) as test_client:
        yield test_client


def _seed(client):
    response = client.post("/reseed", json={"records": [
        {"id": "phone", "text": "Phone. A phone", "payload": {"name": "Phone", "category": "mobile"}},
        {"id": "tablet", "text": "Tablet. A tablet", "payload": {"name": "Tablet", "category": "mobile"}},
        {"id": "speaker", "text": "Speaker. A speaker", "payload": {"name": "Speaker", "category": "audio"}},
    ]})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["dimension"] == 2
    assert data["record_count"] == 0


def test_reseed_and_search(client):
    summary = _seed(client)
    assert summary["succeeded"] == 3
    assert summary["failures"] == []

    response = client.post("/search", json={"query": "smartphone", "limit": 2, "projection": ["name"]})

    assert response.status_code == 200
    data = response.json()
    assert data["query"] == "smartphone"
    assert [r["id"] for r in data["results"]] == ["phone", "tablet"]
    assert data["results"][0]["payload"] == {"name": "Phone"}
    assert data["results"][0]["score"] == pytest.approx(1.0)


def test_search_with_filter(client):
    _seed(client)
    response = client.post("/search", json={"query": "smartphone", "filter": {"category": "audio"}})
    assert [r["id"] for r in response.json()["results"]] == ["speaker"]


def test_reseed_reports_failures(client, embedder):
    embedder.failures["Tablet. A tablet"] = EmbedderUnavailableError("down")
    client.app.state.pipeline.retry_config.max_attempts = 1

    summary = _seed(client)

    assert summary["succeeded"] == 2
    assert summary["failed"] == 1
    assert summary["failures"][0]["record_id"] == "tablet"


def test_empty_query_rejected(client, embedder):
    response = client.post("/search", json={"query": "   "})
    assert response.status_code == 422
    assert embedder.calls == []


def test_invalid_parameters_are_400(client):
    response = client.post("/search", json={"query": "smartphone", "limit": 5, "num_candidates": 2})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidParameter"


def test_embedder_outage_is_503(client, embedder):
    embedder.failures["smartphone"] = EmbedderUnavailableError("down")
    client.app.state.engine.retry_config.max_attempts = 1

    response = client.post("/search", json={"query": "smartphone"})

    assert response.status_code == 503
    assert response.json()["error"] == "EmbeddingUnavailable"


def test_record_crud(client):
    response = client.put("/records/r1", json={"vector": [3.0, 4.0], "payload": {"name": "R1"}})
    assert response.status_code == 200
    assert response.json() == {"id": "r1", "version": 1}

    response = client.get("/records/r1", params={"include_vector": True})
    assert response.status_code == 200
    data = response.json()
    assert data["payload"] == {"name": "R1"}
    assert data["vector"] == [3.0, 4.0]

    response = client.post("/records/delete", json={"ids": ["r1", "nope"]})
    assert response.json() == {"deleted": 1}

    response = client.get("/records/r1")
    assert response.status_code == 404
    assert response.json()["error"] == "RecordNotFound"


def test_upsert_wrong_dimension_is_400(client):
    response = client.put("/records/r1", json={"vector": [1.0, 0.0, 0.0]})
    assert response.status_code == 400
    assert response.json()["error"] == "DimensionMismatch"


def test_rebuild_centroids(client):
    _seed(client)
    response = client.post("/maintenance/centroids", json={"num_clusters": 2, "seed": 1})
    assert response.status_code == 200
    assert response.json() == {"clusters": 2}


def test_error_responses_are_documented(client):
    schema = client.get("/openapi.json").json()

    assert set(schema["components"]["schemas"]["ErrorResponse"]["required"]) == {"error", "detail"}
    search_responses = schema["paths"]["/search"]["post"]["responses"]
    for status in ("400", "503"):
        ref = search_responses[status]["content"]["application/json"]["schema"]["$ref"]
        assert ref.endswith("/ErrorResponse")

    response = client.get("/records/missing")
    assert ErrorResponse(**response.json()).error == "RecordNotFound"
