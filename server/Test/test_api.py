import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError, ProgrammingError

from App.api.Monitoring_router import router as monitoring_router
from App.api.Optimization_router import router as optimization_router
from App.api.Search_router import router as search_router
from App.api.errors import to_http_exception
from App.controllers.Engine_controller import build_vector_engine
from App.exceptions import EmbeddingError, EmbeddingTimeoutError
from App.services.UsageLedger import InMemoryUsageLedger
from Config.settings import Settings
from conftest import TEST_DIM, HashEmbeddingProvider, chunk_row


def make_client(store, sink, **settings_overrides):
    settings = Settings(embedding_dim=TEST_DIM, **settings_overrides)
    engine = build_vector_engine(
        settings,
        store,
        provider=HashEmbeddingProvider(),
        usage=InMemoryUsageLedger(settings.usage_retention),
        sinks=[sink],
        use_embedding_cache=False,
    )
    app = FastAPI()
    app.include_router(search_router, prefix="/api/v1/search")
    app.include_router(optimization_router, prefix="/api/v1/optimization")
    app.include_router(monitoring_router, prefix="/api/v1/monitoring")
    app.state.settings = settings
    app.state.engine = engine
    return TestClient(app)


@pytest.fixture
def client(store, sink):
    with make_client(store, sink, search_rate_limit=2) as test_client:
        yield test_client


def test_similarity_search(store, client):
    store.on("<=>", rows=[chunk_row("c1", 0.9), chunk_row("c2", 0.6)])

    response = client.post("/api/v1/search/similarity", json={
        "query": "refund policy", "product_ids": ["P1"], "min_similarity": 0.5, "max_results": 5,
    })

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [r["id"] for r in body["results"]] == ["c1", "c2"]


def test_invalid_filter_is_422_with_guidance(store, client):
    response = client.post("/api/v1/search/similarity", json={"query": "q", "max_results": 100})
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["error"] == "FilterValidationError"
    assert detail["guidance"]
    assert store.executed == []


def test_rate_limit_per_chatbot(store, client):
    store.on("<=>", rows=[])
    payload = {"query": "q", "chatbot_id": "bot-1"}
    assert client.post("/api/v1/search/similarity", json=payload).status_code == 200
    assert client.post("/api/v1/search/similarity", json=payload).status_code == 200
    assert client.post("/api/v1/search/similarity", json=payload).status_code == 429
    assert client.post("/api/v1/search/similarity", json={"query": "q", "chatbot_id": "bot-2"}).status_code == 200


def test_store_not_ready_is_503(store, client):
    store.on("<=>", error=ProgrammingError("SELECT", {}, Exception('relation "document_chunks" does not exist')))
    response = client.post("/api/v1/search/similarity", json={"query": "q"})
    assert response.status_code == 503
    assert "migration" in response.json()["detail"]["guidance"]


def test_store_failure_is_502(store, client):
    store.on("ts_rank", error=OperationalError("SELECT", {}, Exception("connection reset")))
    store.on("<=>", rows=[])
    response = client.post("/api/v1/search/hybrid", json={"query": "q"})
    assert response.status_code == 502


def test_timeout_is_504(store, sink):
    store.on("<=>", rows=[], delay=0.5)
    with make_client(store, sink, store_query_timeout=0.05) as slow_client:
        response = slow_client.post("/api/v1/search/similarity", json={"query": "q"})
    assert response.status_code == 504
    assert response.json()["detail"]["context"]["retryable"] is True


def test_embedding_failures_map_by_kind():
    timeout = to_http_exception(EmbeddingTimeoutError("slow", "test-embed", 5, 0.05))
    failure = to_http_exception(EmbeddingError("bad body", "test-embed", 5))

    assert timeout.status_code == 504
    assert timeout.detail["error"] == "EmbeddingTimeoutError"
    assert timeout.detail["context"]["retryable"] is True
    assert failure.status_code == 502


def test_hybrid_search(store, client):
    store.on("<=>", rows=[chunk_row("A", 0.9), chunk_row("B", 0.8)])
    store.on("ts_rank", rows=[chunk_row("B", 0.4), chunk_row("C", 0.3)])

    response = client.post("/api/v1/search/hybrid", json={"query": "refund", "vector_weight": 0.7})

    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["id"] == "B"
    assert results[0]["rank_origin"] == "hybrid"


def test_similar_documents(store, client):
    store.on("AVG(embedding)", scalar="[" + ",".join(["0.1"] * TEST_DIM) + "]")
    store.on("<=>", rows=[chunk_row("x", 0.8, document_id="doc-2")])
    response = client.get("/api/v1/search/similar-documents/doc-1", params={"limit": 3})
    assert response.status_code == 200
    assert response.json()["count"] == 1


def test_recommendations_and_dry_run_apply(store, client):
    store.on("pg_stat_user_indexes", rows=[])
    store.on("WHERE relname = :table_name", rows=[{"row_count": 50_000, "size_mb": 1.0,
                                                   "last_vacuum": None, "last_analyze": None}])

    recs = client.post("/api/v1/optimization/recommendations", json={"table_name": "document_chunks"})
    assert recs.status_code == 200
    [rec] = recs.json()
    assert rec["priority"] == "high"
    assert rec["cost_benefit_score"] == 100
    assert rec["auto_applicable"] is True

    applied = client.post("/api/v1/optimization/apply", json={"table_name": "document_chunks"})
    assert applied.status_code == 200
    [outcome] = applied.json()
    assert outcome["dry_run"] is True
    assert not store.statements("CREATE INDEX")


def test_table_name_must_be_an_identifier(client):
    response = client.post("/api/v1/optimization/recommendations", json={"table_name": "chunks; DROP TABLE x"})
    assert response.status_code == 422


def test_batch_planning_route(store, client):
    operations = [{"type": "insert", "data": {"id": i}} for i in range(120)] + [{"type": "search", "data": "q"}] * 2

    response = client.post("/api/v1/optimization/batch", json={"operations": operations})

    assert response.status_code == 200
    body = response.json()
    assert [len(batch) for batch in body["optimized_batches"]] == [100, 20, 2]
    assert body["estimated_time_reduction_ms"] == (120 - 2) * 50 + 2 * 30
    assert store.executed == []


def test_batch_planning_rejects_unknown_operation(client):
    response = client.post("/api/v1/optimization/batch", json={"operations": [{"type": "delete"}]})
    assert response.status_code == 422
    assert client.post("/api/v1/optimization/batch", json={"operations": []}).status_code == 422


def test_monitoring_lifecycle_and_health(store, client):
    store.on("pg_stat_database", scalar=99.0)

    assert client.post("/api/v1/monitoring/start", json={"interval_seconds": 60}).status_code == 202
    assert client.post("/api/v1/monitoring/stop").status_code == 200
    assert client.post("/api/v1/monitoring/stop").status_code == 200

    history = client.get("/api/v1/monitoring/history", params={"hours": 1})
    assert history.status_code == 200

    health = client.get("/api/v1/monitoring/health")
    assert health.status_code == 200
    assert health.json()["overall_health"] in ("healthy", "warning", "critical")


def test_liveness():
    import main
    response = TestClient(main.app).get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"
