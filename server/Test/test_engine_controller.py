import pytest

from App.controllers.Engine_controller import build_vector_engine
from App.exceptions import RateLimitExceededError
from App.services.UsageLedger import InMemoryUsageLedger, RedisUsageLedger
from App.utils.events import SEARCH_SIMILARITY
from Config.settings import OptimizerPolicy, Settings
from conftest import TEST_DIM, HashEmbeddingProvider, chunk_row


def test_ledger_follows_redis_url(store):
    local = build_vector_engine(Settings(embedding_dim=TEST_DIM), store, provider=HashEmbeddingProvider())
    shared = build_vector_engine(
        Settings(embedding_dim=TEST_DIM, redis_url="redis://localhost:6379/0"), store,
        provider=HashEmbeddingProvider(),
    )
    assert isinstance(local.usage, InMemoryUsageLedger)
    assert isinstance(shared.usage, RedisUsageLedger)


def test_policy_is_shared_by_every_component(store):
    policy = OptimizerPolicy(latency_budget_ms=120)
    engine = build_vector_engine(
        Settings(embedding_dim=TEST_DIM, optimizer=policy), store, provider=HashEmbeddingProvider()
    )
    for component in (engine.analyzer, engine.optimizer, engine.monitor, engine.maintenance, engine.health):
        assert component.policy.latency_budget_ms == 120


@pytest.mark.asyncio
async def test_searches_are_accounted_per_chatbot(store, sink):
    store.on("<=>", rows=[chunk_row("c1", 0.9)])
    engine = build_vector_engine(
        Settings(embedding_dim=TEST_DIM, search_rate_limit=1), store,
        provider=HashEmbeddingProvider(), sinks=[sink], use_embedding_cache=False,
    )

    await engine.similarity_search("q", chatbot_id="bot-1")
    with pytest.raises(RateLimitExceededError):
        await engine.hybrid_search("q", chatbot_id="bot-1")
    await engine.similarity_search("q")

    assert len(await engine.usage.history("search:bot-1")) == 1
    assert len(sink.events(SEARCH_SIMILARITY)) == 2


@pytest.mark.asyncio
async def test_close_stops_monitoring(store):
    engine = build_vector_engine(
        Settings(embedding_dim=TEST_DIM), store, provider=HashEmbeddingProvider(), use_embedding_cache=False
    )
    await engine.start_monitoring(interval_seconds=60)
    assert engine.monitor.is_running
    await engine.close()
    assert not engine.monitor.is_running
