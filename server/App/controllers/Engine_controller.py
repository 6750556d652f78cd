"""
Vector Engine Controller

Single entry point used by the API layer and by the conversational
orchestration layer. Every collaborator (session factory, embedding gateway,
usage ledger, event sinks) is constructed once at process start and passed in.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from App.schema.Optimization_schema import (
    ApplyOutcome,
    BatchOperation,
    BatchPlan,
    HealthCheck,
    IndexMetric,
    MaintenanceTask,
    OptimizationRecommendation,
    PerformanceSample,
    QueryPlanAnalysis,
    VectorIndexConfiguration,
)
from App.schema.Search_schema import HybridWeights, SearchFilter, SearchResult
from App.services.EmbeddingService import (
    EmbeddingCacheRepository,
    EmbeddingGateway,
    EmbeddingProvider,
    OllamaEmbeddingProvider,
)
from App.services.HealthService import HealthService
from App.services.IndexAnalyzer import IndexAnalyzer
from App.services.MaintenanceScheduler import MaintenanceScheduler
from App.services.OptimizationService import OptimizationService, RecommendationExecutor
from App.services.PerformanceMonitor import PerformanceMonitor
from App.services.UsageLedger import InMemoryUsageLedger, RedisUsageLedger, UsageLedger
from App.services.VectorService import VectorService
from App.utils.events import EventEmitter, EventSink
from Config.settings import Settings

logger = logging.getLogger(__name__)


class VectorEngine:
    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker,
        embeddings: EmbeddingGateway,
        usage: UsageLedger,
        events: Optional[EventEmitter] = None,
    ):
        self.settings = settings
        self.policy = settings.optimizer
        self.events = events or EventEmitter()
        self.usage = usage
        self.embeddings = embeddings

        self.search = VectorService(
            session_factory, embeddings, self.events, query_timeout=settings.store_query_timeout
        )
        self.analyzer = IndexAnalyzer(session_factory, self.policy)
        self.optimizer = OptimizationService(session_factory, self.analyzer, self.policy, self.events)
        self.executor = RecommendationExecutor(session_factory, self.events)
        self.monitor = PerformanceMonitor(session_factory, self.policy, self.events)
        self.maintenance = MaintenanceScheduler(session_factory, self.policy, self.events, monitor=self.monitor)
        self.health = HealthService(self.monitor, self.analyzer, self.policy)

    # --- Search ---

    async def _account(self, chatbot_id: Optional[str]) -> None:
        if not chatbot_id:
            return
        await self.usage.check_and_record(
            f"search:{chatbot_id}",
            limit=self.settings.search_rate_limit,
            window_seconds=self.settings.usage_window_seconds,
        )

    async def similarity_search(
        self,
        query: str,
        chatbot_id: Optional[str] = None,
        session_id: Optional[str] = None,
        filters: Optional[SearchFilter] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        await self._account(chatbot_id)
        return await self.search.similarity_search(query, chatbot_id, session_id, filters, timeout)

    async def hybrid_search(
        self,
        query: str,
        chatbot_id: Optional[str] = None,
        session_id: Optional[str] = None,
        filters: Optional[SearchFilter] = None,
        weights: Optional[HybridWeights] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        await self._account(chatbot_id)
        return await self.search.hybrid_search(query, chatbot_id, session_id, filters, weights, timeout)

    async def find_similar_documents(self, document_id: str, chatbot_id: Optional[str] = None,
                                     limit: int = 5) -> List[SearchResult]:
        return await self.search.find_similar_documents(document_id, chatbot_id, limit)

    async def batch_process_embeddings(self, documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self.search.batch_process_embeddings(documents)

    # --- Optimization ---

    async def analyze_index_performance(self) -> List[IndexMetric]:
        return await self.analyzer.analyze_index_performance()

    async def optimize_indexes(
        self, table_name: str = "document_chunks", config: Optional[VectorIndexConfiguration] = None
    ) -> List[OptimizationRecommendation]:
        return await self.optimizer.optimize_indexes(table_name, config)

    async def apply_recommendations(
        self, recommendations: Sequence[OptimizationRecommendation], dry_run: bool = False
    ) -> List[ApplyOutcome]:
        return await self.executor.apply(recommendations, dry_run=dry_run)

    def batch_optimization(self, operations: Sequence[BatchOperation]) -> BatchPlan:
        return self.optimizer.batch_optimization(operations)

    async def optimize_query(self, query_text: str, parameters: Optional[Dict[str, Any]] = None) -> QueryPlanAnalysis:
        return await self.optimizer.optimize_query(query_text, parameters)

    async def run_maintenance(self, run_vacuum: bool = True, run_analyze: bool = True,
                              cleanup: bool = True) -> List[MaintenanceTask]:
        return await self.maintenance.run_maintenance_routines(run_vacuum, run_analyze, cleanup)

    # --- Monitoring ---

    async def start_monitoring(self, interval_seconds: Optional[float] = None) -> None:
        await self.monitor.start(interval_seconds or self.settings.monitor_interval_seconds)

    async def stop_monitoring(self) -> None:
        await self.monitor.stop()

    def get_performance_history(self, hours: float = 24) -> List[PerformanceSample]:
        return self.monitor.get_history(hours)

    async def get_health_check(self) -> HealthCheck:
        return await self.health.get_health_check()

    async def close(self) -> None:
        await self.stop_monitoring()
        await self.usage.close()


def build_vector_engine(
    settings: Settings,
    session_factory: async_sessionmaker,
    provider: Optional[EmbeddingProvider] = None,
    usage: Optional[UsageLedger] = None,
    sinks: Optional[List[EventSink]] = None,
    use_embedding_cache: bool = True,
) -> VectorEngine:
    """Wire the engine from settings; any collaborator can be overridden."""
    provider = provider or OllamaEmbeddingProvider(settings.ollama_host, settings.embedding_timeout)
    cache = (
        EmbeddingCacheRepository(session_factory, settings.store_query_timeout)
        if use_embedding_cache else None
    )
    gateway = EmbeddingGateway(
        provider,
        model=settings.embedding_model,
        dimensions=settings.embedding_dim,
        timeout=settings.embedding_timeout,
        cache=cache,
    )
    if usage is None:
        usage = (
            RedisUsageLedger.from_url(settings.redis_url, retention=settings.usage_retention)
            if settings.redis_url else InMemoryUsageLedger(settings.usage_retention)
        )
    logger.info(f"🧭 Usage ledger: {type(usage).__name__}, embedding cache: {cache is not None}")
    return VectorEngine(settings, session_factory, gateway, usage, EventEmitter(sinks))
