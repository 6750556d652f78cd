"""
Runtime configuration for the vector retrieval engine.

Values come from the environment (loaded from `.env` by python-dotenv) and are
built once at process start, then passed to every component that needs them.
"""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


class OptimizerPolicy(BaseModel):
    """
    Tuning constants used by the analyzer, recommender, scheduler and monitor.

    These are workload calibrations rather than derived values, so each one is
    a named field that can be overridden through `OPTIMIZER_<FIELD>` env vars.
    """

    rows_per_partition: int = Field(1000, gt=0)
    min_partitions: int = Field(1, ge=1)
    max_partitions: int = Field(32768, ge=1)
    partition_tolerance: float = Field(0.2, ge=0)
    default_ivf_lists: int = Field(100, ge=1)

    fragmentation_threshold: float = Field(0.3, ge=0)
    latency_budget_ms: float = Field(200.0, gt=0)
    high_latency_ms: float = Field(300.0, gt=0)
    critical_latency_ms: float = Field(500.0, gt=0)

    graph_index_min_rows: int = Field(10_000, ge=0)
    graph_index_latency_ms: float = Field(150.0, ge=0)
    hnsw_m: int = Field(16, ge=2)
    hnsw_ef_construction: int = Field(64, ge=4)

    vacuum_stale_days: float = Field(7.0, ge=0)
    analyze_stale_days: float = Field(3.0, ge=0)
    vacuum_urgent_days: float = Field(14.0, ge=0)
    analyze_urgent_days: float = Field(7.0, ge=0)
    history_cleanup_days: float = Field(30.0, ge=0)

    cache_hit_floor: float = Field(90.0, ge=0, le=100)
    cache_hit_critical: float = Field(75.0, ge=0, le=100)
    pool_usage_ceiling: float = Field(80.0, ge=0, le=100)
    pool_usage_critical: float = Field(95.0, ge=0, le=100)
    low_index_hit_ratio: float = Field(80.0, ge=0, le=100)

    history_capacity: int = Field(1000, ge=1)

    write_batch_size: int = Field(100, ge=1)
    round_trip_ms: float = Field(50.0, ge=0)
    parallel_search_saving_ms: float = Field(30.0, ge=0)
    pooling_advice_operations: int = Field(500, ge=0)

    @classmethod
    def from_env(cls) -> "OptimizerPolicy":
        overrides = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"OPTIMIZER_{name.upper()}")
            if raw in (None, ""):
                continue
            overrides[name] = int(raw) if field.annotation is int else float(raw)
        return cls(**overrides)


class Settings(BaseModel):
    database_url: Optional[str] = None
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    ollama_host: str = "http://localhost:11434"
    embedding_model: str = "mxbai-embed-large:335m"
    embedding_dim: int = 1024
    embedding_timeout: float = 30.0
    store_query_timeout: float = 5.0

    redis_url: Optional[str] = None
    usage_retention: int = 500
    usage_window_seconds: int = 60
    search_rate_limit: int = 0  # 0 disables the per-chatbot limit

    monitor_interval_seconds: float = 300.0
    log_level: str = "INFO"
    server_port: int = 8001

    optimizer: OptimizerPolicy = Field(default_factory=OptimizerPolicy)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            db_pool_size=_env_int("DB_POOL_SIZE", 10),
            db_max_overflow=_env_int("DB_MAX_OVERFLOW", 20),
            db_pool_timeout=_env_int("DB_POOL_TIMEOUT", 30),
            db_pool_recycle=_env_int("DB_POOL_RECYCLE", 1800),
            ollama_host=os.getenv("OLLAMA_HOST", "http://localhost:11434"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:335m"),
            embedding_dim=_env_int("EMBEDDING_DIM", 1024),
            embedding_timeout=_env_float("EMBEDDING_TIMEOUT", 30.0),
            store_query_timeout=_env_float("STORE_QUERY_TIMEOUT", 5.0),
            redis_url=os.getenv("REDIS_URL") or None,
            usage_retention=_env_int("USAGE_RETENTION", 500),
            usage_window_seconds=_env_int("USAGE_WINDOW_SECONDS", 60),
            search_rate_limit=_env_int("SEARCH_RATE_LIMIT", 0),
            monitor_interval_seconds=_env_float("MONITOR_INTERVAL_SECONDS", 300.0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            server_port=_env_int("SERVER_PORT", 8001),
            optimizer=OptimizerPolicy.from_env(),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
