"""Shared enums used across services and schemas."""
import enum


class RankOrigin(str, enum.Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


class IndexType(str, enum.Enum):
    IVFFLAT = "ivfflat"   # flat-cluster
    HNSW = "hnsw"         # graph-based
    BTREE = "btree"       # auxiliary


class RecommendationType(str, enum.Enum):
    INDEX_REBUILD = "index_rebuild"
    PARAMETER_TUNE = "parameter_tune"
    QUERY_REWRITE = "query_rewrite"
    MAINTENANCE = "maintenance"
    MEMORY_ADJUST = "memory_adjust"


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class Severity(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class MaintenanceTaskType(str, enum.Enum):
    VACUUM = "vacuum"
    ANALYZE = "analyze"
    REINDEX = "reindex"
    UPDATE_STATS = "update_stats"
    CLEANUP = "cleanup"


class DistanceFunction(str, enum.Enum):
    COSINE = "vector_cosine_ops"
    L2 = "vector_l2_ops"
    INNER_PRODUCT = "vector_ip_ops"


class BatchOperationType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    SEARCH = "search"
