from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from App.enums import RankOrigin
from App.exceptions import FilterValidationError

MAX_RESULTS_CAP = 50
DEFAULT_MAX_RESULTS = 10
DEFAULT_MIN_SIMILARITY = 0.1
HYBRID_RESULT_CEILING = 20


# --- 1. VALUE OBJECTS ---
class SearchFilter(BaseModel):
    """Immutable per-request scope and ranking constraints."""

    model_config = ConfigDict(frozen=True)

    product_ids: Tuple[str, ...] = ()
    document_ids: Tuple[str, ...] = ()
    content_types: Tuple[str, ...] = ()
    min_similarity: float = Field(DEFAULT_MIN_SIMILARITY, ge=0.0, le=1.0)
    max_results: int = Field(DEFAULT_MAX_RESULTS, ge=1, le=MAX_RESULTS_CAP)

    @classmethod
    def create(cls, **values: Any) -> "SearchFilter":
        """
        Build a filter, turning pydantic failures into FilterValidationError.

        `None` values fall back to the defaults so request payloads can pass
        optional fields straight through.
        """
        cleaned = {k: v for k, v in values.items() if v is not None}
        for key in ("product_ids", "document_ids", "content_types"):
            if key in cleaned:
                cleaned[key] = tuple(str(v) for v in cleaned[key])
        try:
            return cls(**cleaned)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "filter"
            raise FilterValidationError(f"Invalid {field}: {first.get('msg')}", field=field) from e

    @property
    def has_scope(self) -> bool:
        return bool(self.product_ids or self.document_ids or self.content_types)


class HybridWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    vector_weight: float = Field(0.7, ge=0.0)
    lexical_weight: float = Field(0.3, ge=0.0)

    @classmethod
    def create(cls, vector_weight: Optional[float] = None, lexical_weight: Optional[float] = None) -> "HybridWeights":
        values = {}
        if vector_weight is not None:
            values["vector_weight"] = vector_weight
        if lexical_weight is not None:
            values["lexical_weight"] = lexical_weight
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "weights"
            raise FilterValidationError(f"Invalid {field}: {first.get('msg')}", field=field) from e


class EmbeddingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    embedding: Tuple[float, ...]
    model: str
    dimensions: int
    input_tokens: int = 0


class SearchResult(BaseModel):
    id: str
    document_id: str
    chunk_index: int = 0
    content: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    metadata: Dict[str, Any] = {}
    document_name: Optional[str] = None
    product_id: Optional[str] = None
    lexical_score: Optional[float] = None
    combined_score: Optional[float] = None
    rank_origin: RankOrigin = RankOrigin.VECTOR


# --- 2. REQUEST / RESPONSE SCHEMAS ---
class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    session_id: Optional[str] = None
    product_ids: List[str] = []
    document_ids: List[str] = []
    content_types: List[str] = []
    min_similarity: Optional[float] = None
    max_results: Optional[int] = None


class HybridSearchRequest(SearchRequest):
    vector_weight: Optional[float] = None
    lexical_weight: Optional[float] = None


class SearchResponse(BaseModel):
    results: List[SearchResult] = []
    count: int = 0
    duration_ms: float = 0.0
