"""
Embedding Gateway

Turns text into fixed-dimension vectors through a pluggable provider:
- Ollama provider over HTTP (default in production)
- Content-hash embedding cache in PostgreSQL
- Dimension validation and optional L2 normalization
"""

import asyncio
import hashlib
import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import requests
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from App.exceptions import EmbeddingError, EmbeddingTimeoutError, StoreQueryError
from App.models.Vector_model import EmbeddingCache
from App.schema.Search_schema import EmbeddingResult
from App.utils.store_calls import guarded_call

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    return math.ceil(len(text) / 4)


def l2_normalize(vector: Sequence[float]) -> List[float]:
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0:
        return [float(v) for v in vector]
    return [float(v) / magnitude for v in vector]


class EmbeddingProvider(ABC):
    """Abstract interface for embedding backends"""

    @abstractmethod
    async def embed(self, text: str, model: str) -> List[float]:
        """
        Return the raw embedding for `text`.

        Implementations raise any exception on failure; the gateway wraps it
        into an EmbeddingError without echoing the text.
        """


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Direct Ollama embeddings over its HTTP API"""

    def __init__(self, host: str = "http://localhost:11434", timeout: float = 30.0):
        self.host = host.rstrip("/")
        self.timeout = timeout

    def _post(self, text: str, model: str) -> List[float]:
        response = requests.post(
            f"{self.host}/api/embeddings",
            json={"model": model, "prompt": text},
            timeout=self.timeout
        )
        if response.status_code != 200:
            raise RuntimeError(f"Ollama embedding failed with HTTP {response.status_code}")
        payload = response.json()
        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(embedding, list):
            raise ValueError("Ollama response has no 'embedding' list")
        return embedding

    async def embed(self, text: str, model: str) -> List[float]:
        # requests is blocking; keep it off the event loop
        return await asyncio.to_thread(self._post, text, model)


class EmbeddingCacheRepository:
    """SHA256-keyed embedding cache stored in `embedding_cache`."""

    def __init__(self, session_factory: async_sessionmaker, timeout: Optional[float] = None):
        self.session_factory = session_factory
        self.timeout = timeout

    @staticmethod
    def content_hash(model: str, content: str) -> str:
        return hashlib.sha256(f"{model}\x00{content}".encode("utf-8")).hexdigest()

    async def get(self, model: str, content: str) -> Optional[List[float]]:
        key = self.content_hash(model, content)
        async with self.session_factory() as db:
            result = await guarded_call(
                "embedding_cache.get",
                db.execute(select(EmbeddingCache.embedding).where(EmbeddingCache.content_hash == key)),
                self.timeout,
            )
            cached = result.scalar_one_or_none()
        # NOTE: cached may be a pgvector type, list, tuple, or numpy array.
        # Never use `if cached:` because arrays have ambiguous truthiness.
        if cached is None:
            return None
        return [float(x) for x in list(cached)]

    async def save(self, model: str, content: str, embedding: Sequence[float]) -> None:
        stmt = insert(EmbeddingCache).values(
            content_hash=self.content_hash(model, content),
            model=model,
            embedding=[float(x) for x in embedding],
        ).on_conflict_do_nothing(index_elements=["content_hash"])
        async with self.session_factory() as db:
            try:
                await guarded_call("embedding_cache.save", db.execute(stmt), self.timeout)
                await db.commit()
            except StoreQueryError:
                await db.rollback()
                raise


class EmbeddingGateway:
    """
    Provider-agnostic text → vector adapter.

    Args:
        provider: Backend that produces raw vectors
        model: Model identifier sent to the provider
        dimensions: Expected vector length; responses of any other length are rejected
        timeout: Deadline for one provider call in seconds
        normalize: L2-normalize vectors before returning them
        cache: Optional content-hash cache consulted before the provider
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        model: str,
        dimensions: int,
        timeout: Optional[float] = 30.0,
        normalize: bool = True,
        cache: Optional[EmbeddingCacheRepository] = None,
    ):
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self.provider = provider
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.normalize = normalize
        self.cache = cache

    def _validate(self, raw: Sequence[float], input_length: int) -> List[float]:
        if not raw:
            raise EmbeddingError("Provider returned an empty embedding", self.model, input_length)
        try:
            vector = [float(v) for v in raw]
        except (TypeError, ValueError) as e:
            raise EmbeddingError("Provider returned non-numeric values", self.model, input_length) from e
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Dimension mismatch: expected {self.dimensions}, got {len(vector)}",
                self.model,
                input_length,
                context={"expected_dimensions": self.dimensions, "actual_dimensions": len(vector)},
            )
        if not all(math.isfinite(v) for v in vector):
            raise EmbeddingError("Provider returned non-finite values", self.model, input_length)
        return l2_normalize(vector) if self.normalize else vector

    async def _cached(self, text: str) -> Optional[List[float]]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(self.model, text)
        except StoreQueryError as e:
            logger.warning("⚠️  Embedding cache read failed (%s); calling provider", e.message)
            return None

    async def _remember(self, text: str, vector: List[float]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.save(self.model, text, vector)
        except StoreQueryError as e:
            logger.warning("⚠️  Embedding cache write failed: %s", e.message)

    async def embed(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text", self.model, len(text or ""))

        vector = await self._cached(text)
        if vector is None:
            try:
                if self.timeout:
                    raw = await asyncio.wait_for(self.provider.embed(text, self.model), timeout=self.timeout)
                else:
                    raw = await self.provider.embed(text, self.model)
            except asyncio.TimeoutError as e:
                raise EmbeddingTimeoutError(
                    f"Embedding provider exceeded {self.timeout}s", self.model, len(text), self.timeout
                ) from e
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to generate embedding: {type(e).__name__}", self.model, len(text)
                ) from e
            vector = self._validate(raw, len(text))
            await self._remember(text, vector)

        logger.debug("Embedding generated: model=%s text_length=%d", self.model, len(text))
        return EmbeddingResult(
            embedding=tuple(vector),
            model=self.model,
            dimensions=len(vector),
            input_tokens=estimate_tokens(text),
        )

    async def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed many texts sequentially (cache first, provider on miss)."""
        results = []
        for text in texts:
            result = await self.embed(text)
            results.append(list(result.embedding))
        return results
