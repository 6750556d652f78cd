"""
Vector Service - PostgreSQL + pgvector Implementation

Retrieval path of the engine:
- pgvector cosine similarity search with conjunctive scope pre-filters
- PostgreSQL full-text search for the lexical branch
- Hybrid search running both branches concurrently, then fusing
- Batch-safe, resumable chunk ingestion used by the similar-document features
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import bindparam, func, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker
from pgvector.sqlalchemy import Vector

from App.exceptions import StoreQueryError, VectorEngineError
from App.models.Vector_model import DocumentChunk
from App.schema.Search_schema import (
    MAX_RESULTS_CAP,
    HybridWeights,
    SearchFilter,
    SearchResult,
)
from App.enums import RankOrigin
from App.services.EmbeddingService import EmbeddingGateway
from App.services.FusionService import fuse_results
from App.utils.chunking import chunk_text
from App.utils.events import SEARCH_HYBRID, SEARCH_SIMILARITY, EventEmitter
from App.utils.store_calls import guarded_call

logger = logging.getLogger(__name__)

MAX_CHUNKS_PER_DOCUMENT = 1000
SIMILAR_DOCUMENT_FLOOR = 0.3


def _clamp_unit(value: Any) -> float:
    return max(0.0, min(1.0, float(value or 0.0)))


def _scope_clause(
    chatbot_id: Optional[str], filters: SearchFilter
) -> Tuple[List[str], Dict[str, Any], List[Any]]:
    """
    Build the conjunctive scope predicate shared by both search branches.

    Returns (conditions, params, expanding bindparams). All values are bound,
    never interpolated.
    """
    conditions: List[str] = []
    params: Dict[str, Any] = {}
    binds: List[Any] = []

    # Chatbot scope resolves through its products
    if chatbot_id:
        conditions.append("""d.id IN (
                SELECT DISTINCT pd.document_id
                FROM product_documents pd
                JOIN chatbot_products cp ON pd.product_id = cp.product_id
                WHERE cp.chatbot_id = :chatbot_id
            )""")
        params["chatbot_id"] = chatbot_id

    for name, column in (
        ("product_ids", "d.product_id"),
        ("document_ids", "CAST(dc.document_id AS TEXT)"),
        ("content_types", "d.content_type"),
    ):
        values = getattr(filters, name)
        if values:
            conditions.append(f"{column} IN :{name}")
            params[name] = list(values)
            binds.append(bindparam(name, expanding=True))

    return conditions or ["1=1"], params, binds


def _row_to_result(row: Any, origin: RankOrigin) -> SearchResult:
    metadata = row["metadata"]
    if not isinstance(metadata, dict):
        metadata = json.loads(metadata) if metadata else {}
    return SearchResult(
        id=str(row["id"]),
        document_id=str(row["document_id"]),
        chunk_index=int(row["chunk_index"] or 0),
        content=row["content"],
        similarity=_clamp_unit(row["similarity"]),
        metadata=metadata,
        document_name=row.get("document_name"),
        product_id=row.get("product_id"),
        rank_origin=origin,
    )


def rank_by_similarity(results: Sequence[SearchResult], limit: int) -> List[SearchResult]:
    """Descending similarity, ties broken by chunk id, truncated to `limit`."""
    return sorted(results, key=lambda r: (-r.similarity, r.id))[:limit]


class VectorService:
    """
    Similarity, lexical and hybrid retrieval over `document_chunks`.

    Each branch opens its own session so the hybrid fan-out never shares a
    connection between concurrent statements.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        embeddings: EmbeddingGateway,
        events: Optional[EventEmitter] = None,
        query_timeout: Optional[float] = 5.0,
        batch_size: int = 400,
    ):
        self.session_factory = session_factory
        self.embeddings = embeddings
        self.events = events or EventEmitter()
        self.query_timeout = query_timeout
        self.batch_size = batch_size

    # ------------------------------------------------------------------
    # Store branches
    # ------------------------------------------------------------------

    async def vector_candidates(
        self,
        query_embedding: Sequence[float],
        chatbot_id: Optional[str],
        filters: SearchFilter,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """Nearest neighbours by cosine distance, pre-filtered by scope and floor."""
        conditions, params, binds = _scope_clause(chatbot_id, filters)
        query = text(f"""
            SELECT
                dc.id,
                dc.document_id,
                dc.chunk_index,
                dc.content,
                GREATEST(0.0, LEAST(1.0, 1 - (dc.embedding <=> :query_embedding))) AS similarity,
                dc.metadata,
                d.name AS document_name,
                d.product_id
            FROM document_chunks dc
            JOIN documents d ON dc.document_id = d.id
            WHERE {' AND '.join(conditions)}
              AND dc.embedding IS NOT NULL
              AND 1 - (dc.embedding <=> :query_embedding) >= :min_similarity
            ORDER BY dc.embedding <=> :query_embedding, dc.id
            LIMIT :limit
        """).bindparams(
            bindparam("query_embedding", type_=Vector(len(query_embedding))),
            *binds,
        )
        params.update({
            "query_embedding": list(query_embedding),
            "min_similarity": filters.min_similarity,
            "limit": min(filters.max_results, MAX_RESULTS_CAP),
        })

        async with self.session_factory() as db:
            result = await guarded_call(
                "vector_search",
                db.execute(query, params),
                timeout or self.query_timeout,
                {"embedding_dimensions": len(query_embedding)},
            )
            rows = result.mappings().all()

        results = [_row_to_result(row, RankOrigin.VECTOR) for row in rows]
        results = [r for r in results if r.similarity >= filters.min_similarity]
        return rank_by_similarity(results, filters.max_results)

    async def lexical_candidates(
        self,
        query_text: str,
        chatbot_id: Optional[str],
        filters: SearchFilter,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """
        Full-text search with `ts_rank`.

        Normalization flag 32 maps the rank into [0, 1) as rank / (rank + 1).
        """
        conditions, params, binds = _scope_clause(chatbot_id, filters)
        query = text(f"""
            SELECT
                dc.id,
                dc.document_id,
                dc.chunk_index,
                dc.content,
                ts_rank(to_tsvector('english', dc.content), plainto_tsquery('english', :query_text), 32) AS similarity,
                dc.metadata,
                d.name AS document_name,
                d.product_id
            FROM document_chunks dc
            JOIN documents d ON dc.document_id = d.id
            WHERE {' AND '.join(conditions)}
              AND to_tsvector('english', dc.content) @@ plainto_tsquery('english', :query_text)
            ORDER BY similarity DESC, dc.id
            LIMIT :limit
        """)
        if binds:
            query = query.bindparams(*binds)
        params.update({
            "query_text": query_text,
            "limit": min(filters.max_results, MAX_RESULTS_CAP),
        })

        async with self.session_factory() as db:
            result = await guarded_call(
                "lexical_search",
                db.execute(query, params),
                timeout or self.query_timeout,
                {"query_length": len(query_text)},
            )
            rows = result.mappings().all()

        results = [_row_to_result(row, RankOrigin.LEXICAL) for row in rows]
        return rank_by_similarity(results, filters.max_results)

    # ------------------------------------------------------------------
    # Caller-facing search
    # ------------------------------------------------------------------

    def _failure_context(
        self, query: str, chatbot_id: Optional[str], filters: SearchFilter, started: float
    ) -> Dict[str, Any]:
        return {
            "query_length": len(query),
            "chatbot_id": chatbot_id,
            "scope": {
                "product_ids": list(filters.product_ids),
                "document_ids": list(filters.document_ids),
                "content_types": list(filters.content_types),
            },
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def similarity_search(
        self,
        query: str,
        chatbot_id: Optional[str] = None,
        session_id: Optional[str] = None,
        filters: Optional[SearchFilter] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """
        Embed `query` and return the closest chunks within scope.

        Raises:
            EmbeddingError / StoreQueryError (or subclasses): no partial results
        """
        filters = filters or SearchFilter()
        started = time.perf_counter()
        identifiers = {"chatbot_id": chatbot_id, "session_id": session_id}

        try:
            embedding = await self.embeddings.embed(query)
            results = await self.vector_candidates(embedding.embedding, chatbot_id, filters, timeout)
        except VectorEngineError as e:
            e.context.update(self._failure_context(query, chatbot_id, filters, started))
            self.events.emit(
                SEARCH_SIMILARITY,
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000,
                identifiers=identifiers,
                query_length=len(query),
                results_count=0,
                error=type(e).__name__,
            )
            raise

        self.events.emit(
            SEARCH_SIMILARITY,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
            identifiers=identifiers,
            query_length=len(query),
            results_count=len(results),
        )
        return results

    async def hybrid_search(
        self,
        query: str,
        chatbot_id: Optional[str] = None,
        session_id: Optional[str] = None,
        filters: Optional[SearchFilter] = None,
        weights: Optional[HybridWeights] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """
        Run the vector and lexical branches concurrently and fuse them.

        Fusion only happens once both branches have finished; a failure in
        either branch fails the whole call.
        """
        filters = filters or SearchFilter()
        weights = weights or HybridWeights()
        started = time.perf_counter()
        identifiers = {"chatbot_id": chatbot_id, "session_id": session_id}

        async def vector_branch() -> List[SearchResult]:
            embedding = await self.embeddings.embed(query)
            return await self.vector_candidates(embedding.embedding, chatbot_id, filters, timeout)

        outcomes = await asyncio.gather(
            vector_branch(),
            self.lexical_candidates(query, chatbot_id, filters, timeout),
            return_exceptions=True,
        )
        failure = next((o for o in outcomes if isinstance(o, BaseException)), None)
        if failure is not None:
            if not isinstance(failure, VectorEngineError):
                raise failure
            failure.context.update(self._failure_context(query, chatbot_id, filters, started))
            self.events.emit(
                SEARCH_HYBRID,
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000,
                identifiers=identifiers,
                query_length=len(query),
                error=type(failure).__name__,
            )
            raise failure

        vector_results, lexical_results = outcomes
        fused = fuse_results(vector_results, lexical_results, weights)

        self.events.emit(
            SEARCH_HYBRID,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
            identifiers=identifiers,
            query_length=len(query),
            vector_results=len(vector_results),
            lexical_results=len(lexical_results),
            results_count=len(fused),
            vector_weight=weights.vector_weight,
            lexical_weight=weights.lexical_weight,
        )
        return fused

    async def find_similar_documents(
        self,
        document_id: str,
        chatbot_id: Optional[str] = None,
        limit: int = 5,
        timeout: Optional[float] = None,
    ) -> List[SearchResult]:
        """Chunks from other documents closest to the average embedding of `document_id`."""
        async with self.session_factory() as db:
            result = await guarded_call(
                "document_centroid",
                db.execute(
                    text("SELECT AVG(embedding) AS avg_embedding FROM document_chunks WHERE document_id = :document_id"),
                    {"document_id": document_id},
                ),
                timeout or self.query_timeout,
                {"document_id": document_id},
            )
            centroid = result.scalar()

        if centroid is None:
            return []
        if isinstance(centroid, str):
            centroid = json.loads(centroid)

        filters = SearchFilter.create(
            min_similarity=SIMILAR_DOCUMENT_FLOOR,
            max_results=min(limit + 5, MAX_RESULTS_CAP),
        )
        results = await self.vector_candidates([float(x) for x in centroid], chatbot_id, filters, timeout)
        return [r for r in results if r.document_id != str(document_id)][:limit]

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def store_chunks(
        self,
        document_id: str,
        chunks: List[Dict[str, Any]],
        embeddings: List[List[float]],
    ) -> int:
        """
        Batch insert document chunks with embeddings.

        Uses UPSERT on (document_id, chunk_index) so ingestion can be resumed.
        Limits to 1000 chunks per document.
        """
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        if not chunks:
            return 0
        if len(chunks) > MAX_CHUNKS_PER_DOCUMENT:
            logger.warning("⚠️  Document %s exceeded %d chunks limit, truncating", document_id, MAX_CHUNKS_PER_DOCUMENT)
            chunks = chunks[:MAX_CHUNKS_PER_DOCUMENT]
            embeddings = embeddings[:MAX_CHUNKS_PER_DOCUMENT]

        values = [
            {
                "document_id": document_id,
                "chunk_index": chunk.get("chunk_index", i),
                "content": chunk["content"],
                "embedding": embedding,
                "metadata": chunk.get("metadata", {}),
            }
            for i, (chunk, embedding) in enumerate(zip(chunks, embeddings))
        ]

        inserted_count = 0
        async with self.session_factory() as db:
            try:
                for i in range(0, len(values), self.batch_size):
                    batch = values[i:i + self.batch_size]
                    stmt = insert(DocumentChunk.__table__).values(batch)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["document_id", "chunk_index"],
                        set_={
                            "embedding": stmt.excluded.embedding,
                            "content": stmt.excluded.content,
                            "metadata": stmt.excluded["metadata"],
                            "updated_at": func.now(),
                        },
                    )
                    await guarded_call("store_chunks", db.execute(stmt), self.query_timeout,
                                       {"document_id": str(document_id)})
                    inserted_count += len(batch)
                await db.commit()
            except StoreQueryError:
                await db.rollback()
                raise
        return inserted_count

    async def ingest_document(
        self,
        document_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        chunk_size: int = 1000,
        overlap: int = 200,
    ) -> int:
        """Chunk, embed and store one document. Returns the number of chunks written."""
        pieces = chunk_text(content, chunk_size=chunk_size, overlap=overlap)[:MAX_CHUNKS_PER_DOCUMENT]
        chunk_data = [
            {
                "content": piece,
                "chunk_index": i,
                "metadata": {**(metadata or {}), "chunk_size": len(piece), "total_chunks": len(pieces)},
            }
            for i, piece in enumerate(pieces)
        ]
        logger.info("📝 Embedding %d chunks for document %s", len(chunk_data), document_id)
        vectors = await self.embeddings.embed_documents([c["content"] for c in chunk_data])
        return await self.store_chunks(document_id, chunk_data, vectors)

    async def batch_process_embeddings(self, documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Ingest many documents, isolating failures per document.

        Each document is a dict with 'id', 'content' and optional 'metadata'.
        """
        summary = {"processed": 0, "failed": 0, "errors": []}
        for doc in documents:
            try:
                await self.ingest_document(str(doc["id"]), doc["content"], doc.get("metadata"))
                summary["processed"] += 1
            except VectorEngineError as e:
                summary["failed"] += 1
                summary["errors"].append(f"Document {doc['id']}: {e.message}")
                logger.error("❌ Embedding batch failed for document %s: %s", doc["id"], e.message)
        logger.info(
            "✅ Batch embedding processing completed: %d processed, %d failed",
            summary["processed"], summary["failed"],
        )
        return summary
