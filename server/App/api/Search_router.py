"""
Search API Router

Provides endpoints for:
- Vector similarity search over document chunks
- Hybrid (vector + lexical) search with weighted fusion
- Document-to-document similarity
"""

import time

from fastapi import APIRouter, Query, Request, status

from App.api.errors import to_http_exception
from App.exceptions import VectorEngineError
from App.schema.Search_schema import (
    HybridSearchRequest,
    HybridWeights,
    SearchFilter,
    SearchRequest,
    SearchResponse,
)

router = APIRouter(tags=["Search"])


def _filters(body: SearchRequest) -> SearchFilter:
    return SearchFilter.create(
        product_ids=body.product_ids,
        document_ids=body.document_ids,
        content_types=body.content_types,
        min_similarity=body.min_similarity,
        max_results=body.max_results,
    )


@router.post(
    "/similarity",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Similarity Search",
    description="Rank chunks by cosine similarity to the query embedding",
)
async def similarity_search(body: SearchRequest, request: Request) -> SearchResponse:
    engine = request.app.state.engine
    start = time.perf_counter()
    try:
        results = await engine.similarity_search(
            body.query,
            chatbot_id=body.chatbot_id,
            session_id=body.session_id,
            filters=_filters(body),
        )
    except VectorEngineError as e:
        raise to_http_exception(e)

    return SearchResponse(
        results=results,
        count=len(results),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )


@router.post(
    "/hybrid",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Hybrid Search",
    description="Fuse vector and full-text rankings with configurable weights",
)
async def hybrid_search(body: HybridSearchRequest, request: Request) -> SearchResponse:
    engine = request.app.state.engine
    start = time.perf_counter()
    try:
        results = await engine.hybrid_search(
            body.query,
            chatbot_id=body.chatbot_id,
            session_id=body.session_id,
            filters=_filters(body),
            weights=HybridWeights.create(body.vector_weight, body.lexical_weight),
        )
    except VectorEngineError as e:
        raise to_http_exception(e)

    return SearchResponse(
        results=results,
        count=len(results),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )


@router.get(
    "/similar-documents/{document_id}",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Similar Documents",
    description="Chunks from other documents close to the given document's mean embedding",
)
async def similar_documents(
    document_id: str,
    request: Request,
    chatbot_id: str = None,
    limit: int = Query(5, ge=1, le=45),
) -> SearchResponse:
    engine = request.app.state.engine
    start = time.perf_counter()
    try:
        results = await engine.find_similar_documents(document_id, chatbot_id=chatbot_id, limit=limit)
    except VectorEngineError as e:
        raise to_http_exception(e)

    return SearchResponse(
        results=results,
        count=len(results),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
