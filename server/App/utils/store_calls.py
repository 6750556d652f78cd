"""
Bounded store round trips.

Every statement issued by the engine goes through `guarded_call`, which applies
the deadline and translates SQLAlchemy failures into the engine's typed errors.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, ProgrammingError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from App.exceptions import SearchTimeoutError, StoreQueryError, VectorStoreNotReadyError

T = TypeVar("T")


def _is_pgvector_or_schema_missing(exc: BaseException) -> bool:
    """
    Best-effort detection for common setup failures:
    - relation "document_chunks" does not exist
    - extension "vector" is not available
    """
    msg = str(exc)
    return (
        'relation "document_chunks" does not exist' in msg
        or 'relation "embedding_cache" does not exist' in msg
        or 'extension "vector" is not available' in msg
        or "vector.control" in msg
    )


async def guarded_call(
    operation: str,
    awaitable: Awaitable[T],
    timeout: Optional[float],
    context: Optional[Dict[str, Any]] = None,
) -> T:
    context = dict(context or {})
    try:
        if timeout:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        return await awaitable
    except asyncio.TimeoutError as e:
        raise SearchTimeoutError(
            f"{operation} exceeded {timeout}s", operation=operation, timeout_s=timeout, context=context
        ) from e
    except PoolTimeoutError as e:
        # Pool exhaustion: the store layer owns the limit, callers may retry
        raise StoreQueryError(
            f"{operation}: connection pool exhausted", operation=operation, retryable=True, context=context
        ) from e
    except (ProgrammingError, DBAPIError) as e:
        if _is_pgvector_or_schema_missing(e):
            raise VectorStoreNotReadyError(
                "Vector store not initialized (missing pgvector extension and/or tables).",
                operation=operation,
                context=context,
            ) from e
        retryable = bool(getattr(e, "connection_invalidated", False))
        raise StoreQueryError(
            f"{operation} failed: {type(e.orig).__name__ if getattr(e, 'orig', None) else type(e).__name__}",
            operation=operation,
            retryable=retryable,
            context=context,
        ) from e
    except SQLAlchemyError as e:
        raise StoreQueryError(f"{operation} failed: {e}", operation=operation, context=context) from e
