"""
PostgreSQL + pgvector schema

Sets up everything the ORM metadata cannot express:
- vector, pg_trgm and pgcrypto extensions (must exist before create_all)
- approximate-nearest-neighbour index on document_chunks.embedding
- GIN full-text index backing lexical search
- scope indexes used by the chatbot / product pre-filter

All statements are idempotent.
"""

import logging
from typing import List, Optional

from sqlalchemy import text

from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)

EXTENSION_STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS vector",
    "CREATE EXTENSION IF NOT EXISTS pg_trgm",
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",  # gen_random_uuid() on PostgreSQL < 13
]

SCOPE_INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_documents_content_type ON documents (content_type)",
    "CREATE INDEX IF NOT EXISTS idx_product_documents_document ON product_documents (document_id)",
    "CREATE INDEX IF NOT EXISTS idx_chatbot_products_product ON chatbot_products (product_id)",
]


def vector_index_statement(index_type: str = "hnsw", policy: Optional[OptimizerPolicy] = None) -> str:
    policy = policy or OptimizerPolicy()
    if index_type == "hnsw":
        return (
            "CREATE INDEX IF NOT EXISTS idx_chunks_embedding_hnsw ON document_chunks "
            "USING hnsw (embedding vector_cosine_ops) "
            f"WITH (m = {policy.hnsw_m}, ef_construction = {policy.hnsw_ef_construction})"
        )
    if index_type == "ivfflat":
        return (
            "CREATE INDEX IF NOT EXISTS idx_chunks_embedding_ivfflat ON document_chunks "
            "USING ivfflat (embedding vector_cosine_ops) "
            f"WITH (lists = {policy.default_ivf_lists})"
        )
    raise ValueError(f"Unsupported vector index type: {index_type}")


def index_statements(index_type: str = "hnsw", policy: Optional[OptimizerPolicy] = None) -> List[str]:
    return [
        vector_index_statement(index_type, policy),
        "CREATE INDEX IF NOT EXISTS idx_chunks_content_fts ON document_chunks "
        "USING gin (to_tsvector('english', content))",
        *SCOPE_INDEX_STATEMENTS,
    ]


async def create_extensions(conn) -> None:
    logger.info("📦 Creating PostgreSQL extensions...")
    for statement in EXTENSION_STATEMENTS:
        await conn.execute(text(statement))
    logger.info("✅ Extensions created")


async def create_indexes(conn, index_type: str = "hnsw", policy: Optional[OptimizerPolicy] = None) -> List[str]:
    """Create search indexes on an open connection; returns the statements run."""
    statements = index_statements(index_type, policy)
    logger.info(f"🔍 Creating {len(statements)} indexes ({index_type} vector index)...")
    for statement in statements:
        await conn.execute(text(statement))
    logger.info("✅ Indexes created")
    return statements
