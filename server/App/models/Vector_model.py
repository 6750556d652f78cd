"""
Vector Database Models for PostgreSQL + pgvector
"""

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from Config.DB.db import Base
from Config.settings import get_settings

# Column dimension is fixed per embedding model (mxbai-embed-large:335m = 1024)
EMBEDDING_DIM = get_settings().embedding_dim


def verify_embedding_dimension(expected: int) -> None:
    """Fail fast when the gateway would produce vectors the columns cannot store."""
    if expected != EMBEDDING_DIM:
        raise ValueError(
            f"Embedding dimension {expected} does not match the vector columns ({EMBEDDING_DIM}); "
            "set EMBEDDING_DIM before the models are imported"
        )


class DocumentChunk(Base):
    """
    Document chunk with vector embedding for similarity search.

    Chunks are written by ingestion and only read by the search path.
    """
    __tablename__ = "document_chunks"
    
    id = Column(UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid())
    document_id = Column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    chunk_index = Column(Integer, default=0, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=True)
    chunk_metadata = Column("metadata", JSONB, default=dict, nullable=False)  # 'metadata' is reserved on the ORM class
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        Index('idx_chunks_document_position', 'document_id', 'chunk_index', unique=True),
    )


class EmbeddingCache(Base):
    """
    Embedding cache to avoid recomputing embeddings for identical content.
    
    Keyed by SHA256 of model id + content.
    """
    __tablename__ = "embedding_cache"
    
    content_hash = Column(String(64), primary_key=True)  # SHA256 hex = 64 chars
    model = Column(String(255), nullable=False)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
