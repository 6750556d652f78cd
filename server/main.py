"""
Vector Retrieval & Index Optimization API Server

A FastAPI-based backend providing:
- Similarity and hybrid (vector + full-text) search over pgvector chunks
- Index analysis, ranked optimization recommendations and safe application
- Scheduled maintenance (VACUUM / ANALYZE / history cleanup)
- Periodic performance monitoring with threshold alerts and health scoring
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from Config.settings import get_settings
from Config.logging_config import configure_logging
from Config.DB.db import build_engine, build_session_factory

# Import models first (ensures all relationships are registered)
from App.models.Document_model import Document, Product
from App.models.Vector_model import DocumentChunk, EmbeddingCache, verify_embedding_dimension

from App.controllers.Engine_controller import build_vector_engine

# Import route handlers
from App.api.Search_router import router as search_router
from App.api.Optimization_router import router as optimization_router
from App.api.Monitoring_router import router as monitoring_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    verify_embedding_dimension(settings.embedding_dim)

    db_engine = build_engine(settings)
    session_factory = build_session_factory(db_engine)
    engine = build_vector_engine(settings, session_factory)

    app.state.settings = settings
    app.state.db_engine = db_engine
    app.state.engine = engine
    logger.info(f"🚀 Vector engine ready (model={settings.embedding_model}, dim={settings.embedding_dim})")

    try:
        yield
    finally:
        await engine.close()
        await db_engine.dispose()
        logger.info("🛑 Vector engine stopped")


# ============================================================================
# APPLICATION SETUP
# ============================================================================

app = FastAPI(
    title="Vector Retrieval & Index Optimization API",
    description="Similarity search, hybrid retrieval and pgvector index tuning",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Route Inclusion ---
# API v1 endpoints are prefixed with /api/v1 for versioning

app.include_router(search_router, prefix="/api/v1/search")

app.include_router(optimization_router, prefix="/api/v1/optimization")

app.include_router(monitoring_router, prefix="/api/v1/monitoring")


# ============================================================================
# HEALTH CHECK
# ============================================================================


@app.get("/", tags=["Health"])
async def liveness() -> dict:
    """
    Liveness endpoint.

    Used for load balancer checks; see /api/v1/monitoring/health for the scored check.
    """
    return {
        "status": "online",
        "service": "vector-engine",
        "version": "1.0.0",
        "api_docs": "/docs",
        "redoc": "/redoc",
    }


# ============================================================================
# MAIN EXECUTION
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=get_settings().server_port,
        reload=False,
        workers=4,
        loop="uvloop",
        access_log=False,
    )
