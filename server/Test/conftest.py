"""
Shared fixtures: a deterministic embedding provider and an in-memory stand-in
for the async session factory that answers statements by SQL fragment.
"""

import asyncio
import hashlib
import math
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

# Add server to path (also set via pytest `pythonpath`)
server_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if server_dir not in sys.path:
    sys.path.insert(0, server_dir)

from App.services.EmbeddingService import EmbeddingGateway, EmbeddingProvider
from App.utils.events import EventEmitter, InMemoryEventSink
from Config.settings import OptimizerPolicy

TEST_DIM = 8


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic vectors derived from a SHA256 of the text."""

    def __init__(self, dimensions: int = TEST_DIM):
        self.dimensions = dimensions
        self.calls: List[str] = []

    async def embed(self, text: str, model: str) -> List[float]:
        self.calls.append(text)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i % len(digest)] - 128) / 128.0 for i in range(self.dimensions)]


class FakeResult:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, scalar: Any = None):
        self._rows = list(rows or [])
        self._scalar = scalar

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar(self):
        return self._scalar

    def scalar_one_or_none(self):
        return self._scalar


@dataclass
class Route:
    fragment: str
    rows: Optional[List[Dict[str, Any]]] = None
    scalar: Any = None
    error: Optional[BaseException] = None
    delay: float = 0.0


class FakeSession:
    def __init__(self, store: "FakeStore"):
        self.store = store
        self.execution_options: Dict[str, Any] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement, params=None):
        return await self.store.handle(statement, params, self.execution_options)

    async def connection(self, execution_options=None):
        self.execution_options = dict(execution_options or {})
        return self

    async def commit(self):
        self.store.commits += 1

    async def rollback(self):
        self.store.rollbacks += 1


class FakeStore:
    """
    Callable like an `async_sessionmaker`.

    Routes are matched in registration order against the statement text; the
    first route whose fragment appears in the SQL answers it.
    """

    def __init__(self):
        self.routes: List[Route] = []
        self.executed: List[Dict[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0

    def on(self, fragment: str, rows=None, scalar=None, error=None, delay: float = 0.0) -> "FakeStore":
        self.routes.append(Route(fragment, rows, scalar, error, delay))
        return self

    def __call__(self) -> FakeSession:
        return FakeSession(self)

    def statements(self, fragment: str = "") -> List[Dict[str, Any]]:
        return [e for e in self.executed if fragment in e["sql"]]

    async def handle(self, statement, params, execution_options):
        sql = statement.text if hasattr(statement, "text") else str(statement)
        self.executed.append({"sql": sql, "params": dict(params or {}), "options": dict(execution_options)})
        for route in self.routes:
            if route.fragment in sql:
                if route.delay:
                    await asyncio.sleep(route.delay)
                if route.error is not None:
                    raise route.error
                return FakeResult(route.rows, route.scalar)
        return FakeResult()


def chunk_row(chunk_id: str, similarity: float, document_id: str = "doc-1", product_id: str = "P1",
              content: str = "Refunds are issued within 14 days.", chunk_index: int = 0) -> Dict[str, Any]:
    return {
        "id": chunk_id,
        "document_id": document_id,
        "chunk_index": chunk_index,
        "content": content,
        "similarity": similarity,
        "metadata": {"source": "faq"},
        "document_name": "faq.txt",
        "product_id": product_id,
    }


def unit_length(vector) -> float:
    return math.sqrt(sum(v * v for v in vector))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def events(sink) -> EventEmitter:
    return EventEmitter([sink])


@pytest.fixture
def policy() -> OptimizerPolicy:
    return OptimizerPolicy()


@pytest.fixture
def provider() -> HashEmbeddingProvider:
    return HashEmbeddingProvider()


@pytest.fixture
def gateway(provider) -> EmbeddingGateway:
    return EmbeddingGateway(provider, model="test-embed", dimensions=TEST_DIM, timeout=2.0)
