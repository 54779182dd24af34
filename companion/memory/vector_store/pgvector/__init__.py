from __future__ import annotations

"""Postgres + pgvector backend.

Documents live in a ``documents`` table with a fixed-width ``vector`` column;
similarity search goes through the ``match_documents`` SQL function created by
the bootstrap in :mod:`.schema`. Connections come from a SQLAlchemy async pool
(asyncpg driver) and are always returned via ``async with``.
"""


import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import create_async_engine as sa_create_async_engine

from companion.embeddings import embed as _default_embed
from companion.metrics import VECTOR_OP_LATENCY_SECONDS

from ..base import MisconfiguredStoreError, ScoredDocument
from . import schema

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


def get_async_database_url(url: str) -> str:
    if not url:
        raise MisconfiguredStoreError("DATABASE_URL is required for the pgvector backend")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql+asyncpg://"):
        return url
    if not url.startswith("postgresql://"):
        raise MisconfiguredStoreError(
            "DATABASE_URL must be a PostgreSQL URL (postgresql://...)"
        )
    return url.replace("postgresql://", "postgresql+asyncpg://", 1)


def to_vector_literal(vec: list[float]) -> str:
    """Render ``vec`` in pgvector's text input format."""
    return "[" + ",".join(repr(float(v)) for v in vec) + "]"


def _coerce_metadata(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


class PgVectorBackend:
    """Relational vector backend: Postgres table + similarity SQL function."""

    name = "pgvector"

    def __init__(
        self,
        database_url: str,
        *,
        dim: int = 1536,
        top_k: int = 3,
        pool_size: int = 10,
        embedder: Embedder | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.dim = dim
        self.top_k = top_k
        self._embed = embedder or _default_embed
        if engine is None:
            engine = sa_create_async_engine(
                get_async_database_url(database_url),
                pool_size=pool_size,
                max_overflow=pool_size * 2,
                pool_pre_ping=True,
                pool_recycle=1800,
                future=True,
                echo=False,
            )
        self._engine = engine

    async def initialize(self) -> None:
        """Run the idempotent schema bootstrap in one transaction."""
        t0 = time.perf_counter()
        async with self._engine.begin() as conn:
            await conn.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": schema.BOOTSTRAP_LOCK_ID},
            )
            for stmt in schema.bootstrap_statements(self.dim):
                await conn.execute(text(stmt))
        VECTOR_OP_LATENCY_SECONDS.labels("pgvector_bootstrap").observe(
            time.perf_counter() - t0
        )
        logger.info(
            "pgvector.bootstrap.complete",
            extra={"meta": {"dim": self.dim, "table": "documents"}},
        )

    async def extension_installed(self) -> bool:
        async with self._engine.connect() as conn:
            result = await conn.execute(text(schema.EXTENSION_PRESENT))
            return result.first() is not None

    async def search(self, query: str, filter_tag: str) -> list[ScoredDocument]:
        vec = await self._embed(query)
        t0 = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    text(schema.MATCH_DOCUMENTS),
                    {
                        "embedding": to_vector_literal(vec),
                        "match_count": self.top_k,
                        "filter": json.dumps({"fileName": filter_tag}),
                    },
                )
                rows = result.mappings().all()
        finally:
            VECTOR_OP_LATENCY_SECONDS.labels("pgvector_search").observe(
                time.perf_counter() - t0
            )
        docs = [
            ScoredDocument(
                content=row["content"] or "",
                metadata=_coerce_metadata(row["metadata"]),
                similarity=float(row["similarity"] or 0.0),
            )
            for row in rows
        ]
        docs.sort(key=lambda d: -d.similarity)
        return docs[: self.top_k]

    async def add_document(self, content: str, metadata: dict[str, Any]) -> str:
        vec = await self._embed(content)
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(schema.INSERT_DOCUMENT),
                {
                    "content": content,
                    "metadata": json.dumps(metadata or {}),
                    "embedding": to_vector_literal(vec),
                },
            )
            doc_id = result.scalar_one()
        return str(doc_id)

    async def close(self) -> None:
        await self._engine.dispose()


__all__ = ["PgVectorBackend", "get_async_database_url", "to_vector_literal"]
