from __future__ import annotations
# companion/memory/vector_store/__init__.py
"""
Vector backend selection.

One stable import path for call sites: `companion.memory.vector_store`.
Keep this file SIDE-EFFECT FREE: backends are imported lazily by the factory.
"""


import logging

from companion import metrics
from companion.config_runtime import VectorCfg

from .base import (
    MisconfiguredStoreError,
    NullVectorBackend,
    ScoredDocument,
    VectorBackend,
    VectorStoreError,
)

logger = logging.getLogger(__name__)


def create_vector_backend(
    cfg: VectorCfg, *, dim: int = 1536, embedder=None
) -> VectorBackend:
    """Build the backend selected by ``VECTOR_DB``.

    ``pinecone``/``managed``/``qdrant`` select the managed index; anything else
    selects Postgres + pgvector. The choice is made once per process.
    Construction does no network I/O; :meth:`VectorBackend.initialize` does.
    """
    if cfg.uses_managed_index:
        from .qdrant import QdrantVectorBackend

        backend: VectorBackend = QdrantVectorBackend(
            cfg.index_url,
            cfg.index_api_key,
            cfg.index_collection,
            dim=dim,
            top_k=cfg.top_k,
            embedder=embedder,
        )
    else:
        from .pgvector import PgVectorBackend

        backend = PgVectorBackend(
            cfg.database_url,
            dim=dim,
            top_k=cfg.top_k,
            pool_size=cfg.db_pool_size,
            embedder=embedder,
        )

    logger.info(
        "vector.backend.selected",
        extra={"meta": {"requested": cfg.backend, "backend": backend.name}},
    )
    metrics.VECTOR_SELECTED_TOTAL.labels(backend.name).inc()
    return backend


__all__ = [
    "create_vector_backend",
    "VectorBackend",
    "NullVectorBackend",
    "ScoredDocument",
    "VectorStoreError",
    "MisconfiguredStoreError",
]
