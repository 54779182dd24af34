from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlparse

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from companion.embeddings import embed as _default_embed
from companion.metrics import VECTOR_OP_LATENCY_SECONDS

from ..base import MisconfiguredStoreError, ScoredDocument

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]

# payload key holding the document text; everything else is metadata
CONTENT_KEY = "content"
FILTER_KEY = "fileName"


def _sanitize_collection(raw: str) -> str:
    # Replace ':' with '_' per Qdrant naming rules
    return (raw or "companions").replace(":", "_")


class QdrantVectorBackend:
    """Managed vector-index backend on Qdrant (cloud or self-hosted)."""

    name = "qdrant"

    def __init__(
        self,
        url: str,
        api_key: str,
        collection: str = "companions",
        *,
        dim: int = 1536,
        top_k: int = 3,
        embedder: Embedder | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        missing = [n for n, v in (("QDRANT_URL", url), ("QDRANT_API_KEY", api_key)) if not v]
        if missing:
            raise MisconfiguredStoreError(
                "managed vector index selected but not configured: missing "
                + ", ".join(missing)
            )
        if urlparse(url).scheme not in ("http", "https"):
            # e.g. a Pinecone environment id such as "us-west1-gcp"
            raise MisconfiguredStoreError(
                f"managed vector index URL must be http(s)://...; got {url!r}"
            )
        self.collection = _sanitize_collection(collection)
        self.dim = dim
        self.top_k = top_k
        self._embed = embedder or _default_embed
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key)

    async def initialize(self) -> None:
        t0 = time.perf_counter()
        if not await self.client.collection_exists(self.collection):
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.dim, distance=Distance.COSINE),
            )
            logger.info(
                "qdrant.bootstrap.collection_created",
                extra={"meta": {"name": self.collection, "dim": self.dim}},
            )
        VECTOR_OP_LATENCY_SECONDS.labels("qdrant_bootstrap").observe(
            time.perf_counter() - t0
        )

    async def search(self, query: str, filter_tag: str) -> list[ScoredDocument]:
        vec = await self._embed(query)
        t0 = time.perf_counter()
        try:
            response = await self.client.query_points(
                collection_name=self.collection,
                query=vec,
                query_filter=Filter(
                    must=[FieldCondition(key=FILTER_KEY, match=MatchValue(value=filter_tag))]
                ),
                limit=self.top_k,
                with_payload=True,
            )
        finally:
            VECTOR_OP_LATENCY_SECONDS.labels("qdrant_search").observe(
                time.perf_counter() - t0
            )
        out: list[ScoredDocument] = []
        for pt in response.points:
            payload = dict(pt.payload or {})
            content = str(payload.pop(CONTENT_KEY, "") or "")
            out.append(
                ScoredDocument(content=content, metadata=payload, similarity=float(pt.score))
            )
        return out

    async def add_document(self, content: str, metadata: dict[str, Any]) -> str:
        vec = await self._embed(content)
        point_id = str(uuid.uuid4())
        payload = dict(metadata or {})
        payload[CONTENT_KEY] = content
        await self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(id=point_id, vector=vec, payload=payload)],
        )
        return point_id

    async def close(self) -> None:
        await self.client.close()


__all__ = ["QdrantVectorBackend"]
