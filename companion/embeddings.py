from __future__ import annotations

"""Embedding utilities for semantic retrieval.

This module exposes a single :func:`embed` coroutine which returns a vector of
floats for a given input text. The backend is selected via the
``EMBEDDING_BACKEND`` environment variable and can be ``"openai"`` or
``"stub"``.

The OpenAI SDK call is synchronous and is therefore dispatched to ``asyncio``'s
default executor. Results are cached per text for one TTL bucket so repeated
searches over the same recent history do not re-bill the provider.
"""


import asyncio
import hashlib
import logging
import time
from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np

from .config_runtime import get_config
from .errors import EmbeddingError
from .metrics import EMBEDDING_LATENCY_SECONDS

if TYPE_CHECKING:  # pragma: no cover - for type checkers only
    from openai import OpenAI

logger = logging.getLogger(__name__)

_TTL = 24 * 60 * 60  # seconds, for OpenAI sync cache bucket


# ---------------------------------------------------------------------------
# Deterministic stub (for tests / offline dev)
# ---------------------------------------------------------------------------


def _embed_stub(text: str, dim: int) -> list[float]:
    """Return a deterministic unit vector of width ``dim`` seeded by ``text``."""
    seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:8], "big")
    vec = np.random.default_rng(seed).standard_normal(dim).astype("float32")
    norm = float(np.linalg.norm(vec))
    if norm:
        vec = vec / norm
    return vec.tolist()


# ---------------------------------------------------------------------------
# OpenAI backend (sync path with TTL cache)
# ---------------------------------------------------------------------------


def get_openai_client() -> OpenAI:
    """Return a synchronous OpenAI client (instantiate per call for test isolation)."""
    from openai import OpenAI  # type: ignore

    api_key = get_config().embed.openai_api_key or None
    return OpenAI(api_key=api_key)


@lru_cache(maxsize=5_000)
def _embed_openai_sync(text: str, model: str, ttl_bucket: int) -> tuple[float, ...]:
    """Return an embedding using the OpenAI sync client (cached by TTL bucket)."""
    client = get_openai_client()
    resp = client.embeddings.create(model=model, input=text, encoding_format="float")
    return tuple(resp.data[0].embedding)


async def _embed_openai(text: str, model: str) -> list[float]:
    bucket = int(time.time() // _TTL)
    loop = asyncio.get_running_loop()
    vec = await loop.run_in_executor(None, _embed_openai_sync, text, model, bucket)
    return list(vec)


def _check_width(vec: list[float], expected: int) -> list[float]:
    if expected and len(vec) != expected:
        logger.warning(
            "embed_dim_mismatch: EMBED_DIM=%s but embedding length=%s",
            expected,
            len(vec),
        )
        raise EmbeddingError(
            f"embedding width {len(vec)} does not match EMBED_DIM={expected}"
        )
    return vec


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def embed(text: str) -> list[float]:
    """Return an embedding vector for ``text`` (async).

    Backend chosen by ``EMBEDDING_BACKEND`` (default: ``openai``). Provider
    failures are wrapped in :class:`EmbeddingError`.
    """
    cfg = get_config().embed
    backend = cfg.backend
    logger.debug("embed backend=%s model=%s", backend, cfg.model)

    t0 = time.perf_counter()
    try:
        if backend == "stub":
            vec = _embed_stub(text, cfg.dim)
        elif backend == "openai":
            try:
                vec = await _embed_openai(text, cfg.model)
            except Exception as e:
                raise EmbeddingError(f"OpenAI embedding failed: {e}") from e
        else:
            raise ValueError(f"Unsupported EMBEDDING_BACKEND: {backend}")
    finally:
        EMBEDDING_LATENCY_SECONDS.labels(backend).observe(time.perf_counter() - t0)
    return _check_width(vec, cfg.dim)


def clear_cache() -> None:
    """Drop cached OpenAI embeddings (test helper)."""
    _embed_openai_sync.cache_clear()


__all__ = ["embed", "clear_cache"]
