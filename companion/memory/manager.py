from __future__ import annotations

"""Conversational memory manager.

Owns the chat-history cache and the active vector backend for the process.
Two failure paths are deliberately different:

- vector backend problems (init or per-search) never reach the caller:
  init failure switches to a permanent degraded mode, search failure
  returns ``[]``;
- chat-history store problems raise :class:`CacheUnavailableError`.

Invalid conversation keys turn every history operation into a silent no-op.
"""


import asyncio
import enum
import logging
from typing import Any

from companion import metrics
from companion.config_runtime import RuntimeConfig, get_config
from companion.errors import CacheUnavailableError

from .history_cache import HistoryCache
from .keys import ConversationKey, derive_key, is_valid_key
from .vector_store import (
    MisconfiguredStoreError,
    NullVectorBackend,
    ScoredDocument,
    VectorBackend,
    create_vector_backend,
)

logger = logging.getLogger(__name__)


class MemoryState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class MemoryManager:
    """Application-scoped memory context shared by all request handlers."""

    def __init__(
        self,
        history: HistoryCache,
        vector_backend: VectorBackend | None,
        *,
        requested_backend: str | None = None,
        strict: bool = False,
        unavailable_reason: str = "",
    ) -> None:
        self.history = history
        self._vector: VectorBackend = vector_backend or NullVectorBackend(
            reason="not configured"
        )
        self._has_backend = vector_backend is not None
        self._unavailable_reason = unavailable_reason or "not configured"
        self.requested_backend = requested_backend or self._vector.name
        self._strict = strict
        self._init_lock = asyncio.Lock()
        self.state = MemoryState.UNINITIALIZED
        self.degraded = False

    @property
    def vector_backend(self) -> VectorBackend:
        return self._vector

    @property
    def ready(self) -> bool:
        return self.state is MemoryState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Bring the vector backend up exactly once.

        Concurrent callers wait on the same run. A failed backend is replaced
        by :class:`NullVectorBackend` for the rest of the process lifetime.
        """
        if self.state is MemoryState.READY:
            return
        async with self._init_lock:
            if self.state is MemoryState.READY:
                return
            self.state = MemoryState.INITIALIZING
            if not self._has_backend:
                self._enter_degraded(self._unavailable_reason)
                self.state = MemoryState.READY
                return
            try:
                await self._vector.initialize()
            except Exception as exc:
                if self._strict:
                    self.state = MemoryState.UNINITIALIZED
                    logger.error("FATAL: Vector store init failed: %s", exc)
                    raise
                logger.warning(
                    "Vector store init failed (%s: %s); semantic search disabled",
                    type(exc).__name__,
                    exc,
                )
                metrics.VECTOR_INIT_FALLBACKS.labels(
                    requested=self.requested_backend, reason=type(exc).__name__
                ).inc()
                failed = self._vector
                self._vector = NullVectorBackend(reason=type(exc).__name__)
                self._enter_degraded(type(exc).__name__)
                await _close_quietly(failed)
            self.state = MemoryState.READY
            logger.info(
                "memory.ready",
                extra={
                    "meta": {
                        "backend": self._vector.name,
                        "requested": self.requested_backend,
                        "degraded": self.degraded,
                    }
                },
            )

    def _enter_degraded(self, reason: str) -> None:
        self.degraded = True
        logger.warning(
            "memory.degraded: vector store unavailable, continuing without retrieval",
            extra={"meta": {"requested": self.requested_backend, "reason": reason}},
        )

    async def aclose(self) -> None:
        await _close_quietly(self._vector)
        await self.history.aclose()

    # ------------------------------------------------------------------
    # Chat history
    # ------------------------------------------------------------------

    async def write_to_history(self, text: str, key: ConversationKey | None) -> None:
        if not is_valid_key(key):
            metrics.HISTORY_OPS_TOTAL.labels("skipped").inc()
            return
        await self.history.append(derive_key(key), text)

    async def read_latest_history(self, key: ConversationKey | None) -> str:
        if not is_valid_key(key):
            metrics.HISTORY_OPS_TOTAL.labels("skipped").inc()
            return ""
        return await self.history.read_recent(derive_key(key))

    async def seed_chat_history(
        self,
        seed_content: str,
        delimiter: str = "\n",
        key: ConversationKey | None = None,
    ) -> int:
        """Push each non-empty line of ``seed_content``; returns lines written.

        An empty ``delimiter`` raises :class:`ValueError` for a valid key.
        """
        if not is_valid_key(key):
            metrics.HISTORY_OPS_TOTAL.labels("skipped").inc()
            return 0
        return await self.history.seed(derive_key(key), seed_content, delimiter)

    # ------------------------------------------------------------------
    # Semantic retrieval
    # ------------------------------------------------------------------

    async def vector_search(
        self, recent_chat_history: str, companion_file_name: str
    ) -> list[ScoredDocument]:
        """Best-effort top-k retrieval filtered to one companion's documents."""
        try:
            await self.initialize()
        except Exception as exc:
            logger.warning("vector search skipped, memory not initialized: %s", exc)
            return []
        backend = self._vector
        try:
            return await backend.search(recent_chat_history, companion_file_name)
        except Exception as exc:
            logger.warning(
                "failed to get vector search results: %s",
                exc,
                extra={"meta": {"backend": backend.name, "error": type(exc).__name__}},
            )
            metrics.VECTOR_SEARCH_FAILURES.labels(backend.name).inc()
            return []

    async def add_document(self, content: str, metadata: dict[str, Any]) -> str:
        """Insert one retrieval document into the active backend."""
        await self.initialize()
        return await self._vector.add_document(content, metadata)

    async def status(self) -> dict[str, Any]:
        try:
            await self.history.ping()
            history_ok = True
        except CacheUnavailableError:
            history_ok = False
        return {
            "state": self.state.value,
            "degraded": self.degraded,
            "vector_backend": self._vector.name,
            "requested_backend": self.requested_backend,
            "history_ok": history_ok,
        }


async def _close_quietly(backend: VectorBackend) -> None:
    try:
        await backend.close()
    except Exception as exc:  # pragma: no cover - shutdown path
        logger.debug("vector backend close failed: %s", exc)


def build_memory_manager(
    config: RuntimeConfig | None = None, *, embedder=None
) -> MemoryManager:
    """Construct (but do not initialize) a manager from configuration.

    Missing managed-index credentials are fatal when that backend is
    selected. Other construction problems leave the manager without a vector
    backend so it comes up degraded.
    """
    cfg = config or get_config()
    history = HistoryCache.from_url(cfg.history.redis_url, window=cfg.history.window)
    backend: VectorBackend | None = None
    reason = ""
    try:
        backend = create_vector_backend(cfg.vector, dim=cfg.embed.dim, embedder=embedder)
    except MisconfiguredStoreError as exc:
        if cfg.vector.uses_managed_index or cfg.strict_vector_store:
            raise
        reason = str(exc)
    except Exception as exc:
        if cfg.strict_vector_store:
            raise
        reason = f"{type(exc).__name__}: {exc}"
    if backend is None:
        logger.warning("Vector store construction failed: %s", reason)
        metrics.VECTOR_INIT_FALLBACKS.labels(
            requested=cfg.vector.backend, reason="construction"
        ).inc()
    return MemoryManager(
        history,
        backend,
        requested_backend=cfg.vector.backend,
        strict=cfg.strict_vector_store,
        unavailable_reason=reason,
    )


# ---------------------------------------------------------------------------
# Process-wide accessor for callers without the app-scoped context
# ---------------------------------------------------------------------------

_instance: MemoryManager | None = None
_instance_lock = asyncio.Lock()


async def get_instance(config: RuntimeConfig | None = None) -> MemoryManager:
    """Return the shared manager, building and initializing it on first call.

    Raises :class:`CacheUnavailableError` when the history store is
    unreachable. A failed build (including strict-mode init failure) is
    closed and not cached, so a later call retries from scratch.
    """
    global _instance
    if _instance is not None:
        return _instance
    async with _instance_lock:
        if _instance is None:
            manager = build_memory_manager(config)
            try:
                await manager.history.ping()
                await manager.initialize()
            except Exception:
                await manager.aclose()
                raise
            _instance = manager
    return _instance


async def reset_instance_for_tests() -> None:  # pragma: no cover - test helper
    global _instance, _instance_lock
    if _instance is not None:
        await _instance.aclose()
    _instance = None
    _instance_lock = asyncio.Lock()


__all__ = [
    "MemoryState",
    "MemoryManager",
    "build_memory_manager",
    "get_instance",
]
