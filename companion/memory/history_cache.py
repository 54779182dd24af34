from __future__ import annotations

"""Bounded rolling chat history per conversation, stored as Redis lists.

Lists are kept newest-first (``LPUSH``) and trimmed to the window after every
write; reads reverse them back into chronological order. Each write is a
single MULTI/EXEC pipeline so push and trim land together. Concurrent writers
on the same key are not serialized beyond that.
"""


import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from redis.exceptions import RedisError

from ..errors import CacheUnavailableError
from ..metrics import HISTORY_OPS_TOTAL

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 50

T = TypeVar("T")


def split_seed_lines(content: str, delimiter: str = "\n") -> list[str]:
    """Split seed content into trimmed, non-empty lines.

    Raises :class:`ValueError` for an empty delimiter.
    """
    if not delimiter:
        raise ValueError("seed delimiter must be a non-empty string")
    if not content:
        return []
    return [line.strip() for line in content.split(delimiter) if line.strip()]


class HistoryCache:
    """Sliding window of chat lines keyed by conversation cache key."""

    def __init__(self, client: Any, window: int = HISTORY_WINDOW) -> None:
        self._redis = client
        self.window = min(max(window, 1), HISTORY_WINDOW)

    @classmethod
    def from_url(cls, url: str, window: int = HISTORY_WINDOW) -> HistoryCache:
        import redis.asyncio as redis  # type: ignore

        try:
            client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        except (RedisError, ValueError) as e:
            raise CacheUnavailableError(f"invalid Redis configuration: {e}") from e
        return cls(client, window=window)

    async def _call(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except (RedisError, OSError) as e:
            logger.error(
                "history.%s failed: %s", op, e, extra={"meta": {"op": op}}
            )
            raise CacheUnavailableError(f"chat history store unavailable: {e}") from e

    async def ping(self) -> None:
        await self._call("ping", self._redis.ping)

    async def append(self, cache_key: str, text: str) -> None:
        async def _run():
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lpush(cache_key, text)
                pipe.ltrim(cache_key, 0, self.window - 1)
                return await pipe.execute()

        await self._call("append", _run)
        HISTORY_OPS_TOTAL.labels("append").inc()

    async def read_recent(self, cache_key: str) -> str:
        lines = await self._call(
            "read", lambda: self._redis.lrange(cache_key, 0, self.window - 1)
        )
        HISTORY_OPS_TOTAL.labels("read").inc()
        if not lines:
            return ""
        return "\n".join(reversed(list(lines)))

    async def seed(self, cache_key: str, content: str, delimiter: str = "\n") -> int:
        lines = split_seed_lines(content, delimiter)
        if not lines:
            return 0

        async def _run():
            async with self._redis.pipeline(transaction=True) as pipe:
                for line in lines:
                    pipe.lpush(cache_key, line)
                # one trim for the whole batch
                pipe.ltrim(cache_key, 0, self.window - 1)
                return await pipe.execute()

        await self._call("seed", _run)
        HISTORY_OPS_TOTAL.labels("seed").inc()
        logger.debug(
            "history.seeded", extra={"meta": {"key": cache_key, "lines": len(lines)}}
        )
        return len(lines)

    async def clear(self, cache_key: str) -> None:
        await self._call("clear", lambda: self._redis.delete(cache_key))

    async def aclose(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:  # pragma: no cover - shutdown path
            logger.warning("history.close failed: %s", e)


__all__ = ["HISTORY_WINDOW", "HistoryCache", "split_seed_lines"]
