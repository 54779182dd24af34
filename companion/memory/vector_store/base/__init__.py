from __future__ import annotations
"""Base interfaces and common errors for vector-store backends.

This module purposely keeps only the protocol, the result carrier and light
exceptions so it can be imported by any backend without heavy side-effects.
"""


from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


class VectorStoreError(RuntimeError):
    """Generic vector store error wrapper."""


class MisconfiguredStoreError(VectorStoreError):
    """Raised when a backend is not properly configured for the environment."""


@dataclass
class ScoredDocument:
    """A retrieved document and its similarity (``1 - distance``)."""

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    similarity: float = 0.0


@runtime_checkable
class VectorBackend(Protocol):
    """Protocol shared by the semantic-retrieval backends.

    ``search`` may raise; the memory manager turns any failure into an empty
    result so callers never depend on retrieval succeeding.
    """

    name: str

    async def initialize(self) -> None: ...

    async def search(self, query: str, filter_tag: str) -> list[ScoredDocument]: ...

    async def add_document(self, content: str, metadata: dict[str, Any]) -> str: ...

    async def close(self) -> None: ...


class NullVectorBackend:
    """Degraded backend: no vector store, no I/O, always empty results."""

    name = "none"

    def __init__(self, reason: str = "") -> None:
        self.reason = reason

    async def initialize(self) -> None:
        return None

    async def search(self, query: str, filter_tag: str) -> list[ScoredDocument]:
        return []

    async def add_document(self, content: str, metadata: dict[str, Any]) -> str:
        raise VectorStoreError(
            f"no vector backend available ({self.reason or 'disabled'})"
        )

    async def close(self) -> None:
        return None


__all__ = [
    "VectorStoreError",
    "MisconfiguredStoreError",
    "ScoredDocument",
    "VectorBackend",
    "NullVectorBackend",
]
