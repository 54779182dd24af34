"""Memory-subsystem errors and the standardized HTTP error shape."""

from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from .logging_config import req_id_var


class MemorySubsystemError(RuntimeError):
    """Base class for errors raised by the conversational memory layer."""


class CacheUnavailableError(MemorySubsystemError):
    """Raised when the chat-history key-value store cannot be reached.

    Unlike vector-search failures this is never masked: conversational
    continuity depends on it.
    """


class EmbeddingError(MemorySubsystemError):
    """Raised when an embedding cannot be produced or has the wrong width."""


def json_error(
    code: str, message: str, status: int, meta: dict[str, Any] | None = None
) -> JSONResponse:
    """Create a standardized JSON error response.

    Shape: {"code", "message", "meta"} with lowercase codes.
    """
    return JSONResponse(
        {"code": code.lower(), "message": message, "meta": meta or {}},
        status_code=status,
    )


async def memory_unavailable_handler(
    request: Request, exc: CacheUnavailableError
) -> JSONResponse:
    req_id = req_id_var.get()
    if req_id == "-":
        req_id = request.headers.get("x-request-id") or "-"
    now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return json_error(
        "memory_unavailable",
        "Conversation memory is temporarily unavailable",
        503,
        meta={"request_id": req_id, "timestamp": now},
    )


def register_error_handlers(app) -> None:
    """Surface a chat-history outage as a service error instead of a 500."""
    app.add_exception_handler(CacheUnavailableError, memory_unavailable_handler)


__all__ = [
    "MemorySubsystemError",
    "CacheUnavailableError",
    "EmbeddingError",
    "json_error",
    "register_error_handlers",
]
