import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

# Exposed so request handlers can set/request ids
req_id_var: ContextVar[str] = ContextVar("req_id", default="-")

# Lightweight in-process error ring buffer for status reporting
_ERRORS: list[dict[str, Any]] = []
_MAX_ERRORS = 200


def _utc_stamp() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
    )


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _utc_stamp(),
            "req_id": getattr(record, "req_id", req_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        payload["env"] = os.getenv("ENV", "").strip()
        payload["version"] = os.getenv("APP_VERSION") or os.getenv("GIT_TAG") or ""
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except Exception:
            # Fallback to plain message if payload has unserialisable types
            return payload.get("msg", "")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Propagate request id from context-var into every log line
        record.req_id = req_id_var.get()
        return True


class VectorStoreWarningFilter(logging.Filter):
    """Show each vector-store warning once, then mute repeats.

    A degraded vector backend would otherwise warn on every chat turn.
    """

    _warned_messages: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno == logging.WARNING:
            msg = record.getMessage()
            if any(
                phrase in msg
                for phrase in ("vector store", "Vector store", "pgvector", "Qdrant", "EMBED_DIM")
            ):
                if msg in self._warned_messages:
                    return False
                self._warned_messages.add(msg)
        return True


class _ErrorBufferHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - IO free
        if record.levelno < logging.ERROR:
            return
        _ERRORS.append(
            {
                "timestamp": _utc_stamp(),
                "level": record.levelname,
                "component": record.name,
                "msg": record.getMessage(),
            }
        )
        if len(_ERRORS) > _MAX_ERRORS:
            # keep newest
            del _ERRORS[: len(_ERRORS) - _MAX_ERRORS]


def configure_logging(level: str | None = None) -> None:
    """
    Call once at app startup.
    LOG_LEVEL env var controls verbosity (default INFO).
    LOG_TO_STDOUT switches from JSON-on-stderr to plain text on stdout.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    plain = os.getenv("LOG_TO_STDOUT", "").lower() in {"1", "true", "yes", "on"}

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_formatter = JsonFormatter()
    if plain:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(json_formatter)
    handler.addFilter(RequestIdFilter())
    if level != "DEBUG":
        handler.addFilter(VectorStoreWarningFilter())
    root_logger.addHandler(handler)

    error_handler = _ErrorBufferHandler()
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    # Reduce third-party verbosity unless LOG_LEVEL is DEBUG
    if level != "DEBUG":
        for noisy in ("httpx", "httpcore", "asyncio", "openai"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging.configured", extra={"meta": {"level": level, "plain": plain}}
    )


def get_last_errors(n: int) -> list[dict[str, Any]]:
    """Return the last ``n`` buffered error records."""
    if n <= 0:
        return []
    return _ERRORS[-n:]


def clear_errors() -> None:
    _ERRORS.clear()


__all__ = [
    "req_id_var",
    "JsonFormatter",
    "RequestIdFilter",
    "VectorStoreWarningFilter",
    "configure_logging",
    "get_last_errors",
    "clear_errors",
]
