"""
Command-line maintenance for the companion memory subsystem.

Sub-commands
------------
bootstrap-schema – Create the pgvector extension, documents table and
                   match_documents function (idempotent).
seed-history     – Seed one conversation's rolling history from a text file.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from companion.config_runtime import get_config
from companion.errors import CacheUnavailableError
from companion.logging_config import configure_logging
from companion.memory.history_cache import HistoryCache
from companion.memory.keys import ConversationKey, derive_key, is_valid_key
from companion.memory.vector_store.base import VectorStoreError
from companion.memory.vector_store.pgvector import PgVectorBackend


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="companion-memory",
        description="Maintenance commands for companion chat memory.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser(
        "bootstrap-schema",
        help="Create the pgvector schema used for semantic search.",
    )

    p_seed = sub.add_parser("seed-history", help="Seed a conversation's chat history.")
    p_seed.add_argument("file", type=Path, help="Text file with one chat line per segment.")
    p_seed.add_argument("--companion", required=True, help="Companion name.")
    p_seed.add_argument("--model", required=True, help="Model name.")
    p_seed.add_argument("--user", required=True, help="User id.")
    p_seed.add_argument(
        "--delimiter",
        default="\n",
        help="Segment delimiter (default: newline).",
    )
    return parser


async def _bootstrap_schema() -> int:
    cfg = get_config()
    backend = PgVectorBackend(
        cfg.vector.database_url,
        dim=cfg.embed.dim,
        pool_size=1,
    )
    try:
        await backend.initialize()
        present = await backend.extension_installed()
    finally:
        await backend.close()
    if present:
        print("pgvector extension installed; documents schema ready")
        return 0
    print("pgvector extension not found; install it on the server", file=sys.stderr)
    return 1


async def _seed_history(args: argparse.Namespace) -> int:
    key = ConversationKey(args.companion, args.model, args.user)
    if not is_valid_key(key):
        print("companion, model and user must all be non-empty", file=sys.stderr)
        return 1
    if not args.delimiter:
        print("--delimiter must not be empty", file=sys.stderr)
        return 1
    content = args.file.read_text(encoding="utf-8")
    cfg = get_config()
    history = HistoryCache.from_url(cfg.history.redis_url, window=cfg.history.window)
    try:
        written = await history.seed(derive_key(key), content, args.delimiter)
    finally:
        await history.aclose()
    print(f"seeded {written} line(s) into {derive_key(key)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    configure_logging()
    args = _build_parser().parse_args(argv)
    try:
        if args.command == "bootstrap-schema":
            return asyncio.run(_bootstrap_schema())
        return asyncio.run(_seed_history(args))
    except CacheUnavailableError as e:
        print(f"chat history store unavailable: {e}", file=sys.stderr)
        return 1
    except (VectorStoreError, SQLAlchemyError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
