"""
moodq-insights command line.

Usage:
    moodq-insights init-db
    moodq-insights generate <owner_id> [--compact]
    moodq-insights invalidate <owner_id>
    moodq-insights sweep
    moodq-insights status [--owner <owner_id>] [--check-provider]

The database path comes from --db or MOODQ_DB_PATH; provider settings come
from the MOODQ_AI_* environment variables (a .env file is honored).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from moodq.infrastructure.database import get_db_connection, get_db_path
from moodq.infrastructure.database_schema import init_database, validate_schema
from moodq.insights.service import InsightsService
from moodq.observability.logging import get_logger

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="moodq-insights",
        description="Generate and manage cached mood/journal insights",
    )
    parser.add_argument("--db", type=Path, help="SQLite database path (default: MOODQ_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables and indexes (idempotent)")

    generate = subparsers.add_parser("generate", help="Print insights JSON for an owner")
    generate.add_argument("owner_id")
    generate.add_argument("--compact", action="store_true", help="Single-line JSON output")

    invalidate = subparsers.add_parser("invalidate", help="Drop an owner's cached insights")
    invalidate.add_argument("owner_id")

    subparsers.add_parser("sweep", help="Delete expired cache rows")

    status = subparsers.add_parser("status", help="Cache availability and provider status")
    status.add_argument("--owner", help="Also report provider budget usage for this owner")
    status.add_argument(
        "--check-provider",
        action="store_true",
        help="Send one small request to the configured provider and report the result",
    )

    return parser


async def _generate(service: InsightsService, owner_id: str, compact: bool) -> int:
    outcome = await service.generate_outcome(owner_id)
    output = {
        "ownerId": owner_id,
        "source": outcome.source.value,
        "aiEnhanced": outcome.ai_enhanced,
        "fingerprint": outcome.fingerprint,
        "insights": outcome.insights.to_wire(),
    }
    print(json.dumps(output, indent=None if compact else 2))
    return 0


async def _invalidate(service: InsightsService, owner_id: str) -> int:
    removed = await service.invalidate(owner_id)
    print(f"Invalidated cache for {owner_id}" if removed else f"No cache entry for {owner_id}")
    return 0


async def _sweep(service: InsightsService) -> int:
    removed = await service.cache.sweep_expired()
    print(f"Removed {removed} expired cache entries")
    return 0


async def _status(service: InsightsService, owner_id: str | None, check_provider: bool) -> int:
    await service.cache.check_availability()
    report = service.status()
    if owner_id:
        usage = service.usage(owner_id)
        report["usage"] = {
            "ownerId": usage.owner_id,
            "count": usage.count,
            "limit": usage.limit,
            "resetAt": usage.reset_at.isoformat() if usage.reset_at else None,
            "allowed": usage.is_allowed,
        }
    healthy = report["cache"]["available"]
    if check_provider:
        report["providerCheck"] = await service.check_provider()
        healthy = healthy and report["providerCheck"]["ok"]
    print(json.dumps(report, indent=2))
    return 0 if healthy else 1


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    db_path = args.db or get_db_path()

    if args.command == "init-db":
        init_database(db_path)
        with get_db_connection(db_path) as conn:
            validate_schema(conn)
        print(f"Database ready: {db_path}")
        return 0

    if not Path(db_path).exists():
        print(f"Error: database not found: {db_path} (run: moodq-insights init-db)", file=sys.stderr)
        return 1

    service = InsightsService.from_settings(db_path)

    if args.command == "generate":
        return asyncio.run(_generate(service, args.owner_id, args.compact))
    if args.command == "invalidate":
        return asyncio.run(_invalidate(service, args.owner_id))
    if args.command == "sweep":
        return asyncio.run(_sweep(service))
    if args.command == "status":
        return asyncio.run(_status(service, args.owner, args.check_provider))

    logger.error("Unknown command: %s", args.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
