"""
Marketplace maintenance commands.

Usage:
    python -m marketplace.main init-db
    python -m marketplace.main seed-tips
    python -m marketplace.main rebuild-metrics [--seller UUID]
    python -m marketplace.main rebuild-daily-sales [--seller UUID]
    python -m marketplace.main check-db
"""

import argparse
import asyncio
import sys
import uuid
from typing import List, Optional

import structlog

from marketplace.aggregation import rebuild_all_seller_metrics, rebuild_daily_sales
from marketplace.config.logging import configure_logging
from marketplace.database.connection import (
    check_database_health,
    close_database,
    create_schema,
    get_db,
    init_database,
)
from marketplace.database.seed import seed_seller_tips

logger = structlog.get_logger(__name__)


async def _init_db(args: argparse.Namespace) -> int:
    await create_schema()
    return 0


async def _seed_tips(args: argparse.Namespace) -> int:
    async with get_db() as db:
        await seed_seller_tips(db)
    return 0


async def _rebuild_metrics(args: argparse.Namespace) -> int:
    seller_ids = [args.seller] if args.seller else None
    async with get_db() as db:
        await rebuild_all_seller_metrics(db, seller_ids)
    return 0


async def _rebuild_daily_sales(args: argparse.Namespace) -> int:
    async with get_db() as db:
        await rebuild_daily_sales(db, args.seller)
    return 0


async def _check_db(args: argparse.Namespace) -> int:
    health = await check_database_health()
    logger.info("Database health", **health)
    return 0 if health["status"] == "healthy" else 1


COMMANDS = {
    "init-db": _init_db,
    "seed-tips": _seed_tips,
    "rebuild-metrics": _rebuild_metrics,
    "rebuild-daily-sales": _rebuild_daily_sales,
    "check-db": _check_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seller marketplace maintenance")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: from settings)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init-db", help="Create all tables")
    subparsers.add_parser("seed-tips", help="Load the default seller tips")
    subparsers.add_parser("check-db", help="Check database connectivity")
    for name, help_text in (
        ("rebuild-metrics", "Recompute seller metrics from orders"),
        ("rebuild-daily-sales", "Recompute daily sales rollups from orders"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--seller", type=uuid.UUID, default=None, help="Limit to one seller id")

    return parser


async def run(args: argparse.Namespace) -> int:
    await init_database(args.database_url)
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_database()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    logger.info("Running command", command=args.command)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
