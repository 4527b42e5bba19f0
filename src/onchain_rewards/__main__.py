"""Command line entry point: ``python -m onchain_rewards <command>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from decimal import Decimal

from onchain_rewards.config import get_settings
from onchain_rewards.errors import RewardsError
from onchain_rewards.ledger.achievements import seed_default_achievements
from onchain_rewards.runtime import RewardsRuntime, run_daily_bonus

logger = logging.getLogger("onchain_rewards")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="onchain_rewards", description="On-chain rewards ledger")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables (development; use alembic in production)")
    sub.add_parser("seed-achievements", help="Upsert the default achievement catalog")

    record = sub.add_parser("record-transaction", help="Record one buy/sell/base_transaction")
    record.add_argument("address")
    record.add_argument("type", choices=["buy", "sell", "base_transaction"])
    record.add_argument("amount", type=Decimal)
    record.add_argument("--price", type=Decimal, default=None)
    record.add_argument("--tx-hash", default=None)

    bonus = sub.add_parser("distribute-bonuses", help="Run the daily holding bonus")
    bonus.add_argument("--manual", action="store_true", help="Mark the run as manually triggered")
    bonus.add_argument("--date", type=date.fromisoformat, default=None, help="UTC day, YYYY-MM-DD")
    bonus.add_argument("--timeout", type=float, default=None, help="Stop enumerating after N seconds")

    board = sub.add_parser("leaderboard", help="Print the top of the leaderboard")
    board.add_argument("--top", type=int, default=None)

    sub.add_parser("refresh-leaderboard", help="Rewrite cached ranks and the snapshot")
    sub.add_parser("recalculate-stats", help="Recompute platform stats and milestones")

    reconcile = sub.add_parser("reconcile", help="Compare a profile's points with its ledger")
    reconcile.add_argument("address")
    reconcile.add_argument("--fix", action="store_true", help="Correct the profile total")

    return parser.parse_args(argv)


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run(args: argparse.Namespace) -> int:
    async with RewardsRuntime(get_settings()) as runtime:
        if args.command == "init-db":
            await runtime.db.init_schema_async()
            return 0

        if args.command == "seed-achievements":
            count = await seed_default_achievements(runtime.db)
            _emit({"seeded": count})
            return 0

        if args.command == "record-transaction":
            tx = await runtime.ledger.record_transaction(
                args.address, args.type, args.amount, args.price, tx_hash=args.tx_hash
            )
            _emit({"id": tx.id, "type": tx.type.value, "points": tx.points, "timestamp": tx.timestamp})
            return 0

        if args.command == "distribute-bonuses":
            result = await run_daily_bonus(
                runtime,
                trigger="manual" if args.manual else "scheduled",
                today=args.date,
                timeout_seconds=args.timeout,
            )
            _emit(result.to_dict())
            return 0 if result.success else 1

        if args.command == "leaderboard":
            entries = await runtime.leaderboard.top_n(args.top)
            _emit([e.to_dict() for e in entries])
            return 0

        if args.command == "refresh-leaderboard":
            _emit({"ranked": await runtime.leaderboard.refresh()})
            return 0

        if args.command == "recalculate-stats":
            stats = await runtime.stats.recalculate()
            _emit(stats.__dict__)
            return 0

        if args.command == "reconcile":
            report = await runtime.ledger.reconcile(args.address, fix=args.fix)
            _emit(
                {
                    "address": report.address,
                    "profile_points": report.profile_points,
                    "ledger_points": report.ledger_points,
                    "consistent": report.consistent,
                    "fixed": report.fixed,
                }
            )
            return 0 if report.consistent or report.fixed else 1

    raise AssertionError(f"unhandled command {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except RewardsError as e:
        logger.error("%s failed: %s", args.command, e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
