"""PMS Engine Command Line Interface.

Provides operational tools for:
- Schema creation
- Running the daily PMS calculation
- Deviation reports
- Daily reading status

Usage:
    python -m pms_engine.cli init-db
    python -m pms_engine.cli calculate --actor-id U --station-id S --date 2024-01-15
    python -m pms_engine.cli deviations --actor-id U --station-id S --threshold 25
    python -m pms_engine.cli daily-status --actor-id U --station-id S --date 2024-01-15
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from pms_engine.config import get_settings
from pms_engine.database import create_schema, init_db
from pms_engine.facade import OperationResult, PmsEngine


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def _print_result(result: OperationResult) -> int:
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


class PmsCli:
    """PMS Engine Command Line Interface."""

    def __init__(self, engine_factory: Callable[[], PmsEngine] | None = None) -> None:
        self.parser = self._build_parser()
        self._engine_factory = engine_factory

    def _engine(self) -> PmsEngine:
        if self._engine_factory is not None:
            return self._engine_factory()
        _, factory = init_db()
        return PmsEngine(factory, get_settings().reconciliation)

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m pms_engine.cli",
            description="PMS reconciliation tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        calculate = subparsers.add_parser(
            "calculate",
            help="Run the PMS calculation for a station and date",
        )
        calculate.add_argument("--actor-id", type=parse_uuid, required=True)
        calculate.add_argument("--station-id", type=parse_uuid, required=True)
        calculate.add_argument("--date", required=True, help="Calculation date (YYYY-MM-DD)")
        calculate.add_argument(
            "--force",
            action="store_true",
            help="Recalculate even when a current calculation exists",
        )

        deviations = subparsers.add_parser(
            "deviations",
            help="List calculations deviating from their trailing average",
        )
        deviations.add_argument("--actor-id", type=parse_uuid, required=True)
        deviations.add_argument("--station-id", type=parse_uuid, required=True)
        deviations.add_argument("--threshold", type=Decimal, help="Threshold percent")
        deviations.add_argument("--days", type=int, help="Lookback in days")

        daily = subparsers.add_parser(
            "daily-status",
            help="Show which pumps have opening/closing readings",
        )
        daily.add_argument("--actor-id", type=parse_uuid, required=True)
        daily.add_argument("--station-id", type=parse_uuid, required=True)
        daily.add_argument("--date", required=True, help="Reading date (YYYY-MM-DD)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace], Any]] = {
            "init-db": self._cmd_init_db,
            "calculate": self._cmd_calculate,
            "deviations": self._cmd_deviations,
            "daily-status": self._cmd_daily_status,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return asyncio.run(handler(parsed))

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        await create_schema()
        print("Schema created.")
        return 0

    async def _cmd_calculate(self, args: argparse.Namespace) -> int:
        """Run calculatePmsForDate."""
        result = await self._engine().calculate_pms_for_date(
            args.actor_id, args.station_id, args.date, force_recalculate=args.force
        )
        return _print_result(result)

    async def _cmd_deviations(self, args: argparse.Namespace) -> int:
        """Print the deviation report."""
        result = await self._engine().get_calculations_with_deviations(
            args.actor_id, args.station_id, threshold_percent=args.threshold, days=args.days
        )
        return _print_result(result)

    async def _cmd_daily_status(self, args: argparse.Namespace) -> int:
        result = await self._engine().get_daily_reading_status(
            args.actor_id, args.station_id, args.date
        )
        return _print_result(result)


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = PmsCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
