"""Payrun engine command line interface.

Usage:
    payrun-engine init-db
    payrun-engine mark-overdue --as-of 2025-03-02
    payrun-engine serve --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import Callable

from payrun_engine.config import configure_logging, get_settings
from payrun_engine.database import create_schema, create_session_factory, get_engine
from payrun_engine.operations import run_operation

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


class PayrunEngineCli:
    """Payrun engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payrun-engine",
            description="Payroll payrun and loan engine tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Logging level (default: $LOG_LEVEL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        init_db = subparsers.add_parser("init-db", help="Create database tables")
        init_db.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )

        # mark-overdue command
        overdue = subparsers.add_parser(
            "mark-overdue",
            help="Flag pending installments due before a date as overdue",
        )
        overdue.add_argument(
            "--as-of",
            type=parse_date,
            default=None,
            help="Cut-off date, YYYY-MM-DD (default: today)",
        )
        overdue.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )

        # serve command
        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", type=str, help="Bind address (default: $HOST)")
        serve.add_argument("--port", type=int, help="Port (default: $PORT)")
        serve.add_argument("--reload", action="store_true", help="Reload on code changes")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)
        configure_logging(parsed.log_level)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "mark-overdue": self._cmd_mark_overdue,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""

        async def _run() -> None:
            engine = get_engine(args.database_url)
            try:
                await create_schema(engine)
            finally:
                await engine.dispose()

        asyncio.run(_run())
        print("Schema created.")
        return 0

    def _cmd_mark_overdue(self, args: argparse.Namespace) -> int:
        """Flag overdue installments."""
        as_of = args.as_of or date.today()

        async def _run() -> int:
            engine = get_engine(args.database_url)
            try:
                factory = create_session_factory(engine)
                async with factory() as session:
                    result = await run_operation(
                        session, lambda ctx: ctx.loans.mark_overdue_repayments(as_of)
                    )
            finally:
                await engine.dispose()

            if not result.success:
                print(f"Failed ({result.code}): {result.reason}", file=sys.stderr)
                return 1
            print(f"Marked {result.value} installment(s) overdue as of {as_of.isoformat()}.")
            return 0

        return asyncio.run(_run())

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the API with uvicorn."""
        import uvicorn

        settings = get_settings()
        uvicorn.run(
            "payrun_engine.api.app:create_app",
            factory=True,
            host=args.host or settings.HOST,
            port=args.port or settings.PORT,
            reload=args.reload or settings.DEBUG,
        )
        return 0


def main() -> None:
    """Console script entry point."""
    sys.exit(PayrunEngineCli().run())


if __name__ == "__main__":
    main()
