from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Sequence

from dotenv import load_dotenv

from dca_engine.common import guarded_call
from dca_engine.execution import OUTCOME_FAILED
from dca_engine.storage import StorageGateway, StorageSettings

from .logging import setup_logger
from .loop_helpers import close_clients
from .settings import AppSettings
from .wiring import build_components

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dca-ctl",
        description="Operator controls for the DCA engine: run a policy now, simulate a purchase, list history.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    execute_now = subparsers.add_parser(
        "execute-now",
        help="Execute the wallet's active policy immediately through the full pipeline.",
    )
    execute_now.add_argument("wallet", help="Wallet address (0x...)")

    simulate = subparsers.add_parser(
        "simulate",
        help="Resolve, price and check solvency without signing or recording anything.",
    )
    simulate.add_argument("wallet", help="Wallet address (0x...)")
    simulate.add_argument(
        "--amount",
        default=None,
        help="Purchase amount in native units. Defaults to the wallet's policy amount.",
    )

    history = subparsers.add_parser("history", help="List recent purchase records for a wallet.")
    history.add_argument("wallet", help="Wallet address (0x...)")
    history.add_argument("--limit", type=int, default=20)

    return parser.parse_args(argv)


def print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def cli_storage_settings(command: str, now: datetime | None = None) -> StorageSettings:
    """Storage settings under a run id of their own.

    ENGINE_RUN_ID names the long-running service's run document, which the
    CLI must never mark as running or stopped.
    """
    moment = now or datetime.now(timezone.utc)
    settings = StorageSettings.from_env()
    return replace(settings, engine_run_id=f"cli-{command}-{moment.strftime('%Y%m%dT%H%M%SZ')}")


async def dispatch(engine: Any, args: argparse.Namespace) -> int:
    if args.command == "execute-now":
        outcome = await engine.execute_now(args.wallet)
        print_json(outcome.to_dict())
        return EXIT_FAILED if outcome.status == OUTCOME_FAILED else EXIT_OK

    if args.command == "simulate":
        quote = await engine.simulate(args.wallet, args.amount)
        print_json(quote.to_dict())
        return EXIT_OK

    records = await engine.history(args.wallet, args.limit)
    print_json([record.to_document() for record in records])
    return EXIT_OK


async def run(args: argparse.Namespace) -> int:
    logger = setup_logger()
    app_settings = AppSettings.from_env()
    try:
        app_settings.require_complete()
    except ValueError as error:
        print_json({"error": str(error)})
        return EXIT_USAGE

    storage = StorageGateway(cli_storage_settings(args.command), logger)
    components = build_components(logger=logger, app_settings=app_settings, storage=storage)

    try:
        await storage.connect()
        for client in components.clients:
            await client.connect()

        try:
            return await dispatch(components.engine, args)
        except ValueError as error:
            print_json({"error": str(error), "command": args.command})
            return EXIT_USAGE
    finally:
        await storage.mark_run_stopped(reason=f"cli:{args.command}")
        await close_clients(logger=logger, clients=components.clients)
        await guarded_call(
            storage.close,
            logger=logger,
            event="storage_close_failed",
            message="Failed to close storage",
        )


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    sys.exit(asyncio.run(run(args)))
