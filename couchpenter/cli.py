from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable, Optional

import aiohttp

from couchpenter import __version__
from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.couchpenter_service import COMMANDS, CouchpenterService, init_setup_file
from couchpenter.services.errors import CouchpenterError, TaskFailedError
from couchpenter.services.schedule_service import WarmViewsScheduler

INIT_COMMAND = "init"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="couchpenter",
        description="Set up and tear down CouchDB databases and documents from a setup file.",
    )
    parser.add_argument("command", choices=[INIT_COMMAND, *COMMANDS], help="command to run")
    parser.add_argument("-u", "--url", help="CouchDB URL, default: $COUCHDB_URL or http://localhost:5984")
    parser.add_argument("-f", "--setup-file", help="setup file, default: couchpenter.json")
    parser.add_argument("-d", "--dir", help="base directory of document files and modules, default: current directory")
    parser.add_argument("-p", "--prefix", help="prefix prepended to every database name")
    parser.add_argument("-i", "--interval", type=float, help="liveDeployView polling interval in seconds")
    parser.add_argument("-s", "--schedule", help="cron schedule for warmViews, e.g. '*/30 * * * *'")
    parser.add_argument("--log-level", default="WARNING", help="logging level, default: WARNING")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _print_results(results: Iterable[OperationResult]) -> None:
    for result in results:
        print(result)


async def _run_schedule(couchpenter: CouchpenterService) -> None:
    scheduler = WarmViewsScheduler(
        couchpenter=couchpenter,
        schedule=couchpenter.config.schedule or "",
        on_result=_print_results,
        on_error=lambda exc: print(f"error: {exc}", file=sys.stderr),
        on_stop=lambda result: print(result),
    )
    scheduler.start()
    try:
        # Runs until the process is interrupted.
        await asyncio.Event().wait()
    finally:
        scheduler.stop()


async def run(args: argparse.Namespace) -> list[OperationResult]:
    async with aiohttp.ClientSession() as session:
        couchpenter = CouchpenterService.from_env(
            session=session,
            url=args.url,
            setup_file=args.setup_file,
            dir=args.dir,
            prefix=args.prefix,
            interval=args.interval,
            schedule=args.schedule,
        )
        if args.command == "warmViews" and couchpenter.config.schedule:
            await _run_schedule(couchpenter)
            return []
        return await couchpenter.run_command(args.command)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")

    try:
        if args.command == INIT_COMMAND:
            print(f"Created sample setup file: {init_setup_file()}")
            return 0
        _print_results(asyncio.run(run(args)))
        return 0
    except TaskFailedError as exc:
        _print_results(exc.completed)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except (CouchpenterError, ValueError) as exc:
        # ValueError: invalid option values rejected by the config classes.
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
