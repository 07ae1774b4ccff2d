#!/usr/bin/env python
"""Command-line entry point: ``newsroom-desk <command>``."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog

from app import config
from app.errors import PipelineError
from app.logging_config import configure_logging

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="newsroom-desk",
        description="Stage pitches on the board, generate articles and review them.",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Minimum log level")
    parser.add_argument("--log-json", action="store_true", default=config.LOG_JSON,
                        help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)

    pitch = sub.add_parser("pitch", help="Stage a pitch for one topic")
    pitch.add_argument("--topic", required=True, help="Ticker or keywords")
    pitch.add_argument("--pr-only", action="store_true", help="Press releases only")

    sub.add_parser("news-cycle", help="Run one RSS news cycle")
    sub.add_parser("analyst-scan", help="Scan the analyst-note mailbox once")
    sub.add_parser("schedule", help="Run the interval jobs until interrupted")
    return parser


def _print(result: object) -> None:
    print(json.dumps(result, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_json)

    if args.command == "serve":
        import uvicorn

        from app.server import create_app

        uvicorn.run(create_app(), host=args.host, port=args.port)
        return 0

    from app.desk import Desk

    try:
        desk = Desk.from_config()
        if args.command == "pitch":
            _print(asyncio.run(desk.pitch(args.topic, pr_only=args.pr_only)))
        elif args.command == "news-cycle":
            _print(asyncio.run(desk.news_cycle()))
        elif args.command == "analyst-scan":
            _print(asyncio.run(desk.scan_analyst_notes()))
        elif args.command == "schedule":
            from app.scheduler import run_forever

            asyncio.run(run_forever(desk))
    except PipelineError as e:
        logger.error("main.command_failed", command=args.command, error=str(e),
                     error_type=e.__class__.__name__)
        return 1
    except KeyboardInterrupt:
        logger.info("main.interrupted", command=args.command)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
