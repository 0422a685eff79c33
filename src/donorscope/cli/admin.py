"""Administrative CLI for the donorscope analysis engine.

Usage:
    donorscope-admin init-db
    donorscope-admin load-members members.json
    donorscope-admin init-queue
    donorscope-admin run
    donorscope-admin status
    donorscope-admin reprocess ENTITY_ID
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel

from donorscope.analysis.engine import QueueBusyError, UnknownEntityError
from donorscope.services.factories import build_analysis_engine, build_member_directory
from donorscope.settings import get_settings
from donorscope.store.member_directory import load_members
from donorscope.store.sql import create_all

LOGGER = logging.getLogger("donorscope.cli.admin")


def _configure_logging() -> None:
    level_name = os.getenv("DONORSCOPE_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _print(model: BaseModel) -> None:
    print(json.dumps(model.model_dump(mode="json"), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="donorscope-admin", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create every analysis table in the configured database.")
    load = sub.add_parser("load-members", help="Seed the member directory from a JSON file.")
    load.add_argument("path", type=Path)
    sub.add_parser("init-queue", help="Rebuild the processing queue from the member directory.")
    sub.add_parser("run", help="Advance the queue head by one chunk.")
    sub.add_parser("status", help="Print queue progress and the current entity.")
    reprocess = sub.add_parser("reprocess", help="Drop an entity's results and queue it again.")
    reprocess.add_argument("entity_id")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    _configure_logging()
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "init-db":
        create_all(settings=settings)
        LOGGER.info("Created tables at %s", settings.sqlite_path)
        return 0

    if args.command == "load-members":
        count = load_members(args.path, build_member_directory(settings=settings))
        print(f"Loaded {count} members from {args.path}")
        return 0

    engine = build_analysis_engine(settings=settings)
    try:
        if args.command == "init-queue":
            _print(engine.initialize_queue())
        elif args.command == "run":
            result = engine.process_next_chunk()
            _print(result)
            return 1 if result.status == "failed" else 0
        elif args.command == "status":
            _print(engine.status())
        elif args.command == "reprocess":
            try:
                _print(engine.reprocess(args.entity_id))
            except UnknownEntityError as exc:
                print(str(exc), file=sys.stderr)
                return 2
    except QueueBusyError as exc:
        print(str(exc), file=sys.stderr)
        return 3
    finally:
        engine.source.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
