"""CLI to create the schema, seed targets, submit a batch or poll pending batches."""

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from beacon.core.config import get_settings
from beacon.core.db import Store
from beacon.etl.transform import iter_target_rows
from beacon.jobs.check_batch import run_check_job
from beacon.jobs.submit_batch import run_submit_job

logger = logging.getLogger(__name__)

DEFAULT_SEED_FILE = Path(__file__).resolve().parents[2] / "data" / "targets.json"


def seed_targets(store: Store, path: Path) -> int:
    """Insert targets from a ``{city: [shop, ...]}`` JSON file. Existing ids are left alone."""
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object keyed by city")

    rows = iter_target_rows(data)
    inserted = store.insert_targets(rows)
    logger.info("Seeded %d new targets from %s (%d in file)", inserted, path, len(rows))
    return inserted


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run batch scoring jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables if they do not exist")

    seed = sub.add_parser("seed", help="Load targets from a JSON file")
    seed.add_argument("--file", dest="file", type=Path, default=DEFAULT_SEED_FILE, help="Seed JSON path")

    submit = sub.add_parser("submit", help="Submit stale targets as one batch")
    submit.add_argument(
        "--limit",
        dest="limit",
        type=int,
        default=None,
        help="Maximum number of targets to include (defaults to BATCH_SIZE)",
    )

    sub.add_parser("poll", help="Poll pending batches and store results")
    return parser


def run_command(args: argparse.Namespace, store: Store) -> None:
    store.ensure_schema()
    if args.command == "init-db":
        return
    if args.command == "seed":
        seed_targets(store, args.file)
    elif args.command == "submit":
        result = run_submit_job(store, limit=args.limit)
        logger.info("Submit finished: batch_id=%s targets=%d", result.batch_id, result.target_count)
    elif args.command == "poll":
        result = run_check_job(store)
        logger.info(
            "Poll finished: pending=%d processed=%d closed=%d failed=%d",
            result.pending,
            result.processed,
            result.closed,
            result.failed,
        )


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    with Store.open(get_settings().database_url) as store:
        run_command(args, store)


if __name__ == "__main__":
    main()
