"""Command-line entrypoint that syncs bucket media into the artwork_media table."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import Base

from .config import DEFAULT_PAGE_SIZE, ConfigurationError, SyncConfig, load_sync_config
from .listing import ConnectivityError, GcsObjectLister
from .persistence import ArtworkMediaStore, PersistenceError
from .reconcile import ReconciliationDriver

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replace artwork_media rows with the images and videos found in a Cloud Storage bucket"
    )
    parser.add_argument("--bucket", type=str, default=None, help="Bucket name (default: $MEDIASYNC_BUCKET)")
    parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="Only list objects under this prefix (default: $MEDIASYNC_PREFIX or the whole bucket)",
    )
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (default: $MEDIASYNC_DATABASE_URL; password from $MEDIASYNC_DB_PASSWORD)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of artworks reconciled concurrently, each on its own connection (default: 1)",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help=f"Objects requested per listing page (default: {DEFAULT_PAGE_SIZE})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve the listing and report planned rows without touching the database",
    )
    parser.add_argument(
        "--anonymous",
        action="store_true",
        help="List a public bucket without credentials (default: $MEDIASYNC_GCS_ANONYMOUS)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log skipped keys and listing details")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> SyncConfig:
    return load_sync_config(
        bucket=args.bucket,
        prefix=args.prefix,
        db_url=args.db_url,
        max_workers=args.workers,
        page_size=args.page_size,
        dry_run=args.dry_run,
        anonymous=args.anonymous,
    )


def _report_plan(driver: ReconciliationDriver, lister: GcsObjectLister) -> None:
    plan = driver.plan(lister)
    for artwork_id, records in plan.records.items():
        LOGGER.info("Planned artwork_id=%d: %d row(s)", artwork_id, len(records))
    LOGGER.info(
        "Dry run. %d row(s) planned across %d artwork(s); %d key(s) skipped, %d asset(s) unpaired or out of range",
        plan.total_records,
        len(plan.records),
        plan.stats.rejected,
        len(plan.skipped),
    )


def run_sync(config: SyncConfig, *, lister: GcsObjectLister | None = None, session_factory=None) -> int:
    try:
        lister = lister or GcsObjectLister(config)
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return EXIT_CONFIG

    try:
        if config.dry_run:
            _report_plan(ReconciliationDriver(config), lister)
            return EXIT_OK

        if session_factory is None:
            engine = create_engine(config.db_url, pool_pre_ping=True)
            Base.metadata.create_all(engine)  # artwork_media only; artworks is managed elsewhere
            session_factory = sessionmaker(bind=engine)

        driver = ReconciliationDriver(
            config,
            ArtworkMediaStore(session_factory),
            store_factory=lambda: ArtworkMediaStore(session_factory),
        )
        driver.run(lister)
        return EXIT_OK
    except ConnectivityError as exc:
        LOGGER.error("Bucket listing failed; no rows were changed: %s", exc)
        return EXIT_FAILURE
    except PersistenceError as exc:
        LOGGER.error("Sync aborted: %s", exc)
        return EXIT_FAILURE
    except SQLAlchemyError as exc:
        LOGGER.error("Database setup failed: %s", exc)
        return EXIT_FAILURE
    except ImportError as exc:
        # create_engine imports the DBAPI named by the URL dialect.
        LOGGER.error("Database driver is not installed (see the mysql/postgres extras): %s", exc)
        return EXIT_FAILURE
    finally:
        lister.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return EXIT_CONFIG

    LOGGER.info(
        "Syncing gs://%s/%s (workers=%d%s)",
        config.bucket,
        config.prefix,
        config.max_workers,
        ", dry run" if config.dry_run else "",
    )
    return run_sync(config)


__all__ = ["build_arg_parser", "build_config", "configure_logging", "main", "run_sync"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
