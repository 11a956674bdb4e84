import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from loguru import logger

from app.db import init_db
from app.errors import CatalogError
from app.services.catalog_service import to_sync_status
from ingestion.scheduler import SyncScheduler
from ingestion.service import CatalogSynchronizer


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize the marketplace domain catalog")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Restart from page 1 in full mode and ignore any rate-limit cooldown",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete every stored domain and the sync metadata before syncing",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the persisted sync status and exit without syncing",
    )
    return parser.parse_args(argv)


def _print_status(scheduler: SyncScheduler) -> None:
    status = to_sync_status(scheduler.status())
    print(json.dumps(status.model_dump(mode="json"), indent=2))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    init_db()

    scheduler = SyncScheduler(CatalogSynchronizer())
    try:
        if args.status:
            _print_status(scheduler)
            return 0

        try:
            result = scheduler.run_sync(force=args.force, reset=args.reset)
        except CatalogError as exc:
            logger.error("Catalog sync failed: {}", exc)
            return 1

        logger.info(
            "Catalog sync {}: {} page(s), {} domain(s) upserted, last page {}",
            result.outcome.value,
            result.pages_processed,
            result.domains_upserted,
            result.last_page,
        )
        _print_status(scheduler)
        return 0
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
