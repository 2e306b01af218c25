#!/usr/bin/env python3
"""Bulk upload KPI scores from a CSV file.

Each row is matched to a user and submitted on its own through the KPI
service; a failing or unmatched row is reported and does not stop the rest.

CSV columns:
    user_id | employee_id | email | name (at least one, tried in that order),
    period, tat, major_negativity, quality, neighbor_check,
    general_negativity, app_usage, insufficiency[, comments]

Usage:
    # Store scores only
    python scripts/load_kpi_csv.py data/kpi_2024_01.csv

    # Store and run automation without sending email
    python scripts/load_kpi_csv.py data/kpi_2024_01.csv --process --no-email

Environment Variables:
    DATABASE_URL: Database connection string (default: see config.py)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from uuid import UUID

from src.db.models import KPISource
from src.schemas.kpi import BulkRowOutcome
from src.services.errors import KPIEngineError
from src.services.kpi_import import read_kpi_csv
from src.services.kpi_service import KPIService
from src.services.trigger_orchestrator import ProcessOptions, TriggerOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Bulk upload KPI scores from a CSV file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("csv_path", type=Path, help="CSV file to upload")
    parser.add_argument("--submitted-by", type=UUID, default=None, help="UUID of the uploading staff member")
    parser.add_argument("--process", action="store_true", help="Run automation for each created score")
    parser.add_argument("--no-email", action="store_true", help="Skip email dispatch when processing")
    return parser.parse_args()


async def upload(args: argparse.Namespace) -> list[dict]:
    rows = read_kpi_csv(args.csv_path)
    return await KPIService().bulk_submit(
        rows,
        submitted_by=args.submitted_by,
        source=KPISource.BULK_UPLOAD,
        orchestrator=TriggerOrchestrator() if args.process else None,
        options=ProcessOptions(send_email=not args.no_email),
    )


def main() -> int:
    """Main entry point for the KPI CSV loader.

    Returns:
        Exit code (0 when every row was created, 1 otherwise).
    """
    args = parse_args()
    if not args.csv_path.exists():
        logger.error("CSV file not found: %s", args.csv_path)
        return 1

    try:
        results = asyncio.run(upload(args))
    except KPIEngineError as e:
        logger.error("Upload failed: %s", e.message)
        return 1

    failed = [row for row in results if row["outcome"] is BulkRowOutcome.FAILED]
    unmatched = [row for row in results if row["outcome"] is BulkRowOutcome.UNMATCHED]
    for row in failed:
        logger.warning("Row %d (%s %s): %s", row["row"], row["user_id"], row["period"], row["error"])
    for row in unmatched:
        logger.warning("Row %d unmatched (%s): %s", row["row"], row["period"], row["error"])

    logger.info("=" * 50)
    logger.info("KPI UPLOAD SUMMARY")
    logger.info("=" * 50)
    logger.info("  Rows: %d", len(results))
    logger.info("  Created: %d", len(results) - len(failed) - len(unmatched))
    logger.info("  Failed: %d", len(failed))
    logger.info("  Unmatched: %d", len(unmatched))
    logger.info("=" * 50)

    return 1 if failed or unmatched else 0


if __name__ == "__main__":
    sys.exit(main())
