"""
Backfill denormalized display fields on dispatch records.

Safe to re-run: records that already carry their display fields are skipped.

Usage:
    python scripts/migrate_denormalize_dispatch.py [--batch-size 50]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import get_settings
from app.core.db import AsyncSessionFactory, engine
from app.services.denormalization import run_denormalization_migration

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()


async def main(batch_size: int) -> int:
    logger.info("=" * 60)
    logger.info("Denormalizing dispatch records (batch size %s)", batch_size)
    logger.info("=" * 60)
    try:
        stats = await run_denormalization_migration(AsyncSessionFactory, batch_size=batch_size)
    finally:
        await engine.dispose()

    logger.info("Total records:  %s", stats.total)
    logger.info("Processed:      %s", stats.processed)
    logger.info("Skipped:        %s", stats.skipped)
    logger.info("Failed:         %s", stats.failed)
    logger.info("Batches:        %s", stats.batches)
    logger.info("Duration:       %.2fs", stats.duration_seconds)
    if stats.failed_ids:
        logger.error("Failed record ids: %s", ", ".join(stats.failed_ids))
        return 1
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--batch-size", type=int, default=settings.denormalization_batch_size)
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.batch_size)))
