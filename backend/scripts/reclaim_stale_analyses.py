#!/usr/bin/env python3
"""
Stale Analysis Reclaim Script

Moves analyses stuck in ``processing`` (worker crashed or the process
restarted with jobs still queued) to ``error`` so the user can resubmit.
Run as a cron job or manually: python -m scripts.reclaim_stale_analyses

Usage:
    python -m scripts.reclaim_stale_analyses                  # settings threshold
    python -m scripts.reclaim_stale_analyses --minutes 120    # custom threshold
"""

import asyncio
import argparse
import logging
from datetime import timedelta

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import get_settings
from app.services.container import build_container

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def reclaim(minutes: int) -> list[str]:
    """Reclaim analyses whose last update is older than ``minutes``."""
    container = build_container(get_settings())
    try:
        return await container.state_machine.reclaim_stale(timedelta(minutes=minutes))
    finally:
        await container.close()


async def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Reclaim analyses stuck in processing")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.processing_stale_after_minutes,
        help=(
            "Age in minutes after which a processing analysis is stale "
            f"(default: {settings.processing_stale_after_minutes})"
        ),
    )
    args = parser.parse_args()

    reclaimed = await reclaim(args.minutes)

    print("\n=== Reclaim Complete ===")
    print(f"Reclaimed: {len(reclaimed)}")
    for analysis_id in reclaimed:
        print(f"  {analysis_id}")


if __name__ == "__main__":
    asyncio.run(main())
