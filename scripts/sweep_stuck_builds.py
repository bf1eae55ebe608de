from __future__ import annotations

import argparse
import asyncio

from appforge.core.config import get_settings
from appforge.core.logging import configure_logging
from appforge.persistence.db import SessionLocal
from appforge.services.builds.sweeper import expire_stuck_jobs


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fail QUEUED/RUNNING builds that never reported back")
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=None,
        help="Age threshold; defaults to BUILD_STUCK_AFTER_MINUTES",
    )
    parser.add_argument("--limit", type=int, default=500, help="Maximum jobs to expire in one run")
    return parser


async def sweep(args: argparse.Namespace) -> None:
    minutes = args.older_than_minutes or get_settings().build_stuck_after_minutes
    async with SessionLocal() as session:
        expired = await expire_stuck_jobs(session, minutes, limit=args.limit)
    print(f"expired_build_jobs={len(expired)}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(sweep(_build_parser().parse_args()))
