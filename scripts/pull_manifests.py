from __future__ import annotations

import argparse
import asyncio
import sys

from appforge.core.errors import AppLinkNotFoundError, ManifestFetchError
from appforge.core.logging import configure_logging
from appforge.persistence.db import SessionLocal
from appforge.services.builds.manifest import ManifestPoller, refresh_active_links


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pull published build manifests into app links")
    parser.add_argument("--owner-id", type=int, default=None)
    parser.add_argument("--project-id", type=int, default=None)
    parser.add_argument("--slug", default=None)
    parser.add_argument("--all", action="store_true", help="Pull every ACTIVE app link")
    return parser


async def pull(args: argparse.Namespace) -> int:
    poller = ManifestPoller()
    async with SessionLocal() as session:
        if args.all:
            summary = await refresh_active_links(session, poller)
            print(" ".join(f"{key}={value}" for key, value in summary.items()))
            return 0
        if args.owner_id is None or args.project_id is None or not args.slug:
            print("--owner-id, --project-id and --slug are required without --all", file=sys.stderr)
            return 2
        try:
            result = await poller.pull(session, args.owner_id, args.project_id, args.slug)
        except (AppLinkNotFoundError, ManifestFetchError) as exc:
            print(f"error={exc}", file=sys.stderr)
            return 1
    print(f"link_id={result.link.id} updated={result.updated} reason={result.reason} apk_url={result.apk_url}")
    return 0


if __name__ == "__main__":
    configure_logging()
    raise SystemExit(asyncio.run(pull(_build_parser().parse_args())))
