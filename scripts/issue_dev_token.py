from __future__ import annotations

import argparse
import sys

from appforge.services.auth.tokens import issue_access_token, normalize_role


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mint a signed access token for local development")
    parser.add_argument("--owner-id", required=True, type=int, help="Owner id placed in the sub claim")
    parser.add_argument("--role", default="OWNER", help="Role: OWNER|SUPER_ADMIN")
    parser.add_argument("--ttl-minutes", type=int, default=None, help="Override token lifetime")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        role = normalize_role(args.role)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    token = issue_access_token(args.owner_id, role, ttl_minutes=args.ttl_minutes)
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
