from __future__ import annotations

import argparse

import uvicorn

from appforge.apps.api.main import create_app


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the AppForge API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser


def main() -> None:
    # CI callbacks default to http://localhost:8000/v1/ci, so keep the port in sync.
    args = _build_parser().parse_args()
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
