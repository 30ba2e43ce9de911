"""Collapse duplicate share rows, keeping the newest row of each group.

Groups are (resource, recipient); all guest links of one resource form a
single group.  Safe to run repeatedly.

Usage:
    uv run python scripts/clean_duplicate_shares.py sqlite+aiosqlite:///drive.db
    uv run python scripts/clean_duplicate_shares.py postgresql+asyncpg://localhost/drive -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine

from drivegate import AccessEngine


async def run(url: str) -> int:
    engine = create_async_engine(url)
    try:
        gate = AccessEngine.from_engine(engine)
        return await gate.cleanup_duplicate_shares()
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Remove duplicate share rows")
    parser.add_argument("url", help="async SQLAlchemy database URL")
    parser.add_argument("-v", "--verbose", action="store_true", help="log each step")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    deleted = asyncio.run(run(args.url))
    print(f"Removed {deleted} duplicate share row(s)")


if __name__ == "__main__":
    main()
