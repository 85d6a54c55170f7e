#!/usr/bin/env python3
"""Apply db/migrations/*.sql to the configured Postgres database in filename order."""

from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_MIGRATIONS_DIR = REPO_ROOT / "db" / "migrations"


def discover_migrations(directory: Path) -> list[Path]:
    return sorted(path for path in directory.glob("*.sql") if path.is_file())


def render_plan(migrations: list[Path]) -> str:
    chunks: list[str] = []
    for path in migrations:
        chunks.append(f"-- migration: {path.name}\n{path.read_text(encoding='utf-8').rstrip()}\n")
    return "\n".join(chunks)


async def apply_migrations(database_url: str, migrations: list[Path]) -> None:
    conn = await asyncpg.connect(dsn=database_url)
    try:
        for path in migrations:
            async with conn.transaction():
                await conn.execute(path.read_text(encoding="utf-8"))
            print(f"applied {path.name}")
    finally:
        await conn.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply SQL migrations with asyncpg.")
    parser.add_argument(
        "--database-url",
        default=os.getenv("JOBSYNC_DATABASE_URL"),
        help="Postgres DSN (defaults to JOBSYNC_DATABASE_URL)",
    )
    parser.add_argument("--migrations-dir", type=Path, default=DEFAULT_MIGRATIONS_DIR)
    parser.add_argument("--dry-run", action="store_true", help="Print the SQL instead of executing it")
    args = parser.parse_args()

    migrations = discover_migrations(args.migrations_dir)
    if not migrations:
        parser.error(f"no .sql files found in {args.migrations_dir}")

    if args.dry_run:
        print(render_plan(migrations), end="")
        return 0

    if not args.database_url:
        parser.error("--database-url or JOBSYNC_DATABASE_URL is required")
    asyncio.run(apply_migrations(args.database_url, migrations))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
