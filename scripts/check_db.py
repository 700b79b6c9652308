#!/usr/bin/env python
"""Check database connectivity and the tables the dashboard reads.

Usage:
    uv run python scripts/check_db.py
"""

import asyncio
import sys

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.config import get_settings
from app.core.database import Base

# Registers the table mappings on Base.metadata
from app.features.analytics import models  # noqa: F401


def _missing_tables(sync_conn) -> list[str]:
    inspector = inspect(sync_conn)
    missing = []
    for table in Base.metadata.sorted_tables:
        if not inspector.has_table(table.name, schema=table.schema):
            missing.append(table.fullname)
            continue
        columns = {
            column["name"] for column in inspector.get_columns(table.name, schema=table.schema)
        }
        missing.extend(
            f"{table.fullname}.{column.name}"
            for column in table.columns
            if column.name not in columns
        )
    return missing


async def check_database():
    """Verify the connection and that every mapped table and column exists."""
    settings = get_settings()

    print("TransformStudioAnalytics - Database Check")
    print("=" * 45)
    print(f"Database URL: {settings.database_url.split('@')[-1]}")  # Hide credentials
    print()

    engine = create_async_engine(settings.database_url)

    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            if result.scalar() != 1:
                print("[FAIL] Unexpected response to SELECT 1")
                return 1
            print("[OK] Basic connectivity")

            result = await conn.execute(text("SELECT version()"))
            version = result.scalar()
            print(f"[OK] PostgreSQL version: {version[:50]}...")

            missing = await conn.run_sync(_missing_tables)
            if missing:
                for name in missing:
                    print(f"[FAIL] Missing: {name}")
                return 1
            print(f"[OK] {len(Base.metadata.tables)} dashboard tables present")

        print()
        print("Database check completed successfully!")
        return 0

    except (SQLAlchemyError, OSError) as e:
        print(f"[FAIL] Connection failed: {e}")
        print()
        print("Troubleshooting:")
        print("  1. Check DATABASE_URL in .env file")
        print("  2. Use the direct Postgres connection string, not the REST URL")
        print("  3. The role needs read access to the auth schema")
        return 1

    finally:
        await engine.dispose()


def main():
    sys.exit(asyncio.run(check_database()))


if __name__ == "__main__":
    main()
