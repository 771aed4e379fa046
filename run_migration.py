#!/usr/bin/env python3
"""Apply SQL migrations to the Context Engine database.

Usage:
    python3 run_migration.py                                # every file in migrations/, in order
    python3 run_migration.py migrations/0001_user_context.sql
"""
import os
import sys
from pathlib import Path

import psycopg2

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def main() -> int:
    files = [Path(p) for p in sys.argv[1:]] or sorted(MIGRATIONS_DIR.glob("[0-9][0-9][0-9][0-9]_*.sql"))
    if not files:
        print("❌ No migration files found")
        return 1

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("❌ DATABASE_URL environment variable not set")
        return 1

    print("🔌 Connecting to database...")
    conn = psycopg2.connect(database_url)

    try:
        with conn.cursor() as cursor:
            for migration_file in files:
                sql = migration_file.read_text()
                print(f"📄 {migration_file} ({len(sql)} bytes)")
                cursor.execute(sql)
                conn.commit()
                print("✅ Applied")
    except Exception as e:
        conn.rollback()
        print(f"❌ Error running migration: {e}")
        return 1
    finally:
        conn.close()

    print("✅ Migration complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
