#!/usr/bin/env python3
"""
Check that the schedule tables and write functions exist in Supabase.
Run from backend directory: python -m tutoring.db.schema_check
"""
import sys
from pathlib import Path
from typing import List

from tutoring.services.supabase_client import SUPABASE_SERVICE_KEY, SUPABASE_URL, supabase_request

MIGRATION_PATH = Path(__file__).resolve().parent / "migrations" / "001_schedule_tables.sql"
REQUIRED_TABLES = ["teachers", "students", "classes", "class_students"]


def missing_tables() -> List[str]:
    """Tables PostgREST does not know about (404 on a one-row select)."""
    missing = []
    for table in REQUIRED_TABLES:
        resp = supabase_request("GET", f"/rest/v1/{table}?select=*&limit=1", max_retries=0)
        if resp.status_code == 404:
            missing.append(table)
        elif resp.status_code != 200:
            raise RuntimeError(f"Unexpected response checking {table}: {resp.status_code} {resp.text}")
    return missing


def main() -> int:
    print(f"SUPABASE_URL: {SUPABASE_URL}")
    print(f"Service key present: {bool(SUPABASE_SERVICE_KEY)}")

    missing = missing_tables()
    if not missing:
        print("\nAll schedule tables exist.")
        return 0

    print(f"\nMissing tables: {', '.join(missing)}")
    print("\nRun this SQL in the Supabase Dashboard SQL Editor:")
    print("-" * 60)
    print(MIGRATION_PATH.read_text())
    print("-" * 60)
    return 1


if __name__ == "__main__":
    sys.exit(main())
