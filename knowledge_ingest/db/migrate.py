"""Apply SQL migrations for the knowledge content tables.

Requires DATABASE_URL in .env or .env.local (Postgres connection string from
Supabase Dashboard -> Database -> Connection string).

Usage:
    python -m knowledge_ingest.db.migrate
"""

import os
from pathlib import Path

import logfire
import psycopg
from dotenv import load_dotenv

_project_root = Path(__file__).resolve().parent.parent.parent
MIGRATIONS_DIR = _project_root / "migrations"


def run_migrations(
    database_url: str | None = None, migrations_dir: Path = MIGRATIONS_DIR
) -> list[str]:
    """Apply every ``*.sql`` file in ``migrations_dir`` in lexicographic order.

    Migrations are written to be idempotent (``IF NOT EXISTS``), so re-running
    is safe.

    Args:
        database_url: Postgres URI; falls back to the DATABASE_URL variable
        migrations_dir: Directory holding the SQL files

    Returns:
        Names of the applied files

    Raises:
        SystemExit: If configuration is missing or the database is unreachable
    """
    if database_url is None:
        load_dotenv(_project_root / ".env")
        load_dotenv(_project_root / ".env.local")
        database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise SystemExit(
            "DATABASE_URL is not set. Add your Postgres connection string to .env or .env.local."
        )

    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        raise SystemExit(f"No .sql files found in {migrations_dir}")

    applied: list[str] = []
    try:
        with psycopg.connect(database_url, autocommit=True) as conn:
            with conn.cursor() as cur:
                for path in sql_files:
                    cur.execute(path.read_text())
                    applied.append(path.name)
                    logfire.info("Migration applied", migration=path.name)
    except psycopg.OperationalError as e:
        raise SystemExit(f"Database connection failed: {e}") from e

    return applied


if __name__ == "__main__":
    for name in run_migrations():
        print(f"  OK {name}")
    print("Migrations complete.")
