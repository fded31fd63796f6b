# notifier/infra/migrations_async.py
"""
SQL migrations runner (asyncpg).

Files in ``notifier/infra/sql`` are applied in lexical order inside one
transaction; applied versions are recorded in ``schema_migrations``.
"""
from __future__ import annotations

from pathlib import Path

from notifier.infra.db_async import db_conn
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"


def migration_files(sql_dir: Path = SQL_DIR) -> list[Path]:
    return sorted(p for p in sql_dir.glob("*.sql") if p.is_file())


async def apply_migrations(sql_dir: Path = SQL_DIR) -> dict:
    """
    Apply pending migrations.

    Returns:
        {"ok": True, "applied": [filenames applied now], "count": int}
    """
    applied_now: list[str] = []

    async with db_conn(autocommit=False) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )
        done = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}

        for path in migration_files(sql_dir):
            if path.name in done:
                logger.debug(f"Migration {path.name} already applied, skipping")
                continue
            logger.info(f"Applying migration: {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)
            applied_now.append(path.name)

    logger.info(f"Migrations complete: {len(applied_now)} applied")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
