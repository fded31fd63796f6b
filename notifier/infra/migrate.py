#!/usr/bin/env python3
# notifier/infra/migrate.py
"""
Standalone migration runner.

    python -m notifier.infra.migrate

Run it before starting the service (CI step, init container or by hand); the
HTTP app never migrates on its own.
"""
import asyncio
import sys

from notifier.config import settings
from notifier.infra.db_async import close_pool, init_pool
from notifier.infra.logging_config import get_logger, setup_logging
from notifier.infra.migrations_async import apply_migrations

logger = get_logger(__name__)


async def main() -> int:
    logger.info(f"Migrating {settings.pghost}:{settings.pgport}/{settings.pgdatabase} (env={settings.app_env})")
    try:
        await init_pool()
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    if result["applied"]:
        for name in result["applied"]:
            logger.info(f"  applied {name}")
    else:
        logger.info("No new migrations to apply")
    return 0


if __name__ == "__main__":
    setup_logging(level=settings.log_level, use_json=False)
    sys.exit(asyncio.run(main()))
