"""Scheduled migration tick: one batch per configured migration."""

import asyncio
import logging
from typing import Dict, List, Optional

from app.tasks import celery_app

logger = logging.getLogger(__name__)

# Strategies that page by batch_index; a stateless tick would repeat page 0
PAGED_MIGRATIONS = frozenset({"name_normalization", "user_capabilities"})


@celery_app.task(name="migrations.scheduled_tick")
def scheduled_tick(keys: Optional[List[str]] = None) -> Dict[str, dict]:
    """
    Run one batch of each scheduled migration.

    Keys default to MIGRATION_SCHEDULE_KEYS. Complete migrations and paged
    migrations are skipped; irreversible operations are never scheduled.
    """
    return asyncio.run(_tick(keys))


async def _tick(keys: Optional[List[str]] = None) -> Dict[str, dict]:
    from app.config import get_settings
    from app.database import get_db_context
    from app.services.migrations import MigrationError, MigrationManager

    keys = keys if keys is not None else get_settings().migration_schedule_keys_list
    results: Dict[str, dict] = {}
    if not keys:
        logger.debug("Migration tick: no scheduled keys")
        return results

    async with get_db_context() as db:
        manager = MigrationManager(db)
        for key in keys:
            if key in PAGED_MIGRATIONS:
                results[key] = {"skipped": "paged migration, run it manually"}
                continue
            try:
                status = await manager.get_status(key)
                if status["is_complete"]:
                    results[key] = {"skipped": "complete"}
                    continue
                result = await manager.run(key)
            except MigrationError as e:
                logger.warning(f"Migration tick: {key} refused: {e.message}")
                results[key] = {"error": e.to_dict()}
                continue
            results[key] = result.to_dict()

    logger.info(
        "Migration tick: "
        + ", ".join(f"{k}={v.get('processed', v.get('skipped', 'error'))}" for k, v in results.items())
    )
    return results
