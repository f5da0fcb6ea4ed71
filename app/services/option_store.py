"""Key/value option store backed by the migration_options table."""

import logging
from typing import Any, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.migration_options import MigrationOption

logger = logging.getLogger(__name__)

# Well-known option keys
ENCRYPTION_COMPLETED_AT = "encryption_migration_completed_at"
DATA_CLEANUP_COMPLETED = "migration_data_cleanup_completed"
COLUMNS_DROPPED_AT = "columns_dropped_at"


def errors_key(migration_key: str) -> str:
    return f"migration_{migration_key}_errors"


def changes_key(migration_key: str) -> str:
    return f"migration_{migration_key}_changes"


def last_run_key(migration_key: str) -> str:
    return f"migration_{migration_key}_last_run"


async def get_option(db: AsyncSession, key: str, default: Any = None) -> Any:
    """Read an option value."""
    result = await db.execute(select(MigrationOption.value).where(MigrationOption.key == key))
    row = result.first()
    if row is None or row[0] is None:
        return default
    return row[0]


async def set_option(db: AsyncSession, key: str, value: Any) -> None:
    """Create or overwrite an option. Flushes, caller commits."""
    option = await db.get(MigrationOption, key)
    if option is None:
        db.add(MigrationOption(key=key, value=value))
    else:
        option.value = value
    await db.flush()


async def add_option_if_absent(db: AsyncSession, key: str, value: Any) -> bool:
    """Set an option only if it has no value yet. Returns True if written."""
    option = await db.get(MigrationOption, key)
    if option is not None and option.value is not None:
        return False
    if option is None:
        db.add(MigrationOption(key=key, value=value))
    else:
        option.value = value
    await db.flush()
    return True


async def delete_option(db: AsyncSession, key: str) -> None:
    """Remove an option."""
    await db.execute(delete(MigrationOption).where(MigrationOption.key == key))
    await db.flush()


async def append_to_log(db: AsyncSession, key: str, entries: List[Any]) -> None:
    """Append entries to a list-valued option."""
    if not entries:
        return
    current: Optional[list] = await get_option(db, key, default=[])
    # New list object so the JSON column is flagged dirty
    await set_option(db, key, list(current or []) + list(entries))
