"""Backfill random access tokens."""

import logging
import secrets
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import column_exists
from app.services.migrations.errors import ConfigurationError, MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    count_where,
    is_blank,
)

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16


def generate_magic_token() -> str:
    """32 hex chars of CSPRNG output."""
    return secrets.token_hex(TOKEN_BYTES)


class MagicTokenMigrationStrategy:
    name = "Magic Token Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        total = await count_where(self.db, SUBMISSIONS)
        pending = await count_where(self.db, SUBMISSIONS, is_blank(SUBMISSIONS.c.magic_token))
        return MigrationStatus.from_counts(total, total - pending)

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        if not await column_exists(self.db, SUBMISSIONS.name, "magic_token"):
            return ConfigurationError(
                "magic_token column does not exist. Please update the database schema first.",
                code="missing_column",
            )
        return None

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        pending = is_blank(SUBMISSIONS.c.magic_token)
        result = await self.db.execute(
            select(SUBMISSIONS.c.id).where(pending).order_by(SUBMISSIONS.c.id).limit(config.batch_size)
        )
        ids = [row[0] for row in result.all()]
        if not ids:
            return BatchResult(True, 0, False, "All submissions already have magic tokens")

        if config.dry_run:
            return BatchResult(True, len(ids), False, f"Would generate {len(ids)} magic tokens")

        processed = 0
        for record_id in ids:
            try:
                updated = await self.db.execute(
                    update(SUBMISSIONS)
                    .where(SUBMISSIONS.c.id == record_id, pending)
                    .values(magic_token=generate_magic_token())
                )
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Could not store magic token for submission {record_id}: {e}")
                return BatchResult(
                    False, processed, False, f"Failed to update submission {record_id}: {e}", errors=[str(e)]
                )
            processed += updated.rowcount or 0

        remaining = await count_where(self.db, SUBMISSIONS, pending)
        logger.info(f"Magic tokens: generated {processed}, {remaining} pending")
        return BatchResult(
            success=True,
            processed=processed,
            has_more=processed > 0 and remaining > 0,
            message=f"Generated {processed} magic tokens",
            details={"remaining": remaining},
        )
