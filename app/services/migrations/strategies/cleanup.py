"""Null plaintext copies of encrypted data once the grace window has passed."""

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, null, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_table_columns
from app.models.submissions import CIPHERTEXT_COLUMNS
from app.services import encryption
from app.services.migrations.errors import ConfigurationError, MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    count_where,
    is_present,
    utcnow,
)

logger = logging.getLogger(__name__)

# (plaintext, ciphertext) pairs eligible for nulling
PLAINTEXT_PAIRS = (
    ("email", "email_encrypted"),
    ("cpf_rf", "cpf_rf_encrypted"),
    ("user_ip", "user_ip_encrypted"),
    ("data", "data_encrypted"),
)

# String columns where "" and NULL must mean the same thing
NULLABLE_STRING_COLUMNS = (
    "data",
    "data_encrypted",
    "email",
    "email_encrypted",
    "email_hash",
    "cpf_rf",
    "cpf_rf_encrypted",
    "cpf_rf_hash",
    "user_ip",
    "user_ip_encrypted",
    "auth_code",
    "magic_token",
)


class CleanupMigrationStrategy:
    """
    Removes plaintext that already has a ciphertext shadow.

    Only records older than the cleanup grace window are touched, and a
    plaintext column is only nulled when its own ciphertext column holds a
    value. Batch 0 first folds empty strings into NULL across the table.
    """

    name = "Cleanup Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    def _cutoff(self):
        return utcnow() - timedelta(days=get_settings().MIGRATION_CLEANUP_GRACE_DAYS)

    @staticmethod
    def _pairs(columns: set) -> List[Tuple[str, str]]:
        return [(plain, cipher) for plain, cipher in PLAINTEXT_PAIRS if plain in columns and cipher in columns]

    def _aged_encrypted_clause(self, columns: set):
        ciphertext = [is_present(SUBMISSIONS.c[c]) for c in CIPHERTEXT_COLUMNS if c in columns]
        if not ciphertext:
            return None
        return and_(SUBMISSIONS.c.created_at <= self._cutoff(), or_(*ciphertext))

    def _pending_clause(self, columns: set):
        aged = self._aged_encrypted_clause(columns)
        pairs = self._pairs(columns)
        if aged is None or not pairs:
            return None
        still_plain = [
            and_(SUBMISSIONS.c[plain].is_not(None), is_present(SUBMISSIONS.c[cipher]))
            for plain, cipher in pairs
        ]
        return and_(aged, or_(*still_plain))

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        aged = self._aged_encrypted_clause(columns)
        if aged is None:
            return MigrationStatus.from_counts(0, 0)

        total = await count_where(self.db, SUBMISSIONS, aged)
        pending_clause = self._pending_clause(columns)
        pending = 0 if pending_clause is None else await count_where(self.db, SUBMISSIONS, pending_clause)
        return MigrationStatus.from_counts(
            total,
            total - pending,
            grace_days=get_settings().MIGRATION_CLEANUP_GRACE_DAYS,
        )

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        # Nulling plaintext without a working cipher is unrecoverable
        if not encryption.is_configured():
            return ConfigurationError(
                "Encryption must be configured before unencrypted data can be removed",
                code="encryption_not_configured",
            )
        return None

    async def normalize_empty_strings(self, columns: set) -> int:
        """Fold "" into NULL for every string column. Safe to repeat."""
        changed = 0
        for name in NULLABLE_STRING_COLUMNS:
            if name not in columns:
                continue
            result = await self.db.execute(
                update(SUBMISSIONS).where(SUBMISSIONS.c[name] == "").values({name: None})
            )
            changed += result.rowcount or 0
        await self.db.commit()
        return changed

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        normalized = 0

        try:
            if batch_index == 0 and not config.dry_run:
                normalized = await self.normalize_empty_strings(columns)

            pending_clause = self._pending_clause(columns)
            if pending_clause is None:
                return BatchResult(True, 0, False, "No plaintext columns left to clean")

            result = await self.db.execute(
                select(SUBMISSIONS.c.id)
                .where(pending_clause)
                .order_by(SUBMISSIONS.c.id)
                .limit(config.batch_size)
            )
            ids = [row[0] for row in result.all()]
            if not ids:
                return BatchResult(
                    True, 0, False, "No data to clean up", details={"normalized": normalized}
                )

            if config.dry_run:
                return BatchResult(
                    True, len(ids), False, f"Would clean {len(ids)} submissions", details={"ids": ids}
                )

            # Each plaintext column is nulled only where its own shadow exists
            values = {
                plain: case((is_present(SUBMISSIONS.c[cipher]), null()), else_=SUBMISSIONS.c[plain])
                for plain, cipher in self._pairs(columns)
            }
            await self.db.execute(update(SUBMISSIONS).where(SUBMISSIONS.c.id.in_(ids)).values(values))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Cleanup batch {batch_index} failed: {e}")
            return BatchResult(False, 0, False, f"Cleanup failed: {e}", errors=[str(e)])

        remaining = await count_where(self.db, SUBMISSIONS, pending_clause)
        logger.info(f"Cleanup batch {batch_index}: cleaned {len(ids)} submissions, {remaining} pending")
        return BatchResult(
            success=True,
            processed=len(ids),
            has_more=remaining > 0,
            message=f"Cleaned {len(ids)} submissions",
            details={"normalized": normalized, "remaining": remaining},
        )
