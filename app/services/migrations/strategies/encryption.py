"""Encrypt sensitive submission columns at rest."""

import logging
from typing import Optional

from sqlalchemy import and_, or_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_table_columns
from app.models.activity_logs import ActivityAction
from app.models.submissions import CIPHERTEXT_COLUMNS, SENSITIVE_PLAINTEXT_COLUMNS
from app.services import encryption, option_store
from app.services.activity_log import record_activity
from app.services.migrations.errors import ConfigurationError, MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    count_where,
    is_blank,
    is_present,
    utcnow,
)

logger = logging.getLogger(__name__)

# plaintext column -> (ciphertext column, keyed hash column)
ENCRYPTED_FIELDS = {
    "email": ("email_encrypted", "email_hash"),
    "cpf_rf": ("cpf_rf_encrypted", "cpf_rf_hash"),
    "user_ip": ("user_ip_encrypted", None),
    "data": ("data_encrypted", None),
}


class EncryptionMigrationStrategy:
    """
    Moves plaintext PII into ciphertext shadows.

    A record is encrypted when any ciphertext column holds a value, or when
    every sensitive plaintext column is empty (encrypted and cleaned already).
    The batch selection is the exact complement, so re-running never
    re-encrypts a record. Plaintext is left in place; the cleanup migration
    nulls it after the grace period.
    """

    name = "Encryption Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _present(names, columns):
        return [name for name in names if name in columns]

    def _encrypted_clause(self, columns: set):
        clauses = [is_present(SUBMISSIONS.c[c]) for c in self._present(CIPHERTEXT_COLUMNS, columns)]
        plaintext = self._present(SENSITIVE_PLAINTEXT_COLUMNS, columns)
        clauses.append(and_(*[is_blank(SUBMISSIONS.c[c]) for c in plaintext]) if plaintext else true())
        return or_(*clauses)

    def _pending_clause(self, columns: set):
        plaintext = self._present(SENSITIVE_PLAINTEXT_COLUMNS, columns)
        if not plaintext:
            return None
        clauses = [is_blank(SUBMISSIONS.c[c]) for c in self._present(CIPHERTEXT_COLUMNS, columns)]
        clauses.append(or_(*[is_present(SUBMISSIONS.c[c]) for c in plaintext]))
        return and_(*clauses)

    async def count_pending(self) -> int:
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        clause = self._pending_clause(columns)
        if clause is None:
            return 0
        return await count_where(self.db, SUBMISSIONS, clause)

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        total = await count_where(self.db, SUBMISSIONS)
        if total == 0:
            return MigrationStatus.from_counts(0, 0)
        pending = await self.count_pending()
        completed_at = await option_store.get_option(self.db, option_store.ENCRYPTION_COMPLETED_AT)
        return MigrationStatus.from_counts(total, total - pending, completed_at=completed_at)

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        if not encryption.is_configured():
            return ConfigurationError(
                "Encryption keys not configured. Set ENCRYPTION_KEY or at least two ENCRYPTION_SECRETS.",
                code="encryption_not_configured",
            )
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        missing = [c for c in CIPHERTEXT_COLUMNS if c not in columns]
        if missing:
            return ConfigurationError(
                f"Missing ciphertext columns: {', '.join(missing)}",
                code="missing_column",
            )
        return None

    def _encrypt_record(self, record_id: int, row: dict, errors: list) -> dict:
        values = {}
        for plain, (cipher_column, hash_column) in ENCRYPTED_FIELDS.items():
            value = row.get(plain)
            if not value:
                continue
            ciphertext = encryption.encrypt(value)
            if ciphertext is None:
                errors.append(f"Encryption error for submission ID {record_id}: field {plain}")
                continue
            values[cipher_column] = ciphertext
            if hash_column:
                values[hash_column] = encryption.keyed_hash(value)
        return values

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        pending_clause = self._pending_clause(columns)
        if pending_clause is None:
            return BatchResult(True, 0, False, "No submissions to encrypt")

        plaintext = self._present(SENSITIVE_PLAINTEXT_COLUMNS, columns)
        result = await self.db.execute(
            select(SUBMISSIONS.c.id, *[SUBMISSIONS.c[c] for c in plaintext])
            .where(pending_clause)
            .order_by(SUBMISSIONS.c.id)
            .limit(config.batch_size)
        )
        rows = result.mappings().all()
        if not rows:
            await self._mark_complete(config)
            return BatchResult(True, 0, False, "No submissions to encrypt")

        # Guard each write: a concurrent run may have encrypted the row already
        still_unencrypted = [is_blank(SUBMISSIONS.c[c]) for c in CIPHERTEXT_COLUMNS]

        processed = 0
        errors = []
        for row in rows:
            record_id = row["id"]
            values = self._encrypt_record(record_id, row, errors)
            if not values:
                continue
            if config.dry_run:
                processed += 1
                continue
            try:
                updated = await self.db.execute(
                    update(SUBMISSIONS)
                    .where(SUBMISSIONS.c.id == record_id, *still_unencrypted)
                    .values(values)
                )
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Failed to store ciphertext for submission {record_id}: {e}")
                errors.append(f"Failed to update submission ID {record_id}: {e}")
                continue
            if updated.rowcount:
                processed += 1

        pending = await count_where(self.db, SUBMISSIONS, pending_clause)
        if pending == 0:
            await self._mark_complete(config)

        logger.info(f"Encryption batch: {processed} encrypted, {len(errors)} errors, {pending} pending")
        return BatchResult(
            success=not errors,
            processed=processed,
            has_more=processed > 0 and pending > 0 and not config.dry_run,
            message=f"Encrypted {processed} submissions",
            errors=errors,
            details={"remaining": pending},
        )

    async def _mark_complete(self, config: MigrationConfig) -> None:
        """Record the completion timestamp once. It anchors the irreversible grace periods."""
        if config.dry_run:
            return
        written = await option_store.add_option_if_absent(
            self.db, option_store.ENCRYPTION_COMPLETED_AT, utcnow().isoformat()
        )
        await self.db.commit()
        if written:
            logger.info("Encryption migration complete, completion timestamp recorded")
            if config.log_activity:
                await record_activity(
                    self.db,
                    ActivityAction.ENCRYPTION_COMPLETED,
                    "All submissions encrypted",
                    migration_key=config.key,
                )
