"""Promote a value out of the JSON payload into its own column."""

import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_table_columns
from app.models.submissions import CIPHERTEXT_COLUMNS
from app.services import data_sanitizer
from app.services.migrations.errors import ConfigurationError, MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    count_where,
    is_blank,
    is_present,
)

if TYPE_CHECKING:
    from app.services.migrations.registry import MigrationRegistry

logger = logging.getLogger(__name__)


class FieldMigrationStrategy:
    """
    Generic blob-to-column promotion, shared by every field migration.

    A record counts as migrated for a field when the target column holds a
    value, when the record holds any ciphertext, or when the payload is
    gone (encrypted and cleaned, so there is nothing left to promote).
    """

    name = "Field Migration Strategy"

    def __init__(self, db: AsyncSession, registry: "MigrationRegistry"):
        self.db = db
        self.registry = registry

    @staticmethod
    def _ciphertext_columns(column: str, columns: set) -> list:
        names = list(CIPHERTEXT_COLUMNS)
        if f"{column}_encrypted" not in names:
            names.append(f"{column}_encrypted")
        return [SUBMISSIONS.c[name] for name in names if name in columns and name in SUBMISSIONS.c]

    def _migrated_clause(self, column: str, columns: set):
        clauses = [is_blank(SUBMISSIONS.c.data)]
        if column in columns:
            clauses.append(is_present(SUBMISSIONS.c[column]))
        clauses.extend(is_present(c) for c in self._ciphertext_columns(column, columns))
        return or_(*clauses)

    def _pending_clause(self, column: str, columns: set):
        # Encrypted records are out of reach: a value promoted now would stay plaintext
        clauses = [is_blank(SUBMISSIONS.c[column]), is_present(SUBMISSIONS.c.data)]
        clauses.extend(is_blank(c) for c in self._ciphertext_columns(column, columns))
        return and_(*clauses)

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        column = config.column
        if not column:
            raise ConfigurationError(f"Migration '{key}' has no target column")

        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        total = await count_where(self.db, SUBMISSIONS)
        if total == 0:
            return MigrationStatus.from_counts(0, 0)

        # Without a payload column nothing can be promoted any more
        if "data" not in columns:
            return MigrationStatus.from_counts(total, total)
        if column not in columns:
            migrated = await count_where(self.db, SUBMISSIONS, self._migrated_clause(column, columns))
            return MigrationStatus.from_counts(total, migrated)

        pending = await count_where(self.db, SUBMISSIONS, self._pending_clause(column, columns))
        return MigrationStatus.from_counts(total, total - pending)

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        if not config.column:
            return ConfigurationError(f"Migration '{key}' has no target column", code="invalid_config")

        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        if config.column not in columns:
            return ConfigurationError(
                f"{config.column} column does not exist. Please update the database schema first.",
                code="missing_column",
            )
        if "data" not in columns:
            return ConfigurationError("data column does not exist", code="missing_column")
        if self.registry.get_field_definition(key) is None:
            return ConfigurationError("Field definition not found in registry", code="missing_field_def")
        return None

    async def _next_page(self, pending_clause, after_id: Optional[int], limit: int):
        query = select(SUBMISSIONS.c.id, SUBMISSIONS.c.data).where(pending_clause)
        if after_id is not None:
            query = query.where(SUBMISSIONS.c.id > after_id)
        result = await self.db.execute(query.order_by(SUBMISSIONS.c.id).limit(limit))
        return result.all()

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        definition = self.registry.get_field_definition(key)
        if definition is None:
            return BatchResult(False, 0, False, "Field definition not found")

        column = config.column
        target = SUBMISSIONS.c[column]
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        pending_clause = self._pending_clause(column, columns)

        # Always from the top: promoted rows drop out of the predicate. Rows
        # with nothing to promote stay pending, so the scan walks past them
        # with a cursor local to this call.
        rows = await self._next_page(pending_clause, None, config.batch_size)
        if not rows:
            return BatchResult(True, 0, False, "No submissions to process")

        processed = 0
        skipped = 0
        while rows and processed < config.batch_size:
            last_id = None
            for record_id, raw in rows:
                if processed >= config.batch_size:
                    break
                last_id = record_id
                payload = data_sanitizer.clean_json_data(raw)
                value = data_sanitizer.extract_field(payload, definition.json_keys)
                sanitized = data_sanitizer.sanitize_field_value(value, definition.sanitizer)
                if not sanitized:
                    skipped += 1
                    continue

                if config.dry_run:
                    processed += 1
                    continue

                try:
                    updated = await self.db.execute(
                        update(SUBMISSIONS)
                        .where(SUBMISSIONS.c.id == record_id, is_blank(target))
                        .values({column: sanitized})
                    )
                    await self.db.commit()
                except SQLAlchemyError as e:
                    await self.db.rollback()
                    logger.error(f"Field migration {key} failed on submission {record_id}: {e}")
                    return BatchResult(
                        success=False,
                        processed=processed,
                        has_more=False,
                        message=f"Failed to update submission {record_id}: {e}",
                        errors=[f"Failed to update submission ID {record_id}: {e}"],
                    )
                if updated.rowcount:
                    processed += 1

            if processed >= config.batch_size:
                break
            rows = await self._next_page(pending_clause, last_id, config.batch_size)

        remaining = await count_where(self.db, SUBMISSIONS, pending_clause)
        logger.info(f"Field migration {key}: promoted {processed}, skipped {skipped}, {remaining} pending")

        return BatchResult(
            success=True,
            processed=processed,
            has_more=processed >= config.batch_size and remaining > 0 and not config.dry_run,
            message=f"Migrated {processed} {definition.description} values",
            details={"skipped": skipped, "remaining": remaining},
        )
