"""Facade over the migration engine, including the irreversible operations."""

import logging
import math
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_table_columns
from app.middleware.metrics import record_irreversible_operation
from app.models.activity_logs import ActivityAction, ActivitySeverity
from app.models.submissions import SENSITIVE_PLAINTEXT_COLUMNS
from app.services import encryption, option_store
from app.services.activity_log import record_activity
from app.services.migrations.errors import IrreversibleOperationError, MigrationError
from app.services.migrations.registry import (
    CLEANUP_UNENCRYPTED,
    ENCRYPT_SENSITIVE_DATA,
    MigrationRegistry,
)
from app.services.migrations.status_calculator import MigrationStatusCalculator
from app.services.migrations.strategies.base import SUBMISSIONS, BatchResult, utcnow

logger = logging.getLogger(__name__)

# Typed by the operator; a boolean would be too easy to replay
CONFIRMATION_PHRASE = "CONFIRM DELETION"


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MigrationManager:
    """
    Single entry point for callers (HTTP admin, CLI, scheduled task).

    Wraps the status calculator and adds bulk nullification and column
    removal, both gated on a fully encrypted table, an elapsed grace period
    since encryption completed, and a typed confirmation phrase.
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: Optional[MigrationRegistry] = None,
        calculator: Optional[MigrationStatusCalculator] = None,
    ):
        self.db = db
        self.registry = registry or MigrationRegistry()
        self.calculator = calculator or MigrationStatusCalculator(db, self.registry)
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Catalog and status
    # ------------------------------------------------------------------

    def list_migrations(self) -> List[dict]:
        return [
            {
                "key": m.key,
                "name": m.name,
                "description": m.description,
                "order": m.order,
                "batch_size": m.batch_size,
                "column": m.column,
                "available": self.registry.is_available(m.key),
            }
            for m in self.registry.get_all_migrations()
        ]

    async def get_status(self, key: str) -> dict:
        status = await self.calculator.calculate(key)
        return status.to_dict()

    async def get_all_statuses(self) -> dict:
        return {m.key: await self.get_status(m.key) for m in self.registry.get_all_migrations()}

    async def can_run(self, key: str) -> Optional[MigrationError]:
        return await self.calculator.can_run(key)

    async def run(
        self,
        key: str,
        batch_index: int = 0,
        *,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
        log_activity: bool = True,
    ) -> BatchResult:
        return await self.calculator.execute(
            key,
            batch_index,
            batch_size=batch_size,
            dry_run=dry_run,
            log_activity=log_activity,
        )

    async def preview(self, key: str, batch_index: int = 0) -> BatchResult:
        """Run one batch without writing anything."""
        return await self.run(key, batch_index, dry_run=True, log_activity=False)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def get_logs(self, key: str) -> dict:
        self.calculator.get_config(key)
        return {
            "errors": await option_store.get_option(self.db, option_store.errors_key(key), default=[]),
            "changes": await option_store.get_option(self.db, option_store.changes_key(key), default=[]),
            "last_run": await option_store.get_option(self.db, option_store.last_run_key(key)),
        }

    async def clear_logs(self, key: str) -> None:
        self.calculator.get_config(key)
        await option_store.delete_option(self.db, option_store.errors_key(key))
        await option_store.delete_option(self.db, option_store.changes_key(key))
        await self.db.commit()
        await record_activity(
            self.db,
            ActivityAction.MIGRATION_LOGS_CLEARED,
            f"Logs cleared for migration {key}",
            migration_key=key,
        )

    # ------------------------------------------------------------------
    # Encryption milestones
    # ------------------------------------------------------------------

    async def encryption_completed_at(self) -> Optional[datetime]:
        value = await option_store.get_option(self.db, option_store.ENCRYPTION_COMPLETED_AT)
        return _parse_timestamp(value)

    async def _days_since_encryption(self) -> Optional[float]:
        completed_at = await self.encryption_completed_at()
        if completed_at is None:
            return None
        return (utcnow() - completed_at).total_seconds() / 86400

    async def drop_days_remaining(self) -> int:
        """Whole days until columns may be dropped (0 when allowed)."""
        elapsed = await self._days_since_encryption()
        if elapsed is None:
            return self.settings.MIGRATION_DROP_GRACE_DAYS
        return max(0, math.ceil(self.settings.MIGRATION_DROP_GRACE_DAYS - elapsed))

    async def can_drop_columns(self) -> bool:
        status = await self.calculator.calculate(ENCRYPT_SENSITIVE_DATA)
        if not status.is_complete:
            return False
        elapsed = await self._days_since_encryption()
        return elapsed is not None and elapsed >= self.settings.MIGRATION_DROP_GRACE_DAYS

    async def encryption_info(self) -> dict:
        info = encryption.encryption_info()
        completed_at = await self.encryption_completed_at()
        columns_dropped_at = await option_store.get_option(self.db, option_store.COLUMNS_DROPPED_AT)
        info.update(
            {
                "completed_at": completed_at.isoformat() if completed_at else None,
                "drop_days_remaining": await self.drop_days_remaining(),
                "columns_dropped_at": columns_dropped_at,
            }
        )
        return info

    # ------------------------------------------------------------------
    # Irreversible operations
    # ------------------------------------------------------------------

    async def _refuse(self, operation: str, code: str, message: str) -> None:
        logger.warning(f"Refused {operation}: {message}")
        record_irreversible_operation(operation, "refused")
        await record_activity(
            self.db,
            ActivityAction.IRREVERSIBLE_REFUSED,
            message,
            severity=ActivitySeverity.WARNING,
            details={"operation": operation, "reason": code},
        )
        raise IrreversibleOperationError(message, code=code)

    async def _check_gates(self, operation: str, confirmation: Optional[str], grace_days: int) -> None:
        """Completeness, then elapsed time, then confirmation. Raises on the first failure."""
        status = await self.calculator.calculate(ENCRYPT_SENSITIVE_DATA)
        if not status.is_complete:
            await self._refuse(
                operation,
                IrreversibleOperationError.ENCRYPTION_INCOMPLETE,
                f"Encryption is {status.percent}% complete; {status.pending} submissions still pending",
            )

        elapsed = await self._days_since_encryption()
        if elapsed is None or elapsed < grace_days:
            remaining = grace_days if elapsed is None else math.ceil(grace_days - elapsed)
            await self._refuse(
                operation,
                IrreversibleOperationError.GRACE_PERIOD_ACTIVE,
                f"Grace period active: {remaining} days remaining of {grace_days}",
            )

        if confirmation != CONFIRMATION_PHRASE:
            await self._refuse(
                operation,
                IrreversibleOperationError.CONFIRMATION_REQUIRED,
                f'Type "{CONFIRMATION_PHRASE}" to confirm',
            )

    async def bulk_nullify(self, confirmation: Optional[str]) -> dict:
        """Null plaintext copies in one large cleanup batch."""
        await self._check_gates("bulk_nullify", confirmation, self.settings.MIGRATION_CLEANUP_GRACE_DAYS)

        result = await self.calculator.execute(
            CLEANUP_UNENCRYPTED,
            0,
            batch_size=self.settings.MIGRATION_BULK_NULLIFY_BATCH_SIZE,
            log_activity=False,
        )
        record_irreversible_operation("bulk_nullify", "success" if result.success else "failed")
        await record_activity(
            self.db,
            ActivityAction.DATA_CLEANUP_EXECUTED,
            f"Bulk nullify removed plaintext from {result.processed} submissions",
            severity=ActivitySeverity.WARNING,
            migration_key=CLEANUP_UNENCRYPTED,
            details={"processed": result.processed, "has_more": result.has_more},
        )
        return {
            "success": result.success,
            "processed": result.processed,
            "has_more": result.has_more,
            "message": result.message,
        }

    async def drop_columns(self, confirmation: Optional[str]) -> dict:
        """Drop each plaintext column independently; report exactly which went."""
        await self._check_gates("drop_columns", confirmation, self.settings.MIGRATION_DROP_GRACE_DAYS)

        existing = await get_table_columns(self.db, SUBMISSIONS.name)
        dropped: List[str] = []
        errors: List[str] = []
        for column in SENSITIVE_PLAINTEXT_COLUMNS:
            if column not in existing:
                continue
            try:
                await self.db.execute(text(f"ALTER TABLE {SUBMISSIONS.name} DROP COLUMN {column}"))
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Failed to drop column {column}: {e}")
                errors.append(f"{column}: {e}")
                continue
            dropped.append(column)
            logger.warning(f"Dropped column {SUBMISSIONS.name}.{column}")

        if dropped:
            await option_store.set_option(self.db, option_store.COLUMNS_DROPPED_AT, utcnow().isoformat())
            await self.db.commit()

        record_irreversible_operation("drop_columns", "failed" if errors else "success")
        await record_activity(
            self.db,
            ActivityAction.COLUMNS_DROPPED,
            f"Dropped plaintext columns: {', '.join(dropped) or 'none'}",
            severity=ActivitySeverity.CRITICAL,
            details={"dropped": dropped, "errors": errors},
        )
        return {"success": not errors, "dropped": dropped, "errors": errors}
