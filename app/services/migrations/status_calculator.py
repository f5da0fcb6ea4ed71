"""Dispatch status, precondition and batch calls to migration strategies."""

import dataclasses
import logging
import time
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.metrics import record_migration_batch
from app.models.activity_logs import ActivityAction, ActivitySeverity
from app.services import option_store
from app.services.activity_log import record_activity
from app.services.migrations.errors import MigrationError, UnknownMigrationError
from app.services.migrations.registry import (
    CLEANUP_UNENCRYPTED,
    DATA_CLEANUP,
    ENCRYPT_SENSITIVE_DATA,
    MAGIC_TOKENS,
    NAME_NORMALIZATION,
    USER_CAPABILITIES,
    USER_LINK,
    MigrationRegistry,
)
from app.services.migrations.strategies import (
    BatchResult,
    CleanupMigrationStrategy,
    EncryptionMigrationStrategy,
    FieldMigrationStrategy,
    MagicTokenMigrationStrategy,
    MigrationConfig,
    MigrationStatus,
    MigrationStrategy,
    NameNormalizationMigrationStrategy,
    UserCapabilitiesMigrationStrategy,
    UserLinkMigrationStrategy,
)
from app.services.migrations.strategies.base import utcnow

logger = logging.getLogger(__name__)


class MigrationStatusCalculator:
    """
    Holds one strategy per migration key and routes calls to it.

    Every field migration shares a single FieldMigrationStrategy, since that
    strategy is generic over its target column. The terminal data cleanup
    marker has no strategy; its status is a single stored flag.
    """

    def __init__(self, db: AsyncSession, registry: Optional[MigrationRegistry] = None):
        self.db = db
        self.registry = registry or MigrationRegistry()
        self._strategies: Dict[str, MigrationStrategy] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        field_strategy = FieldMigrationStrategy(self.db, self.registry)
        for definition in self.registry.get_all_field_definitions():
            self._strategies[definition.key] = field_strategy

        self._strategies[MAGIC_TOKENS] = MagicTokenMigrationStrategy(self.db)
        self._strategies[ENCRYPT_SENSITIVE_DATA] = EncryptionMigrationStrategy(self.db)
        self._strategies[CLEANUP_UNENCRYPTED] = CleanupMigrationStrategy(self.db)
        self._strategies[USER_LINK] = UserLinkMigrationStrategy(self.db)
        self._strategies[NAME_NORMALIZATION] = NameNormalizationMigrationStrategy(self.db)
        self._strategies[USER_CAPABILITIES] = UserCapabilitiesMigrationStrategy(self.db)

    def register_strategy(self, key: str, strategy: MigrationStrategy) -> None:
        """Replace or add the strategy used for a migration key."""
        self._strategies[key] = strategy

    def get_strategy(self, key: str) -> Optional[MigrationStrategy]:
        return self._strategies.get(key)

    def get_config(
        self,
        key: str,
        *,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
        log_activity: bool = True,
    ) -> MigrationConfig:
        """Registry entry for a key with per-run options applied."""
        config = self.registry.get_migration(key)
        if config is None:
            raise UnknownMigrationError(f"Unknown migration: {key}")
        overrides = {"dry_run": dry_run, "log_activity": log_activity}
        if batch_size:
            overrides["batch_size"] = batch_size
        return dataclasses.replace(config, **overrides)

    def _require_strategy(self, key: str) -> MigrationStrategy:
        strategy = self._strategies.get(key)
        if strategy is None or not self.registry.is_available(key):
            raise UnknownMigrationError(f"No strategy registered for migration: {key}")
        return strategy

    async def calculate(self, key: str) -> MigrationStatus:
        config = self.get_config(key)

        if key == DATA_CLEANUP:
            completed = await option_store.get_option(self.db, option_store.DATA_CLEANUP_COMPLETED)
            return MigrationStatus.from_counts(1, 1 if completed else 0, completed_at=completed)

        return await self._require_strategy(key).calculate_status(key, config)

    async def can_run(self, key: str) -> Optional[MigrationError]:
        """None when the migration may run, otherwise the reason it may not."""
        try:
            config = self.get_config(key)
            if key == DATA_CLEANUP:
                return None
            strategy = self._require_strategy(key)
        except MigrationError as e:
            return e
        return await strategy.can_run(key, config)

    async def execute(
        self,
        key: str,
        batch_index: int = 0,
        *,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
        log_activity: bool = True,
    ) -> BatchResult:
        """
        Run one batch of a migration.

        Preconditions are re-checked on every call; a failed check raises the
        typed error. Store failures come back as ``success=False`` results.
        """
        config = self.get_config(key, batch_size=batch_size, dry_run=dry_run, log_activity=log_activity)

        error = await self.can_run(key)
        if error is not None:
            record_migration_batch(key, "refused", 0, 0.0)
            raise error

        if key == DATA_CLEANUP:
            return await self._mark_data_cleanup(config)

        strategy = self._require_strategy(key)
        start = time.perf_counter()
        try:
            result = await strategy.execute(key, config, batch_index)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Migration {key} batch {batch_index} failed: {e}")
            result = BatchResult(False, 0, False, f"Database error: {e}", errors=[str(e)])
        duration = time.perf_counter() - start

        if result.errors:
            logger.warning(f"Migration {key} batch {batch_index}: {len(result.errors)} records skipped")
            if not config.dry_run:
                await self._store_errors(key, result)

        outcome = "success" if result.success else ("partial" if result.processed else "failed")
        record_migration_batch(key, outcome, result.processed, duration)

        if config.log_activity and not config.dry_run and (result.processed or result.errors):
            await record_activity(
                self.db,
                ActivityAction.MIGRATION_BATCH,
                result.message,
                severity=ActivitySeverity.INFO if result.success else ActivitySeverity.WARNING,
                migration_key=key,
                details={
                    "batch_index": batch_index,
                    "processed": result.processed,
                    "errors": len(result.errors),
                    "has_more": result.has_more,
                },
            )

        return result

    async def _store_errors(self, key: str, result: BatchResult) -> None:
        try:
            await option_store.append_to_log(self.db, option_store.errors_key(key), result.errors)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not persist {len(result.errors)} errors for migration {key}: {e}")

    async def _mark_data_cleanup(self, config: MigrationConfig) -> BatchResult:
        if config.dry_run:
            return BatchResult(True, 0, False, "Data cleanup would be marked complete")

        await option_store.set_option(self.db, option_store.DATA_CLEANUP_COMPLETED, utcnow().isoformat())
        await self.db.commit()
        if config.log_activity:
            await record_activity(
                self.db,
                ActivityAction.MIGRATION_COMPLETED,
                "Data cleanup marked complete",
                migration_key=config.key,
            )
        return BatchResult(True, 0, False, "Data cleanup marked complete")
