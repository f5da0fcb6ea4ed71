"""Migration strategies: one class per kind of transformation."""

from app.services.migrations.strategies.base import (
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    MigrationStrategy,
)
from app.services.migrations.strategies.cleanup import CleanupMigrationStrategy
from app.services.migrations.strategies.encryption import EncryptionMigrationStrategy
from app.services.migrations.strategies.field import FieldMigrationStrategy
from app.services.migrations.strategies.magic_token import MagicTokenMigrationStrategy
from app.services.migrations.strategies.name_normalization import NameNormalizationMigrationStrategy
from app.services.migrations.strategies.user_capabilities import UserCapabilitiesMigrationStrategy
from app.services.migrations.strategies.user_link import UserLinkMigrationStrategy

__all__ = [
    "BatchResult",
    "CleanupMigrationStrategy",
    "EncryptionMigrationStrategy",
    "FieldMigrationStrategy",
    "MagicTokenMigrationStrategy",
    "MigrationConfig",
    "MigrationStatus",
    "MigrationStrategy",
    "NameNormalizationMigrationStrategy",
    "UserCapabilitiesMigrationStrategy",
    "UserLinkMigrationStrategy",
]
