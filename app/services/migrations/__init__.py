"""Batch migration and encryption engine for submission PII."""

from app.services.migrations.errors import (
    ConfigurationError,
    IrreversibleOperationError,
    MigrationError,
    UnknownMigrationError,
)
from app.services.migrations.manager import CONFIRMATION_PHRASE, MigrationManager
from app.services.migrations.registry import MigrationRegistry
from app.services.migrations.status_calculator import MigrationStatusCalculator

__all__ = [
    "CONFIRMATION_PHRASE",
    "ConfigurationError",
    "IrreversibleOperationError",
    "MigrationError",
    "MigrationManager",
    "MigrationRegistry",
    "MigrationStatusCalculator",
    "UnknownMigrationError",
]
