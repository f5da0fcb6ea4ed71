"""Typed errors raised by the migration engine."""

from typing import Optional


class MigrationError(Exception):
    """Base migration error with a machine-readable code."""

    code = "migration_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class UnknownMigrationError(MigrationError):
    """No such migration key, or no strategy registered for it."""

    code = "invalid_migration"


class ConfigurationError(MigrationError):
    """A precondition (cipher, column, collaborator) is missing. Fix and retry."""

    code = "configuration_error"


class IrreversibleOperationError(MigrationError):
    """A bulk nullify or column drop was refused. Nothing was changed."""

    ENCRYPTION_INCOMPLETE = "encryption_incomplete"
    GRACE_PERIOD_ACTIVE = "grace_period_active"
    CONFIRMATION_REQUIRED = "confirmation_required"

    code = "irreversible_refused"
