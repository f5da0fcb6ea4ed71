"""Static catalog of migrations and promotable fields."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from app.services import data_sanitizer
from app.services.migrations.strategies.base import MigrationConfig

# Special migration keys
MAGIC_TOKENS = "magic_tokens"
ENCRYPT_SENSITIVE_DATA = "encrypt_sensitive_data"
CLEANUP_UNENCRYPTED = "cleanup_unencrypted"
USER_LINK = "user_link"
NAME_NORMALIZATION = "name_normalization"
USER_CAPABILITIES = "user_capabilities"
DATA_CLEANUP = "data_cleanup"

SPECIAL_MIGRATIONS = (
    MAGIC_TOKENS,
    ENCRYPT_SENSITIVE_DATA,
    CLEANUP_UNENCRYPTED,
    USER_LINK,
    NAME_NORMALIZATION,
    USER_CAPABILITIES,
    DATA_CLEANUP,
)

# data_cleanup always sorts last
TERMINAL_ORDER = 999


@dataclass(frozen=True)
class FieldDefinition:
    """A blob field that can be promoted into its own column."""

    key: str
    column: str
    json_keys: Tuple[str, ...]
    description: str
    sanitizer: Optional[Callable[[Any], str]] = None


DEFAULT_FIELDS = (
    FieldDefinition(
        key="email",
        column="email",
        json_keys=("email", "user_email", "e-mail", "ffc_email"),
        description="Email address",
        sanitizer=data_sanitizer.sanitize_email,
    ),
    FieldDefinition(
        key="cpf_rf",
        column="cpf_rf",
        json_keys=("cpf_rf", "cpf", "rf", "documento"),
        description="CPF or RF number",
        sanitizer=data_sanitizer.clean_identifier,
    ),
    FieldDefinition(
        key="auth_code",
        column="auth_code",
        json_keys=("auth_code", "codigo_autenticacao", "verification_code"),
        description="Authentication code",
        sanitizer=data_sanitizer.normalize_auth_code,
    ),
)


class MigrationRegistry:
    """
    Read-only catalog of field definitions and migrations.

    One field migration is generated per field definition, followed by the
    special migrations in fixed order. Extra field definitions passed at
    construction get their own migration without touching dispatch code.
    """

    def __init__(self, extra_fields: Iterable[FieldDefinition] = ()):
        self._fields: Dict[str, FieldDefinition] = {}
        for definition in (*DEFAULT_FIELDS, *extra_fields):
            self._fields[definition.key] = definition
        self._migrations: Dict[str, MigrationConfig] = self._build_migrations()

    def _build_migrations(self) -> Dict[str, MigrationConfig]:
        migrations: Dict[str, MigrationConfig] = {}
        order = 1

        for definition in self._fields.values():
            migrations[definition.key] = MigrationConfig(
                key=definition.key,
                name=f"{definition.description} Migration",
                description=(
                    f"Migrate {definition.description.lower()} from JSON data "
                    f"to dedicated {definition.column} column"
                ),
                column=definition.column,
                batch_size=100,
                order=order,
                requires_column=True,
            )
            order += 1

        special = [
            (MAGIC_TOKENS, "Magic Tokens", "Generate unique magic tokens for secure certificate access", "magic_token", 100, True),
            (ENCRYPT_SENSITIVE_DATA, "Encrypt Sensitive Data", "Encrypt email, CPF/RF, user IP and JSON data at rest", None, 50, True),
            (CLEANUP_UNENCRYPTED, "Cleanup Unencrypted Data (15+ days)", "Remove unencrypted copies of sensitive data older than 15 days", None, 100, False),
            (USER_LINK, "Link Submissions to Users", "Associate submissions with user accounts based on CPF/RF", "user_id", 100, True),
            (NAME_NORMALIZATION, "Normalize Names & Emails", "Normalize names (Brazilian capitalization) and emails (lowercase)", None, 100, False),
            (USER_CAPABILITIES, "User Capabilities", "Set user capabilities based on submission and appointment history", None, 50, False),
        ]
        for key, name, description, column, batch_size, requires_column in special:
            migrations[key] = MigrationConfig(
                key=key,
                name=name,
                description=description,
                column=column,
                batch_size=batch_size,
                order=order,
                requires_column=requires_column,
            )
            order += 1

        migrations[DATA_CLEANUP] = MigrationConfig(
            key=DATA_CLEANUP,
            name="Data Cleanup",
            description="Remove old migration data and cleanup database",
            batch_size=0,
            order=TERMINAL_ORDER,
        )
        return migrations

    def get_all_migrations(self) -> List[MigrationConfig]:
        """All migrations sorted by order."""
        return sorted(self._migrations.values(), key=lambda m: m.order)

    def get_migration(self, key: str) -> Optional[MigrationConfig]:
        return self._migrations.get(key)

    def get_field_definition(self, key: str) -> Optional[FieldDefinition]:
        return self._fields.get(key)

    def get_all_field_definitions(self) -> List[FieldDefinition]:
        return list(self._fields.values())

    def exists(self, key: str) -> bool:
        return key in self._migrations

    def is_available(self, key: str) -> bool:
        """Special migrations are always available; field migrations need a field definition."""
        if not self.exists(key):
            return False
        if key in SPECIAL_MIGRATIONS:
            return True
        return key in self._fields
