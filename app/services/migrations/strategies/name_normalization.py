"""Normalize personal names and emails inside encrypted payloads."""

import json
import logging
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_table_columns
from app.services import data_sanitizer, encryption, option_store
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

NAME_FIELDS = ("nome_completo", "nome", "name", "full_name", "ffc_nome", "participante")


def _has_ciphertext():
    return or_(is_present(SUBMISSIONS.c.data_encrypted), is_present(SUBMISSIONS.c.email_encrypted))


class NameNormalizationMigrationStrategy:
    """
    Brazilian name capitalization and lowercase emails, in place.

    The rewrite does not change which records match the selection, so this
    strategy pages with ``batch_index`` instead of re-selecting from the top.
    Re-running a page is harmless: normalized values normalize to themselves.
    Completion is the ``last_run`` marker written when the final page is done.
    """

    name = "Name Normalization Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        total = await count_where(self.db, SUBMISSIONS, _has_ciphertext())
        last_run = await option_store.get_option(self.db, option_store.last_run_key(key))
        changes = await option_store.get_option(self.db, option_store.changes_key(key), default=[])
        return MigrationStatus.from_counts(
            total,
            total if last_run else 0,
            last_run=last_run,
            last_run_changes=len(changes),
        )

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        if not encryption.is_configured():
            return ConfigurationError(
                "Encryption is not configured. Cannot process encrypted data.",
                code="encryption_not_configured",
            )
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        if "data_encrypted" not in columns or "email_encrypted" not in columns:
            return ConfigurationError("Encrypted columns are missing", code="missing_column")
        return None

    @staticmethod
    def _normalize_payload(payload: dict) -> list:
        changed = []
        for field in NAME_FIELDS:
            value = payload.get(field)
            if not isinstance(value, str) or not value:
                continue
            normalized = data_sanitizer.normalize_name(value)
            if normalized != value:
                payload[field] = normalized
                changed.append(field)
        return changed

    def _normalize_record(self, row, errors: list):
        """Return (changed field names, column updates) for one record."""
        changed = []
        values = {}

        if row["email_encrypted"]:
            email = encryption.decrypt(row["email_encrypted"])
            if email is None:
                errors.append(f"Submission ID {row['id']}: email could not be decrypted")
            elif email != email.lower():
                normalized_email = email.lower()
                ciphertext = encryption.encrypt(normalized_email)
                if ciphertext is None:
                    errors.append(f"Submission ID {row['id']}: email could not be re-encrypted")
                else:
                    values["email_encrypted"] = ciphertext
                    values["email_hash"] = encryption.keyed_hash(normalized_email)
                    changed.append("email")

        if row["data_encrypted"]:
            raw = encryption.decrypt(row["data_encrypted"])
            if raw is None:
                errors.append(f"Submission ID {row['id']}: data could not be decrypted")
            else:
                try:
                    payload = json.loads(raw)
                except ValueError:
                    payload = None
                if isinstance(payload, dict):
                    fields = self._normalize_payload(payload)
                    if fields:
                        ciphertext = encryption.encrypt(json.dumps(payload, ensure_ascii=False))
                        if ciphertext is None:
                            errors.append(f"Submission ID {row['id']}: data could not be re-encrypted")
                        else:
                            values["data_encrypted"] = ciphertext
                            changed.extend(fields)

        return changed, values

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        result = await self.db.execute(
            select(SUBMISSIONS.c.id, SUBMISSIONS.c.email_encrypted, SUBMISSIONS.c.data_encrypted)
            .where(_has_ciphertext())
            .order_by(SUBMISSIONS.c.id)
            .offset(batch_index * config.batch_size)
            .limit(config.batch_size)
        )
        rows = result.mappings().all()

        errors = []
        changes_log = []
        for row in rows:
            changed, values = self._normalize_record(row, errors)
            if not changed:
                continue
            changes_log.append({"id": row["id"], "fields": changed})
            if config.dry_run:
                continue
            try:
                await self.db.execute(update(SUBMISSIONS).where(SUBMISSIONS.c.id == row["id"]).values(values))
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Name normalization failed on submission {row['id']}: {e}")
                errors.append(f"Submission ID {row['id']}: {e}")

        has_more = len(rows) == config.batch_size
        if not config.dry_run:
            await option_store.append_to_log(self.db, option_store.changes_key(key), changes_log)
            if not has_more:
                await option_store.set_option(self.db, option_store.last_run_key(key), utcnow().isoformat())
            await self.db.commit()

        mode = "DRY RUN" if config.dry_run else "EXECUTED"
        names = sum(1 for entry in changes_log for field in entry["fields"] if field != "email")
        emails = sum(1 for entry in changes_log if "email" in entry["fields"])
        logger.info(f"Name normalization page {batch_index}: {len(changes_log)} of {len(rows)} changed")
        return BatchResult(
            success=not errors,
            processed=len(changes_log),
            has_more=has_more,
            message=(
                f"{mode}: Processed {len(rows)} submissions, {names} names normalized, "
                f"{emails} emails normalized, {len(errors)} errors"
            ),
            errors=errors,
            details={"scanned": len(rows), "changes": changes_log, "dry_run": config.dry_run},
        )
