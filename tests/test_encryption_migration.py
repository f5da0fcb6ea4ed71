"""
Tests for the encryption migration.

Verifies ciphertext and hash columns are filled, plaintext is left in place,
and the completion timestamp is recorded exactly once.
"""

import json

import pytest
from sqlalchemy import select

from app.config import get_settings
from app.models import ActivityLog, Submission
from app.models.activity_logs import ActivityAction
from app.services import encryption, option_store
from app.services.migrations import ConfigurationError, MigrationStatusCalculator

KEY = "encrypt_sensitive_data"


async def _load(db_session, submission_id):
    result = await db_session.execute(select(Submission.__table__).where(Submission.id == submission_id))
    return result.mappings().one()


class TestEncryptionMigration:

    @pytest.mark.asyncio
    async def test_encrypts_all_sensitive_fields(self, db_session, make_submission):
        payload = {"nome": "Ana Lima", "email": "ana@example.com"}
        submission = await make_submission(
            payload, email="ana@example.com", cpf_rf="12345678901", user_ip="10.0.0.1"
        )

        result = await MigrationStatusCalculator(db_session).execute(KEY)

        assert result.success is True
        assert result.processed == 1
        assert result.message == "Encrypted 1 submissions"

        row = await _load(db_session, submission.id)
        assert encryption.decrypt(row["email_encrypted"]) == "ana@example.com"
        assert encryption.decrypt(row["cpf_rf_encrypted"]) == "12345678901"
        assert encryption.decrypt(row["user_ip_encrypted"]) == "10.0.0.1"
        assert json.loads(encryption.decrypt(row["data_encrypted"])) == payload
        assert row["email_hash"] == encryption.keyed_hash("ana@example.com")
        assert row["cpf_rf_hash"] == encryption.keyed_hash("12345678901")
        # Plaintext stays until the cleanup grace period has passed
        assert row["email"] == "ana@example.com"

    @pytest.mark.asyncio
    async def test_status_progress(self, db_session, make_submission):
        for i in range(3):
            await make_submission({"email": f"u{i}@example.com"})
        await make_submission(None)
        calculator = MigrationStatusCalculator(db_session)

        before = await calculator.calculate(KEY)
        assert before.total == 4
        # A record with no plaintext at all counts as encrypted
        assert before.migrated == 1

        result = await calculator.execute(KEY, batch_size=2)
        assert result.processed == 2
        assert result.has_more is True

        middle = await calculator.calculate(KEY)
        assert middle.pending == 1
        assert middle.extra["completed_at"] is None

        await calculator.execute(KEY, 1, batch_size=2)
        after = await calculator.calculate(KEY)
        assert after.is_complete is True
        assert after.percent == 100.0

    @pytest.mark.asyncio
    async def test_completion_recorded_once(self, db_session, make_submission):
        await make_submission({"email": "ana@example.com"}, email="ana@example.com")
        calculator = MigrationStatusCalculator(db_session)

        await calculator.execute(KEY)
        first = await option_store.get_option(db_session, option_store.ENCRYPTION_COMPLETED_AT)
        assert first is not None

        again = await calculator.execute(KEY)
        assert again.processed == 0
        assert again.has_more is False
        assert await option_store.get_option(db_session, option_store.ENCRYPTION_COMPLETED_AT) == first

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.action == ActivityAction.ENCRYPTION_COMPLETED.value)
        )
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_empty_table_marks_complete(self, db_session):
        result = await MigrationStatusCalculator(db_session).execute(KEY)

        assert result.processed == 0
        assert await option_store.get_option(db_session, option_store.ENCRYPTION_COMPLETED_AT) is not None

    @pytest.mark.asyncio
    async def test_already_encrypted_never_reencrypted(self, db_session, make_encrypted_submission):
        submission = await make_encrypted_submission(email="ana@example.com", payload={"a": 1})
        original = (await _load(db_session, submission.id))["email_encrypted"]

        result = await MigrationStatusCalculator(db_session).execute(KEY)

        assert result.processed == 0
        assert (await _load(db_session, submission.id))["email_encrypted"] == original

    @pytest.mark.asyncio
    async def test_dry_run(self, db_session, make_submission):
        submission = await make_submission(None, email="ana@example.com")

        result = await MigrationStatusCalculator(db_session).execute(KEY, dry_run=True)

        assert result.processed == 1
        assert result.has_more is False
        assert (await _load(db_session, submission.id))["email_encrypted"] is None
        assert await option_store.get_option(db_session, option_store.ENCRYPTION_COMPLETED_AT) is None

    @pytest.mark.asyncio
    async def test_refuses_without_keys(self, db_session, make_submission, monkeypatch):
        await make_submission(None, email="ana@example.com")
        monkeypatch.setenv("ENCRYPTION_SECRETS", "just-one")
        get_settings.cache_clear()
        calculator = MigrationStatusCalculator(db_session)

        error = await calculator.can_run(KEY)
        assert error.code == "encryption_not_configured"

        with pytest.raises(ConfigurationError) as exc_info:
            await calculator.execute(KEY)
        assert exc_info.value.code == "encryption_not_configured"

    @pytest.mark.asyncio
    async def test_failed_values_are_reported_and_batch_continues(
        self, db_session, make_submission, monkeypatch
    ):
        partial = await make_submission(None, email="bad@example.com", cpf_rf="12345678901")
        failed = await make_submission(None, email="bad@example.com")
        clean = await make_submission(None, email="good@example.com")
        real_encrypt = encryption.encrypt
        monkeypatch.setattr(
            encryption, "encrypt", lambda value: None if value == "bad@example.com" else real_encrypt(value)
        )

        result = await MigrationStatusCalculator(db_session).execute(KEY)

        assert result.success is False
        assert result.processed == 2
        assert result.errors == [
            f"Encryption error for submission ID {partial.id}: field email",
            f"Encryption error for submission ID {failed.id}: field email",
        ]

        partial_row = await _load(db_session, partial.id)
        assert partial_row["email_encrypted"] is None
        assert encryption.decrypt(partial_row["cpf_rf_encrypted"]) == "12345678901"
        assert (await _load(db_session, failed.id))["email_encrypted"] is None
        assert encryption.decrypt((await _load(db_session, clean.id))["email_encrypted"]) == "good@example.com"
