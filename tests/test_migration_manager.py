"""
Tests for the migration facade and its irreversible operations.

Bulk nullify and column drop must refuse, in order, on incomplete
encryption, an active grace period, and a missing confirmation phrase.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.database import get_table_columns
from app.models import ActivityLog, Submission
from app.models.activity_logs import ActivityAction
from app.services import option_store
from app.services.migrations import (
    CONFIRMATION_PHRASE,
    IrreversibleOperationError,
    MigrationManager,
    UnknownMigrationError,
)


async def _load(db_session, submission_id, *columns):
    result = await db_session.execute(
        select(*[Submission.__table__.c[c] for c in columns]).where(Submission.__table__.c.id == submission_id)
    )
    return result.mappings().one()


# ============================================================================
# Catalog, status and logs
# ============================================================================


class TestCatalog:

    def test_list_migrations(self, db_session):
        migrations = MigrationManager(db_session).list_migrations()

        assert [m["key"] for m in migrations][:4] == ["email", "cpf_rf", "auth_code", "magic_tokens"]
        assert migrations[-1]["key"] == "data_cleanup"
        assert all(m["available"] for m in migrations)

    @pytest.mark.asyncio
    async def test_all_statuses(self, db_session, make_submission):
        await make_submission({"email": "a@example.com"})

        statuses = await MigrationManager(db_session).get_all_statuses()

        assert set(statuses) == {m.key for m in MigrationManager(db_session).registry.get_all_migrations()}
        assert statuses["email"]["pending"] == 1
        assert statuses["encrypt_sensitive_data"]["pending"] == 1

    @pytest.mark.asyncio
    async def test_preview_writes_nothing(self, db_session, make_submission):
        await make_submission({"email": "a@example.com"})
        manager = MigrationManager(db_session)

        result = await manager.preview("email")

        assert result.processed == 1
        assert (await manager.get_status("email"))["pending"] == 1

    @pytest.mark.asyncio
    async def test_clear_logs(self, db_session):
        manager = MigrationManager(db_session)
        await option_store.append_to_log(db_session, option_store.errors_key("email"), ["boom"])
        await db_session.commit()

        await manager.clear_logs("email")

        assert (await manager.get_logs("email"))["errors"] == []

    @pytest.mark.asyncio
    async def test_logs_unknown_key(self, db_session):
        with pytest.raises(UnknownMigrationError):
            await MigrationManager(db_session).get_logs("nope")


# ============================================================================
# Bulk nullify
# ============================================================================


class TestBulkNullify:

    @pytest.mark.asyncio
    async def test_refused_while_encryption_incomplete(self, db_session, make_submission, mark_encryption_complete):
        await make_submission(None, email="plain@example.com", age_days=30)
        await mark_encryption_complete(20)

        with pytest.raises(IrreversibleOperationError) as exc_info:
            await MigrationManager(db_session).bulk_nullify(CONFIRMATION_PHRASE)

        assert exc_info.value.code == IrreversibleOperationError.ENCRYPTION_INCOMPLETE

    @pytest.mark.asyncio
    async def test_refused_during_grace_period(
        self, db_session, make_encrypted_submission, mark_encryption_complete
    ):
        submission = await make_encrypted_submission(email="a@example.com", age_days=30)
        await mark_encryption_complete(5)

        with pytest.raises(IrreversibleOperationError) as exc_info:
            await MigrationManager(db_session).bulk_nullify(CONFIRMATION_PHRASE)

        assert exc_info.value.code == IrreversibleOperationError.GRACE_PERIOD_ACTIVE
        assert "10 days remaining" in exc_info.value.message
        assert (await _load(db_session, submission.id, "email"))["email"] == "a@example.com"

    @pytest.mark.asyncio
    async def test_refused_without_completion_timestamp(self, db_session, make_encrypted_submission):
        await make_encrypted_submission(email="a@example.com", age_days=30)

        with pytest.raises(IrreversibleOperationError) as exc_info:
            await MigrationManager(db_session).bulk_nullify(CONFIRMATION_PHRASE)

        assert exc_info.value.code == IrreversibleOperationError.GRACE_PERIOD_ACTIVE

    @pytest.mark.asyncio
    async def test_refused_without_confirmation(
        self, db_session, make_encrypted_submission, mark_encryption_complete
    ):
        await make_encrypted_submission(email="a@example.com", age_days=30)
        await mark_encryption_complete(20)

        with pytest.raises(IrreversibleOperationError) as exc_info:
            await MigrationManager(db_session).bulk_nullify("yes")

        assert exc_info.value.code == IrreversibleOperationError.CONFIRMATION_REQUIRED

    @pytest.mark.asyncio
    async def test_refusal_is_recorded(self, db_session):
        with pytest.raises(IrreversibleOperationError):
            await MigrationManager(db_session).bulk_nullify(None)

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.action == ActivityAction.IRREVERSIBLE_REFUSED.value)
        )
        entry = result.scalars().one()
        assert entry.details["operation"] == "bulk_nullify"

    @pytest.mark.asyncio
    async def test_nullifies_after_grace_period(
        self, db_session, make_encrypted_submission, mark_encryption_complete
    ):
        old = await make_encrypted_submission(email="a@example.com", cpf_rf="12345678901", age_days=20)
        recent = await make_encrypted_submission(email="b@example.com", age_days=2)
        await mark_encryption_complete(16)

        result = await MigrationManager(db_session).bulk_nullify(CONFIRMATION_PHRASE)

        assert result["success"] is True
        assert result["processed"] == 1
        assert result["has_more"] is False
        old_row = await _load(db_session, old.id, "email", "cpf_rf", "email_encrypted")
        assert old_row["email"] is None
        assert old_row["cpf_rf"] is None
        assert old_row["email_encrypted"] is not None
        # Records younger than the window keep their plaintext
        assert (await _load(db_session, recent.id, "email"))["email"] == "b@example.com"


# ============================================================================
# Column drop
# ============================================================================


class TestDropColumns:

    @pytest.mark.asyncio
    async def test_days_remaining(self, db_session, mark_encryption_complete):
        manager = MigrationManager(db_session)
        assert await manager.drop_days_remaining() == 30

        await mark_encryption_complete(10)
        assert await manager.drop_days_remaining() == 20
        assert await manager.can_drop_columns() is False

    @pytest.mark.asyncio
    async def test_refused_before_drop_grace(self, db_session, make_encrypted_submission, mark_encryption_complete):
        await make_encrypted_submission(email="a@example.com")
        await mark_encryption_complete(20)

        with pytest.raises(IrreversibleOperationError) as exc_info:
            await MigrationManager(db_session).drop_columns(CONFIRMATION_PHRASE)

        assert exc_info.value.code == IrreversibleOperationError.GRACE_PERIOD_ACTIVE

    @pytest.mark.asyncio
    async def test_drops_plaintext_columns(self, db_session, make_encrypted_submission, mark_encryption_complete):
        await make_encrypted_submission(email="a@example.com", cpf_rf="12345678901", payload={"a": 1}, age_days=40)
        await mark_encryption_complete(31)
        manager = MigrationManager(db_session)
        assert await manager.can_drop_columns() is True

        result = await manager.drop_columns(CONFIRMATION_PHRASE)

        assert result == {"success": True, "dropped": ["email", "cpf_rf", "user_ip", "data"], "errors": []}
        info = await manager.encryption_info()
        assert info["columns_dropped_at"] is not None
        assert info["drop_days_remaining"] == 0

        # Every status still resolves against the reduced schema
        statuses = await manager.get_all_statuses()
        assert statuses["email"]["is_complete"] is True
        assert statuses["encrypt_sensitive_data"]["is_complete"] is True
        assert statuses["cleanup_unencrypted"]["is_complete"] is True

        error = await manager.can_run("email")
        assert error.code == "missing_column"

        again = await manager.drop_columns(CONFIRMATION_PHRASE)
        assert again == {"success": True, "dropped": [], "errors": []}

    @pytest.mark.asyncio
    async def test_each_column_dropped_independently(
        self, db_session, make_encrypted_submission, mark_encryption_complete, monkeypatch
    ):
        await make_encrypted_submission(email="a@example.com", cpf_rf="12345678901", age_days=40)
        await mark_encryption_complete(31)
        execute = db_session.execute

        async def execute_failing_on_user_ip(statement, *args, **kwargs):
            if "DROP COLUMN user_ip" in str(statement):
                raise OperationalError(str(statement), None, Exception("column is locked"))
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", execute_failing_on_user_ip)

        result = await MigrationManager(db_session).drop_columns(CONFIRMATION_PHRASE)

        assert result["success"] is False
        assert result["dropped"] == ["email", "cpf_rf", "data"]
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("user_ip:")
        columns = await get_table_columns(db_session, Submission.__tablename__)
        assert "user_ip" in columns
        assert "email" not in columns
