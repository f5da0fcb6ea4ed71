"""Tests for the scheduled Celery migration tick."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from app.tasks import celery_app
from app.tasks import migration_runner


@pytest.fixture
def patched_db(db_session):
    """Route the task's session factory to the test session."""

    @asynccontextmanager
    async def _context():
        yield db_session

    with patch("app.database.get_db_context", _context):
        yield db_session


class TestMigrationTick:

    def test_task_registered_and_scheduled(self):
        assert "migrations.scheduled_tick" in celery_app.tasks
        schedule = celery_app.conf.beat_schedule["migrations-scheduled-tick"]
        assert schedule["task"] == "migrations.scheduled_tick"

    def test_scheduled_tick_runs_the_coroutine(self):
        with patch.object(migration_runner, "_tick", new=AsyncMock(return_value={"email": {"processed": 1}})) as tick:
            result = migration_runner.scheduled_tick(["email"])

        assert result == {"email": {"processed": 1}}
        tick.assert_awaited_once_with(["email"])

    @pytest.mark.asyncio
    async def test_no_keys_configured(self, patched_db):
        assert await migration_runner._tick() == {}

    @pytest.mark.asyncio
    async def test_runs_one_batch_per_key(self, patched_db, make_submission):
        await make_submission({"email": "a@example.com"})

        results = await migration_runner._tick(["email", "magic_tokens"])

        assert results["email"]["processed"] == 1
        assert results["magic_tokens"]["processed"] == 1

    @pytest.mark.asyncio
    async def test_skips_complete_and_paged(self, patched_db):
        results = await migration_runner._tick(["auth_code", "name_normalization", "user_capabilities"])

        assert results["auth_code"] == {"skipped": "complete"}
        assert results["name_normalization"]["skipped"].startswith("paged")
        assert results["user_capabilities"]["skipped"].startswith("paged")

    @pytest.mark.asyncio
    async def test_refusals_are_reported(self, patched_db, make_submission, monkeypatch):
        from app.config import get_settings

        await make_submission(None, email="plain@example.com")
        monkeypatch.setenv("ENCRYPTION_SECRETS", "")
        get_settings.cache_clear()

        results = await migration_runner._tick(["encrypt_sensitive_data", "does_not_exist"])

        assert results["encrypt_sensitive_data"]["error"]["code"] == "encryption_not_configured"
        assert results["does_not_exist"]["error"]["code"] == "invalid_migration"

    @pytest.mark.asyncio
    async def test_keys_from_settings(self, patched_db, make_submission, monkeypatch):
        from app.config import get_settings

        await make_submission(None)
        monkeypatch.setenv("MIGRATION_SCHEDULE_KEYS", "magic_tokens")
        get_settings.cache_clear()

        results = await migration_runner._tick()

        assert list(results) == ["magic_tokens"]
