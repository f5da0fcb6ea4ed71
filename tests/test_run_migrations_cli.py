"""Tests for the operator CLI."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from app.scripts import run_migrations
from app.services.migrations import CONFIRMATION_PHRASE


@pytest.fixture
def patched_db(db_session):
    @asynccontextmanager
    async def _context():
        yield db_session

    with patch("app.scripts.run_migrations.get_db_context", _context), \
            patch("app.scripts.run_migrations.close_db", new=AsyncMock()):
        yield db_session


async def _run(*argv):
    args = run_migrations.build_parser().parse_args(list(argv))
    return await run_migrations._main(args)


class TestParser:

    def test_no_command_prints_help(self, capsys):
        assert run_migrations.main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_run_arguments(self):
        args = run_migrations.build_parser().parse_args(
            ["run", "email", "--until-done", "--batch-size", "10", "--dry-run"]
        )
        assert args.key == "email"
        assert args.until_done is True
        assert args.batch_size == 10
        assert args.dry_run is True


class TestCommands:

    @pytest.mark.asyncio
    async def test_list(self, patched_db, capsys):
        assert await _run("list") == 0
        out = capsys.readouterr().out
        assert "email" in out
        assert "data_cleanup" in out

    @pytest.mark.asyncio
    async def test_status(self, patched_db, make_submission, capsys):
        await make_submission({"email": "a@example.com"})

        assert await _run("status", "email") == 0
        assert "0/1" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_until_done(self, patched_db, make_submission, capsys):
        for i in range(3):
            await make_submission({"email": f"u{i}@example.com"})

        assert await _run("run", "email", "--until-done", "--batch-size", "1") == 0

        out = capsys.readouterr().out
        assert "[batch 2]" in out
        assert "Processed 3 records" in out

    @pytest.mark.asyncio
    async def test_unknown_key_exit_code(self, patched_db, capsys):
        assert await _run("run", "does_not_exist") == 2
        assert "invalid_migration" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_nullify_refused(self, patched_db, capsys):
        assert await _run("nullify", "--confirm", CONFIRMATION_PHRASE) == 2
        assert "grace_period_active" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_drop_columns_requires_confirmation(self, patched_db, mark_encryption_complete, capsys):
        await mark_encryption_complete(40)

        assert await _run("drop-columns") == 2
        assert "confirmation_required" in capsys.readouterr().err
