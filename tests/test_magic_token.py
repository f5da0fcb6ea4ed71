"""Tests for magic token backfill."""

import re

import pytest
from sqlalchemy import select

from app.models import Submission
from app.services.migrations import MigrationStatusCalculator
from app.services.migrations.strategies.magic_token import generate_magic_token

KEY = "magic_tokens"


def test_generate_magic_token_format():
    token = generate_magic_token()
    assert re.fullmatch(r"[0-9a-f]{32}", token)
    assert generate_magic_token() != token


class TestMagicTokenMigration:

    @pytest.mark.asyncio
    async def test_backfills_missing_tokens(self, db_session, make_submission):
        await make_submission(None)
        await make_submission(None, magic_token="")
        await make_submission(None, magic_token="a" * 32)
        calculator = MigrationStatusCalculator(db_session)

        status = await calculator.calculate(KEY)
        assert status.total == 3
        assert status.pending == 2

        result = await calculator.execute(KEY)
        assert result.processed == 2
        assert result.has_more is False

        tokens = (await db_session.execute(select(Submission.magic_token))).scalars().all()
        assert all(re.fullmatch(r"[0-9a-f]{32}", t) for t in tokens)
        assert len(set(tokens)) == 3
        assert "a" * 32 in tokens
        assert (await calculator.calculate(KEY)).is_complete is True

    @pytest.mark.asyncio
    async def test_batches(self, db_session, make_submission):
        for _ in range(3):
            await make_submission(None)
        calculator = MigrationStatusCalculator(db_session)

        first = await calculator.execute(KEY, batch_size=2)
        assert first.processed == 2
        assert first.has_more is True

        second = await calculator.execute(KEY, 1, batch_size=2)
        assert second.processed == 1
        assert second.has_more is False

    @pytest.mark.asyncio
    async def test_dry_run(self, db_session, make_submission):
        await make_submission(None)

        result = await MigrationStatusCalculator(db_session).execute(KEY, dry_run=True)

        assert result.processed == 1
        assert (await MigrationStatusCalculator(db_session).calculate(KEY)).pending == 1
