"""Grant dashboard capabilities from submission and appointment history."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import Appointment
from app.models.users import FORM_USER_ROLE, User
from app.services import option_store
from app.services.migrations.errors import MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

CERTIFICATE_CAPABILITIES = (
    "view_own_certificates",
    "download_own_certificates",
    "view_certificate_history",
)
APPOINTMENT_CAPABILITIES = (
    "book_appointments",
    "view_self_scheduling",
    "cancel_own_appointments",
)


class UserCapabilitiesMigrationStrategy:
    """
    Reset, then grant, capability flags for every form user.

    Users are paged by ``batch_index``. Certificate capabilities follow from
    owning at least one submission, appointment capabilities from owning at
    least one appointment.
    """

    name = "User Capabilities Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _form_user_ids(self) -> List[int]:
        result = await self.db.execute(select(User.id, User.roles).order_by(User.id))
        return [user_id for user_id, roles in result.all() if FORM_USER_ROLE in (roles or [])]

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        total = len(await self._form_user_ids())
        last_run = await option_store.get_option(self.db, option_store.last_run_key(key))
        return MigrationStatus.from_counts(total, total if last_run else 0, last_run=last_run)

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        return None

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        user_ids = await self._form_user_ids()
        start = batch_index * config.batch_size
        page = user_ids[start:start + config.batch_size]
        has_more = start + config.batch_size < len(user_ids)

        if not page:
            if not config.dry_run:
                await self._mark_run(key)
            return BatchResult(True, 0, False, "No form users found")

        with_submissions = set(
            (await self.db.execute(
                select(SUBMISSIONS.c.user_id).where(SUBMISSIONS.c.user_id.in_(page)).distinct()
            )).scalars().all()
        )
        with_appointments = set(
            (await self.db.execute(
                select(Appointment.user_id).where(Appointment.user_id.in_(page)).distinct()
            )).scalars().all()
        )
        users = (await self.db.execute(select(User).where(User.id.in_(page)).order_by(User.id))).scalars().all()

        changes_log = []
        cert_granted = 0
        appt_granted = 0
        for user in users:
            capabilities = dict(user.capabilities or {})
            for capability in (*CERTIFICATE_CAPABILITIES, *APPOINTMENT_CAPABILITIES):
                capabilities[capability] = False

            granted = {}
            if user.id in with_submissions:
                capabilities.update({c: True for c in CERTIFICATE_CAPABILITIES})
                granted["certificates"] = list(CERTIFICATE_CAPABILITIES)
                cert_granted += 1
            if user.id in with_appointments:
                capabilities.update({c: True for c in APPOINTMENT_CAPABILITIES})
                granted["appointments"] = list(APPOINTMENT_CAPABILITIES)
                appt_granted += 1

            if not config.dry_run:
                user.capabilities = capabilities
            if granted:
                changes_log.append({
                    "user_id": user.id,
                    "has_submissions": user.id in with_submissions,
                    "has_appointments": user.id in with_appointments,
                    "changes": granted,
                })

        errors = []
        if not config.dry_run:
            try:
                await option_store.append_to_log(self.db, option_store.changes_key(key), changes_log)
                await self.db.commit()
                if not has_more:
                    await self._mark_run(key)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"User capabilities page {batch_index} failed: {e}")
                errors.append(str(e))

        mode = "DRY RUN" if config.dry_run else "EXECUTED"
        logger.info(f"User capabilities page {batch_index}: {len(users)} users, {len(changes_log)} granted")
        return BatchResult(
            success=not errors,
            processed=0 if errors else len(users),
            has_more=has_more and not errors,
            message=(
                f"{mode}: Processed {len(users)} users, {cert_granted} granted certificate access, "
                f"{appt_granted} granted appointment access, {len(errors)} errors"
            ),
            errors=errors,
            details={"changes": changes_log, "dry_run": config.dry_run},
        )

    async def _mark_run(self, key: str) -> None:
        await option_store.set_option(self.db, option_store.last_run_key(key), utcnow().isoformat())
        await self.db.commit()
