"""Best-effort activity logging for migration events."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_logs import ActivityAction, ActivityLog, ActivitySeverity

logger = logging.getLogger(__name__)


async def record_activity(
    db: AsyncSession,
    action: ActivityAction,
    message: str,
    severity: ActivitySeverity = ActivitySeverity.INFO,
    migration_key: Optional[str] = None,
    details: Optional[dict] = None,
) -> bool:
    """
    Persist an activity log entry.

    Fire-and-forget: the caller's work must already be committed, and a
    failure here is logged and swallowed so it never fails a migration batch.
    """
    try:
        db.add(
            ActivityLog(
                action=action,
                severity=severity,
                migration_key=migration_key,
                message=message,
                details=details or {},
            )
        )
        await db.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning(f"Could not record activity {action.value}: {e}")
        await db.rollback()
        return False
