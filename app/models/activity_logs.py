"""Activity log model for operator-visible migration events."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ActivityAction(str, Enum):
    """Types of recorded migration activity."""

    # Batch execution
    MIGRATION_BATCH = "migration_batch"
    MIGRATION_COMPLETED = "migration_completed"
    ENCRYPTION_COMPLETED = "encryption_completed"

    # Irreversible operations
    DATA_CLEANUP_EXECUTED = "data_cleanup_executed"
    COLUMNS_DROPPED = "columns_dropped"
    IRREVERSIBLE_REFUSED = "irreversible_refused"

    # Logs
    MIGRATION_LOGS_CLEARED = "migration_logs_cleared"


class ActivitySeverity(str, Enum):
    """Severity levels for activity events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ActivityLog(Base):
    """
    Append-only activity log entry.

    Never carries plaintext PII; details hold counts, ids and column names.
    """

    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Event classification
    action: Mapped[ActivityAction] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    severity: Mapped[ActivitySeverity] = mapped_column(
        String(20),
        default=ActivitySeverity.INFO,
        nullable=False,
        index=True,
    )

    migration_key: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(
        JSON,
        default=dict,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_activity_logs_key_created", "migration_key", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, action={self.action}, severity={self.severity})>"
