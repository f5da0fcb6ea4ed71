"""Key/value store for migration milestones and logs."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class MigrationOption(Base):
    """
    Persisted migration state that lives outside the submissions table.

    Holds the encryption completion timestamp, completion flags, last-run
    markers and the per-migration error and change logs.
    """

    __tablename__ = "migration_options"

    key: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<MigrationOption(key={self.key})>"
