"""User model for accounts linked to form submissions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# Role granted to accounts created or linked from submissions.
FORM_USER_ROLE = "form_user"


class User(Base):
    """
    Account that owns one or more submissions.

    Accounts are resolved or created by the user link migration; capability
    flags are managed by the user capabilities migration.
    """

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Identity
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    username: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Authorization
    roles: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    capabilities: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
        comment="Capability name -> granted flag",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def has_role(self, role: str) -> bool:
        """Check whether the user carries a role."""
        return role in (self.roles or [])

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
