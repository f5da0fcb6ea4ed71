"""Form submission model holding user-submitted PII."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# Plaintext columns that carry sensitive data before encryption.
SENSITIVE_PLAINTEXT_COLUMNS = ("email", "cpf_rf", "user_ip", "data")

# Ciphertext columns; a non-empty value in any of them marks a record encrypted.
CIPHERTEXT_COLUMNS = ("email_encrypted", "cpf_rf_encrypted", "user_ip_encrypted", "data_encrypted")


class Submission(Base):
    """
    One row per form submission.

    The original payload lives in ``data`` (a JSON blob). Frequently queried
    fields are promoted into their own columns, then encrypted into
    ``*_encrypted`` shadows with keyed ``*_hash`` companions for equality
    lookups, and finally the plaintext copies are nulled.

    Plaintext columns carry no index so they can be dropped once the
    grace period has passed.
    """

    __tablename__ = "submissions"

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Origin
    form_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Form definition this submission belongs to",
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Linked user account, assigned by the user link migration",
    )

    # Original payload (JSON encoded)
    data: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Original submission payload, JSON encoded",
    )
    data_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Promoted fields
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Keyed hash of the email for lookups without decryption",
    )

    cpf_rf: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cpf_rf_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cpf_rf_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Keyed hash of the national identifier",
    )

    user_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_ip_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    auth_code: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        index=True,
        comment="Human-readable verification code printed on the certificate",
    )
    magic_token: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        index=True,
        comment="Random access token for link-based certificate retrieval",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default="publish",
        nullable=False,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_submissions_cpf_hash_user", "cpf_rf_hash", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Submission(id={self.id}, form_id={self.form_id}, user_id={self.user_id})>"
