"""Shared types and query helpers for migration strategies."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.submissions import Submission
from app.services.migrations.errors import MigrationError

# Core table handle. Strategies select explicit columns so queries keep
# working after plaintext columns are dropped.
SUBMISSIONS = Submission.__table__


@dataclass(frozen=True)
class MigrationConfig:
    """Registry entry for one migration, plus per-run options."""

    key: str
    name: str
    description: str
    batch_size: int
    order: int
    column: Optional[str] = None
    requires_column: bool = False
    # Run options, threaded through each call instead of global flags
    dry_run: bool = False
    log_activity: bool = True


@dataclass
class MigrationStatus:
    total: int
    migrated: int
    pending: int
    percent: float
    is_complete: bool
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_counts(cls, total: int, migrated: int, **extra: Any) -> "MigrationStatus":
        total = int(total or 0)
        migrated = min(int(migrated or 0), total)
        pending = total - migrated
        percent = round(migrated / total * 100, 2) if total else 100.0
        return cls(total, migrated, pending, percent, pending == 0, dict(extra))

    def to_dict(self) -> dict:
        data = asdict(self)
        extra = data.pop("extra")
        data.update(extra)
        return data


@dataclass
class BatchResult:
    success: bool
    processed: int
    has_more: bool
    message: str
    errors: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class MigrationStrategy(Protocol):
    """Capability set every migration kind implements."""

    name: str

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        ...

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        ...

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_present(column):
    """SQL predicate: column holds a non-empty value."""
    return and_(column.is_not(None), column != "")


def is_blank(column):
    """SQL predicate: column is NULL or an empty string."""
    return or_(column.is_(None), column == "")


async def count_where(db: AsyncSession, table, *criteria) -> int:
    stmt = select(func.count()).select_from(table)
    if criteria:
        stmt = stmt.where(*criteria)
    result = await db.execute(stmt)
    return int(result.scalar() or 0)
