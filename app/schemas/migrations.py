"""Pydantic schemas for migration admin endpoints."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MigrationInfo(BaseModel):
    """Catalog entry for one migration."""

    key: str
    name: str
    description: str
    order: int
    batch_size: int
    column: Optional[str] = None
    available: bool = True


class MigrationStatusResponse(BaseModel):
    """Progress of one migration, derived from row state."""

    model_config = ConfigDict(extra="allow")

    key: str
    total: int
    migrated: int
    pending: int
    percent: float
    is_complete: bool


class MigrationRunRequest(BaseModel):
    """Options for running one batch."""

    batch_index: int = Field(0, ge=0)
    batch_size: Optional[int] = Field(None, ge=1, le=5000)
    dry_run: bool = False


class BatchResultResponse(BaseModel):
    """Outcome of one executed batch."""

    key: str
    success: bool
    processed: int
    has_more: bool
    message: str
    errors: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)


class MigrationLogsResponse(BaseModel):
    """Error and change logs kept for a migration."""

    key: str
    errors: List[Any] = Field(default_factory=list)
    changes: List[Any] = Field(default_factory=list)
    last_run: Optional[str] = None


class IrreversibleRequest(BaseModel):
    """Operator confirmation for an irreversible operation."""

    confirmation: Optional[str] = Field(None, description='Must equal "CONFIRM DELETION"')


class BulkNullifyResponse(BaseModel):
    success: bool
    processed: int
    has_more: bool
    message: str


class DropColumnsResponse(BaseModel):
    success: bool
    dropped: List[str]
    errors: List[str]


class EncryptionInfoResponse(BaseModel):
    """Cipher setup and milestones. Never carries key material."""

    configured: bool
    cipher: str
    iv_length: int
    key_source: str
    hash_algorithm: str
    key_derivation: str
    hash_salt_source: str
    completed_at: Optional[str] = None
    drop_days_remaining: int
    columns_dropped_at: Optional[str] = None
