"""Pydantic schemas for request/response validation."""

from app.schemas.migrations import (
    BatchResultResponse,
    BulkNullifyResponse,
    DropColumnsResponse,
    EncryptionInfoResponse,
    IrreversibleRequest,
    MigrationInfo,
    MigrationLogsResponse,
    MigrationRunRequest,
    MigrationStatusResponse,
)

__all__ = [
    "BatchResultResponse",
    "BulkNullifyResponse",
    "DropColumnsResponse",
    "EncryptionInfoResponse",
    "IrreversibleRequest",
    "MigrationInfo",
    "MigrationLogsResponse",
    "MigrationRunRequest",
    "MigrationStatusResponse",
]
