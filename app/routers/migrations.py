"""Migration admin REST API endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.dependencies import MigrationManagerDep, require_admin_key
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
from app.services.migrations import (
    IrreversibleOperationError,
    MigrationError,
    UnknownMigrationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/migrations", dependencies=[Depends(require_admin_key)])


def _to_http(error: MigrationError) -> HTTPException:
    """Map an engine error to an HTTP error carrying its code."""
    if isinstance(error, UnknownMigrationError):
        status_code = status.HTTP_404_NOT_FOUND
    elif error.code == IrreversibleOperationError.CONFIRMATION_REQUIRED:
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=status_code, detail=error.to_dict())


@router.get("", response_model=List[MigrationInfo])
async def list_migrations(manager: MigrationManagerDep):
    """All migrations in execution order."""
    return manager.list_migrations()


@router.get("/encryption", response_model=EncryptionInfoResponse)
async def encryption_info(manager: MigrationManagerDep):
    """Cipher setup and the encryption milestones that gate irreversible operations."""
    return await manager.encryption_info()


@router.post("/bulk-nullify", response_model=BulkNullifyResponse)
async def bulk_nullify(request: IrreversibleRequest, manager: MigrationManagerDep):
    """
    Null plaintext copies of encrypted data in one large batch.

    Requires 100% encryption, the cleanup grace period since encryption
    completed, and the confirmation phrase.
    """
    try:
        return await manager.bulk_nullify(request.confirmation)
    except MigrationError as e:
        raise _to_http(e)


@router.post("/drop-columns", response_model=DropColumnsResponse)
async def drop_columns(request: IrreversibleRequest, manager: MigrationManagerDep):
    """
    Permanently drop the plaintext columns.

    Requires 100% encryption, the drop grace period since encryption
    completed, and the confirmation phrase. Each column is dropped on its
    own; the response lists exactly which succeeded.
    """
    try:
        result = await manager.drop_columns(request.confirmation)
    except MigrationError as e:
        raise _to_http(e)
    logger.warning(f"Plaintext columns dropped via API: {result['dropped']}")
    return result


@router.get("/{key}", response_model=MigrationStatusResponse)
async def get_migration_status(key: str, manager: MigrationManagerDep):
    try:
        data = await manager.get_status(key)
    except MigrationError as e:
        raise _to_http(e)
    return {"key": key, **data}


@router.post("/{key}/run", response_model=BatchResultResponse)
async def run_migration(
    key: str,
    manager: MigrationManagerDep,
    request: Optional[MigrationRunRequest] = None,
):
    """Run one batch. Call again while ``has_more`` is true."""
    request = request or MigrationRunRequest()
    try:
        result = await manager.run(
            key,
            request.batch_index,
            batch_size=request.batch_size,
            dry_run=request.dry_run,
        )
    except MigrationError as e:
        raise _to_http(e)
    return {"key": key, **result.to_dict()}


@router.get("/{key}/logs", response_model=MigrationLogsResponse)
async def get_migration_logs(key: str, manager: MigrationManagerDep):
    try:
        logs = await manager.get_logs(key)
    except MigrationError as e:
        raise _to_http(e)
    return {"key": key, **logs}


@router.delete("/{key}/logs", status_code=status.HTTP_204_NO_CONTENT)
async def clear_migration_logs(key: str, manager: MigrationManagerDep):
    try:
        await manager.clear_logs(key)
    except MigrationError as e:
        raise _to_http(e)
