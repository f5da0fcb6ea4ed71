"""Dependency injection providers for FastAPI."""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.database import get_db
from app.services.migrations import MigrationManager


# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]
DbSessionDep = Annotated[AsyncSession, Depends(get_db)]


async def require_admin_key(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> None:
    """
    Guard admin endpoints with a shared key.

    Disabled when ADMIN_API_KEY is unset (local / single-operator setups).
    """
    settings = get_settings()
    if not settings.ADMIN_API_KEY:
        return

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin key required. Provide X-Admin-Key header.",
        )

    if not hmac.compare_digest(x_admin_key.encode("utf-8"), settings.ADMIN_API_KEY.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )


async def get_migration_manager(db: DbSessionDep) -> MigrationManager:
    """Migration facade bound to the request's session."""
    return MigrationManager(db)


MigrationManagerDep = Annotated[MigrationManager, Depends(get_migration_manager)]
