"""API routers for the submission vault."""

from app.routers import migrations

__all__ = ["migrations"]
