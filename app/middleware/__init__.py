"""Middleware for request metrics."""

from app.middleware.metrics import MetricsMiddleware

__all__ = ["MetricsMiddleware"]
