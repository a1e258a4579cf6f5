"""API middleware package."""

from src.logistics.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
