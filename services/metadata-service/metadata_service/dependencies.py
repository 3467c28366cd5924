"""
Shared dependencies for the application.

The storage context lives on ``app.state``; it is created by the
lifespan handler, never by module import.
"""

from fastapi import Request

from .providers import StorageContext


def get_storage(request: Request) -> StorageContext:
    """
    Get the storage context for dependency injection.

    Raises:
        RuntimeError: If the application started without storage
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise RuntimeError("Storage not initialized")
    return storage
