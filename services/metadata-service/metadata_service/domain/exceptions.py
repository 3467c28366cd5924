"""
Storage-layer exceptions for the metadata service.

Both backend implementations translate their native failures into these
types, so the service layer handles one taxonomy regardless of which
database provider is active.
"""

from typing import Any, Optional, Sequence


class StorageError(Exception):
    """Base exception for all storage layer errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConnectivityError(StorageError):
    """Raised when the active backend cannot be reached."""

    def __init__(self, backend: str, reason: Optional[str] = None):
        message = f"Backend '{backend}' unreachable"
        if reason:
            message += f": {reason}"
        super().__init__(message=message, details={"backend": backend, "reason": reason})


class NotFoundError(StorageError):
    """Raised when an identifier does not resolve to a stored entity."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": str(entity_id)},
        )


class ConflictError(StorageError):
    """Raised when a write would violate a uniqueness rule."""

    def __init__(
        self,
        entity: str,
        constraint: str,
        values: Optional[Sequence[Any]] = None,
        reason: Optional[str] = None,
    ):
        values = [str(v) for v in values or ()]
        message = f"{entity} conflicts on {constraint}"
        if values:
            message += f" ({', '.join(values)})"
        if reason:
            message += f": {reason}"
        super().__init__(
            message=message,
            details={"entity": entity, "constraint": constraint, "values": values},
        )
        self.entity = entity
        self.constraint = constraint
        self.values = values


class ValidationError(StorageError):
    """Raised when stored data cannot be mapped back to an entity, or a value cannot be stored."""

    def __init__(self, entity: str, field: str, reason: str):
        super().__init__(
            message=f"Invalid {entity}.{field}: {reason}",
            details={"entity": entity, "field": field, "reason": reason},
        )


class CapacityError(StorageError):
    """Raised on pool exhaustion or when throttling outlasts the retry budget."""

    def __init__(self, backend: str, reason: str, attempts: Optional[int] = None):
        message = f"Backend '{backend}' over capacity: {reason}"
        if attempts:
            message += f" (after {attempts} attempts)"
        super().__init__(
            message=message,
            details={"backend": backend, "reason": reason, "attempts": attempts},
        )


class SizeLimitError(StorageError):
    """Raised when a single record exceeds the backend's maximum record size."""

    def __init__(self, entity: str, size_bytes: int, limit_bytes: int):
        super().__init__(
            message=f"{entity} record is {size_bytes} bytes, limit is {limit_bytes}",
            details={"entity": entity, "size_bytes": size_bytes, "limit_bytes": limit_bytes},
        )


class UnitOfWorkError(StorageError, ValueError):
    """Raised when a unit of work is malformed (too large, or touches an item twice)."""

    def __init__(self, reason: str, size: Optional[int] = None):
        details = {"reason": reason}
        if size is not None:
            details["size"] = size
        super().__init__(message=f"Invalid unit of work: {reason}", details=details)


class ConfigurationError(Exception):
    """Raised at startup when the storage configuration is unusable."""

    def __init__(self, message: str, setting: Optional[str] = None, value: Any = None):
        self.message = message
        self.setting = setting
        self.value = value
        super().__init__(message)
