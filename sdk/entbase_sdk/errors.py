"""
Error types for EntBase SDK.

This module defines all exception types raised by the SDK:
- EntBaseError: Base exception
- NotFoundError: Missing schema or instance, cross-schema id mismatch
- PermissionDeniedError: Store rejected the call by access policy
- ValidationError: Malformed write payload
- DuplicateEntryError: Store uniqueness violation
- ForeignKeyViolationError: Store referential violation
- ResolutionError: Batched relation/attachment/search read failed
- UnknownError: Anything else coming out of the store

Store-level failures are classified exactly once, at the facade boundary,
by classify_store_error(). Errors already in this taxonomy pass through
unchanged.

Invariants:
    - All errors inherit from EntBaseError
    - Errors include context for debugging
    - status_code follows HTTP semantics for the gateway
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .store import StoreError

# Store error codes (PostgREST / SQLSTATE)
ROW_NOT_FOUND = "PGRST116"
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
INSUFFICIENT_PRIVILEGE = "42501"


class EntBaseError(Exception):
    """Base exception for all EntBase SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        status_code: HTTP-style status
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENTBASE_ERROR"
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(EntBaseError):
    """Resource not found.

    Raised when:
    - Entity definition doesn't exist
    - Instance doesn't exist in the tenant
    - Instance belongs to another entity definition
    """

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        if resource_id:
            message = f"{resource} with id {resource_id} not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class PermissionDeniedError(EntBaseError):
    """Access denied by the store's row-level policy."""

    def __init__(self, action: str, resource: str) -> None:
        super().__init__(
            f"Permission denied: cannot {action} {resource}",
            code="PERMISSION_DENIED",
            status_code=403,
            details={"action": action, "resource": resource},
        )
        self.action = action
        self.resource = resource


class ValidationError(EntBaseError):
    """Payload validation failed.

    Raised when:
    - The 'name' value needed for slug generation is missing
    - A field value has the wrong type for its kind
    """

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(
            f"Validation failed for {field_name}: {message}",
            code="VALIDATION_ERROR",
            status_code=400,
            details={"field": field_name, "message": message},
        )
        self.field_name = field_name


class DuplicateEntryError(EntBaseError):
    """Store reported a uniqueness violation."""

    def __init__(self, message: str = "Duplicate entry", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="DUPLICATE_ENTRY", status_code=409, details=details)


class ForeignKeyViolationError(EntBaseError):
    """Store reported a referential integrity violation."""

    def __init__(
        self, message: str = "Foreign key violation", details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message, code="FOREIGN_KEY_VIOLATION", status_code=400, details=details)


class ResolutionError(EntBaseError):
    """A batched read or write around relations, files or search failed.

    Attributes:
        operation: Which step failed (e.g. "load_relations")
        instance_id: Offending instance, when there is one
    """

    def __init__(
        self,
        operation: str,
        message: str,
        instance_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        if instance_id:
            message = f"{message} (instance {instance_id})"
        super().__init__(
            message,
            code="RESOLUTION_ERROR",
            status_code=500,
            details={"operation": operation, "instance_id": instance_id},
        )
        self.operation = operation
        self.instance_id = instance_id
        self.cause = cause


class UnknownError(EntBaseError):
    """Unclassified store failure. Keeps the underlying cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        details: Dict[str, Any] = {}
        if isinstance(cause, StoreError):
            details = {"store_code": cause.code, **cause.details}
        super().__init__(message or "Unknown error", code="UNKNOWN_ERROR", status_code=500, details=details)
        self.cause = cause


def classify_store_error(error: StoreError, instance_id: Optional[str] = None) -> EntBaseError:
    """Map a raw store error onto the SDK taxonomy.

    Args:
        error: Error raised by an EntityStore
        instance_id: Instance the failing call was about, if any

    Returns:
        The matching EntBaseError (never raises)
    """
    if error.code == ROW_NOT_FOUND:
        if instance_id:
            return NotFoundError("Entity instance", instance_id)
        return NotFoundError("Resource")

    if error.code == INSUFFICIENT_PRIVILEGE:
        if instance_id:
            return PermissionDeniedError("access", f"entity instance {instance_id}")
        return PermissionDeniedError("access", "resource")

    if error.code == UNIQUE_VIOLATION:
        return DuplicateEntryError(details={"store_message": error.message})

    if error.code == FOREIGN_KEY_VIOLATION:
        return ForeignKeyViolationError(details={"store_message": error.message})

    return UnknownError(error.message, cause=error)
