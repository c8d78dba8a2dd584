"""Typed failures raised by the lifecycle operations."""

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for lifecycle operation failures."""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(LifecycleError):
    """Referenced task or user does not resolve."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            error_code=f"{resource_type.upper()}_NOT_FOUND",
            message=f"{resource_type.title()} '{resource_id}' not found",
            details=details,
        )


class InvalidReferenceError(LifecycleError):
    """An assignment target is well-formed but does not exist."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            error_code="INVALID_REFERENCE",
            message=f"Referenced {resource_type} '{resource_id}' does not exist",
            details=details,
        )


class ConflictError(LifecycleError):
    """Operation conflicts with existing records or a concurrent write."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code="CONFLICT",
            message=message,
            details=details,
        )


class ValidationFailedError(LifecycleError):
    """Missing or malformed required field."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if field:
            details = {**(details or {}), "field": field}
        super().__init__(
            error_code="VALIDATION_FAILED",
            message=message,
            details=details,
        )


class StaleReferenceError(LifecycleError):
    """
    A reconciliation step found its target already gone.

    Caught per step by the reconciler and never surfaced to callers.
    """

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            error_code="STALE_REFERENCE",
            message=f"{resource_type.title()} '{resource_id}' vanished during reconciliation",
            details=details,
        )
