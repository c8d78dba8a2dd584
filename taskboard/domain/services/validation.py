"""Field checks shared by the lifecycle operations."""

from datetime import datetime
from typing import Any, Iterable, List, Optional, Union

from taskboard.domain.exceptions import ValidationFailedError
from taskboard.persistence.models import parse_datetime


def require_text(value: Optional[str], field: str) -> str:
    """Return the stripped value, or fail if it is missing or blank."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailedError(f"{field} is required", field=field)
    return value.strip()


def require_deadline(value: Union[datetime, str, None]) -> datetime:
    """Parse a deadline into an aware UTC datetime."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationFailedError("deadline is required", field="deadline")
    try:
        return parse_datetime(value)
    except (TypeError, ValueError, OverflowError, OSError):
        raise ValidationFailedError(
            "Invalid deadline format. Please provide a valid date.",
            field="deadline",
        )


def require_email(value: Optional[str]) -> str:
    email = require_text(value, "email")
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain:
        raise ValidationFailedError("email is not a valid address", field="email")
    return email


def require_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationFailedError(f"{field} must be a boolean", field=field)
    return value


def require_id_list(values: Optional[Iterable[Any]], field: str) -> List[str]:
    """Normalize an id collection to a duplicate-free list of strings."""
    if values is None:
        return []
    if isinstance(values, (str, bytes)):
        raise ValidationFailedError(f"{field} must be a list of ids", field=field)
    ids = list(values)
    if not all(isinstance(v, str) and v for v in ids):
        raise ValidationFailedError(f"{field} must be a list of ids", field=field)
    return list(dict.fromkeys(ids))
