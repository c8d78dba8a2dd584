"""Parsing of list query parameters and path IDs."""

import json
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Query

from taskboard.domain.exceptions import NotFoundError
from taskboard.persistence.query import QueryError


def parse_json_object(raw: Optional[str], name: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON-object query parameter such as ``where`` or ``sort``."""
    if raw is None or raw.strip() == "":
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise QueryError(f"'{name}' is not valid JSON: {e.msg}") from e
    if not isinstance(value, dict):
        raise QueryError(f"'{name}' must be a JSON object")
    return value


def is_record_id(value: Any) -> bool:
    """True if ``value`` is formatted like an ID this service issues."""
    if not isinstance(value, str):
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def ensure_record_id(value: str, resource_type: str) -> str:
    """Malformed IDs cannot resolve, so they are reported as not found."""
    if not is_record_id(value):
        raise NotFoundError(resource_type, value)
    return value


class ListQuery:
    """List parameters shared by the collection endpoints.

    ``where``, ``sort`` and ``select`` arrive as JSON objects; ``count=true``
    turns the listing into a bare integer.
    """

    def __init__(
        self,
        where: Optional[str] = Query(None, description="JSON filter"),
        sort: Optional[str] = Query(None, description="JSON sort spec, 1 or -1 per field"),
        select: Optional[str] = Query(None, description="JSON projection"),
        skip: int = Query(0),
        limit: Optional[int] = Query(None),
        count: bool = Query(False),
    ):
        self.where = parse_json_object(where, "where")
        self.sort = parse_json_object(sort, "sort")
        self.select = parse_json_object(select, "select")
        self.skip = skip
        self.limit = limit
        self.count = count


def parse_select(select: Optional[str] = Query(None)) -> Optional[Dict[str, Any]]:
    return parse_json_object(select, "select")
