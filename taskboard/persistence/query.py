"""
Document query helpers shared by the entity stores.

Implements the filter / projection / sort subset accepted by the
``where``, ``select`` and ``sort`` list parameters:

- filters: plain equality, ``$in``, ``$nin``, ``$ne``, ``$gt``, ``$gte``,
  ``$lt``, ``$lte``, ``$exists`` and top-level ``$and`` / ``$or``
- projections: ``{field: 1}`` include or ``{field: 0}`` exclude
- sort: ``{field: 1 | -1}``, applied left to right

Equality against an array field matches when the array contains the value,
so ``{"pendingTasks": task_id}`` finds the user holding that task.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

Document = Dict[str, Any]

_MISSING = object()


class QueryError(ValueError):
    """Malformed filter, projection or sort specification."""
    pass


def _lookup(document: Mapping[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return expected is None
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def _compare(actual: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    if actual is _MISSING or actual is None:
        return False
    if isinstance(actual, list):
        return any(_compare(item, expected, op) for item in actual)
    try:
        return op(actual, expected)
    except TypeError:
        return False


def _as_list(operator: str, operand: Any) -> List[Any]:
    if not isinstance(operand, (list, tuple, set)):
        raise QueryError(f"{operator} requires an array")
    return list(operand)


def _match_operators(actual: Any, spec: Mapping[str, Any]) -> bool:
    for operator, operand in spec.items():
        if operator == "$in":
            if not any(_equals(actual, v) for v in _as_list(operator, operand)):
                return False
        elif operator == "$nin":
            if any(_equals(actual, v) for v in _as_list(operator, operand)):
                return False
        elif operator == "$ne":
            if _equals(actual, operand):
                return False
        elif operator == "$gt":
            if not _compare(actual, operand, lambda a, b: a > b):
                return False
        elif operator == "$gte":
            if not _compare(actual, operand, lambda a, b: a >= b):
                return False
        elif operator == "$lt":
            if not _compare(actual, operand, lambda a, b: a < b):
                return False
        elif operator == "$lte":
            if not _compare(actual, operand, lambda a, b: a <= b):
                return False
        elif operator == "$exists":
            if (actual is not _MISSING) != bool(operand):
                return False
        else:
            raise QueryError(f"Unsupported operator: {operator}")
    return True


def _is_operator_spec(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and bool(value)
        and all(isinstance(k, str) and k.startswith("$") for k in value)
    )


def matches(document: Mapping[str, Any], filter_: Optional[Mapping[str, Any]]) -> bool:
    """Return True if ``document`` satisfies ``filter_`` (None matches all)."""
    if not filter_:
        return True
    if not isinstance(filter_, Mapping):
        raise QueryError("Filter must be an object")

    for key, condition in filter_.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in _as_list(key, condition)):
                return False
        elif key == "$or":
            if not any(matches(document, sub) for sub in _as_list(key, condition)):
                return False
        elif key.startswith("$"):
            raise QueryError(f"Unsupported operator: {key}")
        else:
            actual = _lookup(document, key)
            if _is_operator_spec(condition):
                if not _match_operators(actual, condition):
                    return False
            elif not _equals(actual, condition):
                return False
    return True


def project(document: Document, projection: Optional[Mapping[str, Any]]) -> Document:
    """Apply an include or exclude projection to a document copy."""
    if not projection:
        return dict(document)
    if not isinstance(projection, Mapping):
        raise QueryError("Projection must be an object")

    flags = {field: bool(flag) for field, flag in projection.items()}
    non_id = {field: flag for field, flag in flags.items() if field != "_id"}
    if len(set(non_id.values())) > 1:
        raise QueryError("Projection cannot mix inclusion and exclusion")

    including = bool(non_id) and next(iter(non_id.values()))
    if including:
        result = {field: document[field] for field in non_id if field in document}
        if flags.get("_id", True) and "_id" in document:
            result["_id"] = document["_id"]
        return result

    return {
        field: value
        for field, value in document.items()
        if flags.get(field, True)
    }


def sort_documents(
    documents: Iterable[Document],
    sort: Optional[Mapping[str, Any]],
) -> List[Document]:
    """Sort documents by one or more fields; missing values sort first."""
    result = list(documents)
    if not sort:
        return result
    if not isinstance(sort, Mapping):
        raise QueryError("Sort must be an object")

    # Stable sort, least significant key first
    for field, direction in reversed(list(sort.items())):
        if direction not in (1, -1):
            raise QueryError(f"Sort direction for '{field}' must be 1 or -1")

        def key(doc: Document, field: str = field):
            value = _lookup(doc, field)
            if value is _MISSING or value is None:
                return (0, 0)
            return (1, value)

        try:
            result.sort(key=key, reverse=direction == -1)
        except TypeError as e:
            raise QueryError(f"Cannot sort on '{field}': mixed value types") from e
    return result


def run_query(
    documents: Iterable[Document],
    filter_: Optional[Mapping[str, Any]] = None,
    projection: Optional[Mapping[str, Any]] = None,
    sort: Optional[Mapping[str, Any]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Document]:
    """Filter, sort, page and project a document sequence."""
    if skip < 0:
        raise QueryError("skip must be non-negative")
    if limit is not None and limit < 0:
        raise QueryError("limit must be non-negative")

    selected = [doc for doc in documents if matches(doc, filter_)]
    selected = sort_documents(selected, sort)
    # limit 0 means no limit
    end = None if not limit else skip + limit
    return [project(doc, projection) for doc in selected[skip:end]]
