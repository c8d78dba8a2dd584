"""Entity store protocol and in-memory implementation."""

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from taskboard.persistence.models import ID, Collection
from taskboard.persistence.query import Document, matches, run_query


class DuplicateIdError(Exception):
    """Inserted document reuses an existing ID."""
    pass


@runtime_checkable
class EntityStore(Protocol):
    """
    Protocol for keyed document storage.

    Every method is atomic for the single document it touches; nothing
    spans documents. ``add_to_set`` / ``pull_from_set`` are idempotent and
    report whether the document existed.
    """

    async def get(self, collection: Collection, record_id: str) -> Optional[Document]:
        """Get document by ID."""
        ...

    async def find(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """List documents matching a filter."""
        ...

    async def insert(self, collection: Collection, document: Document) -> Document:
        """Insert a new document."""
        ...

    async def update_fields(
        self,
        collection: Collection,
        record_id: str,
        fields: Mapping[str, Any],
        where: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Document]:
        """Set fields. None if missing or ``where`` does not match."""
        ...

    async def add_to_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        """Add values to an array field without duplicates."""
        ...

    async def pull_from_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        """Remove values from an array field."""
        ...

    async def delete(self, collection: Collection, record_id: str) -> Optional[Document]:
        """Delete a document. Returns the deleted document or None."""
        ...

    async def count(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Count documents matching a filter."""
        ...


def add_values(current: Iterable[Any], values: Iterable[Any]) -> List[Any]:
    """Set-union preserving existing order."""
    result = list(dict.fromkeys(current))
    for value in values:
        if value not in result:
            result.append(value)
    return result


def pull_values(current: Iterable[Any], values: Iterable[Any]) -> List[Any]:
    """Set-difference preserving existing order."""
    removed = set(values)
    return [value for value in dict.fromkeys(current) if value not in removed]


class InMemoryEntityStore:
    """
    In-memory entity store for testing and development.

    No method awaits while holding a document, so every operation is
    atomic with respect to other coroutines on the same event loop.
    Returned documents are copies.
    """

    def __init__(self):
        self._collections: Dict[Collection, Dict[str, Document]] = {
            c: {} for c in Collection
        }

    def _docs(self, collection: Collection) -> Dict[str, Document]:
        return self._collections[Collection(collection)]

    async def get(self, collection: Collection, record_id: str) -> Optional[Document]:
        doc = self._docs(collection).get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        docs = run_query(
            self._docs(collection).values(),
            filter_=filter_,
            projection=projection,
            sort=sort,
            skip=skip,
            limit=limit,
        )
        return copy.deepcopy(docs)

    async def insert(self, collection: Collection, document: Document) -> Document:
        docs = self._docs(collection)
        record_id = document[ID]
        if record_id in docs:
            raise DuplicateIdError(f"Duplicate id in {Collection(collection).value}: {record_id}")
        docs[record_id] = copy.deepcopy(document)
        return copy.deepcopy(document)

    async def update_fields(
        self,
        collection: Collection,
        record_id: str,
        fields: Mapping[str, Any],
        where: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Document]:
        doc = self._docs(collection).get(record_id)
        if doc is None or not matches(doc, where):
            return None
        doc.update(copy.deepcopy(dict(fields)))
        return copy.deepcopy(doc)

    async def add_to_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        doc = self._docs(collection).get(record_id)
        if doc is None:
            return False
        doc[field] = add_values(doc.get(field) or [], values)
        return True

    async def pull_from_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        doc = self._docs(collection).get(record_id)
        if doc is None:
            return False
        doc[field] = pull_values(doc.get(field) or [], values)
        return True

    async def delete(self, collection: Collection, record_id: str) -> Optional[Document]:
        return self._docs(collection).pop(record_id, None)

    async def count(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
    ) -> int:
        return sum(1 for doc in self._docs(collection).values() if matches(doc, filter_))

    async def close(self) -> None:
        """No resources to release."""
        return None

    def clear(self) -> None:
        """Clear all documents (for testing)."""
        for docs in self._collections.values():
            docs.clear()
