"""SQL entity store on SQLAlchemy async ORM.

Each document is one row holding a JSON body. Every store method runs in
its own transaction and touches a single row, which gives the same
per-document atomicity as the in-memory store. Filters are evaluated in
Python over the rows of one collection.
"""

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from sqlalchemy import Column, DateTime, JSON, String, delete as sa_delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from taskboard.persistence.models import ID, Collection
from taskboard.persistence.query import Document, matches, run_query
from taskboard.persistence.store import DuplicateIdError, add_values, pull_values

logger = logging.getLogger(__name__)

Base = declarative_base()


class EntityDocument(Base):
    """One stored document."""

    __tablename__ = "entity_documents"

    collection = Column(String(32), primary_key=True)
    id = Column(String(64), primary_key=True)
    body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SqlEntityStore:
    """SQLAlchemy implementation of EntityStore."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ):
        """
        Initialize store.

        Args:
            session_factory: Callable that returns an AsyncSession
            engine: Engine to dispose on close (when the store owns it)
        """
        self._session_factory = session_factory
        self._engine = engine

    async def init_schema(self) -> None:
        """Create the documents table if missing."""
        if self._engine is None:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Entity store schema ready")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    @staticmethod
    def _row_query(collection: Collection, record_id: str):
        return (
            select(EntityDocument)
            .where(
                EntityDocument.collection == Collection(collection).value,
                EntityDocument.id == record_id,
            )
            .with_for_update()
        )

    async def _rows(self, session: AsyncSession, collection: Collection) -> List[EntityDocument]:
        result = await session.execute(
            select(EntityDocument).where(
                EntityDocument.collection == Collection(collection).value
            )
        )
        return list(result.scalars().all())

    async def get(self, collection: Collection, record_id: str) -> Optional[Document]:
        async with self._session_factory() as session:
            row = await session.get(EntityDocument, (Collection(collection).value, record_id))
            return dict(row.body) if row is not None else None

    async def find(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        async with self._session_factory() as session:
            rows = await self._rows(session, collection)
        return run_query(
            (dict(row.body) for row in rows),
            filter_=filter_,
            projection=projection,
            sort=sort,
            skip=skip,
            limit=limit,
        )

    async def insert(self, collection: Collection, document: Document) -> Document:
        async with self._session_factory() as session:
            async with session.begin():
                key = (Collection(collection).value, document[ID])
                if await session.get(EntityDocument, key) is not None:
                    raise DuplicateIdError(f"Duplicate id in {key[0]}: {key[1]}")
                session.add(EntityDocument(collection=key[0], id=key[1], body=dict(document)))
        return dict(document)

    async def update_fields(
        self,
        collection: Collection,
        record_id: str,
        fields: Mapping[str, Any],
        where: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Document]:
        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(self._row_query(collection, record_id))).scalar_one_or_none()
                if row is None or not matches(row.body, where):
                    return None
                body = {**row.body, **fields}
                row.body = body
        return dict(body)

    async def _mutate_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
        combine: Callable[[Iterable[Any], Iterable[Any]], List[Any]],
    ) -> bool:
        values = list(values)
        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(self._row_query(collection, record_id))).scalar_one_or_none()
                if row is None:
                    return False
                row.body = {**row.body, field: combine(row.body.get(field) or [], values)}
        return True

    async def add_to_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        return await self._mutate_set(collection, record_id, field, values, add_values)

    async def pull_from_set(
        self,
        collection: Collection,
        record_id: str,
        field: str,
        values: Iterable[Any],
    ) -> bool:
        return await self._mutate_set(collection, record_id, field, values, pull_values)

    async def delete(self, collection: Collection, record_id: str) -> Optional[Document]:
        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(self._row_query(collection, record_id))).scalar_one_or_none()
                if row is None:
                    return None
                body = dict(row.body)
                await session.execute(
                    sa_delete(EntityDocument).where(
                        EntityDocument.collection == Collection(collection).value,
                        EntityDocument.id == record_id,
                    )
                )
        return body

    async def count(
        self,
        collection: Collection,
        filter_: Optional[Mapping[str, Any]] = None,
    ) -> int:
        async with self._session_factory() as session:
            rows = await self._rows(session, collection)
        return sum(1 for row in rows if matches(row.body, filter_))


def create_sql_store(database_url: str, echo: bool = False) -> SqlEntityStore:
    """Build a store that owns its engine."""
    engine = create_async_engine(database_url, echo=echo)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return SqlEntityStore(session_factory, engine=engine)
