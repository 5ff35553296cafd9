"""
SQL key/value store.

Backs the storage collaborator with one versioned table (chain_kv).
Conditional writes are a single guarded statement:

    UPDATE chain_kv SET value=:v, version=version+1
    WHERE key=:k AND version=:expected

A zero rowcount means another writer got there first. Create-only writes
rely on the primary key: a duplicate insert is a VersionConflict.

Works on PostgreSQL (asyncpg) and SQLite (aiosqlite).
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logibrew.core.exceptions import VersionConflict
from logibrew.db.models import ChainEntryModel
from logibrew.storage.base import KeyValueStore, StoredValue

logger = structlog.get_logger(__name__)


class SqlKeyValueStore(KeyValueStore):
    """Versioned key/value rows in a relational database."""

    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[StoredValue]:
        async with self._session_factory() as session:
            row = await session.get(ChainEntryModel, key)
            if row is None:
                return None
            return StoredValue(value=row.value, version=row.version)

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        if_match: Optional[int] = None,
    ) -> int:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if if_match == 0:
                        new_version = await self._insert(session, key, value)
                    elif if_match is None:
                        new_version = await self._upsert(session, key, value)
                    else:
                        new_version = await self._compare_and_set(session, key, value, if_match)
        except IntegrityError:
            raise VersionConflict(key, if_match, await self._current_version(key)) from None

        logger.debug("kv_put", backend=self.name, key=key, version=new_version)
        return new_version

    async def list(self, prefix: str = "") -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChainEntryModel.key)
                .where(ChainEntryModel.key.startswith(prefix, autoescape=True))
                .order_by(ChainEntryModel.key)
            )
            return list(result.scalars().all())

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    async def _insert(self, session: AsyncSession, key: str, value: dict[str, Any]) -> int:
        session.add(ChainEntryModel(key=key, value=value, version=1, updated_at=datetime.utcnow()))
        await session.flush()
        return 1

    async def _upsert(self, session: AsyncSession, key: str, value: dict[str, Any]) -> int:
        row = await session.get(ChainEntryModel, key)
        if row is None:
            return await self._insert(session, key, value)
        return await self._compare_and_set(session, key, value, row.version)

    async def _compare_and_set(
        self,
        session: AsyncSession,
        key: str,
        value: dict[str, Any],
        expected: int,
    ) -> int:
        result = await session.execute(
            update(ChainEntryModel)
            .where(
                ChainEntryModel.key == key,
                ChainEntryModel.version == expected,
            )
            .values(value=value, version=expected + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await session.scalar(
                select(ChainEntryModel.version).where(ChainEntryModel.key == key)
            )
            raise VersionConflict(key, expected, current)
        return expected + 1

    async def _current_version(self, key: str) -> Optional[int]:
        async with self._session_factory() as session:
            return await session.scalar(
                select(ChainEntryModel.version).where(ChainEntryModel.key == key)
            )
