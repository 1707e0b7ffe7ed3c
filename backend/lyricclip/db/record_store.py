"""Keyed document persistence on top of SQLAlchemy.

Each record is a JSON payload addressed by (table, id). Every write runs in
its own transaction, so a crash never leaves a partially written record.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lyricclip.models.record import Record

logger = logging.getLogger(__name__)


class RecordStore:
    """Simple table/id keyed store: get, upsert, list, remove."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record payload, or None if absent."""
        async with self._session_maker() as session:
            row = await session.get(Record, (table, record_id))
            if row is None:
                return None
            return dict(row.payload)

    async def upsert(self, table: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace a record payload."""
        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(Record, (table, record_id))
                if row is None:
                    session.add(Record(table_name=table, record_id=record_id, payload=payload))
                else:
                    row.payload = payload
        return payload

    async def list(self, table: str) -> List[Dict[str, Any]]:
        """List all record payloads in a table, in insertion order."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(Record)
                .where(Record.table_name == table)
                .order_by(Record.created_at, Record.record_id)
            )
            return [dict(row.payload) for row in result.scalars().all()]

    async def remove(self, table: str, record_id: str) -> bool:
        """Remove a record. Returns False if it did not exist."""
        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(Record, (table, record_id))
                if row is None:
                    return False
                await session.delete(row)
        logger.debug(f"Removed {table}/{record_id}")
        return True
