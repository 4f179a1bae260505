"""
SQL implementations of the read-only stores the pipeline consumes.

Each store opens a short-lived session per call; none of them write.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.db.engine import session_scope
from flowwatch.db.models import LocationRow, NotificationPreferenceRow, PushTokenRow
from flowwatch.schemas import LocationInfo


class _SqlStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory


class SqlPreferenceStore(_SqlStore):
    async def list_enabled(self) -> list[dict]:
        stmt = select(NotificationPreferenceRow).where(
            NotificationPreferenceRow.enabled.is_(True)
        )
        async with session_scope(self.session_factory) as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [row.to_record() for row in rows]

    async def get(self, user_id: str) -> Optional[dict]:
        async with session_scope(self.session_factory) as db:
            row = await db.get(NotificationPreferenceRow, user_id)
        return row.to_record() if row is not None else None


class SqlLocationDirectory(_SqlStore):
    async def get(self, location_id: str) -> Optional[LocationInfo]:
        async with session_scope(self.session_factory) as db:
            row = await db.get(LocationRow, location_id)
        if row is None:
            return None
        return LocationInfo(location_id=row.location_id, name=row.name, reach_id=row.reach_id)


class SqlPushTokenStore(_SqlStore):
    async def get_token(self, user_id: str) -> Optional[str]:
        async with session_scope(self.session_factory) as db:
            row = await db.get(PushTokenRow, user_id)
        if row is None or not row.token:
            return None
        return row.token
