"""
Local directory of the Google calendars each token can reach.
"""

import logging
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cabinet_portal.core.google_calendar import GoogleCalendarClient
from cabinet_portal.models import OAuthToken, RemoteCalendar

logger = logging.getLogger(__name__)


class CalendarDirectory:
    """Entries are upserted on (token, calendar id) and deactivated, never deleted."""

    async def get(
        self,
        db: AsyncSession,
        entry_id: Union[str, UUID],
    ) -> Optional[RemoteCalendar]:
        stmt = (
            select(RemoteCalendar)
            .options(selectinload(RemoteCalendar.token))
            .where(RemoteCalendar.id == UUID(str(entry_id)))
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        token_id: UUID,
        calendar_id: str,
        name: str,
        color: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> RemoteCalendar:
        """Create or update; the active flag only changes when given."""
        stmt = select(RemoteCalendar).where(
            RemoteCalendar.token_id == token_id,
            RemoteCalendar.calendar_id == calendar_id,
        )
        result = await db.execute(stmt)
        entry = result.scalar_one_or_none()

        if entry is None:
            entry = RemoteCalendar(
                token_id=token_id,
                calendar_id=calendar_id,
                name=name,
                color=color,
                is_active=bool(is_active),
            )
            db.add(entry)
        else:
            entry.name = name
            if color is not None:
                entry.color = color
            if is_active is not None:
                entry.is_active = is_active

        await db.commit()
        return entry

    async def set_active(
        self,
        db: AsyncSession,
        entry_id: Union[str, UUID],
        active: bool,
    ) -> Optional[RemoteCalendar]:
        entry = await self.get(db, entry_id)
        if entry is None:
            return None
        entry.is_active = active
        await db.commit()
        return entry

    async def activate(self, db: AsyncSession, entry_id: Union[str, UUID]) -> Optional[RemoteCalendar]:
        return await self.set_active(db, entry_id, True)

    async def deactivate(self, db: AsyncSession, entry_id: Union[str, UUID]) -> Optional[RemoteCalendar]:
        return await self.set_active(db, entry_id, False)

    async def list_for_token(self, db: AsyncSession, token_id: UUID) -> list[RemoteCalendar]:
        stmt = (
            select(RemoteCalendar)
            .where(RemoteCalendar.token_id == token_id)
            .order_by(RemoteCalendar.name)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, db: AsyncSession) -> list[RemoteCalendar]:
        stmt = select(RemoteCalendar).order_by(RemoteCalendar.name)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_active(self, db: AsyncSession) -> list[RemoteCalendar]:
        stmt = (
            select(RemoteCalendar)
            .options(selectinload(RemoteCalendar.token))
            .where(RemoteCalendar.is_active.is_(True))
            .order_by(RemoteCalendar.name)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def refresh_from_remote(
        self,
        db: AsyncSession,
        token: OAuthToken,
        client: GoogleCalendarClient,
    ) -> list[RemoteCalendar]:
        """
        Mirror the account's calendar list.

        New entries start active only for the account's primary calendar;
        existing entries keep their flag.
        """
        known = {c.calendar_id for c in await self.list_for_token(db, token.id)}
        entries = []
        for remote in await client.list_calendars():
            entries.append(
                await self.upsert(
                    db,
                    token.id,
                    remote.id,
                    remote.summary or remote.id,
                    color=remote.background_color,
                    is_active=None if remote.id in known else remote.primary,
                )
            )
        logger.info(f"Refreshed {len(entries)} calendars for {token.account_email}")
        return entries
