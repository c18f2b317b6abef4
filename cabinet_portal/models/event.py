"""
Agenda event model.
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, ForeignKey, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet_portal.database import Base
from cabinet_portal.models.enums import EventLink

if TYPE_CHECKING:
    from cabinet_portal.models.dossier import Dossier
    from cabinet_portal.models.calendar import RemoteCalendar


class Event(Base):
    """A hearing, meeting or deadline, optionally mirrored in Google Calendar."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    dossier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("dossiers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    remote_calendar_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("remote_calendars.id", ondelete="SET NULL"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(
        String(30),
        default="other",
    )  # hearing, meeting, deadline, appointment, other
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    place: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    room: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    remote_event_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    remote_last_sync: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    dossier: Mapped[Optional["Dossier"]] = relationship("Dossier")
    remote_calendar: Mapped[Optional["RemoteCalendar"]] = relationship("RemoteCalendar")

    @property
    def link(self) -> EventLink:
        if self.dossier_id is not None:
            return EventLink.CASE
        if self.remote_calendar_id is not None:
            return EventLink.CALENDAR_IMPORT
        return EventLink.UNATTACHED

    @property
    def pending_push(self) -> bool:
        return bool(self.sync_enabled) and self.remote_event_id is None
