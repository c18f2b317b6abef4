"""
OAuth token model.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, ForeignKey, DateTime, Index, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet_portal.core.clock import as_utc, utcnow
from cabinet_portal.database import Base
from cabinet_portal.models.enums import CalendarSyncMode, IntegrationType, str_enum

if TYPE_CHECKING:
    from cabinet_portal.models.calendar import RemoteCalendar


class OAuthToken(Base):
    """Credentials for one external service, shared or owned by an operator."""

    __tablename__ = "oauth_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    service: Mapped[IntegrationType] = mapped_column(
        str_enum(IntegrationType),
        nullable=False,
    )
    operator_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("operators.id", ondelete="CASCADE"),
        nullable=True,
    )  # null = cabinet-level token

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    account_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scopes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sync_mode: Mapped[CalendarSyncMode] = mapped_column(
        str_enum(CalendarSyncMode),
        nullable=False,
        default=CalendarSyncMode.AUTO,
        server_default=CalendarSyncMode.AUTO.value,
    )

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
    calendars: Mapped[list["RemoteCalendar"]] = relationship(
        "RemoteCalendar",
        back_populates="token",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "idx_oauth_token_operator",
            "service",
            "operator_id",
            unique=True,
        ),
        # NULLs never collide in a plain unique index
        Index(
            "idx_oauth_token_shared",
            "service",
            unique=True,
            postgresql_where=text("operator_id IS NULL"),
            sqlite_where=text("operator_id IS NULL"),
        ),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return as_utc(self.expires_at) < (now or utcnow())

    def will_expire_soon(
        self,
        horizon: timedelta = timedelta(minutes=5),
        now: Optional[datetime] = None,
    ) -> bool:
        return as_utc(self.expires_at) < (now or utcnow()) + horizon

    @property
    def scope_list(self) -> list[str]:
        return self.scopes.split() if self.scopes else []
