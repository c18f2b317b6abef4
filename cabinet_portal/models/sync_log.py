"""
Append-only sync run log.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Text, Integer, ForeignKey, DateTime, Index, event, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from cabinet_portal.core.clock import utcnow
from cabinet_portal.database import Base, JSONType
from cabinet_portal.models.enums import (
    IntegrationType,
    SyncMode,
    SyncOutcome,
    str_enum,
)


class ImmutableRecordError(Exception):
    """Raised when a persisted sync log entry is modified."""


class SyncLog(Base):
    """One row per sync run. Never updated after insert."""

    __tablename__ = "sync_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    sync_type: Mapped[IntegrationType] = mapped_column(
        str_enum(IntegrationType),
        nullable=False,
    )
    mode: Mapped[SyncMode] = mapped_column(str_enum(SyncMode), nullable=False)
    outcome: Mapped[SyncOutcome] = mapped_column(str_enum(SyncOutcome), nullable=False)

    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    items_created: Mapped[int] = mapped_column(Integer, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, default=0)
    items_deleted: Mapped[int] = mapped_column(Integer, default=0)
    items_errored: Mapped[int] = mapped_column(Integer, default=0)

    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    triggered_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("operators.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_sync_logs_type_created", "sync_type", "created_at"),
    )

    @property
    def formatted_duration(self) -> str:
        if self.duration_ms is None:
            return "-"
        if self.duration_ms < 1000:
            return f"{self.duration_ms}ms"
        seconds = self.duration_ms / 1000
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, rest = divmod(int(seconds), 60)
        return f"{minutes}m {rest}s"


@event.listens_for(SyncLog, "before_update")
def _reject_sync_log_update(mapper, connection, target: SyncLog) -> None:
    raise ImmutableRecordError(f"Sync log entry {target.id} is append-only")
