"""
Case (dossier) model with its OneDrive folder mirror.
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, ForeignKey, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet_portal.database import Base

if TYPE_CHECKING:
    from cabinet_portal.models.party import Client
    from cabinet_portal.models.document import Document


class Dossier(Base):
    """A client's legal matter. Documents and events attach to it."""

    __tablename__ = "dossiers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(30),
        default="open",
    )  # open, pending, closed, archived
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("operators.id", ondelete="SET NULL"),
        nullable=True,
    )

    # OneDrive mirror; sub-folders only exist once the root folder does
    onedrive_folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    onedrive_folder_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    onedrive_cabinet_folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    onedrive_client_folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    onedrive_last_sync: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
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
    client: Mapped["Client"] = relationship("Client", back_populates="dossiers")
    documents: Mapped[list["Document"]] = relationship(
        "Document",
        back_populates="dossier",
        cascade="all, delete-orphan",
    )

    @property
    def folders_provisioned(self) -> bool:
        return bool(
            self.onedrive_folder_id
            and self.onedrive_cabinet_folder_id
            and self.onedrive_client_folder_id
        )

    @property
    def folder_label(self) -> str:
        """Name of the case folder before sanitizing: "REF - Title"."""
        if self.title:
            return f"{self.reference} - {self.title}"
        return self.reference
