"""
Document model.
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, BigInteger, Boolean, ForeignKey, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, composite

from cabinet_portal.database import Base
from cabinet_portal.models.enums import (
    DocumentLocation,
    Uploader,
    UploaderKind,
    str_enum,
)

if TYPE_CHECKING:
    from cabinet_portal.models.dossier import Dossier


class Document(Base):
    """A file attached to a case, mirrored in the case's OneDrive sub-folder."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    dossier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("dossiers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_type: Mapped[str] = mapped_column(
        String(30),
        default="other",
    )  # procedure, invoice, photo, other

    remote_file_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    web_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    download_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    extension: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    remote_modified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    location: Mapped[DocumentLocation] = mapped_column(
        str_enum(DocumentLocation),
        nullable=False,
        default=DocumentLocation.CABINET,
    )
    uploader: Mapped[Uploader] = composite(
        mapped_column("uploaded_by_type", str_enum(UploaderKind), nullable=False),
        mapped_column("uploaded_by_id", UUID(as_uuid=True), nullable=True),
    )
    is_sensitive: Mapped[bool] = mapped_column(Boolean, default=False)
    visible_to_client: Mapped[bool] = mapped_column(Boolean, default=False)

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
    dossier: Mapped["Dossier"] = relationship("Dossier", back_populates="documents")

    @property
    def is_synced(self) -> bool:
        return self.remote_file_id is not None

    def clear_remote(self) -> None:
        """Forget the remote copy after it vanished from OneDrive."""
        self.remote_file_id = None
        self.web_url = None
        self.download_url = None
        self.remote_modified_at = None
