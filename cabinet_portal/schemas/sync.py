"""
Sync run results and trigger payloads.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from cabinet_portal.models.enums import SyncOutcome


class SyncReport(BaseModel):
    """Counters and notes collected during one sync run."""

    success: bool = True
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    message: str = ""
    details: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> int:
        return self.created + self.updated + self.deleted

    @property
    def outcome(self) -> SyncOutcome:
        return SyncOutcome.from_counts(self.errors, self.changed)

    def add_error(self, detail: str) -> None:
        self.errors += 1
        self.details.append(detail)

    def finish(self, message: str) -> None:
        self.success = self.errors == 0
        self.message = message


class ReverseSyncResult(SyncReport):
    """Outcome of scanning the OneDrive client tree."""

    linked_dossiers: int = 0
    unmatched_clients: list[str] = Field(default_factory=list)
    unmatched_dossiers: list[str] = Field(default_factory=list)


class DossierSyncResult(SyncReport):
    dossier_id: Optional[UUID] = None
    reference: Optional[str] = None


class CalendarSyncResult(SyncReport):
    skipped_reason: Optional[str] = None  # not_configured, no_accounts, no_calendars


class FolderResult(BaseModel):
    """Outcome of ensuring a case's OneDrive folders."""

    success: bool
    dossier_id: UUID
    folder_path: Optional[str] = None
    error: Optional[str] = None
    folders_created: int = 0


class ProvisioningReport(SyncReport):
    results: list[FolderResult] = Field(default_factory=list)


class PushResult(BaseModel):
    """Outcome of pushing one document or event to its provider."""

    success: bool
    skipped: bool = False
    remote_id: Optional[str] = None
    document_id: Optional[UUID] = None
    error: Optional[str] = None


class DownloadUrlResult(BaseModel):
    success: bool
    document_id: Optional[UUID] = None
    download_url: Optional[str] = None
    error: Optional[str] = None


class DocumentDownload(BaseModel):
    """Bytes of a document fetched from OneDrive."""

    success: bool
    content: Optional[bytes] = None
    filename: Optional[str] = None
    mime_type: str = "application/octet-stream"
    error: Optional[str] = None


class DocumentVerification(BaseModel):
    """Whether the record exists and its OneDrive file is still there."""

    document_id: Optional[UUID] = None
    exists: bool
    synced: bool


class SyncTriggerRequest(BaseModel):
    """Body of manual sync triggers."""

    triggered_by: Optional[UUID] = Field(
        default=None,
        description="Operator who started the run",
    )


class CalendarSyncSummary(BaseModel):
    """Push of portal events followed by the import of remote ones."""

    success: bool
    push: CalendarSyncResult
    pull: CalendarSyncResult
