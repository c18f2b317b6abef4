"""
Manual sync triggers.
"""

from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.api.deps import get_services
from cabinet_portal.database import get_db
from cabinet_portal.models import Document, Dossier, Event, SyncMode
from cabinet_portal.schemas.sync import (
    CalendarSyncSummary,
    DocumentVerification,
    DossierSyncResult,
    DownloadUrlResult,
    FolderResult,
    ProvisioningReport,
    PushResult,
    ReverseSyncResult,
    SyncTriggerRequest,
)
from cabinet_portal.services.registry import ServiceRegistry

router = APIRouter(prefix="/sync", tags=["Sync"])


def _triggered_by(request: Optional[SyncTriggerRequest]) -> Optional[UUID]:
    return request.triggered_by if request else None


async def _require_dossier(db: AsyncSession, dossier_id: UUID) -> Dossier:
    dossier = await db.get(Dossier, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=404, detail="Dossier not found")
    return dossier


async def _require_document(db: AsyncSession, document_id: UUID) -> Document:
    document = await db.get(Document, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.post("/onedrive/reverse", response_model=ReverseSyncResult)
async def reverse_sync(
    request: Optional[SyncTriggerRequest] = None,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """
    Import the OneDrive client tree.

    Unmatched client and case folders are listed for manual triage.
    """
    return await services.reverse_sync.reverse_sync_from_onedrive(
        db, SyncMode.MANUAL, _triggered_by(request)
    )


@router.post("/onedrive/folders", response_model=ProvisioningReport)
async def provision_folders(
    request: Optional[SyncTriggerRequest] = None,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Create the missing folders of every case."""
    return await services.provisioner.provision_missing(
        db, SyncMode.MANUAL, _triggered_by(request)
    )


@router.post("/onedrive/dossiers/{dossier_id}/folders", response_model=FolderResult)
async def ensure_dossier_folders(
    dossier_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    await _require_dossier(db, dossier_id)
    return await services.provisioner.ensure_folders(db, dossier_id)


@router.post("/onedrive/dossiers/{dossier_id}", response_model=DossierSyncResult)
async def sync_dossier(
    dossier_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Reconcile one case's documents with its CABINET and CLIENT folders."""
    await _require_dossier(db, dossier_id)
    return await services.reverse_sync.sync_dossier(db, dossier_id)


@router.post("/onedrive/documents/{document_id}/download-url", response_model=DownloadUrlResult)
async def refresh_download_url(
    document_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Fetch a fresh pre-authenticated download link from OneDrive."""
    await _require_document(db, document_id)
    return await services.forward_sync.refresh_download_url(db, document_id)


@router.get("/onedrive/documents/{document_id}/content")
async def download_document(
    document_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Stream a document's bytes through the portal."""
    document = await _require_document(db, document_id)
    if not document.is_synced:
        raise HTTPException(status_code=409, detail="Document not synced to OneDrive")
    download = await services.forward_sync.download_document(db, document_id)
    if not download.success:
        raise HTTPException(status_code=502, detail=download.error)

    return Response(
        content=download.content,
        media_type=download.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(download.filename)}",
        },
    )


@router.get("/onedrive/documents/{document_id}/verify", response_model=DocumentVerification)
async def verify_document(
    document_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    return await services.forward_sync.verify_document(db, document_id)


@router.post("/google-calendar", response_model=CalendarSyncSummary)
async def sync_google_calendar(
    request: Optional[SyncTriggerRequest] = None,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Push portal events, then import events of the active calendars."""
    triggered_by = _triggered_by(request)
    push = await services.forward_sync.push_pending_events(db, SyncMode.MANUAL, triggered_by)
    pull = await services.calendar_import.pull_from_active_calendars(
        db, SyncMode.MANUAL, triggered_by
    )
    return CalendarSyncSummary(success=push.success and pull.success, push=push, pull=pull)


@router.post("/events/{event_id}/push", response_model=PushResult)
async def push_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    if await db.get(Event, event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return await services.forward_sync.push_event(db, event_id)
