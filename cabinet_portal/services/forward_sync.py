"""
Forward sync: push local documents and events to OneDrive and Google Calendar.

Every entry point returns a result model. Provider failures are logged and
reported, never raised, so the mutation that triggered the push stands.
"""

import logging
import time
from datetime import timedelta
from typing import Optional, Union
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.clock import as_utc, utcnow
from cabinet_portal.core.onedrive import DriveItem
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import (
    CalendarSyncMode,
    Document,
    DocumentLocation,
    Dossier,
    Event,
    EventLink,
    IntegrationType,
    RemoteCalendar,
    SyncMode,
    Uploader,
)
from cabinet_portal.schemas.sync import (
    CalendarSyncResult,
    DocumentDownload,
    DocumentVerification,
    DownloadUrlResult,
    PushResult,
)
from cabinet_portal.services.calendar_directory import CalendarDirectory
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.errors import IntegrationError
from cabinet_portal.services.folder_provisioner import FolderProvisioner
from cabinet_portal.services.naming import file_extension, guess_document_type
from cabinet_portal.services.sync_log_service import SyncLogService

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (ProviderAPIError, IntegrationError, httpx.HTTPError)

# Google refuses edits of these event types through the API
RESTRICTED_EVENT_TYPES = ("birthday", "focusTime", "outOfOffice", "workingLocation")


def apply_drive_item(document: Document, item: DriveItem) -> None:
    """Copy the remote file's identity and metadata onto the record."""
    document.remote_file_id = item.id
    document.web_url = item.web_url
    document.download_url = item.download_url
    document.size_bytes = item.size
    document.mime_type = item.mime_type or document.mime_type
    document.remote_modified_at = item.last_modified


def _is_event_type_restriction(error: ProviderAPIError) -> bool:
    body = error.body or ""
    return error.status_code == 400 and (
        "eventTypeRestriction" in body
        or any(kind in body for kind in RESTRICTED_EVENT_TYPES)
    )


class ForwardSyncService:
    """
    Pushes local changes to the providers.

    Handles:
    - Document uploads into the CABINET or CLIENT sub-folder
    - Moving documents between sub-folders
    - Fetching document bytes and fresh download links
    - Creating, updating and deleting Google events
    - Skipping mutation pushes for accounts in manual sync mode
    """

    def __init__(
        self,
        connector: Optional[IntegrationConnector] = None,
        provisioner: Optional[FolderProvisioner] = None,
        directory: Optional[CalendarDirectory] = None,
        sync_log: Optional[SyncLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.connector = connector or IntegrationConnector()
        self.sync_log = sync_log or SyncLogService(self.settings)
        self.provisioner = provisioner or FolderProvisioner(
            self.connector, self.sync_log, self.settings
        )
        self.directory = directory or CalendarDirectory()

    # ============== Documents ==============

    def _target_folder_id(self, dossier: Dossier, location: DocumentLocation) -> Optional[str]:
        if location == DocumentLocation.CLIENT:
            return dossier.onedrive_client_folder_id
        return dossier.onedrive_cabinet_folder_id

    async def _ready_dossier(
        self,
        db: AsyncSession,
        dossier_id: UUID,
    ) -> tuple[Optional[Dossier], Optional[str]]:
        """Provision the case folders if needed; return (dossier, error)."""
        folders = await self.provisioner.ensure_folders(db, dossier_id)
        if not folders.success:
            return None, folders.error
        dossier = await db.get(Dossier, dossier_id)
        return dossier, None

    async def upload_document(
        self,
        db: AsyncSession,
        dossier_id: Union[str, UUID],
        filename: str,
        content: bytes,
        location: DocumentLocation,
        uploader: Uploader,
        mime_type: Optional[str] = None,
        document_type: Optional[str] = None,
        is_sensitive: bool = False,
    ) -> PushResult:
        """
        Upload a new file and create its document record.

        The record only exists once OneDrive holds the bytes.
        """
        dossier, error = await self._ready_dossier(db, UUID(str(dossier_id)))
        if dossier is None:
            return PushResult(success=False, error=error)

        extension = file_extension(filename)
        try:
            async with self.connector.onedrive(db) as drive:
                item = await drive.upload_file(
                    self._target_folder_id(dossier, location),
                    filename,
                    content,
                    mime_type,
                )
        except REMOTE_ERRORS as e:
            logger.error(f"Upload of {filename!r} to {dossier.reference} failed: {e}")
            return PushResult(success=False, error=str(e))

        document = Document(
            dossier_id=dossier.id,
            name=item.name,
            original_name=filename,
            document_type=document_type or guess_document_type(filename),
            extension=extension,
            mime_type=mime_type,
            location=location,
            uploader=uploader,
            is_sensitive=is_sensitive,
            visible_to_client=location == DocumentLocation.CLIENT,
        )
        apply_drive_item(document, item)
        db.add(document)
        await db.commit()

        return PushResult(success=True, remote_id=item.id, document_id=document.id)

    async def push_document(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
        content: bytes,
    ) -> PushResult:
        """Upload the bytes of an existing record that has no remote copy yet."""
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return PushResult(success=False, error="Document not found")
        if document.remote_file_id:
            return PushResult(
                success=True,
                skipped=True,
                remote_id=document.remote_file_id,
                document_id=document.id,
            )

        dossier, error = await self._ready_dossier(db, document.dossier_id)
        if dossier is None:
            return PushResult(success=False, error=error, document_id=document.id)

        try:
            async with self.connector.onedrive(db) as drive:
                item = await drive.upload_file(
                    self._target_folder_id(dossier, document.location),
                    document.original_name,
                    content,
                    document.mime_type,
                )
        except REMOTE_ERRORS as e:
            logger.error(f"Upload of document {document.id} failed: {e}")
            return PushResult(success=False, error=str(e), document_id=document.id)

        apply_drive_item(document, item)
        await db.commit()
        return PushResult(success=True, remote_id=item.id, document_id=document.id)

    async def move_document(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
        location: DocumentLocation,
    ) -> PushResult:
        """Switch a document between the CABINET and CLIENT sub-folders."""
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return PushResult(success=False, error="Document not found")
        if document.location == location:
            return PushResult(success=True, skipped=True, document_id=document.id)

        if document.remote_file_id:
            dossier, error = await self._ready_dossier(db, document.dossier_id)
            if dossier is None:
                return PushResult(success=False, error=error, document_id=document.id)
            try:
                async with self.connector.onedrive(db) as drive:
                    item = await drive.move_item(
                        document.remote_file_id,
                        self._target_folder_id(dossier, location),
                    )
            except REMOTE_ERRORS as e:
                logger.error(f"Move of document {document.id} failed: {e}")
                return PushResult(success=False, error=str(e), document_id=document.id)
            apply_drive_item(document, item)

        document.location = location
        document.visible_to_client = location == DocumentLocation.CLIENT
        await db.commit()
        return PushResult(success=True, remote_id=document.remote_file_id, document_id=document.id)

    async def delete_remote_document(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
    ) -> PushResult:
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return PushResult(success=False, error="Document not found")
        if not document.remote_file_id:
            return PushResult(success=True, skipped=True, document_id=document.id)

        try:
            async with self.connector.onedrive(db) as drive:
                await drive.delete_item(document.remote_file_id)
        except REMOTE_ERRORS as e:
            logger.error(f"Remote delete of document {document.id} failed: {e}")
            return PushResult(success=False, error=str(e), document_id=document.id)

        document.clear_remote()
        await db.commit()
        return PushResult(success=True, document_id=document.id)

    # ============== Document access ==============

    async def refresh_download_url(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
    ) -> DownloadUrlResult:
        """
        Ask OneDrive for a new pre-authenticated link and store it.

        Graph download links expire after about an hour, so the stored one
        is only a hint.
        """
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return DownloadUrlResult(success=False, error="Document not found")
        if not document.is_synced:
            return DownloadUrlResult(
                success=False,
                document_id=document.id,
                error="Document not synced to OneDrive",
            )

        try:
            async with self.connector.onedrive(db) as drive:
                item = await drive.get_item(document.remote_file_id)
        except REMOTE_ERRORS as e:
            logger.error(f"Download link refresh for document {document.id} failed: {e}")
            return DownloadUrlResult(success=False, document_id=document.id, error=str(e))

        if item is None:
            return DownloadUrlResult(
                success=False,
                document_id=document.id,
                error="File not found on OneDrive",
            )
        if not item.download_url:
            return DownloadUrlResult(
                success=False,
                document_id=document.id,
                error="No download URL available",
            )

        document.download_url = item.download_url
        await db.commit()
        return DownloadUrlResult(success=True, document_id=document.id, download_url=item.download_url)

    async def download_document(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
    ) -> DocumentDownload:
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return DocumentDownload(success=False, error="Document not found")
        if not document.is_synced:
            return DocumentDownload(success=False, error="Document not synced to OneDrive")

        try:
            async with self.connector.onedrive(db) as drive:
                content = await drive.download_file(document.remote_file_id)
        except REMOTE_ERRORS as e:
            logger.error(f"Download of document {document.id} failed: {e}")
            return DocumentDownload(success=False, error=str(e))

        return DocumentDownload(
            success=True,
            content=content,
            filename=document.original_name,
            mime_type=document.mime_type or "application/octet-stream",
        )

    async def verify_document(
        self,
        db: AsyncSession,
        document_id: Union[str, UUID],
    ) -> DocumentVerification:
        """Check that the record exists and its OneDrive file is still there."""
        document = await db.get(Document, UUID(str(document_id)))
        if document is None:
            return DocumentVerification(exists=False, synced=False)
        if not document.is_synced:
            return DocumentVerification(document_id=document.id, exists=True, synced=False)

        try:
            async with self.connector.onedrive(db) as drive:
                item = await drive.get_item(document.remote_file_id)
        except REMOTE_ERRORS as e:
            logger.warning(f"Could not verify document {document.id} on OneDrive: {e}")
            return DocumentVerification(document_id=document.id, exists=True, synced=False)

        return DocumentVerification(document_id=document.id, exists=True, synced=item is not None)

    # ============== Events ==============

    def build_event_body(self, event: Event) -> dict:
        """Google event payload for a portal event."""
        tz_name = self.settings.default_timezone
        tz = ZoneInfo(tz_name)
        location = " - ".join(p for p in (event.place, event.room, event.address) if p)

        body: dict = {
            "summary": event.title,
            "description": event.description or "",
            "extendedProperties": {
                "private": {
                    "portalEventId": str(event.id),
                    "type": event.event_type or "other",
                    "dossierId": str(event.dossier_id) if event.link == EventLink.CASE else "",
                }
            },
        }
        if location:
            body["location"] = location

        start = as_utc(event.starts_at).astimezone(tz)
        if event.all_day:
            last_day = as_utc(event.ends_at).astimezone(tz) if event.ends_at else start
            # Google all-day end dates are exclusive
            body["start"] = {"date": start.date().isoformat()}
            body["end"] = {"date": (last_day.date() + timedelta(days=1)).isoformat()}
        else:
            end = as_utc(event.ends_at).astimezone(tz) if event.ends_at else start + timedelta(hours=1)
            body["start"] = {"dateTime": start.isoformat(), "timeZone": tz_name}
            body["end"] = {"dateTime": end.isoformat(), "timeZone": tz_name}
        return body

    async def _load_event(self, db: AsyncSession, event_id: Union[str, UUID]) -> Optional[Event]:
        stmt = (
            select(Event)
            .options(selectinload(Event.remote_calendar).selectinload(RemoteCalendar.token))
            .where(Event.id == UUID(str(event_id)))
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _resolve_calendar(
        self,
        db: AsyncSession,
        event: Event,
    ) -> Optional[tuple[Optional[RemoteCalendar], str, Optional[UUID]]]:
        """
        Pick (directory entry, remote calendar id, operator) for an event.

        The event's own calendar wins; otherwise the first active calendar of
        the shared token, then that account's primary calendar.
        """
        if event.remote_calendar is not None:
            calendar = event.remote_calendar
            return calendar, calendar.calendar_id, calendar.token.operator_id

        shared = await self.connector.token_store.get(db, IntegrationType.GOOGLE_CALENDAR)
        if shared is None:
            return None
        active = [c for c in await self.directory.list_for_token(db, shared.id) if c.is_active]
        if active:
            return active[0], active[0].calendar_id, None
        return None, "primary", None

    async def push_event(self, db: AsyncSession, event_id: Union[str, UUID]) -> PushResult:
        """
        Create or update the remote copy of an event.

        On failure the remote id is left as it was, so the next trigger
        retries the same operation.
        """
        event = await self._load_event(db, event_id)
        if event is None:
            return PushResult(success=False, error="Event not found")
        if not event.sync_enabled:
            return PushResult(success=True, skipped=True)

        target = await self._resolve_calendar(db, event)
        if target is None:
            return PushResult(success=False, error="No Google Calendar account connected")
        calendar, calendar_id, operator_id = target

        body = self.build_event_body(event)
        try:
            async with self.connector.google_calendar(db, operator_id) as client:
                if event.remote_event_id:
                    try:
                        data = await client.update_event(calendar_id, event.remote_event_id, body)
                    except ProviderAPIError as e:
                        if _is_event_type_restriction(e):
                            logger.info(f"Event {event.id} has a restricted type, update skipped")
                            return PushResult(
                                success=True,
                                skipped=True,
                                remote_id=event.remote_event_id,
                            )
                        if e.status_code not in (404, 410):
                            raise
                        # Deleted on Google's side: push it again
                        data = await client.create_event(calendar_id, body)
                else:
                    data = await client.create_event(calendar_id, body)
        except REMOTE_ERRORS as e:
            logger.error(f"Push of event {event.id} to Google Calendar failed: {e}")
            return PushResult(success=False, error=str(e), remote_id=event.remote_event_id)

        event.remote_event_id = data["id"]
        if calendar is not None:
            event.remote_calendar_id = calendar.id
        event.remote_last_sync = utcnow()
        await db.commit()
        return PushResult(success=True, remote_id=event.remote_event_id)

    async def push_event_on_change(self, db: AsyncSession, event_id: Union[str, UUID]) -> PushResult:
        """
        Push after an event was created or updated in the portal.

        An account in manual sync mode is left alone; its events go out with
        the next explicit calendar sync.
        """
        event = await self._load_event(db, event_id)
        if event is None:
            return PushResult(success=False, error="Event not found")

        operator_id = event.remote_calendar.token.operator_id if event.remote_calendar else None
        mode = await self.connector.token_store.get_sync_mode(
            db, IntegrationType.GOOGLE_CALENDAR, operator_id
        )
        if mode == CalendarSyncMode.MANUAL:
            logger.info(f"Event {event.id} not pushed, calendar sync mode is manual")
            return PushResult(success=True, skipped=True, remote_id=event.remote_event_id)
        return await self.push_event(db, event.id)

    async def remove_event(self, db: AsyncSession, event_id: Union[str, UUID]) -> PushResult:
        """Delete the remote copy; call before deleting the local event."""
        event = await self._load_event(db, event_id)
        if event is None:
            return PushResult(success=False, error="Event not found")
        if not event.remote_event_id:
            return PushResult(success=True, skipped=True)

        target = await self._resolve_calendar(db, event)
        if target is None:
            return PushResult(success=False, error="No Google Calendar account connected")
        _, calendar_id, operator_id = target

        try:
            async with self.connector.google_calendar(db, operator_id) as client:
                await client.delete_event(calendar_id, event.remote_event_id)
        except REMOTE_ERRORS as e:
            logger.error(f"Remote delete of event {event.id} failed: {e}")
            return PushResult(success=False, error=str(e), remote_id=event.remote_event_id)

        event.remote_event_id = None
        event.remote_last_sync = utcnow()
        await db.commit()
        return PushResult(success=True)

    async def push_pending_events(
        self,
        db: AsyncSession,
        mode: SyncMode = SyncMode.MANUAL,
        triggered_by: Optional[Union[str, UUID]] = None,
        only_pending: bool = False,
    ) -> CalendarSyncResult:
        """Push every sync-enabled event and log the run."""
        result = CalendarSyncResult()
        if not self.settings.google_calendar_configured:
            result.skipped_reason = "not_configured"
        elif not await self.connector.token_store.list_tokens(db, IntegrationType.GOOGLE_CALENDAR):
            result.skipped_reason = "no_accounts"
        if result.skipped_reason:
            await self.sync_log.record_skipped(
                db, IntegrationType.GOOGLE_CALENDAR, mode, result.skipped_reason, triggered_by
            )
            result.finish(f"Calendar push skipped: {result.skipped_reason}")
            return result

        started = time.monotonic()
        stmt = select(Event).where(Event.sync_enabled.is_(True)).order_by(Event.starts_at)
        events = list((await db.execute(stmt)).scalars().all())
        if only_pending:
            events = [e for e in events if e.pending_push]

        for event in events:
            known = event.remote_event_id is not None
            result.processed += 1
            pushed = await self.push_event(db, event.id)
            if not pushed.success:
                result.add_error(f"{event.title}: {pushed.error}")
            elif pushed.skipped:
                continue
            elif known:
                result.updated += 1
            else:
                result.created += 1

        result.finish(
            f"Calendar push done: {result.created} created, {result.updated} updated, "
            f"{result.errors} errors"
        )
        await self.sync_log.record(
            db,
            IntegrationType.GOOGLE_CALENDAR,
            mode,
            result,
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=triggered_by,
            extra_details={"operation": "push"},
        )
        return result
