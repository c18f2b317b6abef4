"""
Reverse sync: reconcile the OneDrive client tree with local records.

The scan walks /<root>/<Clients>/<client>/<case>/{CABINET,CLIENT}, links
case folders to cases, and imports files no document record knows yet.
Unmatched client and case folders are reported for manual triage and are
not errors.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Union
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.clock import as_utc, utcnow
from cabinet_portal.core.onedrive import DriveItem, OneDriveClient
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import (
    Client,
    Document,
    DocumentLocation,
    Dossier,
    IntegrationType,
    SyncMode,
    Uploader,
    UploaderKind,
)
from cabinet_portal.schemas.sync import DossierSyncResult, ReverseSyncResult, SyncReport
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.errors import IntegrationError
from cabinet_portal.services.folder_provisioner import FolderProvisioner
from cabinet_portal.services.forward_sync import apply_drive_item
from cabinet_portal.services.naming import (
    file_extension,
    guess_document_type,
    normalize_name,
    split_case_folder_name,
)
from cabinet_portal.services.sync_log_service import SyncLogService

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (ProviderAPIError, IntegrationError, httpx.HTTPError)


@dataclass
class CaseFolderScan:
    """Remote content of one case folder, gathered before any database work."""

    folder: DriveItem
    subfolders: dict[DocumentLocation, DriveItem] = field(default_factory=dict)
    files: dict[DocumentLocation, list[DriveItem]] = field(default_factory=dict)
    loose_files: list[DriveItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class ClientIndex:
    """
    Normalized-name lookup of clients.

    "First Last" is tried before "Last First". A key shared by several
    clients is ambiguous and never matches.
    """

    def __init__(self, clients: list[Client]):
        self._by_first_last: dict[str, list[Client]] = {}
        self._by_last_first: dict[str, list[Client]] = {}
        for client in clients:
            self._by_first_last.setdefault(
                normalize_name(f"{client.first_name} {client.last_name}"), []
            ).append(client)
            self._by_last_first.setdefault(
                normalize_name(f"{client.last_name} {client.first_name}"), []
            ).append(client)

    def match(self, folder_name: str) -> tuple[Optional[Client], Optional[str]]:
        """Return (client, None) or (None, reason)."""
        key = normalize_name(folder_name)
        for index in (self._by_first_last, self._by_last_first):
            candidates = index.get(key, [])
            if len(candidates) == 1:
                return candidates[0], None
            if len(candidates) > 1:
                return None, "ambiguous"
        return None, "no match"


def match_dossier(folder_name: str, dossiers: list[Dossier]) -> Optional[Dossier]:
    """Find the case a folder belongs to: by reference, then full label, then title."""
    reference_part, title_part = split_case_folder_name(folder_name)
    by_reference = {normalize_name(d.reference): d for d in dossiers}
    for key in (normalize_name(reference_part), normalize_name(folder_name)):
        if key in by_reference:
            return by_reference[key]

    wanted = normalize_name(folder_name)
    by_label = [d for d in dossiers if normalize_name(d.folder_label) == wanted]
    if len(by_label) == 1:
        return by_label[0]

    wanted_title = normalize_name(title_part or folder_name)
    by_title = [d for d in dossiers if d.title and normalize_name(d.title) == wanted_title]
    if len(by_title) == 1:
        return by_title[0]
    return None


class ReverseSyncService:
    """
    Service importing remote OneDrive state into local records.

    Handles:
    - Full scan of the client tree (reverse_sync_from_onedrive)
    - Per-case reconciliation of CABINET/CLIENT (sync_dossier)
    """

    def __init__(
        self,
        connector: Optional[IntegrationConnector] = None,
        provisioner: Optional[FolderProvisioner] = None,
        sync_log: Optional[SyncLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.connector = connector or IntegrationConnector()
        self.sync_log = sync_log or SyncLogService(self.settings)
        self.provisioner = provisioner or FolderProvisioner(
            self.connector, self.sync_log, self.settings
        )

    @property
    def clients_path(self) -> str:
        return f"/{self.settings.onedrive_root_folder}/{self.settings.onedrive_clients_folder}"

    def _location_for(self, folder_name: str) -> Optional[DocumentLocation]:
        names = {
            self.settings.cabinet_subfolder.casefold(): DocumentLocation.CABINET,
            self.settings.client_subfolder.casefold(): DocumentLocation.CLIENT,
        }
        return names.get(folder_name.casefold())

    async def _known_file_ids(self, db: AsyncSession) -> set[str]:
        stmt = select(Document.remote_file_id).where(Document.remote_file_id.is_not(None))
        return set((await db.execute(stmt)).scalars().all())

    def _new_document(
        self,
        dossier: Dossier,
        item: DriveItem,
        location: DocumentLocation,
    ) -> Document:
        document = Document(
            dossier_id=dossier.id,
            name=item.name,
            original_name=item.name,
            document_type=guess_document_type(item.name),
            extension=file_extension(item.name),
            location=location,
            uploader=Uploader(UploaderKind.OPERATOR, dossier.created_by_id),
            visible_to_client=location == DocumentLocation.CLIENT,
        )
        apply_drive_item(document, item)
        return document

    # ============== Remote scan ==============

    async def _scan_case_folder(
        self,
        drive: OneDriveClient,
        folder: DriveItem,
    ) -> CaseFolderScan:
        scan = CaseFolderScan(folder=folder)
        for child in await drive.list_children(folder.id):
            if not child.is_folder:
                scan.loose_files.append(child)
                continue
            location = self._location_for(child.name)
            if location is not None:
                scan.subfolders[location] = child

        for location, subfolder in scan.subfolders.items():
            try:
                children = await drive.list_children(subfolder.id)
            except REMOTE_ERRORS as e:
                scan.errors.append(f"{folder.name}/{subfolder.name}: {e}")
                continue
            scan.files[location] = [c for c in children if not c.is_folder]
        return scan

    async def _scan_many(
        self,
        drive: OneDriveClient,
        folders: list[DriveItem],
    ) -> list[Union[CaseFolderScan, BaseException]]:
        """List case folders concurrently, at most reverse_sync_concurrency at a time."""
        semaphore = asyncio.Semaphore(max(1, self.settings.reverse_sync_concurrency))

        async def bounded(folder: DriveItem) -> CaseFolderScan:
            async with semaphore:
                return await self._scan_case_folder(drive, folder)

        return await asyncio.gather(
            *(bounded(f) for f in folders),
            return_exceptions=True,
        )

    # ============== Full scan ==============

    async def reverse_sync_from_onedrive(
        self,
        db: AsyncSession,
        mode: SyncMode = SyncMode.MANUAL,
        triggered_by: Optional[Union[str, UUID]] = None,
    ) -> ReverseSyncResult:
        """
        Scan the client tree and import unknown files.

        Always completes: per-item failures are counted in errors and
        described in details. success is true only without errors.
        """
        started = time.monotonic()
        result = ReverseSyncResult()

        try:
            async with self.connector.onedrive(db) as drive:
                await self._scan_tree(db, drive, result)
        except REMOTE_ERRORS as e:
            logger.error(f"Reverse sync aborted: {e}")
            result.add_error(f"OneDrive: {e}")

        result.finish(
            f"Reverse sync done: {result.created} files imported, "
            f"{result.linked_dossiers} cases linked"
        )
        logger.info(
            f"{result.message} ({result.errors} errors, "
            f"{len(result.unmatched_clients)} unmatched clients, "
            f"{len(result.unmatched_dossiers)} unmatched cases)"
        )
        await self.sync_log.record(
            db,
            IntegrationType.ONEDRIVE,
            mode,
            result,
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=triggered_by,
            extra_details={
                "operation": "reverse_sync",
                "linked_dossiers": result.linked_dossiers,
                "unmatched_clients": result.unmatched_clients,
                "unmatched_dossiers": result.unmatched_dossiers,
            },
        )
        return result

    async def _scan_tree(
        self,
        db: AsyncSession,
        drive: OneDriveClient,
        result: ReverseSyncResult,
    ) -> None:
        clients_folder = await drive.get_item_by_path(self.clients_path)
        if clients_folder is None or not clients_folder.is_folder:
            result.add_error(f"OneDrive folder {self.clients_path} not found")
            return

        stmt = select(Client).options(selectinload(Client.dossiers))
        clients = list((await db.execute(stmt)).scalars().all())
        index = ClientIndex(clients)
        known_files = await self._known_file_ids(db)

        for client_folder in await drive.list_children(clients_folder.id):
            if not client_folder.is_folder:
                continue

            client, reason = index.match(client_folder.name)
            if client is None:
                result.unmatched_clients.append(client_folder.name)
                if reason == "ambiguous":
                    result.details.append(f"Ambiguous client folder: {client_folder.name}")
                else:
                    result.details.append(f"Client folder not matched: {client_folder.name}")
                continue

            try:
                case_folders = [
                    f for f in await drive.list_children(client_folder.id) if f.is_folder
                ]
            except REMOTE_ERRORS as e:
                result.add_error(f"{client_folder.name}: {e}")
                continue

            candidates: list[tuple[Dossier, DriveItem]] = []
            for case_folder in case_folders:
                dossier = match_dossier(case_folder.name, client.dossiers)
                if dossier is None:
                    result.unmatched_dossiers.append(f"{client_folder.name}/{case_folder.name}")
                else:
                    candidates.append((dossier, case_folder))

            # One folder per case: the already linked folder first, then listing order
            candidates.sort(key=lambda pair: pair[0].onedrive_folder_id != pair[1].id)
            matched: list[tuple[Dossier, DriveItem]] = []
            claimed: set[UUID] = set()
            for dossier, case_folder in candidates:
                if dossier.id in claimed:
                    result.unmatched_dossiers.append(f"{client_folder.name}/{case_folder.name}")
                    result.details.append(
                        f"Duplicate case folder for {dossier.reference}: "
                        f"{client_folder.name}/{case_folder.name}"
                    )
                    continue
                claimed.add(dossier.id)
                matched.append((dossier, case_folder))

            scans = await self._scan_many(drive, [folder for _, folder in matched])
            for (dossier, case_folder), scan in zip(matched, scans):
                self._apply_scan(
                    db,
                    result,
                    dossier,
                    f"{self.clients_path}/{client_folder.name}/{case_folder.name}",
                    case_folder,
                    scan,
                    known_files,
                )
            await db.commit()

    def _apply_scan(
        self,
        db: AsyncSession,
        result: ReverseSyncResult,
        dossier: Dossier,
        folder_path: str,
        case_folder: DriveItem,
        scan: Union[CaseFolderScan, BaseException],
        known_files: set[str],
    ) -> None:
        """Link the case and stage new documents; database writes only."""
        result.linked_dossiers += 1
        if not dossier.onedrive_folder_id:
            dossier.onedrive_folder_id = case_folder.id
            dossier.onedrive_folder_path = folder_path
            result.details.append(f"Linked {dossier.reference} to {folder_path}")

        if isinstance(scan, BaseException):
            result.add_error(f"{folder_path}: {scan}")
            return

        for location, subfolder in scan.subfolders.items():
            if location == DocumentLocation.CABINET and not dossier.onedrive_cabinet_folder_id:
                dossier.onedrive_cabinet_folder_id = subfolder.id
            elif location == DocumentLocation.CLIENT and not dossier.onedrive_client_folder_id:
                dossier.onedrive_client_folder_id = subfolder.id

        for error in scan.errors:
            result.add_error(error)

        for location, files in scan.files.items():
            for item in files:
                result.processed += 1
                if item.id in known_files:
                    continue
                db.add(self._new_document(dossier, item, location))
                known_files.add(item.id)
                result.created += 1
                result.details.append(
                    f"Imported {dossier.reference}/{location.value}/{item.name}"
                )

        for item in scan.loose_files:
            result.details.append(
                f"Skipped {folder_path}/{item.name}: not in a CABINET or CLIENT folder"
            )

        dossier.onedrive_last_sync = utcnow()

    # ============== Per-case reconciliation ==============

    async def sync_dossier(
        self,
        db: AsyncSession,
        dossier_id: Union[str, UUID],
        drive: Optional[OneDriveClient] = None,
    ) -> DossierSyncResult:
        """
        Reconcile one case's CABINET and CLIENT folders with its documents.

        New remote files are imported, changed ones refreshed, and records
        whose file disappeared lose their remote reference.
        """
        folders = await self.provisioner.ensure_folders(db, dossier_id, drive=drive)
        result = DossierSyncResult(dossier_id=folders.dossier_id)
        if not folders.success:
            result.add_error(folders.error or "Folder provisioning failed")
            result.finish("Case folders unavailable")
            return result

        stmt = (
            select(Dossier)
            .options(selectinload(Dossier.documents))
            .where(Dossier.id == folders.dossier_id)
            .execution_options(populate_existing=True)
        )
        dossier = (await db.execute(stmt)).scalar_one()
        result.reference = dossier.reference

        if drive is not None:
            remote, listed = await self._list_case_files(dossier, drive, result)
        else:
            async with self.connector.onedrive(db) as own_drive:
                remote, listed = await self._list_case_files(dossier, own_drive, result)

        known_files = await self._known_file_ids(db)
        by_remote_id = {d.remote_file_id: d for d in dossier.documents if d.remote_file_id}

        for file_id, (item, location) in remote.items():
            result.processed += 1
            document = by_remote_id.get(file_id)
            if document is None:
                if file_id in known_files:
                    continue  # belongs to another case
                dossier.documents.append(self._new_document(dossier, item, location))
                result.created += 1
                result.details.append(f"Imported {location.value}/{item.name}")
                continue

            changed = False
            if document.location != location:
                document.location = location
                document.visible_to_client = location == DocumentLocation.CLIENT
                changed = True
            remote_modified = as_utc(item.last_modified)
            if remote_modified and (
                document.remote_modified_at is None
                or remote_modified > as_utc(document.remote_modified_at)
            ):
                apply_drive_item(document, item)
                changed = True
            if changed:
                result.updated += 1

        for document in dossier.documents:
            if (
                document.remote_file_id
                and document.remote_file_id not in remote
                and document.location in listed
            ):
                result.details.append(f"Remote file gone: {document.original_name}")
                document.clear_remote()
                result.deleted += 1

        dossier.onedrive_last_sync = utcnow()
        await db.commit()

        result.finish(
            f"{dossier.reference}: {result.created} imported, {result.updated} updated, "
            f"{result.deleted} removed"
        )
        return result

    async def _list_case_files(
        self,
        dossier: Dossier,
        drive: OneDriveClient,
        result: SyncReport,
    ) -> tuple[dict[str, tuple[DriveItem, DocumentLocation]], set[DocumentLocation]]:
        """Files per remote id, and the locations that were listed successfully."""
        remote: dict[str, tuple[DriveItem, DocumentLocation]] = {}
        listed: set[DocumentLocation] = set()
        folders = (
            (DocumentLocation.CABINET, dossier.onedrive_cabinet_folder_id),
            (DocumentLocation.CLIENT, dossier.onedrive_client_folder_id),
        )
        for location, folder_id in folders:
            try:
                children = await drive.list_children(folder_id)
            except REMOTE_ERRORS as e:
                result.add_error(f"{location.value}: {e}")
                continue
            listed.add(location)
            for item in children:
                if not item.is_folder:
                    remote[item.id] = (item, location)
        return remote, listed

    async def sync_all_dossiers(
        self,
        db: AsyncSession,
        mode: SyncMode = SyncMode.MANUAL,
        triggered_by: Optional[Union[str, UUID]] = None,
    ) -> SyncReport:
        """Run sync_dossier over every linked case and log one entry."""
        started = time.monotonic()
        report = SyncReport()

        stmt = (
            select(Dossier.id, Dossier.reference)
            .where(Dossier.onedrive_folder_id.is_not(None))
            .order_by(Dossier.reference)
        )
        rows = (await db.execute(stmt)).all()

        try:
            async with self.connector.onedrive(db) as drive:
                for dossier_id, reference in rows:
                    case_result = await self.sync_dossier(db, dossier_id, drive=drive)
                    report.processed += case_result.processed
                    report.created += case_result.created
                    report.updated += case_result.updated
                    report.deleted += case_result.deleted
                    report.errors += case_result.errors
                    report.details.extend(f"{reference}: {d}" for d in case_result.details)
        except REMOTE_ERRORS as e:
            report.add_error(f"OneDrive: {e}")

        report.finish(
            f"Case sync done: {report.created} imported, {report.updated} updated, "
            f"{report.deleted} removed"
        )
        await self.sync_log.record(
            db,
            IntegrationType.ONEDRIVE,
            mode,
            report,
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=triggered_by,
            extra_details={"operation": "sync_dossiers", "dossiers": len(rows)},
        )
        return report

