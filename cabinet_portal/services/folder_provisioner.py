"""
Case folder provisioning on OneDrive.

Each case gets:
    /<root>/<Clients>/<First Last>/<REF - Title>/
        CABINET/   internal documents
        CLIENT/    documents shared with the client
"""

import logging
import time
from typing import Optional, Union
from uuid import UUID

import httpx
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.clock import utcnow
from cabinet_portal.core.onedrive import OneDriveClient
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import Dossier, IntegrationType, SyncMode
from cabinet_portal.schemas.sync import FolderResult, ProvisioningReport
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.errors import IntegrationError
from cabinet_portal.services.naming import (
    case_folder_path,
    client_folder_name,
    sanitize_folder_name,
)
from cabinet_portal.services.sync_log_service import SyncLogService

logger = logging.getLogger(__name__)

# Failures that abort one case without touching the others
REMOTE_ERRORS = (ProviderAPIError, IntegrationError, httpx.HTTPError)


class FolderProvisioner:
    """Creates the OneDrive folders of a case, lazily and idempotently."""

    def __init__(
        self,
        connector: Optional[IntegrationConnector] = None,
        sync_log: Optional[SyncLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.connector = connector or IntegrationConnector()
        self.sync_log = sync_log or SyncLogService(self.settings)

    def folder_path(self, dossier: Dossier) -> str:
        return case_folder_path(
            self.settings.onedrive_root_folder,
            self.settings.onedrive_clients_folder,
            client_folder_name(dossier.client.first_name, dossier.client.last_name),
            dossier.folder_label,
        )

    async def _load(self, db: AsyncSession, dossier_id: Union[str, UUID]) -> Optional[Dossier]:
        stmt = (
            select(Dossier)
            .options(selectinload(Dossier.client))
            .where(Dossier.id == UUID(str(dossier_id)))
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_folders(
        self,
        db: AsyncSession,
        dossier_id: Union[str, UUID],
        drive: Optional[OneDriveClient] = None,
    ) -> FolderResult:
        """
        Make sure the case has its root, CABINET and CLIENT folders.

        Returns immediately when all three ids are already stored. Each id
        is committed as soon as it is known, so a failed run resumes where
        it stopped.
        """
        dossier = await self._load(db, dossier_id)
        if dossier is None:
            return FolderResult(
                success=False,
                dossier_id=UUID(str(dossier_id)),
                error="Dossier not found",
            )

        if dossier.folders_provisioned:
            return FolderResult(
                success=True,
                dossier_id=dossier.id,
                folder_path=dossier.onedrive_folder_path,
            )

        if drive is not None:
            return await self._provision(db, dossier, drive)
        async with self.connector.onedrive(db) as drive:
            return await self._provision(db, dossier, drive)

    async def _provision(
        self,
        db: AsyncSession,
        dossier: Dossier,
        drive: OneDriveClient,
    ) -> FolderResult:
        created = 0
        try:
            if not dossier.onedrive_folder_id:
                path = self.folder_path(dossier)
                root, was_created = await drive.ensure_folder_path(path)
                dossier.onedrive_folder_id = root.id
                dossier.onedrive_folder_path = path
                created += int(was_created)
                await db.commit()

            subfolders = (
                ("onedrive_cabinet_folder_id", self.settings.cabinet_subfolder),
                ("onedrive_client_folder_id", self.settings.client_subfolder),
            )
            for attr, name in subfolders:
                if getattr(dossier, attr):
                    continue
                folder, was_created = await drive.ensure_child_folder(
                    dossier.onedrive_folder_id, name
                )
                setattr(dossier, attr, folder.id)
                created += int(was_created)
                await db.commit()

        except REMOTE_ERRORS as e:
            logger.error(f"Folder provisioning failed for {dossier.reference}: {e}")
            return FolderResult(
                success=False,
                dossier_id=dossier.id,
                folder_path=dossier.onedrive_folder_path,
                error=str(e),
                folders_created=created,
            )

        dossier.onedrive_last_sync = utcnow()
        await db.commit()

        logger.info(f"OneDrive folders ready for {dossier.reference}: {dossier.onedrive_folder_path}")
        return FolderResult(
            success=True,
            dossier_id=dossier.id,
            folder_path=dossier.onedrive_folder_path,
            folders_created=created,
        )

    async def provision_missing(
        self,
        db: AsyncSession,
        mode: SyncMode = SyncMode.MANUAL,
        triggered_by: Optional[Union[str, UUID]] = None,
        limit: Optional[int] = None,
    ) -> ProvisioningReport:
        """Provision every case that lacks one of its three folders."""
        started = time.monotonic()
        report = ProvisioningReport()

        stmt = (
            select(Dossier.id)
            .where(
                or_(
                    Dossier.onedrive_folder_id.is_(None),
                    Dossier.onedrive_cabinet_folder_id.is_(None),
                    Dossier.onedrive_client_folder_id.is_(None),
                )
            )
            .order_by(Dossier.reference)
        )
        if limit:
            stmt = stmt.limit(limit)
        dossier_ids = list((await db.execute(stmt)).scalars().all())

        async with self.connector.onedrive(db) as drive:
            for dossier_id in dossier_ids:
                result = await self.ensure_folders(db, dossier_id, drive=drive)
                report.results.append(result)
                report.processed += 1
                if not result.success:
                    report.add_error(f"{dossier_id}: {result.error}")
                elif result.folders_created:
                    report.created += 1

        report.finish(
            f"Folder provisioning done: {report.created} cases provisioned, "
            f"{report.errors} errors"
        )
        await self.sync_log.record(
            db,
            IntegrationType.ONEDRIVE,
            mode,
            report,
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=triggered_by,
            extra_details={"operation": "provision_folders"},
        )
        return report

    async def rename_case_folder(
        self,
        db: AsyncSession,
        dossier_id: Union[str, UUID],
    ) -> FolderResult:
        """Follow a reference or title change on the remote folder."""
        dossier = await self._load(db, dossier_id)
        if dossier is None:
            return FolderResult(
                success=False,
                dossier_id=UUID(str(dossier_id)),
                error="Dossier not found",
            )
        if not dossier.onedrive_folder_id:
            return await self.ensure_folders(db, dossier.id)

        # Only the case folder is renamed; it stays under its client folder
        new_name = sanitize_folder_name(dossier.folder_label)
        current_path = dossier.onedrive_folder_path or self.folder_path(dossier)
        new_path = f"{current_path.rsplit('/', 1)[0]}/{new_name}"
        if new_path == dossier.onedrive_folder_path:
            return FolderResult(success=True, dossier_id=dossier.id, folder_path=new_path)

        try:
            async with self.connector.onedrive(db) as drive:
                await drive.rename_item(dossier.onedrive_folder_id, new_name)
        except REMOTE_ERRORS as e:
            logger.error(f"Folder rename failed for {dossier.reference}: {e}")
            return FolderResult(
                success=False,
                dossier_id=dossier.id,
                folder_path=dossier.onedrive_folder_path,
                error=str(e),
            )

        dossier.onedrive_folder_path = new_path
        dossier.onedrive_last_sync = utcnow()
        await db.commit()
        return FolderResult(success=True, dossier_id=dossier.id, folder_path=new_path)
