"""
Wiring of the sync services around one token store and one health cache.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.cache import TTLCache
from cabinet_portal.services.calendar_directory import CalendarDirectory
from cabinet_portal.services.calendar_import import CalendarImportService
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.folder_provisioner import FolderProvisioner
from cabinet_portal.services.forward_sync import ForwardSyncService
from cabinet_portal.services.health_service import IntegrationHealthService
from cabinet_portal.services.reverse_sync import ReverseSyncService
from cabinet_portal.services.sync_log_service import SyncLogService
from cabinet_portal.services.token_store import TokenStore


@dataclass
class ServiceRegistry:
    settings: Settings
    token_store: TokenStore
    connector: IntegrationConnector
    directory: CalendarDirectory
    sync_log: SyncLogService
    provisioner: FolderProvisioner
    forward_sync: ForwardSyncService
    reverse_sync: ReverseSyncService
    calendar_import: CalendarImportService
    health: IntegrationHealthService

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        token_store: Optional[TokenStore] = None,
        connector: Optional[IntegrationConnector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        health_cache: Optional[TTLCache] = None,
    ) -> "ServiceRegistry":
        """Build once per process; the health cache lives as long as the registry."""
        settings = settings or get_settings()
        token_store = token_store or TokenStore(settings=settings)
        connector = connector or IntegrationConnector(token_store, transport=transport)
        directory = CalendarDirectory()
        sync_log = SyncLogService(settings)
        provisioner = FolderProvisioner(connector, sync_log, settings)

        return cls(
            settings=settings,
            token_store=token_store,
            connector=connector,
            directory=directory,
            sync_log=sync_log,
            provisioner=provisioner,
            forward_sync=ForwardSyncService(connector, provisioner, directory, sync_log, settings),
            reverse_sync=ReverseSyncService(connector, provisioner, sync_log, settings),
            calendar_import=CalendarImportService(connector, directory, sync_log, settings),
            health=IntegrationHealthService(
                token_store,
                connector,
                sync_log,
                health_cache or TTLCache(settings.health_report_ttl_seconds),
                settings,
            ),
        )
