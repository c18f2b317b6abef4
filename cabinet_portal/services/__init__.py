"""
Sync and integration services.
"""

from cabinet_portal.services.errors import (
    IntegrationError,
    IntegrationNotConfiguredError,
    IntegrationNotConnectedError,
    TokenRefreshError,
)
from cabinet_portal.services.token_store import TokenStore
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.calendar_directory import CalendarDirectory
from cabinet_portal.services.sync_log_service import SyncLogService
from cabinet_portal.services.folder_provisioner import FolderProvisioner
from cabinet_portal.services.forward_sync import ForwardSyncService
from cabinet_portal.services.reverse_sync import ReverseSyncService
from cabinet_portal.services.calendar_import import CalendarImportService
from cabinet_portal.services.health_service import IntegrationHealthService

__all__ = [
    "IntegrationError",
    "IntegrationNotConfiguredError",
    "IntegrationNotConnectedError",
    "TokenRefreshError",
    "TokenStore",
    "IntegrationConnector",
    "CalendarDirectory",
    "SyncLogService",
    "FolderProvisioner",
    "ForwardSyncService",
    "ReverseSyncService",
    "CalendarImportService",
    "IntegrationHealthService",
]
