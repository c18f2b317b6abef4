"""
Pydantic schemas for API requests and responses.
"""

from cabinet_portal.schemas.sync import (
    SyncReport,
    ReverseSyncResult,
    DossierSyncResult,
    CalendarSyncResult,
    FolderResult,
    ProvisioningReport,
    PushResult,
    SyncTriggerRequest,
    CalendarSyncSummary,
)
from cabinet_portal.schemas.integrations import (
    TokenCredentials,
    IntegrationState,
    TokenState,
    AccountStatus,
    LastSyncInfo,
    IntegrationStatus,
    SyncHistoryEntry,
    HealthReport,
    HealthCheckResult,
    IntegrationSyncStats,
    SyncStatistics,
    RemoteCalendarOut,
    AuthorizationURL,
    ConnectionResult,
)

__all__ = [
    "SyncReport",
    "ReverseSyncResult",
    "DossierSyncResult",
    "CalendarSyncResult",
    "FolderResult",
    "ProvisioningReport",
    "PushResult",
    "SyncTriggerRequest",
    "CalendarSyncSummary",
    "TokenCredentials",
    "IntegrationState",
    "TokenState",
    "AccountStatus",
    "LastSyncInfo",
    "IntegrationStatus",
    "SyncHistoryEntry",
    "HealthReport",
    "HealthCheckResult",
    "IntegrationSyncStats",
    "SyncStatistics",
    "RemoteCalendarOut",
    "AuthorizationURL",
    "ConnectionResult",
]
