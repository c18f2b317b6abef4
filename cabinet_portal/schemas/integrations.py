"""
Integration health, history and credential schemas.
"""

import enum
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cabinet_portal.models.enums import CalendarSyncMode, IntegrationType, SyncMode, SyncOutcome


class TokenCredentials(BaseModel):
    """Token endpoint answer, optionally enriched with the account profile."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scope: Optional[str] = None
    account_email: Optional[str] = None
    account_name: Optional[str] = None


class IntegrationState(str, enum.Enum):
    NOT_CONFIGURED = "not_configured"
    NOT_CONNECTED = "not_connected"
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # reachable, but the last sync did not fully succeed
    ERROR = "error"


class TokenState(str, enum.Enum):
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"


class AccountStatus(BaseModel):
    operator_id: Optional[UUID] = None
    account_email: Optional[str] = None
    account_name: Optional[str] = None
    token_state: TokenState
    healthy: bool = False
    error: Optional[str] = None
    sync_mode: Optional[CalendarSyncMode] = None  # Google accounts only


class LastSyncInfo(BaseModel):
    outcome: SyncOutcome
    mode: SyncMode
    message: Optional[str] = None
    created_at: datetime


class IntegrationStatus(BaseModel):
    name: str
    type: IntegrationType
    state: IntegrationState
    configured: bool
    connected: bool
    healthy: bool
    account_email: Optional[str] = None
    account_name: Optional[str] = None
    token_state: Optional[TokenState] = None
    last_health_check: Optional[datetime] = None
    last_sync: Optional[LastSyncInfo] = None
    error: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    accounts: list[AccountStatus] = Field(default_factory=list)


class SyncHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sync_type: IntegrationType
    mode: SyncMode
    outcome: SyncOutcome
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    items_errored: int = 0
    message: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    duration_ms: Optional[int] = None
    formatted_duration: str = "-"
    triggered_by_id: Optional[UUID] = None
    created_at: datetime


class HealthReport(BaseModel):
    timestamp: datetime
    overall_healthy: bool
    integrations: list[IntegrationStatus]
    recent_sync_history: list[SyncHistoryEntry] = Field(default_factory=list)


class HealthCheckResult(BaseModel):
    healthy: bool
    error: Optional[str] = None


class IntegrationSyncStats(BaseModel):
    sync_type: IntegrationType
    total_syncs: int = 0
    successful_syncs: int = 0
    partial_syncs: int = 0
    failed_syncs: int = 0
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    items_errored: int = 0
    average_duration_ms: Optional[float] = None


class SyncStatistics(BaseModel):
    days: int
    since: datetime
    total_syncs: int = 0
    successful_syncs: int = 0
    partial_syncs: int = 0
    failed_syncs: int = 0
    items_processed: int = 0
    average_duration_ms: Optional[float] = None
    by_type: list[IntegrationSyncStats] = Field(default_factory=list)


class RemoteCalendarOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    token_id: UUID
    calendar_id: str
    name: str
    color: Optional[str] = None
    is_active: bool


class SyncModeUpdate(BaseModel):
    sync_mode: CalendarSyncMode


class SyncModeState(BaseModel):
    service: IntegrationType
    operator_id: Optional[UUID] = None
    sync_mode: CalendarSyncMode


class AuthorizationURL(BaseModel):
    service: IntegrationType
    url: str


class ConnectionResult(BaseModel):
    """Account stored at the end of an OAuth consent flow."""

    service: IntegrationType
    operator_id: Optional[UUID] = None
    account_email: Optional[str] = None
    account_name: Optional[str] = None
    calendars: list[RemoteCalendarOut] = Field(default_factory=list)
