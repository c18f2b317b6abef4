"""
Integration health monitoring and sync statistics.
"""

import logging
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.cache import TTLCache
from cabinet_portal.core.clock import utcnow
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import IntegrationType, OAuthToken, SyncLog, SyncOutcome
from cabinet_portal.schemas.integrations import (
    AccountStatus,
    HealthCheckResult,
    HealthReport,
    IntegrationState,
    IntegrationStatus,
    IntegrationSyncStats,
    LastSyncInfo,
    SyncHistoryEntry,
    SyncStatistics,
)
from cabinet_portal.services.calendar_directory import CalendarDirectory
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.errors import IntegrationError
from cabinet_portal.services.sync_log_service import SyncLogService
from cabinet_portal.services.token_store import TokenStore

logger = logging.getLogger(__name__)

PROBE_ERRORS = (ProviderAPIError, IntegrationError, httpx.HTTPError)

DISPLAY_NAMES = {
    IntegrationType.ONEDRIVE: "Microsoft OneDrive",
    IntegrationType.GOOGLE_CALENDAR: "Google Calendar",
}

RECENT_HISTORY_SIZE = 10


class IntegrationHealthService:
    """
    Service reporting the state of the OneDrive and Google Calendar integrations.

    Handles:
    - Cached health report with live probes of each connected account
    - Sync statistics over a bounded window
    - Sync history with a bounded page size
    - On-demand reachability checks
    """

    def __init__(
        self,
        token_store: Optional[TokenStore] = None,
        connector: Optional[IntegrationConnector] = None,
        sync_log: Optional[SyncLogService] = None,
        cache: Optional[TTLCache[HealthReport]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.token_store = token_store or TokenStore(settings=self.settings)
        self.connector = connector or IntegrationConnector(self.token_store)
        self.sync_log = sync_log or SyncLogService(self.settings)
        self.cache = cache or TTLCache(self.settings.health_report_ttl_seconds)
        self.directory = CalendarDirectory()

    def is_configured(self, service: IntegrationType) -> bool:
        if service == IntegrationType.ONEDRIVE:
            return self.settings.onedrive_configured
        return self.settings.google_calendar_configured

    async def _accounts(self, db: AsyncSession, service: IntegrationType) -> list[OAuthToken]:
        """Tokens to probe: OneDrive uses the shared account only."""
        if service == IntegrationType.ONEDRIVE:
            token = await self.token_store.get(db, service)
            return [token] if token else []
        return await self.token_store.list_tokens(db, service)

    # ============== Probes ==============

    async def _probe(
        self,
        db: AsyncSession,
        service: IntegrationType,
        token: OAuthToken,
    ) -> dict:
        """Cheap authenticated call; raises on failure."""
        if service == IntegrationType.ONEDRIVE:
            async with self.connector.onedrive(db) as drive:
                quota = await drive.get_quota()
            return {
                "quota_used_percentage": quota.used_percentage,
                "quota_total_bytes": quota.total,
                "quota_used_bytes": quota.used,
            }

        async with self.connector.google_calendar(db, token.operator_id) as client:
            calendars = await client.list_calendars(max_results=10)
        active = [c for c in await self.directory.list_for_token(db, token.id) if c.is_active]
        return {"calendars": len(calendars), "active_calendars": len(active)}

    async def _check_account(
        self,
        db: AsyncSession,
        service: IntegrationType,
        token: OAuthToken,
    ) -> tuple[AccountStatus, dict]:
        details: dict = {}
        error = None
        try:
            details = await self._probe(db, service, token)
        except PROBE_ERRORS as e:
            logger.warning(f"{service.value} probe failed for {token.account_email}: {e}")
            error = str(e)

        status = AccountStatus(
            operator_id=token.operator_id,
            account_email=token.account_email,
            account_name=token.account_name,
            token_state=self.token_store.token_state(token),
            healthy=error is None,
            error=error,
        )
        if service == IntegrationType.GOOGLE_CALENDAR:
            status.sync_mode = token.sync_mode
        return status, details

    # ============== Health report ==============

    async def _integration_status(
        self,
        db: AsyncSession,
        service: IntegrationType,
    ) -> IntegrationStatus:
        now = utcnow()
        status = IntegrationStatus(
            name=DISPLAY_NAMES[service],
            type=service,
            state=IntegrationState.NOT_CONFIGURED,
            configured=self.is_configured(service),
            connected=False,
            healthy=False,
            last_health_check=now,
        )

        latest = await self.sync_log.latest(db, service)
        if latest is not None:
            status.last_sync = LastSyncInfo(
                outcome=latest.outcome,
                mode=latest.mode,
                message=latest.message,
                created_at=latest.created_at,
            )

        if not status.configured:
            return status

        tokens = await self._accounts(db, service)
        if not tokens:
            status.state = IntegrationState.NOT_CONNECTED
            return status

        status.connected = True
        for token in tokens:
            account, details = await self._check_account(db, service, token)
            status.accounts.append(account)
            if token is tokens[0]:
                status.details = details

        primary = status.accounts[0]
        status.account_email = primary.account_email
        status.account_name = primary.account_name
        status.token_state = primary.token_state

        failures = [a for a in status.accounts if not a.healthy]
        if len(failures) == len(status.accounts):
            status.state = IntegrationState.ERROR
            status.error = failures[0].error
        elif failures or (latest is not None and latest.outcome != SyncOutcome.SUCCESS):
            status.state = IntegrationState.DEGRADED
            status.error = failures[0].error if failures else None
        else:
            status.state = IntegrationState.HEALTHY
        status.healthy = status.state != IntegrationState.ERROR
        return status

    async def get_health_report(
        self,
        db: AsyncSession,
        force_refresh: bool = False,
    ) -> HealthReport:
        """
        Health of every integration.

        Served from the cache while it is fresh; force_refresh rebuilds it
        and probes every account again.
        """
        if not force_refresh:
            cached = self.cache.get()
            if cached is not None:
                return cached

        integrations = [
            await self._integration_status(db, service) for service in IntegrationType
        ]
        history = await self.sync_log.history(db, limit=RECENT_HISTORY_SIZE)

        report = HealthReport(
            timestamp=utcnow(),
            overall_healthy=all(
                not i.configured or (i.connected and i.healthy) for i in integrations
            ),
            integrations=integrations,
            recent_sync_history=[SyncHistoryEntry.model_validate(e) for e in history],
        )
        logger.info(
            "Health report rebuilt: "
            + ", ".join(f"{i.type.value}={i.state.value}" for i in integrations)
        )
        return self.cache.set(report)

    async def perform_health_checks(self, db: AsyncSession) -> dict[str, HealthCheckResult]:
        """Probe every integration now. Nothing is written to the sync log."""
        results: dict[str, HealthCheckResult] = {}
        for service in IntegrationType:
            if not self.is_configured(service):
                results[service.value] = HealthCheckResult(healthy=False, error="Not configured")
                continue

            tokens = await self._accounts(db, service)
            if not tokens:
                results[service.value] = HealthCheckResult(healthy=False, error="Not connected")
                continue

            errors = []
            for token in tokens:
                account, _ = await self._check_account(db, service, token)
                if account.error:
                    errors.append(account.error)
            results[service.value] = HealthCheckResult(
                healthy=not errors,
                error="; ".join(errors) or None,
            )
        return results

    # ============== Statistics & history ==============

    def clamp_days(self, days: int) -> int:
        return max(1, min(days, self.settings.sync_stats_max_days))

    async def get_sync_statistics(self, db: AsyncSession, days: int = 7) -> SyncStatistics:
        """Per-type sync counters over the last `days` days (clamped)."""
        days = self.clamp_days(days)
        since = utcnow() - timedelta(days=days)

        def outcome_count(outcome: SyncOutcome):
            return func.sum(case((SyncLog.outcome == outcome, 1), else_=0))

        stmt = (
            select(
                SyncLog.sync_type,
                func.count(SyncLog.id),
                outcome_count(SyncOutcome.SUCCESS),
                outcome_count(SyncOutcome.PARTIAL),
                outcome_count(SyncOutcome.ERROR),
                func.coalesce(func.sum(SyncLog.items_processed), 0),
                func.coalesce(func.sum(SyncLog.items_created), 0),
                func.coalesce(func.sum(SyncLog.items_updated), 0),
                func.coalesce(func.sum(SyncLog.items_deleted), 0),
                func.coalesce(func.sum(SyncLog.items_errored), 0),
                func.sum(SyncLog.duration_ms),
                func.count(SyncLog.duration_ms),
            )
            .where(SyncLog.created_at >= since)
            .group_by(SyncLog.sync_type)
        )
        rows = (await db.execute(stmt)).all()

        stats = SyncStatistics(days=days, since=since)
        duration_sum = 0
        duration_count = 0
        for row in sorted(rows, key=lambda r: r[0].value):
            (sync_type, total, ok, partial, failed, processed,
             created, updated, deleted, errored, dur_sum, dur_count) = row
            stats.by_type.append(
                IntegrationSyncStats(
                    sync_type=sync_type,
                    total_syncs=total,
                    successful_syncs=ok or 0,
                    partial_syncs=partial or 0,
                    failed_syncs=failed or 0,
                    items_processed=processed,
                    items_created=created,
                    items_updated=updated,
                    items_deleted=deleted,
                    items_errored=errored,
                    average_duration_ms=round(dur_sum / dur_count, 1) if dur_count else None,
                )
            )
            stats.total_syncs += total
            stats.successful_syncs += ok or 0
            stats.partial_syncs += partial or 0
            stats.failed_syncs += failed or 0
            stats.items_processed += processed
            duration_sum += dur_sum or 0
            duration_count += dur_count

        if duration_count:
            stats.average_duration_ms = round(duration_sum / duration_count, 1)
        return stats

    async def get_sync_history(
        self,
        db: AsyncSession,
        sync_type: Optional[IntegrationType] = None,
        limit: int = 20,
    ) -> list[SyncHistoryEntry]:
        entries = await self.sync_log.history(db, sync_type, limit)
        return [SyncHistoryEntry.model_validate(e) for e in entries]
