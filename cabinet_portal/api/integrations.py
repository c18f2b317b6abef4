"""
Integration administration endpoints: health, history, OAuth and calendars.
"""

import logging
import secrets
from typing import Optional
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.api.deps import get_services, parse_service
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.core.redis_client import RedisClient, get_redis
from cabinet_portal.database import get_db
from cabinet_portal.models import IntegrationType
from cabinet_portal.schemas.integrations import (
    AuthorizationURL,
    ConnectionResult,
    HealthCheckResult,
    HealthReport,
    RemoteCalendarOut,
    SyncHistoryEntry,
    SyncModeState,
    SyncModeUpdate,
    SyncStatistics,
)
from cabinet_portal.services.errors import (
    IntegrationError,
    IntegrationNotConfiguredError,
    IntegrationNotConnectedError,
)
from cabinet_portal.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])


# ============== Health ==============

@router.get("/health", response_model=HealthReport)
async def get_health(
    force: bool = Query(default=False, description="Bypass the report cache"),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Health of every integration, cached for a few seconds."""
    return await services.health.get_health_report(db, force_refresh=force)


@router.get("/sync-history", response_model=list[SyncHistoryEntry])
async def get_sync_history(
    type: Optional[str] = Query(default=None, description="onedrive or google_calendar"),
    limit: int = Query(default=20),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Newest sync runs first; limit is clamped to [1, 100]."""
    sync_type = parse_service(type) if type else None
    return await services.health.get_sync_history(db, sync_type, limit)


@router.get("/statistics", response_model=SyncStatistics)
async def get_statistics(
    days: int = Query(default=7),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Sync counters over the last days; days is clamped to [1, 30]."""
    return await services.health.get_sync_statistics(db, days)


@router.post("/health-check", response_model=dict[str, HealthCheckResult])
async def run_health_checks(
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Probe every integration now."""
    results = await services.health.perform_health_checks(db)
    services.health.cache.invalidate()
    return results


# ============== Google calendars ==============

@router.get("/google_calendar/calendars", response_model=list[RemoteCalendarOut])
async def list_calendars(
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    return await services.directory.list_all(db)


@router.post("/google_calendar/calendars/refresh", response_model=list[RemoteCalendarOut])
async def refresh_calendars(
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Mirror the calendar list of every connected Google account."""
    tokens = await services.token_store.list_tokens(db, IntegrationType.GOOGLE_CALENDAR)
    if not tokens:
        raise HTTPException(status_code=400, detail="No Google account connected")

    entries = []
    for token in tokens:
        try:
            async with services.connector.google_calendar(db, token.operator_id) as client:
                entries.extend(await services.directory.refresh_from_remote(db, token, client))
        except (ProviderAPIError, IntegrationError, httpx.HTTPError) as e:
            logger.error(f"Calendar refresh failed for {token.account_email}: {e}")
            raise HTTPException(status_code=502, detail=f"Google Calendar error: {e}")
    return entries


@router.post("/google_calendar/calendars/{entry_id}/activate", response_model=RemoteCalendarOut)
async def activate_calendar(
    entry_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    entry = await services.directory.activate(db, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Calendar not found")
    return entry


@router.post("/google_calendar/calendars/{entry_id}/deactivate", response_model=RemoteCalendarOut)
async def deactivate_calendar(
    entry_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    entry = await services.directory.deactivate(db, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Calendar not found")
    return entry


@router.get("/google_calendar/sync-mode", response_model=SyncModeState)
async def get_sync_mode(
    operator_id: Optional[UUID] = Query(default=None, description="Omit for the shared firm account"),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    mode = await services.token_store.get_sync_mode(db, IntegrationType.GOOGLE_CALENDAR, operator_id)
    return SyncModeState(
        service=IntegrationType.GOOGLE_CALENDAR,
        operator_id=operator_id,
        sync_mode=mode,
    )


@router.post("/google_calendar/sync-mode", response_model=SyncModeState)
async def set_sync_mode(
    update: SyncModeUpdate,
    operator_id: Optional[UUID] = Query(default=None, description="Omit for the shared firm account"),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """In manual mode event edits stay local until the next calendar sync."""
    try:
        token = await services.token_store.set_sync_mode(
            db, IntegrationType.GOOGLE_CALENDAR, update.sync_mode, operator_id
        )
    except IntegrationNotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))

    services.health.cache.invalidate()
    return SyncModeState(
        service=IntegrationType.GOOGLE_CALENDAR,
        operator_id=token.operator_id,
        sync_mode=token.sync_mode,
    )


# ============== OAuth ==============

@router.get("/{service}/authorize", response_model=AuthorizationURL)
async def authorize(
    service: str,
    operator_id: Optional[UUID] = Query(default=None, description="Omit for the shared firm account"),
    services: ServiceRegistry = Depends(get_services),
    redis: RedisClient = Depends(get_redis),
):
    """Start the consent flow; the client is redirected to the returned URL."""
    integration = parse_service(service)
    state = secrets.token_urlsafe(32)
    try:
        url = services.token_store.authorization_url(integration, state)
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await redis.save_oauth_state(
        state,
        {
            "service": integration.value,
            "operator_id": str(operator_id) if operator_id else None,
        },
        services.settings.oauth_state_ttl_seconds,
    )
    return AuthorizationURL(service=integration, url=url)


@router.get("/{service}/callback", response_model=ConnectionResult)
async def oauth_callback(
    service: str,
    code: str = Query(...),
    state: str = Query(...),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
    redis: RedisClient = Depends(get_redis),
):
    """Finish the consent flow and store the account's token."""
    integration = parse_service(service)
    flow = await redis.pop_oauth_state(state)
    if flow is None or flow.get("service") != integration.value:
        raise HTTPException(status_code=400, detail="Unknown or expired OAuth state")

    operator_id = flow.get("operator_id")
    try:
        token = await services.token_store.complete_oauth_flow(db, integration, code, operator_id)
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProviderAPIError, httpx.HTTPError) as e:
        logger.error(f"OAuth code exchange failed for {integration.value}: {e}")
        raise HTTPException(status_code=502, detail=f"Token exchange failed: {e}")

    result = ConnectionResult(
        service=integration,
        operator_id=token.operator_id,
        account_email=token.account_email,
        account_name=token.account_name,
    )

    if integration == IntegrationType.GOOGLE_CALENDAR:
        try:
            async with services.connector.google_calendar(db, token.operator_id) as client:
                entries = await services.directory.refresh_from_remote(db, token, client)
            result.calendars = [RemoteCalendarOut.model_validate(e) for e in entries]
        except (ProviderAPIError, IntegrationError, httpx.HTTPError) as e:
            logger.warning(f"Calendar list unavailable after connecting {token.account_email}: {e}")

    services.health.cache.invalidate()
    return result


@router.delete("/{service}")
async def disconnect(
    service: str,
    operator_id: Optional[UUID] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    services: ServiceRegistry = Depends(get_services),
):
    """Forget the account's token and its calendar directory entries."""
    integration = parse_service(service)
    deleted = await services.token_store.delete(db, integration, operator_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"{integration.value} is not connected")

    services.health.cache.invalidate()
    return {
        "service": integration.value,
        "operator_id": str(operator_id) if operator_id else None,
        "status": "disconnected",
    }
