# ============================================================================
# FILE: app/api/v1/dashboard/schedule_settings.py
# Provider availability, provider blocks and tenant business hours
# Payloads are validated here, then proxied to the scheduling backend
# ============================================================================

import logging
from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from typing import List

from app.api.dependencies import get_api_client, get_calendar_session
from app.schemas.calendar_events import BlockCreateRequest, WeeklySyncRequest
from app.schemas.scheduling import (
    ProviderAvailability,
    ProviderBlock,
    TenantBusinessHour,
    Viewer,
    ViewerRole,
)
from app.services.backend.scheduling_api_client import SchedulingApiClient
from app.services.calendar.calendar_session import CalendarSession
from app.services.scheduling.errors import PermissionDenied

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboard-schedule"])


def require_provider_access(viewer: Viewer, provider_id: int):
    """Admins manage every provider; a provider manages only their own schedule"""
    if viewer.role == ViewerRole.ADMIN:
        return
    if viewer.role == ViewerRole.PROVIDER and viewer.effective_provider_id == provider_id:
        return
    raise PermissionDenied("You cannot change this provider's schedule")


def require_admin(viewer: Viewer):
    if viewer.role != ViewerRole.ADMIN:
        raise PermissionDenied("Only administrators can change business hours")


# ========== PROVIDER AVAILABILITY ==========

@router.get("/providers/{provider_id}/availabilities", response_model=List[ProviderAvailability])
async def list_availabilities(
        provider_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    return await api.list_availabilities(provider_id)


@router.put("/providers/{provider_id}/availabilities", response_model=List[ProviderAvailability])
async def sync_availabilities(
        payload: WeeklySyncRequest,
        provider_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    """Replace the provider's whole week"""
    require_provider_access(session.viewer, provider_id)

    availabilities = await api.sync_availabilities(provider_id, payload.to_backend_payload())
    session.invalidate()
    logger.info(f"Synced {len(payload.business_hours)} availability windows for provider {provider_id}")
    return availabilities


# ========== PROVIDER BLOCKS ==========

@router.get("/providers/{provider_id}/blocks", response_model=List[ProviderBlock])
async def list_blocks(
        provider_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    return await api.list_blocks(provider_id)


@router.post(
    "/providers/{provider_id}/blocks",
    response_model=ProviderBlock,
    status_code=status.HTTP_201_CREATED
)
async def create_block(
        payload: BlockCreateRequest,
        provider_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    require_provider_access(session.viewer, provider_id)

    block = await api.create_block(provider_id, payload.to_backend_payload())
    session.invalidate()
    logger.info(f"Blocked provider {provider_id} from {payload.start_at} to {payload.end_at}")
    return block


@router.delete(
    "/providers/{provider_id}/blocks/{block_id}",
    status_code=status.HTTP_204_NO_CONTENT
)
async def delete_block(
        provider_id: int = Path(...),
        block_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    require_provider_access(session.viewer, provider_id)

    await api.delete_block(provider_id, block_id)
    session.invalidate()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== TENANT BUSINESS HOURS ==========

@router.get("/tenants/{tenant_id}/business-hours", response_model=List[TenantBusinessHour])
async def list_business_hours(
        tenant_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    return await api.list_business_hours(tenant_id)


@router.put("/tenants/{tenant_id}/business-hours", response_model=List[TenantBusinessHour])
async def sync_business_hours(
        payload: WeeklySyncRequest,
        tenant_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session),
        api: SchedulingApiClient = Depends(get_api_client)
):
    require_admin(session.viewer)

    weekdays = [item.weekday for item in payload.business_hours]
    if len(weekdays) != len(set(weekdays)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Business hours allow one window per weekday"
        )

    business_hours = await api.sync_business_hours(tenant_id, payload.to_backend_payload())
    session.invalidate()
    logger.info(f"Synced business hours for tenant {tenant_id}")
    return business_hours
