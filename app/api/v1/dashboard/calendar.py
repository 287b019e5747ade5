# ============================================================================
# FILE: app/api/v1/dashboard/calendar.py
# Calendar view and appointment mutations - thin HTTP layer
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================

from fastapi import APIRouter, Depends, Query, Path, status
from datetime import date
from typing import Optional

from app.api.dependencies import get_calendar_session, get_visible_range
from app.schemas.calendar_events import (
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
    AppointmentResizeRequest,
    BookableSlot,
    BookableSlotsResponse,
    CalendarEventsResponse,
    MutationDecision,
    VisibleRange,
)
from app.services.calendar.calendar_session import CalendarSession

router = APIRouter(tags=["dashboard-calendar"])


# ========== VIEW ==========

@router.get("/events", response_model=CalendarEventsResponse)
async def list_calendar_events(
        visible_range: VisibleRange = Depends(get_visible_range),
        provider_id: Optional[int] = Query(None, description="Only this provider's agenda"),
        session: CalendarSession = Depends(get_calendar_session)
):
    """
    Calendar events for the visible range, scoped to the caller's role.

    When the caller already moved to another range before the backend
    answered, the response is marked ``stale`` and carries no events.
    """
    return await session.events(visible_range, provider_id)


@router.get("/slots", response_model=BookableSlotsResponse)
async def list_bookable_slots(
        provider_id: int = Query(..., description="Provider to book"),
        day: date = Query(..., description="Day (YYYY-MM-DD)"),
        duration_minutes: Optional[int] = Query(None, ge=1, le=24 * 60),
        session: CalendarSession = Depends(get_calendar_session)
):
    """Free slots for a provider on one day"""
    duration, slots = await session.bookable_slots(provider_id, day, duration_minutes)
    return BookableSlotsResponse(
        provider_id=provider_id,
        day=day,
        duration_minutes=duration,
        slots=[BookableSlot(start=start, end=end) for start, end in slots],
    )


# ========== APPOINTMENTS ==========

@router.post("/appointments/validate", response_model=MutationDecision)
async def validate_appointment(
        request: AppointmentCreateRequest,
        session: CalendarSession = Depends(get_calendar_session)
):
    """Check a booking without saving it; rejections come back as a decision"""
    return await session.validate_create(request)


@router.post("/appointments", response_model=MutationDecision, status_code=status.HTTP_201_CREATED)
async def create_appointment(
        request: AppointmentCreateRequest,
        session: CalendarSession = Depends(get_calendar_session)
):
    return await session.create(request)


@router.post("/appointments/{appointment_id}/reschedule", response_model=MutationDecision)
async def reschedule_appointment(
        request: AppointmentRescheduleRequest,
        appointment_id: int = Path(..., description="Appointment being dragged"),
        session: CalendarSession = Depends(get_calendar_session)
):
    """Drag and drop. Without ``date_end`` the appointment keeps its duration."""
    return await session.reschedule(appointment_id, request)


@router.post("/appointments/{appointment_id}/resize", response_model=MutationDecision)
async def resize_appointment(
        request: AppointmentResizeRequest,
        appointment_id: int = Path(...),
        session: CalendarSession = Depends(get_calendar_session)
):
    return await session.resize(appointment_id, request)
