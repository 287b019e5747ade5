# app/services/calendar/calendar_session.py
"""
Calendar Session

Per-viewer state between the calendar UI and the scheduling backend:

- one snapshot cached for the visible range key (start, end, provider
  filter); asking for the same key again does not refetch
- a fetch already in flight for a key is awaited, never duplicated
- when the visible key moves on before a fetch returns, the late result is
  dropped and the caller gets None
- mutations are validated locally first; a rejection never reaches the
  backend, an accepted one is persisted and the visible range reloaded.
  Permission, ownership and interval shape are checked before any
  schedule data is fetched
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, List, NamedTuple, Optional, Tuple

from app.config.settings import Settings
from app.schemas.calendar_events import (
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
    AppointmentResizeRequest,
    CalendarEventsResponse,
    CalendarPalette,
    MutationDecision,
    MutationKind,
    MutationState,
    VisibleRange,
)
from app.schemas.scheduling import Appointment, ScheduleSnapshot, Viewer, ViewerRole
from app.services.backend.scheduling_api_client import SchedulingApiClient
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.calendar_projection import CalendarProjection, build_view_options
from app.services.scheduling.errors import AppointmentNotFound, SchedulingError
from app.services.scheduling.mutation_validator import MutationValidator
from app.services.scheduling.slots import list_bookable_slots
from app.services.scheduling.time_grid import Interval, format_wall_clock, start_of_day

logger = logging.getLogger(__name__)


class RangeKey(NamedTuple):
    start: datetime
    end: datetime
    provider_id: Optional[int]

    @classmethod
    def from_range(cls, visible_range: VisibleRange, provider_id: Optional[int] = None) -> "RangeKey":
        return cls(visible_range.start, visible_range.end, provider_id)

    def covers(self, start: datetime, end: datetime, provider_id: int) -> bool:
        if self.provider_id is not None and self.provider_id != provider_id:
            return False
        return self.start <= start and end <= self.end


class CalendarSession:
    """Calendar state for one viewer"""

    def __init__(self, viewer: Viewer, api: SchedulingApiClient, settings: Settings):
        self.viewer = viewer
        self.api = api
        self.settings = settings
        self.projection = CalendarProjection(
            CalendarPalette.from_settings(settings),
            default_duration_minutes=settings.DEFAULT_APPOINTMENT_DURATION_MINUTES,
            max_range_days=settings.MAX_VISIBLE_RANGE_DAYS,
        )

        self.visible_range: Optional[VisibleRange] = None
        self.visible_key: Optional[RangeKey] = None
        self.snapshot: Optional[ScheduleSnapshot] = None
        self.snapshot_key: Optional[RangeKey] = None
        self._inflight: Dict[RangeKey, "asyncio.Task[ScheduleSnapshot]"] = {}

    # ========================================================================
    # Loading
    # ========================================================================

    def scoped_provider(self, provider_id: Optional[int]) -> Optional[int]:
        """Providers always see their own agenda, whatever filter they send"""
        if self.viewer.role == ViewerRole.PROVIDER:
            return self.viewer.effective_provider_id
        return provider_id

    def clamp_range(self, visible_range: VisibleRange) -> VisibleRange:
        limit = visible_range.start + timedelta(days=self.settings.MAX_VISIBLE_RANGE_DAYS)
        if visible_range.end <= limit:
            return visible_range
        logger.warning(
            f"Visible range {visible_range.start} - {visible_range.end} capped at "
            f"{self.settings.MAX_VISIBLE_RANGE_DAYS} days"
        )
        return VisibleRange(start=visible_range.start, end=limit)

    async def load(
            self,
            visible_range: VisibleRange,
            provider_id: Optional[int] = None
    ) -> Optional[ScheduleSnapshot]:
        """
        Make ``visible_range`` the visible range and return its snapshot.

        Returns None when another range became visible while this fetch
        was running.
        """
        visible_range = self.clamp_range(visible_range)
        provider_id = self.scoped_provider(provider_id)
        key = RangeKey.from_range(visible_range, provider_id)

        self.visible_range = visible_range
        self.visible_key = key

        if self.snapshot is not None and self.snapshot_key == key:
            return self.snapshot

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, visible_range))
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight fetch for {key}")

        snapshot = await asyncio.shield(task)

        if self.visible_key != key:
            logger.info(f"Discarding stale snapshot for {key}, visible range is now {self.visible_key}")
            return None

        self.snapshot = snapshot
        self.snapshot_key = key
        return snapshot

    async def _fetch(self, key: RangeKey, visible_range: VisibleRange) -> ScheduleSnapshot:
        try:
            return await self.api.list_appointments(visible_range.start, visible_range.end, key.provider_id)
        finally:
            self._inflight.pop(key, None)

    def invalidate(self):
        self.snapshot = None
        self.snapshot_key = None

    async def reload(self) -> Optional[ScheduleSnapshot]:
        self.invalidate()
        if self.visible_range is None:
            return None
        return await self.load(self.visible_range, self.visible_key.provider_id)

    async def events(
            self,
            visible_range: VisibleRange,
            provider_id: Optional[int] = None
    ) -> CalendarEventsResponse:
        snapshot = await self.load(visible_range, provider_id)
        key = RangeKey.from_range(self.clamp_range(visible_range), self.scoped_provider(provider_id))
        view_options = build_view_options(
            snapshot.tenant_business_hours if snapshot else (),
            self.settings.SLOT_DURATION_MINUTES,
        )

        if snapshot is None:
            return CalendarEventsResponse(
                range_start=visible_range.start,
                range_end=visible_range.end,
                provider_id=key.provider_id,
                stale=True,
                view_options=view_options,
            )

        events = self.projection.project_events(
            snapshot.appointments,
            snapshot.tenant_business_hours,
            snapshot.availabilities,
            snapshot.blocks,
            self.viewer,
            visible_range=self.visible_range,
            provider_filter=key.provider_id,
        )
        return CalendarEventsResponse(
            range_start=self.visible_range.start,
            range_end=self.visible_range.end,
            provider_id=key.provider_id,
            events=events,
            view_options=view_options,
        )

    async def snapshot_for(self, start: datetime, end: datetime, provider_id: int) -> ScheduleSnapshot:
        """
        Snapshot covering ``[start, end)`` for validation.

        Uses the cached snapshot when it covers the interval, otherwise
        fetches the affected days without touching the visible range.
        """
        if self.snapshot is not None and self.snapshot_key.covers(start, end, provider_id):
            return self.snapshot

        day_start = start_of_day(start)
        day_end = start_of_day(end) + timedelta(days=1)
        return await self.api.list_appointments(day_start, day_end, provider_id)

    # ========================================================================
    # Mutations
    # ========================================================================

    def _validator(self, snapshot: ScheduleSnapshot) -> MutationValidator:
        return MutationValidator.from_snapshot(
            snapshot,
            cancelled_status_ids=self.settings.CANCELLED_STATUS_IDS,
            enforce_conflicts_for_all_roles=self.settings.ENFORCE_CONFLICTS_FOR_ALL_ROLES,
            default_duration_minutes=self.settings.DEFAULT_APPOINTMENT_DURATION_MINUTES,
        )

    def _requested_end(self, request: AppointmentCreateRequest) -> datetime:
        if request.date_end is not None:
            return request.date_end
        duration = request.duration_minutes or self.settings.DEFAULT_APPOINTMENT_DURATION_MINUTES
        return request.date_start + timedelta(minutes=duration)

    def _check_create_request(self, request: AppointmentCreateRequest):
        MutationValidator.check_create_request(
            self.viewer, request.provider_id, request.date_start, request.date_end, request.client_id
        )

    async def validate_create(self, request: AppointmentCreateRequest) -> MutationDecision:
        """Decision for a booking without persisting it"""
        try:
            self._check_create_request(request)
        except SchedulingError as e:
            return MutationValidator.rejected(MutationKind.CREATE, request.date_start, request.date_end, e)

        snapshot = await self.snapshot_for(request.date_start, self._requested_end(request), request.provider_id)
        return self._validator(snapshot).validate_create(
            self.viewer,
            request.provider_id,
            request.date_start,
            request.date_end,
            service_duration=request.duration_minutes,
            client_id=request.client_id,
        )

    async def create(self, request: AppointmentCreateRequest) -> MutationDecision:
        self._check_create_request(request)
        snapshot = await self.snapshot_for(request.date_start, self._requested_end(request), request.provider_id)
        start, end = self._validator(snapshot).check_create(
            self.viewer,
            request.provider_id,
            request.date_start,
            request.date_end,
            service_duration=request.duration_minutes,
            client_id=request.client_id,
        )

        appointment = await self.api.create_appointment(request.to_backend_payload(end))
        logger.info(f"Created appointment for provider {request.provider_id} at {format_wall_clock(start)}")
        await self._refresh_after_write()
        return self._accepted(MutationKind.CREATE, start, end, appointment)

    async def reschedule(self, appointment_id: int, request: AppointmentRescheduleRequest) -> MutationDecision:
        """Drag: the appointment keeps its duration unless a new end is sent"""
        MutationValidator.check_edit_request(self.viewer, request.date_start, request.date_end)
        appointment = await self._find_appointment(appointment_id, request.date_start)
        MutationValidator.check_ownership(self.viewer, appointment)
        new_end = request.date_end or request.date_start + (
            appointment.effective_end(self.settings.DEFAULT_APPOINTMENT_DURATION_MINUTES) - appointment.date_start
        )
        snapshot = await self.snapshot_for(request.date_start, new_end, appointment.provider_id)
        start, end = self._validator(snapshot).check_reschedule(
            self.viewer, appointment, request.date_start, request.date_end
        )
        return await self._persist_move(MutationKind.RESCHEDULE, appointment, start, end)

    async def resize(self, appointment_id: int, request: AppointmentResizeRequest) -> MutationDecision:
        MutationValidator.check_edit_request(self.viewer, request.date_start, request.date_end)
        appointment = await self._find_appointment(appointment_id, request.date_start)
        MutationValidator.check_ownership(self.viewer, appointment)
        snapshot = await self.snapshot_for(request.date_start, request.date_end, appointment.provider_id)
        start, end = self._validator(snapshot).check_resize(
            self.viewer, appointment, request.date_start, request.date_end
        )
        return await self._persist_move(MutationKind.RESIZE, appointment, start, end)

    async def _persist_move(
            self,
            kind: MutationKind,
            appointment: Appointment,
            start: datetime,
            end: datetime
    ) -> MutationDecision:
        payload = {"date_start": format_wall_clock(start), "date_end": format_wall_clock(end)}
        updated = await self.api.update_appointment(appointment.id, payload)
        logger.info(f"{kind.value.capitalize()}d appointment {appointment.id} to {payload['date_start']}")
        await self._refresh_after_write()
        return self._accepted(kind, start, end, updated)

    async def _find_appointment(self, appointment_id: int, near: datetime) -> Appointment:
        if self.snapshot is not None:
            appointment = self.snapshot.find_appointment(appointment_id)
            if appointment is not None:
                return appointment

        day_start = start_of_day(near)
        snapshot = await self.api.list_appointments(day_start, day_start + timedelta(days=1), None)
        appointment = snapshot.find_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound()
        return appointment

    async def _refresh_after_write(self):
        # The write already succeeded; a failed reload only leaves the cache empty
        try:
            await self.reload()
        except SchedulingError as e:
            logger.warning(f"Reload after write failed: {e.code}")
            self.invalidate()

    @staticmethod
    def _accepted(
            kind: MutationKind,
            start: datetime,
            end: datetime,
            appointment: Optional[Appointment]
    ) -> MutationDecision:
        return MutationDecision(
            kind=kind,
            state=MutationState.VALIDATED,
            date_start=start,
            date_end=end,
            appointment=appointment,
        )

    # ========================================================================
    # Slots
    # ========================================================================

    async def bookable_slots(
            self,
            provider_id: int,
            day: date,
            duration_minutes: Optional[int] = None
    ) -> Tuple[int, List[Interval]]:
        duration = duration_minutes or self.settings.DEFAULT_APPOINTMENT_DURATION_MINUTES
        day_start = start_of_day(day)
        snapshot = await self.snapshot_for(day_start, day_start + timedelta(days=1), provider_id)

        slots = list_bookable_slots(
            AvailabilityResolver.from_snapshot(snapshot),
            snapshot.appointments,
            provider_id,
            day,
            duration,
            self.settings.SLOT_DURATION_MINUTES,
            cancelled_status_ids=self.settings.CANCELLED_STATUS_IDS,
            default_duration_minutes=self.settings.DEFAULT_APPOINTMENT_DURATION_MINUTES,
        )
        return duration, slots


class CalendarSessionRegistry:
    """Keeps one CalendarSession per viewer, least recently used evicted first"""

    def __init__(self, settings: Settings, max_sessions: int = 500):
        self.settings = settings
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[Tuple[str, int], CalendarSession]" = OrderedDict()

    def session_for(self, viewer: Viewer, api: SchedulingApiClient) -> CalendarSession:
        key = (viewer.role.value, viewer.id)
        session = self._sessions.get(key)

        if session is None or session.viewer != viewer:
            session = CalendarSession(viewer, api, self.settings)
            self._sessions[key] = session
            logger.debug(f"Opened calendar session for {viewer.role.value} {viewer.id}")
        else:
            # Fresh token and correlation id for this request
            session.api = api
            self._sessions.move_to_end(key)

        while len(self._sessions) > self.max_sessions:
            self._sessions.popitem(last=False)

        return session

    def __len__(self) -> int:
        return len(self._sessions)
