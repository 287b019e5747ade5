# app/services/scheduling/calendar_projection.py
"""
Calendar Projection

Turns a schedule snapshot into the events a calendar widget renders,
scoped to what the viewer is allowed to see:

- admin sees every appointment
- provider sees only their own appointments
- client sees their own appointments in full and everybody else's as an
  opaque "Occupied" placeholder

With a provider filter and a visible range it also synthesizes background
"unavailable" events for the time the provider cannot be booked.
"""
import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Sequence

from app.schemas.calendar_events import (
    CalendarEvent,
    CalendarEventKind,
    CalendarPalette,
    CalendarViewOptions,
    DisplayBusinessHours,
    UnavailableReason,
    VisibleRange,
)
from app.schemas.scheduling import (
    Appointment,
    ProviderAvailability,
    ProviderBlock,
    TenantBusinessHour,
    Viewer,
    ViewerRole,
)
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.time_grid import (
    Interval,
    clip_interval,
    format_date,
    format_time,
    iter_days,
    overlaps,
    start_of_day,
    subtract_all,
)

logger = logging.getLogger(__name__)

OCCUPIED_TITLE = "Occupied"
BLOCK_TITLE = "Blocked"
TENANT_CLOSED_TITLE = "Closed"
PROVIDER_UNAVAILABLE_TITLE = "Unavailable"

SERVICE_FALLBACK = "Service"
CLIENT_FALLBACK = "Client"
STUDENT_FALLBACK = "Student"
PROVIDER_FALLBACK = "Provider"

# Monday to Saturday, 08:00 - 18:00
DEFAULT_DISPLAY_HOURS = DisplayBusinessHours(
    days_of_week=[1, 2, 3, 4, 5, 6], start_time="08:00", end_time="18:00"
)


class CalendarProjection:
    """Builds role-scoped calendar events from schedule data"""

    def __init__(
            self,
            palette: CalendarPalette,
            default_duration_minutes: int = 30,
            max_range_days: int = 62
    ):
        self.palette = palette
        self.default_duration_minutes = default_duration_minutes
        self.max_range_days = max_range_days

    def project_events(
            self,
            appointments: Iterable[Appointment],
            business_hours: Iterable[TenantBusinessHour],
            availabilities: Iterable[ProviderAvailability],
            blocks: Iterable[ProviderBlock],
            viewer: Viewer,
            visible_range: Optional[VisibleRange] = None,
            provider_filter: Optional[int] = None
    ) -> List[CalendarEvent]:
        """
        Project schedule data into calendar events.

        Events come out in three groups: unavailable backgrounds, blocks,
        then appointments.
        """
        business_hours = tuple(business_hours)
        availabilities = tuple(availabilities)
        blocks = tuple(blocks)

        events: List[CalendarEvent] = []

        if provider_filter is not None and visible_range is not None:
            resolver = AvailabilityResolver(business_hours, availabilities, ())
            events.extend(self.unavailable_events(resolver, provider_filter, visible_range))

        events.extend(self.block_events(blocks, provider_filter, visible_range))
        events.extend(self.appointment_events(appointments, viewer))

        logger.debug(
            f"Projected {len(events)} events for {viewer.role.value} {viewer.id} "
            f"(provider filter: {provider_filter})"
        )
        return events

    # ------------------------------------------------------------------
    # Unavailable backgrounds
    # ------------------------------------------------------------------

    def unavailable_events(
            self,
            resolver: AvailabilityResolver,
            provider_id: int,
            visible_range: VisibleRange
    ) -> List[CalendarEvent]:
        bounds = (visible_range.start, visible_range.end)
        events = []

        for day in iter_days(visible_range.start, visible_range.end, self.max_range_days):
            day_key = format_date(day)
            day_start = start_of_day(day)
            day_end = day_start + timedelta(days=1)

            tenant = resolver.tenant_window(day)
            if tenant is None:
                events.extend(self._unavailable(
                    f"unavailable-tenant-{day_key}", (day_start, day_end),
                    UnavailableReason.TENANT, bounds
                ))
                continue

            if tenant[0] > day_start:
                events.extend(self._unavailable(
                    f"unavailable-tenant-before-{day_key}", (day_start, tenant[0]),
                    UnavailableReason.TENANT, bounds
                ))
            if tenant[1] < day_end:
                events.extend(self._unavailable(
                    f"unavailable-tenant-after-{day_key}", (tenant[1], day_end),
                    UnavailableReason.TENANT, bounds
                ))

            windows = resolver.provider_windows(provider_id, day)
            if windows is None:
                continue

            gaps = subtract_all([tenant], windows)
            if gaps == [tenant]:
                events.extend(self._unavailable(
                    f"unavailable-provider-{provider_id}-{day_key}", tenant,
                    UnavailableReason.PROVIDER, bounds
                ))
                continue

            for gap in gaps:
                edge = "before" if gap[0] == tenant[0] else "after" if gap[1] == tenant[1] else "between"
                events.extend(self._unavailable(
                    f"unavailable-{edge}-{provider_id}-{day_key}-{format_time(gap[0])}", gap,
                    UnavailableReason.PROVIDER, bounds
                ))

        return events

    def _unavailable(
            self,
            event_id: str,
            interval: Interval,
            reason: UnavailableReason,
            bounds: Interval
    ) -> List[CalendarEvent]:
        clipped = clip_interval(interval, bounds)
        if clipped is None:
            return []

        return [CalendarEvent(
            id=event_id,
            kind=CalendarEventKind.UNAVAILABLE,
            title=TENANT_CLOSED_TITLE if reason == UnavailableReason.TENANT else PROVIDER_UNAVAILABLE_TITLE,
            start=clipped[0],
            end=clipped[1],
            background_color=self.palette.unavailable_background,
            border_color=self.palette.unavailable_border,
            text_color=self.palette.text_color,
            class_names=("fc-event-unavailable", f"fc-event-unavailable-{reason.value}"),
            display="background",
            interactive=False,
            reason=reason,
        )]

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def block_events(
            self,
            blocks: Sequence[ProviderBlock],
            provider_filter: Optional[int] = None,
            visible_range: Optional[VisibleRange] = None
    ) -> List[CalendarEvent]:
        events = []
        for index, block in enumerate(blocks):
            if provider_filter is not None and block.provider_id != provider_filter:
                continue
            if visible_range is not None and not overlaps(
                    block.start_at, block.end_at, visible_range.start, visible_range.end
            ):
                continue

            block_id = block.id if block.id is not None else f"{block.provider_id}-{index}"
            events.append(CalendarEvent(
                id=f"block-{block_id}",
                kind=CalendarEventKind.BLOCK,
                title=block.reason or BLOCK_TITLE,
                start=block.start_at,
                end=block.end_at,
                background_color=self.palette.block_background,
                border_color=self.palette.block_border,
                text_color=self.palette.text_color,
                class_names=("fc-event-block",),
                interactive=False,
                block=block,
            ))
        return events

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def appointment_events(
            self,
            appointments: Iterable[Appointment],
            viewer: Viewer
    ) -> List[CalendarEvent]:
        events = []
        for appointment in appointments:
            if viewer.role == ViewerRole.ADMIN:
                events.append(self._appointment_event(
                    appointment, self._title_with_client(appointment, viewer)
                ))
            elif viewer.role == ViewerRole.PROVIDER:
                if appointment.provider_id != viewer.effective_provider_id:
                    continue
                events.append(self._appointment_event(
                    appointment, self._title_with_client(appointment, viewer)
                ))
            elif appointment.client_id == viewer.id:
                events.append(self._appointment_event(
                    appointment,
                    f"{self._service_name(appointment)} - {self._provider_name(appointment)}",
                    color=self.palette.default_color
                ))
            else:
                events.append(self._occupied_event(appointment))
        return events

    def _appointment_event(
            self,
            appointment: Appointment,
            title: str,
            color: Optional[str] = None
    ) -> CalendarEvent:
        color = color or self.palette.color_for_status(appointment.status_id)
        return CalendarEvent(
            id=str(appointment.id),
            kind=CalendarEventKind.APPOINTMENT,
            title=title,
            start=appointment.date_start,
            end=appointment.effective_end(self.default_duration_minutes),
            background_color=color,
            border_color=color,
            text_color=self.palette.text_color,
            class_names=("fc-event-appointment",),
            interactive=True,
            appointment=appointment,
        )

    def _occupied_event(self, appointment: Appointment) -> CalendarEvent:
        # Only the time span leaves this method
        return CalendarEvent(
            id=f"occupied-{appointment.id}",
            kind=CalendarEventKind.OCCUPIED,
            title=OCCUPIED_TITLE,
            start=appointment.date_start,
            end=appointment.effective_end(self.default_duration_minutes),
            background_color=self.palette.occupied_background,
            border_color=self.palette.occupied_border,
            text_color=self.palette.occupied_text,
            class_names=("fc-event-occupied",),
            interactive=False,
        )

    def _title_with_client(self, appointment: Appointment, viewer: Viewer) -> str:
        client_name = appointment.client.name if appointment.client else None
        if not client_name:
            client_name = STUDENT_FALLBACK if viewer.uses_student_label else CLIENT_FALLBACK
        return f"{self._service_name(appointment)} - {client_name}"

    @staticmethod
    def _service_name(appointment: Appointment) -> str:
        return (appointment.service.name if appointment.service else None) or SERVICE_FALLBACK

    @staticmethod
    def _provider_name(appointment: Appointment) -> str:
        return (appointment.provider.name if appointment.provider else None) or PROVIDER_FALLBACK


def build_view_options(
        business_hours: Iterable[TenantBusinessHour],
        slot_duration_minutes: int = 30
) -> CalendarViewOptions:
    """Calendar bounds from the tenant's active business hours"""
    active = sorted(
        (bh for bh in business_hours if bh.active),
        key=lambda bh: (bh.weekday, bh.start_time)
    )

    hours, minutes = divmod(slot_duration_minutes, 60)
    slot_duration = f"{hours:02d}:{minutes:02d}:00"

    if not active:
        return CalendarViewOptions(
            slot_duration=slot_duration,
            business_hours=[DEFAULT_DISPLAY_HOURS],
        )

    open_days = {bh.weekday for bh in active}
    return CalendarViewOptions(
        hidden_days=[day for day in range(7) if day not in open_days],
        slot_min_time=format_time(min(bh.start_time for bh in active)),
        slot_max_time=format_time(max(bh.end_time for bh in active)),
        scroll_time=format_time(active[0].start_time, with_seconds=False),
        slot_duration=slot_duration,
        business_hours=[
            DisplayBusinessHours(
                days_of_week=[bh.weekday],
                start_time=format_time(bh.start_time, with_seconds=False),
                end_time=format_time(bh.end_time, with_seconds=False),
            )
            for bh in active
        ],
    )
