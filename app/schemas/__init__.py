# app/schemas/__init__.py
from .scheduling import (
    ViewerRole,
    SlotVerdict,
    TenantBusinessHour,
    ProviderAvailability,
    ProviderBlock,
    ServiceRef,
    PersonRef,
    ProviderRef,
    Appointment,
    ScheduleSnapshot,
    Viewer
)

from .calendar_events import (
    CalendarEventKind,
    UnavailableReason,
    MutationKind,
    MutationState,
    VisibleRange,
    CalendarPalette,
    CalendarEvent,
    CalendarViewOptions,
    CalendarEventsResponse,
    BookableSlot,
    BookableSlotsResponse,
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
    AppointmentResizeRequest,
    MutationDecision,
    WeeklyWindowInput,
    WeeklySyncRequest,
    BlockCreateRequest
)
