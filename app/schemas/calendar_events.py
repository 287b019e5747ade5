# app/schemas/calendar_events.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List, Tuple
from datetime import date, datetime, time
from enum import Enum

from app.schemas.scheduling import Appointment, ProviderBlock, WallClockModel
from app.services.scheduling.time_grid import format_wall_clock, parse_time_of_day, parse_wall_clock


class CalendarEventKind(str, Enum):
    UNAVAILABLE = "unavailable"
    BLOCK = "block"
    APPOINTMENT = "appointment"
    OCCUPIED = "occupied"


class UnavailableReason(str, Enum):
    TENANT = "tenant"
    PROVIDER = "provider"


class MutationKind(str, Enum):
    CREATE = "create"
    RESCHEDULE = "reschedule"
    RESIZE = "resize"


class MutationState(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    REJECTED = "rejected"


class VisibleRange(WallClockModel):
    """The window of time the calendar is currently showing"""
    start: datetime = Field(..., description="Range start (inclusive)")
    end: datetime = Field(..., description="Range end (exclusive)")

    @field_validator("start", "end", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> datetime:
        return parse_wall_clock(v)

    @field_validator("end")
    @classmethod
    def end_after_start(cls, v: datetime, info) -> datetime:
        start = info.data.get("start")
        if start and v <= start:
            raise ValueError("End must be after start")
        return v


class CalendarPalette(BaseModel):
    """Colors for every event kind; status colors come from configuration"""
    status_colors: Dict[int, str] = Field(default_factory=dict)
    default_color: str = "#1a73e8"
    text_color: str = "#ffffff"
    occupied_background: str = "#d9d9d9"
    occupied_border: str = "#bfbfbf"
    occupied_text: str = "#5f6368"
    unavailable_background: str = "#c5221f"
    unavailable_border: str = "#b71c1c"
    block_background: str = "#e37400"
    block_border: str = "#b06000"

    @classmethod
    def from_settings(cls, settings) -> "CalendarPalette":
        return cls(
            status_colors=dict(settings.STATUS_COLORS),
            default_color=settings.DEFAULT_EVENT_COLOR,
            text_color=settings.EVENT_TEXT_COLOR,
            occupied_background=settings.OCCUPIED_BACKGROUND_COLOR,
            occupied_border=settings.OCCUPIED_BORDER_COLOR,
            occupied_text=settings.OCCUPIED_TEXT_COLOR,
            unavailable_background=settings.UNAVAILABLE_BACKGROUND_COLOR,
            unavailable_border=settings.UNAVAILABLE_BORDER_COLOR,
            block_background=settings.BLOCK_BACKGROUND_COLOR,
            block_border=settings.BLOCK_BORDER_COLOR,
        )

    def color_for_status(self, status_id: Optional[int]) -> str:
        if status_id is None:
            return self.default_color
        return self.status_colors.get(status_id, self.default_color)


class CalendarEvent(WallClockModel):
    """A renderable calendar event"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Event identifier, unique within a projection")
    kind: CalendarEventKind
    title: str
    start: datetime
    end: datetime
    background_color: str
    border_color: str
    text_color: str
    class_names: Tuple[str, ...] = ()
    display: str = "block"
    interactive: bool = False
    reason: Optional[UnavailableReason] = Field(None, description="Why the time is unavailable")
    appointment: Optional[Appointment] = Field(None, description="Only set when the viewer may see details")
    block: Optional[ProviderBlock] = None


class DisplayBusinessHours(BaseModel):
    days_of_week: List[int]
    start_time: str = Field(..., description="Opening time (HH:MM)")
    end_time: str = Field(..., description="Closing time (HH:MM)")


class CalendarViewOptions(BaseModel):
    """Calendar bounds derived from the tenant's business hours"""
    hidden_days: List[int] = Field(default_factory=list, description="Weekdays (0=Sunday) the tenant never opens")
    slot_min_time: str = "06:00:00"
    slot_max_time: str = "22:00:00"
    scroll_time: str = "08:00"
    slot_duration: str = "00:30:00"
    business_hours: List[DisplayBusinessHours] = Field(default_factory=list)


class CalendarEventsResponse(WallClockModel):
    range_start: datetime
    range_end: datetime
    provider_id: Optional[int] = None
    stale: bool = Field(False, description="True when a newer range superseded this request")
    events: List[CalendarEvent] = Field(default_factory=list)
    view_options: CalendarViewOptions = Field(default_factory=CalendarViewOptions)


class BookableSlot(WallClockModel):
    start: datetime
    end: datetime


class BookableSlotsResponse(BaseModel):
    provider_id: int
    day: date
    duration_minutes: int
    slots: List[BookableSlot] = Field(default_factory=list)


# ============================================================================
# Mutation requests
# ============================================================================

class AppointmentCreateRequest(WallClockModel):
    """Appointment booking request"""
    service_id: int = Field(..., description="Service identifier")
    provider_id: int = Field(..., description="Provider identifier")
    client_id: int = Field(..., description="Client identifier")
    date_start: datetime = Field(..., description="Requested start")
    date_end: Optional[datetime] = Field(None, description="Requested end; derived from duration when absent")
    duration_minutes: Optional[int] = Field(None, ge=1, description="Service duration used to derive the end")
    status_id: Optional[int] = Field(None, description="Appointment status")
    notes: Optional[str] = Field(None, description="Additional notes")

    @field_validator("date_start", "date_end", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> Optional[datetime]:
        if v in (None, ""):
            return None
        return parse_wall_clock(v)

    def to_backend_payload(self, date_end: datetime) -> Dict[str, Any]:
        payload = {
            "service_id": self.service_id,
            "provider_id": self.provider_id,
            "client_id": self.client_id,
            "date_start": format_wall_clock(self.date_start),
            "date_end": format_wall_clock(date_end),
            "status_agenda_id": self.status_id,
        }
        if self.notes is not None:
            payload["notes"] = self.notes
        return payload


class AppointmentRescheduleRequest(WallClockModel):
    """Drag: new start, end follows unless given"""
    date_start: datetime
    date_end: Optional[datetime] = None

    @field_validator("date_start", "date_end", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> Optional[datetime]:
        if v in (None, ""):
            return None
        return parse_wall_clock(v)


class AppointmentResizeRequest(WallClockModel):
    """Resize: both ends may move"""
    date_start: datetime
    date_end: datetime

    @field_validator("date_start", "date_end", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> datetime:
        return parse_wall_clock(v)


class MutationDecision(WallClockModel):
    """Result of validating (and possibly persisting) a calendar mutation"""
    kind: MutationKind
    state: MutationState
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    code: Optional[str] = Field(None, description="Rejection code, see the error taxonomy")
    message: Optional[str] = None
    revert: bool = Field(False, description="Whether the UI must restore the previous position")
    appointment: Optional[Appointment] = None

    @property
    def accepted(self) -> bool:
        return self.state == MutationState.VALIDATED


# ============================================================================
# Schedule settings payloads
# ============================================================================

class WeeklyWindowInput(BaseModel):
    """One weekday window in a weekly sync"""
    weekday: int = Field(..., description="Day of week (0=Sunday, 6=Saturday)", ge=0, le=6)
    start_time: time = Field(..., description="Opening time (HH:MM[:SS])")
    end_time: time = Field(..., description="Closing time (HH:MM[:SS])")
    active: bool = Field(True, description="Whether the window is in use")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_time(cls, v: Any) -> time:
        return parse_time_of_day(v)

    @field_validator("end_time")
    @classmethod
    def end_after_start(cls, v: time, info) -> time:
        start_time = info.data.get("start_time")
        if start_time and v <= start_time:
            raise ValueError("End time must be after start time")
        return v


class WeeklySyncRequest(BaseModel):
    """Full weekly replace; the backend names the list business_hours for both endpoints"""
    business_hours: List[WeeklyWindowInput] = Field(default_factory=list)

    def to_backend_payload(self) -> Dict[str, Any]:
        return {
            "business_hours": [
                {
                    "weekday": item.weekday,
                    "start_time": item.start_time.strftime("%H:%M:%S"),
                    "end_time": item.end_time.strftime("%H:%M:%S"),
                    "active": item.active,
                }
                for item in self.business_hours
            ]
        }


class BlockCreateRequest(WallClockModel):
    start_at: datetime = Field(..., description="Block start")
    end_at: datetime = Field(..., description="Block end")
    reason: Optional[str] = Field(None, description="Shown as the block title")

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> datetime:
        return parse_wall_clock(v)

    @field_validator("end_at")
    @classmethod
    def end_after_start(cls, v: datetime, info) -> datetime:
        start_at = info.data.get("start_at")
        if start_at and v <= start_at:
            raise ValueError("End time must be after start time")
        return v

    def to_backend_payload(self) -> Dict[str, Any]:
        payload = {
            "start_at": format_wall_clock(self.start_at),
            "end_at": format_wall_clock(self.end_at),
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload
