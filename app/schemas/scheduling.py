# app/schemas/scheduling.py
"""
Scheduling domain models.

These mirror the records the scheduling backend returns for a visible date
range. They are frozen: a snapshot is read-only for the duration of a
projection or validation pass.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_serializer,
    field_validator,
)

from app.services.scheduling.time_grid import format_wall_clock, parse_time_of_day, parse_wall_clock


class ViewerRole(str, Enum):
    ADMIN = "admin"
    PROVIDER = "provider"
    CLIENT = "client"


class SlotVerdict(str, Enum):
    """Outcome of an availability check for an instant or interval"""
    AVAILABLE = "available"
    BLOCKED_BY_TENANT_HOURS = "blocked_by_tenant_hours"
    BLOCKED_BY_PROVIDER_AVAILABILITY = "blocked_by_provider_availability"
    BLOCKED_BY_BLOCK = "blocked_by_block"
    BLOCKED_BY_APPOINTMENT_CONFLICT = "blocked_by_appointment_conflict"


class WallClockModel(BaseModel):
    """Emits timestamps as YYYY-MM-DD HH:mm:ss in JSON"""

    @field_serializer("*", mode="wrap", when_used="json")
    def serialize_wall_clock(self, value: Any, handler: SerializerFunctionWrapHandler) -> Any:
        if isinstance(value, datetime):
            return format_wall_clock(value)
        return handler(value)


class ScheduleRecord(WallClockModel):
    """Base for records read from the backend"""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class WeeklyWindow(ScheduleRecord):
    """A weekday + time-of-day window shared by business hours and availability"""
    id: Optional[int] = None
    weekday: int = Field(..., ge=0, le=6, description="Day of week (0=Sunday, 6=Saturday)")
    start_time: time
    end_time: time
    active: bool = True

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def coerce_time(cls, v: Any) -> time:
        return parse_time_of_day(v)


class TenantBusinessHour(WeeklyWindow):
    """Tenant-wide operating window for one weekday"""
    tenant_id: Optional[int] = None


class ProviderAvailability(WeeklyWindow):
    """Provider working window for one weekday"""
    provider_id: int


class ProviderBlock(ScheduleRecord):
    """Ad-hoc absolute-time unavailability for a provider"""
    id: Optional[int] = None
    provider_id: int
    tenant_id: Optional[int] = None
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = None
    created_by: Optional[int] = None

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def coerce_datetime(cls, v: Any) -> datetime:
        return parse_wall_clock(v)


class ServiceRef(ScheduleRecord):
    id: Optional[int] = None
    name: Optional[str] = None
    duration_minutes: Optional[int] = None


class PersonRef(ScheduleRecord):
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None


class ProviderRef(ScheduleRecord):
    id: Optional[int] = None
    user: Optional[PersonRef] = None

    @property
    def name(self) -> Optional[str]:
        return self.user.name if self.user else None


class Appointment(ScheduleRecord):
    """An appointment as returned by the backend, with embedded references"""
    id: Optional[int] = None
    tenant_id: Optional[int] = None
    service_id: int
    provider_id: int
    client_id: int
    date_start: datetime
    date_end: Optional[datetime] = None
    status_id: Optional[int] = Field(
        None, validation_alias=AliasChoices("status_id", "status_agenda_id")
    )
    notes: Optional[str] = None
    service: Optional[ServiceRef] = None
    provider: Optional[ProviderRef] = None
    client: Optional[PersonRef] = None

    @field_validator("date_start", mode="before")
    @classmethod
    def coerce_start(cls, v: Any) -> datetime:
        return parse_wall_clock(v)

    @field_validator("date_end", mode="before")
    @classmethod
    def coerce_end(cls, v: Any) -> Optional[datetime]:
        if v in (None, ""):
            return None
        return parse_wall_clock(v)

    def effective_end(self, default_duration_minutes: int) -> datetime:
        """
        End of the appointment.

        Falls back to the service duration, then to the configured default,
        when the backend did not send ``date_end``.
        """
        if self.date_end is not None:
            return self.date_end
        if self.service and self.service.duration_minutes:
            return self.date_start + timedelta(minutes=self.service.duration_minutes)
        return self.date_start + timedelta(minutes=default_duration_minutes)

    def is_cancelled(self, cancelled_status_ids: Iterable[int]) -> bool:
        return self.status_id is not None and self.status_id in set(cancelled_status_ids)


class ScheduleSnapshot(ScheduleRecord):
    """Everything the calendar needs for one visible range"""
    appointments: Tuple[Appointment, ...] = ()
    tenant_business_hours: Tuple[TenantBusinessHour, ...] = ()
    availabilities: Tuple[ProviderAvailability, ...] = ()
    blocks: Tuple[ProviderBlock, ...] = ()

    def find_appointment(self, appointment_id: int) -> Optional[Appointment]:
        return next((a for a in self.appointments if a.id == appointment_id), None)


# Role names used by the backend, matched once when the viewer is built
ROLE_KEYWORDS = (
    (ViewerRole.ADMIN, ("admin",)),
    (ViewerRole.PROVIDER, ("provider", "profissional")),
    (ViewerRole.CLIENT, ("client", "cliente", "student", "aluno")),
)

DRIVING_SCHOOL_MODULES = ("auto-escola", "autoescola")


class Viewer(BaseModel):
    """The user a projection or mutation is evaluated for"""
    model_config = ConfigDict(frozen=True)

    role: ViewerRole
    id: int
    provider_id: Optional[int] = None
    permissions: FrozenSet[str] = frozenset()
    modules: FrozenSet[str] = frozenset()

    @property
    def effective_provider_id(self) -> Optional[int]:
        if self.role != ViewerRole.PROVIDER:
            return None
        return self.provider_id if self.provider_id is not None else self.id

    @property
    def uses_student_label(self) -> bool:
        return any(
            keyword in module.lower()
            for module in self.modules
            for keyword in DRIVING_SCHOOL_MODULES
        )

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    @staticmethod
    def parse_role(role_name: str) -> ViewerRole:
        """Map a backend role name (e.g. "Tenant Admin", "Profissional") to a ViewerRole"""
        lowered = (role_name or "").lower()
        for role, keywords in ROLE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return role
        raise ValueError(f"Unknown role: {role_name!r}")

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Viewer":
        """
        Build a viewer from decoded access-token claims.

        ``permissions`` may be a flat list or a module -> list mapping;
        ``modules`` may be a list or a mapping keyed by module name.
        """
        permissions = claims.get("permissions") or []
        if isinstance(permissions, dict):
            permissions = [p for perms in permissions.values() if isinstance(perms, list) for p in perms]

        modules = claims.get("modules") or []
        if isinstance(modules, dict):
            modules = list(modules.keys())

        provider_id = claims.get("provider_id")

        return cls(
            role=cls.parse_role(str(claims.get("role", ""))),
            id=int(claims["sub"]),
            provider_id=int(provider_id) if provider_id is not None else None,
            permissions=frozenset(str(p) for p in permissions),
            modules=frozenset(str(m) for m in modules),
        )
