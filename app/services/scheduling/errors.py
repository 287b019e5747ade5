# app/services/scheduling/errors.py
"""Scheduling error taxonomy.

Every rejection carries a stable ``code`` the UI can switch on. Local
validation errors are raised before any backend call; backend errors come
from the REST client.
"""
from typing import Optional

from app.schemas.scheduling import SlotVerdict


class SchedulingError(Exception):
    """Base class for every scheduling rejection"""
    code = "scheduling_error"
    status_code = 400
    default_message = "The scheduling request was rejected"
    # Whether an optimistic UI change should snap back
    revert = True

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "revert": self.revert}


class OutsideTenantHours(SchedulingError):
    code = "outside_tenant_hours"
    status_code = 422
    default_message = "This time is outside business hours"


class OutsideProviderAvailability(SchedulingError):
    code = "outside_provider_availability"
    status_code = 422
    default_message = "The provider is not available at this time"


class BlockedByProvider(SchedulingError):
    code = "blocked_by_provider"
    status_code = 422
    default_message = "This time is blocked"


class AppointmentConflict(SchedulingError):
    code = "appointment_conflict"
    status_code = 409
    default_message = "This time is already taken"


class InvalidInterval(SchedulingError):
    code = "invalid_interval"
    status_code = 422
    default_message = "The end time must be after the start time"


class PermissionDenied(SchedulingError):
    code = "permission_denied"
    status_code = 403
    default_message = "You do not have permission to do this"


class AppointmentNotFound(SchedulingError):
    code = "appointment_not_found"
    status_code = 404
    default_message = "Appointment not found"


class BackendUnavailable(SchedulingError):
    code = "backend_unavailable"
    status_code = 503
    default_message = "The scheduling service is unavailable, please try again"


class BackendRejected(SchedulingError):
    """The backend refused the request for a reason the engine did not predict"""
    code = "backend_rejected"
    status_code = 400
    default_message = "The scheduling service rejected the request"


VERDICT_ERRORS = {
    SlotVerdict.BLOCKED_BY_TENANT_HOURS: OutsideTenantHours,
    SlotVerdict.BLOCKED_BY_PROVIDER_AVAILABILITY: OutsideProviderAvailability,
    SlotVerdict.BLOCKED_BY_BLOCK: BlockedByProvider,
    SlotVerdict.BLOCKED_BY_APPOINTMENT_CONFLICT: AppointmentConflict,
}


def error_for_verdict(verdict: SlotVerdict) -> Optional[SchedulingError]:
    """The rejection matching a verdict, or None when the slot is available"""
    error_class = VERDICT_ERRORS.get(verdict)
    return error_class() if error_class else None
