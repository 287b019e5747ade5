# app/services/scheduling/mutation_validator.py
"""
Mutation Validator

Accepts or rejects calendar edits (create, drag, resize) before anything
is sent to the backend. Checks run in a fixed order and stop at the first
failure:

1. permission (agenda.appointments.create / agenda.appointments.edit)
2. ownership (providers and clients only touch their own appointments)
   and interval shape (end after start)
3. tenant hours, provider availability, provider blocks
4. double booking, for clients or for every role when configured

Steps 1 and 2 need no schedule data and are exposed as static
``check_*_request`` / ``check_ownership`` methods so callers can run them
before fetching anything.

``check_*`` methods raise a SchedulingError; ``validate_*`` methods return a
MutationDecision instead.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Tuple

from app.schemas.calendar_events import MutationDecision, MutationKind, MutationState
from app.schemas.scheduling import (
    Appointment,
    ProviderBlock,
    ScheduleSnapshot,
    SlotVerdict,
    Viewer,
    ViewerRole,
)
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.conflict_detector import ConflictDetector
from app.services.scheduling.errors import (
    AppointmentConflict,
    BlockedByProvider,
    InvalidInterval,
    PermissionDenied,
    SchedulingError,
    error_for_verdict,
)

logger = logging.getLogger(__name__)

CREATE_PERMISSION = "agenda.appointments.create"
EDIT_PERMISSION = "agenda.appointments.edit"


class MutationValidator:
    """Validates appointment mutations against one schedule snapshot"""

    def __init__(
            self,
            resolver: AvailabilityResolver,
            appointments: Iterable[Appointment],
            blocks: Iterable[ProviderBlock],
            cancelled_status_ids: Iterable[int] = (),
            enforce_conflicts_for_all_roles: bool = False,
            default_duration_minutes: int = 30
    ):
        self.resolver = resolver
        self.appointments = tuple(appointments)
        self.blocks = tuple(blocks)
        self.enforce_conflicts_for_all_roles = enforce_conflicts_for_all_roles
        self.default_duration_minutes = default_duration_minutes
        self.conflicts = ConflictDetector(cancelled_status_ids, default_duration_minutes)

    @classmethod
    def from_snapshot(
            cls,
            snapshot: ScheduleSnapshot,
            cancelled_status_ids: Iterable[int] = (),
            enforce_conflicts_for_all_roles: bool = False,
            default_duration_minutes: int = 30
    ) -> "MutationValidator":
        return cls(
            AvailabilityResolver.from_snapshot(snapshot),
            snapshot.appointments,
            snapshot.blocks,
            cancelled_status_ids=cancelled_status_ids,
            enforce_conflicts_for_all_roles=enforce_conflicts_for_all_roles,
            default_duration_minutes=default_duration_minutes,
        )

    # ------------------------------------------------------------------
    # Raising checks
    # ------------------------------------------------------------------

    def check_create(
            self,
            viewer: Viewer,
            provider_id: int,
            start: datetime,
            end: Optional[datetime] = None,
            service_duration: Optional[int] = None,
            client_id: Optional[int] = None
    ) -> Tuple[datetime, datetime]:
        """Validate a new booking and return its final ``(start, end)``"""
        self.check_create_request(viewer, provider_id, start, end, client_id)

        if end is None:
            end = start + timedelta(minutes=service_duration or self.default_duration_minutes)

        self._check_slot(viewer, provider_id, start, end)
        return start, end

    def check_reschedule(
            self,
            viewer: Viewer,
            appointment: Appointment,
            new_start: datetime,
            new_end: Optional[datetime] = None
    ) -> Tuple[datetime, datetime]:
        """Validate a drag; the duration is kept when no new end is given"""
        self.check_edit_request(viewer, new_start, new_end)
        self.check_ownership(viewer, appointment)

        if new_end is None:
            duration = appointment.effective_end(self.default_duration_minutes) - appointment.date_start
            new_end = new_start + duration

        self._check_slot(viewer, appointment.provider_id, new_start, new_end, exclude_id=appointment.id)
        return new_start, new_end

    def check_resize(
            self,
            viewer: Viewer,
            appointment: Appointment,
            new_start: datetime,
            new_end: datetime
    ) -> Tuple[datetime, datetime]:
        self.check_edit_request(viewer, new_start, new_end)
        self.check_ownership(viewer, appointment)
        self._check_slot(viewer, appointment.provider_id, new_start, new_end, exclude_id=appointment.id)
        return new_start, new_end

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def validate_create(
            self,
            viewer: Viewer,
            provider_id: int,
            start: datetime,
            end: Optional[datetime] = None,
            service_duration: Optional[int] = None,
            client_id: Optional[int] = None
    ) -> MutationDecision:
        return self._decide(
            MutationKind.CREATE, start, end,
            lambda: self.check_create(viewer, provider_id, start, end, service_duration, client_id)
        )

    def validate_reschedule(
            self,
            viewer: Viewer,
            appointment: Appointment,
            new_start: datetime,
            new_end: Optional[datetime] = None
    ) -> MutationDecision:
        return self._decide(
            MutationKind.RESCHEDULE, new_start, new_end,
            lambda: self.check_reschedule(viewer, appointment, new_start, new_end)
        )

    def validate_resize(
            self,
            viewer: Viewer,
            appointment: Appointment,
            new_start: datetime,
            new_end: datetime
    ) -> MutationDecision:
        return self._decide(
            MutationKind.RESIZE, new_start, new_end,
            lambda: self.check_resize(viewer, appointment, new_start, new_end)
        )

    @staticmethod
    def _decide(
            kind: MutationKind,
            start: datetime,
            end: Optional[datetime],
            check: Callable[[], Tuple[datetime, datetime]]
    ) -> MutationDecision:
        try:
            final_start, final_end = check()
        except SchedulingError as e:
            return MutationValidator.rejected(kind, start, end, e)

        return MutationDecision(
            kind=kind,
            state=MutationState.VALIDATED,
            date_start=final_start,
            date_end=final_end,
        )

    @staticmethod
    def rejected(
            kind: MutationKind,
            start: datetime,
            end: Optional[datetime],
            error: SchedulingError
    ) -> MutationDecision:
        logger.info(f"Rejected {kind.value} {start} - {end}: {error.code}")
        return MutationDecision(
            kind=kind,
            state=MutationState.REJECTED,
            date_start=start,
            date_end=end,
            code=error.code,
            message=error.message,
            revert=error.revert,
        )

    # ------------------------------------------------------------------
    # Snapshot-independent checks
    # ------------------------------------------------------------------

    @classmethod
    def check_create_request(
            cls,
            viewer: Viewer,
            provider_id: int,
            start: datetime,
            end: Optional[datetime] = None,
            client_id: Optional[int] = None
    ):
        cls._require_permission(viewer, CREATE_PERMISSION)

        if viewer.role == ViewerRole.PROVIDER and provider_id != viewer.effective_provider_id:
            raise PermissionDenied("Providers can only book their own agenda")
        if viewer.role == ViewerRole.CLIENT and client_id is not None and client_id != viewer.id:
            raise PermissionDenied("Clients can only book for themselves")

        cls._require_positive(start, end)

    @classmethod
    def check_edit_request(cls, viewer: Viewer, new_start: datetime, new_end: Optional[datetime] = None):
        """Permission and interval shape of a drag or resize; ownership needs the appointment"""
        cls._require_permission(viewer, EDIT_PERMISSION)
        cls._require_positive(new_start, new_end)

    @staticmethod
    def check_ownership(viewer: Viewer, appointment: Appointment):
        if viewer.role == ViewerRole.PROVIDER and appointment.provider_id != viewer.effective_provider_id:
            raise PermissionDenied("Providers can only move their own appointments")
        if viewer.role == ViewerRole.CLIENT and appointment.client_id != viewer.id:
            raise PermissionDenied("Clients can only move their own appointments")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_permission(viewer: Viewer, permission: str):
        if not viewer.has_permission(permission):
            raise PermissionDenied(f"Missing permission: {permission}")

    @staticmethod
    def _require_positive(start: datetime, end: Optional[datetime]):
        if end is not None and start >= end:
            raise InvalidInterval()

    def _check_slot(
            self,
            viewer: Viewer,
            provider_id: int,
            start: datetime,
            end: datetime,
            exclude_id: Optional[int] = None
    ):
        if start >= end:
            raise InvalidInterval()

        verdict = self.resolver.resolve_interval(provider_id, start, end)
        if verdict != SlotVerdict.AVAILABLE:
            raise error_for_verdict(verdict)

        # Blocks held outside the resolver still win
        if self.conflicts.has_block_conflict(provider_id, start, end, self.blocks):
            raise BlockedByProvider()

        if viewer.role == ViewerRole.CLIENT or self.enforce_conflicts_for_all_roles:
            conflicts = self.conflicts.find_conflicts(
                provider_id, start, end, self.appointments, exclude_id=exclude_id
            )
            if conflicts:
                logger.debug(
                    f"Interval {start} - {end} overlaps appointments "
                    f"{[a.id for a in conflicts]} of provider {provider_id}"
                )
                raise AppointmentConflict()
