# app/services/scheduling/conflict_detector.py
"""
Conflict Detector

Checks a candidate interval against existing appointments and provider
blocks using the half-open overlap test. Only appointments of the same
provider count, cancelled appointments never block a slot, and the
appointment being moved can be excluded so it does not collide with itself.
"""
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional

from app.schemas.scheduling import Appointment, ProviderBlock
from app.services.scheduling.time_grid import overlaps


class ConflictDetector:
    """Overlap checks against appointments and blocks"""

    def __init__(
            self,
            cancelled_status_ids: Iterable[int] = (),
            default_duration_minutes: int = 30
    ):
        self.cancelled_status_ids: FrozenSet[int] = frozenset(cancelled_status_ids)
        self.default_duration_minutes = default_duration_minutes

    def find_conflicts(
            self,
            provider_id: int,
            candidate_start: datetime,
            candidate_end: datetime,
            existing_appointments: Iterable[Appointment],
            exclude_id: Optional[int] = None
    ) -> List[Appointment]:
        """Appointments of the provider that overlap the candidate interval"""
        conflicts = []
        for appointment in existing_appointments:
            if appointment.provider_id != provider_id:
                continue
            if exclude_id is not None and appointment.id == exclude_id:
                continue
            if appointment.is_cancelled(self.cancelled_status_ids):
                continue

            appointment_end = appointment.effective_end(self.default_duration_minutes)
            if overlaps(candidate_start, candidate_end, appointment.date_start, appointment_end):
                conflicts.append(appointment)

        return conflicts

    def has_conflict(
            self,
            provider_id: int,
            candidate_start: datetime,
            candidate_end: datetime,
            existing_appointments: Iterable[Appointment],
            exclude_id: Optional[int] = None
    ) -> bool:
        return bool(self.find_conflicts(
            provider_id, candidate_start, candidate_end, existing_appointments, exclude_id
        ))

    @staticmethod
    def find_block_conflicts(
            provider_id: int,
            start: datetime,
            end: datetime,
            blocks: Iterable[ProviderBlock]
    ) -> List[ProviderBlock]:
        return [
            block for block in blocks
            if block.provider_id == provider_id
            and overlaps(start, end, block.start_at, block.end_at)
        ]

    @staticmethod
    def has_block_conflict(
            provider_id: int,
            start: datetime,
            end: datetime,
            blocks: Iterable[ProviderBlock]
    ) -> bool:
        """Blocks always win, whatever the appointment status"""
        return bool(ConflictDetector.find_block_conflicts(provider_id, start, end, blocks))
