# app/services/scheduling/availability_resolver.py
"""
Availability Resolver

Combines tenant business hours, provider weekly availability and provider
blocks into a bookable / not-bookable verdict for an instant or an interval.

Rules, in order:
1. The tenant must be open that weekday, and the time must fall inside
   ``[start_time, end_time)`` of its business hours.
2. If the provider has any active availability record, the time must fall
   inside one of the records for that weekday. A provider with no active
   records at all is bound only by the tenant hours.
3. No provider block may cover the time.

The resolver only reads the collections it was built with.
"""
import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from app.schemas.scheduling import (
    ProviderAvailability,
    ProviderBlock,
    ScheduleSnapshot,
    SlotVerdict,
    TenantBusinessHour,
)
from app.services.scheduling.errors import InvalidInterval
from app.services.scheduling.time_grid import (
    Interval,
    clip_interval,
    combine,
    contains,
    merge_intervals,
    overlaps,
    subtract_all,
    to_weekday,
)

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    """Answers availability questions for one schedule snapshot"""

    def __init__(
            self,
            business_hours: Iterable[TenantBusinessHour],
            availabilities: Iterable[ProviderAvailability],
            blocks: Iterable[ProviderBlock]
    ):
        self._business_hours = tuple(business_hours)
        self._availabilities = tuple(availabilities)
        self._blocks = tuple(blocks)

    @classmethod
    def from_snapshot(cls, snapshot: ScheduleSnapshot) -> "AvailabilityResolver":
        return cls(snapshot.tenant_business_hours, snapshot.availabilities, snapshot.blocks)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def tenant_hour_for(self, weekday: int) -> Optional[TenantBusinessHour]:
        """Active business hours for a weekday (0=Sunday), if the tenant opens"""
        return next(
            (bh for bh in self._business_hours if bh.weekday == weekday and bh.active),
            None
        )

    def provider_availabilities(self, provider_id: int) -> List[ProviderAvailability]:
        return [
            a for a in self._availabilities
            if a.provider_id == provider_id and a.active
        ]

    def is_provider_constrained(self, provider_id: int) -> bool:
        """A provider with no active availability rows is bound only by tenant hours"""
        return bool(self.provider_availabilities(provider_id))

    def provider_blocks(self, provider_id: int) -> List[ProviderBlock]:
        return [b for b in self._blocks if b.provider_id == provider_id]

    # ------------------------------------------------------------------
    # Instants
    # ------------------------------------------------------------------

    def resolve(self, provider_id: int, instant: datetime) -> SlotVerdict:
        """Verdict for a single instant"""
        weekday = to_weekday(instant)
        time_of_day = instant.time()

        tenant_hour = self.tenant_hour_for(weekday)
        if tenant_hour is None:
            return SlotVerdict.BLOCKED_BY_TENANT_HOURS
        if not (tenant_hour.start_time <= time_of_day < tenant_hour.end_time):
            return SlotVerdict.BLOCKED_BY_TENANT_HOURS

        availabilities = self.provider_availabilities(provider_id)
        if availabilities:
            day_windows = [a for a in availabilities if a.weekday == weekday]
            if not day_windows:
                return SlotVerdict.BLOCKED_BY_PROVIDER_AVAILABILITY
            if not any(a.start_time <= time_of_day < a.end_time for a in day_windows):
                return SlotVerdict.BLOCKED_BY_PROVIDER_AVAILABILITY

        for block in self.provider_blocks(provider_id):
            if block.start_at <= instant < block.end_at:
                return SlotVerdict.BLOCKED_BY_BLOCK

        return SlotVerdict.AVAILABLE

    def is_bookable(self, provider_id: int, instant: datetime) -> bool:
        return self.resolve(provider_id, instant) == SlotVerdict.AVAILABLE

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def tenant_window(self, day: date) -> Optional[Interval]:
        tenant_hour = self.tenant_hour_for(to_weekday(day))
        if tenant_hour is None or tenant_hour.start_time >= tenant_hour.end_time:
            return None
        return (combine(day, tenant_hour.start_time), combine(day, tenant_hour.end_time))

    def provider_windows(self, provider_id: int, day: date) -> Optional[List[Interval]]:
        """
        Provider windows for a day, clipped to the tenant window and merged.

        Returns None when the provider is unconstrained (no availability rows),
        and an empty list when the provider does not work that day.
        """
        availabilities = self.provider_availabilities(provider_id)
        if not availabilities:
            return None

        tenant = self.tenant_window(day)
        if tenant is None:
            return []

        weekday = to_weekday(day)
        windows = []
        for availability in availabilities:
            if availability.weekday != weekday:
                continue
            clipped = clip_interval(
                (combine(day, availability.start_time), combine(day, availability.end_time)),
                tenant
            )
            if clipped:
                windows.append(clipped)

        return merge_intervals(windows)

    def bookable_windows(self, provider_id: int, day: date) -> List[Interval]:
        """Contiguous bookable stretches of a day, blocks already removed"""
        tenant = self.tenant_window(day)
        if tenant is None:
            return []

        windows = self.provider_windows(provider_id, day)
        if windows is None:
            windows = [tenant]

        cuts = [(b.start_at, b.end_at) for b in self.provider_blocks(provider_id)]
        return merge_intervals(subtract_all(windows, cuts))

    # ------------------------------------------------------------------
    # Intervals
    # ------------------------------------------------------------------

    def resolve_interval(self, provider_id: int, start: datetime, end: datetime) -> SlotVerdict:
        """
        Verdict for ``[start, end)``.

        The whole interval must sit inside one contiguous window; bookable
        endpoints alone are not enough. Raises InvalidInterval when
        ``start >= end``.
        """
        if start >= end:
            raise InvalidInterval()

        day = start.date()
        tenant = self.tenant_window(day)
        if tenant is None or not contains(tenant[0], tenant[1], start, end):
            return SlotVerdict.BLOCKED_BY_TENANT_HOURS

        windows = self.provider_windows(provider_id, day)
        if windows is not None and not any(contains(w[0], w[1], start, end) for w in windows):
            return SlotVerdict.BLOCKED_BY_PROVIDER_AVAILABILITY

        for block in self.provider_blocks(provider_id):
            if overlaps(start, end, block.start_at, block.end_at):
                logger.debug(f"Interval {start} - {end} hits block {block.id} for provider {provider_id}")
                return SlotVerdict.BLOCKED_BY_BLOCK

        return SlotVerdict.AVAILABLE

    def is_interval_bookable(self, provider_id: int, start: datetime, end: datetime) -> bool:
        if start >= end:
            return False
        return self.resolve_interval(provider_id, start, end) == SlotVerdict.AVAILABLE
