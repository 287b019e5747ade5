from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.slots import list_bookable_slots

from factories import MONDAY, PROVIDER_ID, SUNDAY, appointment, at, availability, block, business_hours


def resolver():
    return AvailabilityResolver(
        business_hours(),
        [availability(1, "09:00", "12:00")],
        [block(at(MONDAY, "10:00"), at(MONDAY, "10:30"))],
    )


class TestBookableSlots:
    def test_slots_skip_blocks_and_appointments(self):
        existing = [
            appointment(1, at(MONDAY, "11:00"), at(MONDAY, "11:30")),
            appointment(2, at(MONDAY, "09:00"), at(MONDAY, "09:30"), status_id=3),
        ]
        slots = list_bookable_slots(resolver(), existing, PROVIDER_ID, MONDAY, 30, 30, cancelled_status_ids=[3])

        assert [start.strftime("%H:%M") for start, _ in slots] == ["09:00", "09:30", "10:30", "11:30"]

    def test_slots_never_cross_a_window_edge(self):
        slots = list_bookable_slots(resolver(), [], PROVIDER_ID, MONDAY, 60, 30)
        assert [(s.strftime("%H:%M"), e.strftime("%H:%M")) for s, e in slots] == [
            ("09:00", "10:00"),
            ("10:30", "11:30"),
            ("11:00", "12:00"),
        ]

    def test_other_providers_appointments_do_not_matter(self):
        existing = [appointment(1, at(MONDAY, "09:00"), at(MONDAY, "12:00"), provider_id=99)]
        slots = list_bookable_slots(resolver(), existing, PROVIDER_ID, MONDAY, 30, 30)
        assert len(slots) == 5

    def test_closed_day(self):
        assert list_bookable_slots(resolver(), [], PROVIDER_ID, SUNDAY, 30, 30) == []

    def test_invalid_duration(self):
        assert list_bookable_slots(resolver(), [], PROVIDER_ID, MONDAY, 0, 30) == []
