import itertools

import pytest

from app.services.scheduling.conflict_detector import ConflictDetector
from app.services.scheduling.time_grid import overlaps

from factories import MONDAY, PROVIDER_ID, appointment, at, block


@pytest.fixture
def detector():
    return ConflictDetector(cancelled_status_ids=[3], default_duration_minutes=30)


class TestAppointmentConflicts:
    def test_adjacent_appointments_do_not_conflict(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"))]
        assert not detector.has_conflict(PROVIDER_ID, at(MONDAY, "11:00"), at(MONDAY, "12:00"), existing)

    def test_one_minute_overlap_conflicts(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"))]
        assert detector.has_conflict(PROVIDER_ID, at(MONDAY, "10:59"), at(MONDAY, "12:00"), existing)

    def test_other_provider_does_not_conflict(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"), provider_id=99)]
        assert not detector.has_conflict(PROVIDER_ID, at(MONDAY, "10:00"), at(MONDAY, "11:00"), existing)

    def test_cancelled_appointment_frees_the_slot(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"), status_id=3)]
        assert not detector.has_conflict(PROVIDER_ID, at(MONDAY, "10:00"), at(MONDAY, "11:00"), existing)

    def test_excluded_appointment_does_not_conflict_with_itself(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"))]
        assert not detector.has_conflict(
            PROVIDER_ID, at(MONDAY, "10:30"), at(MONDAY, "11:30"), existing, exclude_id=1
        )

    def test_missing_end_uses_service_duration(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"), duration_minutes=90)]
        assert detector.has_conflict(PROVIDER_ID, at(MONDAY, "11:00"), at(MONDAY, "11:30"), existing)

    def test_missing_end_and_duration_uses_default(self, detector):
        existing = [appointment(1, at(MONDAY, "10:00"))]
        assert not detector.has_conflict(PROVIDER_ID, at(MONDAY, "10:30"), at(MONDAY, "11:00"), existing)
        assert detector.has_conflict(PROVIDER_ID, at(MONDAY, "10:29"), at(MONDAY, "11:00"), existing)

    def test_find_conflicts_returns_every_overlap(self, detector):
        existing = [
            appointment(1, at(MONDAY, "09:00"), at(MONDAY, "10:00")),
            appointment(2, at(MONDAY, "10:00"), at(MONDAY, "11:00")),
            appointment(3, at(MONDAY, "12:00"), at(MONDAY, "13:00")),
        ]
        conflicts = detector.find_conflicts(PROVIDER_ID, at(MONDAY, "09:30"), at(MONDAY, "10:30"), existing)
        assert [a.id for a in conflicts] == [1, 2]

    def test_agrees_with_overlap_predicate(self, detector):
        clocks = ["09:00", "09:30", "10:00", "10:30", "11:00"]
        pairs = [(a, b) for a, b in itertools.combinations(clocks, 2)]
        for (a_start, a_end), (b_start, b_end) in itertools.product(pairs, pairs):
            existing = [appointment(1, at(MONDAY, b_start), at(MONDAY, b_end))]
            expected = overlaps(at(MONDAY, a_start), at(MONDAY, a_end), at(MONDAY, b_start), at(MONDAY, b_end))
            actual = detector.has_conflict(PROVIDER_ID, at(MONDAY, a_start), at(MONDAY, a_end), existing, exclude_id=2)
            assert actual == expected


class TestBlockConflicts:
    def test_block_overlap(self):
        blocks = [block(at(MONDAY, "10:00"), at(MONDAY, "10:30"))]
        assert ConflictDetector.has_block_conflict(PROVIDER_ID, at(MONDAY, "09:45"), at(MONDAY, "10:15"), blocks)

    def test_touching_block_does_not_conflict(self):
        blocks = [block(at(MONDAY, "10:00"), at(MONDAY, "10:30"))]
        assert not ConflictDetector.has_block_conflict(PROVIDER_ID, at(MONDAY, "10:30"), at(MONDAY, "11:00"), blocks)

    def test_other_providers_block(self):
        blocks = [block(at(MONDAY, "10:00"), at(MONDAY, "10:30"), provider_id=99)]
        assert ConflictDetector.find_block_conflicts(PROVIDER_ID, at(MONDAY, "10:00"), at(MONDAY, "10:30"), blocks) == []
