import asyncio
import json
from datetime import datetime

import httpx
import pytest

from app.config.settings import Settings
from app.schemas.calendar_events import (
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
    AppointmentResizeRequest,
    CalendarEventKind,
    MutationState,
    VisibleRange,
)
from app.schemas.scheduling import ViewerRole
from app.services.backend.scheduling_api_client import SchedulingApiClient, create_http_client
from app.services.calendar.calendar_session import CalendarSession, CalendarSessionRegistry, RangeKey
from app.services.scheduling.errors import (
    AppointmentConflict,
    AppointmentNotFound,
    BackendUnavailable,
    InvalidInterval,
    OutsideTenantHours,
    PermissionDenied,
)

from factories import (
    CLIENT_ID,
    MONDAY,
    PROVIDER_ID,
    admin,
    appointment,
    at,
    business_hours,
    client,
    provider,
    viewer,
)
from fake_backend import FakeBackend, dump

WEEK = VisibleRange(start=datetime(2026, 1, 4), end=datetime(2026, 1, 11))
NEXT_WEEK = VisibleRange(start=datetime(2026, 1, 11), end=datetime(2026, 1, 18))

EXISTING = [
    appointment(1, at(MONDAY, "10:00"), at(MONDAY, "11:00"), client_id=CLIENT_ID),
    appointment(2, at(MONDAY, "11:00"), at(MONDAY, "12:00"), client_id=200),
]


@pytest.fixture
def settings():
    return Settings(BACKEND_API_URL="http://backend.test/api", MAX_VISIBLE_RANGE_DAYS=62)


@pytest.fixture
def backend():
    return FakeBackend().serve_schedule(appointments=EXISTING, business_hours=business_hours())


@pytest.fixture
async def api(backend, settings):
    http_client = create_http_client(settings, transport=backend.transport())
    yield SchedulingApiClient(http_client, token="token-123")
    await http_client.aclose()


@pytest.fixture
def session_for(api, settings):
    def build(viewer=None):
        return CalendarSession(viewer or admin(), api, settings)
    return build


class TestLoading:
    async def test_same_range_is_fetched_once(self, session_for, backend):
        session = session_for()

        first = await session.load(WEEK)
        second = await session.load(WEEK)

        assert first is second
        assert len(backend.calls("GET", "agenda/appointments")) == 1

    async def test_concurrent_loads_share_one_fetch(self, session_for, backend):
        release = asyncio.Event()
        payload = {"appointments": dump(EXISTING), "tenant_business_hours": dump(business_hours())}

        async def slow(request):
            await release.wait()
            return httpx.Response(200, json=payload)

        backend.on("GET", "agenda/appointments", responder=slow)
        session = session_for()

        waiters = [asyncio.ensure_future(session.load(WEEK)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert all(r is results[0] for r in results)
        assert len(backend.calls("GET", "agenda/appointments")) == 1

    async def test_late_result_for_old_range_is_discarded(self, session_for, backend):
        release_old = asyncio.Event()
        payload = {"appointments": dump(EXISTING)}

        async def respond(request):
            if request.url.params["date_start"].startswith("2026-01-04"):
                await release_old.wait()
            return httpx.Response(200, json=payload)

        backend.on("GET", "agenda/appointments", responder=respond)
        session = session_for()

        old = asyncio.ensure_future(session.load(WEEK))
        await asyncio.sleep(0)
        current = await session.load(NEXT_WEEK)
        release_old.set()

        assert await old is None
        assert current is not None
        assert session.snapshot_key == RangeKey.from_range(NEXT_WEEK)

    async def test_stale_events_response(self, session_for, backend):
        release_old = asyncio.Event()

        async def respond(request):
            if request.url.params["date_start"].startswith("2026-01-04"):
                await release_old.wait()
            return httpx.Response(200, json={"appointments": dump(EXISTING)})

        backend.on("GET", "agenda/appointments", responder=respond)
        session = session_for()

        old = asyncio.ensure_future(session.events(WEEK))
        await asyncio.sleep(0)
        await session.events(NEXT_WEEK)
        release_old.set()

        response = await old
        assert response.stale is True
        assert response.events == []

    async def test_provider_is_scoped_to_own_agenda(self, session_for, backend):
        session = session_for(provider())
        await session.load(WEEK, provider_id=99)
        assert backend.requests[0].url.params["provider_id"] == str(PROVIDER_ID)

    async def test_range_is_capped(self, settings, api, backend):
        settings.MAX_VISIBLE_RANGE_DAYS = 7
        session = CalendarSession(admin(), api, settings)

        await session.load(VisibleRange(start=datetime(2026, 1, 1), end=datetime(2026, 6, 1)))
        assert backend.requests[0].url.params["date_end"] == "2026-01-08 00:00:00"

    async def test_invalidate_forces_refetch(self, session_for, backend):
        session = session_for()
        await session.load(WEEK)
        session.invalidate()
        await session.load(WEEK)
        assert len(backend.calls("GET", "agenda/appointments")) == 2

    async def test_same_day_different_start_is_a_new_range(self, session_for, backend):
        session = session_for()
        afternoon = VisibleRange(start=datetime(2026, 1, 5, 12), end=datetime(2026, 1, 11))
        whole_days = VisibleRange(start=datetime(2026, 1, 5), end=datetime(2026, 1, 11))

        await session.load(afternoon)
        await session.load(whole_days)

        starts = [r.url.params["date_start"] for r in backend.calls("GET", "agenda/appointments")]
        assert starts == ["2026-01-05 12:00:00", "2026-01-05 00:00:00"]

    async def test_cached_range_only_covers_what_was_fetched(self, session_for, backend):
        session = session_for(client())
        await session.load(VisibleRange(start=datetime(2026, 1, 5, 12), end=datetime(2026, 1, 11)))

        decision = await session.validate_create(AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID,
            date_start="2026-01-05 10:30:00", duration_minutes=60,
        ))

        assert decision.code == "appointment_conflict"
        assert len(backend.calls("GET", "agenda/appointments")) == 2


class TestEvents:
    async def test_client_projection(self, session_for):
        response = await session_for(client()).events(WEEK)

        kinds = [e.kind for e in response.events]
        assert kinds == [CalendarEventKind.APPOINTMENT, CalendarEventKind.OCCUPIED]
        assert response.stale is False
        assert response.view_options.hidden_days == [0, 6]


class TestMutations:
    async def test_rejection_never_reaches_backend(self, session_for, backend):
        session = session_for(client())
        await session.load(WEEK)

        request = AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID,
            date_start="2026-01-05 11:30:00", date_end="2026-01-05 12:30:00",
        )
        with pytest.raises(AppointmentConflict) as exc_info:
            await session.create(request)

        assert exc_info.value.revert is True
        assert backend.calls("POST") == []
        assert len(backend.calls("GET")) == 1

    async def test_closed_day_rejected_locally(self, session_for, backend):
        session = session_for()
        await session.load(WEEK)

        request = AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID, date_start="2026-01-04 10:00:00",
        )
        with pytest.raises(OutsideTenantHours):
            await session.create(request)
        assert backend.calls("POST") == []

    async def test_validate_returns_decision(self, session_for, backend):
        session = session_for(client())
        await session.load(WEEK)

        decision = await session.validate_create(AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID,
            date_start="2026-01-05 11:30:00", duration_minutes=60,
        ))
        assert decision.state == MutationState.REJECTED
        assert decision.code == "appointment_conflict"

    async def test_create_persists_and_reloads(self, session_for, backend):
        created = appointment(10, at(MONDAY, "14:00"), at(MONDAY, "15:00"))
        backend.on("POST", "agenda/appointments", status=201, json=dump([created])[0])
        session = session_for()
        await session.load(WEEK)

        decision = await session.create(AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID,
            date_start="2026-01-05 14:00:00", duration_minutes=60,
        ))

        assert decision.accepted
        assert decision.appointment.id == 10
        assert decision.date_end == at(MONDAY, "15:00")

        posted = backend.calls("POST", "agenda/appointments")[0]
        assert json.loads(posted.content)["date_end"] == "2026-01-05 15:00:00"
        assert len(backend.calls("GET", "agenda/appointments")) == 2

    async def test_backend_failure_reverts(self, session_for, backend):
        backend.on("PUT", "agenda/appointments/1", status=502)
        session = session_for()
        await session.load(WEEK)

        with pytest.raises(BackendUnavailable) as exc_info:
            await session.reschedule(1, AppointmentRescheduleRequest(date_start="2026-01-05 15:00:00"))
        assert exc_info.value.revert is True

    async def test_reschedule_keeps_duration(self, session_for, backend):
        backend.on("PUT", "agenda/appointments/1", status=200, json={"message": "ok"})
        session = session_for()
        await session.load(WEEK)

        decision = await session.reschedule(1, AppointmentRescheduleRequest(date_start="2026-01-05 15:00:00"))

        assert (decision.date_start, decision.date_end) == (at(MONDAY, "15:00"), at(MONDAY, "16:00"))
        put = backend.calls("PUT", "agenda/appointments/1")[0]
        assert b"2026-01-05 16:00:00" in put.content

    async def test_resize(self, session_for, backend):
        backend.on("PUT", "agenda/appointments/2", status=204)
        session = session_for()
        await session.load(WEEK)

        decision = await session.resize(2, AppointmentResizeRequest(
            date_start="2026-01-05 11:00:00", date_end="2026-01-05 13:00:00"
        ))
        assert decision.accepted
        assert decision.appointment is None

    async def test_moving_unknown_appointment(self, session_for, backend):
        session = session_for()
        await session.load(WEEK)

        with pytest.raises(AppointmentNotFound):
            await session.reschedule(404, AppointmentRescheduleRequest(date_start="2026-01-05 15:00:00"))

    async def test_target_outside_cached_range_is_fetched(self, session_for, backend):
        session = session_for()
        await session.load(WEEK)
        backend.on("PUT", "agenda/appointments/1", status=204)

        await session.reschedule(1, AppointmentRescheduleRequest(date_start="2026-01-12 10:00:00"))

        fetched = [r.url.params["date_start"] for r in backend.calls("GET", "agenda/appointments")]
        assert "2026-01-12 00:00:00" in fetched


class TestLocalRejectionWithColdCache:
    async def test_missing_permission(self, session_for, backend):
        session = session_for(viewer(ViewerRole.CLIENT, viewer_id=CLIENT_ID, permissions=()))

        with pytest.raises(PermissionDenied):
            await session.create(AppointmentCreateRequest(
                service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID, date_start="2026-01-05 09:00:00",
            ))
        assert backend.requests == []

    async def test_booking_on_another_agenda(self, session_for, backend):
        session = session_for(provider(provider_id=99))

        decision = await session.validate_create(AppointmentCreateRequest(
            service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID, date_start="2026-01-05 09:00:00",
        ))
        assert decision.state == MutationState.REJECTED
        assert decision.code == "permission_denied"
        assert backend.requests == []

    async def test_end_on_an_earlier_day(self, session_for, backend):
        with pytest.raises(InvalidInterval):
            await session_for().create(AppointmentCreateRequest(
                service_id=3, provider_id=PROVIDER_ID, client_id=CLIENT_ID,
                date_start="2026-01-06 10:00:00", date_end="2026-01-05 10:00:00",
            ))
        assert backend.requests == []

    async def test_reschedule_with_reversed_end(self, session_for, backend):
        with pytest.raises(InvalidInterval):
            await session_for().reschedule(1, AppointmentRescheduleRequest(
                date_start="2026-01-06 10:00:00", date_end="2026-01-05 10:00:00"
            ))
        assert backend.requests == []

    async def test_resize_without_edit_permission(self, session_for, backend):
        creator_only = viewer(ViewerRole.ADMIN, permissions={"agenda.appointments.create"})

        with pytest.raises(PermissionDenied):
            await session_for(creator_only).resize(1, AppointmentResizeRequest(
                date_start="2026-01-05 10:00:00", date_end="2026-01-05 12:00:00"
            ))
        assert backend.requests == []

    async def test_foreign_appointment_is_not_validated(self, session_for, backend):
        session = session_for(client())

        with pytest.raises(PermissionDenied):
            await session.reschedule(2, AppointmentRescheduleRequest(date_start="2026-01-12 10:00:00"))

        # Only the lookup of the appointment itself, no snapshot for the target day
        fetched = [r.url.params["date_start"] for r in backend.calls("GET")]
        assert fetched == ["2026-01-12 00:00:00"]


class TestRegistry:
    async def test_one_session_per_viewer(self, settings, api):
        registry = CalendarSessionRegistry(settings)
        first = registry.session_for(admin(), api)
        second = registry.session_for(admin(), SchedulingApiClient(api.http_client, token="fresh"))

        assert first is second
        assert second.api.token == "fresh"
        assert registry.session_for(client(), api) is not first

    async def test_least_recently_used_is_evicted(self, settings, api):
        registry = CalendarSessionRegistry(settings, max_sessions=2)
        registry.session_for(client(client_id=1), api)
        registry.session_for(client(client_id=2), api)
        registry.session_for(client(client_id=3), api)

        assert len(registry) == 2
