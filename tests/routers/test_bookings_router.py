import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

import pytest
from chargebook.deps import get_current_principal, get_session
from chargebook.domain.lifecycle import Principal
from chargebook.models import BookingStatus, UserRole
from chargebook.routers import bookings as router
from chargebook.utils import audit_log
from fastapi import FastAPI, Header
from httpx import ASGITransport, AsyncClient

OWNER = Principal(principal_id=1, role=UserRole.OWNER)
OTHER_OWNER = Principal(principal_id=2, role=UserRole.OWNER)
OPERATOR = Principal(principal_id=50, role=UserRole.STATION_OPERATOR)


class DummySession:
    """Stands in for AsyncSession; session.begin() scopes the fake station lock like a DB transaction."""

    def __init__(self, station_repo: Any) -> None:
        self.station_repo = station_repo

    def begin(self) -> Any:
        return self.station_repo.transaction()


def _make_app(monkeypatch: pytest.MonkeyPatch, station_repo: Any, booking_repo: Any) -> FastAPI:
    app = FastAPI()
    app.include_router(router.router)

    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession(station_repo)

    def principal_from_header(x_test_principal: str = Header(default="owner:1")) -> Principal:
        role, _, principal_id = x_test_principal.partition(":")
        return Principal(principal_id=int(principal_id), role=UserRole(role))

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_current_principal] = principal_from_header
    monkeypatch.setattr(router, "SqlAlchemyStationRepository", lambda session: station_repo)
    monkeypatch.setattr(router, "SqlAlchemyBookingRepository", lambda session: booking_repo)
    return app


def _as(principal: Principal) -> dict[str, str]:
    return {"X-Test-Principal": f"{principal.role.value}:{principal.principal_id}"}


def _window(hours_ahead: int = 24, duration: int = 1) -> dict[str, str]:
    start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(hours=hours_ahead)
    return {
        "reservation_start": start.isoformat(),
        "reservation_end": (start + timedelta(hours=duration)).isoformat(),
    }


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_emit(**kwargs: Any) -> bool:
        calls.append(kwargs)
        return True

    monkeypatch.setattr(router, "emit_audit_log", fake_emit)
    return calls


@pytest.mark.asyncio
async def test_concurrent_posts_for_last_slot_return_201_and_409(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls
) -> None:
    station_repo.add(total_slots=2, open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)
    body = {"station_id": 1, **_window()}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/bookings", json=body, headers=_as(OWNER))
        assert first.status_code == 201
        racing = await asyncio.gather(
            client.post("/bookings", json=body, headers=_as(OTHER_OWNER)),
            client.post("/bookings", json=body, headers=_as(Principal(3, UserRole.OWNER))),
        )

    assert sorted(resp.status_code for resp in racing) == [201, 409]
    conflict = next(resp for resp in racing if resp.status_code == 409)
    assert conflict.json()["detail"]["code"] == "capacity_exhausted"
    assert [call["action"] for call in audit_calls] == ["booking.created", "booking.created"]


@pytest.mark.asyncio
async def test_create_reports_every_violation_with_400(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls
) -> None:
    station_repo.add(open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)
    body = {"station_id": 1, **_window(hours_ahead=2, duration=9)}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/bookings", json=body, headers=_as(OWNER))

    assert resp.status_code == 400
    codes = {v["code"] for v in resp.json()["detail"]["violations"]}
    assert {"advance_notice", "duration"} <= codes
    assert booking_repo.bookings == {}
    assert audit_calls == []


@pytest.mark.asyncio
async def test_create_rejects_naive_datetimes(monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo) -> None:
    station_repo.add()
    app = _make_app(monkeypatch, station_repo, booking_repo)
    body = {"station_id": 1, "reservation_start": "2026-03-03T10:00:00", "reservation_end": "2026-03-03T11:00:00"}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/bookings", json=body, headers=_as(OWNER))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_approve_complete_and_repeat_transitions(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls
) -> None:
    station_repo.add(open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OWNER))
        booking_id = created.json()["booking_id"]

        forbidden = await client.post(f"/bookings/{booking_id}/approve", headers=_as(OWNER))
        assert forbidden.status_code == 403

        approved = await client.post(f"/bookings/{booking_id}/approve", headers=_as(OPERATOR))
        assert approved.status_code == 200
        assert approved.json()["status"] == BookingStatus.APPROVED.value
        token = approved.json()["verification_token"]

        again = await client.post(f"/bookings/{booking_id}/approve", headers=_as(OPERATOR))
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "invalid_transition"

        completed = await client.post(f"/bookings/{booking_id}/complete", json={"token": token}, headers=_as(OPERATOR))
        assert completed.status_code == 200
        assert completed.json()["status"] == BookingStatus.COMPLETED.value

        replay = await client.post(f"/bookings/{booking_id}/complete", json={"token": token}, headers=_as(OPERATOR))
        assert replay.status_code == 409

    assert [call["action"] for call in audit_calls] == ["booking.created", "booking.approved", "booking.completed"]
    assert audit_calls[1]["status_from"] == BookingStatus.PENDING
    assert audit_calls[1]["initiator"] == UserRole.STATION_OPERATOR


@pytest.mark.asyncio
async def test_cancel_honours_if_match_version(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls
) -> None:
    station_repo.add(open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OWNER))
        booking_id = created.json()["booking_id"]

        stale = await client.post(
            f"/bookings/{booking_id}/cancel", headers={**_as(OWNER), "If-Match": '"7"'}
        )
        assert stale.status_code == 409
        assert stale.json()["detail"]["code"] == "version_conflict"

        hidden = await client.post(f"/bookings/{booking_id}/cancel", headers=_as(OTHER_OWNER))
        assert hidden.status_code == 404

        cancelled = await client.post(
            f"/bookings/{booking_id}/cancel", headers={**_as(OWNER), "If-Match": 'W/"1"'}
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == BookingStatus.CANCELLED.value
        assert cancelled.json()["version"] == 2


@pytest.mark.asyncio
async def test_reschedule_emits_previous_window(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls
) -> None:
    station_repo.add(open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OWNER))
        booking_id = created.json()["booking_id"]
        moved = await client.put(
            f"/bookings/{booking_id}",
            json={**_window(hours_ahead=30, duration=2), "version": 1},
            headers=_as(OWNER),
        )

    assert moved.status_code == 200
    assert moved.json()["version"] == 2
    assert audit_calls[-1]["action"] == "booking.rescheduled"
    assert "start_from" in audit_calls[-1]["extra"]


@pytest.mark.asyncio
async def test_audit_sink_failure_does_not_fail_admission(
    monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo
) -> None:
    class BrokenLogger:
        def info(self, _: Any) -> None:
            raise OSError("sink down")

    monkeypatch.setattr(audit_log, "_audit_logger", BrokenLogger())
    station_repo.add(open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OWNER))
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_list_and_summary_routes(monkeypatch: pytest.MonkeyPatch, station_repo, booking_repo, audit_calls) -> None:
    station_repo.add(total_slots=3, open_hour=0, close_hour=24)
    app = _make_app(monkeypatch, station_repo, booking_repo)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OWNER))
        await client.post("/bookings", json={"station_id": 1, **_window()}, headers=_as(OTHER_OWNER))
        own = await client.get("/bookings", headers=_as(OWNER))
        everything = await client.get("/bookings", params={"status": "pending"}, headers=_as(OPERATOR))
        summary = await client.get("/bookings/summary", headers=_as(OWNER))

    assert [b["owner_id"] for b in own.json()] == [1]
    assert len(everything.json()) == 2
    assert summary.json()["counts"]["pending"] == 1
    assert summary.json()["next_booking"]["owner_id"] == 1
