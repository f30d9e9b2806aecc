from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from fastapi.testclient import TestClient

from app import create_app
from backend.domain.models import Interval, ReservationDraft
from backend.utils.config import get_settings


FUTURE_DATE = "2099-01-05"
ADMIN = {"X-Actor-Id": "admin-1"}
FACULTY_ONE = {"X-Actor-Id": "faculty-1"}
FACULTY_TWO = {"X-Actor-Id": "faculty-2"}


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        upstream_retry_initial_delay_seconds=0.0,
        upstream_retry_backoff_factor=1.0,
    )


def _build_client(tmp_path) -> TestClient:
    return TestClient(create_app(_build_test_settings(tmp_path, "api.db")))


def _request_body(start: str = "09:00", end: str = "10:00", room_id: str = "R101", **extra):
    body = {
        "room_id": room_id,
        "date": FUTURE_DATE,
        "start_time": start,
        "end_time": end,
        "purpose": "Data structures lab",
    }
    body.update(extra)
    return body


def test_slot_catalog_endpoints(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        slots = client.get("/slots").json()
        assert slots[0] == {"time": "07:00", "label": "7:00 AM"}
        assert slots[-1] == {"time": "19:30", "label": "7:30 PM"}
        assert len(slots) == 26

        last = client.get("/slots/end_times", params={"start": "19:30"})
        assert last.status_code == 200
        assert last.json() == [{"time": "20:00", "label": "8:00 PM"}]

        assert client.get("/slots/end_times", params={"start": "09:15"}).json() == []
        assert client.get("/slots/end_times", params={"start": "9am"}).status_code == 422
        assert client.get("/slots/end_times", params={"start": "25:00"}).status_code == 400


def test_actor_header_is_required(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        response = client.post("/requests", json=_request_body())
        assert response.status_code == 401


def test_request_payload_validation(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        reversed_times = client.post(
            "/requests", json=_request_body("10:00", "09:00"), headers=FACULTY_ONE
        )
        assert reversed_times.status_code == 422

        blank_purpose = client.post(
            "/requests", json=_request_body(purpose="   "), headers=FACULTY_ONE
        )
        assert blank_purpose.status_code == 400
        assert blank_purpose.json()["detail"]["error"] == "ReservationValidationError"

        off_grid = client.post("/requests", json=_request_body("09:10", "10:10"), headers=FACULTY_ONE)
        assert off_grid.status_code == 400

        unknown_room = client.post(
            "/requests", json=_request_body(room_id="ZZZ9"), headers=FACULTY_ONE
        )
        assert unknown_room.status_code == 400


def test_full_request_lifecycle_over_http(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        created = client.post("/requests", json=_request_body(), headers=FACULTY_ONE)
        assert created.status_code == 201
        request_id = created.json()["request_id"]
        assert created.json()["status"] == "pending"

        availability = client.post(
            "/availability",
            json={
                "room_id": "R101",
                "date": FUTURE_DATE,
                "start_time": "09:30",
                "end_time": "10:30",
            },
        )
        assert availability.json() == {
            "verdict": "conflicts_pending",
            "conflicting_schedule_ids": [],
            "conflicting_request_ids": [request_id],
        }

        forbidden = client.post(f"/requests/{request_id}/approve", headers=FACULTY_ONE)
        assert forbidden.status_code == 403

        approved = client.post(f"/requests/{request_id}/approve", headers=ADMIN)
        assert approved.status_code == 200
        schedule_id = approved.json()["schedule_id"]
        assert approved.json()["request_id"] == request_id

        again = client.post(f"/requests/{request_id}/approve", headers=ADMIN)
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "InvalidStateError"

        clash = client.post(
            "/requests", json=_request_body("09:30", "10:30"), headers=FACULTY_TWO
        )
        assert clash.status_code == 409
        assert clash.json()["detail"]["verdict"] == "conflicts_confirmed"
        assert clash.json()["detail"]["conflicting_schedule_ids"] == [schedule_id]

        fetched = client.get(f"/requests/{request_id}", headers=FACULTY_ONE)
        assert fetched.json()["schedule_id"] == schedule_id
        assert client.get(f"/requests/{request_id}", headers=FACULTY_TWO).status_code == 403
        assert client.get("/requests/9999", headers=ADMIN).status_code == 404

        cancelled = client.post(
            f"/requests/{request_id}/cancel", json={"reason": "Lab flooded"}, headers=FACULTY_ONE
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["feedback"] == "Lab flooded"

        rebooked = client.post("/requests", json=_request_body(), headers=FACULTY_TWO)
        assert rebooked.status_code == 201


def test_reject_endpoint(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        request_id = client.post("/requests", json=_request_body(), headers=FACULTY_ONE).json()[
            "request_id"
        ]

        missing_feedback = client.post(
            f"/requests/{request_id}/reject", json={"feedback": ""}, headers=ADMIN
        )
        assert missing_feedback.status_code == 422

        rejected = client.post(
            f"/requests/{request_id}/reject", json={"feedback": "Room closed"}, headers=ADMIN
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"


def test_bulk_endpoints_report_per_item_outcomes(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        first = client.post("/requests", json=_request_body("09:00", "10:00"), headers=FACULTY_ONE)
        second = client.post("/requests", json=_request_body("11:00", "12:00"), headers=FACULTY_TWO)
        ids = [first.json()["request_id"], second.json()["request_id"]]

        approved = client.post(
            "/requests/bulk/approve", json={"request_ids": ids + [777]}, headers=ADMIN
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["action"] == "approve"
        assert [item["status"] for item in body["items"]] == ["fulfilled", "fulfilled", "rejected"]
        assert body["items"][2]["error_type"] == "RequestNotFoundError"
        assert body["summary"]["fulfilled"] == 2
        assert body["conflict_ids"] == []

        cancelled = client.post(
            "/requests/bulk/cancel",
            json={"request_ids": ids, "reason": "Campus closed"},
            headers=FACULTY_ONE,
        )
        statuses = {item["request_id"]: item for item in cancelled.json()["items"]}
        assert statuses[ids[0]]["status"] == "fulfilled"
        assert statuses[ids[1]]["status"] == "rejected"
        assert statuses[ids[1]]["error_type"] == "ForbiddenError"

        third = client.post("/requests", json=_request_body("13:00", "14:00"), headers=FACULTY_ONE)
        rejected = client.post(
            "/requests/bulk/reject",
            json={"request_ids": [third.json()["request_id"]], "feedback": "Exams"},
            headers=ADMIN,
        )
        assert rejected.json()["summary"]["fulfilled"] == 1

        assert client.post("/requests/bulk/approve", json={"request_ids": []}, headers=ADMIN).status_code == 422


def test_expire_sweep_endpoint(tmp_path) -> None:
    app = create_app(_build_test_settings(tmp_path, "expire.db"))
    with TestClient(app) as client:
        repository = app.state.repository
        stale = repository.insert_request(
            ReservationDraft(
                room_id="R101",
                date=date(2020, 1, 6),
                interval=Interval.parse("09:00", "10:00"),
                requester_id="faculty-1",
                purpose="Old booking",
                created_at=datetime(2020, 1, 1, 12, 0),
            )
        )
        upcoming = client.post("/requests", json=_request_body(), headers=FACULTY_ONE).json()

        assert client.post("/requests/expire", headers=FACULTY_ONE).status_code == 403

        swept = client.post("/requests/expire", headers=ADMIN)
        assert swept.status_code == 200
        assert swept.json()["action"] == "expire"
        assert [item["request_id"] for item in swept.json()["items"]] == [stale.request_id]

        stored = repository.fetch_request(stale.request_id)
        assert stored.status.value == "rejected"
        assert stored.feedback.startswith("Auto-rejected")
        assert repository.fetch_request(upcoming["request_id"]).status.value == "pending"
