"""Repository layer responsible for all database access."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from backend.domain.errors import (
    ConflictError,
    InvalidStateError,
    RequestNotFoundError,
    ReservationValidationError,
    UpstreamError,
)
from backend.domain.models import (
    Interval,
    RequestStatus,
    ReservationAction,
    ReservationDraft,
    ReservationRequest,
    ScheduleEntry,
    ScheduleStatus,
    TimeOfDay,
    Verdict,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

_REQUEST_COLUMNS = """
    id, room_id, date, start_minute, end_minute, status, requester_id,
    purpose, created_at, resolved_at, feedback, schedule_id
"""

_SCHEDULE_COLUMNS = """
    id, room_id, date, start_minute, end_minute, status, owner_id, purpose, request_id
"""


@dataclass(frozen=True)
class RoomRecord:
    """Room projection used by the HTTP layer and seed checks."""

    room_id: str
    name: str
    capacity: int
    location: Optional[str]


@dataclass(frozen=True)
class AuditRecord:
    action: str
    actor_id: str
    resource_id: str
    outcome: str
    created_at: str


def _interval_from_row(row: sqlite3.Row) -> Interval:
    return Interval(TimeOfDay(int(row["start_minute"])), TimeOfDay(int(row["end_minute"])))


def _optional_datetime(value: Any) -> Optional[datetime]:
    return datetime.fromisoformat(str(value)) if value is not None else None


def _request_from_row(row: sqlite3.Row) -> ReservationRequest:
    return ReservationRequest(
        request_id=int(row["id"]),
        room_id=str(row["room_id"]),
        date=date.fromisoformat(str(row["date"])),
        interval=_interval_from_row(row),
        status=RequestStatus(str(row["status"])),
        requester_id=str(row["requester_id"]),
        purpose=str(row["purpose"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        resolved_at=_optional_datetime(row["resolved_at"]),
        feedback=row["feedback"],
        schedule_id=int(row["schedule_id"]) if row["schedule_id"] is not None else None,
    )


def _schedule_from_row(row: sqlite3.Row) -> ScheduleEntry:
    return ScheduleEntry(
        schedule_id=int(row["id"]),
        room_id=str(row["room_id"]),
        date=date.fromisoformat(str(row["date"])),
        interval=_interval_from_row(row),
        status=ScheduleStatus(str(row["status"])),
        owner_id=str(row["owner_id"]),
        purpose=str(row["purpose"]),
        request_id=int(row["request_id"]) if row["request_id"] is not None else None,
    )


def _written(request: Optional[ReservationRequest], request_id: int) -> ReservationRequest:
    """Return the row re-read after a write; its absence means the write was lost."""
    if request is None:
        raise RuntimeError(f"Request missing after write: request_id={request_id}")
    return request


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    The synchronous methods do the work; the coroutine methods implement the
    `ReservationStore` port by running them in a worker thread. Every call
    opens its own connection, and commits run under `BEGIN IMMEDIATE` so the
    re-validation and the write happen under one write lock.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=10.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._transaction() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        location TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        role TEXT NOT NULL CHECK (role IN ('admin', 'faculty'))
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ReservationRequests (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        room_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_minute INTEGER NOT NULL,
                        end_minute INTEGER NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        requester_id TEXT NOT NULL,
                        purpose TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        resolved_at TEXT,
                        feedback TEXT,
                        schedule_id INTEGER,
                        CHECK (end_minute > start_minute),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ScheduleEntries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        room_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_minute INTEGER NOT NULL,
                        end_minute INTEGER NOT NULL,
                        status TEXT NOT NULL DEFAULT 'confirmed',
                        owner_id TEXT NOT NULL,
                        purpose TEXT NOT NULL,
                        request_id INTEGER UNIQUE,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        CHECK (end_minute > start_minute),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id),
                        FOREIGN KEY (request_id) REFERENCES ReservationRequests(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AuditLogs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        action TEXT NOT NULL,
                        actor_id TEXT NOT NULL,
                        resource_id TEXT NOT NULL,
                        outcome TEXT NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_requests_room_date_status
                    ON ReservationRequests(room_id, date, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_schedules_room_date_status
                    ON ScheduleEntries(room_id, date, status);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed rooms and users only when the tables are empty."""
        try:
            with self._transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                rooms = [
                    ("R101", "Room 101", 40, "Block A"),
                    ("R102", "Room 102", 40, "Block A"),
                    ("R201", "Lecture Hall 201", 120, "Block B"),
                    ("LAB1", "Computer Lab 1", 30, "Block C"),
                    ("SEM1", "Seminar Room 1", 20, "Block C"),
                ]
                cursor.executemany(
                    "INSERT INTO Rooms (id, name, capacity, location) VALUES (?, ?, ?, ?);",
                    rooms,
                )
                users = [
                    ("admin-1", "Facility Administrator", "admin"),
                    ("faculty-1", "Faculty Member One", "faculty"),
                    ("faculty-2", "Faculty Member Two", "faculty"),
                ]
                cursor.executemany(
                    "INSERT OR IGNORE INTO Users (id, name, role) VALUES (?, ?, ?);",
                    users,
                )
            logger.info("Demo seed completed | rooms=%s | users=%s", len(rooms), len(users))
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_user(self, user_id: str, name: str, role: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO Users (id, name, role) VALUES (?, ?, ?);",
                (user_id, name, role),
            )

    def add_room(self, room_id: str, name: str, capacity: int, location: Optional[str] = None) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO Rooms (id, name, capacity, location) VALUES (?, ?, ?, ?);",
                (room_id, name, capacity, location),
            )

    def get_user_role(self, user_id: str) -> Optional[str]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT role FROM Users WHERE id = ?;", (user_id,)).fetchone()
            return str(row["role"]) if row is not None else None

    def list_rooms(self) -> list[RoomRecord]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT id, name, capacity, location FROM Rooms ORDER BY id ASC;"
            ).fetchall()
            return [
                RoomRecord(
                    room_id=str(row["id"]),
                    name=str(row["name"]),
                    capacity=int(row["capacity"]),
                    location=row["location"],
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_schedules(self, room_id: str, on_date: date) -> list[ScheduleEntry]:
        """Confirmed entries for one room and day."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SCHEDULE_COLUMNS}
                FROM ScheduleEntries
                WHERE room_id = ? AND date = ? AND status = ?
                ORDER BY start_minute ASC, id ASC;
                """,
                (room_id, on_date.isoformat(), ScheduleStatus.CONFIRMED.value),
            ).fetchall()
            return [_schedule_from_row(row) for row in rows]

    def fetch_pending_requests(self, room_id: str, on_date: date) -> list[ReservationRequest]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM ReservationRequests
                WHERE room_id = ? AND date = ? AND status = ?
                ORDER BY start_minute ASC, id ASC;
                """,
                (room_id, on_date.isoformat(), RequestStatus.PENDING.value),
            ).fetchall()
            return [_request_from_row(row) for row in rows]

    def fetch_all_pending_requests(self) -> list[ReservationRequest]:
        """All pending requests across rooms and dates in deterministic order."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM ReservationRequests
                WHERE status = ?
                ORDER BY date ASC, start_minute ASC, id ASC;
                """,
                (RequestStatus.PENDING.value,),
            ).fetchall()
            return [_request_from_row(row) for row in rows]

    def fetch_request(self, request_id: int) -> Optional[ReservationRequest]:
        with closing(self._connect()) as conn:
            return self._select_request(conn, request_id)

    def fetch_schedule(self, schedule_id: int) -> Optional[ScheduleEntry]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {_SCHEDULE_COLUMNS} FROM ScheduleEntries WHERE id = ?;",
                (schedule_id,),
            ).fetchone()
            return _schedule_from_row(row) if row is not None else None

    @staticmethod
    def _select_request(
        conn: sqlite3.Connection, request_id: int
    ) -> Optional[ReservationRequest]:
        row = conn.execute(
            f"SELECT {_REQUEST_COLUMNS} FROM ReservationRequests WHERE id = ?;",
            (request_id,),
        ).fetchone()
        return _request_from_row(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_request(self, draft: ReservationDraft) -> ReservationRequest:
        with self._transaction(immediate=True) as conn:
            room = conn.execute("SELECT id FROM Rooms WHERE id = ?;", (draft.room_id,)).fetchone()
            if room is None:
                raise ReservationValidationError(f"unknown room '{draft.room_id}'")
            cursor = conn.execute(
                """
                INSERT INTO ReservationRequests (
                    room_id, date, start_minute, end_minute, status,
                    requester_id, purpose, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    draft.room_id,
                    draft.date.isoformat(),
                    draft.interval.start.minutes,
                    draft.interval.end.minutes,
                    RequestStatus.PENDING.value,
                    draft.requester_id,
                    draft.purpose,
                    draft.created_at.isoformat(),
                ),
            )
            request_id = int(cursor.lastrowid)
            request = self._select_request(conn, request_id)
        return _written(request, request_id)

    def insert_schedule_entry(
        self,
        room_id: str,
        on_date: date,
        interval: Interval,
        owner_id: str,
        purpose: str,
    ) -> ScheduleEntry:
        """Record a confirmed entry that did not come through a request (fixed timetable)."""
        with self._transaction(immediate=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO ScheduleEntries (
                    room_id, date, start_minute, end_minute, status, owner_id, purpose
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    room_id,
                    on_date.isoformat(),
                    interval.start.minutes,
                    interval.end.minutes,
                    ScheduleStatus.CONFIRMED.value,
                    owner_id,
                    purpose,
                ),
            )
            schedule_id = int(cursor.lastrowid)
        return ScheduleEntry(
            schedule_id=schedule_id,
            room_id=room_id,
            date=on_date,
            interval=interval,
            status=ScheduleStatus.CONFIRMED,
            owner_id=owner_id,
            purpose=purpose,
        )

    def approve_request(self, request_id: int) -> ScheduleEntry:
        """Bind a confirmed entry to a pending request under the write lock."""
        with self._transaction(immediate=True) as conn:
            request = self._select_request(conn, request_id)
            if request is None:
                raise RequestNotFoundError(f"request {request_id} not found")
            if request.status is not RequestStatus.PENDING:
                raise InvalidStateError(
                    f"request {request_id} is already {request.status.value}"
                )

            overlapping = conn.execute(
                """
                SELECT id
                FROM ScheduleEntries
                WHERE room_id = ?
                  AND date = ?
                  AND status = ?
                  AND start_minute < ?
                  AND ? < end_minute
                ORDER BY id ASC;
                """,
                (
                    request.room_id,
                    request.date.isoformat(),
                    ScheduleStatus.CONFIRMED.value,
                    request.interval.end.minutes,
                    request.interval.start.minutes,
                ),
            ).fetchall()
            if overlapping:
                raise ConflictError(
                    f"request {request_id} overlaps a confirmed booking",
                    verdict=Verdict.CONFLICTS_CONFIRMED,
                    conflicting_schedule_ids=[int(row["id"]) for row in overlapping],
                    request_id=request_id,
                )

            cursor = conn.execute(
                """
                INSERT INTO ScheduleEntries (
                    room_id, date, start_minute, end_minute, status,
                    owner_id, purpose, request_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    request.room_id,
                    request.date.isoformat(),
                    request.interval.start.minutes,
                    request.interval.end.minutes,
                    ScheduleStatus.CONFIRMED.value,
                    request.requester_id,
                    request.purpose,
                    request_id,
                ),
            )
            schedule_id = int(cursor.lastrowid)
            conn.execute(
                """
                UPDATE ReservationRequests
                SET status = ?, resolved_at = ?, schedule_id = ?
                WHERE id = ?;
                """,
                (
                    RequestStatus.APPROVED.value,
                    datetime.now().isoformat(),
                    schedule_id,
                    request_id,
                ),
            )
        return ScheduleEntry(
            schedule_id=schedule_id,
            room_id=request.room_id,
            date=request.date,
            interval=request.interval,
            status=ScheduleStatus.CONFIRMED,
            owner_id=request.requester_id,
            purpose=request.purpose,
            request_id=request_id,
        )

    def reject_request(self, request_id: int, feedback: str) -> ReservationRequest:
        with self._transaction(immediate=True) as conn:
            request = self._select_request(conn, request_id)
            if request is None:
                raise RequestNotFoundError(f"request {request_id} not found")
            if request.status is not RequestStatus.PENDING:
                raise InvalidStateError(
                    f"request {request_id} is already {request.status.value}"
                )
            conn.execute(
                """
                UPDATE ReservationRequests
                SET status = ?, resolved_at = ?, feedback = ?
                WHERE id = ?;
                """,
                (RequestStatus.REJECTED.value, datetime.now().isoformat(), feedback, request_id),
            )
            updated = self._select_request(conn, request_id)
        return _written(updated, request_id)

    def cancel_schedule(self, schedule_id: int, reason: str) -> ReservationRequest:
        """Cancel a confirmed entry together with the request it was approved from."""
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                f"SELECT {_SCHEDULE_COLUMNS} FROM ScheduleEntries WHERE id = ?;",
                (schedule_id,),
            ).fetchone()
            if row is None:
                raise RequestNotFoundError(f"schedule {schedule_id} not found")
            entry = _schedule_from_row(row)
            if entry.status is not ScheduleStatus.CONFIRMED:
                raise InvalidStateError(f"schedule {schedule_id} is already cancelled")
            if entry.request_id is None:
                raise InvalidStateError(f"schedule {schedule_id} is not bound to a request")
            request = self._select_request(conn, entry.request_id)
            if request is None or request.status is not RequestStatus.APPROVED:
                raise InvalidStateError(
                    f"request bound to schedule {schedule_id} is not approved"
                )

            resolved_at = datetime.now().isoformat()
            conn.execute(
                "UPDATE ScheduleEntries SET status = ? WHERE id = ?;",
                (ScheduleStatus.CANCELLED.value, schedule_id),
            )
            conn.execute(
                """
                UPDATE ReservationRequests
                SET status = ?, resolved_at = ?, feedback = ?
                WHERE id = ?;
                """,
                (RequestStatus.CANCELLED.value, resolved_at, reason, entry.request_id),
            )
            updated = self._select_request(conn, entry.request_id)
        return _written(updated, entry.request_id)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def save_audit_log(self, action: str, actor_id: str, resource_id: str, outcome: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO AuditLogs (action, actor_id, resource_id, outcome)
                VALUES (?, ?, ?, ?);
                """,
                (action, actor_id, resource_id, outcome),
            )

    def count_audit_logs(self) -> int:
        """Return persisted audit count for diagnostics and tests."""
        with closing(self._connect()) as conn:
            return int(conn.execute("SELECT COUNT(*) AS count FROM AuditLogs;").fetchone()["count"])

    def list_audit_logs(self, resource_id: Optional[str] = None) -> list[AuditRecord]:
        with closing(self._connect()) as conn:
            if resource_id is None:
                rows = conn.execute(
                    "SELECT action, actor_id, resource_id, outcome, created_at FROM AuditLogs "
                    "ORDER BY id ASC;"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT action, actor_id, resource_id, outcome, created_at FROM AuditLogs "
                    "WHERE resource_id = ? ORDER BY id ASC;",
                    (resource_id,),
                ).fetchall()
            return [
                AuditRecord(
                    action=str(row["action"]),
                    actor_id=str(row["actor_id"]),
                    resource_id=str(row["resource_id"]),
                    outcome=str(row["outcome"]),
                    created_at=str(row["created_at"]),
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # ReservationStore port
    # ------------------------------------------------------------------

    async def _offload(self, operation_name: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.error("Database call failed | operation=%s | error=%s", operation_name, exc)
            raise UpstreamError(f"{operation_name} failed: {exc}") from exc

    async def read_schedules(self, room_id: str, on_date: date) -> list[ScheduleEntry]:
        return await self._offload("read_schedules", self.fetch_schedules, room_id, on_date)

    async def read_pending_requests(
        self, room_id: str, on_date: date
    ) -> list[ReservationRequest]:
        return await self._offload(
            "read_pending_requests", self.fetch_pending_requests, room_id, on_date
        )

    async def get_request(self, request_id: int) -> Optional[ReservationRequest]:
        return await self._offload("get_request", self.fetch_request, request_id)

    async def list_pending_requests(self) -> list[ReservationRequest]:
        return await self._offload("list_pending_requests", self.fetch_all_pending_requests)

    async def create_request(self, draft: ReservationDraft) -> ReservationRequest:
        return await self._offload("create_request", self.insert_request, draft)

    async def commit_approval(self, request_id: int) -> ScheduleEntry:
        return await self._offload("commit_approval", self.approve_request, request_id)

    async def commit_rejection(self, request_id: int, feedback: str) -> ReservationRequest:
        return await self._offload("commit_rejection", self.reject_request, request_id, feedback)

    async def commit_cancellation(self, schedule_id: int, reason: str) -> ReservationRequest:
        return await self._offload(
            "commit_cancellation", self.cancel_schedule, schedule_id, reason
        )

    async def get_user_role_async(self, user_id: str) -> Optional[str]:
        return await self._offload("get_user_role", self.get_user_role, user_id)

    async def record_audit_row(
        self,
        action: ReservationAction,
        actor_id: str,
        resource_id: str,
        outcome: str,
    ) -> None:
        await self._offload(
            "record_audit", self.save_audit_log, action.value, actor_id, resource_id, outcome
        )
