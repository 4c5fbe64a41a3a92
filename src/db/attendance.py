# employees and their daily time in / time out
from __future__ import annotations

import csv
import io
from datetime import date, datetime, timedelta
from sqlite3 import IntegrityError, Row
from typing import Callable, Iterable, List, Optional, Tuple

import aiosqlite

from db import models
from db.database import Database, fetch_all, fetch_one
from db.models import AttendanceStatus, PunchKind
from utils.errors import AlreadyRecorded, NoTimeInFound, NotFound, ValidationError
from utils.logger import get_logger
from utils.pure import (
    classify_attendance,
    from_db_ts,
    like_pattern,
    parse_qr_payload,
    qr_payload,
    to_db_ts,
)

_logger = get_logger(__name__)

ATTENDANCE_SELECT = """
    SELECT a.id, a.employee_id, a.day, a.time_in, a.time_out, a.status
    FROM attendance a
"""


def _row_to_employee(row: Row) -> models.Employee:
    return models.Employee(
        id=row[0],
        firstname=row[1],
        lastname=row[2],
        username=row[3],
        is_active=bool(row[4]),
    )


def _row_to_attendance(row: Row) -> models.Attendance:
    return models.Attendance(
        id=row[0],
        employee_id=row[1],
        day=date.fromisoformat(row[2]),
        time_in=from_db_ts(row[3]),
        time_out=from_db_ts(row[4]),
        status=AttendanceStatus(row[5]) if row[5] else None,
    )


EXPORT_HEADERS = ("ID", "Employee", "Username", "Date", "Time In", "Time Out", "Status")


def _derive_status(
    time_in: Optional[datetime], time_out: Optional[datetime]
) -> Optional[AttendanceStatus]:
    if time_in is not None and time_out is not None:
        return classify_attendance(time_out, PunchKind.TIME_OUT, time_in)
    if time_in is not None:
        return classify_attendance(time_in, PunchKind.TIME_IN)
    if time_out is not None:
        return classify_attendance(time_out, PunchKind.TIME_OUT)
    return None


def _check_times(time_in: Optional[datetime], time_out: Optional[datetime]) -> None:
    if time_in is not None and time_out is not None and time_out <= time_in:
        raise ValidationError("Time out must be later than time in.")


def _parse_attendance_status(status) -> Optional[AttendanceStatus]:
    if status is None:
        return None
    try:
        return AttendanceStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown attendance status {status!r}.") from None


def _attendance_filter(
    employee_id: Optional[int], day: Optional[date], search: Optional[str]
) -> Tuple[str, List[object]]:
    clauses: List[str] = []
    params: List[object] = []
    if employee_id is not None:
        clauses.append("a.employee_id = ?")
        params.append(employee_id)
    if day is not None:
        clauses.append("a.day = ?")
        params.append(day.isoformat())
    if search and search.strip():
        like = like_pattern(search)
        clauses.append(
            "(LOWER(e.firstname) LIKE ? ESCAPE '\\' OR LOWER(e.lastname) LIKE ? ESCAPE '\\'"
            " OR LOWER(e.username) LIKE ? ESCAPE '\\')"
        )
        params.extend([like, like, like])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class AttendanceRecorder:
    """
    Records one attendance row per employee per calendar day.

    Time in creates (or fills) today's row and classifies it; time out
    completes it and classifies again against the shift picked by the time in.
    """

    def __init__(
        self, db: Database, clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self._db = db
        self._clock = clock or datetime.now

    # ---------------------------
    # Employees
    # ---------------------------

    async def create_employee(
        self, firstname: str, lastname: str, username: str
    ) -> models.Employee:
        firstname, lastname, username = (
            (firstname or "").strip(),
            (lastname or "").strip(),
            (username or "").strip(),
        )
        if not (firstname and lastname and username):
            raise ValidationError("First name, last name and username are required.")
        async with self._db.connect() as conn:
            try:
                cur = await conn.execute(
                    "INSERT INTO employees(firstname, lastname, username) VALUES (?, ?, ?);",
                    (firstname, lastname, username),
                )
            except IntegrityError:
                raise ValidationError(f"Username {username!r} is taken.") from None
            employee_id = cur.lastrowid
            await cur.close()
            return await self._employee(conn, employee_id)

    async def get_employee(self, employee_id: int) -> models.Employee:
        async with self._db.connect() as conn:
            return await self._employee(conn, employee_id)

    async def set_employee_active(
        self, employee_id: int, active: bool
    ) -> models.Employee:
        async with self._db.connect() as conn:
            await self._employee(conn, employee_id)
            await conn.execute(
                "UPDATE employees SET is_active = ? WHERE id = ?;",
                (int(active), employee_id),
            )
            return await self._employee(conn, employee_id)

    async def _employee(
        self, conn: aiosqlite.Connection, employee_id: int
    ) -> models.Employee:
        row = await fetch_one(
            conn,
            "SELECT id, firstname, lastname, username, is_active FROM employees WHERE id = ?;",
            (employee_id,),
        )
        if not row:
            raise NotFound("Employee", employee_id)
        return _row_to_employee(row)

    # ---------------------------
    # Punches
    # ---------------------------

    async def _today_row(
        self, conn: aiosqlite.Connection, employee_id: int, day: date
    ) -> Optional[models.Attendance]:
        row = await fetch_one(
            conn,
            ATTENDANCE_SELECT + " WHERE a.employee_id = ? AND a.day = ?;",
            (employee_id, day.isoformat()),
        )
        return _row_to_attendance(row) if row else None

    async def _by_id(
        self, conn: aiosqlite.Connection, attendance_id: int
    ) -> models.Attendance:
        row = await fetch_one(conn, ATTENDANCE_SELECT + " WHERE a.id = ?;", (attendance_id,))
        if not row:
            raise NotFound("Attendance", attendance_id)
        return _row_to_attendance(row)

    async def record_time_in(self, employee_id: int) -> models.Attendance:
        now = self._clock()
        today = now.date()
        async with self._db.transaction() as conn:
            employee = await self._employee(conn, employee_id)
            if not employee.is_active:
                raise ValidationError(f"Employee {employee_id} is inactive.")
            existing = await self._today_row(conn, employee_id, today)
            if existing is not None and existing.time_in is not None:
                _logger.warning(f"Employee {employee_id} already timed in on {today}")
                raise AlreadyRecorded(employee_id, today, "time_in")
            status = classify_attendance(now, PunchKind.TIME_IN)
            if existing is not None:
                await conn.execute(
                    "UPDATE attendance SET time_in = ?, status = ? WHERE id = ?;",
                    (to_db_ts(now), status.value, existing.id),
                )
                attendance_id = existing.id
            else:
                cur = await conn.execute(
                    "INSERT INTO attendance(employee_id, day, time_in, status) VALUES (?, ?, ?, ?);",
                    (employee_id, today.isoformat(), to_db_ts(now), status.value),
                )
                attendance_id = cur.lastrowid
                await cur.close()
            record = await self._by_id(conn, attendance_id)
        _logger.info(f"Employee {employee_id} timed in at {now:%H:%M:%S} ({status.value})")
        return record

    async def record_time_out(self, employee_id: int) -> models.Attendance:
        now = self._clock()
        today = now.date()
        async with self._db.transaction() as conn:
            await self._employee(conn, employee_id)
            existing = await self._today_row(conn, employee_id, today)
            if existing is None or existing.time_in is None:
                _logger.warning(f"Employee {employee_id} has no time in on {today}")
                raise NoTimeInFound(employee_id, today)
            if existing.time_out is not None:
                _logger.warning(f"Employee {employee_id} already timed out on {today}")
                raise AlreadyRecorded(employee_id, today, "time_out")
            if now <= existing.time_in:
                raise ValidationError("Time out must be later than time in.")
            status = classify_attendance(now, PunchKind.TIME_OUT, existing.time_in)
            await conn.execute(
                "UPDATE attendance SET time_out = ?, status = ? WHERE id = ?;",
                (to_db_ts(now), status.value, existing.id),
            )
            record = await self._by_id(conn, existing.id)
        _logger.info(f"Employee {employee_id} timed out at {now:%H:%M:%S} ({status.value})")
        return record

    async def record(self, employee_id: int, kind) -> models.Attendance:
        """Time in or time out, whichever ``kind`` names."""
        try:
            kind = PunchKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown punch {kind!r}.") from None
        if kind is PunchKind.TIME_IN:
            return await self.record_time_in(employee_id)
        return await self.record_time_out(employee_id)

    async def get_today(self, employee_id: int) -> Optional[models.Attendance]:
        async with self._db.connect() as conn:
            return await self._today_row(conn, employee_id, self._clock().date())

    # ---------------------------
    # Badges
    # ---------------------------

    async def qr_data(self, employee_id: int) -> str:
        """Text to print on an employee's badge."""
        await self.get_employee(employee_id)
        return qr_payload(employee_id)

    async def record_scan(self, payload: str, kind) -> models.Attendance:
        return await self.record(parse_qr_payload(payload), kind)

    # ---------------------------
    # Manual records
    # ---------------------------

    async def create_attendance(
        self,
        employee_id: int,
        day: Optional[date] = None,
        time_in: Optional[datetime] = None,
        time_out: Optional[datetime] = None,
        status=None,
    ) -> models.Attendance:
        """
        Enter a record by hand, for a missed punch or a correction.

        ``day`` defaults to the day of ``time_in``, else today. Without an
        explicit ``status`` the record is classified from its times.
        """
        _check_times(time_in, time_out)
        if day is None:
            day = time_in.date() if time_in is not None else self._clock().date()
        parsed = _parse_attendance_status(status) or _derive_status(time_in, time_out)
        async with self._db.transaction() as conn:
            await self._employee(conn, employee_id)
            if await self._today_row(conn, employee_id, day) is not None:
                raise ValidationError(
                    f"Employee {employee_id} already has an attendance record on {day}."
                )
            cur = await conn.execute(
                """
                INSERT INTO attendance(employee_id, day, time_in, time_out, status)
                VALUES (?, ?, ?, ?, ?);
                """,
                (
                    employee_id,
                    day.isoformat(),
                    to_db_ts(time_in) if time_in else None,
                    to_db_ts(time_out) if time_out else None,
                    parsed.value if parsed else None,
                ),
            )
            attendance_id = cur.lastrowid
            await cur.close()
            record = await self._by_id(conn, attendance_id)
        _logger.info(f"Attendance {attendance_id} entered for employee {employee_id} on {day}")
        return record

    async def update_attendance(
        self,
        attendance_id: int,
        time_in: Optional[datetime] = None,
        time_out: Optional[datetime] = None,
        status=None,
    ) -> models.Attendance:
        """
        Correct a record. Fields left as None keep their value; the status is
        reclassified from the resulting times unless one is given.
        """
        async with self._db.transaction() as conn:
            current = await self._by_id(conn, attendance_id)
            new_in = time_in if time_in is not None else current.time_in
            new_out = time_out if time_out is not None else current.time_out
            _check_times(new_in, new_out)
            parsed = _parse_attendance_status(status) or _derive_status(new_in, new_out)
            await conn.execute(
                "UPDATE attendance SET time_in = ?, time_out = ?, status = ? WHERE id = ?;",
                (
                    to_db_ts(new_in) if new_in else None,
                    to_db_ts(new_out) if new_out else None,
                    parsed.value if parsed else None,
                    attendance_id,
                ),
            )
            record = await self._by_id(conn, attendance_id)
        _logger.info(f"Attendance {attendance_id} corrected")
        return record

    # ---------------------------
    # Listing & statistics
    # ---------------------------

    async def list_attendance(
        self,
        employee_id: Optional[int] = None,
        day: Optional[date] = None,
        search: Optional[str] = None,
    ) -> List[models.Attendance]:
        """Rows newest day first; ``search`` matches employee names and usernames."""
        where, params = _attendance_filter(employee_id, day, search)
        async with self._db.connect() as conn:
            rows = await fetch_all(
                conn,
                f"""
                {ATTENDANCE_SELECT}
                JOIN employees e ON e.id = a.employee_id
                {where}
                ORDER BY a.day DESC, a.id DESC;
                """,
                params,
            )
        return [_row_to_attendance(r) for r in rows]

    async def attendance_history(
        self, employee_id: int, limit: int = 30
    ) -> List[models.Attendance]:
        """An employee's latest ``limit`` records, newest day first."""
        if limit < 1:
            raise ValidationError("Limit must be at least 1.")
        async with self._db.connect() as conn:
            await self._employee(conn, employee_id)
            rows = await fetch_all(
                conn,
                ATTENDANCE_SELECT + " WHERE a.employee_id = ? ORDER BY a.day DESC LIMIT ?;",
                (employee_id, limit),
            )
        return [_row_to_attendance(r) for r in rows]

    async def export_csv(
        self, search: Optional[str] = None, day: Optional[date] = None
    ) -> str:
        """Filtered records as CSV text with a header row, newest day first."""
        where, params = _attendance_filter(None, day, search)
        async with self._db.connect() as conn:
            rows = await fetch_all(
                conn,
                f"""
                SELECT a.id, e.firstname, e.lastname, e.username,
                       a.day, a.time_in, a.time_out, a.status
                FROM attendance a
                JOIN employees e ON e.id = a.employee_id
                {where}
                ORDER BY a.day DESC, a.id DESC;
                """,
                params,
            )
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(EXPORT_HEADERS)
        for row in rows:
            time_in, time_out = from_db_ts(row[5]), from_db_ts(row[6])
            writer.writerow(
                [
                    row[0],
                    f"{row[1]} {row[2]}",
                    row[3],
                    row[4],
                    f"{time_in:%H:%M:%S}" if time_in else "",
                    f"{time_out:%H:%M:%S}" if time_out else "",
                    row[7] or "",
                ]
            )
        return buf.getvalue()

    async def attendance_stats(
        self, employee_id: int, days: int = 30
    ) -> models.AttendanceStats:
        """Totals over the last ``days`` days; hours only count complete days."""
        since = self._clock().date() - timedelta(days=days)
        async with self._db.connect() as conn:
            await self._employee(conn, employee_id)
            rows = await fetch_all(
                conn,
                ATTENDANCE_SELECT + " WHERE a.employee_id = ? AND a.day >= ?;",
                (employee_id, since.isoformat()),
            )
        records = [_row_to_attendance(r) for r in rows]
        complete = [r for r in records if r.time_in and r.time_out]
        total_hours = sum(
            (r.time_out - r.time_in).total_seconds() / 3600 for r in complete
        )
        return models.AttendanceStats(
            total_days=len(records),
            complete_days=len(complete),
            incomplete_days=len(records) - len(complete),
            total_hours=round(total_hours, 2),
            average_hours=round(total_hours / len(complete), 2) if complete else 0.0,
        )

    async def delete_attendance(self, attendance_ids: Iterable[int]) -> int:
        ids = list(dict.fromkeys(attendance_ids))
        if not ids:
            raise ValidationError("Select at least one attendance record.")
        marks = ", ".join("?" * len(ids))
        async with self._db.connect() as conn:
            cur = await conn.execute(f"DELETE FROM attendance WHERE id IN ({marks});", ids)
            count = cur.rowcount
            await cur.close()
        return count
