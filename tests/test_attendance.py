from datetime import date, datetime, timedelta

from db.models import AttendanceStatus, PunchKind
from store_case import StoreTestCase
from utils.errors import AlreadyRecorded, NoTimeInFound, NotFound, ValidationError


class AttendanceRecorderTestCase(StoreTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.emp = await self.attendance.create_employee("Maria", "Santos", "maria")

    async def test_exact_time_in_and_late_time_out(self):
        self.clock.now = datetime(2025, 11, 3, 8, 0, 0)
        rec = await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.EXACT_TIME)
        self.assertEqual(rec.day, date(2025, 11, 3))
        self.assertIsNone(rec.time_out)

        self.clock.now = datetime(2025, 11, 3, 18, 30)
        rec = await self.attendance.record_time_out(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.OVERTIME)
        self.assertEqual(rec.time_in, datetime(2025, 11, 3, 8, 0))
        self.assertEqual(rec.time_out, datetime(2025, 11, 3, 18, 30))

    async def test_millisecond_boundaries(self):
        other = await self.attendance.create_employee("Jose", "Reyes", "jose")
        third = await self.attendance.create_employee("Ana", "Cruz", "ana")

        self.clock.now = datetime(2025, 11, 3, 8, 0, 0, 1000)
        self.assertEqual(
            (await self.attendance.record_time_in(self.emp.id)).status,
            AttendanceStatus.UNDERTIME,
        )
        self.clock.now = datetime(2025, 11, 3, 7, 59, 59, 999000)
        self.assertEqual(
            (await self.attendance.record_time_in(other.id)).status,
            AttendanceStatus.OVERTIME,
        )
        self.clock.now = datetime(2025, 11, 3, 8, 0, 0, 0)
        self.assertEqual(
            (await self.attendance.record_time_in(third.id)).status,
            AttendanceStatus.EXACT_TIME,
        )

    async def test_evening_shift_time_out_uses_time_in(self):
        self.clock.now = datetime(2025, 11, 3, 17, 45)
        rec = await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.OVERTIME)
        self.clock.now = datetime(2025, 11, 3, 21, 0)
        rec = await self.attendance.record_time_out(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.UNDERTIME)

    async def test_second_time_in_same_day(self):
        self.clock.now = datetime(2025, 11, 3, 8, 0)
        await self.attendance.record_time_in(self.emp.id)
        self.clock.now = datetime(2025, 11, 3, 9, 0)
        with self.assertRaises(AlreadyRecorded) as ctx:
            await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(ctx.exception.details()["day"], "2025-11-03")

        # a new day starts a new record
        self.clock.now = datetime(2025, 11, 4, 8, 0)
        rec = await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(rec.day, date(2025, 11, 4))

    async def test_time_out_sequencing(self):
        self.clock.now = datetime(2025, 11, 3, 17, 0)
        with self.assertRaises(NoTimeInFound):
            await self.attendance.record_time_out(self.emp.id)

        self.clock.now = datetime(2025, 11, 3, 8, 0)
        await self.attendance.record_time_in(self.emp.id)
        with self.assertRaises(ValidationError):
            await self.attendance.record_time_out(self.emp.id)

        self.clock.now = datetime(2025, 11, 3, 18, 0)
        rec = await self.attendance.record_time_out(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.EXACT_TIME)
        with self.assertRaises(AlreadyRecorded):
            await self.attendance.record_time_out(self.emp.id)

        # yesterday's time in does not count for today
        self.clock.now = datetime(2025, 11, 4, 18, 0)
        with self.assertRaises(NoTimeInFound):
            await self.attendance.record_time_out(self.emp.id)

    async def test_employee_checks(self):
        with self.assertRaises(NotFound):
            await self.attendance.record_time_in(999)
        with self.assertRaises(ValidationError):
            await self.attendance.create_employee("Other", "Maria", "maria")
        await self.attendance.set_employee_active(self.emp.id, False)
        self.assertFalse((await self.attendance.get_employee(self.emp.id)).is_active)
        with self.assertRaises(ValidationError):
            await self.attendance.record_time_in(self.emp.id)

    async def test_get_today_and_listing(self):
        jose = await self.attendance.create_employee("Jose", "Reyes", "jose")
        self.assertIsNone(await self.attendance.get_today(self.emp.id))
        for day in (3, 4):
            self.clock.now = datetime(2025, 11, day, 8, 0)
            await self.attendance.record_time_in(self.emp.id)
        await self.attendance.record_time_in(jose.id)

        self.assertEqual((await self.attendance.get_today(self.emp.id)).day, date(2025, 11, 4))
        rows = await self.attendance.list_attendance()
        self.assertEqual([r.day for r in rows][-1], date(2025, 11, 3))
        self.assertEqual(len(await self.attendance.list_attendance(day=date(2025, 11, 4))), 2)
        self.assertEqual(len(await self.attendance.list_attendance(employee_id=jose.id)), 1)
        self.assertEqual(
            {r.employee_id for r in await self.attendance.list_attendance(search="SANTOS")},
            {self.emp.id},
        )

        removed = await self.attendance.delete_attendance([r.id for r in rows[:2]])
        self.assertEqual(removed, 2)
        with self.assertRaises(ValidationError):
            await self.attendance.delete_attendance([])

    async def test_stats(self):
        start = datetime(2025, 11, 3, 8, 0)
        for offset, hours in ((0, 10), (1, 9.5)):
            self.clock.now = start + timedelta(days=offset)
            await self.attendance.record_time_in(self.emp.id)
            self.clock.now += timedelta(hours=hours)
            await self.attendance.record_time_out(self.emp.id)
        self.clock.now = start + timedelta(days=2)
        await self.attendance.record_time_in(self.emp.id)

        stats = await self.attendance.attendance_stats(self.emp.id)
        self.assertEqual(stats.total_days, 3)
        self.assertEqual(stats.complete_days, 2)
        self.assertEqual(stats.incomplete_days, 1)
        self.assertEqual(stats.total_hours, 19.5)
        self.assertEqual(stats.average_hours, 9.75)

        self.clock.now = start + timedelta(days=60)
        empty = await self.attendance.attendance_stats(self.emp.id)
        self.assertEqual((empty.total_days, empty.average_hours), (0, 0.0))

    async def test_sub_millisecond_punch_is_on_time(self):
        self.clock.now = datetime(2025, 11, 3, 8, 0, 0, 400)
        rec = await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(rec.status, AttendanceStatus.EXACT_TIME)

    async def test_badge_scan_and_record(self):
        payload = await self.attendance.qr_data(self.emp.id)
        self.assertEqual(payload, f"employee:{self.emp.id}")
        with self.assertRaises(NotFound):
            await self.attendance.qr_data(999)

        self.clock.now = datetime(2025, 11, 3, 8, 0)
        rec = await self.attendance.record_scan(payload, "TIME_IN")
        self.assertEqual((rec.employee_id, rec.status), (self.emp.id, AttendanceStatus.EXACT_TIME))
        self.clock.now = datetime(2025, 11, 3, 18, 0)
        rec = await self.attendance.record(self.emp.id, PunchKind.TIME_OUT)
        self.assertEqual(rec.time_out, datetime(2025, 11, 3, 18, 0))
        self.assertEqual(rec.status, AttendanceStatus.EXACT_TIME)

        with self.assertRaises(ValidationError):
            await self.attendance.record_scan("customer:1", PunchKind.TIME_IN)
        with self.assertRaises(ValidationError):
            await self.attendance.record(self.emp.id, "LUNCH")
        with self.assertRaises(AlreadyRecorded):
            await self.attendance.record_scan(payload, PunchKind.TIME_OUT)

    async def test_manual_create(self):
        rec = await self.attendance.create_attendance(
            self.emp.id,
            time_in=datetime(2025, 11, 1, 8, 0),
            time_out=datetime(2025, 11, 1, 17, 0),
        )
        self.assertEqual(rec.day, date(2025, 11, 1))
        self.assertEqual(rec.status, AttendanceStatus.UNDERTIME)

        with self.assertRaises(ValidationError):
            await self.attendance.create_attendance(self.emp.id, day=date(2025, 11, 1))
        with self.assertRaises(ValidationError):
            await self.attendance.create_attendance(
                self.emp.id,
                time_in=datetime(2025, 11, 2, 9, 0),
                time_out=datetime(2025, 11, 2, 9, 0),
            )
        with self.assertRaises(ValidationError):
            await self.attendance.create_attendance(self.emp.id, status="LATE")
        with self.assertRaises(NotFound):
            await self.attendance.create_attendance(999)

        marked = await self.attendance.create_attendance(
            self.emp.id, time_in=datetime(2025, 11, 2, 9, 0), status="OVERTIME"
        )
        self.assertEqual(marked.status, AttendanceStatus.OVERTIME)
        blank = await self.attendance.create_attendance(self.emp.id)
        self.assertEqual(blank.day, date(2025, 11, 3))
        self.assertIsNone(blank.time_in)
        self.assertIsNone(blank.status)

        # a blank row can still be filled by a punch
        self.clock.now = datetime(2025, 11, 3, 8, 0)
        filled = await self.attendance.record_time_in(self.emp.id)
        self.assertEqual(filled.id, blank.id)

    async def test_manual_update(self):
        self.clock.now = datetime(2025, 11, 3, 8, 0)
        rec = await self.attendance.record_time_in(self.emp.id)

        fixed = await self.attendance.update_attendance(
            rec.id, time_out=datetime(2025, 11, 3, 18, 0)
        )
        self.assertEqual(fixed.time_in, rec.time_in)
        self.assertEqual(fixed.status, AttendanceStatus.EXACT_TIME)

        fixed = await self.attendance.update_attendance(rec.id, status=AttendanceStatus.UNDERTIME)
        self.assertEqual(fixed.status, AttendanceStatus.UNDERTIME)

        with self.assertRaises(ValidationError):
            await self.attendance.update_attendance(
                rec.id, time_out=datetime(2025, 11, 3, 7, 0)
            )
        self.assertEqual(
            (await self.attendance.get_today(self.emp.id)).time_out,
            datetime(2025, 11, 3, 18, 0),
        )
        with self.assertRaises(NotFound):
            await self.attendance.update_attendance(999, status="OVERTIME")

    async def test_history_is_newest_first_and_limited(self):
        for day in (1, 2, 3):
            await self.attendance.create_attendance(
                self.emp.id, time_in=datetime(2025, 11, day, 8, 0)
            )
        history = await self.attendance.attendance_history(self.emp.id, limit=2)
        self.assertEqual([r.day for r in history], [date(2025, 11, 3), date(2025, 11, 2)])
        self.assertEqual(len(await self.attendance.attendance_history(self.emp.id)), 3)
        with self.assertRaises(NotFound):
            await self.attendance.attendance_history(999)

    async def test_export_csv(self):
        jose = await self.attendance.create_employee("Jose", "Reyes", "jose")
        first = await self.attendance.create_attendance(
            self.emp.id,
            time_in=datetime(2025, 11, 3, 8, 0),
            time_out=datetime(2025, 11, 3, 18, 0),
        )
        second = await self.attendance.create_attendance(
            jose.id, time_in=datetime(2025, 11, 4, 8, 0)
        )

        lines = (await self.attendance.export_csv()).splitlines()
        self.assertEqual(lines[0], "ID,Employee,Username,Date,Time In,Time Out,Status")
        self.assertEqual(
            lines[1:],
            [
                f"{second.id},Jose Reyes,jose,2025-11-04,08:00:00,,EXACT_TIME",
                f"{first.id},Maria Santos,maria,2025-11-03,08:00:00,18:00:00,EXACT_TIME",
            ],
        )
        only_maria = (await self.attendance.export_csv(search="santos")).splitlines()
        self.assertEqual(len(only_maria), 2)
        by_day = (await self.attendance.export_csv(day=date(2025, 11, 4))).splitlines()
        self.assertTrue(by_day[1].startswith(f"{second.id},Jose Reyes"))

    async def test_search_wildcards_match_literally(self):
        odd = await self.attendance.create_employee("Pedro", "Dela Cruz", "pedro_dc")
        await self.attendance.create_attendance(odd.id, time_in=datetime(2025, 11, 3, 8, 0))
        await self.attendance.create_attendance(self.emp.id, time_in=datetime(2025, 11, 3, 8, 0))

        rows = await self.attendance.list_attendance(search="_")
        self.assertEqual([r.employee_id for r in rows], [odd.id])
        self.assertEqual(await self.attendance.list_attendance(search="%"), [])
