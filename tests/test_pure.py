import os
import random
import unittest
from datetime import datetime
from decimal import Decimal
from unittest import mock

from db.models import AttendanceStatus, PunchKind
from utils.config import Settings
from utils.errors import ValidationError
from utils.pure import (
    check_quantity,
    classify_attendance,
    format_peso,
    from_cents,
    generate_order_number,
    like_pattern,
    parse_qr_payload,
    qr_payload,
    to_cents,
)

IN = PunchKind.TIME_IN
OUT = PunchKind.TIME_OUT


class ClassifyAttendanceTestCase(unittest.TestCase):
    def test_day_shift_time_in_boundaries(self):
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 8, 0, 0, 0), IN),
            AttendanceStatus.EXACT_TIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 8, 0, 0, 1000), IN),
            AttendanceStatus.UNDERTIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 7, 59, 59, 999000), IN),
            AttendanceStatus.OVERTIME,
        )

    def test_sub_millisecond_digits_are_ignored(self):
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 8, 0, 0, 500), IN),
            AttendanceStatus.EXACT_TIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 7, 59, 59, 999500), IN),
            AttendanceStatus.OVERTIME,
        )
        self.assertEqual(
            classify_attendance(
                datetime(2025, 11, 3, 18, 0, 0, 999), OUT, datetime(2025, 11, 3, 8, 0)
            ),
            AttendanceStatus.EXACT_TIME,
        )

    def test_evening_shift_selected_from_noon(self):
        # 12:00 picks the 18:00 start, so it is an early arrival
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 12, 0), IN),
            AttendanceStatus.OVERTIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 18, 0), IN),
            AttendanceStatus.EXACT_TIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 18, 5), IN),
            AttendanceStatus.UNDERTIME,
        )
        # 11:59 still belongs to the day shift
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 11, 59), IN),
            AttendanceStatus.UNDERTIME,
        )

    def test_time_out_uses_paired_time_in(self):
        day_in = datetime(2025, 11, 3, 8, 0)
        evening_in = datetime(2025, 11, 3, 18, 0)
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 18, 0), OUT, day_in),
            AttendanceStatus.EXACT_TIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 19, 0), OUT, day_in),
            AttendanceStatus.OVERTIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 17, 0), OUT, day_in),
            AttendanceStatus.UNDERTIME,
        )
        # same 19:00 clock-out is early for the evening shift
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 19, 0), OUT, evening_in),
            AttendanceStatus.UNDERTIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 22, 0), OUT, evening_in),
            AttendanceStatus.EXACT_TIME,
        )

    def test_time_out_without_time_in_uses_own_hour(self):
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 22, 0), OUT),
            AttendanceStatus.EXACT_TIME,
        )
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 10, 0), OUT),
            AttendanceStatus.UNDERTIME,
        )

    def test_accepts_plain_strings_for_kind(self):
        self.assertEqual(
            classify_attendance(datetime(2025, 11, 3, 8, 0), "TIME_IN"),
            AttendanceStatus.EXACT_TIME,
        )


class MoneyTestCase(unittest.TestCase):
    def test_to_cents(self):
        self.assertEqual(to_cents("50"), 5000)
        self.assertEqual(to_cents("50.5"), 5050)
        self.assertEqual(to_cents(Decimal("0.10")), 10)
        self.assertEqual(to_cents(0.1), 10)
        self.assertEqual(to_cents(7), 700)

    def test_to_cents_rejects_bad_amounts(self):
        for bad in ("-1", "1.005", "abc", "NaN", True):
            with self.assertRaises(ValidationError, msg=repr(bad)):
                to_cents(bad)

    def test_from_cents_and_format(self):
        self.assertEqual(from_cents(20000), Decimal("200.00"))
        self.assertEqual(str(from_cents(5)), "0.05")
        self.assertEqual(format_peso("1234.5"), "₱1,234.50")


class OrderNumberTestCase(unittest.TestCase):
    def test_shape(self):
        now = datetime(2025, 11, 3, 9, 30)
        number = generate_order_number(now, random.Random(7))
        prefix, millis, token = number.split("-")
        self.assertEqual(prefix, "ORD")
        self.assertEqual(int(millis), int(now.timestamp() * 1000))
        self.assertEqual(len(token), 9)
        self.assertTrue(token.isalnum() and token == token.lower())


class SettingsTestCase(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.db_path, "data/db.sqlite")
        self.assertEqual(settings.db_timeout, 5.0)
        self.assertTrue(settings.restock_on_cancel)

    def test_from_environment(self):
        env = {
            "TINAPA_DB_PATH": "/tmp/store.sqlite",
            "TINAPA_DB_TIMEOUT": "2.5",
            "TINAPA_RESTOCK_ON_CANCEL": "off",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.db_path, "/tmp/store.sqlite")
        self.assertEqual(settings.db_timeout, 2.5)
        self.assertFalse(settings.restock_on_cancel)


class InputHelpersTestCase(unittest.TestCase):
    def test_check_quantity(self):
        self.assertEqual(check_quantity(3), 3)
        self.assertEqual(check_quantity(0, minimum=0), 0)
        for bad in (0, -1, 1.5, 2.0, True, "2", None):
            with self.assertRaises(ValidationError, msg=repr(bad)):
                check_quantity(bad)

    def test_like_pattern_escapes_wildcards(self):
        self.assertEqual(like_pattern(" Tinapa "), "%tinapa%")
        self.assertEqual(like_pattern("100%"), "%100\\%%")
        self.assertEqual(like_pattern("a_b"), "%a\\_b%")
        self.assertEqual(like_pattern("c:\\"), "%c:\\\\%")


class BadgeTestCase(unittest.TestCase):
    def test_payload_round_trip(self):
        self.assertEqual(qr_payload(42), "employee:42")
        self.assertEqual(parse_qr_payload(" employee:42\n"), 42)

    def test_rejects_foreign_payloads(self):
        for bad in ("", "employee:", "employee:abc", "customer:4", "employee:-1", "employee:²"):
            with self.assertRaises(ValidationError, msg=repr(bad)):
                parse_qr_payload(bad)
