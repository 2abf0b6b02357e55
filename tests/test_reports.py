"""CSV rendering of the security and certification logs."""

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from challengegov import reports, security_logs
from challengegov.models import UserRole

from tests.support import DatabaseTestCase


class TestFormatDuration(unittest.TestCase):
    def test_hours_minutes_seconds(self):
        self.assertEqual(reports.format_duration(3661), "01:01:01")

    def test_seconds_only(self):
        self.assertEqual(reports.format_duration(59), "00:00:59")

    def test_string_seconds(self):
        self.assertEqual(reports.format_duration("7200"), "02:00:00")

    def test_unparseable_passes_through(self):
        self.assertEqual(reports.format_duration("soon"), "soon")


class TestParseDetails(unittest.TestCase):
    def test_none(self):
        self.assertIsNone(reports.parse_details(None))

    def test_keys_sorted_and_duration_formatted(self):
        self.assertEqual(
            reports.parse_details({"duration": 59, "action": "x"}),
            "action: x, duration: 00:00:59",
        )


class TestRender(unittest.TestCase):
    def test_headers(self):
        self.assertEqual(
            reports.render_security_log_header(),
            "ID,Action,Details,Originator ID,Originator Type,Originator Identifier,"
            "Originator IP Address,Target ID,Target Type,Target Identifier,Logged At\n",
        )
        self.assertTrue(
            reports.render_certification_log_header().startswith(
                "ID,Approver ID,Approver Role,"
            )
        )
        self.assertEqual(len(reports.CERTIFICATION_LOG_HEADERS), 15)

    def test_security_row_quotes_and_blanks(self):
        record = SimpleNamespace(
            id=1,
            action="sign_in",
            details={"note": 'said "hi", left'},
            originator_id=2,
            originator_role="solver",
            originator_identifier="a@example.gov",
            originator_remote_ip=None,
            target_id=None,
            target_type=None,
            target_identifier=None,
            logged_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        )
        row = reports.render("security-log-content.csv", record)
        self.assertEqual(
            row,
            '1,sign_in,"note: said ""hi"", left",2,solver,a@example.gov,,,,,'
            "2026-01-02T03:04:05+00:00\n",
        )

    def test_unknown_report(self):
        with self.assertRaises(ValueError):
            reports.render("nope.csv", object())


class TestStreamSecurityLog(DatabaseTestCase):
    def test_header_then_rows_in_range(self):
        user = self.make_user(role=UserRole.ADMIN)
        security_logs.track_user_action(self.db, user, "sign_in", remote_ip="10.0.0.1")
        self.db.commit()

        lines = list(reports.stream_security_log(self.db))
        self.assertEqual(lines[0], reports.render_security_log_header())
        self.assertEqual(len(lines), 2)
        self.assertIn("sign_in", lines[1])
        self.assertIn("10.0.0.1", lines[1])

        future = datetime.now(timezone.utc) + timedelta(days=2)
        self.assertEqual(len(list(reports.stream_security_log(self.db, start=future))), 1)


if __name__ == "__main__":
    unittest.main()
