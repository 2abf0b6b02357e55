import unittest
from datetime import datetime, timezone

from challengegov import challenges
from challengegov.models import UserRole
from challengegov.query_tools import MAX_PER, Page, parse_day, parse_id, parse_ids

from tests.support import DatabaseTestCase


class TestParseDay(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(parse_day("2026-03-04"), datetime(2026, 3, 4, tzinfo=timezone.utc))

    def test_invalid(self):
        self.assertIsNone(parse_day("03/04/2026"))
        self.assertIsNone(parse_day(""))


class TestParseIds(unittest.TestCase):
    def test_single(self):
        self.assertEqual(parse_id("12"), 12)
        self.assertIsNone(parse_id("abc"))
        self.assertIsNone(parse_id(None))

    def test_lists_drop_garbage(self):
        self.assertEqual(parse_ids(["1", "x", 3]), [1, 3])
        self.assertEqual(parse_ids("7"), [7])
        self.assertEqual(parse_ids(object()), [])


class TestPage(unittest.TestCase):
    def test_total_pages(self):
        self.assertEqual(Page(total=0, per=10).total_pages, 1)
        self.assertEqual(Page(total=21, per=10).total_pages, 3)


class TestPaginate(DatabaseTestCase):
    def test_pages_and_clamps(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        for n in range(3):
            self.make_challenge(owner, status="created", title=f"C{n}")

        first = challenges.all(self.db, page=1, per=2)
        self.assertEqual((first.total, len(first.items), first.total_pages), (3, 2, 2))
        second = challenges.all(self.db, page=2, per=2)
        self.assertEqual(len(second.items), 1)

        clamped = challenges.all(self.db, page="zero", per=10_000)
        self.assertEqual((clamped.page, clamped.per), (1, MAX_PER))


if __name__ == "__main__":
    unittest.main()
