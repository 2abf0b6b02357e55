import os
import unittest
from unittest import mock

os.environ.setdefault("DATABASE_URL", "sqlite://")

from challengegov import mailer  # noqa: E402
from challengegov.emails import Email  # noqa: E402


class TestDeliverLater(unittest.TestCase):
    def setUp(self):
        self.email = Email(to="a@example.gov", subject="Hi", html="<p>Hi</p>", text="Hi")

    def test_enqueues_task(self):
        with mock.patch("challengegov.tasks.send_email.delay") as delay:
            self.assertTrue(mailer.deliver_later(self.email))
        delay.assert_called_once_with("a@example.gov", "Hi", "<p>Hi</p>", "Hi")

    def test_broker_failure_is_swallowed(self):
        with mock.patch(
            "challengegov.tasks.send_email.delay", side_effect=ConnectionError("down")
        ):
            with self.assertLogs("challengegov.mailer", level="ERROR"):
                self.assertFalse(mailer.deliver_later(self.email))


if __name__ == "__main__":
    unittest.main()
