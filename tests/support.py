"""Shared database harness and record factories for the test suite."""

import os
import unittest
from datetime import timedelta
from itertools import count
from unittest import mock

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-value-that-is-long-enough-0123456789")

from challengegov import security  # noqa: E402
from challengegov.db import Base, SessionLocal, engine  # noqa: E402
from challengegov.models import (  # noqa: E402
    Agency,
    Challenge,
    ChallengeOwner,
    Phase,
    Submission,
    User,
    UserRole,
    UserStatus,
)
from challengegov.security import hash_password  # noqa: E402
from challengegov.timeline import utcnow  # noqa: E402

PASSWORD = "Sup3rSecret!"
_ids = count(1)


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory schema per test; storage and email dispatch stubbed out."""

    def setUp(self):
        Base.metadata.create_all(bind=engine)
        self.db = SessionLocal()
        security._rate_limit_storage.clear()

        self.sent = []
        self.stored = {}
        patches = [
            mock.patch("challengegov.accounts.deliver_later", side_effect=self._deliver),
            mock.patch("challengegov.challenges.deliver_later", side_effect=self._deliver),
            mock.patch("challengegov.submissions.deliver_later", side_effect=self._deliver),
            mock.patch("challengegov.storage.put_object", side_effect=self._put),
            mock.patch("challengegov.storage.delete_object", side_effect=self._delete),
            mock.patch(
                "challengegov.storage.presign_get",
                side_effect=lambda key, **kwargs: f"https://files.test/{key}",
            ),
            mock.patch("challengegov.submission_exports.enqueue", side_effect=lambda db, e: e),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(bind=engine)

    def _deliver(self, email):
        self.sent.append(email)
        return True

    def _put(self, key, data, content_type=None, **kwargs):
        self.stored[key] = data

    def _delete(self, key, **kwargs):
        self.stored.pop(key, None)

    # Factories
    def make_user(self, role=UserRole.SOLVER, status=UserStatus.ACTIVE, **fields):
        n = next(_ids)
        user = User(
            email=fields.pop("email", f"user{n}@example.gov"),
            password_hash=hash_password(fields.pop("password", PASSWORD)),
            first_name=fields.pop("first_name", f"First{n}"),
            last_name=fields.pop("last_name", f"Last{n}"),
            role=role,
            status=status,
            email_verified=True,
            **fields,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def make_agency(self, name="General Services Administration", acronym="GSA"):
        agency = Agency(name=name, acronym=acronym)
        self.db.add(agency)
        self.db.commit()
        return agency

    def make_challenge(self, owner=None, status="created", **fields):
        challenge = Challenge(
            user_id=owner.id if owner else None,
            status=status,
            title=fields.pop("title", "Test challenge"),
            tagline=fields.pop("tagline", "A tagline"),
            brief_description=fields.pop("brief_description", "Brief"),
            description=fields.pop("description", "Long description"),
            **fields,
        )
        self.db.add(challenge)
        self.db.flush()
        if owner is not None:
            self.db.add(ChallengeOwner(challenge_id=challenge.id, user_id=owner.id))
        self.db.commit()
        return challenge

    def make_phase(self, challenge, open_for=timedelta(days=7), title="Phase 1"):
        now = utcnow()
        phase = Phase(
            challenge_id=challenge.id,
            title=title,
            start_date=now - timedelta(days=1),
            end_date=now + open_for,
        )
        self.db.add(phase)
        self.db.commit()
        return phase

    def make_submission(self, submitter, challenge, phase, **fields):
        submission = Submission(
            submitter_id=submitter.id,
            challenge_id=challenge.id,
            phase_id=phase.id,
            title=fields.pop("title", "An entry"),
            brief_description=fields.pop("brief_description", "Brief"),
            description=fields.pop("description", "Description"),
            status=fields.pop("status", "draft"),
            **fields,
        )
        self.db.add(submission)
        self.db.commit()
        return submission
