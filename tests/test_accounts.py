import unittest

from fastapi import HTTPException

from challengegov import accounts, security
from challengegov.config import settings
from challengegov.errors import ChangesetError, NotFound
from challengegov.models import CertificationLog, SecurityLog, UserRole, UserStatus, UserSession

from tests.support import PASSWORD, DatabaseTestCase


class TestPasswordStrength(unittest.TestCase):
    def test_strong(self):
        self.assertTrue(security.validate_password_strength("Sup3rSecret!")["valid"])

    def test_weak(self):
        result = security.validate_password_strength("short")
        self.assertFalse(result["valid"])
        self.assertIn("must be at least 8 characters long", result["errors"])


class TestRegistration(DatabaseTestCase):
    def test_solver_is_active_and_gets_verification(self):
        user = accounts.register(
            self.db,
            {"email": "Solver@Example.gov", "password": PASSWORD,
             "password_confirmation": PASSWORD},
        )
        self.assertEqual(user.email, "solver@example.gov")
        self.assertEqual(user.status, UserStatus.ACTIVE)
        self.assertFalse(user.email_verified)
        self.assertEqual(len(self.sent), 1)
        self.assertIn(user.verification_token, self.sent[0].text)

        verified = accounts.verify_email(self.db, user.verification_token)
        self.assertTrue(verified.email_verified)
        with self.assertRaises(NotFound):
            accounts.verify_email(self.db, "not-a-token")

    def test_challenge_owner_waits_for_certification(self):
        user = accounts.register(
            self.db,
            {"email": "owner@agency.gov", "password": PASSWORD, "role": "challenge_owner"},
        )
        self.assertEqual(user.status, UserStatus.PENDING)

    def test_admin_role_not_self_assignable(self):
        with self.assertRaises(ChangesetError) as ctx:
            accounts.register(
                self.db, {"email": "x@example.gov", "password": PASSWORD, "role": "admin"}
            )
        self.assertEqual(ctx.exception.errors, {"role": ["is invalid"]})

    def test_duplicate_and_mismatch(self):
        self.make_user(email="taken@example.gov")
        with self.assertRaises(ChangesetError) as ctx:
            accounts.register(
                self.db,
                {"email": "taken@example.gov", "password": PASSWORD,
                 "password_confirmation": "different"},
            )
        self.assertEqual(ctx.exception.errors["email"], ["has already been taken"])
        self.assertIn("password_confirmation", ctx.exception.errors)
        self.assertNotIn("password", ctx.exception.params)


class TestSignIn(DatabaseTestCase):
    def test_success_opens_session(self):
        user = self.make_user(email="me@example.gov")
        signed_in, token = accounts.authenticate(self.db, "me@example.gov", PASSWORD, "1.2.3.4")
        self.assertEqual(signed_in.id, user.id)
        payload = security.verify_token(token)
        self.assertEqual(payload["sub"], str(user.id))
        self.assertEqual(self.db.query(UserSession).filter_by(user_id=user.id).count(), 1)
        self.assertEqual(self.db.query(SecurityLog).filter_by(action="sign_in").count(), 1)

        accounts.sign_out(self.db, user, payload["jti"])
        session = self.db.query(UserSession).filter_by(user_id=user.id).one()
        self.assertIsNotNone(session.revoked_at)

    def test_lockout_after_failed_attempts(self):
        self.make_user(email="me@example.gov")
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with self.assertRaises(HTTPException) as ctx:
                accounts.authenticate(self.db, "me@example.gov", "wrong")
            self.assertEqual(ctx.exception.status_code, 401)

        with self.assertRaises(HTTPException) as ctx:
            accounts.authenticate(self.db, "me@example.gov", PASSWORD)
        self.assertEqual(ctx.exception.status_code, 423)

    def test_disabled_account(self):
        self.make_user(email="gone@example.gov", status=UserStatus.SUSPENDED)
        with self.assertRaises(HTTPException) as ctx:
            accounts.authenticate(self.db, "gone@example.gov", PASSWORD)
        self.assertEqual(ctx.exception.status_code, 403)


class TestPasswordReset(DatabaseTestCase):
    def test_reset_flow(self):
        user = self.make_user(email="me@example.gov")
        accounts.request_password_reset(self.db, "unknown@example.gov")
        self.assertEqual(self.sent, [])

        accounts.request_password_reset(self.db, "me@example.gov")
        self.assertEqual(len(self.sent), 1)
        token = user.reset_token

        accounts.reset_password(self.db, token, "N3wPassword!")
        self.assertIsNone(user.reset_token)
        self.assertTrue(security.verify_password("N3wPassword!", user.password_hash))
        with self.assertRaises(ChangesetError):
            accounts.reset_password(self.db, token, "N3wPassword!")


class TestAccountUpdate(DatabaseTestCase):
    def test_password_change_requires_current(self):
        user = self.make_user()
        with self.assertRaises(ChangesetError) as ctx:
            accounts.update_account(self.db, user, {"password": "An0therOne!"})
        self.assertIn("current_password", ctx.exception.errors)

        accounts.update_account(
            self.db,
            user,
            {"first_name": "Grace", "current_password": PASSWORD, "password": "An0therOne!"},
        )
        self.assertEqual(user.first_name, "Grace")
        log = self.db.query(SecurityLog).filter_by(action="account_update").one()
        self.assertEqual(log.details, {"fields": "first_name, password"})


class TestUserManagement(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.super_admin = self.make_user(role=UserRole.SUPER_ADMIN)
        self.admin = self.make_user(role=UserRole.ADMIN)

    def test_admin_cannot_manage_peer(self):
        peer = self.make_user(role=UserRole.ADMIN)
        with self.assertRaises(HTTPException) as ctx:
            accounts.update_user(self.db, self.admin, peer, {"status": "suspended"})
        self.assertEqual(ctx.exception.status_code, 403)

    def test_admin_cannot_grant_admin(self):
        solver = self.make_user()
        with self.assertRaises(HTTPException):
            accounts.update_user(self.db, self.admin, solver, {"role": "admin"})

    def test_super_admin_promotes_and_logs(self):
        solver = self.make_user()
        accounts.update_user(self.db, self.super_admin, solver, {"role": "admin"}, "9.9.9.9")
        self.assertEqual(solver.role, UserRole.ADMIN)
        log = self.db.query(SecurityLog).filter_by(action="role_change").one()
        self.assertEqual(log.details, {"previous_role": "solver", "new_role": "admin"})

    def test_certify_pending_owner(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER, status=UserStatus.PENDING)
        accounts.certify(self.db, self.admin, owner, "8.8.8.8")
        self.assertEqual(owner.status, UserStatus.ACTIVE)
        record = self.db.query(CertificationLog).one()
        self.assertEqual(record.approver_id, self.admin.id)
        self.assertIsNotNone(record.certified_at)
        self.assertIsNotNone(record.expires_at)
        with self.assertRaises(ChangesetError):
            accounts.certify(self.db, self.admin, owner)

    def test_deny_certification(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER, status=UserStatus.PENDING)
        accounts.deny_certification(self.db, self.admin, owner)
        self.assertEqual(owner.status, UserStatus.DEACTIVATED)
        self.assertIsNotNone(self.db.query(CertificationLog).one().denied_at)

    def test_list_users_filters(self):
        self.make_user(role=UserRole.CHALLENGE_OWNER, status=UserStatus.PENDING)
        pending = accounts.list_users(self.db, status_="pending")
        self.assertEqual(len(pending), 1)
        self.assertEqual(len(accounts.list_users(self.db, role="admin")), 1)
        with self.assertRaises(ChangesetError):
            accounts.list_users(self.db, status_="sleeping")

    def test_ensure_admin_is_idempotent(self):
        first = accounts.ensure_admin(self.db, "boot@example.gov", PASSWORD)
        second = accounts.ensure_admin(self.db, "boot@example.gov", PASSWORD)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.role, UserRole.SUPER_ADMIN)
        self.assertIsNone(accounts.ensure_admin(self.db, "", ""))


if __name__ == "__main__":
    unittest.main()
