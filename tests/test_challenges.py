import unittest
from datetime import datetime, timedelta, timezone

from challengegov import challenges, documents
from challengegov.errors import ChangesetError, NotFound, TransitionError
from challengegov.models import (
    Challenge,
    ChallengeOwner,
    SecurityLog,
    SupportingDocument,
    TimelineEvent,
    UserRole,
)

from tests.support import DatabaseTestCase


class TestWizardNavigation(unittest.TestCase):
    def test_next_and_back(self):
        self.assertEqual(challenges.next_section("general")["id"], "details")
        self.assertEqual(challenges.prev_section("details")["id"], "general")

    def test_edges(self):
        self.assertIsNone(challenges.prev_section("general"))
        self.assertIsNone(challenges.next_section("review"))
        self.assertIsNone(challenges.next_section("nonsense"))

    def test_to_section(self):
        self.assertEqual(challenges.to_section("timeline", "next")["id"], "prizes")
        self.assertEqual(challenges.to_section("timeline", "back")["id"], "details")
        self.assertIsNone(challenges.to_section("timeline", "save_draft"))

    def test_status_labels(self):
        self.assertEqual(challenges.status_label("created"), "Published")
        self.assertEqual(challenges.status_label("gsa_review"), "GSA Review")
        self.assertEqual(len(challenges.statuses()), 10)
        self.assertEqual(len(challenges.sections()), 9)


class TestStateMachine(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.make_user(role=UserRole.ADMIN)
        self.owner = self.make_user(role=UserRole.CHALLENGE_OWNER)

    def test_archive_then_not_archivable(self):
        challenge = self.make_challenge(self.owner, status="created")
        challenges.archive(self.db, challenge, self.admin)
        self.assertEqual(challenge.status, "archived")
        self.assertEqual(challenge.sub_status, "archived")
        self.assertFalse(challenges.is_archivable(challenge))
        with self.assertRaises(TransitionError):
            challenges.archive(self.db, challenge, self.admin)

    def test_publish_then_not_publishable(self):
        challenge = self.make_challenge(self.owner, status="approved")
        challenges.publish(self.db, challenge, self.admin, "127.0.0.1")
        self.assertFalse(challenges.is_publishable(challenge))
        self.assertTrue(challenges.is_public(challenge))

        events = self.db.query(TimelineEvent).filter_by(challenge_id=challenge.id).all()
        self.assertEqual([e.title for e in events], ["Created"])

        log = self.db.query(SecurityLog).filter_by(action="status_change").one()
        self.assertEqual(log.details, {"previous_status": "approved", "new_status": "created"})
        self.assertEqual(log.originator_remote_ip, "127.0.0.1")

    def test_approve_twice(self):
        challenge = self.make_challenge(self.owner, status="gsa_review")
        challenges.approve(self.db, challenge, self.admin)
        with self.assertRaises(TransitionError):
            challenges.approve(self.db, challenge, self.admin)

    def test_reject_emails_owners(self):
        challenge = self.make_challenge(self.owner, status="pending")
        challenges.reject(self.db, challenge, "Needs a budget", self.admin)
        self.assertEqual(challenge.status, "rejected")
        self.assertEqual(challenge.rejection_message, "Needs a budget")
        self.assertEqual([e.to for e in self.sent], [self.owner.email])

    def test_reject_from_gsa_review_refused(self):
        challenge = self.make_challenge(self.owner, status="gsa_review")
        with self.assertRaises(TransitionError):
            challenges.reject(self.db, challenge, "", self.admin)


class TestOwnership(DatabaseTestCase):
    def test_revoked_owner_is_not_owner(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        challenge = self.make_challenge(owner)
        self.assertTrue(challenges.is_challenge_owner(owner, challenge))

        self.assertEqual(challenges.revoke_access(self.db, owner, challenge), 1)
        self.assertFalse(challenges.is_challenge_owner(owner, challenge))
        self.assertFalse(challenges.allowed_to_edit(owner, challenge))

        challenges.restore_access(self.db, owner, challenge)
        self.assertTrue(challenges.is_challenge_owner(owner, challenge))

    def test_delete_permissions(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        admin = self.make_user(role=UserRole.ADMIN)
        published = self.make_challenge(owner, status="created")
        draft = self.make_challenge(owner, status="draft")

        self.assertFalse(challenges.delete(self.db, published, owner))
        self.assertTrue(challenges.delete(self.db, draft, owner))
        self.assertIsNotNone(draft.deleted_at)
        self.assertTrue(challenges.delete(self.db, published, admin))
        with self.assertRaises(NotFound):
            challenges.get(self.db, published.id)


class TestWizardCreate(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        self.agency = self.make_agency()

    def test_first_section_creates_draft_with_owner(self):
        challenge = challenges.create(
            self.db,
            self.owner,
            "next",
            {"section": "general", "agency_id": self.agency.id, "fiscal_year": "FY26"},
        )
        self.assertEqual(challenge.status, "draft")
        self.assertEqual(challenge.last_section, "general")
        self.assertEqual(
            [u.id for u in challenge.challenge_owner_users], [self.owner.id]
        )

    def test_required_fields_for_section(self):
        with self.assertRaises(ChangesetError) as ctx:
            challenges.create(self.db, self.owner, "next", {"section": "general"})
        self.assertIn("agency_id", ctx.exception.errors)
        self.assertIn("fiscal_year", ctx.exception.errors)
        self.assertEqual(self.db.query(Challenge).count(), 0)

    def test_save_draft_skips_required(self):
        challenge = challenges.create(
            self.db, self.owner, "save_draft", {"section": "general"}
        )
        self.assertEqual(challenge.status, "draft")

    def test_bad_fiscal_year(self):
        with self.assertRaises(ChangesetError) as ctx:
            challenges.create(
                self.db,
                self.owner,
                "save_draft",
                {"section": "general", "fiscal_year": "2026"},
            )
        self.assertEqual(ctx.exception.errors["fiscal_year"], ["must be in the format FYXX"])

    def test_submit_moves_to_gsa_review(self):
        challenge = challenges.create(
            self.db, self.owner, "submit", {"section": "review"}
        )
        self.assertEqual(challenge.status, "gsa_review")

    def test_bad_document_rolls_back_everything(self):
        with self.assertRaises(ChangesetError) as ctx:
            challenges.create(
                self.db,
                self.owner,
                "save_draft",
                {
                    "section": "general",
                    "title": "Moonshot",
                    "non_federal_partners": [{"name": "Acme"}],
                    "document_ids": [9999],
                },
            )
        self.assertEqual(ctx.exception.errors, {"document_ids": ["are invalid"]})
        self.assertEqual(ctx.exception.params["title"], "Moonshot")
        self.assertEqual(self.db.query(Challenge).count(), 0)
        self.assertEqual(self.db.query(ChallengeOwner).count(), 0)

    def test_documents_attach_to_resources(self):
        document = documents.upload_supporting_document(
            self.db, self.owner, "rules.pdf", b"%PDF-1.4", "application/pdf"
        )
        challenge = challenges.create(
            self.db,
            self.owner,
            "save_draft",
            {"section": "resources", "document_ids": [document.id]},
        )
        attached = self.db.get(SupportingDocument, document.id)
        self.assertEqual(attached.challenge_id, challenge.id)
        self.assertEqual(attached.section, "resources")

    def test_phases_set_challenge_dates(self):
        start = datetime(2027, 1, 1, tzinfo=timezone.utc)
        challenge = challenges.create(
            self.db,
            self.owner,
            "save_draft",
            {
                "section": "timeline",
                "phases": [
                    {"title": "One", "start_date": start.isoformat(),
                     "end_date": (start + timedelta(days=30)).isoformat()},
                    {"title": "Two", "start_date": (start + timedelta(days=40)).isoformat(),
                     "end_date": (start + timedelta(days=60)).isoformat()},
                ],
            },
        )
        challenge = challenges.get(self.db, challenge.id)
        self.assertEqual([p.title for p in challenge.phases], ["One", "Two"])
        self.assertEqual(challenge.start_date.date(), start.date())
        self.assertEqual(challenge.end_date.date(), (start + timedelta(days=60)).date())

    def test_update_adds_second_phase(self):
        start = datetime(2027, 3, 1, tzinfo=timezone.utc)
        challenge = challenges.create(
            self.db,
            self.owner,
            "save_draft",
            {
                "section": "timeline",
                "phases": [
                    {"title": "One", "start_date": start.isoformat(),
                     "end_date": (start + timedelta(days=10)).isoformat()},
                ],
            },
        )
        first = challenges.get(self.db, challenge.id).phases[0]

        challenges.update(
            self.db,
            challenge,
            "save_draft",
            {
                "section": "timeline",
                "phases": [
                    {"id": first.id, "title": "One", "start_date": start.isoformat(),
                     "end_date": (start + timedelta(days=10)).isoformat()},
                    {"title": "Two", "start_date": (start + timedelta(days=20)).isoformat(),
                     "end_date": (start + timedelta(days=45)).isoformat()},
                ],
            },
        )

        challenge = challenges.get(self.db, challenge.id)
        self.assertEqual(len(challenge.phases), 2)
        self.assertIn(first.id, [p.id for p in challenge.phases])
        self.assertEqual(challenge.start_date.date(), start.date())
        self.assertEqual(challenge.end_date.date(), (start + timedelta(days=45)).date())


class TestLegacyCreate(DatabaseTestCase):
    def test_requires_core_fields(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        with self.assertRaises(ChangesetError) as ctx:
            challenges.old_create(self.db, owner, {"title": "Only a title"})
        self.assertIn("agency_id", ctx.exception.errors)

    def test_creates_pending(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        agency = self.make_agency()
        challenge = challenges.old_create(
            self.db,
            owner,
            {
                "title": "Legacy",
                "tagline": "Tag",
                "brief_description": "Brief",
                "description": "Desc",
                "agency_id": agency.id,
                "federal_partners": [agency.id],
            },
        )
        self.assertEqual(challenge.status, "pending")
        self.assertEqual([a.id for a in challenge.federal_partner_agencies], [agency.id])


class TestUpdateChallenge(DatabaseTestCase):
    def test_owner_cannot_change_status(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        challenge = self.make_challenge(owner, status="draft")
        challenges.update_challenge(
            self.db, challenge, {"status": "created", "title": "Renamed"}, owner
        )
        self.assertEqual(challenge.status, "draft")
        self.assertEqual(challenge.title, "Renamed")

    def test_admin_status_change_records_event(self):
        owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        admin = self.make_user(role=UserRole.ADMIN)
        challenge = self.make_challenge(owner, status="approved")
        challenges.update_challenge(self.db, challenge, {"status": "vetted"}, admin)
        self.assertEqual(challenge.status, "vetted")
        self.assertEqual([e.title for e in challenge.events], ["Vetted"])

    def test_invalid_status(self):
        admin = self.make_user(role=UserRole.ADMIN)
        challenge = self.make_challenge(None, status="draft")
        with self.assertRaises(ChangesetError):
            challenges.update_challenge(self.db, challenge, {"status": "bogus"}, admin)


class TestQueries(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.owner = self.make_user(role=UserRole.CHALLENGE_OWNER, first_name="Zed")
        self.other = self.make_user(role=UserRole.CHALLENGE_OWNER, first_name="Amy")
        self.published = self.make_challenge(self.owner, status="created", title="Alpha")
        self.draft = self.make_challenge(self.owner, status="draft", title="Bravo")
        self.theirs = self.make_challenge(self.other, status="gsa_review", title="Charlie")

    def test_owner_sees_only_own(self):
        page = challenges.all_for_user(self.db, self.owner)
        self.assertEqual({c.id for c in page.items}, {self.published.id, self.draft.id})

    def test_solver_sees_public_only(self):
        solver = self.make_user()
        page = challenges.all_for_user(self.db, solver)
        self.assertEqual([c.id for c in page.items], [self.published.id])

    def test_default_sort_is_id_desc(self):
        admin = self.make_user(role=UserRole.ADMIN)
        page = challenges.all_for_user(self.db, admin, sort={})
        self.assertEqual(
            [c.id for c in page.items], [self.theirs.id, self.draft.id, self.published.id]
        )
        unknown = challenges.all_for_user(self.db, admin, sort={"bogus": "asc"})
        self.assertEqual([c.id for c in unknown.items], [c.id for c in page.items])

    def test_virtual_sort_on_creator(self):
        admin = self.make_user(role=UserRole.ADMIN)
        page = challenges.all_for_user(self.db, admin, sort={"user": "asc"})
        self.assertEqual(page.items[0].id, self.theirs.id)

    def test_filters(self):
        admin = self.make_user(role=UserRole.ADMIN)
        page = challenges.all_for_user(self.db, admin, filter={"search": "brav"})
        self.assertEqual([c.id for c in page.items], [self.draft.id])
        page = challenges.all_for_user(
            self.db, admin, filter={"user_ids": [self.other.id], "status": ""}
        )
        self.assertEqual([c.id for c in page.items], [self.theirs.id])

    def test_pending_for_owner(self):
        page = challenges.all_pending_for_user(self.db, self.other)
        self.assertEqual([c.id for c in page.items], [self.theirs.id])
        self.assertEqual(challenges.all_pending_for_user(self.db, self.owner).total, 0)

    def test_filter_for_created(self):
        self.assertIs(challenges.filter_for_created(self.published), self.published)
        with self.assertRaises(NotFound):
            challenges.filter_for_created(self.draft)

    def test_admin_counts(self):
        counts = challenges.admin_counts(self.db)
        self.assertEqual(counts, {"pending": 0, "gsa_review": 1, "created": 1, "archived": 0})


if __name__ == "__main__":
    unittest.main()
