import unittest
from datetime import timedelta

from challengegov import documents, submission_exports, submissions
from challengegov.errors import ChangesetError
from challengegov.models import SecurityLog, Submission, SubmissionExport, UserRole

from tests.support import DatabaseTestCase


class SubmissionTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.owner = self.make_user(role=UserRole.CHALLENGE_OWNER)
        self.admin = self.make_user(role=UserRole.ADMIN)
        self.solver = self.make_user()
        self.challenge = self.make_challenge(self.owner, status="created")
        self.phase = self.make_phase(self.challenge)


class TestEditPermission(SubmissionTestCase):
    def test_solver_can_edit_while_phase_open(self):
        submission = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertTrue(submissions.allowed_to_edit(self.solver, submission))

    def test_solver_cannot_edit_after_phase_end(self):
        closed = self.make_phase(self.challenge, open_for=timedelta(seconds=-1), title="Old")
        submission = self.make_submission(self.solver, self.challenge, closed)
        self.assertFalse(submissions.allowed_to_edit(self.solver, submission))

    def test_phase_without_end_is_closed(self):
        self.phase.end_date = None
        self.db.commit()
        submission = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertFalse(submissions.allowed_to_edit(self.solver, submission))

    def test_archived_challenge_is_locked(self):
        self.challenge.sub_status = "archived"
        self.db.commit()
        submission = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertFalse(submissions.allowed_to_edit(self.solver, submission))

    def test_other_solver_cannot_edit(self):
        submission = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertFalse(submissions.allowed_to_edit(self.make_user(), submission))

    def test_admin_edits_only_unverified_managed_entries(self):
        unmanaged = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertFalse(submissions.allowed_to_edit(self.admin, unmanaged))

        managed = self.make_submission(
            self.solver, self.challenge, self.phase, manager_id=self.admin.id, status="review"
        )
        self.assertTrue(submissions.allowed_to_edit(self.admin, managed))

        managed.review_verified = True
        self.db.commit()
        self.assertFalse(submissions.allowed_to_edit(self.admin, managed))


class TestWorkflow(SubmissionTestCase):
    def test_draft_then_submit(self):
        draft = submissions.create_draft(
            self.db, {"title": "Idea"}, self.solver, self.challenge, self.phase
        )
        self.assertEqual(draft.status, "draft")

        with self.assertRaises(ChangesetError) as ctx:
            submissions.submit(self.db, draft)
        self.assertIn("brief_description", ctx.exception.errors)
        self.assertIn("terms_accepted", ctx.exception.errors)

        submissions.update_draft(
            self.db, draft, {"brief_description": "Short", "description": "Long"}
        )
        submitted = submissions.submit(
            self.db, draft, "10.1.1.1", {"terms_accepted": True}
        )
        self.assertEqual(submitted.status, "submitted")
        self.assertEqual(
            sorted(e.to for e in self.sent), sorted([self.solver.email, self.owner.email])
        )
        log = self.db.query(SecurityLog).filter_by(action="submit").one()
        self.assertEqual(log.target_id, submitted.id)

    def test_external_url_must_be_http(self):
        with self.assertRaises(ChangesetError) as ctx:
            submissions.create_draft(
                self.db, {"external_url": "ftp://x"}, self.solver, self.challenge, self.phase
            )
        self.assertIn("external_url", ctx.exception.errors)

    def test_phase_from_other_challenge(self):
        other = self.make_challenge(self.owner, status="created")
        other_phase = self.make_phase(other)
        with self.assertRaises(ChangesetError):
            submissions.create_draft(self.db, {}, self.solver, self.challenge, other_phase)
        with self.assertRaises(ChangesetError):
            submissions.phase_for(self.challenge, other_phase.id, {})

    def test_manager_review_is_verified_on_submit(self):
        review = submissions.create_review(
            self.db,
            {"submitter_id": self.solver.id, "title": "T", "brief_description": "B",
             "description": "D"},
            self.admin,
            self.challenge,
            self.phase,
        )
        self.assertEqual(review.status, "review")
        self.assertEqual(review.manager_id, self.admin.id)
        self.assertEqual([e.to for e in self.sent], [self.admin.email])
        self.assertEqual(
            [s.id for s in submissions.get_all_with_user_id_and_manager(self.db, self.solver)],
            [review.id],
        )

        submissions.submit(self.db, review, params={"terms_accepted": True})
        self.assertTrue(review.review_verified)
        self.assertEqual(submissions.get_all_with_user_id_and_manager(self.db, self.solver), [])

    def test_review_requires_solver_submitter(self):
        with self.assertRaises(ChangesetError) as ctx:
            submissions.create_review(
                self.db, {"submitter_id": self.owner.id}, self.admin, self.challenge, self.phase
            )
        self.assertEqual(ctx.exception.errors, {"submitter_id": ["is invalid"]})

    def test_bad_document_keeps_valid_selection(self):
        document = documents.upload_submission_document(
            self.db, self.solver, "entry.pdf", b"%PDF", "application/pdf"
        )
        other = documents.upload_submission_document(
            self.db, self.make_user(), "theirs.pdf", b"%PDF", "application/pdf"
        )
        with self.assertRaises(ChangesetError) as ctx:
            submissions.create_draft(
                self.db,
                {"title": "x", "document_ids": [document.id, other.id, 424242]},
                self.solver,
                self.challenge,
                self.phase,
            )
        self.assertEqual(ctx.exception.params["document_ids"], [document.id, other.id])
        self.assertEqual(self.db.query(Submission).count(), 0)

    def test_delete_is_soft(self):
        submission = self.make_submission(self.solver, self.challenge, self.phase)
        self.assertTrue(submissions.allowed_to_delete(self.solver, submission))
        submissions.delete(self.db, submission)
        self.assertIsNotNone(submission.deleted_at)
        self.assertEqual(submissions.all(self.db).total, 0)


class TestFiltering(SubmissionTestCase):
    def setUp(self):
        super().setUp()
        self.rows = {
            status: self.make_submission(
                self.solver, self.challenge, self.phase, judging_status=status,
                status="submitted", title=f"Entry {status}",
            )
            for status in ("not_selected", "selected", "qualified", "winner")
        }

    def test_selected_includes_winners(self):
        page = submissions.all(self.db, filter={"judging_status": "selected"})
        self.assertEqual(
            {s.id for s in page.items},
            {self.rows["selected"].id, self.rows["winner"].id},
        )

    def test_all_and_exact(self):
        self.assertEqual(submissions.all(self.db, filter={"judging_status": "all"}).total, 4)
        page = submissions.all(self.db, filter={"judging_status": "qualified"})
        self.assertEqual([s.id for s in page.items], [self.rows["qualified"].id])

    def test_malformed_ids_are_ignored(self):
        page = submissions.all(self.db, filter={"phase_id": "abc", "phase_ids": ["x"]})
        self.assertEqual(page.total, 4)
        page = submissions.all(self.db, filter={"phase_ids": [str(self.phase.id), "x"]})
        self.assertEqual(page.total, 4)

    def test_sort_by_title(self):
        page = submissions.all(self.db, sort={"title": "asc"})
        self.assertEqual(page.items[0].title, "Entry not_selected")

    def test_invalid_direction_leaves_order_unset(self):
        page = submissions.all(self.db, sort={"title": "sideways"})
        self.assertEqual(page.total, 4)

    def test_update_judging_status_outdates_exports(self):
        export = SubmissionExport(
            challenge_id=self.challenge.id,
            phase_ids=[self.phase.id],
            judging_status="all",
            format=".csv",
            status="completed",
            key="submission-exports/x.csv",
        )
        self.db.add(export)
        self.db.commit()

        submissions.update_judging_status(self.db, self.rows["qualified"], "winner")
        self.assertEqual(export.status, "outdated")
        with self.assertRaises(ChangesetError):
            submissions.update_judging_status(self.db, self.rows["winner"], "champion")


class TestExports(SubmissionTestCase):
    def test_build_writes_csv_of_submitted_rows(self):
        self.make_submission(self.solver, self.challenge, self.phase, status="submitted",
                             judging_status="winner", title="Chosen")
        self.make_submission(self.solver, self.challenge, self.phase, status="draft",
                             title="Unsent")
        export = submission_exports.create(
            self.db, self.challenge, {"judging_status": "selected"}
        )
        self.assertEqual(export.phase_ids, [self.phase.id])

        built = submission_exports.build_export(self.db, export.id)
        self.assertEqual(built.status, "completed")
        body = self.stored[built.key].decode("utf-8")
        self.assertIn("Chosen", body)
        self.assertNotIn("Unsent", body)
        self.assertTrue(body.startswith("Submission ID,Submitter Email"))

    def test_invalid_request(self):
        with self.assertRaises(ChangesetError) as ctx:
            submission_exports.create(
                self.db,
                self.challenge,
                {"phase_ids": [99999], "judging_status": "maybe", "format": ".pdf"},
            )
        self.assertEqual(
            set(ctx.exception.errors), {"phase_ids", "judging_status", "format"}
        )


if __name__ == "__main__":
    unittest.main()
