import unittest
from datetime import datetime
from decimal import Decimal
from unittest import mock

from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import IntegrityError

from rmv_fabrication.config import (
    ADMIN,
    CUSTOMER,
    ENGINEER,
    FABRICATION_STAFF,
    SALES_STAFF,
)
from rmv_fabrication.domain.projects.schemas import ConsultationUpdate, ProjectCreate
from rmv_fabrication.domain.projects.service import ProjectService
from rmv_fabrication.domain.scheduling.schemas import AppointmentCreate
from rmv_fabrication.domain.scheduling.service import AppointmentService
from rmv_fabrication.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from rmv_fabrication.models import Payment

from .support import MARCH_FIRST_10AM, WorkflowTestCase, file_ref


class ProjectTestCase(WorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.customer = self.make_user(CUSTOMER, "Maria")
        self.sales = self.make_user(SALES_STAFF, "Ramon")
        self.engineer = self.make_user(ENGINEER, "Jose")
        self.admin = self.make_user(ADMIN, "Rosa")
        self.service = ProjectService(self.db, notifier=self.notifier, audit=self.audit)

    def create(self, **overrides):
        data = {"customer_id": self.customer.id, "category": "gate", "title": "Main gate", **overrides}
        return self.service.create_project(self.caller(self.sales), ProjectCreate(**data))

    def awaiting_approval(self, total=Decimal("100000"), **overrides):
        project = self.create(**overrides)
        self.service.submit_to_engineer(self.caller(self.sales), project.id, self.engineer.id)
        self.service.upload_blueprint(self.caller(self.engineer), project.id, file_ref("gate-v1.pdf"))
        self.service.upload_costing(self.caller(self.engineer), project.id, file_ref("cost-v1.xlsx"), total)
        return self.service.submit_for_approval(self.caller(self.engineer), project.id)


class CreateProjectTests(ProjectTestCase):
    def test_new_project_starts_as_draft(self):
        project = self.create()

        year = datetime.now().year
        self.assertEqual(project.status, "draft")
        self.assertEqual(project.project_number, f"RMV-{year}-0001")
        self.assertEqual(project.assigned_sales_staff_id, self.sales.id)
        self.assertEqual(self.statuses(project), ["draft"])
        self.assertEqual(
            (project.initial_percentage, project.midpoint_percentage, project.final_percentage), (30, 40, 30)
        )
        self.assertEqual(self.audit.actions(), ["project_created"])

    def test_project_numbers_are_sequential(self):
        first = self.create()
        second = self.create(title="Balcony railing", category="railing")

        self.assertTrue(first.project_number.endswith("-0001"))
        self.assertTrue(second.project_number.endswith("-0002"))

    def test_customer_must_exist(self):
        with self.assertRaises(NotFoundError):
            self.create(customer_id=999)
        with self.assertRaises(NotFoundError):
            self.create(customer_id=self.engineer.id)

    def test_custom_percentages_must_sum_to_100(self):
        with self.assertRaises(ValidationError):
            self.create(stage_percentages={"initial": 50, "midpoint": 30, "final": 30})

        project = self.create(stage_percentages={"initial": 50, "midpoint": 25, "final": 25})
        self.assertEqual(project.initial_percentage, 50)

    def test_unknown_category_is_rejected_by_schema(self):
        with self.assertRaises(SchemaError):
            ProjectCreate(customer_id=self.customer.id, category="spaceship", title="Rocket")

    def test_converting_an_appointment_links_both_ways(self):
        appointments = AppointmentService(self.db, notifier=self.notifier, audit=self.audit)
        appointment = appointments.book_appointment(
            self.caller(self.customer),
            AppointmentCreate(scheduled_date=MARCH_FIRST_10AM, appointment_type="office_consultation"),
        )

        project = self.create(source_appointment_id=appointment.id)

        self.db.refresh(appointment)
        self.assertEqual(project.source_appointment_id, appointment.id)
        self.assertEqual(appointment.converted_to_project_id, project.id)

    def test_unknown_source_appointment(self):
        with self.assertRaises(NotFoundError):
            self.create(source_appointment_id=404)

    def test_customers_cannot_create_projects(self):
        data = ProjectCreate(customer_id=self.customer.id, category="gate", title="Main gate")
        with self.assertRaises(ForbiddenError):
            self.service.create_project(self.caller(self.customer), data)

    def test_consultation_details_are_recorded(self):
        project = self.create()

        updated = self.service.update_consultation(
            self.caller(self.sales),
            project.id,
            ConsultationUpdate(
                notes="Customer wants brushed finish",
                measurements=[{"label": "width", "value": 3.2, "unit": "m"}],
                photos=[file_ref("site-1.jpg")],
            ),
        )
        self.service.update_consultation(
            self.caller(self.sales), project.id, ConsultationUpdate(photos=[file_ref("site-2.jpg")])
        )
        self.db.refresh(updated)

        self.assertEqual(updated.consultation_notes, "Customer wants brushed finish")
        self.assertEqual(updated.consultation_measurements[0]["label"], "width")
        self.assertEqual([p["original_name"] for p in updated.consultation_photos], ["site-1.jpg", "site-2.jpg"])
        self.assertEqual(updated.consultation_by_id, self.sales.id)


class DesignTests(ProjectTestCase):
    def test_submit_to_engineer_moves_draft_forward(self):
        project = self.create()

        sent = self.service.submit_to_engineer(self.caller(self.sales), project.id, self.engineer.id)

        self.assertEqual(sent.status, "pending_blueprint")
        self.assertEqual(sent.assigned_engineer_id, self.engineer.id)
        with self.assertRaises(InvalidStateError):
            self.service.submit_to_engineer(self.caller(self.sales), project.id, self.engineer.id)

    def test_submit_to_engineer_requires_an_engineer(self):
        project = self.create()

        with self.assertRaises(NotFoundError):
            self.service.submit_to_engineer(self.caller(self.sales), project.id, self.sales.id)

    def test_uploads_append_versions(self):
        project = self.create()
        engineer = self.caller(self.engineer)

        self.service.upload_blueprint(engineer, project.id, file_ref("v1.pdf"), "First draft")
        updated = self.service.upload_blueprint(engineer, project.id, file_ref("v2.pdf"))

        self.assertEqual(updated.blueprint_current_version, 2)
        self.assertEqual([v["version"] for v in updated.blueprint_versions], [1, 2])
        self.assertEqual(updated.blueprint_versions[0]["notes"], "First draft")
        self.assertEqual(updated.blueprint_versions[1]["uploaded_by"], self.engineer.id)
        self.assertEqual(self.audit.actions()[-2:], ["blueprint_uploaded", "blueprint_revised"])

    def test_costing_records_total_and_breakdown(self):
        project = self.create()

        updated = self.service.upload_costing(
            self.caller(self.engineer),
            project.id,
            file_ref("cost.xlsx"),
            Decimal("85000.50"),
            [{"item": "304 tubing", "amount": "60000"}],
        )

        self.assertEqual(updated.costing_current_version, 1)
        self.assertEqual(Decimal(updated.costing_versions[0]["total_amount"]), Decimal("85000.50"))
        self.assertEqual(updated.costing_versions[0]["breakdown"][0]["item"], "304 tubing")
        self.assertEqual(self.audit.actions()[-1], "costing_uploaded")

    def test_costing_total_must_be_positive(self):
        project = self.create()

        for total in (Decimal("0"), Decimal("-5")):
            with self.assertRaises(ValidationError):
                self.service.upload_costing(self.caller(self.engineer), project.id, file_ref("c.xlsx"), total)

    def test_only_engineers_upload(self):
        project = self.create()

        with self.assertRaises(ForbiddenError):
            self.service.upload_blueprint(self.caller(self.sales), project.id, file_ref("v1.pdf"))

    def test_approval_needs_blueprint_and_costing(self):
        project = self.create()
        self.service.upload_blueprint(self.caller(self.engineer), project.id, file_ref("v1.pdf"))

        with self.assertRaises(PreconditionError):
            self.service.submit_for_approval(self.caller(self.engineer), project.id)

    def test_submit_for_approval_notifies_customer(self):
        project = self.awaiting_approval()

        self.assertEqual(project.status, "pending_customer_approval")
        self.assertIn("blueprint_ready", self.notifier.events())
        self.assertIn("approval_requested", self.audit.actions())

    def test_submit_for_approval_from_later_status_is_invalid(self):
        project = self.awaiting_approval()
        self.service.update_project_status(self.caller(self.admin), project.id, "in_fabrication")

        with self.assertRaises(InvalidStateError):
            self.service.submit_for_approval(self.caller(self.engineer), project.id)


class ApprovalTests(ProjectTestCase):
    def test_approval_opens_three_payment_stages(self):
        project = self.awaiting_approval()

        approved = self.service.approve_project(self.caller(self.customer), project.id)

        self.assertEqual(approved.status, "pending_initial_payment")
        self.assertEqual(self.statuses(approved)[-2:], ["approved", "pending_initial_payment"])
        self.assertTrue(approved.is_approved)
        self.assertEqual(approved.costing_approved_amount, Decimal("100000"))
        self.assertEqual(approved.approved_blueprint_version, 1)
        self.assertEqual(approved.approved_costing_version, 1)
        self.assertEqual(
            (approved.initial_amount, approved.midpoint_amount, approved.final_amount),
            (Decimal("30000"), Decimal("40000"), Decimal("30000")),
        )

        payments = self.db.query(Payment).filter(Payment.project_id == project.id).order_by(Payment.id).all()
        self.assertEqual([p.stage for p in payments], ["initial", "midpoint", "final"])
        self.assertEqual([p.status for p in payments], ["pending"] * 3)
        self.assertEqual([p.amount_expected for p in payments], [Decimal("30000"), Decimal("40000"), Decimal("30000")])
        self.assertTrue(all(p.customer_id == self.customer.id for p in payments))

        self.assertIn("project_approved", self.audit.actions())
        event, recipient, data = self.notifier.sent[-1]
        self.assertEqual((event, recipient, data["status"]), ("project_status_update", self.customer.email, "approved"))

    def test_stage_amounts_add_up_to_approved_amount(self):
        project = self.awaiting_approval(total=Decimal("123456.79"))

        approved = self.service.approve_project(self.caller(self.customer), project.id)

        self.assertEqual(
            approved.initial_amount + approved.midpoint_amount + approved.final_amount,
            approved.costing_approved_amount,
        )

    def test_approval_uses_latest_costing(self):
        project = self.awaiting_approval(total=Decimal("90000"))
        self.service.upload_costing(self.caller(self.engineer), project.id, file_ref("cost-v2.xlsx"), Decimal("100000"))

        approved = self.service.approve_project(self.caller(self.customer), project.id)

        self.assertEqual(approved.costing_approved_amount, Decimal("100000"))
        self.assertEqual(approved.approved_costing_version, 2)

    def test_custom_percentages_drive_stage_amounts(self):
        project = self.awaiting_approval(stage_percentages={"initial": 50, "midpoint": 25, "final": 25})

        approved = self.service.approve_project(self.caller(self.customer), project.id)

        self.assertEqual(approved.initial_amount, Decimal("50000"))
        self.assertEqual(approved.final_amount, Decimal("25000"))

    def test_approving_twice_is_invalid_and_keeps_three_payments(self):
        project = self.awaiting_approval()
        self.service.approve_project(self.caller(self.customer), project.id)

        with self.assertRaises(InvalidStateError):
            self.service.approve_project(self.caller(self.customer), project.id)
        self.assertEqual(self.db.query(Payment).filter(Payment.project_id == project.id).count(), 3)

    def test_only_the_owner_approves(self):
        project = self.awaiting_approval()

        with self.assertRaises(ForbiddenError):
            self.service.approve_project(self.caller(self.make_user(CUSTOMER)), project.id)

    def test_revision_loop(self):
        project = self.awaiting_approval()

        revised = self.service.request_revision(
            self.caller(self.customer), project.id, "major", "Make the gate 20cm taller"
        )
        self.assertEqual(revised.status, "revision_requested")
        self.assertEqual(revised.revisions[0]["type"], "major")
        self.assertIsNone(revised.revisions[0]["resolved_at"])

        reworked = self.service.upload_blueprint(self.caller(self.engineer), project.id, file_ref("gate-v2.pdf"))
        self.assertEqual(reworked.status, "pending_blueprint")
        self.assertIsNotNone(reworked.revisions[0]["resolved_at"])
        self.assertEqual(reworked.revisions[0]["resolved_by"], self.engineer.id)

        self.service.submit_for_approval(self.caller(self.engineer), project.id)
        approved = self.service.approve_project(self.caller(self.customer), project.id)
        self.assertEqual(approved.approved_blueprint_version, 2)
        self.assertEqual(
            self.statuses(approved),
            [
                "draft",
                "pending_blueprint",
                "pending_customer_approval",
                "revision_requested",
                "pending_blueprint",
                "pending_customer_approval",
                "approved",
                "pending_initial_payment",
            ],
        )

    def test_revision_needs_description_and_pending_approval(self):
        project = self.awaiting_approval()

        with self.assertRaises(ValidationError):
            self.service.request_revision(self.caller(self.customer), project.id, "minor", "   ")

        self.service.approve_project(self.caller(self.customer), project.id)
        with self.assertRaises(InvalidStateError):
            self.service.request_revision(self.caller(self.customer), project.id, "minor", "Too late")


class StatusUpdateTests(ProjectTestCase):
    def setUp(self):
        super().setUp()
        self.project = self.create()
        self.staff = self.caller(self.admin)

    def test_fabrication_milestones_are_stamped(self):
        started = self.service.update_project_status(self.staff, self.project.id, "in_fabrication")
        first_start = started.fabrication_started_at
        self.assertIsNotNone(first_start)

        again = self.service.update_project_status(self.staff, self.project.id, "in_fabrication", "Still going")
        self.assertEqual(again.fabrication_started_at, first_start)

        ready = self.service.update_project_status(self.staff, self.project.id, "ready_for_installation")
        self.assertIsNotNone(ready.fabrication_completed_at)
        self.assertEqual(ready.fabrication_progress, 100)

    def test_installation_and_completion_are_stamped(self):
        installing = self.service.update_project_status(self.staff, self.project.id, "in_installation")
        started = installing.installation_started_at
        self.assertIsNotNone(started)

        self.service.update_project_status(self.staff, self.project.id, "on_hold")
        resumed = self.service.update_project_status(self.staff, self.project.id, "in_installation")
        self.assertEqual(resumed.installation_started_at, started)

        done = self.service.update_project_status(self.staff, self.project.id, "completed")
        self.assertIsNotNone(done.installation_completed_at)
        self.assertIsNotNone(done.actual_completion)

    def test_customer_hears_about_selected_statuses(self):
        for status in ("in_fabrication", "on_hold", "ready_for_installation", "cancelled"):
            self.service.update_project_status(self.staff, self.project.id, status)

        notified = [data["status"] for event, _, data in self.notifier.sent if event == "project_status_update"]
        self.assertEqual(notified, ["in_fabrication", "ready_for_installation"])
        self.assertEqual(self.audit.actions().count("project_status_changed"), 4)

    def test_audit_records_before_and_after(self):
        self.service.update_project_status(self.staff, self.project.id, "on_hold", "Waiting for materials")

        record = self.audit.records[-1]
        self.assertEqual(record.changes, {"before": {"status": "draft"}, "after": {"status": "on_hold"}})
        self.assertEqual(record.actor_role, ADMIN)

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.update_project_status(self.staff, self.project.id, "shipped")

    def test_customers_cannot_update_status(self):
        with self.assertRaises(ForbiddenError):
            self.service.update_project_status(self.caller(self.customer), self.project.id, "completed")


class FabricationTests(ProjectTestCase):
    def setUp(self):
        super().setUp()
        self.project = self.create()
        self.welder = self.make_user(FABRICATION_STAFF, "Ben")
        self.fitter = self.make_user(FABRICATION_STAFF, "Leo")

    def test_admin_assigns_fabrication_crew(self):
        updated = self.service.assign_fabrication_staff(
            self.caller(self.admin), self.project.id, [self.welder.id, self.fitter.id, self.welder.id]
        )
        self.assertEqual(updated.fabrication_staff_ids, [self.welder.id, self.fitter.id])

        replaced = self.service.assign_fabrication_staff(self.caller(self.admin), self.project.id, [self.fitter.id])
        self.assertEqual(replaced.fabrication_staff_ids, [self.fitter.id])

    def test_crew_must_be_active_fabrication_staff(self):
        with self.assertRaises(NotFoundError):
            self.service.assign_fabrication_staff(
                self.caller(self.admin), self.project.id, [self.welder.id, self.engineer.id]
            )

    def test_only_admin_assigns_crew(self):
        with self.assertRaises(ForbiddenError):
            self.service.assign_fabrication_staff(self.caller(self.sales), self.project.id, [self.welder.id])

    def test_progress_is_bounded(self):
        for progress in (-1, 101):
            with self.assertRaises(ValidationError):
                self.service.update_fabrication_progress(self.caller(self.welder), self.project.id, progress)

    def test_progress_notes_are_kept(self):
        self.service.update_fabrication_progress(self.caller(self.welder), self.project.id, 40, "Frame welded")
        updated = self.service.update_fabrication_progress(self.caller(self.welder), self.project.id, 60)

        self.assertEqual(updated.fabrication_progress, 60)
        self.assertEqual(len(updated.fabrication_notes), 1)
        self.assertEqual(updated.fabrication_notes[0]["note"], "Frame welded")
        self.assertEqual(updated.fabrication_notes[0]["progress"], 40)
        self.assertEqual(self.audit.records[-1].changes["before"]["progress"], 40)

    def test_photos_and_installation_schedule(self):
        self.service.add_fabrication_photo(self.caller(self.welder), self.project.id, file_ref("weld.jpg"), "Hinges")
        when = datetime(2024, 5, 20, 8, 0)
        updated = self.service.schedule_installation(self.caller(self.admin), self.project.id, when, "Bring ladder")

        self.assertEqual(updated.fabrication_photos[0]["caption"], "Hinges")
        self.assertEqual(updated.installation_scheduled_date, when)
        self.assertEqual(updated.installation_notes, "Bring ladder")
        self.assertEqual(self.audit.actions()[-2:], ["fabrication_photo_uploaded", "installation_scheduled"])


class PaymentStageUpdateTests(ProjectTestCase):
    def approved(self, total=Decimal("100001")):
        project = self.awaiting_approval(total=total)
        return self.service.approve_project(self.caller(self.customer), project.id)

    def expected_amounts(self, project):
        payments = self.db.query(Payment).filter(Payment.project_id == project.id).order_by(Payment.id).all()
        return [p.amount_expected for p in payments]

    def test_split_before_approval_only_changes_percentages(self):
        project = self.create()

        updated = self.service.update_payment_stages(
            self.caller(self.admin), project.id, {"initial": 50, "midpoint": 30, "final": 20}
        )

        self.assertEqual(
            (updated.initial_percentage, updated.midpoint_percentage, updated.final_percentage), (50, 30, 20)
        )
        self.assertIsNone(updated.initial_amount)
        self.assertEqual(self.db.query(Payment).count(), 0)

    def test_split_after_approval_rewrites_open_payments(self):
        project = self.approved()
        self.assertEqual(self.expected_amounts(project), [Decimal("30000"), Decimal("40000"), Decimal("30001")])

        updated = self.service.update_payment_stages(
            self.caller(self.admin), project.id, {"initial": 50, "midpoint": 25, "final": 25}
        )

        self.assertEqual(
            (updated.initial_amount, updated.midpoint_amount, updated.final_amount),
            (Decimal("50001"), Decimal("25000"), Decimal("25000")),
        )
        self.assertEqual(self.expected_amounts(project), [Decimal("50001"), Decimal("25000"), Decimal("25000")])

        record = self.audit.records[-1]
        self.assertEqual(record.action, "project_updated")
        self.assertEqual(record.changes["before"], {"initial": 30, "midpoint": 40, "final": 30})
        self.assertEqual(record.extra["payment_stages"], "50%-25%-25%")

    def test_verified_stage_keeps_its_amount(self):
        project = self.approved()
        initial = self.db.query(Payment).filter(Payment.project_id == project.id, Payment.stage == "initial").one()
        initial.status = "verified"
        self.db.commit()

        with self.assertRaises(InvalidStateError):
            self.service.update_payment_stages(
                self.caller(self.admin), project.id, {"initial": 20, "midpoint": 50, "final": 30}
            )

        self.db.refresh(project)
        self.assertEqual(project.initial_percentage, 30)
        self.assertEqual(self.expected_amounts(project), [Decimal("30000"), Decimal("40000"), Decimal("30001")])

        # a split that leaves the verified amount untouched is still allowed
        updated = self.service.update_payment_stages(
            self.caller(self.admin), project.id, {"initial": 30, "midpoint": 50, "final": 20}
        )
        self.assertEqual(updated.midpoint_amount, Decimal("50001"))

    def test_percentages_must_sum_to_100(self):
        project = self.create()

        with self.assertRaises(ValidationError):
            self.service.update_payment_stages(
                self.caller(self.admin), project.id, {"initial": 50, "midpoint": 50, "final": 10}
            )

    def test_only_admin_updates_stages(self):
        project = self.create()

        with self.assertRaises(ForbiddenError):
            self.service.update_payment_stages(
                self.caller(self.sales), project.id, {"initial": 50, "midpoint": 30, "final": 20}
            )


class ApprovalRollbackTests(ProjectTestCase):
    def test_failed_commit_leaves_project_and_payments_untouched(self):
        project = self.awaiting_approval()
        duplicate = IntegrityError("INSERT INTO payments", {}, Exception("UNIQUE constraint failed"))

        with mock.patch.object(self.db, "commit", side_effect=duplicate):
            with self.assertRaises(InvalidStateError):
                self.service.approve_project(self.caller(self.customer), project.id)

        self.db.refresh(project)
        self.assertEqual(project.status, "pending_customer_approval")
        self.assertFalse(project.is_approved)
        self.assertIsNone(project.costing_approved_amount)
        self.assertEqual(self.db.query(Payment).count(), 0)
        self.assertNotIn("project_approved", self.audit.actions())


class ProjectQueryTests(ProjectTestCase):
    def test_customers_see_only_their_projects(self):
        project = self.create()

        self.assertEqual(self.service.get_project(self.caller(self.customer), project.id).id, project.id)
        with self.assertRaises(ForbiddenError):
            self.service.get_project(self.caller(self.make_user(CUSTOMER)), project.id)
        with self.assertRaises(NotFoundError):
            self.service.get_project(self.caller(self.admin), 999)

    def test_project_comes_with_payments(self):
        project = self.awaiting_approval()
        self.service.approve_project(self.caller(self.customer), project.id)

        loaded = self.service.get_project(self.caller(self.customer), project.id)

        self.assertEqual([p.stage for p in loaded.payments], ["initial", "midpoint", "final"])

    def test_engineer_queue(self):
        waiting = self.create()
        self.service.submit_to_engineer(self.caller(self.sales), waiting.id, self.engineer.id)
        self.awaiting_approval()
        self.create()

        queue = self.service.pending_for_engineer(self.caller(self.engineer))

        self.assertEqual([p.id for p in queue], [waiting.id])

    def test_fabrication_queue(self):
        welder = self.make_user(FABRICATION_STAFF)
        mine = self.create()
        self.create()
        self.service.assign_fabrication_staff(self.caller(self.admin), mine.id, [welder.id])

        queue = self.service.fabrication_queue(self.caller(welder))

        self.assertEqual([p.id for p in queue], [mine.id])

    def test_fabrication_queue_follows_crew_changes(self):
        welder = self.make_user(FABRICATION_STAFF)
        fitter = self.make_user(FABRICATION_STAFF)
        first, second = self.create(), self.create()
        self.service.assign_fabrication_staff(self.caller(self.admin), first.id, [welder.id, fitter.id])
        self.service.assign_fabrication_staff(self.caller(self.admin), second.id, [welder.id])

        self.service.assign_fabrication_staff(self.caller(self.admin), first.id, [fitter.id])

        self.assertEqual([p.id for p in self.service.fabrication_queue(self.caller(welder))], [second.id])
        self.assertEqual([p.id for p in self.service.fabrication_queue(self.caller(fitter))], [first.id])

    def test_my_projects(self):
        self.create()
        self.create(title="Kitchen counter", category="kitchen")

        self.assertEqual(len(self.service.my_projects(self.caller(self.customer))), 2)


if __name__ == "__main__":
    unittest.main()
