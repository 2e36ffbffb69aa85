import unittest
from concurrent.futures import Future
from datetime import datetime
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rmv_fabrication.config import CUSTOMER, SALES_STAFF
from rmv_fabrication.domain.scheduling.schemas import AppointmentCreate
from rmv_fabrication.domain.scheduling.service import AppointmentService
from rmv_fabrication.models import ActivityLog, Appointment
from rmv_fabrication.services.activity_service import ActivityRecord, ActivityService, emit
from rmv_fabrication.services.email_templates import render
from rmv_fabrication.services.notification_service import EmailNotifier, dispatch
from rmv_fabrication.shared.history import append_entry, note_history, record_status

from .support import (
    MARCH_FIRST_10AM,
    SITE,
    FailingAudit,
    FailingNotifier,
    WorkflowTestCase,
)


class ImmediateExecutor:
    """Runs submitted work inline so delivery can be asserted synchronously"""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ActivityServiceTests(WorkflowTestCase):
    def test_append_writes_immutable_row(self):
        audit = ActivityService(self.Session)

        entry = audit.append(
            ActivityRecord(
                actor_id=7,
                actor_role="cashier",
                action="payment_verified",
                resource_type="payment",
                resource_id=3,
                changes={"before": {"status": "submitted"}, "after": {"status": "verified"}},
                extra={"receipt_number": "RMV-RCT-202403-0001"},
            )
        )

        self.assertIsNotNone(entry)
        row = self.db.query(ActivityLog).one()
        self.assertEqual(row.description, "Payment verified")
        self.assertEqual(row.extra["receipt_number"], "RMV-RCT-202403-0001")

    def test_resource_trail_is_newest_first(self):
        audit = ActivityService(self.Session)
        for action in ("project_created", "project_assigned", "blueprint_uploaded"):
            audit.append(ActivityRecord(1, "engineer", action, "project", 5))
        audit.append(ActivityRecord(1, "engineer", "project_created", "project", 6))

        trail = ActivityService.get_resource_activity(self.db, "project", 5)

        self.assertEqual([e.action for e in trail], ["blueprint_uploaded", "project_assigned", "project_created"])

    def test_append_failure_is_swallowed(self):
        bare = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        audit = ActivityService(sessionmaker(bind=bare))

        self.assertIsNone(audit.append(ActivityRecord(1, "admin", "project_created", "project", 1)))
        bare.dispose()

    def test_emit_never_raises(self):
        emit(FailingAudit(), ActivityRecord(1, "admin", "project_created", "project", 1))

    def test_default_audit_writes_to_the_service_database(self):
        audit = ActivityService.for_session(self.db)
        audit.append(ActivityRecord(2, "sales_staff", "project_updated", "project", 9))

        self.assertEqual(self.db.query(ActivityLog).filter(ActivityLog.resource_id == 9).count(), 1)


class SideChannelFailureTests(WorkflowTestCase):
    def test_booking_survives_failing_notifier_and_audit(self):
        customer = self.make_user(CUSTOMER)
        self.make_user(SALES_STAFF)
        service = AppointmentService(self.db, notifier=FailingNotifier(), audit=FailingAudit())

        appointment = service.book_appointment(
            self.caller(customer),
            AppointmentCreate(scheduled_date=MARCH_FIRST_10AM, appointment_type="ocular_visit", site_address=SITE),
        )

        self.assertEqual(appointment.status, "scheduled")
        self.assertEqual(self.db.query(Appointment).count(), 1)

    def test_dispatch_reports_failure(self):
        self.assertFalse(dispatch(FailingNotifier(), "blueprint_ready", "a@example.com", {}))
        self.assertTrue(dispatch(self.notifier, "blueprint_ready", "a@example.com", {}))
        self.assertEqual(self.notifier.sent, [("blueprint_ready", "a@example.com", {})])


class EmailNotifierTests(unittest.TestCase):
    def test_renders_and_sends_template(self):
        notifier = EmailNotifier(executor=ImmediateExecutor())

        with mock.patch("rmv_fabrication.services.notification_service.send_email") as send:
            send.return_value = {"id": "abc"}
            notifier.notify(
                "appointment_confirmation",
                "maria@example.com",
                {"customer_name": "Maria", "scheduled_date": MARCH_FIRST_10AM, "sales_staff_name": "Ramon"},
            )

        send.assert_called_once()
        kwargs = send.call_args.kwargs
        self.assertEqual(kwargs["to"], "maria@example.com")
        self.assertEqual(kwargs["subject"], "Your appointment is confirmed")
        self.assertIn("Ramon", kwargs["html_content"])

    def test_missing_recipient_is_skipped(self):
        executor = mock.Mock()
        EmailNotifier(executor=executor).notify("blueprint_ready", None, {})

        executor.submit.assert_not_called()

    def test_delivery_failure_stays_in_background(self):
        notifier = EmailNotifier(executor=ImmediateExecutor())

        with mock.patch(
            "rmv_fabrication.services.notification_service.send_email",
            side_effect=RuntimeError("Email service not configured"),
        ):
            notifier.notify("blueprint_ready", "maria@example.com", {"project_title": "Gate"})


class TemplateTests(unittest.TestCase):
    def test_status_update_uses_friendly_label(self):
        subject, html = render(
            "project_status_update",
            {"customer_name": "Maria", "project_title": "Gate", "project_number": "RMV-2024-0001", "status": "in_fabrication"},
        )

        self.assertEqual(subject, "Project update: In Fabrication")
        self.assertIn("RMV-2024-0001", html)

    def test_customer_text_is_escaped(self):
        _, html = render("blueprint_ready", {"customer_name": "<script>x</script>", "project_title": "Gate"})

        self.assertNotIn("<script>", html)

    def test_unknown_event(self):
        with self.assertRaises(KeyError):
            render("party_invitation", {})


class HistoryTests(unittest.TestCase):
    def test_entries_replace_the_list(self):
        record = Appointment(status="pending", status_history=[])
        original = record.status_history

        record_status(record, "scheduled", 4, "Assigned")
        note_history(record, 5, "Travel fee set")
        append_entry(record, "status_history", {"status": "x"})

        self.assertEqual(original, [])
        self.assertEqual([e["status"] for e in record.status_history], ["scheduled", "scheduled", "x"])
        self.assertEqual(record.status_history[1]["changed_by"], 5)
        datetime.fromisoformat(record.status_history[0]["changed_at"])


if __name__ == "__main__":
    unittest.main()
