import unittest
from datetime import datetime, timedelta
from unittest import mock

import requests

from smartcrm import tasks as task_service
from smartcrm import workflow
from smartcrm.errors import NotFoundError, PersistenceError, TransitionError, ValidationError
from smartcrm.extensions import db
from smartcrm.gateway import Gateway
from smartcrm.models import AuditLog, Client, Notification, Profile
from smartcrm.stages import STAGE_ORDER

from support import AppTestCase


class WorkflowTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.obj = workflow.create_object(
            name="Дом на Минской",
            address="ул. Минская, 1",
            client_id=self.client_row.id,
            responsible_id=self.engineer.id,
            actor_id=self.manager.id,
        )

    def assert_stage_pointer(self, obj):
        active = [r for r in obj.stages if r.status == "active"]
        if obj.current_status == "completed":
            self.assertEqual(active, [])
        else:
            self.assertEqual(len(active), 1)
            self.assertEqual(active[0].stage_name, obj.current_stage)

    def test_create_starts_at_negotiation(self):
        self.assertEqual(self.obj.current_stage, "negotiation")
        self.assertEqual(self.obj.current_status, "in_work")
        self.assertEqual(len(self.obj.stages), 1)
        self.assert_stage_pointer(self.obj)

        notes = Notification.query.filter_by(profile_id=self.engineer.id).all()
        self.assertEqual(len(notes), 1)
        self.assertEqual(AuditLog.query.filter_by(entity_type="Object", action="CREATE").count(), 1)

    def test_create_requires_name_and_people(self):
        with self.assertRaises(ValidationError):
            workflow.create_object(
                name=" ", client_id=self.client_row.id, responsible_id=self.engineer.id, actor_id=None
            )
        with self.assertRaises(ValidationError):
            workflow.create_object(name="X", client_id=self.client_row.id, responsible_id=None, actor_id=None)

    def test_gate_blocks_then_allows(self):
        [t] = task_service.create_tasks(
            self.obj, title="Замер", assignee_ids=[self.engineer.id], actor_id=self.manager.id
        )
        self.assertEqual(t.stage_id, "negotiation")

        outcome = workflow.advance(self.obj, "design", self.engineer.id, None, actor_id=self.manager.id)
        self.assertTrue(outcome.blocked)
        self.assertEqual([p.id for p in outcome.pending_tasks], [t.id])
        self.assertEqual(self.obj.current_stage, "negotiation")
        self.assertEqual(len(self.obj.stages), 1)

        task_service.complete_task(t, actor_id=self.engineer.id)
        outcome = workflow.advance(self.obj, "design", self.engineer.id, None, actor_id=self.manager.id)
        self.assertFalse(outcome.blocked)
        self.assertEqual(self.obj.current_stage, "design")
        self.assertEqual([r.status for r in self.obj.stages], ["completed", "active"])
        self.assert_stage_pointer(self.obj)

    def test_earlier_stage_tasks_do_not_block(self):
        task_service.create_tasks(self.obj, title="Старое", assignee_ids=[self.engineer.id], actor_id=None)
        outcome = workflow.advance(self.obj, actor_id=self.manager.id, force=True)
        self.assertFalse(outcome.blocked)

        outcome = workflow.advance(self.obj, actor_id=self.manager.id)
        self.assertFalse(outcome.blocked)
        self.assertEqual(self.obj.current_stage, "logistics")

    def test_cannot_skip_stages(self):
        with self.assertRaises(TransitionError):
            workflow.advance(self.obj, "logistics", actor_id=self.manager.id)

    def test_rollback_and_restore(self):
        deadline = datetime(2030, 1, 31, 23, 59, 59)
        workflow.advance(self.obj, "design", self.engineer.id, deadline, actor_id=self.manager.id)

        workflow.rollback(
            self.obj, "negotiation", "missing docs", self.manager.id, actor_id=self.manager.id
        )
        self.assertEqual(self.obj.current_stage, "negotiation")
        self.assertEqual(self.obj.rolled_back_from, "design")
        self.assertEqual(
            [(r.stage_name, r.status) for r in self.obj.stages],
            [("negotiation", "completed"), ("design", "rolled_back"), ("negotiation", "active")],
        )
        self.assertIn("missing docs", self.obj.history[-1].action_text)
        self.assert_stage_pointer(self.obj)

        row = workflow.restore_forward(self.obj, actor_id=self.manager.id)
        self.assertEqual(row.stage_name, "design")
        self.assertEqual(row.responsible_id, self.engineer.id)
        self.assertEqual(row.deadline, deadline)
        self.assertEqual(self.obj.current_stage, "design")
        self.assertIsNone(self.obj.rolled_back_from)
        self.assert_stage_pointer(self.obj)

    def test_restore_ignores_gate(self):
        workflow.advance(self.obj, "design", actor_id=self.manager.id)
        workflow.rollback(self.obj, "negotiation", "docs", self.manager.id, actor_id=self.manager.id)
        task_service.create_tasks(self.obj, title="Открытая", assignee_ids=[self.engineer.id], actor_id=None)
        row = workflow.restore_forward(self.obj, actor_id=self.manager.id)
        self.assertEqual(row.stage_name, "design")

    def test_rollback_validation(self):
        workflow.advance(self.obj, "design", actor_id=self.manager.id)
        with self.assertRaises(ValidationError):
            workflow.rollback(self.obj, "negotiation", "  ", self.manager.id, actor_id=None)
        with self.assertRaises(ValidationError):
            workflow.rollback(self.obj, "negotiation", "reason", None, actor_id=None)
        with self.assertRaises(TransitionError):
            workflow.rollback(self.obj, "logistics", "reason", self.manager.id, actor_id=None)
        self.assertEqual(self.obj.current_stage, "design")

    def test_restore_requires_prior_rollback(self):
        with self.assertRaises(TransitionError):
            workflow.restore_forward(self.obj, actor_id=None)

    def test_finalize_at_support_is_terminal(self):
        for _ in STAGE_ORDER[1:]:
            workflow.advance(self.obj, actor_id=self.manager.id)
        self.assertEqual(self.obj.current_stage, "support")
        stage_rows = len(self.obj.stages)

        outcome = workflow.advance(self.obj, actor_id=self.manager.id)
        self.assertTrue(outcome.finalized)
        self.assertEqual(self.obj.current_status, "completed")
        self.assertEqual(len(self.obj.stages), stage_rows)
        self.assert_stage_pointer(self.obj)

        with self.assertRaises(TransitionError):
            workflow.advance(self.obj, actor_id=self.manager.id)
        with self.assertRaises(TransitionError):
            workflow.rollback(self.obj, "design", "late", self.manager.id, actor_id=None)
        with self.assertRaises(TransitionError):
            workflow.update_status(self.obj, "in_work", actor_id=None)

    def test_explicit_target_at_last_stage_does_not_finalize(self):
        for _ in STAGE_ORDER[1:]:
            workflow.advance(self.obj, actor_id=self.manager.id)
        self.assertEqual(self.obj.current_stage, "support")

        with self.assertRaises(TransitionError):
            workflow.advance(self.obj, "programming", actor_id=self.manager.id)
        self.assertEqual(self.obj.current_status, "in_work")
        self.assertIsNotNone(self.obj.active_stage)

    def test_finalize_only_from_support(self):
        with self.assertRaises(TransitionError):
            workflow.finalize(self.obj, actor_id=None)

    def test_status_changes(self):
        workflow.update_status(self.obj, "frozen", actor_id=self.manager.id)
        self.assertEqual(self.obj.current_status, "frozen")
        with self.assertRaises(TransitionError):
            workflow.update_status(self.obj, "completed", actor_id=None)
        with self.assertRaises(ValidationError):
            workflow.update_status(self.obj, "sleeping", actor_id=None)

    def test_extend_deadline(self):
        start = datetime(2030, 3, 1)
        workflow.advance(self.obj, "design", deadline=start, actor_id=self.manager.id)
        row = workflow.extend_deadline(self.obj, 5, actor_id=self.manager.id)
        self.assertEqual(row.deadline, start + timedelta(days=5))
        row = workflow.extend_deadline(self.obj, 2, actor_id=self.manager.id)
        self.assertEqual(row.extension_days, 7)
        with self.assertRaises(ValidationError):
            workflow.extend_deadline(self.obj, 0, actor_id=None)

    def test_soft_deleted_object_is_not_found(self):
        workflow.delete_object(self.obj, actor_id=self.manager.id)
        with self.assertRaises(NotFoundError):
            Gateway().get("objects", self.obj.id)


class GatewayTransactionTests(AppTestCase):
    def test_atomic_rolls_back_everything_on_error(self):
        gw = Gateway()
        with self.assertRaises(RuntimeError):
            with gw.atomic():
                gw.create("clients", {"name": "Временный"})
                raise RuntimeError("boom")
        self.assertEqual(Client.query.filter_by(name="Временный").count(), 0)

    def test_database_errors_become_persistence_errors(self):
        gw = Gateway()
        with self.assertRaises(PersistenceError) as ctx:
            with gw.atomic():
                gw.create("profiles", {"username": "manager", "full_name": "Dup", "password_hash": "x"})
        self.assertTrue(ctx.exception.message)
        self.assertEqual(Profile.query.filter_by(username="manager").count(), 1)

    def test_unknown_collection_and_fields(self):
        gw = Gateway()
        with self.assertRaises(ValidationError):
            gw.query("widgets")
        with self.assertRaises(ValidationError):
            gw.create("clients", {"name": "X", "color": "red"})


class NotificationTests(AppTestCase):
    def test_actor_is_not_notified_about_own_action(self):
        from smartcrm.notifications import notify

        self.assertIsNone(notify(self.manager.id, "hello", actor_id=self.manager.id))
        self.assertIsNotNone(notify(self.engineer.id, "hello", actor_id=self.manager.id))
        self.assertEqual(Notification.query.count(), 1)

    def test_telegram_failure_is_logged_not_raised(self):
        from smartcrm.notifications import notify

        self.app.config["TELEGRAM_ENABLED"] = True
        self.app.config["TELEGRAM_BOT_TOKEN"] = "token"
        self.engineer.telegram_chat_id = "42"
        db.session.commit()

        with mock.patch("smartcrm.telegram.requests.post", side_effect=requests.ConnectionError("down")) as post:
            with self.assertLogs("smartcrm.notifications", level="WARNING"):
                note = notify(self.engineer.id, "Новая задача", actor_id=self.manager.id)
        post.assert_called_once()
        self.assertIsNotNone(note)


if __name__ == "__main__":
    unittest.main()
