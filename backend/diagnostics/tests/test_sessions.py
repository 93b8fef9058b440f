from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import TestCase, override_settings

from diagnostics.errors import Conflict, NotFound, ValidationError
from diagnostics.models import DiagnosticSession, Device, Problem, SessionStepProgress
from diagnostics.sessions import SessionLifecycleEngine
from diagnostics.steps import StepOrderingEngine
from diagnostics.store import Store


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class SessionLifecycleEngineTests(TestCase):
    def setUp(self):
        self.clock = FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=dt_timezone.utc))
        self.store = Store()
        self.engine = SessionLifecycleEngine(self.store, clock=self.clock)
        self.device = Device.objects.create(name="Bedroom TV")
        self.problem = Problem.objects.create(device=self.device, title="No sound")
        steps = StepOrderingEngine(self.store)
        self.steps = [
            steps.create_step(self.problem.id, {"title": title, "instruction": f"Check {title}"})
            for title in ("Mute", "Volume", "Cable")
        ]

    def _open(self, **kwargs) -> DiagnosticSession:
        return self.engine.create_session(self.device.id, self.problem.id, **kwargs)

    def test_create_snapshots_total_steps(self):
        session = self._open(session_key="kiosk-1", metadata={"channel": "web"})
        self.assertEqual(session.total_steps, 3)
        self.assertEqual(session.completed_steps, 0)
        self.assertEqual(session.start_time, self.clock.now)
        self.assertEqual(session.state, "open")
        self.assertEqual(session.metadata_json, {"channel": "web"})

    def test_create_rejects_mismatched_or_missing_entities(self):
        other_device = Device.objects.create(name="Kitchen radio")
        with self.assertRaises(ValidationError):
            self.engine.create_session(other_device.id, self.problem.id)
        with self.assertRaises(NotFound):
            self.engine.create_session(self.device.id, "00000000-0000-0000-0000-000000000000")
        self.device.is_active = False
        self.device.save()
        with self.assertRaises(NotFound):
            self._open()

    def test_duplicate_session_key_conflicts(self):
        self._open(session_key="kiosk-1")
        with self.assertRaises(Conflict) as ctx:
            self._open(session_key="kiosk-1")
        self.assertEqual(ctx.exception.field, "session_id")
        # Blank keys are never deduplicated.
        self._open()
        self._open()

    def test_progress_then_complete_then_progress_conflicts(self):
        session = self._open()
        self.engine.update_progress(session.id, self.steps[0].id, {"completed": True})
        session = self.engine.update_progress(session.id, self.steps[1].id, {"completed": True, "time_spent": 12})
        self.assertEqual(session.completed_steps, 2)
        self.clock.advance(minutes=5)
        session = self.engine.complete_session(session.id, success=True)
        self.assertIsNotNone(session.end_time)
        self.assertTrue(session.success)
        self.assertEqual(session.duration, 300)
        self.assertEqual(session.state, "completed")
        with self.assertRaises(Conflict):
            self.engine.update_progress(session.id, self.steps[2].id, {"completed": True})
        session.refresh_from_db()
        self.assertEqual(session.completed_steps, 2)

    def test_progress_is_upsert_per_step(self):
        session = self._open()
        self.engine.update_progress(session.id, self.steps[0].id, {"completed": True})
        session = self.engine.update_progress(session.id, self.steps[0].id, {"completed": False, "result": "failure"})
        self.assertEqual(session.completed_steps, 0)
        record = SessionStepProgress.objects.get(session=session, step=self.steps[0])
        self.assertEqual(record.result, "failure")
        self.assertIsNone(record.completed_at)

    def test_progress_rejects_foreign_step_and_bad_result(self):
        session = self._open()
        other = Problem.objects.create(device=self.device, title="No picture")
        foreign = StepOrderingEngine(self.store).create_step(other.id, {"title": "X", "instruction": "x"})
        with self.assertRaises(NotFound):
            self.engine.update_progress(session.id, foreign.id, {"completed": True})
        with self.assertRaises(ValidationError):
            self.engine.update_progress(session.id, self.steps[0].id, {"result": "maybe"})

    def test_completed_steps_never_exceed_total(self):
        session = self._open()
        added = StepOrderingEngine(self.store).create_step(self.problem.id, {"title": "Reset", "instruction": "x"})
        for step in self.steps:
            self.engine.update_progress(session.id, step.id, {"completed": True})
        with self.assertRaises(Conflict):
            self.engine.update_progress(session.id, added.id, {"completed": True})
        session.refresh_from_db()
        self.assertEqual(session.completed_steps, session.total_steps)

    def test_force_lifts_completed_guard_without_reopening(self):
        session = self._open()
        session = self.engine.complete_session(session.id, success=False, feedback="gave up")
        end_time = session.end_time
        session = self.engine.update_progress(session.id, self.steps[0].id, {"completed": True}, force=True)
        self.assertEqual(session.completed_steps, 1)
        self.assertEqual(session.end_time, end_time)
        self.assertFalse(session.success)

    def test_double_completion_conflicts(self):
        session = self._open()
        self.engine.complete_session(session.id, success=False)
        with self.assertRaises(Conflict):
            self.engine.complete_session(session.id, success=True)
        session.refresh_from_db()
        self.assertFalse(session.success)

    def test_completion_updates_problem_statistics(self):
        first = self._open()
        second = self._open()
        self.engine.complete_session(first.id, success=True, error_steps=[self.steps[1].id])
        self.engine.complete_session(second.id, success=False)
        self.problem.refresh_from_db()
        self.assertEqual(self.problem.completed_count, 2)
        self.assertEqual(self.problem.success_rate, 50)
        first.refresh_from_db()
        self.assertEqual(first.error_steps, [str(self.steps[1].id)])

    def test_update_session_refuses_lifecycle_fields(self):
        session = self._open()
        with self.assertRaises(ValidationError) as ctx:
            self.engine.update_session(session.id, {"end_time": None, "feedback": "x"})
        self.assertEqual(ctx.exception.field, "end_time")
        session = self.engine.update_session(session.id, {"feedback": "better now", "session_id": "kiosk-9"})
        self.assertEqual(session.feedback, "better now")
        self.assertEqual(session.session_key, "kiosk-9")

    def test_update_completed_session_requires_force(self):
        session = self._open()
        self.engine.complete_session(session.id, success=True)
        with self.assertRaises(Conflict):
            self.engine.update_session(session.id, {"feedback": "late note"})
        session = self.engine.update_session(session.id, {"feedback": "late note"}, force=True)
        self.assertEqual(session.feedback, "late note")
        self.assertIsNotNone(session.end_time)

    def test_delete_open_session_requires_force(self):
        session = self._open()
        with self.assertRaises(Conflict):
            self.engine.delete_session(session.id)
        self.engine.delete_session(session.id, force=True)
        session.refresh_from_db()
        self.assertFalse(session.is_active)
        self.assertIsNone(session.end_time)
        with self.assertRaises(NotFound):
            self.engine.get_session(session.id)
        with self.assertRaises(NotFound):
            self.engine.complete_session(session.id, success=True)

    def test_restore_conflicts_when_key_reused(self):
        session = self._open(session_key="kiosk-1")
        self.engine.complete_session(session.id, success=True)
        self.engine.delete_session(session.id)
        self._open(session_key="kiosk-1")
        with self.assertRaises(Conflict):
            self.engine.restore_session(session.id)

    def test_restore_returns_to_previous_state(self):
        session = self._open()
        self.engine.complete_session(session.id, success=True)
        self.engine.delete_session(session.id)
        restored = self.engine.restore_session(session.id)
        self.assertEqual(restored.state, "completed")
        with self.assertRaises(Conflict):
            self.engine.restore_session(session.id)

    def test_completion_percentage(self):
        session = self._open()
        session = self.engine.update_progress(session.id, self.steps[0].id, {"completed": True})
        self.assertEqual(session.completion_percentage, 33)

    @override_settings(DIAGKB_SESSION_RETENTION_DAYS=30, DIAGKB_CLEANUP_BATCH_SIZE=1)
    def test_cleanup_purges_completed_and_archives_abandoned(self):
        old_completed = self._open()
        self.engine.update_progress(old_completed.id, self.steps[0].id, {"completed": True})
        self.engine.complete_session(old_completed.id, success=True)
        old_open = self._open()
        second_old_open = self._open()
        self.clock.advance(days=45)
        recent = self._open()
        self.engine.complete_session(recent.id, success=False)

        result = self.engine.cleanup_old_sessions()

        self.assertEqual(result["purged"], 1)
        self.assertEqual(result["archived"], 2)
        self.assertEqual(result["days_to_keep"], 30)
        self.assertFalse(DiagnosticSession.objects.filter(id=old_completed.id).exists())
        self.assertFalse(SessionStepProgress.objects.filter(session_id=old_completed.id).exists())
        old_open.refresh_from_db()
        second_old_open.refresh_from_db()
        self.assertFalse(old_open.is_active)
        self.assertFalse(second_old_open.is_active)
        self.assertIsNone(old_open.end_time)
        recent.refresh_from_db()
        self.assertTrue(recent.is_active)

    def test_cleanup_rejects_negative_window(self):
        with self.assertRaises(ValidationError):
            self.engine.cleanup_old_sessions(days_to_keep=-1)
