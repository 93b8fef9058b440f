from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.utils import timezone

from .errors import Conflict, NotFound, ValidationError
from .guards import ensure_session_key_free
from .models import DiagnosticSession, DiagnosticStep, Device, Problem, SessionStepProgress
from .store import Store

logger = logging.getLogger(__name__)

STEP_RESULTS = {"success", "failure", "skipped"}
UPDATABLE_SESSION_FIELDS = {"feedback", "metadata", "session_id"}
# Lifecycle fields only the engine itself may write.
PROTECTED_SESSION_FIELDS = {
    "start_time",
    "end_time",
    "success",
    "duration",
    "completed_steps",
    "total_steps",
    "is_active",
    "device_id",
    "problem_id",
    "error_steps",
}
DEFAULT_RETENTION_DAYS = 90
DEFAULT_CLEANUP_BATCH_SIZE = 500


class SessionLifecycleEngine:
    """Open -> Completed lifecycle of a diagnostic session, plus archive/restore.

    ``end_time`` is written by ``complete_session`` and nothing else; a session
    is open exactly while ``end_time`` is empty. Archived sessions (is_active
    false) are invisible to every operation except ``restore_session`` and the
    retention sweep.
    """

    def __init__(self, store: Store, clock: Callable[[], Any] = timezone.now):
        self.store = store
        self.clock = clock

    def get_session(self, session_id: Any) -> DiagnosticSession:
        session = self.store.objects(DiagnosticSession).filter(id=session_id, is_active=True).first()
        if not session:
            raise NotFound("Diagnostic session not found", entity="session", entity_id=session_id)
        return session

    def create_session(
        self,
        device_id: Any,
        problem_id: Any,
        session_key: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DiagnosticSession:
        session_key = str(session_key or "").strip()
        with self.store.atomic():
            device = self.store.objects(Device).filter(id=device_id, is_active=True).first()
            if not device:
                raise NotFound("Device not found or inactive", entity="device", entity_id=device_id, field="device_id")
            problem = self.store.objects(Problem).filter(id=problem_id, is_active=True).first()
            if not problem:
                raise NotFound("Problem not found or inactive", entity="problem", entity_id=problem_id, field="problem_id")
            if problem.device_id != device.id:
                raise ValidationError(
                    "Problem does not belong to the device",
                    entity="problem",
                    entity_id=problem.id,
                    field="problem_id",
                    details={"device_id": str(device.id), "problem_device_id": str(problem.device_id)},
                )
            ensure_session_key_free(self.store, session_key=session_key)
            total_steps = self.store.objects(DiagnosticStep).filter(problem_id=problem.id, is_active=True).count()
            session = self.store.objects(DiagnosticSession).create(
                device=device,
                problem=problem,
                session_key=session_key,
                start_time=self.clock(),
                total_steps=total_steps,
                completed_steps=0,
                metadata_json=metadata or {},
            )
        logger.info(
            "Opened session %s for problem %s (%s steps)",
            session.id,
            problem.id,
            total_steps,
            extra={"session_key": session_key},
        )
        return session

    def update_progress(
        self,
        session_id: Any,
        step_id: Any,
        step_result: Dict[str, Any],
        force: bool = False,
    ) -> DiagnosticSession:
        completed = bool(step_result.get("completed", False))
        result = step_result.get("result") or "success"
        if result not in STEP_RESULTS:
            raise ValidationError(
                f"result must be one of: {', '.join(sorted(STEP_RESULTS))}", entity="progress", field="result"
            )
        with self.store.atomic():
            session = self._lock_session(session_id)
            if session.end_time and not force:
                raise Conflict(
                    "Cannot record progress on a completed session",
                    entity="session",
                    entity_id=session.id,
                    field="end_time",
                )
            step = (
                self.store.objects(DiagnosticStep)
                .filter(id=step_id, problem_id=session.problem_id, is_active=True)
                .first()
            )
            if not step:
                raise NotFound("Step not found in this session's problem", entity="step", entity_id=step_id, field="step_id")
            progress_qs = self.store.objects(SessionStepProgress).filter(session_id=session.id)
            others_completed = progress_qs.filter(completed=True).exclude(step_id=step.id).count()
            completed_steps = others_completed + (1 if completed else 0)
            if completed_steps > session.total_steps:
                raise Conflict(
                    "Completed steps would exceed the session's total steps",
                    entity="session",
                    entity_id=session.id,
                    field="completed_steps",
                    details={"total_steps": session.total_steps, "completed_steps": completed_steps},
                )
            now = self.clock()
            self.store.objects(SessionStepProgress).update_or_create(
                session=session,
                step=step,
                defaults={
                    "step_number": step.step_number,
                    "completed": completed,
                    "result": result,
                    "time_spent": step_result.get("time_spent"),
                    "errors": list(step_result.get("errors") or []),
                    "user_input": step_result.get("user_input"),
                    "completed_at": now if completed else None,
                },
            )
            session.completed_steps = progress_qs.filter(completed=True).count()
            session.save(update_fields=["completed_steps", "updated_at"])
        logger.info(
            "Session %s progress: step %s %s (%s/%s)",
            session.id,
            step.id,
            result,
            session.completed_steps,
            session.total_steps,
        )
        return session

    def complete_session(
        self,
        session_id: Any,
        success: bool,
        error_steps: Optional[Iterable[Any]] = None,
        feedback: Optional[str] = None,
    ) -> DiagnosticSession:
        with self.store.atomic():
            session = self._lock_session(session_id)
            if session.end_time:
                raise Conflict("Session is already completed", entity="session", entity_id=session.id, field="end_time")
            end_time = self.clock()
            session.end_time = end_time
            session.success = bool(success)
            session.duration = max(0, int((end_time - session.start_time).total_seconds()))
            dirty_fields = ["end_time", "success", "duration", "updated_at"]
            if error_steps is not None:
                session.error_steps = [str(step_id) for step_id in error_steps]
                dirty_fields.append("error_steps")
            if feedback is not None:
                session.feedback = feedback
                dirty_fields.append("feedback")
            session.save(update_fields=dirty_fields)
            self._record_problem_completion(session.problem_id)
        logger.info(
            "Completed session %s success=%s duration=%ss",
            session.id,
            session.success,
            session.duration,
        )
        return session

    def update_session(self, session_id: Any, data: Dict[str, Any], force: bool = False) -> DiagnosticSession:
        protected = sorted(set(data) & PROTECTED_SESSION_FIELDS)
        if protected:
            raise ValidationError(
                f"Fields managed by the session lifecycle cannot be updated: {', '.join(protected)}",
                entity="session",
                entity_id=session_id,
                field=protected[0],
            )
        unknown = sorted(set(data) - UPDATABLE_SESSION_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unsupported session fields: {', '.join(unknown)}",
                entity="session",
                entity_id=session_id,
                field=unknown[0],
            )
        with self.store.atomic():
            session = self._lock_session(session_id)
            if session.end_time and not force:
                raise Conflict(
                    "Cannot modify a completed session without force",
                    entity="session",
                    entity_id=session.id,
                    field="end_time",
                )
            dirty_fields = set()
            if "feedback" in data:
                session.feedback = str(data["feedback"] or "")
                dirty_fields.add("feedback")
            if "metadata" in data:
                session.metadata_json = dict(data["metadata"] or {})
                dirty_fields.add("metadata_json")
            if "session_id" in data:
                session_key = str(data["session_id"] or "").strip()
                ensure_session_key_free(self.store, session_key=session_key, exclude_id=session.id)
                session.session_key = session_key
                dirty_fields.add("session_key")
            if dirty_fields:
                session.save(update_fields=sorted(dirty_fields | {"updated_at"}))
        return session

    def delete_session(self, session_id: Any, force: bool = False) -> DiagnosticSession:
        with self.store.atomic():
            session = self._lock_session(session_id)
            if session.is_open and not force:
                raise Conflict(
                    "Cannot archive a session that is still in progress",
                    entity="session",
                    entity_id=session.id,
                    field="end_time",
                )
            session.is_active = False
            session.save(update_fields=["is_active", "updated_at"])
        logger.info("Archived session %s (was %s)", session.id, "open" if session.is_open else "completed")
        return session

    def restore_session(self, session_id: Any) -> DiagnosticSession:
        with self.store.atomic():
            session = self.store.locked(DiagnosticSession).filter(id=session_id).first()
            if not session:
                raise NotFound("Diagnostic session not found", entity="session", entity_id=session_id)
            if session.is_active:
                raise Conflict("Session is not archived", entity="session", entity_id=session.id, field="is_active")
            ensure_session_key_free(self.store, session_key=session.session_key, exclude_id=session.id)
            session.is_active = True
            session.save(update_fields=["is_active", "updated_at"])
        logger.info("Restored session %s as %s", session.id, session.state)
        return session

    def cleanup_old_sessions(
        self,
        days_to_keep: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        if days_to_keep is None:
            days_to_keep = getattr(settings, "DIAGKB_SESSION_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
        if batch_size is None:
            batch_size = getattr(settings, "DIAGKB_CLEANUP_BATCH_SIZE", DEFAULT_CLEANUP_BATCH_SIZE)
        days_to_keep = int(days_to_keep)
        batch_size = int(batch_size)
        if days_to_keep < 0:
            raise ValidationError("days_to_keep cannot be negative", field="days_to_keep")
        if batch_size < 1:
            raise ValidationError("batch_size must be positive", field="batch_size")

        now = self.clock()
        cutoff = now - timedelta(days=days_to_keep)
        sessions = self.store.objects(DiagnosticSession)
        purged = 0
        archived = 0
        while True:
            with self.store.atomic():
                ids = self._batch_ids(
                    sessions.filter(end_time__isnull=False, start_time__lt=cutoff), batch_size
                )
                if not ids:
                    break
                _, per_model = sessions.filter(id__in=ids).delete()
                purged += per_model.get(DiagnosticSession._meta.label, 0)
        while True:
            with self.store.atomic():
                ids = self._batch_ids(
                    sessions.filter(is_active=True, end_time__isnull=True, start_time__lt=cutoff), batch_size
                )
                if not ids:
                    break
                archived += sessions.filter(id__in=ids).update(is_active=False, updated_at=now)
        logger.info(
            "Session retention sweep: purged=%s archived=%s cutoff=%s",
            purged,
            archived,
            cutoff.isoformat(),
        )
        return {"purged": purged, "archived": archived, "cutoff": cutoff.isoformat(), "days_to_keep": days_to_keep}

    def _lock_session(self, session_id: Any) -> DiagnosticSession:
        session = self.store.locked(DiagnosticSession).filter(id=session_id, is_active=True).first()
        if not session:
            raise NotFound("Diagnostic session not found", entity="session", entity_id=session_id)
        return session

    def _batch_ids(self, qs, batch_size: int) -> List[Any]:
        return list(qs.order_by("start_time").values_list("id", flat=True)[:batch_size])

    def _record_problem_completion(self, problem_id: Any) -> None:
        problem = self.store.locked(Problem).get(id=problem_id)
        finished = self.store.objects(DiagnosticSession).filter(
            problem_id=problem_id, is_active=True, end_time__isnull=False
        )
        total = finished.count()
        successful = finished.filter(success=True).count()
        problem.completed_count += 1
        problem.success_rate = round(successful * 100 / total) if total else 0
        problem.save(update_fields=["completed_count", "success_rate", "updated_at"])
