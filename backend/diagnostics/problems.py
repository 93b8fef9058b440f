from __future__ import annotations

import logging
from typing import Any, Dict

from .errors import Conflict, NotFound, ValidationError
from .guards import TITLE_GUARDED_STATUSES, ensure_unique_problem_title
from .models import DiagnosticSession, DiagnosticStep, Device, Problem
from .store import Store

logger = logging.getLogger(__name__)

PROBLEM_DATA_FIELDS = ("title", "description", "status", "priority")
PROBLEM_STATUSES = {choice for choice, _ in Problem.STATUS_CHOICES}


class ProblemCatalog:
    def __init__(self, store: Store):
        self.store = store

    def get_problem(self, problem_id: Any) -> Problem:
        problem = self.store.objects(Problem).filter(id=problem_id, is_active=True).first()
        if not problem:
            raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
        return problem

    def create_problem(self, device_id: Any, data: Dict[str, Any]) -> Problem:
        fields = self._problem_fields(data)
        title = str(fields.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", entity="problem", field="title")
        fields["title"] = title
        with self.store.atomic():
            device = self.store.locked(Device).filter(id=device_id, is_active=True).first()
            if not device:
                raise NotFound("Device not found or inactive", entity="device", entity_id=device_id, field="device_id")
            ensure_unique_problem_title(self.store, device_id=device.id, title=title)
            problem = self.store.objects(Problem).create(device=device, **fields)
        logger.info("Created problem %s for device %s", problem.id, device.id)
        return problem

    def update_problem(self, problem_id: Any, data: Dict[str, Any]) -> Problem:
        fields = self._problem_fields(data)
        if "title" in fields:
            fields["title"] = str(fields["title"] or "").strip()
            if not fields["title"]:
                raise ValidationError("title cannot be empty", entity="problem", field="title")
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            self.store.locked(Device).filter(id=problem.device_id).first()
            if "title" in fields or "status" in fields:
                self._guard_title(problem, fields.get("title", problem.title), fields.get("status", problem.status))
            for key, value in fields.items():
                setattr(problem, key, value)
            if fields:
                problem.save(update_fields=sorted(set(fields) | {"updated_at"}))
        return problem

    def publish(self, problem_id: Any) -> Problem:
        return self._set_status(problem_id, "published")

    def unpublish(self, problem_id: Any) -> Problem:
        return self._set_status(problem_id, "draft")

    def archive_problem(self, problem_id: Any) -> Problem:
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            open_sessions = self._open_sessions(problem.id)
            if open_sessions:
                raise Conflict(
                    f"Problem has {open_sessions} open diagnostic session(s)",
                    entity="problem",
                    entity_id=problem.id,
                    details={"open_sessions": open_sessions},
                )
            problem.is_active = False
            problem.save(update_fields=["is_active", "updated_at"])
        logger.info("Archived problem %s", problem.id)
        return problem

    def restore_problem(self, problem_id: Any) -> Problem:
        with self.store.atomic():
            problem = self.store.locked(Problem).filter(id=problem_id).first()
            if not problem:
                raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
            if problem.is_active:
                raise Conflict("Problem is not archived", entity="problem", entity_id=problem.id, field="is_active")
            self.store.locked(Device).filter(id=problem.device_id).first()
            self._guard_title(problem, problem.title, problem.status)
            problem.is_active = True
            problem.save(update_fields=["is_active", "updated_at"])
        logger.info("Restored problem %s", problem.id)
        return problem

    def purge_problem(self, problem_id: Any) -> None:
        with self.store.atomic():
            problem = self.store.locked(Problem).filter(id=problem_id).first()
            if not problem:
                raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
            active_steps = self.store.objects(DiagnosticStep).filter(problem_id=problem.id, is_active=True).count()
            active_sessions = self.store.objects(DiagnosticSession).filter(problem_id=problem.id, is_active=True).count()
            if active_steps or active_sessions:
                raise Conflict(
                    "Problem is still referenced by active steps or sessions; archive it instead",
                    entity="problem",
                    entity_id=problem.id,
                    details={"active_steps": active_steps, "active_sessions": active_sessions},
                )
            problem.delete()
        logger.info("Purged problem %s", problem_id)

    def _set_status(self, problem_id: Any, status: str) -> Problem:
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            if problem.status != status:
                self.store.locked(Device).filter(id=problem.device_id).first()
                self._guard_title(problem, problem.title, status)
                problem.status = status
                problem.save(update_fields=["status", "updated_at"])
        logger.info("Problem %s is now %s", problem.id, status)
        return problem

    def _guard_title(self, problem: Problem, title: str, status: str) -> None:
        if status in TITLE_GUARDED_STATUSES:
            ensure_unique_problem_title(self.store, device_id=problem.device_id, title=title, exclude_id=problem.id)

    def _lock_problem(self, problem_id: Any) -> Problem:
        problem = self.store.locked(Problem).filter(id=problem_id, is_active=True).first()
        if not problem:
            raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
        return problem

    def _open_sessions(self, problem_id: Any) -> int:
        return (
            self.store.objects(DiagnosticSession)
            .filter(problem_id=problem_id, is_active=True, end_time__isnull=True)
            .count()
        )

    def _problem_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {key: data[key] for key in PROBLEM_DATA_FIELDS if key in data}
        if "status" in fields and fields["status"] not in PROBLEM_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(PROBLEM_STATUSES))}", entity="problem", field="status"
            )
        return fields
