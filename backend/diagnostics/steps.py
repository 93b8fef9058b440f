from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from django.db.models import Max

from .errors import Conflict, NotFound, ValidationError
from .guards import ensure_step_number_free
from .models import DiagnosticStep, Problem, Remote, SessionStepProgress
from .store import Store

logger = logging.getLogger(__name__)

STEP_DATA_FIELDS = ("title", "description", "instruction", "estimated_time", "remote_id")
REQUIRED_STEP_FIELDS = ("title", "instruction")
COPY_SUFFIX = " (copy)"


@dataclass
class StepOrderReport:
    problem_id: str
    step_count: int
    numbers: List[int] = field(default_factory=list)
    duplicates: Dict[int, int] = field(default_factory=dict)
    missing: List[int] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.duplicates and not self.missing

    def as_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "is_valid": self.is_valid,
            "step_count": self.step_count,
            "numbers": list(self.numbers),
            "duplicates": [{"step_number": number, "count": count} for number, count in sorted(self.duplicates.items())],
            "missing": list(self.missing),
        }


class StepOrderingEngine:
    """Keeps the active steps of every problem numbered 1..N.

    Every mutation locks the owning problem row first, so two renumberings of
    the same problem never interleave. Renumbering walks rows in an order that
    never puts two active steps on the same number, which keeps the
    per-problem unique constraint satisfied after every single UPDATE:

    * making room for an insert shifts followers up, highest number first;
    * compaction after a delete shifts followers down, lowest number first;
    * a full reassignment (reorder, repair) compacts lowest-first when every
      row moves down, and otherwise parks the moving rows above the current
      maximum before giving them their final numbers.
    """

    def __init__(self, store: Store):
        self.store = store

    # -- reads -------------------------------------------------------------

    def list_steps(self, problem_id: Any) -> List[DiagnosticStep]:
        self._get_problem(problem_id)
        return list(self._active_steps(problem_id))

    def validate_step_order(self, problem_id: Any) -> StepOrderReport:
        self._get_problem(problem_id)
        numbers = list(self._active_steps(problem_id).values_list("step_number", flat=True))
        counts = Counter(numbers)
        expected = set(range(1, len(numbers) + 1))
        return StepOrderReport(
            problem_id=str(problem_id),
            step_count=len(numbers),
            numbers=numbers,
            duplicates={number: count for number, count in counts.items() if count > 1},
            missing=sorted(expected - set(numbers)),
        )

    def get_step(self, step_id: Any) -> DiagnosticStep:
        return self._get_step(step_id)

    def get_next_step(self, step_id: Any) -> Optional[DiagnosticStep]:
        return self._neighbour(step_id, 1)

    def get_previous_step(self, step_id: Any) -> Optional[DiagnosticStep]:
        return self._neighbour(step_id, -1)

    # -- mutations ---------------------------------------------------------

    def create_step(self, problem_id: Any, data: Dict[str, Any], step_number: Optional[int] = None) -> DiagnosticStep:
        fields = self._step_fields(data, require=REQUIRED_STEP_FIELDS)
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            next_number = self._next_number(problem.id)
            if step_number is None:
                step_number = next_number
            else:
                step_number = int(step_number)
                if step_number < 1:
                    raise ValidationError("step_number must be positive", entity="step", field="step_number")
                ensure_step_number_free(self.store, problem_id=problem.id, step_number=step_number)
                if step_number > next_number:
                    raise ValidationError(
                        f"step_number {step_number} would leave a gap; the next free number is {next_number}",
                        entity="step",
                        field="step_number",
                        details={"next_step_number": next_number},
                    )
            self._ensure_remote(fields.get("remote_id"))
            step = self.store.objects(DiagnosticStep).create(
                problem=problem,
                device_id=problem.device_id,
                step_number=step_number,
                **fields,
            )
        logger.info("Created step %s as #%s of problem %s", step.id, step.step_number, problem.id)
        return step

    def insert_step_after(self, problem_id: Any, after_number: int, data: Dict[str, Any]) -> DiagnosticStep:
        fields = self._step_fields(data, require=REQUIRED_STEP_FIELDS)
        after_number = int(after_number)
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            count = self._active_steps(problem.id).count()
            if after_number < 0 or after_number > count:
                raise ValidationError(
                    f"after_number must be between 0 and {count}",
                    entity="step",
                    field="after_number",
                    details={"step_count": count},
                )
            self._ensure_remote(fields.get("remote_id"))
            followers = self._active_steps(problem.id).filter(step_number__gt=after_number).order_by("-step_number")
            shifted = self._shift(followers, 1)
            step = self.store.objects(DiagnosticStep).create(
                problem=problem,
                device_id=problem.device_id,
                step_number=after_number + 1,
                **fields,
            )
        logger.info(
            "Inserted step %s at #%s of problem %s (shifted %s)",
            step.id,
            step.step_number,
            problem.id,
            shifted,
        )
        return step

    def delete_step_with_reorder(self, step_id: Any, force: bool = False) -> DiagnosticStep:
        with self.store.atomic():
            step = self._get_step(step_id)
            self._lock_problem(step.problem_id, require_active=False)
            # Re-read under the problem lock: a concurrent renumbering may have moved it.
            step = self._get_step(step_id)
            open_sessions = (
                self.store.objects(SessionStepProgress)
                .filter(step_id=step.id, session__is_active=True, session__end_time__isnull=True)
                .values("session_id")
                .distinct()
                .count()
            )
            if open_sessions and not force:
                raise Conflict(
                    f"Step is used by {open_sessions} open diagnostic session(s)",
                    entity="step",
                    entity_id=step.id,
                    details={"open_sessions": open_sessions},
                )
            deleted_number = step.step_number
            step.is_active = False
            step.save(update_fields=["is_active", "updated_at"])
            followers = self._active_steps(step.problem_id).filter(step_number__gt=deleted_number).order_by("step_number")
            shifted = self._shift(followers, -1)
        logger.info(
            "Archived step %s (#%s) of problem %s and compacted %s follower(s)",
            step.id,
            deleted_number,
            step.problem_id,
            shifted,
        )
        return step

    def reorder_steps(self, problem_id: Any, ordered_step_ids: Sequence[Any]) -> List[DiagnosticStep]:
        requested = [str(step_id) for step_id in ordered_step_ids]
        repeated = sorted(step_id for step_id, count in Counter(requested).items() if count > 1)
        if repeated:
            raise ValidationError(
                "step_ids contains duplicates",
                entity="problem",
                entity_id=problem_id,
                field="step_ids",
                details={"duplicates": repeated},
            )
        with self.store.atomic():
            problem = self._lock_problem(problem_id)
            steps = {str(step.id): step for step in self._active_steps(problem.id)}
            missing = sorted(set(steps) - set(requested))
            unknown = sorted(set(requested) - set(steps))
            if missing or unknown:
                raise ValidationError(
                    "step_ids must list every active step of the problem exactly once",
                    entity="problem",
                    entity_id=problem.id,
                    field="step_ids",
                    details={"missing": missing, "unknown": unknown},
                )
            ordered = [steps[step_id] for step_id in requested]
            moved = self._apply_numbering(ordered)
        logger.info("Reordered %s step(s) of problem %s (%s moved)", len(ordered), problem.id, len(moved))
        return ordered

    def fix_step_numbering(self, problem_id: Any) -> List[DiagnosticStep]:
        with self.store.atomic():
            problem = self._lock_problem(problem_id, require_active=False)
            ordered = list(self._active_steps(problem.id).order_by("step_number", "created_at", "id"))
            moved = self._apply_numbering(ordered)
        if moved:
            logger.info("Repaired numbering of problem %s: %s step(s) renumbered", problem.id, len(moved))
        return moved

    def restore_step(self, step_id: Any) -> DiagnosticStep:
        with self.store.atomic():
            step = self.store.objects(DiagnosticStep).filter(id=step_id).first()
            if not step:
                raise NotFound("Step not found", entity="step", entity_id=step_id)
            if step.is_active:
                raise Conflict("Step is not archived", entity="step", entity_id=step.id, field="is_active")
            problem = self._lock_problem(step.problem_id)
            step.step_number = self._next_number(problem.id)
            step.is_active = True
            step.save(update_fields=["step_number", "is_active", "updated_at"])
        logger.info("Restored step %s as #%s of problem %s", step.id, step.step_number, step.problem_id)
        return step

    def duplicate_step(self, step_id: Any, target_problem_id: Any = None) -> DiagnosticStep:
        with self.store.atomic():
            original = self._get_step(step_id)
            problem = self._lock_problem(target_problem_id or original.problem_id)
            copy = self.store.objects(DiagnosticStep).create(
                problem=problem,
                device_id=problem.device_id,
                step_number=self._next_number(problem.id),
                title=f"{original.title}{COPY_SUFFIX}"[:300],
                description=original.description,
                instruction=original.instruction,
                estimated_time=original.estimated_time,
                remote_id=original.remote_id,
            )
        logger.info("Duplicated step %s into problem %s as #%s", original.id, problem.id, copy.step_number)
        return copy

    # -- helpers -----------------------------------------------------------

    def _active_steps(self, problem_id: Any):
        return self.store.objects(DiagnosticStep).filter(problem_id=problem_id, is_active=True).order_by(
            "step_number", "created_at"
        )

    def _next_number(self, problem_id: Any) -> int:
        current = self._active_steps(problem_id).aggregate(value=Max("step_number"))["value"]
        return (current or 0) + 1

    def _get_problem(self, problem_id: Any) -> Problem:
        problem = self.store.objects(Problem).filter(id=problem_id, is_active=True).first()
        if not problem:
            raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
        return problem

    def _lock_problem(self, problem_id: Any, require_active: bool = True) -> Problem:
        qs = self.store.locked(Problem).filter(id=problem_id)
        if require_active:
            qs = qs.filter(is_active=True)
        problem = qs.first()
        if not problem:
            raise NotFound("Problem not found", entity="problem", entity_id=problem_id)
        return problem

    def _get_step(self, step_id: Any) -> DiagnosticStep:
        step = self.store.objects(DiagnosticStep).filter(id=step_id, is_active=True).first()
        if not step:
            raise NotFound("Step not found", entity="step", entity_id=step_id)
        return step

    def _neighbour(self, step_id: Any, delta: int) -> Optional[DiagnosticStep]:
        step = self._get_step(step_id)
        return self._active_steps(step.problem_id).filter(step_number=step.step_number + delta).first()

    def _ensure_remote(self, remote_id: Any) -> None:
        if remote_id and not self.store.objects(Remote).filter(id=remote_id, is_active=True).exists():
            raise NotFound("Remote not found", entity="remote", entity_id=remote_id, field="remote_id")

    def _step_fields(self, data: Dict[str, Any], require: Iterable[str] = ()) -> Dict[str, Any]:
        fields = {key: data[key] for key in STEP_DATA_FIELDS if key in data}
        for key in require:
            if not str(fields.get(key) or "").strip():
                raise ValidationError(f"{key} is required", entity="step", field=key)
        return fields

    def _shift(self, steps, delta: int) -> int:
        count = 0
        for step in steps:
            step.step_number += delta
            step.save(update_fields=["step_number", "updated_at"])
            count += 1
        return count

    def _apply_numbering(self, ordered_steps: List[DiagnosticStep]) -> List[DiagnosticStep]:
        moves: List[Tuple[DiagnosticStep, int]] = [
            (step, position) for position, step in enumerate(ordered_steps, start=1) if step.step_number != position
        ]
        if not moves:
            return []
        if all(position < step.step_number for step, position in moves):
            for step, position in sorted(moves, key=lambda move: move[0].step_number):
                step.step_number = position
                step.save(update_fields=["step_number", "updated_at"])
            return [step for step, _ in moves]
        ceiling = max(len(ordered_steps), max(step.step_number for step in ordered_steps))
        for offset, (step, _) in enumerate(moves, start=1):
            step.step_number = ceiling + offset
            step.save(update_fields=["step_number", "updated_at"])
        for step, position in moves:
            step.step_number = position
            step.save(update_fields=["step_number", "updated_at"])
        return [step for step, _ in moves]
