from __future__ import annotations

from django.core.management.base import BaseCommand

from diagnostics.errors import NotFound
from diagnostics.models import Problem
from diagnostics.steps import StepOrderingEngine
from diagnostics.store import Store


class Command(BaseCommand):
    help = "Validate and repair step numbering so every problem's active steps read 1..N."

    def add_arguments(self, parser):
        parser.add_argument("--problem", dest="problem_id", default="", help="Optional problem id filter.")
        parser.add_argument("--check", action="store_true", help="Report invalid numbering without repairing it.")
        parser.add_argument("--database", default="default", help="Database alias to repair.")

    def handle(self, *args, **options):
        problem_id = str(options.get("problem_id") or "").strip()
        check_only = bool(options.get("check"))
        store = Store(options.get("database") or "default")
        engine = StepOrderingEngine(store)
        qs = store.objects(Problem).filter(is_active=True)
        if problem_id:
            qs = qs.filter(id=problem_id)
            if not qs.exists():
                self.stdout.write(self.style.ERROR(f"Problem not found: {problem_id}"))
                return

        invalid_count = 0
        repaired_count = 0
        for problem in qs.order_by("created_at"):
            try:
                report = engine.validate_step_order(problem.id)
            except NotFound:
                continue
            if report.is_valid:
                continue
            invalid_count += 1
            summary = f"duplicates={sorted(report.duplicates)} missing={report.missing}"
            if check_only:
                self.stdout.write(f"[invalid] {problem.id} {problem.title!r} {summary}")
                continue
            moved = engine.fix_step_numbering(problem.id)
            repaired_count += 1
            self.stdout.write(f"[repaired] {problem.id} {problem.title!r} renumbered={len(moved)} {summary}")

        self.stdout.write(
            self.style.SUCCESS(
                f"Step numbering check complete. invalid={invalid_count} repaired={repaired_count} check={check_only}"
            )
        )
