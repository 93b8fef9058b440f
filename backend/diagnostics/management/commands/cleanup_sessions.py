from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from diagnostics.errors import WorkflowError
from diagnostics.sessions import SessionLifecycleEngine
from diagnostics.store import Store


class Command(BaseCommand):
    help = "Purge completed diagnostic sessions and archive abandoned ones older than the retention window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help=f"Days of sessions to keep (default: {settings.DIAGKB_SESSION_RETENTION_DAYS}).",
        )
        parser.add_argument(
            "--batch-size",
            dest="batch_size",
            type=int,
            default=None,
            help=f"Rows per transaction (default: {settings.DIAGKB_CLEANUP_BATCH_SIZE}).",
        )
        parser.add_argument("--database", default="default", help="Database alias to clean.")

    def handle(self, *args, **options):
        engine = SessionLifecycleEngine(Store(options.get("database") or "default"))
        try:
            result = engine.cleanup_old_sessions(days_to_keep=options.get("days"), batch_size=options.get("batch_size"))
        except WorkflowError as exc:
            raise CommandError(exc.message) from exc
        self.stdout.write(
            self.style.SUCCESS(
                f"Session cleanup complete. purged={result['purged']} archived={result['archived']} "
                f"cutoff={result['cutoff']}"
            )
        )
