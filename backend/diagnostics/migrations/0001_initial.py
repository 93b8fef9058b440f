from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Device",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("brand", models.CharField(blank=True, max_length=120)),
                ("model", models.CharField(blank=True, max_length=120)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Problem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=300)),
                ("description", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("published", "Published"), ("archived", "Archived")],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("priority", models.PositiveSmallIntegerField(default=1)),
                ("completed_count", models.PositiveIntegerField(default=0)),
                ("success_rate", models.PositiveSmallIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "device",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="problems", to="diagnostics.device"
                    ),
                ),
            ],
            options={"ordering": ["-priority", "title"]},
        ),
        migrations.CreateModel(
            name="Remote",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("manufacturer", models.CharField(blank=True, max_length=120)),
                ("model", models.CharField(blank=True, max_length=120)),
                (
                    "layout",
                    models.CharField(
                        choices=[("standard", "Standard"), ("compact", "Compact"), ("smart", "Smart"), ("custom", "Custom")],
                        default="standard",
                        max_length=20,
                    ),
                ),
                ("buttons", models.JSONField(blank=True, default=list)),
                ("is_default", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("usage_count", models.PositiveIntegerField(default=0)),
                ("last_used", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "device",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="remotes",
                        to="diagnostics.device",
                    ),
                ),
            ],
            options={"ordering": ["-is_default", "-usage_count", "name"]},
        ),
        migrations.CreateModel(
            name="DiagnosticStep",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("step_number", models.PositiveIntegerField()),
                ("title", models.CharField(max_length=300)),
                ("description", models.TextField(blank=True)),
                ("instruction", models.TextField()),
                ("estimated_time", models.PositiveIntegerField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "device",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="steps", to="diagnostics.device"
                    ),
                ),
                (
                    "problem",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="steps", to="diagnostics.problem"
                    ),
                ),
                (
                    "remote",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="steps",
                        to="diagnostics.remote",
                    ),
                ),
            ],
            options={"ordering": ["problem", "step_number", "created_at"]},
        ),
        migrations.CreateModel(
            name="DiagnosticSession",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("session_key", models.CharField(blank=True, default="", max_length=200)),
                ("start_time", models.DateTimeField()),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                ("total_steps", models.PositiveIntegerField(default=0)),
                ("completed_steps", models.PositiveIntegerField(default=0)),
                ("success", models.BooleanField(blank=True, null=True)),
                ("duration", models.PositiveIntegerField(blank=True, null=True)),
                ("feedback", models.TextField(blank=True)),
                ("error_steps", models.JSONField(blank=True, default=list)),
                ("metadata_json", models.JSONField(blank=True, default=dict)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "device",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="sessions", to="diagnostics.device"
                    ),
                ),
                (
                    "problem",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="sessions", to="diagnostics.problem"
                    ),
                ),
            ],
            options={"ordering": ["-start_time"]},
        ),
        migrations.CreateModel(
            name="SessionStepProgress",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("step_number", models.PositiveIntegerField(default=0)),
                ("completed", models.BooleanField(default=False)),
                (
                    "result",
                    models.CharField(
                        choices=[("success", "Success"), ("failure", "Failure"), ("skipped", "Skipped")],
                        default="success",
                        max_length=20,
                    ),
                ),
                ("time_spent", models.PositiveIntegerField(blank=True, null=True)),
                ("errors", models.JSONField(blank=True, default=list)),
                ("user_input", models.JSONField(blank=True, null=True)),
                ("started_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="step_progress",
                        to="diagnostics.diagnosticsession",
                    ),
                ),
                (
                    "step",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="progress_records",
                        to="diagnostics.diagnosticstep",
                    ),
                ),
            ],
            options={"ordering": ["step_number"], "unique_together": {("session", "step")}},
        ),
        migrations.AddIndex(
            model_name="problem",
            index=models.Index(fields=["device", "is_active"], name="diag_problem_device_active_idx"),
        ),
        migrations.AddIndex(
            model_name="diagnosticsession",
            index=models.Index(fields=["is_active", "start_time"], name="diag_session_active_start_idx"),
        ),
        migrations.AddConstraint(
            model_name="remote",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_default", True), ("is_active", True), ("device__isnull", False)),
                fields=("device",),
                name="uniq_active_default_remote_per_device",
            ),
        ),
        migrations.AddConstraint(
            model_name="remote",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_default", True), ("is_active", True), ("device__isnull", True)),
                fields=("is_default",),
                name="uniq_active_default_universal_remote",
            ),
        ),
        migrations.AddConstraint(
            model_name="diagnosticstep",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_active", True)),
                fields=("problem", "step_number"),
                name="uniq_active_step_number_per_problem",
            ),
        ),
        migrations.AddConstraint(
            model_name="diagnosticsession",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_active", True), models.Q(("session_key", ""), _negated=True)),
                fields=("session_key",),
                name="uniq_active_session_key",
            ),
        ),
    ]
