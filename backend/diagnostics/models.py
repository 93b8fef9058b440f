import uuid

from django.db import models
from django.db.models import Q


class Device(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    brand = models.CharField(max_length=120, blank=True)
    model = models.CharField(max_length=120, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Problem(models.Model):
    STATUS_CHOICES = [
        ("draft", "Draft"),
        ("published", "Published"),
        ("archived", "Archived"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name="problems")
    title = models.CharField(max_length=300)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="draft")
    priority = models.PositiveSmallIntegerField(default=1)
    completed_count = models.PositiveIntegerField(default=0)
    success_rate = models.PositiveSmallIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-priority", "title"]
        indexes = [models.Index(fields=["device", "is_active"], name="diag_problem_device_active_idx")]

    def __str__(self) -> str:
        return self.title


class Remote(models.Model):
    LAYOUT_CHOICES = [
        ("standard", "Standard"),
        ("compact", "Compact"),
        ("smart", "Smart"),
        ("custom", "Custom"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # A null device is the universal remote bucket.
    device = models.ForeignKey(Device, null=True, blank=True, on_delete=models.CASCADE, related_name="remotes")
    name = models.CharField(max_length=200)
    manufacturer = models.CharField(max_length=120, blank=True)
    model = models.CharField(max_length=120, blank=True)
    layout = models.CharField(max_length=20, choices=LAYOUT_CHOICES, default="standard")
    buttons = models.JSONField(default=list, blank=True)
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    usage_count = models.PositiveIntegerField(default=0)
    last_used = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-is_default", "-usage_count", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["device"],
                condition=Q(is_default=True, is_active=True, device__isnull=False),
                name="uniq_active_default_remote_per_device",
            ),
            models.UniqueConstraint(
                fields=["is_default"],
                condition=Q(is_default=True, is_active=True, device__isnull=True),
                name="uniq_active_default_universal_remote",
            ),
        ]

    def __str__(self) -> str:
        return self.name


class DiagnosticStep(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    problem = models.ForeignKey(Problem, on_delete=models.CASCADE, related_name="steps")
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name="steps")
    step_number = models.PositiveIntegerField()
    title = models.CharField(max_length=300)
    description = models.TextField(blank=True)
    instruction = models.TextField()
    remote = models.ForeignKey(Remote, null=True, blank=True, on_delete=models.SET_NULL, related_name="steps")
    estimated_time = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["problem", "step_number", "created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["problem", "step_number"],
                condition=Q(is_active=True),
                name="uniq_active_step_number_per_problem",
            )
        ]

    def __str__(self) -> str:
        return f"{self.step_number}. {self.title}"


class DiagnosticSession(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name="sessions")
    problem = models.ForeignKey(Problem, on_delete=models.CASCADE, related_name="sessions")
    # Caller-supplied correlation key ("session_id" on the wire).
    session_key = models.CharField(max_length=200, blank=True, default="")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField(null=True, blank=True)
    total_steps = models.PositiveIntegerField(default=0)
    completed_steps = models.PositiveIntegerField(default=0)
    success = models.BooleanField(null=True, blank=True)
    duration = models.PositiveIntegerField(null=True, blank=True)
    feedback = models.TextField(blank=True)
    error_steps = models.JSONField(default=list, blank=True)
    metadata_json = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_time"]
        constraints = [
            models.UniqueConstraint(
                fields=["session_key"],
                condition=Q(is_active=True) & ~Q(session_key=""),
                name="uniq_active_session_key",
            )
        ]
        indexes = [models.Index(fields=["is_active", "start_time"], name="diag_session_active_start_idx")]

    def __str__(self) -> str:
        return f"{self.problem} session {self.session_key or self.id}"

    @property
    def state(self) -> str:
        if not self.is_active:
            return "archived"
        return "completed" if self.end_time else "open"

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def completion_percentage(self) -> int:
        if not self.total_steps:
            return 0
        return round(self.completed_steps * 100 / self.total_steps)


class SessionStepProgress(models.Model):
    RESULT_CHOICES = [
        ("success", "Success"),
        ("failure", "Failure"),
        ("skipped", "Skipped"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(DiagnosticSession, on_delete=models.CASCADE, related_name="step_progress")
    step = models.ForeignKey(DiagnosticStep, on_delete=models.CASCADE, related_name="progress_records")
    step_number = models.PositiveIntegerField(default=0)
    completed = models.BooleanField(default=False)
    result = models.CharField(max_length=20, choices=RESULT_CHOICES, default="success")
    time_spent = models.PositiveIntegerField(null=True, blank=True)
    errors = models.JSONField(default=list, blank=True)
    user_input = models.JSONField(null=True, blank=True)
    started_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["step_number"]
        unique_together = ("session", "step")

    def __str__(self) -> str:
        return f"{self.session_id} step {self.step_number} ({self.result})"
