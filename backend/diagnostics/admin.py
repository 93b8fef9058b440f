from django.contrib import admin, messages

from .errors import WorkflowError
from .models import DiagnosticSession, DiagnosticStep, Device, Problem, Remote, SessionStepProgress
from .remotes import DefaultRemoteEngine
from .steps import StepOrderingEngine
from .store import Store


@admin.register(Device)
class DeviceAdmin(admin.ModelAdmin):
    list_display = ("name", "brand", "model", "is_active", "updated_at")
    list_filter = ("is_active", "brand")
    search_fields = ("name", "brand", "model")


class DiagnosticStepInline(admin.TabularInline):
    model = DiagnosticStep
    extra = 0
    fields = ("step_number", "title", "remote", "is_active")
    readonly_fields = ("step_number", "is_active")
    can_delete = False


@admin.register(Problem)
class ProblemAdmin(admin.ModelAdmin):
    list_display = ("title", "device", "status", "priority", "completed_count", "success_rate", "is_active")
    list_filter = ("status", "is_active")
    search_fields = ("title", "description", "device__name")
    readonly_fields = ("completed_count", "success_rate", "created_at", "updated_at")
    inlines = [DiagnosticStepInline]
    actions = ["fix_step_numbering"]

    def fix_step_numbering(self, request, queryset):
        engine = StepOrderingEngine(Store())
        renumbered = 0
        for problem in queryset:
            renumbered += len(engine.fix_step_numbering(problem.id))
        self.message_user(
            request,
            f"Checked {queryset.count()} problem(s); renumbered {renumbered} step(s).",
            messages.SUCCESS,
        )

    fix_step_numbering.short_description = "Fix step numbering"


@admin.register(DiagnosticStep)
class DiagnosticStepAdmin(admin.ModelAdmin):
    list_display = ("title", "problem", "step_number", "remote", "is_active")
    list_filter = ("is_active",)
    search_fields = ("title", "instruction", "problem__title")
    ordering = ("problem", "step_number")
    # Numbering is owned by the ordering engine.
    readonly_fields = ("step_number", "is_active", "created_at", "updated_at")


@admin.register(Remote)
class RemoteAdmin(admin.ModelAdmin):
    list_display = ("name", "device", "layout", "is_default", "usage_count", "last_used", "is_active")
    list_filter = ("is_default", "is_active", "layout")
    search_fields = ("name", "manufacturer", "model")
    readonly_fields = ("is_default", "usage_count", "last_used", "created_at", "updated_at")
    actions = ["make_default"]

    def make_default(self, request, queryset):
        engine = DefaultRemoteEngine(Store())
        updated = 0
        for remote in queryset:
            try:
                engine.set_as_default(remote.id, remote.device_id)
            except WorkflowError as exc:
                self.message_user(request, f"{remote.name}: {exc.message}", messages.ERROR)
                continue
            updated += 1
        self.message_user(request, f"Made {updated} remote(s) the default.", messages.SUCCESS)

    make_default.short_description = "Make default"


class SessionStepProgressInline(admin.TabularInline):
    model = SessionStepProgress
    extra = 0
    fields = ("step_number", "step", "completed", "result", "time_spent", "completed_at")
    readonly_fields = fields
    can_delete = False


@admin.register(DiagnosticSession)
class DiagnosticSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "problem", "device", "start_time", "end_time", "success", "completed_steps", "total_steps")
    list_filter = ("success", "is_active")
    search_fields = ("session_key", "problem__title", "device__name")
    readonly_fields = (
        "start_time",
        "end_time",
        "success",
        "duration",
        "total_steps",
        "completed_steps",
        "error_steps",
        "created_at",
        "updated_at",
    )
    inlines = [SessionStepProgressInline]
