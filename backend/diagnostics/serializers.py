from rest_framework import serializers

from .models import DiagnosticSession, DiagnosticStep, Device, Problem, Remote, SessionStepProgress


class DeviceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Device
        fields = ["id", "name", "brand", "model", "is_active", "created_at", "updated_at"]
        read_only_fields = fields


class ProblemSerializer(serializers.ModelSerializer):
    device_id = serializers.UUIDField(read_only=True)
    step_count = serializers.SerializerMethodField()

    class Meta:
        model = Problem
        fields = [
            "id",
            "device_id",
            "title",
            "description",
            "status",
            "priority",
            "completed_count",
            "success_rate",
            "is_active",
            "step_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_step_count(self, obj):
        return obj.steps.filter(is_active=True).count()


class RemoteSerializer(serializers.ModelSerializer):
    device_id = serializers.SerializerMethodField()

    class Meta:
        model = Remote
        fields = [
            "id",
            "device_id",
            "name",
            "manufacturer",
            "model",
            "layout",
            "buttons",
            "is_default",
            "is_active",
            "usage_count",
            "last_used",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_device_id(self, obj):
        # Universal remotes have no device.
        return str(obj.device_id) if obj.device_id else None


class DiagnosticStepSerializer(serializers.ModelSerializer):
    problem_id = serializers.UUIDField(read_only=True)
    device_id = serializers.UUIDField(read_only=True)
    remote_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = DiagnosticStep
        fields = [
            "id",
            "problem_id",
            "device_id",
            "step_number",
            "title",
            "description",
            "instruction",
            "remote_id",
            "estimated_time",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SessionStepProgressSerializer(serializers.ModelSerializer):
    step_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = SessionStepProgress
        fields = [
            "step_id",
            "step_number",
            "completed",
            "result",
            "time_spent",
            "errors",
            "user_input",
            "started_at",
            "completed_at",
        ]
        read_only_fields = fields


class DiagnosticSessionSerializer(serializers.ModelSerializer):
    device_id = serializers.UUIDField(read_only=True)
    problem_id = serializers.UUIDField(read_only=True)
    session_id = serializers.CharField(source="session_key", read_only=True)
    metadata = serializers.JSONField(source="metadata_json", read_only=True)
    state = serializers.CharField(read_only=True)
    completion_percentage = serializers.IntegerField(read_only=True)
    step_progress = SessionStepProgressSerializer(many=True, read_only=True)

    class Meta:
        model = DiagnosticSession
        fields = [
            "id",
            "device_id",
            "problem_id",
            "session_id",
            "state",
            "start_time",
            "end_time",
            "total_steps",
            "completed_steps",
            "completion_percentage",
            "success",
            "duration",
            "feedback",
            "error_steps",
            "metadata",
            "is_active",
            "step_progress",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
