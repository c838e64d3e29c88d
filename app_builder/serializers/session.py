"""
Build session serializers
"""

from rest_framework import serializers

from app_builder.models import BuildSession
from app_builder.services.sandbox_runtime import SANDBOX_ID_PATTERN


def _validate_sandbox_id(value: str) -> str:
    if value and not SANDBOX_ID_PATTERN.match(value):
        raise serializers.ValidationError("Invalid sandbox id")
    return value


class ModifyRequestSerializer(serializers.Serializer):
    """Body of a modification request."""

    sandbox_id = serializers.CharField(max_length=64, validators=[_validate_sandbox_id])
    message = serializers.CharField(trim_whitespace=True)


class GenerateRequestSerializer(serializers.Serializer):
    """Body of a generation request. An omitted sandbox_id creates a new sandbox."""

    prompt = serializers.CharField(required=False, allow_blank=True, default="")
    sandbox_id = serializers.CharField(
        max_length=64,
        required=False,
        allow_blank=True,
        default="",
        validators=[_validate_sandbox_id],
    )


class BuildSessionSerializer(serializers.ModelSerializer):
    """Read-only view of a streamed session's bookkeeping."""

    is_finished = serializers.BooleanField(read_only=True)

    class Meta:
        model = BuildSession
        fields = [
            "id",
            "sandbox_id",
            "kind",
            "prompt",
            "status",
            "exit_code",
            "error_message",
            "event_count",
            "is_finished",
            "started_at",
            "completed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
