from rest_framework import serializers
from .formatting import format_for_display


class ObservationWriteSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    response = serializers.JSONField(allow_null=True)
    alias = serializers.CharField(max_length=255, required=False, allow_null=True, allow_blank=True)


class VoiceUploadSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    file = serializers.FileField()


class ObservationReadSerializer(serializers.Serializer):
    """Observation row (plain dict) with its question and a display rendering."""
    id = serializers.UUIDField()
    question_id = serializers.UUIDField()
    question_name = serializers.CharField(required=False)
    question_type = serializers.CharField(required=False)
    user_id = serializers.IntegerField(allow_null=True)
    response = serializers.JSONField(allow_null=True)
    alias = serializers.CharField(allow_null=True)
    created_at = serializers.DateTimeField()
    display = serializers.SerializerMethodField()

    def get_display(self, row):
        return format_for_display(row.get("response"), row.get("question_type"))
