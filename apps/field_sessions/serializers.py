from rest_framework import serializers

from apps.observations.exports import session_duration


class SessionStartSerializer(serializers.Serializer):
    agency = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    alias = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)


class SessionSerializer(serializers.Serializer):
    """Session row as a dict (queryset .values() or a DataAccess row)."""
    id = serializers.UUIDField()
    project_id = serializers.UUIDField()
    user_id = serializers.IntegerField(allow_null=True)
    agency = serializers.CharField(allow_null=True)
    alias = serializers.CharField(allow_null=True)
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField(allow_null=True)
    is_active = serializers.SerializerMethodField()
    duration = serializers.SerializerMethodField()

    def get_is_active(self, row):
        return row.get("end_time") is None

    def get_duration(self, row):
        return session_duration(row)


class SessionListQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    agency = serializers.CharField(required=False, allow_blank=True)
    search = serializers.CharField(required=False, allow_blank=True)
