from rest_framework import serializers
from apps.accounts.serializers import UserBriefSerializer
from apps.core.enums import QuestionType, CHOICE_TYPES
from .models import Project, ProjectMember, ProjectRole, ProjectStatus, QuestionDefinition


def _clean_labels(values):
    """Strip, drop blanks and duplicates; keep first-seen order."""
    seen = []
    for value in values:
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class ProjectCreateSerializer(serializers.ModelSerializer):
    organization_id = serializers.IntegerField(write_only=True, required=False, allow_null=True)
    agencies = serializers.ListField(child=serializers.CharField(max_length=255), required=False)

    class Meta:
        model = Project
        fields = ["name", "description", "organization_id", "agencies"]

    def validate_agencies(self, value):
        return _clean_labels(value)


class ProjectUpdateSerializer(serializers.ModelSerializer):
    status = serializers.ChoiceField(choices=ProjectStatus.choices, required=False)

    class Meta:
        model = Project
        fields = ["name", "description", "status"]


class ProjectSerializer(serializers.ModelSerializer):
    created_by = UserBriefSerializer(read_only=True)

    class Meta:
        model = Project
        fields = [
            "id", "organization", "name", "description", "status",
            "created_by", "agencies", "created_at", "updated_at",
        ]


class AgenciesSerializer(serializers.Serializer):
    agencies = serializers.ListField(child=serializers.CharField(max_length=255, allow_blank=True))

    def validate_agencies(self, value):
        return _clean_labels(value)


class ProjectMemberSerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)
    user_id = serializers.IntegerField(write_only=True, required=False)
    email = serializers.EmailField(write_only=True, required=False)
    role = serializers.ChoiceField(choices=ProjectRole.choices, required=False, default=ProjectRole.VIEWER)

    class Meta:
        model = ProjectMember
        fields = ["id", "user", "user_id", "email", "role", "added_by", "created_at"]
        read_only_fields = ["id", "user", "added_by", "created_at"]

    def validate(self, attrs):
        if not attrs.get("user_id") and not attrs.get("email"):
            raise serializers.ValidationError("Se requiere user_id o email")
        return attrs


class QuestionDefinitionSerializer(serializers.ModelSerializer):
    question_type = serializers.ChoiceField(choices=QuestionType.choices(), required=False)
    options = serializers.ListField(child=serializers.CharField(max_length=255, allow_blank=True), required=False)

    class Meta:
        model = QuestionDefinition
        fields = [
            "id", "name", "description", "question_type", "options",
            "sort_order", "is_visible", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        qtype = attrs.get("question_type") or getattr(self.instance, "question_type", QuestionType.STRING.value)
        if qtype in CHOICE_TYPES:
            options = _clean_labels(attrs.get("options", getattr(self.instance, "options", None) or []))
            if not options:
                raise serializers.ValidationError({"options": ["Agrega al menos una opción"]})
            attrs["options"] = options
        else:
            # Options only mean something for choice questions
            attrs["options"] = []
        return attrs


class QuestionReorderSerializer(serializers.Serializer):
    question_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)

    def validate_question_ids(self, value):
        if len(set(value)) != len(value):
            raise serializers.ValidationError("IDs duplicados")
        return value
