from rest_framework import serializers
from django.contrib.auth.models import User
from .models import Organization, OrganizationMember, MemberRole


class OrganizationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Organization
        fields = ["id", "name", "slug", "description", "website_url", "status", "logo", "created_at", "updated_at"]


class OrganizationCreateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Organization
        fields = ["name", "description", "website_url", "logo"]


class UserBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "email"]


class OrgMemberSerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)
    user_id = serializers.IntegerField(write_only=True, required=False)
    role = serializers.ChoiceField(choices=MemberRole.choices, required=False, default=MemberRole.MEMBER)

    class Meta:
        model = OrganizationMember
        fields = ["id", "organization", "user", "user_id", "role", "created_at"]
        read_only_fields = ["id", "organization", "user", "created_at"]


class UserOrganizationSerializer(serializers.Serializer):
    """Row shape returned by the get_user_organizations procedure."""
    organization_id = serializers.IntegerField()
    organization_name = serializers.CharField()
    organization_slug = serializers.CharField()
    user_role = serializers.CharField()
    joined_at = serializers.DateTimeField()
