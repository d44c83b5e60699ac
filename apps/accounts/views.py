from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, permissions
from django.contrib.auth.models import User
from django.db.models import Q
from apps.core.backend import OrmDataAccess
from apps.core.enums import AccessRole
from apps.core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from apps.core.permissions import IsOrganizationMember
from apps.core.serializer import paginate
from apps.core.utility import unique_slug
from .access import AccessValidator
from .models import Organization, OrganizationMember, MemberRole
from .serializers import (
    OrganizationSerializer,
    OrganizationCreateSerializer,
    OrgMemberSerializer,
    UserOrganizationSerializer,
)


class OrganizationListCreateView(APIView):
    """
    GET: Organizations the user belongs to (superusers see all), ?search= on name/slug.
    POST: Create an organization; the creator becomes its owner.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        qs = Organization.objects.all().order_by("id")
        if not request.user.is_superuser:
            qs = qs.filter(members__user=request.user)
        search = (request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(slug__icontains=search))
        return Response(paginate(qs, request.query_params, OrganizationSerializer))

    @transaction.atomic
    def post(self, request):
        serializer = OrganizationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        org = serializer.save(slug=unique_slug(Organization, serializer.validated_data["name"]))
        OrganizationMember.objects.create(
            organization=org, user=request.user, role=MemberRole.OWNER, invited_by=request.user
        )
        return Response(OrganizationSerializer(org).data, status=status.HTTP_201_CREATED)


class OrganizationDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsOrganizationMember]
    manager_methods = ("PATCH", "DELETE")

    def get(self, request, org_id: int):
        org = get_object_or_404(Organization, pk=org_id)
        data = OrganizationSerializer(org).data
        data["role"] = request.access.role.value
        return Response(data)

    def patch(self, request, org_id: int):
        org = get_object_or_404(Organization, pk=org_id)
        # Partial update; name stays unique through the model constraint
        serializer = OrganizationCreateSerializer(org, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        org = serializer.save()
        return Response(OrganizationSerializer(org).data)

    def delete(self, request, org_id: int):
        if request.access.role is not AccessRole.OWNER:
            raise PermissionDeniedError("Solo el creador puede eliminar la organización")
        org = get_object_or_404(Organization, pk=org_id)
        org.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrgMembersView(APIView):
    """
    GET: Members of the organization, ?search= on username/email.
    POST: Add an existing user by user_id or email, with an optional role.
    """
    permission_classes = [permissions.IsAuthenticated, IsOrganizationMember]
    manager_methods = ("POST",)

    def get(self, request, org_id: int):
        qs = OrganizationMember.objects.filter(organization_id=org_id).select_related("user").order_by("id")
        search = (request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(user__username__icontains=search) | Q(user__email__icontains=search))
        return Response(paginate(qs, request.query_params, OrgMemberSerializer))

    @transaction.atomic
    def post(self, request, org_id: int):
        org = get_object_or_404(Organization, pk=org_id)
        ser = OrgMemberSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        role = ser.validated_data.get("role", MemberRole.MEMBER)
        if role == MemberRole.OWNER:
            raise ValidationError("Una organización solo puede tener un creador")

        user_id = ser.validated_data.get("user_id")
        email = (request.data.get("email") or "").strip()
        if user_id:
            user = get_object_or_404(User, pk=user_id)
        elif email:
            user = User.objects.filter(email__iexact=email).first()
            if user is None:
                raise ValidationError("No existe un usuario con ese correo")
        else:
            raise ValidationError("Se requiere user_id o email")

        member, created = OrganizationMember.objects.get_or_create(
            organization=org, user=user, defaults={"role": role, "invited_by": request.user}
        )
        if not created:
            raise ConflictError("El usuario ya pertenece a la organización")
        return Response(OrgMemberSerializer(member).data, status=status.HTTP_201_CREATED)


class OrgMemberDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsOrganizationMember]
    manager_methods = ("PATCH", "DELETE")

    def patch(self, request, org_id: int, member_id: int):
        member = get_object_or_404(OrganizationMember, pk=member_id, organization_id=org_id)
        role = request.data.get("role")
        if role not in MemberRole.values or role == MemberRole.OWNER or member.role == MemberRole.OWNER:
            raise ValidationError("Rol inválido")
        member.role = role
        member.save(update_fields=["role", "updated_at"])
        return Response(OrgMemberSerializer(member).data)

    def delete(self, request, org_id: int, member_id: int):
        member = get_object_or_404(OrganizationMember, pk=member_id, organization_id=org_id)
        if member.role == MemberRole.OWNER:
            raise ValidationError("No se puede eliminar al creador de la organización")
        member.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class MyOrganizationsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        rows = AccessValidator(OrmDataAccess(user=request.user)).user_organizations()
        data = UserOrganizationSerializer(rows, many=True).data
        return Response({"count": len(data), "results": data})


class MeView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        u = request.user
        memberships = (
            OrganizationMember.objects.filter(user=u).order_by("organization_id").values("organization_id", "role")
        )
        return Response({
            "id": u.id,
            "username": u.username,
            "email": u.email,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "organizations": list(memberships),
        })
