from __future__ import annotations

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Max, Q
from django.shortcuts import get_object_or_404
from rest_framework import status, permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.access import AccessValidator
from apps.core.backend import OrmDataAccess
from apps.core.enums import AccessRole
from apps.core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from apps.core.permissions import HasProjectAccess
from apps.core.serializer import paginate
from apps.core.utility import parse_int as _parse_int
from .models import Project, ProjectMember, ProjectRole, ProjectStatus, QuestionDefinition
from .serializers import (
    AgenciesSerializer,
    ProjectCreateSerializer,
    ProjectMemberSerializer,
    ProjectSerializer,
    ProjectUpdateSerializer,
    QuestionDefinitionSerializer,
    QuestionReorderSerializer,
)


class ProjectListCreateView(APIView):
    """
    GET: Paginated list of the projects the user can reach (created, shared
         directly, or through an organization membership).
         Filters: organization_id, status, search (name).
    POST: Create a project. With organization_id the user must belong to that
          organization with a role other than viewer.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        user = request.user
        qs = (
            Project.objects
            .filter(Q(created_by=user) | Q(members__user=user) | Q(organization__members__user=user))
            .select_related("created_by")
            .distinct()
            .order_by("-created_at")
        )

        org_id = _parse_int(request.query_params.get("organization_id"), 0)
        if org_id > 0:
            qs = qs.filter(organization_id=org_id)

        status_param = (request.query_params.get("status") or "").strip()
        if status_param in dict(ProjectStatus.choices):
            qs = qs.filter(status=status_param)

        search = (request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(name__icontains=search)

        return Response(paginate(qs, request.query_params, ProjectSerializer))

    @transaction.atomic
    def post(self, request):
        ser = ProjectCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        org_id = data.pop("organization_id", None)

        if org_id:
            decision = AccessValidator(OrmDataAccess(user=request.user)).validate_organization_access(org_id)
            decision.raise_for_denied()
            if decision.role is AccessRole.VIEWER:
                raise PermissionDeniedError("No tienes permisos para crear proyectos en esta organización")

        project = Project.objects.create(organization_id=org_id, created_by=request.user, **data)
        return Response(ProjectSerializer(project).data, status=status.HTTP_201_CREATED)


class ProjectDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "PATCH": "edit_project", "DELETE": "delete_project"}

    def get(self, request, project_id):
        project = get_object_or_404(Project.objects.select_related("created_by"), pk=project_id)
        data = ProjectSerializer(project).data
        data["access"] = request.access.as_dict()
        return Response(data)

    def patch(self, request, project_id):
        project = get_object_or_404(Project, pk=project_id)
        ser = ProjectUpdateSerializer(project, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        project = ser.save()
        return Response(ProjectSerializer(project).data)

    def delete(self, request, project_id):
        from apps.field_sessions.services import delete_project_sessions  # local import to avoid circulars

        # Sessions go first so their voice recordings leave storage before the rows do
        delete_project_sessions(request.backend, project_id)
        Project.objects.filter(pk=project_id).delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectAgenciesView(APIView):
    """
    GET: The agencies sessions of this project can be started for.
    PUT: Replace the list (blank and repeated names are dropped).
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "PUT": "add_agencies"}

    def get(self, request, project_id):
        return Response({"agencies": request.access.project.get("agencies") or []})

    def put(self, request, project_id):
        ser = AgenciesSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        agencies = ser.validated_data["agencies"]
        request.backend.update_rows("projects", {"agencies": agencies}, {"id": project_id})
        return Response({"agencies": agencies})


class ProjectMembersView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "POST": "manage_users"}

    def get(self, request, project_id):
        qs = ProjectMember.objects.filter(project_id=project_id).select_related("user").order_by("id")
        return Response(paginate(qs, request.query_params, ProjectMemberSerializer))

    @transaction.atomic
    def post(self, request, project_id):
        ser = ProjectMemberSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        if data.get("user_id"):
            user = get_object_or_404(User, pk=data["user_id"])
        else:
            user = User.objects.filter(email__iexact=data["email"]).first()
            if user is None:
                raise ValidationError("No existe un usuario con ese correo")

        if request.access.project.get("created_by_id") == user.id:
            raise ConflictError("El creador ya tiene acceso al proyecto")
        member, created = ProjectMember.objects.get_or_create(
            project_id=project_id, user=user, defaults={"role": data["role"], "added_by": request.user}
        )
        if not created:
            raise ConflictError("El usuario ya tiene acceso al proyecto")
        return Response(ProjectMemberSerializer(member).data, status=status.HTTP_201_CREATED)


class ProjectMemberDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "manage_users"

    def patch(self, request, project_id, member_id: int):
        member = get_object_or_404(ProjectMember, pk=member_id, project_id=project_id)
        role = request.data.get("role")
        if role not in ProjectRole.values:
            raise ValidationError("Rol inválido")
        member.role = role
        member.save(update_fields=["role", "updated_at"])
        return Response(ProjectMemberSerializer(member).data)

    def delete(self, request, project_id, member_id: int):
        member = get_object_or_404(ProjectMember, pk=member_id, project_id=project_id)
        member.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class QuestionListCreateView(APIView):
    """
    GET: Questions in column order; ?visible=true hides the disabled ones.
    POST: Add a question at the end unless sort_order is given.
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "POST": "manage_questions"}

    def get(self, request, project_id):
        qs = QuestionDefinition.objects.filter(project_id=project_id)
        if (request.query_params.get("visible") or "").lower() in ("1", "true"):
            qs = qs.filter(is_visible=True)
        data = QuestionDefinitionSerializer(qs, many=True).data
        return Response({"count": len(data), "results": data})

    @transaction.atomic
    def post(self, request, project_id):
        ser = QuestionDefinitionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        if "sort_order" not in ser.validated_data:
            last = QuestionDefinition.objects.filter(project_id=project_id).aggregate(m=Max("sort_order"))["m"]
            ser.validated_data["sort_order"] = (last or 0) + 1
        question = ser.save(project_id=project_id)
        return Response(QuestionDefinitionSerializer(question).data, status=status.HTTP_201_CREATED)


class QuestionDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {
        "GET": "view_sessions",
        "PATCH": "manage_questions",
        "DELETE": "manage_questions",
    }

    def get(self, request, project_id, question_id):
        question = get_object_or_404(QuestionDefinition, pk=question_id, project_id=project_id)
        return Response(QuestionDefinitionSerializer(question).data)

    def patch(self, request, project_id, question_id):
        question = get_object_or_404(QuestionDefinition, pk=question_id, project_id=project_id)
        ser = QuestionDefinitionSerializer(question, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        question = ser.save()
        return Response(QuestionDefinitionSerializer(question).data)

    def delete(self, request, project_id, question_id):
        question = get_object_or_404(QuestionDefinition, pk=question_id, project_id=project_id)
        question.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class QuestionReorderView(APIView):
    """
    POST {"question_ids": [...]}: the full set of the project's questions in
    their new order; sort_order becomes 1..n.
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "manage_questions"

    @transaction.atomic
    def post(self, request, project_id):
        ser = QuestionReorderSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        ids = ser.validated_data["question_ids"]

        existing = set(
            QuestionDefinition.objects.select_for_update().filter(project_id=project_id).values_list("id", flat=True)
        )
        if set(ids) != existing:
            raise ValidationError("La lista debe contener todas las preguntas del proyecto")

        for position, qid in enumerate(ids, start=1):
            QuestionDefinition.objects.filter(pk=qid).update(sort_order=position)

        qs = QuestionDefinition.objects.filter(project_id=project_id)
        return Response(QuestionDefinitionSerializer(qs, many=True).data)
