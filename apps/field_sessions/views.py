from __future__ import annotations

from datetime import datetime, time, timedelta

from django.db import transaction
from django.db.models import Q
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.enums import AccessRole
from apps.core.exceptions import PermissionDeniedError
from apps.core.permissions import HasProjectAccess
from apps.core.serializer import paginate
from apps.observations.exports import (
    LIMA_TZ,
    export_all_sessions,
    export_session,
    export_session_details,
    load_export_rows,
)
from apps.observations.serializers import ObservationReadSerializer
from apps.observations.services import load_session_observations
from .models import Session
from .serializers import SessionListQuerySerializer, SessionSerializer, SessionStartSerializer
from .services import (
    delete_session_with_observations,
    finish_session,
    get_session_creator,
    start_session,
)

SESSION_FIELDS = ("id", "project_id", "user_id", "agency", "alias", "start_time", "end_time")


def filtered_sessions(project_id, query_params):
    """
    Sessions of a project narrowed by ?date= (a calendar day in Lima time),
    ?agency= and ?search= (alias or agency). Newest first, as rows.
    """
    params = SessionListQuerySerializer(data=query_params)
    params.is_valid(raise_exception=True)
    qs = Session.objects.filter(project_id=project_id)

    day = params.validated_data.get("date")
    if day:
        start = datetime.combine(day, time.min, tzinfo=LIMA_TZ)
        qs = qs.filter(start_time__gte=start, start_time__lt=start + timedelta(days=1))

    agency = (params.validated_data.get("agency") or "").strip()
    if agency:
        qs = qs.filter(agency=agency)

    search = (params.validated_data.get("search") or "").strip()
    if search:
        qs = qs.filter(Q(alias__icontains=search) | Q(agency__icontains=search))

    return qs.order_by("-start_time").values(*SESSION_FIELDS)


class SessionListCreateView(APIView):
    """
    GET: Paginated sessions of the project. Filters: date, agency, search.
    POST: Start a session for the current user.
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "POST": "create_sessions"}

    def get(self, request, project_id):
        return Response(paginate(filtered_sessions(project_id, request.query_params), request.query_params, SessionSerializer))

    @transaction.atomic
    def post(self, request, project_id):
        ser = SessionStartSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        row = start_session(
            request.backend,
            project=request.access.project,
            user_id=request.user.id,
            agency=ser.validated_data.get("agency"),
            alias=ser.validated_data.get("alias"),
        )
        return Response(SessionSerializer(row).data, status=status.HTTP_201_CREATED)


class ProjectSessionsExportView(APIView):
    """GET: CSV with one row per session matching the listing filters."""
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "view_sessions"

    def get(self, request, project_id):
        sessions = list(filtered_sessions(project_id, request.query_params))
        export = export_all_sessions(
            sessions,
            project_id,
            backend=request.backend,
            project_name=request.access.project.get("name"),
        )
        return export.as_response()


class SessionDetailView(APIView):
    """
    GET: Session with its creator and display-formatted answers.
    DELETE: Remove the session, its answers and its recordings.
            Allowed to the session's creator and to project owners/admins.
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "DELETE": "create_sessions"}

    def get(self, request, project_id, session_id):
        session = request.access.session
        observations = load_session_observations(request.backend, project_id, session_id)
        data = SessionSerializer(session).data
        data["creator"] = get_session_creator(request.backend, session)
        data["observations"] = ObservationReadSerializer(observations, many=True).data
        return Response(data)

    def delete(self, request, project_id, session_id):
        session = request.access.session
        if session.get("user_id") != request.user.id and request.access.role not in (AccessRole.OWNER, AccessRole.ADMIN):
            raise PermissionDeniedError("No tienes permisos para eliminar esta sesión")
        delete_session_with_observations(request.backend, session_id, project_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class SessionFinishView(APIView):
    """POST: Finish the current user's active session."""
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "create_sessions"

    def post(self, request, project_id, session_id):
        row = finish_session(request.backend, session_id, project_id, request.user.id)
        return Response(SessionSerializer(row).data)


class SessionExportView(APIView):
    """GET: One-row CSV of this session with the project's question columns."""
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "view_sessions"

    def get(self, request, project_id, session_id):
        questions, observations = load_export_rows(request.backend, project_id, [session_id])
        return export_session(request.access.session, observations, questions).as_response()


class SessionDetailsExportView(APIView):
    """GET: Detail CSV (alias, creator, times, duration, one column per answer)."""
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "view_sessions"

    def get(self, request, project_id, session_id):
        session = request.access.session
        observations = load_session_observations(request.backend, project_id, session_id)
        creator = get_session_creator(request.backend, session)
        return export_session_details(session, observations, creator).as_response()
