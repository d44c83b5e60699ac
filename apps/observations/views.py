from django.db import transaction
from rest_framework import permissions, status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.enums import AccessRole
from apps.core.exceptions import PermissionDeniedError
from apps.core.permissions import HasProjectAccess
from .serializers import ObservationReadSerializer, ObservationWriteSerializer, VoiceUploadSerializer
from .services import load_session_observations, record_observation, store_voice_recording


def _ensure_can_answer(request):
    """Answers are written by the session's creator; project managers may correct them."""
    session = request.access.session
    if session.get("user_id") != request.user.id and request.access.role not in (AccessRole.OWNER, AccessRole.ADMIN):
        raise PermissionDeniedError("Solo el creador de la sesión puede registrar respuestas")
    return session


class ObservationListCreateView(APIView):
    """
    GET: Answers of the session, oldest first, with a display rendering.
    POST: Record (or replace) the answer to one question.
    """
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability_by_method = {"GET": "view_sessions", "POST": "edit_observations"}

    def get(self, request, project_id, session_id):
        rows = load_session_observations(request.backend, project_id, session_id)
        data = ObservationReadSerializer(rows, many=True).data
        return Response({"count": len(data), "results": data})

    @transaction.atomic
    def post(self, request, project_id, session_id):
        session = _ensure_can_answer(request)
        ser = ObservationWriteSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        row = record_observation(
            request.backend,
            project_id=project_id,
            session=session,
            question_id=ser.validated_data["question_id"],
            response=ser.validated_data.get("response"),
            user_id=request.user.id,
            alias=ser.validated_data.get("alias"),
        )
        return Response(ObservationReadSerializer(row).data, status=status.HTTP_201_CREATED)


class VoiceRecordingView(APIView):
    """POST multipart (question_id, file): store a recording as the answer of a voice question."""
    permission_classes = [permissions.IsAuthenticated, HasProjectAccess]
    required_capability = "edit_observations"
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request, project_id, session_id):
        session = _ensure_can_answer(request)
        ser = VoiceUploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        row = store_voice_recording(
            request.backend,
            project_id=project_id,
            session=session,
            question_id=ser.validated_data["question_id"],
            upload=ser.validated_data["file"],
            user_id=request.user.id,
        )
        return Response(ObservationReadSerializer(row).data, status=status.HTTP_201_CREATED)
