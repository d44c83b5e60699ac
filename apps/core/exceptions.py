from __future__ import annotations

import logging
from typing import Optional

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class ObservaError(Exception):
    """Base for errors whose message is shown to the user as-is."""

    default_message = "Error interno del servidor"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(ObservaError):
    default_message = "Usuario no autenticado"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(ObservaError):
    default_message = "Recurso no encontrado"
    status_code = status.HTTP_404_NOT_FOUND


class EmptyInputError(ObservaError):
    default_message = "No hay sesiones para exportar"
    status_code = status.HTTP_400_BAD_REQUEST


class ValidationError(ObservaError):
    default_message = "Datos inválidos"
    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDeniedError(ObservaError):
    default_message = "Sin acceso"
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(ObservaError):
    default_message = "Conflicto con el estado actual"
    status_code = status.HTTP_409_CONFLICT


class BackendError(ObservaError):
    """A read or write against the data store failed."""

    default_message = "Error al acceder a los datos"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.code = code
        super().__init__(message)

    def wrap(self, prefix: str) -> "BackendError":
        return BackendError(f"{prefix}: {self.message}", code=self.code)


class RowNotFoundError(BackendError):
    """`single` read matched zero rows."""

    default_message = "No se encontró el registro"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="not_found")


def exception_handler(exc, context):
    """Render ObservaError as {"detail": message}; defer everything else to DRF."""
    if isinstance(exc, ObservaError):
        if isinstance(exc, BackendError):
            logger.error("Backend failure: %s", exc.message, extra={"code": exc.code})
        return Response({"detail": exc.message}, status=exc.status_code)
    return drf_exception_handler(exc, context)
