"""DRF exception handler producing ``{"detail": CODE, "message": text}`` bodies."""

import json
import logging

from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.common.errors import DomainError, InvariantViolation

logger = logging.getLogger("orders")


def api_exception_handler(exc, context):
    """Render domain errors, pydantic validation errors and DRF errors uniformly.

    Provider error text never reaches this point: the orchestrator stores it
    and raises a ``ProviderUnavailable`` with a generic message instead.
    """
    if isinstance(exc, DomainError):
        if isinstance(exc, InvariantViolation):
            logger.error("invariant violation", extra={"code": exc.code, "error": exc.message})
        return Response({"detail": exc.code, "message": exc.message}, status=exc.status_code)

    if isinstance(exc, ValidationError):
        return Response(
            {
                "detail": "VALIDATION_ERROR",
                "message": "Request body is invalid",
                "errors": json.loads(exc.json(include_url=False)),
            },
            status=status.HTTP_400_BAD_REQUEST,
        )

    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict) and "detail" in response.data:
        code = str(getattr(exc, "default_code", "error")).upper()
        response.data = {"detail": code, "message": str(response.data["detail"])}
    return response
