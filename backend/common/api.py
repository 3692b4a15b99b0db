"""
Helpers shared by the DRF views.

Domain errors from the services layer become JSON responses of the form

    {"success": false, "error": "<code>", "message": "...", ...detail}

with the HTTP status carried by the exception.
"""

import functools
import logging

from rest_framework.response import Response

from services.exceptions import RideValidationError, RideshareError

logger = logging.getLogger(__name__)


def error_response(exc: RideshareError) -> Response:
    body = {
        "success": False,
        "error": exc.error_code,
        "message": exc.message,
        **exc.detail(),
    }
    return Response(body, status=exc.status_code)


def translate_domain_errors(view_func):
    """Turn RideshareError raised by a view (or method handler) into error_response()."""
    @functools.wraps(view_func)
    def wrapper(*args, **kwargs):
        try:
            return view_func(*args, **kwargs)
        except RideshareError as exc:
            if exc.status_code >= 500:
                logger.error("%s in %s: %s", exc.error_code, view_func.__qualname__, exc.message)
            return error_response(exc)
    return wrapper


def validated_data(serializer_class, data, **kwargs):
    """Run a DRF serializer and raise RideValidationError with one message per field."""
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        errors = {
            field: " ".join(str(message) for message in messages) if isinstance(messages, list) else str(messages)
            for field, messages in serializer.errors.items()
        }
        raise RideValidationError(errors)
    return serializer.validated_data
