"""
Forum error taxonomy and the DRF exception handler.

The core (store, counters, cascade, services) only raises ForumError
subclasses. The handler below translates them into HTTP responses with a
consistent error format.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class ForumError(Exception):
    """Base class for errors raised by the forum core."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFound(ForumError):
    """The referenced forum, topic or comment does not exist."""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, kind, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} does not exist")


class Conflict(ForumError):
    """Unique constraint violated, e.g. a duplicate forum name."""
    status_code = status.HTTP_409_CONFLICT


class InvalidState(ForumError):
    """A caller-supplied precondition does not hold."""
    status_code = status.HTTP_400_BAD_REQUEST


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts forum and Django exceptions to DRF responses
    3. Provides consistent error format
    """

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF handled it, enhance the response
    if response is not None:
        # Ensure consistent format
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, ForumError):
        if isinstance(exc, Conflict):
            logger.warning(f"Conflict: {exc}")
        return Response({'error': str(exc)}, status=exc.status_code)

    # Handle exceptions that DRF doesn't handle
    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    # Log unexpected exceptions
    logger.exception(f"Unhandled exception: {exc}")

    # Return generic error for unexpected exceptions
    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
