"""
Core middleware.
"""

from collections.abc import Callable
from uuid import UUID, uuid4

from django.http import HttpRequest, HttpResponse

from apps.core.logging import bind_contextvars, clear_contextvars

CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware:
    """
    Attaches a correlation ID to every request.

    Reuses the client's ``X-Correlation-ID`` header when it is a valid UUID,
    otherwise generates one. The ID is set on ``request.correlation_id``,
    bound into the structlog context as ``trace_id`` and echoed on the response.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        correlation_id = self._extract(request) or uuid4()
        request.correlation_id = correlation_id  # type: ignore[attr-defined]

        clear_contextvars()
        bind_contextvars(correlation_id=str(correlation_id))
        try:
            response = self.get_response(request)
        finally:
            clear_contextvars()

        response[CORRELATION_ID_HEADER] = str(correlation_id)
        return response

    @staticmethod
    def _extract(request: HttpRequest) -> UUID | None:
        raw = request.headers.get(CORRELATION_ID_HEADER)
        if not raw:
            return None
        try:
            return UUID(raw)
        except ValueError:
            return None
