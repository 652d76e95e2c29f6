"""
common.exceptions
~~~~~~~~~~~~~~~~~
Centralised DRF exception handler and base exception classes.

Every :class:`AppError` renders as ``{"code": ..., "detail": ...}`` with the
error's HTTP status.  Transient errors (503) also carry ``Retry-After`` so
config clients back off instead of hammering an unreachable repository.
"""
import structlog
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base application error.  Subclass to define domain-specific errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"
    default_detail: str = "An error occurred."
    #: Seconds a client should wait before retrying; ``None`` for permanent errors.
    retry_after: int | None = None

    def __init__(self, detail: str | None = None, code: str | None = None) -> None:
        self.detail = detail or self.default_detail
        self.code = code or self.default_code
        super().__init__(self.detail)

    def __str__(self) -> str:
        return self.detail


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"
    default_detail = "The requested resource was not found."


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "validation_error"
    default_detail = "Validation failed."


class ServiceUnavailableError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "service_unavailable"
    default_detail = "A backing service is unavailable."
    retry_after = 5


def custom_exception_handler(exc: Exception, context: dict) -> Response | None:
    """
    Global DRF exception handler.
    Converts AppError subclasses to JSON responses and delegates everything
    else to the default DRF handler so standard DRF exceptions still work.
    """
    view = context.get("view")
    view_name = type(view).__name__ if view is not None else None

    if isinstance(exc, AppError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "app_error",
            code=exc.code,
            detail=exc.detail,
            status_code=exc.status_code,
            view=view_name,
        )
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return Response(
            {"code": exc.code, "detail": exc.detail},
            status=exc.status_code,
            headers=headers,
        )

    response = drf_exception_handler(exc, context)
    if response is not None:
        logger.warning(
            "drf_error",
            detail=response.data,
            status_code=response.status_code,
            view=view_name,
        )
    else:
        logger.exception("unhandled_exception", view=view_name, exc_info=exc)

    return response
