"""
common.health
~~~~~~~~~~~~~
GET /health/ – liveness + readiness probe.

Returns:
    200  {"status": "ok",       "repository": "ok", "revisions": <n>}
    503  {"status": "degraded", "repository": "error: <msg>"} – repository unreachable
"""
import structlog
from django.http import JsonResponse

from apps.config_server.apps import get_config_service
from apps.config_server.exceptions import SourceUnavailable

logger = structlog.get_logger(__name__)


def health_check(request):
    """Return service health including configuration repository reachability."""
    payload: dict
    http_status: int

    try:
        info = get_config_service().health()
        payload = {"status": "ok", "repository": "ok", "revisions": info["revisions"]}
        http_status = 200
    except SourceUnavailable as exc:
        payload = {"status": "degraded", "repository": f"error: {exc.detail}"}
        http_status = 503
        logger.error("health_check_repository_failure", error=exc.detail)

    return JsonResponse(payload, status=http_status)
