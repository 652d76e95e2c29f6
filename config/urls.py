"""
Root URL configuration for the config server.

The config server routes are mounted at the root, as config clients expect
``/{application}/{profile}``; fixed paths are listed before them.
"""
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from common.health import health_check

urlpatterns = [
    # Health check
    path("health/", health_check, name="health-check"),

    # OpenAPI schema & Swagger UI
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path(
        "api/docs/",
        SpectacularSwaggerView.as_view(url_name="schema"),
        name="swagger-ui",
    ),

    # Config server routes
    path("", include("apps.config_server.urls")),
]
