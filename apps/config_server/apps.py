"""
apps.config_server.apps
"""
from django.apps import AppConfig, apps
from django.conf import settings


class ConfigServerConfig(AppConfig):
    name = "apps.config_server"
    label = "config_server"
    verbose_name = "Config Server"

    #: Process-wide :class:`~apps.config_server.services.ConfigService`.
    service = None

    def ready(self) -> None:
        from .services import build_config_service  # noqa: PLC0415

        self.service = build_config_service(settings)


def get_config_service():
    """Return the service built at startup."""
    return apps.get_app_config(ConfigServerConfig.label).service
