"""
apps.config_server.services package.
"""
from .config_service import ConfigService, build_config_service  # noqa: F401
from .environment import Environment, PropertySource, ResolutionRequest  # noqa: F401
