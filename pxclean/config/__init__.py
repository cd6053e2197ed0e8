"""
Configuration for pxclean.

Settings are pydantic models loaded from YAML or JSON, layered with
``PXCLEAN_*`` environment variables and CLI overrides.
"""

from .exceptions import ConfigError, ValidationError
from .loader import (
    AppConfig,
    CleanupSettings,
    NotificationSettings,
    ProxmoxSettings,
    ReportingSettings,
    ScheduleSettings,
    load_config,
)

__all__ = [
    "AppConfig",
    "CleanupSettings",
    "ConfigError",
    "NotificationSettings",
    "ProxmoxSettings",
    "ReportingSettings",
    "ScheduleSettings",
    "ValidationError",
    "load_config",
]
