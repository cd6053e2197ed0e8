"""
Configuration models and loading.

Values are layered with increasing precedence: built-in defaults, the
configuration file (YAML or JSON), ``PXCLEAN_*`` environment variables, then
explicit overrides such as CLI flags.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from pxclean.models import ResourceKind, RunMode
from .exceptions import ConfigError, ValidationError
from . import validators

logger = logging.getLogger(__name__)

ENV_PREFIX = "PXCLEAN_"

# Environment variable suffix -> dotted config key
ENV_KEYS = {
    "PROXMOX_HOST": "proxmox.host",
    "PROXMOX_TOKEN": "proxmox.token",
    "PROXMOX_NODE": "proxmox.node_id",
    "DRY_RUN": "cleanup.dry_run",
    "RESOURCE_TYPES": "cleanup.resource_types",
    "PROTECTED_PATTERNS": "cleanup.protected_patterns",
    "BACKUP_ENABLED": "cleanup.backup_enabled",
    "BACKUP_PATH": "cleanup.backup_path",
    "DOCKER_HOST": "cleanup.docker_host",
    "VERBOSE": "reporting.verbose",
    "LOG_PATH": "reporting.log_path",
    "SCHEDULE_ENABLED": "schedule.enabled",
    "SCHEDULE_CRON": "schedule.cron_expression",
    "SCHEDULE_TIMEZONE": "schedule.timezone",
    "WEBHOOK_URL": "notifications.webhook_url",
}

_LIST_KEYS = {"cleanup.protected_patterns", "notifications.email_recipients"}


def _as_value_error(func, value):
    # pydantic only converts ValueError into field errors
    try:
        return func(value)
    except ValidationError as e:
        raise ValueError(str(e)) from e


class ProxmoxSettings(BaseModel):
    """Connection settings for a Proxmox node. Empty host means local Docker."""

    host: str = Field(default="", description="Proxmox host address")
    token: str = Field(default="", description="Credentials as user@realm:password")
    node_id: str = Field(default="pve", description="Proxmox node name")

    @field_validator("token")
    @classmethod
    def _check_token(cls, value: str) -> str:
        if value:
            _as_value_error(validators.validate_token, value)
        return value

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.token)


class CleanupSettings(BaseModel):
    dry_run: bool = Field(default=False, description="Preview instead of removing")
    resource_types: List[ResourceKind] = Field(
        default_factory=lambda: list(ResourceKind),
        description="Kinds eligible for removal",
    )
    protected_patterns: List[str] = Field(default_factory=list)
    backup_enabled: bool = True
    backup_path: str = "./backups"
    docker_host: Optional[str] = Field(default=None, description="Docker daemon address passed as -H")

    @field_validator("resource_types", mode="before")
    @classmethod
    def _parse_kinds(cls, value: Any) -> List[ResourceKind]:
        return _as_value_error(validators.parse_resource_kinds, value)

    @field_validator("protected_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [p.strip() for p in value if p and p.strip()]

    @property
    def mode(self) -> RunMode:
        return RunMode.PREVIEW if self.dry_run else RunMode.DESTRUCTIVE


class ReportingSettings(BaseModel):
    verbose: bool = False
    log_path: str = "./logs"


class ScheduleSettings(BaseModel):
    """Recurring cleanup schedule."""

    enabled: bool = False
    cron_expression: str = Field(default="0 2 * * *", description="Five-field cron expression")
    dry_run: bool = False
    timezone: str = "UTC"
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=60.0, ge=0, description="Seconds between retries")

    @field_validator("cron_expression")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        return _as_value_error(validators.validate_cron, value)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return _as_value_error(validators.validate_timezone, value)


class NotificationSettings(BaseModel):
    enabled: bool = False
    on_success: bool = True
    on_failure: bool = True
    on_start: bool = False
    webhook_url: Optional[str] = None
    email_recipients: List[str] = Field(default_factory=list)
    slack_channel: Optional[str] = None

    @field_validator("webhook_url")
    @classmethod
    def _check_webhook(cls, value: Optional[str]) -> Optional[str]:
        if value:
            _as_value_error(validators.validate_webhook_url, value)
        return value or None

    @field_validator("email_recipients", mode="before")
    @classmethod
    def _split_recipients(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [r.strip() for r in value if r and r.strip()]


class AppConfig(BaseModel):
    """Root configuration."""

    proxmox: ProxmoxSettings = Field(default_factory=ProxmoxSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _set_dotted(data: Dict[str, Any], key: str, value: Any):
    section, _, field = key.partition(".")
    target = data.setdefault(section, {})
    if not isinstance(target, dict):
        raise ConfigError(f"Configuration section {section!r} must be a mapping")
    target[field] = value


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    found = {}
    for suffix, key in ENV_KEYS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None or value == "":
            continue
        found[key] = value.split(",") if key in _LIST_KEYS else value
    return found


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """
    Load and validate configuration.

    Args:
        path: Optional YAML or JSON file.
        overrides: Dotted keys such as ``cleanup.dry_run``; None values are ignored.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        AppConfig: The validated configuration.

    Raises:
        ConfigError: If the file is missing or unreadable.
        ValidationError: If a value is invalid.
    """
    data: Dict[str, Any] = _read_file(Path(path)) if path else {}
    if path:
        logger.debug("Loaded configuration from %s", path)

    for key, value in _env_overrides(os.environ if environ is None else environ).items():
        _set_dotted(data, key, value)
    for key, value in (overrides or {}).items():
        if value is not None:
            _set_dotted(data, key, value)

    try:
        return AppConfig.model_validate(data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid configuration: {problems}") from e
