"""
Validators for configuration values.
"""

import re
from typing import Iterable, List
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pxclean.cron import CronExpression
from pxclean.models import ResourceKind
from .exceptions import ValidationError

_TOKEN_RE = re.compile(r"^[^@:\s]+@[^@:\s]+:.+$")

_KIND_ALIASES = {
    "container": ResourceKind.CONTAINER,
    "containers": ResourceKind.CONTAINER,
    "image": ResourceKind.IMAGE,
    "images": ResourceKind.IMAGE,
    "volume": ResourceKind.VOLUME,
    "volumes": ResourceKind.VOLUME,
    "network": ResourceKind.NETWORK,
    "networks": ResourceKind.NETWORK,
}


def parse_resource_kinds(values: Iterable) -> List[ResourceKind]:
    """
    Convert singular or plural kind names to ResourceKind values.

    Accepts a comma-separated string or an iterable of names. Duplicates are
    dropped, order is kept.

    Raises:
        ValidationError: If a name is not a known resource kind.
    """
    if isinstance(values, str):
        values = values.split(",")
    kinds: List[ResourceKind] = []
    for value in values:
        if isinstance(value, ResourceKind):
            kind = value
        else:
            name = str(value).strip().lower()
            if not name:
                continue
            if name == "all":
                kinds.extend(k for k in ResourceKind if k not in kinds)
                continue
            if name not in _KIND_ALIASES:
                raise ValidationError(
                    f"Invalid resource type: {value!r}. "
                    f"Expected one of: containers, images, volumes, networks"
                )
            kind = _KIND_ALIASES[name]
        if kind not in kinds:
            kinds.append(kind)
    return kinds


def validate_cron(expression: str) -> str:
    try:
        CronExpression.parse(expression)
    except ValueError as e:
        raise ValidationError(f"Invalid cron expression: {e}") from e
    return expression.strip()


def validate_token(token: str) -> str:
    """Proxmox credentials must look like user@realm:password."""
    if not token or not _TOKEN_RE.match(token):
        raise ValidationError("Invalid Proxmox token format: expected user@realm:password")
    return token


def validate_webhook_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid webhook URL: {url!r}")
    return url


def validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}") from e
    return name
