"""
Size accounting for cleanup candidates.

Sizes are best-effort. A failed query falls back to the size already recorded
on the resource (containers, images) or to zero (volumes), and never aborts a
run. Networks occupy no disk space.
"""

import asyncio
import logging
import re
from collections.abc import Iterable

from pxclean.models import Resource, ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.05

_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}
_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?I?B)?\s*$", re.IGNORECASE)


def parse_size(text: str) -> int:
    """
    Parse a size string such as '1.5GB', '512 MB' or '2048' into bytes.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    match = _SIZE_RE.match(text)
    if not match:
        raise ValueError(f"Invalid size: {text!r}")
    value = float(match.group(1))
    unit = (match.group(2) or "B").upper().replace("IB", "B")
    return int(value * _UNITS[unit])


def format_bytes(num_bytes: int) -> str:
    """Format a byte count for humans, e.g. 1536 -> '1.5 KB'."""
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    if index == 0:
        return f"{num_bytes} B"
    return f"{round(value, 2):g} {units[index]}"


def verify_freed(predicted: int, actual: int, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """
    Check that the observed space freed is close to the prediction.

    Args:
        predicted: Bytes expected to be reclaimed.
        actual: Bytes observed as reclaimed.
        tolerance: Allowed relative difference.

    Returns:
        bool: True when predicted is 0 and actual is non-negative, or when
        the relative difference is within tolerance.
    """
    if predicted == 0:
        return actual >= 0
    return abs(predicted - actual) / predicted <= tolerance


def sort_descending(resources: Iterable[Resource]) -> list[Resource]:
    """Largest first. Ties keep their original order."""
    return sorted(resources, key=lambda r: r.size_bytes, reverse=True)


def recorded_total(resources: Iterable[Resource]) -> int:
    """Sum of the sizes already recorded on the resources."""
    return sum(r.size_bytes for r in resources)


class SizeAccountant:
    """
    Computes and refreshes per-resource byte sizes.

    Args:
        docker_client: Client used for container and image size queries.
        host: Host adapter used for volume ``du`` and disk-free queries.
        tolerance: Default tolerance for verify_freed.
    """

    def __init__(self, docker_client=None, host=None, tolerance: float = DEFAULT_TOLERANCE):
        self.docker_client = docker_client
        self.host = host
        self.tolerance = tolerance

    async def size_of(self, resource: Resource) -> int:
        if resource.kind is ResourceKind.CONTAINER:
            return await self._container_size(resource)
        if resource.kind is ResourceKind.IMAGE:
            return await self._image_size(resource)
        if resource.kind is ResourceKind.VOLUME:
            return await self._volume_size(resource)
        if resource.kind is ResourceKind.NETWORK:
            return 0
        raise ValueError(f"Unknown resource kind: {resource.kind!r}")

    async def total_size(self, resources: Iterable[Resource]) -> int:
        sizes = await asyncio.gather(*(self.size_of(r) for r in resources))
        return sum(sizes)

    async def refresh_sizes(self, resources: Iterable[Resource]) -> list[Resource]:
        """Return new resources carrying accurate sizes, in the same order."""
        resources = list(resources)
        sizes = await asyncio.gather(*(self.size_of(r) for r in resources))
        return [r.with_size(size) for r, size in zip(resources, sizes)]

    def sort_descending(self, resources: Iterable[Resource]) -> list[Resource]:
        return sort_descending(resources)

    def verify_freed(self, predicted: int, actual: int, tolerance: float | None = None) -> bool:
        return verify_freed(predicted, actual, self.tolerance if tolerance is None else tolerance)

    async def disk_free(self, path: str = "/") -> int | None:
        """Free bytes on the host, or None when there is no host or the query fails."""
        if self.host is None:
            return None
        try:
            return await self.host.disk_free(path)
        except Exception as e:
            logger.warning("Disk space query failed: %s", e)
            return None

    async def _container_size(self, resource: Resource) -> int:
        if self.docker_client is None:
            return resource.size_bytes
        try:
            size = await self.docker_client.container_size(resource.id)
        except Exception as e:
            logger.debug("Container size query failed for %s: %s", resource.name, e)
            return resource.size_bytes
        return size if size is not None and size >= 0 else resource.size_bytes

    async def _image_size(self, resource: Resource) -> int:
        if self.docker_client is None:
            return resource.size_bytes
        try:
            size = await self.docker_client.image_size(resource.id)
        except Exception as e:
            logger.debug("Image size query failed for %s: %s", resource.name, e)
            return resource.size_bytes
        return size if size is not None and size >= 0 else resource.size_bytes

    async def _volume_size(self, resource: Resource) -> int:
        mount_point = resource.details.mount_point
        if self.host is None or not mount_point:
            return 0
        try:
            result = await self.host.run(["du", "-sb", mount_point])
            if not result.success:
                logger.debug("du failed for volume %s: %s", resource.name, result.stderr.strip())
                return 0
            return int(result.stdout.split()[0])
        except Exception as e:
            logger.debug("Volume size query failed for %s: %s", resource.name, e)
            return 0
