"""
Docker client driven through the ``docker`` CLI.

Commands run through a host adapter, so the same client works against the
local daemon or, via ProxmoxHost, against the daemon on a Proxmox node.
Inspect output is converted to Resource records by the pure
``*_from_inspect`` functions below.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pxclean.exceptions import (
    CleanupError,
    ConnectivityError,
    RemovalError,
    ResourceInUseError,
    ResourceNotFoundError,
    SizeEstimationError,
)
from pxclean.host import LocalHost
from pxclean.models import (
    ContainerDetails,
    ContainerStatus,
    ImageDetails,
    NetworkDetails,
    Resource,
    ResourceKind,
    VolumeDetails,
    utcnow,
)

logger = logging.getLogger(__name__)

UNTAGGED_IMAGE = "<none>:<none>"

_CONNECTIVITY_MARKERS = (
    "cannot connect to the docker daemon",
    "error during connect",
    "is the docker daemon running",
    "command not found",
    "permission denied while trying to connect",
)
_IN_USE_MARKERS = (
    "in use",
    "is being used",
    "is using its referenced image",
    "conflict",
    "active endpoints",
)
_NOT_FOUND_MARKERS = ("no such", "not found")

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_docker_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp from docker, tolerating nanoseconds."""
    if not value or value.startswith("0001-01-01"):
        return None
    text = _FRACTION_RE.sub(r"\1", value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable docker timestamp: %s", value)
        return None


def classify_error(message: str, exit_code: int = 1) -> CleanupError:
    """Map docker CLI error output to the matching exception."""
    lowered = message.lower()
    if exit_code == 127 or any(marker in lowered for marker in _CONNECTIVITY_MARKERS):
        return ConnectivityError(message.strip() or "Docker daemon unreachable")
    if any(marker in lowered for marker in _IN_USE_MARKERS):
        return ResourceInUseError(message.strip())
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ResourceNotFoundError(message.strip())
    return RemovalError(message.strip() or f"docker exited with code {exit_code}")


def _container_status(state: str) -> ContainerStatus:
    if state == "running":
        return ContainerStatus.RUNNING
    if state == "exited":
        return ContainerStatus.EXITED
    return ContainerStatus.STOPPED


def container_from_inspect(data: Dict[str, Any]) -> Resource:
    container_id = data["Id"]
    state = data.get("State") or {}
    labels = (data.get("Config") or {}).get("Labels") or {}
    mounts = [
        m["Name"] for m in data.get("Mounts") or [] if m.get("Type") == "volume" and m.get("Name")
    ]
    return Resource(
        id=container_id,
        name=(data.get("Name") or "").lstrip("/") or container_id[:12],
        kind=ResourceKind.CONTAINER,
        details=ContainerDetails(
            status=_container_status(state.get("Status", "")),
            image_id=data.get("Image", ""),
            mounted_volume_names=tuple(mounts),
        ),
        size_bytes=max(0, int(data.get("SizeRw") or 0)),
        created_at=parse_docker_time(data.get("Created")) or utcnow(),
        last_used_at=parse_docker_time(state.get("FinishedAt")),
        tags=frozenset(labels),
    )


def image_from_inspect(data: Dict[str, Any]) -> Resource:
    repo_tags = data.get("RepoTags") or []
    name = repo_tags[0] if repo_tags else UNTAGGED_IMAGE
    repository, _, tag = name.rpartition(":")
    labels = (data.get("Config") or {}).get("Labels") or {}
    return Resource(
        id=data["Id"],
        name=name,
        kind=ResourceKind.IMAGE,
        details=ImageDetails(repository=repository, tag=tag),
        size_bytes=max(0, int(data.get("Size") or 0)),
        created_at=parse_docker_time(data.get("Created")) or utcnow(),
        last_used_at=parse_docker_time((data.get("Metadata") or {}).get("LastTagTime")),
        tags=frozenset(labels),
    )


def volume_from_inspect(data: Dict[str, Any]) -> Resource:
    name = data["Name"]
    return Resource(
        id=name,
        name=name,
        kind=ResourceKind.VOLUME,
        details=VolumeDetails(mount_point=data.get("Mountpoint", "")),
        created_at=parse_docker_time(data.get("CreatedAt")) or utcnow(),
        tags=frozenset(data.get("Labels") or {}),
    )


def network_from_inspect(data: Dict[str, Any]) -> Resource:
    return Resource(
        id=data["Id"],
        name=data.get("Name", data["Id"]),
        kind=ResourceKind.NETWORK,
        details=NetworkDetails(
            driver=data.get("Driver", ""),
            connected_container_ids=tuple((data.get("Containers") or {}).keys()),
        ),
        created_at=parse_docker_time(data.get("Created")) or utcnow(),
        tags=frozenset(data.get("Labels") or {}),
    )


class DockerClient:
    """
    Async Docker client over the docker CLI.

    Args:
        host: Host adapter that runs the commands. Defaults to LocalHost.
        docker_host: Optional daemon address passed as ``-H``.
    """

    def __init__(self, host=None, docker_host: Optional[str] = None):
        self.host = host or LocalHost()
        self.docker_host = docker_host
        self._connected = False

    async def _run_docker_command(self, args: List[str]):
        argv = ["docker"]
        if self.docker_host:
            argv += ["-H", self.docker_host]
        return await self.host.run(argv + args)

    async def _checked(self, args: List[str]) -> str:
        result = await self._run_docker_command(args)
        if not result.success:
            raise classify_error(result.stderr or result.stdout, result.exit_code)
        return result.stdout

    async def _inspect(self, args: List[str], ids: List[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        result = await self._run_docker_command(args + ids)
        try:
            data = json.loads(result.stdout) if result.stdout.strip() else []
        except json.JSONDecodeError:
            data = None
        if not result.success:
            error = classify_error(result.stderr, result.exit_code)
            # Objects removed between listing and inspecting are simply absent
            if isinstance(error, ResourceNotFoundError) and data is not None:
                logger.debug("Skipping vanished objects: %s", result.stderr.strip())
                return data
            raise error
        if data is None:
            raise ConnectivityError(f"Unexpected docker inspect output: {result.stdout[:200]!r}")
        return data

    @staticmethod
    def _ids(stdout: str) -> List[str]:
        seen = []
        for line in stdout.splitlines():
            line = line.strip()
            if line and line not in seen:
                seen.append(line)
        return seen

    async def connect(self):
        """
        Verify that the daemon answers.

        Raises:
            ConnectivityError: If the daemon cannot be reached.
        """
        result = await self._run_docker_command(["version", "--format", "{{.Server.Version}}"])
        if not result.success:
            self._connected = False
            raise ConnectivityError(
                f"Docker daemon unreachable: {result.stderr.strip() or result.stdout.strip()}"
            )
        self._connected = True
        logger.info("Connected to Docker %s", result.stdout.strip())

    async def is_connected(self) -> bool:
        return self._connected

    async def list_containers(self, include_stopped: bool = True) -> List[Resource]:
        args = ["ps", "-q", "--no-trunc"] + (["-a"] if include_stopped else [])
        ids = self._ids(await self._checked(args))
        data = await self._inspect(["container", "inspect", "--size"], ids)
        return [container_from_inspect(item) for item in data]

    async def list_images(self) -> List[Resource]:
        ids = self._ids(await self._checked(["image", "ls", "-q", "--no-trunc"]))
        data = await self._inspect(["image", "inspect"], ids)
        return [image_from_inspect(item) for item in data]

    async def list_volumes(self) -> List[Resource]:
        names = self._ids(await self._checked(["volume", "ls", "-q"]))
        data = await self._inspect(["volume", "inspect"], names)
        return [volume_from_inspect(item) for item in data]

    async def list_networks(self) -> List[Resource]:
        ids = self._ids(await self._checked(["network", "ls", "-q", "--no-trunc"]))
        data = await self._inspect(["network", "inspect"], ids)
        return [network_from_inspect(item) for item in data]

    async def remove_container(self, container_id: str):
        await self._checked(["rm", container_id])

    async def remove_image(self, image_id: str):
        await self._checked(["rmi", image_id])

    async def remove_volume(self, name: str):
        await self._checked(["volume", "rm", name])

    async def remove_network(self, network_id: str):
        await self._checked(["network", "rm", network_id])

    async def remove(self, resource: Resource):
        """Remove a resource with the kind-specific call."""
        if resource.kind is ResourceKind.CONTAINER:
            await self.remove_container(resource.id)
        elif resource.kind is ResourceKind.IMAGE:
            await self.remove_image(resource.id)
        elif resource.kind is ResourceKind.VOLUME:
            await self.remove_volume(resource.id)
        elif resource.kind is ResourceKind.NETWORK:
            await self.remove_network(resource.id)
        else:
            raise ValueError(f"Unknown resource kind: {resource.kind!r}")

    async def container_size(self, container_id: str) -> int:
        """Writable layer size of a container (SizeRw)."""
        stdout = await self._checked(
            ["container", "inspect", "--size", "--format", "{{.SizeRw}}", container_id]
        )
        return self._parse_int(stdout, container_id)

    async def image_size(self, image_id: str) -> int:
        stdout = await self._checked(["image", "inspect", "--format", "{{.Size}}", image_id])
        return self._parse_int(stdout, image_id)

    @staticmethod
    def _parse_int(stdout: str, resource_id: str) -> int:
        text = stdout.strip()
        if text in ("", "<no value>"):
            return 0
        try:
            return int(text)
        except ValueError as e:
            raise SizeEstimationError(f"Unexpected size for {resource_id}: {text!r}") from e
