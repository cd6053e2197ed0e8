"""
Resource scanner and the in-use safety oracle.

Usage is always derived from the full container list, stopped containers
included, so an image or volume referenced by a stopped container is never
reported as unused.
"""

import logging
from dataclasses import replace

from pxclean.exceptions import ConnectivityError
from pxclean.models import ContainerStatus, Resource, ResourceKind

logger = logging.getLogger(__name__)

RESERVED_NETWORKS = frozenset({"bridge", "host", "none"})

UNUSED_CONTAINER_STATUSES = frozenset({ContainerStatus.STOPPED, ContainerStatus.EXITED})


class ResourceScanner:
    """
    Lists unused Docker resources and re-checks usage before removal.

    Args:
        docker_client: Client exposing list_containers, list_images,
            list_volumes and list_networks.
    """

    def __init__(self, docker_client):
        self.docker_client = docker_client
        self._container_snapshot: list[Resource] = []

    @property
    def container_snapshot(self) -> list[Resource]:
        """Containers from the last successful listing."""
        return list(self._container_snapshot)

    async def _list(self, method, what: str) -> list[Resource]:
        try:
            return list(await method())
        except ConnectivityError:
            raise
        except Exception as e:
            raise ConnectivityError(f"Failed to list {what}: {e}") from e

    async def _load_containers(self) -> list[Resource]:
        containers = await self._list(
            lambda: self.docker_client.list_containers(include_stopped=True), "containers"
        )
        self._container_snapshot = containers
        return containers

    async def scan(self, kind: ResourceKind) -> list[Resource]:
        """Return unused resources of the given kind."""
        if kind is ResourceKind.CONTAINER:
            return await self.scan_containers()
        if kind is ResourceKind.IMAGE:
            return await self.scan_images()
        if kind is ResourceKind.VOLUME:
            return await self.scan_volumes()
        if kind is ResourceKind.NETWORK:
            return await self.scan_networks()
        raise ValueError(f"Unknown resource kind: {kind!r}")

    async def scan_containers(self) -> list[Resource]:
        containers = await self._load_containers()
        unused = [c for c in containers if c.details.status in UNUSED_CONTAINER_STATUSES]
        logger.info("Found %d unused containers out of %d", len(unused), len(containers))
        return unused

    async def scan_images(self) -> list[Resource]:
        containers = await self._load_containers()
        images = await self._list(self.docker_client.list_images, "images")
        unused = []
        for image in images:
            users = tuple(c.id for c in containers if c.details.image_id == image.id)
            if users:
                continue
            unused.append(image.with_details(replace(image.details, used_by_container_ids=users)))
        logger.info("Found %d unused images out of %d", len(unused), len(images))
        return unused

    async def scan_volumes(self) -> list[Resource]:
        containers = await self._load_containers()
        volumes = await self._list(self.docker_client.list_volumes, "volumes")
        unused = []
        for volume in volumes:
            users = tuple(
                c.id for c in containers if volume.name in c.details.mounted_volume_names
            )
            if users:
                continue
            unused.append(volume.with_details(replace(volume.details, used_by_container_ids=users)))
        logger.info("Found %d unused volumes out of %d", len(unused), len(volumes))
        return unused

    async def scan_networks(self) -> list[Resource]:
        networks = await self._list(self.docker_client.list_networks, "networks")
        unused = [
            n
            for n in networks
            if n.name not in RESERVED_NETWORKS and not n.details.connected_container_ids
        ]
        logger.info("Found %d unused networks out of %d", len(unused), len(networks))
        return unused

    async def is_in_use(self, resource: Resource) -> bool:
        """
        Re-check usage against freshly loaded state.

        A resource that no longer exists is reported as not in use; the
        subsequent removal reports it as not found.

        Raises:
            ConnectivityError: If the live state cannot be loaded.
        """
        kind = resource.kind
        if kind is ResourceKind.CONTAINER:
            for container in await self._load_containers():
                if container.id == resource.id:
                    return container.details.status is ContainerStatus.RUNNING
            return False
        if kind is ResourceKind.IMAGE:
            containers = await self._load_containers()
            return any(c.details.image_id == resource.id for c in containers)
        if kind is ResourceKind.VOLUME:
            containers = await self._load_containers()
            return any(resource.name in c.details.mounted_volume_names for c in containers)
        if kind is ResourceKind.NETWORK:
            if resource.name in RESERVED_NETWORKS:
                return True
            for network in await self._list(self.docker_client.list_networks, "networks"):
                if network.id == resource.id:
                    return bool(network.details.connected_container_ids)
            return False
        raise ValueError(f"Unknown resource kind: {kind!r}")
