"""Clients for the Docker daemon and the Proxmox API."""

from pxclean.clients.docker import DockerClient
from pxclean.clients.proxmox import ProxmoxClient

__all__ = ["DockerClient", "ProxmoxClient"]
