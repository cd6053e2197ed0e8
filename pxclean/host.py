"""
Host adapters for command execution and disk-space queries.

LocalHost talks to the machine pxclean runs on. ProxmoxHost routes the same
calls through the Proxmox node API so the cleanup can target a remote node.
"""

import asyncio
import logging
import shlex

import psutil

from pxclean.models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0


class LocalHost:
    """Runs commands and disk queries on the local machine."""

    def __init__(self, timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.timeout = timeout

    async def run(self, argv: list[str]) -> CommandResult:
        """Run a command without a shell and capture its output."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandResult("", f"{argv[0]}: command not found", 127)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return CommandResult("", f"Timed out after {self.timeout}s: {shlex.join(argv)}", 124)

        return CommandResult(
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
            proc.returncode,
        )

    async def disk_free(self, path: str = "/") -> int:
        """Return free bytes on the filesystem holding path."""
        usage = await asyncio.to_thread(psutil.disk_usage, path)
        return int(usage.free)


class ProxmoxHost:
    """Runs commands on a Proxmox node through its API."""

    def __init__(self, client):
        self.client = client

    async def run(self, argv: list[str]) -> CommandResult:
        return await asyncio.to_thread(self.client.execute_command, shlex.join(argv))

    async def disk_free(self, path: str = "/") -> int:
        result = await self.run(["df", "-B1", "--output=avail", path])
        if not result.success:
            raise OSError(f"df failed on remote host: {result.stderr.strip()}")
        return parse_df_available(result.stdout)


def parse_df_available(stdout: str) -> int:
    """
    Parse the available-bytes column printed by ``df --output=avail``.

    Raises:
        ValueError: If no numeric value is found.
    """
    for line in reversed(stdout.strip().splitlines()):
        value = line.strip()
        if value.isdigit():
            return int(value)
    raise ValueError(f"Unexpected df output: {stdout!r}")
