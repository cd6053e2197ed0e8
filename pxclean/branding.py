"""
Console output helpers.

All user-facing terminal output goes through the shared rich console.
"""

from rich.console import Console
from rich.panel import Panel

from pxclean import __version__

VERSION = __version__

console = Console()

_STATUS_STYLES = {
    "info": ("cyan", "●"),
    "success": ("green", "✓"),
    "warning": ("yellow", "⚠"),
    "error": ("red", "✗"),
}


def cx_print(message: str, status: str = "info"):
    """Print a status-prefixed line. Unknown statuses print as info."""
    color, icon = _STATUS_STYLES.get(status, _STATUS_STYLES["info"])
    console.print(f"[{color}]{icon}[/{color}] {message}")


def cx_header(title: str):
    console.print()
    console.print(f"[bold cyan]━━━ {title} ━━━[/bold cyan]")
    console.print()


def show_banner(show_version: bool = False):
    subtitle = f"v{VERSION}" if show_version else None
    console.print(
        Panel(
            "[bold]pxclean[/bold]  [dim]Docker resource cleanup for Proxmox hosts[/dim]",
            subtitle=subtitle,
            border_style="cyan",
            expand=False,
        )
    )
