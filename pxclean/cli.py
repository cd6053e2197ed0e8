import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from rich.table import Table

from pxclean.backup import BackupRecorder
from pxclean.branding import VERSION, console, cx_header, cx_print, show_banner
from pxclean.clients.docker import DockerClient
from pxclean.clients.proxmox import ProxmoxClient
from pxclean.config import AppConfig, ConfigError, load_config
from pxclean.exceptions import CleanupError
from pxclean.filters import ResourceFilter
from pxclean.host import LocalHost, ProxmoxHost
from pxclean.models import Report, ResourceKind, RunMode
from pxclean.notifications import NotificationService
from pxclean.orchestrator import CleanupOrchestrator
from pxclean.reporter import Reporter, setup_logging
from pxclean.scanner import ResourceScanner
from pxclean.scheduler import CleanupScheduler
from pxclean.sizing import SizeAccountant, format_bytes, sort_descending

logger = logging.getLogger(__name__)


class PxcleanCLI:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def _debug(self, message: str):
        """Print debug info only in verbose mode"""
        if self.verbose:
            console.print(f"[dim][DEBUG] {message}[/dim]")

    def _load(self, args: argparse.Namespace, extra: Optional[Dict[str, Any]] = None) -> AppConfig:
        overrides = {
            "reporting.verbose": True if self.verbose else None,
            "reporting.log_path": getattr(args, "log_path", None),
            "proxmox.host": getattr(args, "proxmox_host", None),
            "proxmox.token": getattr(args, "proxmox_token", None),
            "proxmox.node_id": getattr(args, "proxmox_node", None),
            "cleanup.docker_host": getattr(args, "docker_host", None),
            "cleanup.resource_types": getattr(args, "types", None),
            "cleanup.protected_patterns": getattr(args, "protect", None),
        }
        overrides.update(extra or {})
        config = load_config(getattr(args, "config", None), overrides)
        setup_logging(config.reporting.log_path, config.reporting.verbose)
        return config

    def _host(self, config: AppConfig):
        if config.proxmox.enabled:
            self._debug(f"Using Proxmox node {config.proxmox.node_id} on {config.proxmox.host}")
            client = ProxmoxClient(config.proxmox.host, config.proxmox.token, config.proxmox.node_id)
            return ProxmoxHost(client)
        return LocalHost()

    def _orchestrator(self, config: AppConfig) -> CleanupOrchestrator:
        host = self._host(config)
        docker_client = DockerClient(host=host, docker_host=config.cleanup.docker_host)
        return CleanupOrchestrator(
            docker_client,
            settings=config.cleanup,
            sizer=SizeAccountant(docker_client=docker_client, host=host),
            backup_recorder=BackupRecorder(config.cleanup.backup_path, host=config.proxmox.host or None),
            reporter=Reporter(config.reporting.log_path),
            host=host,
        )

    def _print_report(self, orchestrator: CleanupOrchestrator, report: Report):
        console.print(orchestrator.reporter.generate_summary(report))
        console.print()
        if report.details.errors:
            cx_print(f"Completed with {len(report.details.errors)} error(s)", "warning")
        elif report.mode is RunMode.PREVIEW:
            cx_print("Dry run complete. Nothing was removed.", "success")
        else:
            cx_print("Cleanup complete.", "success")

    def cleanup(self, args: argparse.Namespace, force_dry_run: bool = False) -> int:
        extra = {
            "cleanup.dry_run": True if (force_dry_run or getattr(args, "dry_run", False)) else None,
            "cleanup.backup_enabled": getattr(args, "backup", None),
            "cleanup.backup_path": getattr(args, "backup_path", None),
        }
        config = self._load(args, extra)
        mode = config.cleanup.mode

        show_banner()
        cx_header("Dry Run" if mode is RunMode.PREVIEW else "Cleanup")
        if mode is RunMode.DESTRUCTIVE:
            cx_print("Unused resources will be permanently removed.", "warning")
            if config.cleanup.backup_enabled:
                cx_print(f"Backups go to {config.cleanup.backup_path}", "info")
            else:
                cx_print("Backups are disabled for this run.", "warning")

        orchestrator = self._orchestrator(config)
        try:
            report = asyncio.run(orchestrator.execute(mode))
        except CleanupError as e:
            cx_print(f"Cleanup failed: {e}", "error")
            return 1

        self._print_report(orchestrator, report)
        if mode is RunMode.DESTRUCTIVE and report.details.errors:
            return 1
        return 0

    async def _collect(self, config: AppConfig):
        host = self._host(config)
        docker_client = DockerClient(host=host, docker_host=config.cleanup.docker_host)
        await docker_client.connect()
        scanner = ResourceScanner(docker_client)
        batches = await asyncio.gather(*(scanner.scan(kind) for kind in ResourceKind))
        resources = [r for batch in batches for r in batch]
        sizer = SizeAccountant(docker_client=docker_client, host=host)
        return await sizer.refresh_sizes(resources)

    def list_resources(self, args: argparse.Namespace) -> int:
        config = self._load(args)
        resource_filter = ResourceFilter(
            config.cleanup.protected_patterns, config.cleanup.resource_types
        )
        try:
            resources = asyncio.run(self._collect(config))
        except CleanupError as e:
            cx_print(f"Failed to list resources: {e}", "error")
            return 1

        resources = [r for r in resources if resource_filter.is_kind_allowed(r.kind)]
        if args.sort_by_size:
            resources = sort_descending(resources)

        cx_header("Unused Resources")
        if not resources:
            cx_print("No unused resources found.", "success")
            return 0

        table = Table(show_header=True, header_style="bold cyan", box=None)
        table.add_column("Kind", style="green")
        table.add_column("Name")
        table.add_column("ID", style="dim")
        table.add_column("Size", justify="right")
        table.add_column("Created")
        table.add_column("Status")

        protected = set(r.id for r in resource_filter.protected(resources))
        for resource in resources:
            status = "[yellow]protected[/yellow]" if resource.id in protected else "candidate"
            table.add_row(
                resource.kind.value,
                resource.name,
                resource.id[:19],
                format_bytes(resource.size_bytes),
                resource.created_at.strftime("%Y-%m-%d %H:%M"),
                status,
            )
        console.print(table)
        console.print()

        eligible = [r for r in resources if r.id not in protected]
        cx_print(
            f"{len(eligible)} of {len(resources)} resources eligible for removal "
            f"({format_bytes(sum(r.size_bytes for r in eligible))})",
            "info",
        )
        return 0

    def validate_config(self, args: argparse.Namespace) -> int:
        try:
            config = load_config(args.config)
        except ConfigError as e:
            cx_print(f"Configuration is invalid: {e}", "error")
            return 1

        cx_print(f"Configuration {args.config} is valid", "success")
        table = Table(show_header=True, header_style="bold cyan", box=None)
        table.add_column("Setting", style="green")
        table.add_column("Value")
        table.add_row("Proxmox host", config.proxmox.host or "(local docker)")
        table.add_row("Node", config.proxmox.node_id)
        table.add_row("Mode", config.cleanup.mode.value)
        table.add_row("Resource types", ", ".join(k.value for k in config.cleanup.resource_types))
        table.add_row("Protected patterns", ", ".join(config.cleanup.protected_patterns) or "-")
        table.add_row("Backups", config.cleanup.backup_path if config.cleanup.backup_enabled else "disabled")
        table.add_row("Log path", config.reporting.log_path)
        table.add_row(
            "Schedule",
            config.schedule.cron_expression if config.schedule.enabled else "disabled",
        )
        console.print(table)

        if args.test_notifications:
            if NotificationService(config.notifications).test_connection():
                cx_print("Test notification sent", "success")
            else:
                cx_print("Test notification failed", "error")
                return 1
        return 0

    def backups(self, args: argparse.Namespace) -> int:
        config = self._load(args, {"cleanup.backup_path": args.backup_path})
        recorder = BackupRecorder(config.cleanup.backup_path)
        action = getattr(args, "backups_action", None)

        if action == "show":
            try:
                backup = recorder.load_backup(args.name)
            except CleanupError as e:
                cx_print(str(e), "error")
                return 1
            cx_header(f"Backup {args.name}")
            console.print(f"Created:   {backup.timestamp.isoformat()}")
            console.print(f"Host:      {backup.metadata.host}")
            console.print(f"Resources: {backup.metadata.resource_count}")
            console.print(f"Size:      {format_bytes(backup.metadata.total_size_bytes)}")
            console.print()
            table = Table(show_header=True, header_style="bold cyan", box=None)
            table.add_column("Kind", style="green")
            table.add_column("Name")
            table.add_column("Size", justify="right")
            for resource in backup.resources:
                table.add_row(resource.kind.value, resource.name, format_bytes(resource.size_bytes))
            console.print(table)
            return 0

        names = recorder.list_backups()
        if not names:
            cx_print(f"No backups in {recorder.backup_dir}", "info")
            return 0
        cx_header("Backups")
        for name in names:
            console.print(f"  {name}")
        return 0

    def schedule(self, args: argparse.Namespace) -> int:
        extra = {
            "schedule.enabled": True,
            "schedule.cron_expression": args.cron,
            "schedule.dry_run": True if args.dry_run else None,
            "schedule.timezone": args.timezone,
        }
        config = self._load(args, extra)
        scheduler = CleanupScheduler(
            self._orchestrator(config),
            config.schedule,
            NotificationService(config.notifications),
        )

        if args.run_now:
            try:
                report = scheduler.run_now()
            except CleanupError as e:
                cx_print(f"Scheduled cleanup failed: {e}", "error")
                return 1
            self._print_report(scheduler.orchestrator, report)
            return 0

        scheduler.start()
        status = scheduler.status()
        cx_print(f"Scheduler running: {config.schedule.cron_expression} ({config.schedule.timezone})", "success")
        if status.next_run:
            cx_print(f"Next run: {status.next_run.isoformat()}", "info")
        cx_print("Press Ctrl+C to stop.", "info")
        try:
            scheduler.wait()
        finally:
            scheduler.stop()
        return 0


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-c", "--config", help="Path to configuration file (YAML or JSON)")
    parser.add_argument("--log-path", help="Directory for logs and reports")
    parser.add_argument("--proxmox-host", help="Proxmox host address")
    parser.add_argument("--proxmox-token", help="Proxmox credentials (user@realm:password)")
    parser.add_argument("--proxmox-node", help="Proxmox node name")
    parser.add_argument("--docker-host", help="Docker daemon address (e.g. tcp://10.0.0.5:2375)")


def _add_selection_arguments(parser: argparse.ArgumentParser):
    parser.add_argument(
        "-t",
        "--types",
        help="Comma-separated resource types (containers,images,volumes,networks or all)",
    )
    parser.add_argument(
        "-p", "--protect", help="Comma-separated protection patterns (name, glob, tag:, id:)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pxclean",
        description="Find and safely remove unused Docker resources on a Proxmox host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pxclean dry-run                               # Preview what would be removed
  pxclean cleanup --types containers,images     # Remove unused containers and images
  pxclean cleanup --protect "db-*,tag:keep"     # Never touch matching resources
  pxclean list --types volumes                  # Show unused volumes
  pxclean backups show <file>                   # Inspect a backup

Environment Variables:
  PXCLEAN_PROXMOX_HOST    Proxmox host address
  PXCLEAN_PROXMOX_TOKEN   Proxmox credentials (user@realm:password)
  PXCLEAN_DRY_RUN         Preview instead of removing (true/false)
        """,
    )
    parser.add_argument("--version", "-V", action="version", version=f"pxclean {VERSION}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    cleanup_parser = subparsers.add_parser("cleanup", help="Remove unused Docker resources")
    _add_common_arguments(cleanup_parser)
    _add_selection_arguments(cleanup_parser)
    cleanup_parser.add_argument(
        "-d", "--dry-run", action="store_true", help="Preview without removing anything"
    )
    cleanup_parser.add_argument(
        "-b",
        "--backup",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Create a backup before removal (default: enabled)",
    )
    cleanup_parser.add_argument("--backup-path", help="Backup directory")

    dry_run_parser = subparsers.add_parser("dry-run", help="Preview a cleanup run")
    _add_common_arguments(dry_run_parser)
    _add_selection_arguments(dry_run_parser)

    list_parser = subparsers.add_parser("list", help="List unused resources")
    _add_common_arguments(list_parser)
    _add_selection_arguments(list_parser)
    list_parser.add_argument(
        "--sort-by-size",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Sort largest first (default: enabled)",
    )

    validate_parser = subparsers.add_parser("validate-config", help="Validate a configuration file")
    validate_parser.add_argument("-c", "--config", default="./config.yaml", help="Configuration file")
    validate_parser.add_argument(
        "--test-notifications", action="store_true", help="Send a test notification"
    )

    backups_parser = subparsers.add_parser("backups", help="Inspect cleanup backups")
    _add_common_arguments(backups_parser)
    backups_parser.add_argument("--backup-path", help="Backup directory")
    backups_subs = backups_parser.add_subparsers(dest="backups_action", help="Backup actions")
    backups_subs.add_parser("list", help="List backups, most recent first")
    show_parser = backups_subs.add_parser("show", help="Show the contents of a backup")
    show_parser.add_argument("name", help="Backup filename or path")

    schedule_parser = subparsers.add_parser("schedule", help="Run cleanups on a cron schedule")
    _add_common_arguments(schedule_parser)
    _add_selection_arguments(schedule_parser)
    schedule_parser.add_argument("--cron", help="Cron expression (default from config)")
    schedule_parser.add_argument("--timezone", help="Timezone for the cron expression")
    schedule_parser.add_argument("-d", "--dry-run", action="store_true", help="Scheduled runs only preview")
    schedule_parser.add_argument(
        "--run-now", action="store_true", help="Run one scheduled cleanup immediately and exit"
    )

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        show_banner(show_version=True)
        parser.print_help()
        return 0

    cli = PxcleanCLI(verbose=args.verbose)

    try:
        if args.command == "cleanup":
            return cli.cleanup(args)
        elif args.command == "dry-run":
            return cli.cleanup(args, force_dry_run=True)
        elif args.command == "list":
            return cli.list_resources(args)
        elif args.command == "validate-config":
            return cli.validate_config(args)
        elif args.command == "backups":
            return cli.backups(args)
        elif args.command == "schedule":
            return cli.schedule(args)
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\n❌ Operation cancelled", file=sys.stderr)
        return 130
    except ConfigError as e:
        cx_print(f"Configuration error: {e}", "error")
        return 1
    except (ValueError, OSError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
