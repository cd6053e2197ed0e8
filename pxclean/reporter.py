"""
Reporting sink for cleanup runs.

Builds Report records, renders the plain-text summary, persists both to the
log directory and emits the structured run log. Persisted files are never
overwritten: a name collision gets a numeric suffix.
"""

import json
import logging
import logging.handlers
from collections import Counter
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from pxclean.models import CleanupOutcome, Report, ReportSummary, Resource, RunMode, utcnow
from pxclean.sizing import format_bytes

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5
_HANDLER_MARKER = "_pxclean_handler"


def setup_logging(log_path: str = "./logs", verbose: bool = False) -> logging.Logger:
    """
    Configure the ``pxclean`` logger.

    Installs a rich console handler plus two rotating files in log_path:
    ``cleanup.log`` with everything and ``cleanup-error.log`` with errors only.
    Calling it again replaces the handlers it installed before.

    Args:
        log_path: Directory for the log files.
        verbose: Log debug messages to the console.

    Returns:
        logging.Logger: The configured package logger.
    """
    root = logging.getLogger("pxclean")
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    directory = Path(log_path)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    console = RichHandler(show_path=False, rich_tracebacks=verbose)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)

    main_file = logging.handlers.RotatingFileHandler(
        directory / "cleanup.log", maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
    )
    main_file.setLevel(logging.DEBUG if verbose else logging.INFO)
    main_file.setFormatter(formatter)

    error_file = logging.handlers.RotatingFileHandler(
        directory / "cleanup-error.log", maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
    )
    error_file.setLevel(logging.ERROR)
    error_file.setFormatter(formatter)

    for handler in (console, main_file, error_file):
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    return root


def _file_timestamp(report: Report) -> str:
    return report.timestamp.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")


class Reporter:
    """
    Generates, renders and persists cleanup reports.

    Args:
        log_path: Directory where reports and summaries are written.
    """

    def __init__(self, log_path: str = "./logs"):
        self.log_path = Path(log_path)

    @staticmethod
    def build(
        mode: RunMode,
        scanned: int,
        outcome: CleanupOutcome,
        space_freed: int,
        duration_ms: int,
    ) -> Report:
        return Report(
            timestamp=utcnow(),
            mode=mode,
            summary=ReportSummary(
                scanned=scanned,
                removed_count=len(outcome.removed),
                space_freed_bytes=max(0, int(space_freed)),
                duration_ms=max(0, int(duration_ms)),
            ),
            details=outcome.freeze(),
        )

    def generate_report(
        self,
        mode: RunMode,
        scanned: int,
        outcome: CleanupOutcome,
        space_freed: int,
        duration_ms: int,
    ) -> Report:
        report = self.build(mode, scanned, outcome, space_freed, duration_ms)
        logger.info(
            "Cleanup report generated: mode=%s scanned=%d removed=%d skipped=%d errors=%d",
            mode.value,
            scanned,
            len(outcome.removed),
            len(outcome.skipped),
            len(outcome.errors),
        )
        return report

    def generate_summary(self, report: Report) -> str:
        """Render the human-readable summary of a report."""
        summary, details = report.summary, report.details
        would_be = "Would Be " if report.mode is RunMode.PREVIEW else ""
        lines = [
            f"=== Proxmox Cleanup Report ({report.mode.value.upper()}) ===",
            f"Timestamp: {report.timestamp.isoformat()}",
            "",
            "SUMMARY:",
            f"  Resources Scanned: {summary.scanned}",
            f"  Resources {would_be}Removed: {summary.removed_count}",
            f"  Disk Space {would_be}Freed: {format_bytes(summary.space_freed_bytes)}",
            f"  Execution Time: {summary.duration_ms / 1000:.2f}s",
            "",
        ]

        counts = Counter(r.kind.value for r in details.removed)
        if counts:
            lines.append("RESOURCE BREAKDOWN:")
            for kind, count in counts.items():
                lines.append(f"  {kind.capitalize()}s: {count}")
            lines.append("")

        if details.skipped:
            lines.append("SKIPPED RESOURCES:")
            for resource in details.skipped:
                line = f"  {resource.kind.value}: {resource.name} ({format_bytes(resource.size_bytes)})"
                reason = details.skip_reasons.get(resource.id)
                if reason:
                    line += f" - {reason}"
                lines.append(line)
            lines.append("")

        if details.errors:
            lines.append("ERRORS:")
            for error in details.errors:
                lines.append(f"  {error.type.value}: {error.message}")
                if error.resource is not None:
                    lines.append(f"    Resource: {error.resource.kind.value}/{error.resource.name}")
            lines.append("")

        attempted = summary.removed_count + len(details.skipped) + len(details.errors)
        rate = summary.removed_count / attempted * 100 if attempted else 100.0
        lines.append(f"Success Rate: {rate:.1f}%")
        return "\n".join(lines)

    def _write_exclusive(self, stem: str, suffix: str, content: str) -> Path:
        self.log_path.mkdir(parents=True, exist_ok=True)
        attempt = 0
        while True:
            name = f"{stem}{suffix}" if attempt == 0 else f"{stem}-{attempt}{suffix}"
            path = self.log_path / name
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(content)
                return path
            except FileExistsError:
                attempt += 1

    def save_report(self, report: Report) -> Path:
        """Write the report as JSON. Returns the path written."""
        stem = f"cleanup-report-{report.mode.value}-{_file_timestamp(report)}"
        path = self._write_exclusive(stem, ".json", json.dumps(report.to_dict(), indent=2))
        logger.info("Report saved to %s", path)
        return path

    def save_summary(self, report: Report) -> Path:
        stem = f"cleanup-summary-{report.mode.value}-{_file_timestamp(report)}"
        path = self._write_exclusive(stem, ".txt", self.generate_summary(report))
        logger.info("Summary saved to %s", path)
        return path

    def log_operation_start(self, mode: RunMode, resource_count: int = 0):
        logger.info("Starting %s operation (%d resource kinds)", mode.value, resource_count)

    def log_operation_complete(self, report: Report):
        logger.info(
            "%s operation completed: scanned=%d removed=%d freed=%s duration=%dms errors=%d",
            report.mode.value,
            report.summary.scanned,
            report.summary.removed_count,
            format_bytes(report.summary.space_freed_bytes),
            report.summary.duration_ms,
            len(report.details.errors),
        )

    def log_resource_removal(self, resource: Resource, success: bool, error: Optional[str] = None):
        if success:
            logger.info(
                "Removed %s: %s (%s, %s)",
                resource.kind.value,
                resource.name,
                resource.id,
                format_bytes(resource.size_bytes),
            )
        else:
            logger.error(
                "Failed to remove %s: %s (%s): %s",
                resource.kind.value,
                resource.name,
                resource.id,
                error or "Unknown error",
            )

    def log_resource_skip(self, resource: Resource, reason: str):
        logger.warning("Skipped %s: %s (%s): %s", resource.kind.value, resource.name, resource.id, reason)

    def log_backup_operation(
        self, resource_count: int, backup_path: str, success: bool, error: Optional[str] = None
    ):
        if success:
            logger.info("Backup of %d resources created at %s", resource_count, backup_path)
        else:
            logger.error(
                "Backup of %d resources failed: %s", resource_count, error or "Unknown error"
            )
