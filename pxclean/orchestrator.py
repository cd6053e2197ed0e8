"""
Cleanup orchestration.

One call to ``execute`` drives a single run through the state machine:

    IDLE -> CONNECTING -> SCANNING -> FILTERING -> SIZING -> [BACKING_UP]
         -> REMOVING -> [VERIFYING] -> REPORTING -> DONE

Any fatal error or cancellation moves the run to REPORTING, where a report
with whatever was processed so far plus the fatal error is written, and then
to FAILED; the error is re-raised. Removal is strictly sequential, with the
in-use check repeated immediately before each resource is acted on.
"""

import asyncio
import logging
import time
from typing import List, Optional

from pxclean.backup import BackupRecorder
from pxclean.config import CleanupSettings
from pxclean.exceptions import BackupError, CleanupError, ResourceInUseError
from pxclean.filters import filter_resources
from pxclean.models import (
    CleanupOutcome,
    ErrorRecord,
    ErrorType,
    Report,
    Resource,
    ResourceKind,
    RunMode,
    RunState,
)
from pxclean.reporter import Reporter
from pxclean.scanner import ResourceScanner
from pxclean.sizing import SizeAccountant, recorded_total

logger = logging.getLogger(__name__)

IN_USE_REASON = "in use"


class CleanupOrchestrator:
    """
    Runs the scan, filter, size, backup, remove, verify and report pipeline.

    Args:
        docker_client: Resource manager client (connect, list_*, remove).
        settings: Cleanup settings. Defaults to CleanupSettings().
        scanner: Resource scanner. Built from docker_client when omitted.
        sizer: Size accountant. Built from docker_client and host when omitted.
        backup_recorder: Backup recorder. Built from settings.backup_path when omitted.
        reporter: Reporting sink. Optional.
        host: Host adapter used for size and disk-free queries.
    """

    def __init__(
        self,
        docker_client,
        settings: Optional[CleanupSettings] = None,
        scanner: Optional[ResourceScanner] = None,
        sizer: Optional[SizeAccountant] = None,
        backup_recorder: Optional[BackupRecorder] = None,
        reporter: Optional[Reporter] = None,
        host=None,
    ):
        self.docker_client = docker_client
        self.settings = settings or CleanupSettings()
        self.scanner = scanner or ResourceScanner(docker_client)
        self.sizer = sizer or SizeAccountant(docker_client=docker_client, host=host)
        self.backup_recorder = backup_recorder or BackupRecorder(self.settings.backup_path)
        self.reporter = reporter
        self._state = RunState.IDLE
        self._history: List[RunState] = [RunState.IDLE]

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def state_history(self) -> List[RunState]:
        return list(self._history)

    def _transition(self, state: RunState):
        logger.debug("Orchestrator state %s -> %s", self._state.value, state.value)
        self._state = state
        self._history.append(state)

    async def execute_cleanup(self) -> Report:
        """Run in the configured mode."""
        return await self.execute()

    async def execute_dry_run(self) -> Report:
        """Run in preview mode regardless of configuration."""
        return await self.execute(RunMode.PREVIEW)

    async def execute(self, mode: Optional[RunMode] = None) -> Report:
        """
        Execute one cleanup run.

        Args:
            mode: PREVIEW or DESTRUCTIVE. Defaults to the configured mode.

        Returns:
            Report: The report of the completed run.

        Raises:
            ConnectivityError: If the Docker daemon cannot be reached.
            BackupError: If the pre-removal backup fails.
        """
        mode = mode or self.settings.mode
        started = time.monotonic()
        self._state = RunState.IDLE
        self._history = [RunState.IDLE]
        if self.reporter:
            self.reporter.log_operation_start(mode, len(self.settings.resource_types))

        scanned: List[Resource] = []
        outcome = CleanupOutcome()
        try:
            self._transition(RunState.CONNECTING)
            await self.docker_client.connect()

            self._transition(RunState.SCANNING)
            scanned = await self._scan_all()

            self._transition(RunState.FILTERING)
            candidates = filter_resources(
                scanned, self.settings.protected_patterns, self.settings.resource_types
            )
            logger.info(
                "%d of %d unused resources eligible after filtering", len(candidates), len(scanned)
            )

            self._transition(RunState.SIZING)
            candidates = self.sizer.sort_descending(await self.sizer.refresh_sizes(candidates))

            if mode is RunMode.DESTRUCTIVE and self.settings.backup_enabled:
                self._transition(RunState.BACKING_UP)
                self._backup(candidates)

            free_before = None
            if mode is RunMode.DESTRUCTIVE:
                free_before = await self.sizer.disk_free()

            self._transition(RunState.REMOVING)
            await self._remove_all(candidates, mode, outcome)

            predicted = recorded_total(outcome.removed)
            space_freed = predicted
            if mode is RunMode.DESTRUCTIVE:
                self._transition(RunState.VERIFYING)
                space_freed = await self._verify(predicted, free_before)
        except (Exception, asyncio.CancelledError) as e:
            self._report_failure(mode, len(scanned), e, started, outcome)
            raise

        self._transition(RunState.REPORTING)
        report = self._build_report(mode, len(scanned), outcome, space_freed, started)
        self._persist(report)
        self._transition(RunState.DONE)
        return report

    async def _scan_all(self) -> List[Resource]:
        results = await asyncio.gather(*(self.scanner.scan(kind) for kind in ResourceKind))
        return [resource for batch in results for resource in batch]

    def _backup(self, candidates: List[Resource]):
        if not candidates:
            logger.info("Nothing to remove, skipping backup")
            return
        result = self.backup_recorder.create_backup(candidates)
        if self.reporter:
            self.reporter.log_backup_operation(
                len(candidates), result.path, result.success, result.error
            )
        if not result.success:
            raise BackupError(result.error or "Backup failed")

    async def _remove_all(self, candidates: List[Resource], mode: RunMode, outcome: CleanupOutcome):
        for resource in candidates:
            step = asyncio.ensure_future(self._process(resource, mode, outcome))
            try:
                await asyncio.shield(step)
            except asyncio.CancelledError:
                # Let the in-flight resource finish and be recorded before stopping
                await step
                raise

    async def _process(self, resource: Resource, mode: RunMode, outcome: CleanupOutcome):
        try:
            in_use = await self.scanner.is_in_use(resource)
        except Exception as e:
            self._record_error(outcome, resource, e, f"Safety check failed for {resource.name}")
            return

        if in_use:
            self._record_skip(outcome, resource, IN_USE_REASON)
            return

        if mode is RunMode.PREVIEW:
            outcome.removed.append(resource)
            logger.info("Would remove %s: %s", resource.kind.value, resource.name)
            return

        try:
            await self.docker_client.remove(resource)
        except ResourceInUseError as e:
            self._record_skip(outcome, resource, f"{IN_USE_REASON}: {e}")
        except Exception as e:
            self._record_error(outcome, resource, e, f"Failed to remove {resource.name}")
        else:
            outcome.removed.append(resource)
            if self.reporter:
                self.reporter.log_resource_removal(resource, True)

    def _record_skip(self, outcome: CleanupOutcome, resource: Resource, reason: str):
        outcome.skipped.append(resource)
        outcome.skip_reasons[resource.id] = reason
        if self.reporter:
            self.reporter.log_resource_skip(resource, reason)
        else:
            logger.info("Skipped %s %s: %s", resource.kind.value, resource.name, reason)

    def _record_error(self, outcome: CleanupOutcome, resource: Resource, error: Exception, prefix: str):
        error_type = error.error_type if isinstance(error, CleanupError) else ErrorType.REMOVAL_FAILURE
        outcome.errors.append(
            ErrorRecord(
                type=error_type,
                message=f"{prefix}: {error}",
                resource=resource,
                recoverable=True,
            )
        )
        if self.reporter:
            self.reporter.log_resource_removal(resource, False, str(error))
        else:
            logger.error("%s: %s", prefix, error)

    async def _verify(self, predicted: int, free_before: Optional[int]) -> int:
        free_after = await self.sizer.disk_free()
        if free_before is None or free_after is None:
            logger.warning(
                "Disk space unavailable, skipping verification and reporting predicted %d bytes",
                predicted,
            )
            return predicted
        actual = max(0, free_after - free_before)
        if not self.sizer.verify_freed(predicted, actual):
            logger.warning(
                "Space freed verification mismatch: predicted %d bytes, observed %d bytes",
                predicted,
                actual,
            )
        return actual

    def _build_report(
        self,
        mode: RunMode,
        scanned: int,
        outcome: CleanupOutcome,
        space_freed: int,
        started: float,
    ) -> Report:
        duration_ms = int((time.monotonic() - started) * 1000)
        if self.reporter:
            return self.reporter.generate_report(mode, scanned, outcome, space_freed, duration_ms)
        # Reporter-less runs still produce a report
        return Reporter.build(mode, scanned, outcome, space_freed, duration_ms)

    def _persist(self, report: Report):
        if not self.reporter:
            return
        try:
            self.reporter.save_report(report)
            self.reporter.save_summary(report)
        except OSError as e:
            logger.error("Failed to persist report: %s", e)
        self.reporter.log_operation_complete(report)

    def _report_failure(
        self,
        mode: RunMode,
        scanned: int,
        error: BaseException,
        started: float,
        outcome: CleanupOutcome,
    ):
        if isinstance(error, asyncio.CancelledError):
            message = "Cleanup run cancelled"
        else:
            message = str(error)
        logger.error("Cleanup run failed during %s: %s", self._state.value, message)
        self._transition(RunState.REPORTING)
        error_type = error.error_type if isinstance(error, CleanupError) else ErrorType.UNKNOWN
        outcome.errors.append(ErrorRecord(type=error_type, message=message, recoverable=False))
        report = self._build_report(mode, scanned, outcome, recorded_total(outcome.removed), started)
        self._persist(report)
        self._transition(RunState.FAILED)
