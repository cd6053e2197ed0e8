"""
Scheduled cleanup runs.

Each schedule runs in its own daemon thread that sleeps until the next cron
fire time and then runs one orchestration pass with ``asyncio.run``. Runs never
overlap: a task that fires while another run is in progress waits for it. Setting
the task's stop event interrupts the wait.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from pxclean.config import ScheduleSettings
from pxclean.cron import CronExpression
from pxclean.models import Report, RunMode
from pxclean.notifications import NotificationMessage, NotificationType
from pxclean.sizing import format_bytes

logger = logging.getLogger(__name__)

MAIN_TASK = "main"
STOP_JOIN_TIMEOUT = 5


@dataclass
class SchedulerStatus:
    running: bool
    next_run: Optional[datetime]
    tasks_count: int


@dataclass
class ScheduledTask:
    name: str
    cron: CronExpression
    one_time: bool = False
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    next_run: Optional[datetime] = None


class CleanupScheduler:
    """
    Runs cleanups on a cron schedule.

    Args:
        orchestrator: CleanupOrchestrator used for each run.
        settings: Schedule settings.
        notifier: Optional NotificationService.
    """

    def __init__(self, orchestrator, settings: ScheduleSettings, notifier=None):
        self.orchestrator = orchestrator
        self.settings = settings
        self.notifier = notifier
        self._tasks: Dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()
        # Held for the whole of a run; tasks that fire together queue behind it
        self._run_lock = threading.Lock()

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.settings.timezone)

    def _notify(self, message_type: NotificationType, title: str, message: str, data=None):
        if self.notifier is None:
            return
        try:
            self.notifier.send_notification(
                NotificationMessage(type=message_type, title=title, message=message, data=data)
            )
        except Exception as e:
            logger.warning("Failed to send %r notification: %s", title, e)

    def start(self):
        """
        Start the main schedule if enabled.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        if not self.settings.enabled:
            logger.info("Scheduler is disabled")
            return
        cron = CronExpression.parse(self.settings.cron_expression)
        logger.info(
            "Starting cleanup scheduler: cron=%r dry_run=%s timezone=%s",
            cron.text,
            self.settings.dry_run,
            self.settings.timezone,
        )
        self._start_task(ScheduledTask(name=MAIN_TASK, cron=cron))
        self._notify(
            NotificationType.INFO,
            "Cleanup Scheduler Started",
            f"Scheduled cleanup will run: {cron.text}",
        )

    def stop(self):
        logger.info("Stopping cleanup scheduler")
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for task in tasks:
            task.stop_event.set()
            if task.thread is not None and task.thread is not threading.current_thread():
                task.thread.join(timeout=STOP_JOIN_TIMEOUT)
            logger.info("Stopped scheduled task: %s", task.name)
        self._notify(
            NotificationType.INFO,
            "Cleanup Scheduler Stopped",
            "Scheduled cleanup operations have been stopped",
        )

    def status(self) -> SchedulerStatus:
        with self._lock:
            main = self._tasks.get(MAIN_TASK)
            count = len(self._tasks)
        next_run = None
        if main is not None:
            next_run = main.cron.next_fire(datetime.now(self.timezone), self.timezone)
        return SchedulerStatus(running=main is not None, next_run=next_run, tasks_count=count)

    def update_schedule(self, **changes):
        """Stop, apply setting changes, and restart if still enabled."""
        logger.info("Updating schedule configuration: %s", changes)
        self.stop()
        self.settings = ScheduleSettings.model_validate({**self.settings.model_dump(), **changes})
        if self.settings.enabled:
            self.start()

    def schedule_one_time(self, cron_expression: str, name: str = "one_time"):
        """
        Run a single cleanup at the next time matching cron_expression.

        Raises:
            ValueError: If the cron expression is invalid or the name is taken.
        """
        cron = CronExpression.parse(cron_expression)
        with self._lock:
            if name in self._tasks:
                raise ValueError(f"Task already scheduled: {name}")
        logger.info("Scheduling one-time cleanup %s at %r", name, cron.text)
        self._start_task(ScheduledTask(name=name, cron=cron, one_time=True))

    def wait(self, timeout: Optional[float] = None):
        """Block until the main task's thread exits."""
        with self._lock:
            main = self._tasks.get(MAIN_TASK)
        if main is not None and main.thread is not None:
            main.thread.join(timeout)

    def run_now(self) -> Report:
        """Run one scheduled cleanup in this thread, after any run already in progress."""
        with self._run_lock:
            return asyncio.run(self.execute_scheduled_cleanup())

    async def execute_scheduled_cleanup(self) -> Report:
        """
        Run one cleanup, retrying failed runs.

        Raises:
            Exception: The last error when every attempt failed.
        """
        attempts = self.settings.max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            logger.info("Starting scheduled cleanup (attempt %d/%d)", attempt, attempts)
            try:
                if self.settings.dry_run:
                    report = await self.orchestrator.execute_dry_run()
                else:
                    report = await self.orchestrator.execute_cleanup()
            except Exception as e:
                last_error = e
                logger.error("Scheduled cleanup attempt %d failed: %s", attempt, e)
                if attempt < attempts:
                    await asyncio.sleep(self.settings.retry_delay)
                continue

            logger.info(
                "Scheduled cleanup completed: mode=%s removed=%d freed=%s",
                report.mode.value,
                report.summary.removed_count,
                format_bytes(report.summary.space_freed_bytes),
            )
            self._notify(
                NotificationType.SUCCESS,
                "Scheduled Cleanup Completed",
                self._success_message(report),
                data={"report": report.to_dict()["summary"]},
            )
            return report

        self._notify(
            NotificationType.ERROR,
            "Scheduled Cleanup Failed",
            f"Cleanup failed: {last_error}",
            data={"error": str(last_error), "attempts": attempts},
        )
        raise last_error

    @staticmethod
    def _success_message(report: Report) -> str:
        verb = "would be" if report.mode is RunMode.PREVIEW else "were"
        message = (
            f"{report.summary.removed_count} resources {verb} removed, "
            f"{format_bytes(report.summary.space_freed_bytes)} freed"
        )
        if report.details.errors:
            message += f" ({len(report.details.errors)} errors)"
        return message

    def _start_task(self, task: ScheduledTask):
        with self._lock:
            previous = self._tasks.get(task.name)
            self._tasks[task.name] = task
        if previous is not None:
            previous.stop_event.set()
        task.thread = threading.Thread(
            target=self._run_loop, args=(task,), name=f"pxclean-{task.name}", daemon=True
        )
        task.thread.start()

    def _discard(self, task: ScheduledTask):
        with self._lock:
            if self._tasks.get(task.name) is task:
                del self._tasks[task.name]

    def _run_loop(self, task: ScheduledTask):
        tz = self.timezone
        while not task.stop_event.is_set():
            fire = task.cron.next_fire(datetime.now(tz), tz)
            task.next_run = fire
            delay = (fire - datetime.now(tz)).total_seconds()
            if task.stop_event.wait(max(0.0, delay)):
                break
            try:
                self.run_now()
            except Exception as e:
                logger.error("Scheduled task %s failed: %s", task.name, e)
            if task.one_time:
                self._discard(task)
                logger.info("One-time task completed and removed: %s", task.name)
                break
