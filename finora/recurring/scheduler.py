"""
Recurring Transactions Scheduler

A process-wide timer that runs one materialization pass per calendar day.

State machine:
    IDLE --(daily trigger / run_now)--> RUNNING --(pass ends, always)--> IDLE

DESIGN DECISIONS:
- Time is injected. A Clock supplies "now" and sleeping, a DailyTrigger
  supplies the next fire time. Tests drive both without waiting.
- One scheduler per process. Nothing coordinates across processes, so two
  deployed processes can both materialize the same occurrence.
- Not restart-safe. The next fire time is always computed from the
  current time, so triggers missed while the process was down (or while
  a pass overran) are skipped. There is no catch-up.
- A pass that fails never leaves the scheduler RUNNING and is not retried
  until the next trigger.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog

from finora.models.transaction import RunSummary

if TYPE_CHECKING:
    from finora.audit import AuditLogger

logger = structlog.get_logger(__name__)

PassRunner = Callable[[date], Awaitable[RunSummary]]

# Long sleeps are split so wall-clock jumps are noticed
MAX_SLEEP_CHUNK_SECONDS = 60.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


# =============================================================================
# TIME ABSTRACTIONS
# =============================================================================

class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    @abstractmethod
    async def sleep_until(self, moment: datetime) -> None:
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """
    Wall clock.

    With tz=None times are naive system-local, which matches "midnight
    local time" on the host.
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz) if self._tz else datetime.now()

    async def sleep_until(self, moment: datetime) -> None:
        while True:
            remaining = (moment - self.now()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, MAX_SLEEP_CHUNK_SECONDS))


class DailyTrigger:
    """Fires once a day at a fixed local time (default 00:00)."""

    def __init__(self, hour: int = 0, minute: int = 0):
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"Invalid trigger time {hour:02d}:{minute:02d}")
        self.hour = hour
        self.minute = minute

    def next_fire_time(self, after: datetime) -> datetime:
        """First fire time strictly after `after`, in the same timezone."""
        at = time(self.hour, self.minute)
        candidate = datetime.combine(after.date(), at, tzinfo=after.tzinfo)
        if candidate <= after:
            candidate = datetime.combine(after.date() + timedelta(days=1), at, tzinfo=after.tzinfo)
        return candidate

    def __repr__(self) -> str:
        return f"DailyTrigger({self.hour:02d}:{self.minute:02d})"


# =============================================================================
# SCHEDULER
# =============================================================================

class RecurringScheduler:
    """
    Runs the materialization pass on a daily trigger.

    Usage:
        scheduler = RecurringScheduler(flow.run, DailyTrigger(), SystemClock())
        scheduler.start()          # background task on the running loop
        await scheduler.run_now()  # manual pass
        await scheduler.stop()
    """

    def __init__(
        self,
        run_pass: PassRunner,
        trigger: Optional[DailyTrigger] = None,
        clock: Optional[Clock] = None,
        audit_logger: Optional["AuditLogger"] = None,
    ):
        self._run_pass = run_pass
        self._audit_logger = audit_logger
        self._trigger = trigger or DailyTrigger()
        self._clock = clock or SystemClock()
        self._state = SchedulerState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._last_summary: Optional[RunSummary] = None
        self._runs_completed = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def last_summary(self) -> Optional[RunSummary]:
        return self._last_summary

    @property
    def runs_completed(self) -> int:
        return self._runs_completed

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run_time(self) -> datetime:
        return self._trigger.next_fire_time(self._clock.now())

    async def run_now(self, today: Optional[date] = None) -> Optional[RunSummary]:
        """
        Run one pass immediately.

        Returns the pass summary, or None if a pass was already running
        or the pass raised.
        """
        if self._state == SchedulerState.RUNNING:
            logger.warning("recurring_pass_already_running")
            return None

        run_date = today or self._clock.today()
        self._state = SchedulerState.RUNNING
        try:
            summary = await self._run_pass(run_date)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The pass reports its own failures; this only guards the loop
            logger.exception("recurring_pass_crashed", run_date=run_date.isoformat())
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="recurring_pass_crashed",
                    error_message=str(e),
                    details={"run_date": run_date.isoformat()},
                )
            return None
        finally:
            self._state = SchedulerState.IDLE
            self._runs_completed += 1

        self._last_summary = summary
        return summary

    async def run_forever(self, max_runs: Optional[int] = None) -> None:
        """
        Wait for each trigger and run a pass, until cancelled.

        max_runs bounds the number of triggers handled (used by tests).
        """
        handled = 0
        while max_runs is None or handled < max_runs:
            next_run = self.next_run_time()
            logger.info("recurring_pass_scheduled", next_run=next_run.isoformat())
            await self._clock.sleep_until(next_run)
            await self.run_now()
            handled += 1

    def start(self) -> asyncio.Task:
        """Schedule run_forever on the running event loop."""
        if self.is_started:
            return self._task
        self._task = asyncio.create_task(self.run_forever(), name="recurring-scheduler")
        logger.info(
            "recurring_scheduler_started",
            trigger=repr(self._trigger),
            next_run=self.next_run_time().isoformat(),
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the background task. A running pass is cancelled with it."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("recurring_scheduler_stopped")
