"""Monitor scheduler - drives one independent check cycle per monitor.

Scheduling Design:
- One APScheduler interval job per monitor (id "monitor_<id>"), so a slow
  probe on one monitor never delays another monitor's tick
- A new job fires immediately, then every interval_seconds
- At most one cycle per monitor is in flight: max_instances=1 on the job
  plus an explicit in-flight guard for cycles started outside APScheduler
- Each registration carries a token; a cycle whose monitor was removed or
  re-registered while it was probing drops its result
"""
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings as default_settings
from ..errors import MonitorNotFoundError, StorageError
from ..schemas.monitor import LiveStatus, PollerStatus, ServiceMonitor
from .classifier import CheckResult, build_check_result
from .hysteresis import HysteresisTracker, Transition
from .maintenance import is_in_maintenance
from .realtime import SERVICE_STATUS_TOPIC, maintenance_topic

logger = logging.getLogger(__name__)


def job_id(monitor_id: int) -> str:
    return f"monitor_{monitor_id}"


class MonitorScheduler:
    """Owns the live monitor set, their timers and their hysteresis state."""

    def __init__(
        self,
        monitors,
        history,
        checker,
        dispatcher,
        broadcaster=None,
        settings=None,
    ):
        self.monitors = monitors
        self.history = history
        self.checker = checker
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.settings = settings or default_settings

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.states = HysteresisTracker()
        self._live: Dict[int, ServiceMonitor] = {}
        self._tokens: Dict[int, object] = {}
        self._in_flight: Set[int] = set()
        self._running = False
        self.last_health_check: Optional[datetime] = None

    async def start(self):
        """Start the scheduler and register every enabled monitor."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self.prune_old_data,
            trigger=IntervalTrigger(minutes=self.settings.prune_interval_minutes),
            id="prune_old_data",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._health_check,
            trigger=IntervalTrigger(seconds=self.settings.health_check_seconds),
            id="health_check",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        self.last_health_check = datetime.utcnow()

        try:
            monitors = await self.monitors.get_enabled_monitors()
        except StorageError as e:
            logger.error(f"Could not load monitors at startup: {e}")
            monitors = []

        for monitor in monitors:
            self.add_monitor(monitor)

        logger.info(f"Scheduler started with {len(self._live)} monitors")

    def stop(self):
        """Stop the scheduler and forget all live monitors."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")
        for monitor_id in list(self._live):
            self._forget(monitor_id)

    def _schedule(self, monitor: ServiceMonitor):
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=monitor.interval_seconds),
            args=[monitor.id],
            id=job_id(monitor.id),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=monitor.interval_seconds,
            next_run_time=datetime.now(self.scheduler.timezone),
        )

    def _unschedule(self, monitor_id: int):
        if self.scheduler is None:
            return
        try:
            self.scheduler.remove_job(job_id(monitor_id))
        except JobLookupError:
            pass

    def _forget(self, monitor_id: int):
        self._live.pop(monitor_id, None)
        self._tokens.pop(monitor_id, None)
        self.states.discard(monitor_id)

    def add_monitor(self, monitor: ServiceMonitor):
        """Register a monitor; its first check runs right away."""
        if not monitor.enabled:
            self.remove_monitor(monitor.id)
            return

        self._live[monitor.id] = monitor
        self._tokens[monitor.id] = object()
        self.states.reset(monitor.id)
        self._schedule(monitor)
        logger.info(f"Monitor scheduled: id={monitor.id} name=\"{monitor.name}\" interval={monitor.interval_seconds}s")

    def update_monitor(self, monitor: ServiceMonitor):
        """Apply a new configuration to a live monitor."""
        if not monitor.enabled:
            self.remove_monitor(monitor.id)
            return

        current = self._live.get(monitor.id)
        if current is None:
            self.add_monitor(monitor)
            return

        self._live[monitor.id] = monitor
        if monitor.interval_seconds != current.interval_seconds:
            self.states.reset(monitor.id)
            self._schedule(monitor)
            logger.info(f"Monitor rescheduled: id={monitor.id} interval={current.interval_seconds}s -> {monitor.interval_seconds}s")
        elif monitor.retries != current.retries:
            self.states.reset(monitor.id)

    def remove_monitor(self, monitor_id: int):
        """Stop checking a monitor. Persisted history is left alone."""
        self._unschedule(monitor_id)
        if monitor_id in self._live:
            self._forget(monitor_id)
            logger.info(f"Monitor unscheduled: id={monitor_id}")

    def is_live(self, monitor_id: int) -> bool:
        return monitor_id in self._live

    async def test_monitor(self, monitor: ServiceMonitor) -> CheckResult:
        """Probe and classify once; no state, history or notifications."""
        outcome = await self.checker.probe(monitor)
        return build_check_result(outcome, monitor)

    async def run_cycle(self, monitor_id: int) -> Optional[CheckResult]:
        """Run one check cycle. Never raises."""
        if monitor_id not in self._live:
            return None
        if monitor_id in self._in_flight:
            logger.warning(f"Previous check for monitor {monitor_id} still running, skipping tick")
            return None

        self._in_flight.add(monitor_id)
        try:
            return await self._check_monitor(monitor_id)
        except Exception as e:
            logger.error(f"Error checking monitor {monitor_id}: {e}", exc_info=True)
            return None
        finally:
            self._in_flight.discard(monitor_id)

    async def _check_monitor(self, monitor_id: int) -> Optional[CheckResult]:
        monitor = self._live[monitor_id]
        token = self._tokens.get(monitor_id)

        if is_in_maintenance(monitor):
            self.states.enter_maintenance(monitor_id)
            try:
                await self.history.update_maintenance_aggregate(monitor_id)
            except StorageError as e:
                logger.error(f"Failed to record maintenance tick for monitor {monitor_id}: {e}")
            return None

        outcome = await self.checker.probe(monitor)

        if self._tokens.get(monitor_id) is not token:
            logger.debug(f"Monitor {monitor_id} was removed during its check, discarding result")
            return None

        # Config may have changed while the probe was running
        monitor = self._live[monitor_id]
        result = build_check_result(outcome, monitor)
        transition = self.states.observe(monitor_id, result.status, monitor.retries)

        try:
            await self.history.record_check(monitor_id, result)
        except StorageError as e:
            logger.error(f"Failed to record check for monitor {monitor_id}: {e}")

        if transition is not None:
            await self._handle_transition(monitor, transition, result)

        logger.debug(f"Monitor {monitor.name}: {result.status}")
        return result

    async def _handle_transition(self, monitor: ServiceMonitor, transition: Transition, result: CheckResult):
        """Publish an official status change and notify interested users."""
        logger.info(f"{monitor.name}: {transition.old_status} -> {transition.new_status}")

        if self.broadcaster is not None:
            try:
                await self.broadcaster.broadcast(SERVICE_STATUS_TOPIC, {
                    "event": "status-change",
                    "monitorId": monitor.id,
                    "oldStatus": transition.old_status,
                    "newStatus": transition.new_status,
                    "errorMessage": result.error_message,
                    "responseTimeMs": result.response_time_ms,
                    "timestamp": datetime.utcnow().isoformat(),
                })
            except Exception as e:
                logger.error(f"Failed to broadcast status change for monitor {monitor.id}: {e}")

        try:
            await self.dispatcher.notify_transition(monitor, transition)
        except Exception as e:
            logger.error(f"Failed to notify status change for monitor {monitor.id}: {e}")

    async def set_maintenance(self, monitor_id: int, enabled: bool) -> ServiceMonitor:
        """Toggle manual maintenance and tell clients and subscribers about it."""
        monitor = await self.monitors.get_monitor_by_id(monitor_id)
        if monitor is None:
            raise MonitorNotFoundError(monitor_id)

        if not await self.monitors.set_monitor_maintenance(monitor_id, enabled):
            raise MonitorNotFoundError(monitor_id)

        monitor = monitor.model_copy(update={"maintenance": enabled})
        if monitor_id in self._live:
            self._live[monitor_id] = monitor
        if not enabled:
            self.states.leave_maintenance(monitor_id)

        if self.broadcaster is not None:
            try:
                await self.broadcaster.trigger_topic_poll(maintenance_topic(monitor.integration_instance_id))
            except Exception as e:
                logger.error(f"Failed to trigger topic poll for monitor {monitor_id}: {e}")

        await self.dispatcher.notify_maintenance(monitor, enabled)
        return monitor

    async def prune_old_data(self):
        """Delete history and aggregates past their retention windows."""
        try:
            await self.history.prune_old_history(self.settings.history_retention_days)
            await self.history.prune_old_aggregates(self.settings.aggregate_retention_days)
        except StorageError as e:
            logger.error(f"Error pruning monitor data: {e}")

    async def _health_check(self):
        """Record a heartbeat and warn about monitors that stopped checking."""
        now = datetime.utcnow()
        self.last_health_check = now
        for monitor_id, monitor in list(self._live.items()):
            state = self.states.get(monitor_id)
            if state is None or state.last_check is None:
                continue
            threshold = max(self.settings.stuck_after_seconds, monitor.interval_seconds * 2)
            elapsed = (now - state.last_check).total_seconds()
            if elapsed > threshold:
                logger.warning(f"Monitor may be stuck: id={monitor_id} seconds_since_check={int(elapsed)}")

    def is_healthy(self) -> bool:
        if not self._running or self.last_health_check is None:
            return False
        age = (datetime.utcnow() - self.last_health_check).total_seconds()
        return age < self.settings.health_check_seconds * 3

    def get_status(self) -> PollerStatus:
        return PollerStatus(
            running=self._running,
            monitor_count=len(self._live),
            last_health_check=self.last_health_check,
        )

    def get_live_status(self, monitor_id: int) -> Optional[LiveStatus]:
        state = self.states.get(monitor_id)
        if state is None:
            return None
        return LiveStatus(
            monitor_id=monitor_id,
            status=state.status,
            consecutive_failures=state.consecutive_failures,
            last_check=state.last_check,
        )
