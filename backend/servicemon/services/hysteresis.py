"""Retry/hysteresis state machine for official monitor status."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from .classifier import DOWN

PENDING = "pending"
MAINTENANCE = "maintenance"


@dataclass
class MonitorState:
    """Per-monitor runtime state owned by the scheduler."""
    status: str = PENDING  # last official status
    consecutive_failures: int = 0
    last_check: Optional[datetime] = None
    # Official status before the pending stretch that follows maintenance
    resumed_from: Optional[str] = None


@dataclass(frozen=True)
class Transition:
    """An official status change."""
    monitor_id: int
    old_status: str
    new_status: str

    @property
    def is_initial(self) -> bool:
        """First status after the monitor was (re)registered; never notified."""
        return self.old_status == PENDING


class HysteresisTracker:
    """Turns a stream of classified results into official status transitions.

    Down results must repeat ``retries`` times in a row before the official
    status becomes down. Degraded and up results are reported immediately and
    reset the failure counter. Maintenance parks the monitor without
    emitting anything; the next live check starts with a clean counter.
    """

    def __init__(self):
        self._states: Dict[int, MonitorState] = {}

    def get(self, monitor_id: int) -> Optional[MonitorState]:
        return self._states.get(monitor_id)

    def reset(self, monitor_id: int) -> None:
        """Start over from pending, e.g. after (re)registration or a config change."""
        self._states[monitor_id] = MonitorState()

    def discard(self, monitor_id: int) -> None:
        self._states.pop(monitor_id, None)

    def enter_maintenance(self, monitor_id: int) -> None:
        state = self._states.setdefault(monitor_id, MonitorState())
        state.status = MAINTENANCE
        state.consecutive_failures = 0
        state.last_check = datetime.utcnow()

    def leave_maintenance(self, monitor_id: int) -> None:
        """Clear the failure counter; a parked monitor shows pending until its next transition."""
        state = self._states.get(monitor_id)
        if state is None:
            return
        state.consecutive_failures = 0
        if state.status == MAINTENANCE:
            state.status = PENDING
            state.resumed_from = MAINTENANCE

    def observe(self, monitor_id: int, status: str, retries: int) -> Optional[Transition]:
        """Feed one classified result; returns a Transition when the official status changes."""
        state = self._states.setdefault(monitor_id, MonitorState())
        if state.status == MAINTENANCE:
            self.leave_maintenance(monitor_id)
        state.last_check = datetime.utcnow()

        if status == DOWN:
            state.consecutive_failures += 1
            if state.consecutive_failures < max(1, retries):
                # Still absorbing a possibly transient failure
                return None
        else:
            state.consecutive_failures = 0

        if status == state.status:
            return None

        transition = Transition(monitor_id=monitor_id, old_status=state.resumed_from or state.status, new_status=status)
        state.status = status
        state.resumed_from = None
        return transition
