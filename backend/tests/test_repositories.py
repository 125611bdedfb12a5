"""Tests for monitor and history persistence."""
import asyncio
import time
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from servicemon.errors import InvalidMonitorConfigError
from servicemon.models import Monitor, MonitorAggregate, MonitorHistory, MonitorShare, Setting
from servicemon.schemas.monitor import MaintenanceSchedule, MonitorCreate, MonitorUpdate
from servicemon.services.classifier import CheckResult
from servicemon.utils.db_utils import hour_start


async def count_rows(session_factory, model, **filters):
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(model, name) == value)
        return (await session.execute(stmt)).scalar_one()


class TestMonitorRepository:
    @pytest.mark.asyncio
    async def test_create_applies_global_defaults(self, monitor_repo):
        monitor = await monitor_repo.create_monitor(MonitorCreate(owner_id="admin", name="Web", url="http://x"))
        assert monitor.id is not None
        assert monitor.interval_seconds == 60
        assert monitor.timeout_seconds == 10
        assert monitor.retries == 3
        assert monitor.degraded_threshold_ms == 2000
        assert monitor.expected_status_codes == ["200-299"]
        assert monitor.enabled is True
        assert monitor.maintenance is False

    @pytest.mark.asyncio
    async def test_stored_settings_override_defaults(self, monitor_repo, session_factory):
        async with session_factory() as session:
            session.add(Setting(key="monitor_retries", value="5"))
            session.add(Setting(key="monitor_expected_status_codes", value="200, 204"))
            await session.commit()

        monitor = await monitor_repo.create_monitor(MonitorCreate(owner_id="admin", name="Web"))
        assert monitor.retries == 5
        assert monitor.expected_status_codes == ["200", "204"]

    @pytest.mark.asyncio
    async def test_status_codes_normalize_on_create_and_update(self, monitor_repo, make_monitor):
        created = await make_monitor(expected_status_codes="200-299,301")
        assert created.expected_status_codes == ["200-299", "301"]

        other = await make_monitor(name="Other")
        updated = await monitor_repo.update_monitor(other.id, MonitorUpdate(expected_status_codes="200-299, 301"))
        assert updated.expected_status_codes == ["200-299", "301"]

        reloaded = await monitor_repo.get_monitor_by_id(created.id)
        assert reloaded.expected_status_codes == ["200-299", "301"]

    def test_empty_status_codes_rejected_on_update(self):
        with pytest.raises(ValueError):
            MonitorUpdate(expected_status_codes=" , ")

    @pytest.mark.asyncio
    async def test_timeout_must_be_below_interval(self, monitor_repo, make_monitor):
        with pytest.raises(InvalidMonitorConfigError):
            await make_monitor(interval_seconds=10, timeout_seconds=10)

        monitor = await make_monitor(interval_seconds=30, timeout_seconds=5)
        with pytest.raises(InvalidMonitorConfigError):
            await monitor_repo.update_monitor(monitor.id, MonitorUpdate(timeout_seconds=30))
        with pytest.raises(InvalidMonitorConfigError):
            await monitor_repo.update_monitor(monitor.id, MonitorUpdate(interval_seconds=5))

    @pytest.mark.asyncio
    async def test_partial_update_leaves_other_fields(self, monitor_repo, make_monitor):
        monitor = await make_monitor(name="Web", retries=4, notify_degraded=True)
        updated = await monitor_repo.update_monitor(monitor.id, MonitorUpdate(name="Renamed"))
        assert updated.name == "Renamed"
        assert updated.retries == 4
        assert updated.notify_degraded is True
        assert updated.url == monitor.url

    @pytest.mark.asyncio
    async def test_update_schedule_and_flags(self, monitor_repo, make_monitor):
        monitor = await make_monitor()
        schedule = MaintenanceSchedule(frequency="weekly", start_time="01:00", end_time="02:00", weekly_days=[1])
        updated = await monitor_repo.update_monitor(
            monitor.id, MonitorUpdate(maintenance_schedule=schedule, enabled=False)
        )
        assert updated.enabled is False
        assert updated.maintenance_schedule.weekly_days == [1]

        cleared = await monitor_repo.update_monitor(monitor.id, MonitorUpdate(maintenance_schedule=None))
        assert cleared.maintenance_schedule is None

    @pytest.mark.asyncio
    async def test_update_missing_monitor(self, monitor_repo):
        assert await monitor_repo.update_monitor(999, MonitorUpdate(name="x")) is None

    @pytest.mark.asyncio
    async def test_unreadable_json_columns_load_safely(self, monitor_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        async with session_factory() as session:
            await session.execute(
                update(Monitor)
                .where(Monitor.id == monitor.id)
                .values(expected_status_codes="not json", maintenance_schedule="{broken")
            )
            await session.commit()

        reloaded = await monitor_repo.get_monitor_by_id(monitor.id)
        assert reloaded.expected_status_codes == []
        assert reloaded.maintenance_schedule is None

    @pytest.mark.asyncio
    async def test_delete_removes_dependent_rows(self, monitor_repo, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        keep = await make_monitor(name="Keep")
        await history_repo.record_check(monitor.id, CheckResult(status="up", response_time_ms=10))
        await history_repo.record_check(keep.id, CheckResult(status="up", response_time_ms=10))
        await monitor_repo.share_monitor(monitor.id, "bob", notify=True)

        assert await monitor_repo.delete_monitor(monitor.id) is True
        assert await monitor_repo.get_monitor_by_id(monitor.id) is None
        assert await count_rows(session_factory, MonitorHistory, monitor_id=monitor.id) == 0
        assert await count_rows(session_factory, MonitorAggregate, monitor_id=monitor.id) == 0
        assert await count_rows(session_factory, MonitorShare, monitor_id=monitor.id) == 0
        assert await count_rows(session_factory, MonitorHistory, monitor_id=keep.id) == 1

        assert await monitor_repo.delete_monitor(monitor.id) is False

    @pytest.mark.asyncio
    async def test_listing_and_ordering(self, monitor_repo, make_monitor):
        a = await make_monitor(name="A")
        b = await make_monitor(name="B", owner_id="bob")
        c = await make_monitor(name="C", enabled=False, external_id=42)

        await monitor_repo.reorder_monitors([c.id, a.id, b.id])
        assert [m.name for m in await monitor_repo.get_all_monitors()] == ["C", "A", "B"]
        assert [m.name for m in await monitor_repo.get_enabled_monitors()] == ["A", "B"]
        assert [m.name for m in await monitor_repo.get_monitors_by_owner("bob")] == ["B"]
        assert (await monitor_repo.get_monitor_by_external_id(42)).id == c.id

    @pytest.mark.asyncio
    async def test_set_maintenance(self, monitor_repo, make_monitor):
        monitor = await make_monitor()
        assert await monitor_repo.set_monitor_maintenance(monitor.id, True) is True
        assert (await monitor_repo.get_monitor_by_id(monitor.id)).maintenance is True
        assert await monitor_repo.set_monitor_maintenance(999, True) is False

    @pytest.mark.asyncio
    async def test_shares(self, monitor_repo, make_monitor):
        monitor = await make_monitor()
        await monitor_repo.share_monitor(monitor.id, "bob")
        share = await monitor_repo.share_monitor(monitor.id, "bob", notify=True)
        assert share.notify == 1

        shares = await monitor_repo.get_monitor_shares(monitor.id)
        assert [(s.user_id, s.notify) for s in shares] == [("bob", 1)]

        assert await monitor_repo.unshare_monitor(monitor.id, "bob") is True
        assert await monitor_repo.unshare_monitor(monitor.id, "bob") is False


class TestHistoryRepository:
    async def _aggregate(self, session_factory, monitor_id):
        async with session_factory() as session:
            result = await session.execute(
                select(MonitorAggregate).where(MonitorAggregate.monitor_id == monitor_id)
            )
            return result.scalar_one()

    @pytest.mark.asyncio
    async def test_record_check_writes_history_and_aggregate(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        entry = await history_repo.record_check(
            monitor.id, CheckResult(status="down", status_code=500, response_time_ms=30, error_message="Unexpected status code: 500")
        )
        assert entry.id is not None

        recent = await history_repo.get_recent_checks(monitor.id)
        assert len(recent) == 1
        assert recent[0].status == "down"
        assert recent[0].error_message == "Unexpected status code: 500"

        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.hour_start == hour_start()
        assert aggregate.checks_total == 1
        assert aggregate.checks_down == 1

    @pytest.mark.asyncio
    async def test_aggregate_counts_and_mean(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        results = [
            CheckResult(status="up", response_time_ms=100),
            CheckResult(status="up", response_time_ms=201),
            CheckResult(status="degraded", response_time_ms=3000),
            CheckResult(status="down", response_time_ms=None),
            CheckResult(status="down", response_time_ms=None),
        ]
        for result in results:
            await history_repo.record_check(monitor.id, result)

        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.checks_total == 5
        assert aggregate.checks_up == 2
        assert aggregate.checks_degraded == 1
        assert aggregate.checks_down == 2
        assert aggregate.checks_total == aggregate.checks_up + aggregate.checks_degraded + aggregate.checks_down
        # Mean of the non-null latencies: (100 + 201 + 3000) / 3 = 1100.33
        assert aggregate.avg_response_ms == 1100

    @pytest.mark.asyncio
    async def test_mean_rounds_half_up(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        await history_repo.update_aggregate(monitor.id, CheckResult(status="up", response_time_ms=100))
        await history_repo.update_aggregate(monitor.id, CheckResult(status="up", response_time_ms=201))
        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.avg_response_ms == 151
        assert await history_repo.get_recent_checks(monitor.id) == []

    @pytest.mark.asyncio
    async def test_no_latency_means_no_average(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        await history_repo.record_check(monitor.id, CheckResult(status="down"))
        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.avg_response_ms is None

    @pytest.mark.asyncio
    async def test_maintenance_ticks_are_separate(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        await history_repo.update_maintenance_aggregate(monitor.id)
        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.checks_maintenance == 1
        assert aggregate.checks_total == 0

        await history_repo.update_maintenance_aggregate(monitor.id)
        await history_repo.record_check(monitor.id, CheckResult(status="up", response_time_ms=40))
        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.checks_maintenance == 2
        assert aggregate.checks_total == 1
        assert aggregate.avg_response_ms == 40
        assert await count_rows(session_factory, MonitorHistory, monitor_id=monitor.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        await asyncio.gather(*[
            history_repo.update_aggregate(monitor.id, CheckResult(status="up", response_time_ms=10))
            for _ in range(10)
        ])
        aggregate = await self._aggregate(session_factory, monitor.id)
        assert aggregate.checks_total == 10
        assert aggregate.response_samples == 10

    @pytest.mark.asyncio
    async def test_history_queries(self, history_repo, make_monitor):
        monitor = await make_monitor()
        now = datetime.utcnow()
        await history_repo.record_check(monitor.id, CheckResult(status="up"), checked_at=now - timedelta(hours=30))
        await history_repo.record_check(monitor.id, CheckResult(status="down"), checked_at=now - timedelta(hours=2))
        await history_repo.record_check(monitor.id, CheckResult(status="up"), checked_at=now - timedelta(minutes=1))

        recent = await history_repo.get_recent_checks(monitor.id, limit=2)
        assert [r.status for r in recent] == ["up", "down"]

        last_day = await history_repo.get_check_history(monitor.id, hours=24)
        assert [r.status for r in last_day] == ["down", "up"]

    @pytest.mark.asyncio
    async def test_hourly_aggregates_window(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        current = hour_start()
        async with session_factory() as session:
            session.add(MonitorAggregate(monitor_id=monitor.id, hour_start=current - 48 * 3600, checks_total=1, checks_up=1))
            session.add(MonitorAggregate(monitor_id=monitor.id, hour_start=current - 3600, checks_total=2, checks_up=2))
            await session.commit()
        await history_repo.update_maintenance_aggregate(monitor.id)

        aggregates = await history_repo.get_hourly_aggregates(monitor.id, hours=24)
        assert [a.hour_start for a in aggregates] == [current - 3600, current]

    @pytest.mark.asyncio
    async def test_pruning_history_is_idempotent(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        now = datetime.utcnow()
        await history_repo.record_check(monitor.id, CheckResult(status="up"), checked_at=now - timedelta(days=10))
        await history_repo.record_check(monitor.id, CheckResult(status="up"), checked_at=now - timedelta(days=8))
        await history_repo.record_check(monitor.id, CheckResult(status="up"), checked_at=now)

        cutoff = now - timedelta(days=7)
        assert await history_repo.prune_history_before(cutoff) == 2
        assert await history_repo.prune_history_before(cutoff) == 0
        assert await count_rows(session_factory, MonitorHistory) == 1

        assert await history_repo.prune_old_history(7) == 0

    @pytest.mark.asyncio
    async def test_pruning_aggregates_is_idempotent(self, history_repo, make_monitor, session_factory):
        monitor = await make_monitor()
        current = hour_start()
        async with session_factory() as session:
            session.add(MonitorAggregate(monitor_id=monitor.id, hour_start=current - 40 * 86400))
            session.add(MonitorAggregate(monitor_id=monitor.id, hour_start=current - 31 * 86400))
            session.add(MonitorAggregate(monitor_id=monitor.id, hour_start=current))
            await session.commit()

        cutoff = int(time.time()) - 30 * 86400
        assert await history_repo.prune_aggregates_before(cutoff) == 2
        assert await history_repo.prune_aggregates_before(cutoff) == 0
        assert await history_repo.prune_old_aggregates(30) == 0
        assert await count_rows(session_factory, MonitorAggregate) == 1
