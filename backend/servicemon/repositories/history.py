"""History repository - check history, hourly aggregates and pruning."""
import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import MonitorAggregate, MonitorHistory
from ..services.classifier import CheckResult, UP, DEGRADED, DOWN
from ..utils.db_utils import hour_start
from .base import BaseRepository

logger = logging.getLogger(__name__)

STATUS_COLUMNS = {
    UP: "checks_up",
    DEGRADED: "checks_degraded",
    DOWN: "checks_down",
}


class HistoryRepository(BaseRepository):
    """Persists check results and keeps the hourly aggregates in step."""

    async def record_check(
        self,
        monitor_id: int,
        result: CheckResult,
        checked_at: Optional[datetime] = None,
    ) -> MonitorHistory:
        """Insert a history row and fold it into the current hour's aggregate."""
        async def op(session: AsyncSession):
            entry = MonitorHistory(
                monitor_id=monitor_id,
                status=result.status,
                response_time_ms=result.response_time_ms,
                status_code=result.status_code,
                error_message=result.error_message,
                checked_at=checked_at or datetime.utcnow(),
            )
            session.add(entry)
            await session.flush()
            await self._increment(session, monitor_id, self._check_increments(result))
            return entry

        return await self._run(op, write=True)

    async def update_aggregate(self, monitor_id: int, result: CheckResult) -> None:
        """Count one check in the current hour's aggregate without writing history."""
        async def op(session: AsyncSession):
            await self._increment(session, monitor_id, self._check_increments(result))

        await self._run(op, write=True)

    async def update_maintenance_aggregate(self, monitor_id: int) -> None:
        """Count one maintenance tick; the other counters are left alone."""
        async def op(session: AsyncSession):
            await self._increment(session, monitor_id, {"checks_maintenance": 1})

        await self._run(op, write=True)

    @staticmethod
    def _check_increments(result: CheckResult) -> dict:
        column = STATUS_COLUMNS.get(result.status)
        if column is None:
            raise ValueError(f"Cannot aggregate status {result.status!r}")
        increments = {"checks_total": 1, column: 1}
        if result.response_time_ms is not None:
            increments["response_time_sum_ms"] = result.response_time_ms
            increments["response_samples"] = 1
        return increments

    async def _increment(self, session: AsyncSession, monitor_id: int, increments: dict) -> None:
        """Atomically add to the counters of this hour's aggregate row.

        The increment runs as a single UPDATE so concurrent writers never lose
        counts. If the row does not exist yet it is inserted in a savepoint;
        losing that insert race to another writer falls back to the UPDATE.
        """
        bucket = hour_start(time.time())
        values = {name: getattr(MonitorAggregate, name) + amount for name, amount in increments.items()}
        stmt = (
            update(MonitorAggregate)
            .where(
                MonitorAggregate.monitor_id == monitor_id,
                MonitorAggregate.hour_start == bucket,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        result = await session.execute(stmt)
        if result.rowcount:
            return

        row = MonitorAggregate(
            monitor_id=monitor_id,
            hour_start=bucket,
            checks_total=0,
            checks_up=0,
            checks_degraded=0,
            checks_down=0,
            checks_maintenance=0,
            response_time_sum_ms=0,
            response_samples=0,
        )
        for name, amount in increments.items():
            setattr(row, name, amount)

        try:
            async with session.begin_nested():
                session.add(row)
        except IntegrityError:
            logger.debug(f"Aggregate row for monitor {monitor_id} hour {bucket} created concurrently, retrying update")
            await session.execute(stmt)

    async def get_recent_checks(self, monitor_id: int, limit: int = 50) -> List[MonitorHistory]:
        """Most recent checks, newest first."""
        async def op(session: AsyncSession):
            result = await session.execute(
                select(MonitorHistory)
                .where(MonitorHistory.monitor_id == monitor_id)
                .order_by(MonitorHistory.checked_at.desc(), MonitorHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

        return await self._run(op)

    async def get_check_history(self, monitor_id: int, hours: int = 24) -> List[MonitorHistory]:
        """Checks within the last N hours, oldest first."""
        cutoff = datetime.utcnow() - timedelta(hours=hours)

        async def op(session: AsyncSession):
            result = await session.execute(
                select(MonitorHistory)
                .where(
                    MonitorHistory.monitor_id == monitor_id,
                    MonitorHistory.checked_at >= cutoff,
                )
                .order_by(MonitorHistory.checked_at, MonitorHistory.id)
            )
            return list(result.scalars().all())

        return await self._run(op)

    async def get_hourly_aggregates(self, monitor_id: int, hours: int = 24) -> List[MonitorAggregate]:
        """Aggregates for the last N hours including the current one, oldest first."""
        cutoff = hour_start(time.time()) - (hours - 1) * 3600

        async def op(session: AsyncSession):
            result = await session.execute(
                select(MonitorAggregate)
                .where(
                    MonitorAggregate.monitor_id == monitor_id,
                    MonitorAggregate.hour_start >= cutoff,
                )
                .order_by(MonitorAggregate.hour_start)
            )
            return list(result.scalars().all())

        return await self._run(op)

    async def prune_old_history(self, days: int) -> int:
        """Delete history older than N days. Returns number of deleted rows."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        return await self.prune_history_before(cutoff)

    async def prune_history_before(self, cutoff: datetime) -> int:
        async def op(session: AsyncSession):
            result = await session.execute(
                delete(MonitorHistory).where(MonitorHistory.checked_at < cutoff)
            )
            return result.rowcount or 0

        deleted = await self._run(op, write=True)
        if deleted:
            logger.info(f"Pruned {deleted} history rows older than {cutoff.isoformat()}")
        return deleted

    async def prune_old_aggregates(self, days: int) -> int:
        """Delete aggregates whose hour started more than N days ago."""
        cutoff = int(time.time()) - days * 86400
        return await self.prune_aggregates_before(cutoff)

    async def prune_aggregates_before(self, cutoff: int) -> int:
        async def op(session: AsyncSession):
            result = await session.execute(
                delete(MonitorAggregate).where(MonitorAggregate.hour_start < cutoff)
            )
            return result.rowcount or 0

        deleted = await self._run(op, write=True)
        if deleted:
            logger.info(f"Pruned {deleted} aggregate rows older than {cutoff}")
        return deleted
