"""MonitorAggregate model - hourly rollups for tick-bar visualization."""
from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorAggregate(Base):
    """Check counts and latency for one monitor over one calendar hour.

    checks_total counts up/degraded/down checks only; maintenance ticks are
    tracked in checks_maintenance. The average latency is derived from
    response_time_sum_ms / response_samples so null latencies never skew it.
    """

    __tablename__ = "service_monitor_aggregates"
    __table_args__ = (
        UniqueConstraint("monitor_id", "hour_start", name="uq_monitor_aggregates_hour"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("service_monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    hour_start = Column(Integer, nullable=False)  # Unix timestamp truncated to the hour
    checks_total = Column(Integer, nullable=False, default=0)
    checks_up = Column(Integer, nullable=False, default=0)
    checks_degraded = Column(Integer, nullable=False, default=0)
    checks_down = Column(Integer, nullable=False, default=0)
    checks_maintenance = Column(Integer, nullable=False, default=0)
    response_time_sum_ms = Column(Integer, nullable=False, default=0)
    response_samples = Column(Integer, nullable=False, default=0)

    monitor = relationship("Monitor", back_populates="aggregates")

    @property
    def avg_response_ms(self):
        """Mean of the hour's non-null latencies, rounded half-up to a millisecond."""
        if not self.response_samples:
            return None
        return int(self.response_time_sum_ms / self.response_samples + 0.5)
