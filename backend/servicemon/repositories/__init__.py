"""Storage layer for monitors, shares, history and aggregates."""
from .monitors import MonitorRepository
from .history import HistoryRepository

__all__ = ["MonitorRepository", "HistoryRepository"]
