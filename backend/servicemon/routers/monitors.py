"""Monitor API endpoints."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..errors import InvalidMonitorConfigError, MonitorNotFoundError, StorageError
from ..repositories import HistoryRepository, MonitorRepository
from ..schemas.monitor import (
    AggregateResponse,
    CheckResultResponse,
    HistoryEntryResponse,
    MaintenanceToggle,
    MonitorCreate,
    MonitorShareResponse,
    MonitorTestRequest,
    MonitorUpdate,
    MonitorWithStatus,
    PollerStatus,
    ReorderRequest,
    ServiceMonitor,
    ShareCreate,
)
from ..services.scheduler import MonitorScheduler

router = APIRouter(prefix="/api/monitors", tags=["monitors"])

# Fields that may still change on monitors imported read-only from an integration
READONLY_EDITABLE_FIELDS = {"enabled", "order_index", "notify_down", "notify_up", "notify_degraded"}


def get_scheduler(request: Request) -> MonitorScheduler:
    return request.app.state.scheduler


def get_monitor_repo(request: Request) -> MonitorRepository:
    return request.app.state.monitor_repo


def get_history_repo(request: Request) -> HistoryRepository:
    return request.app.state.history_repo


def _storage_unavailable(e: StorageError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Storage unavailable: {e.message}")


async def _get_or_404(monitors: MonitorRepository, monitor_id: int) -> ServiceMonitor:
    monitor = await monitors.get_monitor_by_id(monitor_id)
    if monitor is None:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return monitor


@router.get("/defaults")
async def get_monitor_defaults(monitors: MonitorRepository = Depends(get_monitor_repo)) -> Dict[str, Any]:
    """Get default values for new monitors based on system settings."""
    return await monitors.get_monitor_defaults()


@router.get("/poller/status", response_model=PollerStatus)
async def get_poller_status(scheduler: MonitorScheduler = Depends(get_scheduler)):
    """Poller health for diagnostics."""
    return scheduler.get_status()


@router.get("", response_model=List[MonitorWithStatus])
async def list_monitors(
    owner_id: Optional[str] = Query(None),
    monitors: MonitorRepository = Depends(get_monitor_repo),
    history: HistoryRepository = Depends(get_history_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """List monitors in display order with their live and last recorded status."""
    if owner_id:
        items = await monitors.get_monitors_by_owner(owner_id)
    else:
        items = await monitors.get_all_monitors()

    response = []
    for monitor in items:
        recent = await history.get_recent_checks(monitor.id, limit=1)
        response.append(MonitorWithStatus(
            **monitor.model_dump(),
            live=scheduler.get_live_status(monitor.id),
            latest_check=HistoryEntryResponse.model_validate(recent[0]) if recent else None,
        ))
    return response


@router.post("", response_model=ServiceMonitor, status_code=201)
async def create_monitor(
    data: MonitorCreate,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Create a new monitor and start checking it."""
    try:
        monitor = await monitors.create_monitor(data)
    except InvalidMonitorConfigError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except StorageError as e:
        raise _storage_unavailable(e)

    scheduler.add_monitor(monitor)
    return monitor


@router.post("/reorder", status_code=204)
async def reorder_monitors(
    data: ReorderRequest,
    monitors: MonitorRepository = Depends(get_monitor_repo),
):
    """Persist a new display order."""
    await monitors.reorder_monitors(data.ordered_ids)
    return Response(status_code=204)


@router.post("/test", response_model=CheckResultResponse)
async def test_unsaved_monitor(
    data: MonitorTestRequest,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Probe a configuration before it is saved."""
    try:
        fields = await monitors.apply_defaults(data)
    except InvalidMonitorConfigError as e:
        raise HTTPException(status_code=400, detail=e.message)
    monitor = ServiceMonitor(id=0, **fields)
    result = await scheduler.test_monitor(monitor)
    return CheckResultResponse(**result.__dict__)


@router.get("/{monitor_id}", response_model=MonitorWithStatus)
async def get_monitor(
    monitor_id: int,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    history: HistoryRepository = Depends(get_history_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Get a single monitor with its status."""
    monitor = await _get_or_404(monitors, monitor_id)
    recent = await history.get_recent_checks(monitor_id, limit=1)
    return MonitorWithStatus(
        **monitor.model_dump(),
        live=scheduler.get_live_status(monitor_id),
        latest_check=HistoryEntryResponse.model_validate(recent[0]) if recent else None,
    )


@router.put("/{monitor_id}", response_model=ServiceMonitor)
async def update_monitor(
    monitor_id: int,
    data: MonitorUpdate,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Update a monitor; only the fields sent are changed."""
    existing = await _get_or_404(monitors, monitor_id)

    changed = set(data.model_dump(exclude_unset=True))
    if existing.is_readonly and changed - READONLY_EDITABLE_FIELDS:
        raise HTTPException(status_code=403, detail="Monitor is read-only")

    try:
        monitor = await monitors.update_monitor(monitor_id, data)
    except InvalidMonitorConfigError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except StorageError as e:
        raise _storage_unavailable(e)

    if monitor is None:
        raise HTTPException(status_code=404, detail="Monitor not found")

    scheduler.update_monitor(monitor)
    return monitor


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(
    monitor_id: int,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Delete a monitor together with its history, aggregates and shares."""
    await _get_or_404(monitors, monitor_id)
    scheduler.remove_monitor(monitor_id)
    await monitors.delete_monitor(monitor_id)
    return Response(status_code=204)


@router.post("/{monitor_id}/maintenance", response_model=ServiceMonitor)
async def toggle_maintenance(
    monitor_id: int,
    data: MaintenanceToggle,
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Switch manual maintenance on or off."""
    try:
        return await scheduler.set_maintenance(monitor_id, data.enabled)
    except MonitorNotFoundError:
        raise HTTPException(status_code=404, detail="Monitor not found")
    except StorageError as e:
        raise _storage_unavailable(e)


@router.post("/{monitor_id}/test", response_model=CheckResultResponse)
async def test_monitor(
    monitor_id: int,
    monitors: MonitorRepository = Depends(get_monitor_repo),
    scheduler: MonitorScheduler = Depends(get_scheduler),
):
    """Run a check now without recording it."""
    monitor = await _get_or_404(monitors, monitor_id)
    result = await scheduler.test_monitor(monitor)
    return CheckResultResponse(**result.__dict__)


@router.get("/{monitor_id}/checks", response_model=List[HistoryEntryResponse])
async def get_recent_checks(
    monitor_id: int,
    limit: int = Query(50, ge=1, le=1000),
    monitors: MonitorRepository = Depends(get_monitor_repo),
    history: HistoryRepository = Depends(get_history_repo),
):
    """Most recent checks, newest first."""
    await _get_or_404(monitors, monitor_id)
    return await history.get_recent_checks(monitor_id, limit=limit)


@router.get("/{monitor_id}/history", response_model=List[HistoryEntryResponse])
async def get_monitor_history(
    monitor_id: int,
    hours: int = Query(24, ge=1, le=720),
    monitors: MonitorRepository = Depends(get_monitor_repo),
    history: HistoryRepository = Depends(get_history_repo),
):
    """Checks recorded in the last N hours."""
    await _get_or_404(monitors, monitor_id)
    return await history.get_check_history(monitor_id, hours=hours)


@router.get("/{monitor_id}/aggregates", response_model=List[AggregateResponse])
async def get_monitor_aggregates(
    monitor_id: int,
    hours: int = Query(24, ge=1, le=720),
    monitors: MonitorRepository = Depends(get_monitor_repo),
    history: HistoryRepository = Depends(get_history_repo),
):
    """Hourly rollups for the tick bar."""
    await _get_or_404(monitors, monitor_id)
    return await history.get_hourly_aggregates(monitor_id, hours=hours)


@router.get("/{monitor_id}/shares", response_model=List[MonitorShareResponse])
async def list_shares(monitor_id: int, monitors: MonitorRepository = Depends(get_monitor_repo)):
    await _get_or_404(monitors, monitor_id)
    return await monitors.get_monitor_shares(monitor_id)


@router.post("/{monitor_id}/shares", response_model=MonitorShareResponse, status_code=201)
async def share_monitor(
    monitor_id: int,
    data: ShareCreate,
    monitors: MonitorRepository = Depends(get_monitor_repo),
):
    """Share a monitor with a user, or change whether they are notified."""
    await _get_or_404(monitors, monitor_id)
    return await monitors.share_monitor(monitor_id, data.user_id, notify=data.notify)


@router.delete("/{monitor_id}/shares/{user_id}", status_code=204)
async def unshare_monitor(
    monitor_id: int,
    user_id: str,
    monitors: MonitorRepository = Depends(get_monitor_repo),
):
    if not await monitors.unshare_monitor(monitor_id, user_id):
        raise HTTPException(status_code=404, detail="Share not found")
    return Response(status_code=204)
