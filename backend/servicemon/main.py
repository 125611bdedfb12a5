"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db, close_db, async_session
from .errors import InvalidMonitorConfigError, MonitorNotFoundError, StorageError
from .repositories import HistoryRepository, MonitorRepository
from .routers import monitors_router
from .services.batcher import NotificationBatcher
from .services.checker import checker_service
from .services.notifier import DatabaseNotificationSink, NotificationDispatcher
from .services.preferences import PreferenceResolver
from .services.realtime import connection_manager
from .services.scheduler import MonitorScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler(session_factory=None) -> MonitorScheduler:
    """Wire the scheduler to its repositories and notification collaborators."""
    session_factory = session_factory or async_session
    monitor_repo = MonitorRepository(session_factory)
    history_repo = HistoryRepository(session_factory)
    sink = DatabaseNotificationSink(session_factory, broadcaster=connection_manager)
    batcher = NotificationBatcher(sink, window_seconds=settings.notification_batch_seconds)
    dispatcher = NotificationDispatcher(
        monitor_repo,
        sink,
        PreferenceResolver(session_factory),
        batcher,
    )
    return MonitorScheduler(
        monitor_repo,
        history_repo,
        checker_service,
        dispatcher,
        broadcaster=connection_manager,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting service monitor")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    scheduler = build_scheduler()
    app.state.scheduler = scheduler
    app.state.monitor_repo = scheduler.monitors
    app.state.history_repo = scheduler.history

    if settings.start_scheduler:
        await scheduler.start()

    yield

    # Shutdown
    scheduler.stop()
    await scheduler.dispatcher.batcher.flush_all()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Service Monitor",
        description="Periodic HTTP, TCP and ping checks with history and notifications",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)

    @app.exception_handler(MonitorNotFoundError)
    async def monitor_not_found(request: Request, exc: MonitorNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(InvalidMonitorConfigError)
    async def invalid_config(request: Request, exc: InvalidMonitorConfigError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.error(f"Storage error handling {request.url.path}: {exc.message}")
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        scheduler = getattr(request.app.state, "scheduler", None)
        healthy = scheduler is not None and (not settings.start_scheduler or scheduler.is_healthy())
        return {
            "status": "healthy" if healthy else "degraded",
            "scheduler": scheduler.get_status().model_dump() if scheduler else None,
            "websocket_connections": connection_manager.connection_count,
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Topic subscriptions: send {"action": "subscribe", "topic": "service-status"}."""
        await connection_manager.connect(websocket)
        try:
            while True:
                message = await websocket.receive_text()
                await connection_manager.handle_message(websocket, message)
        except WebSocketDisconnect:
            pass
        finally:
            await connection_manager.disconnect(websocket)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
