"""
FastAPI Server для AlgoStudio Strategy Status Engine
Internal API + периодический sweep статусов
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger

from config.config import validate_config
from config.logging import setup_logging
from config.sentry import init_sentry, SentryErrorTracker
from algostudio.database.engine import dispose_engine, get_session_maker
from algostudio.api.router import router as api_router
from algostudio.services.alert_service import AlertService
from algostudio.services.audit_service import AuditService
from algostudio.services.strategy_status.orchestrator import StatusOrchestrator
from algostudio.services.strategy_status.scheduler import StrategyStatusScheduler
from algostudio.services.strategy_status.store import StatusStore

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager для startup/shutdown events
    """
    # Startup
    logger.info("Starting AlgoStudio Status API Server...")
    init_sentry()

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head
    session_maker = get_session_maker()

    alert_service = AlertService(session_maker)
    orchestrator = StatusOrchestrator(
        store=StatusStore(session_maker),
        alert_sink=alert_service,
        audit_sink=AuditService(session_maker),
        error_tracker=SentryErrorTracker(),
    )
    app.state.status_orchestrator = orchestrator

    # Start Strategy Status Scheduler (periodic sweep)
    status_scheduler = StrategyStatusScheduler(orchestrator)
    status_scheduler.start()
    app.state.status_scheduler = status_scheduler

    yield

    # Shutdown
    logger.info("Shutting down AlgoStudio Status API Server...")

    status_scheduler.stop()

    # Дожидаемся фоновых alert/audit задач
    await orchestrator.drain()
    await alert_service.close()

    await dispose_engine()
    logger.info("Database connections closed")


# Создаем FastAPI приложение
app = FastAPI(
    title="AlgoStudio Strategy Status API",
    description="Internal API для статусов live EA инстансов",
    version="1.0.0",
    lifespan=lifespan,
)


# Подключаем API router (уже включает все sub-роутеры)
# Добавляем префикс /api для всех API endpoints
app.include_router(api_router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint
    """
    return {
        "service": "AlgoStudio Strategy Status API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


# Health check endpoint
@app.get("/health")
async def health():
    """
    Health check endpoint
    """
    return {"status": "healthy"}


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code and detail
    """
    # Log 4xx and 503 (retryable store outage) as warning, other 5xx as error
    if exc.status_code >= 500 and exc.status_code != 503:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content
    )


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        logger.error(str(e))
        exit(1)

    logger.info("Configuration validated successfully")

    # SECURITY: host="127.0.0.1" - слушаем только localhost
    # Доступ извне только через reverse proxy
    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",
        port=8004,
        reload=False,
        log_level="info",
    )
