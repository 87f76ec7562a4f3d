"""Main FastAPI application for Family Stars."""

from fastapi import FastAPI
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from . import __version__
from .api import goals, progress, websockets
from .api.middleware import (
    ProblemDetailsMiddleware,
    problem_details_handler,
    validation_problem_handler,
)
from .config import get_config
from .events.realtime import RealtimeFilter, realtime_hub
from .events.websocket_manager import websocket_manager
from .utils.logging_config import get_logger

logger = get_logger('main')
config = get_config()

app = FastAPI(
    title="Family Stars",
    description=config.app.description,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(ProblemDetailsMiddleware)
app.add_exception_handler(HTTPException, problem_details_handler)
app.add_exception_handler(RequestValidationError, validation_problem_handler)

allowed_origins = list(config.server.allowed_origins)

# In development mode, allow additional localhost ports
if config.server.debug:
    allowed_origins.extend([
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
)

app.include_router(progress.router)
app.include_router(goals.router)
app.include_router(websockets.router)

_unsubscribe_forwarder = None


@app.on_event("startup")
async def startup_event():
    """Forward every realtime change to connected WebSocket clients."""
    global _unsubscribe_forwarder
    if _unsubscribe_forwarder is None:
        _unsubscribe_forwarder = realtime_hub.subscribe(RealtimeFilter(), websocket_manager.forward_change)
    logger.info(f"{config.app.app_name} {__version__} started")


@app.on_event("shutdown")
async def shutdown_event():
    global _unsubscribe_forwarder
    if _unsubscribe_forwarder is not None:
        _unsubscribe_forwarder()
        _unsubscribe_forwarder = None


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/docs")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "family-stars", "version": __version__}


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint that validates database connectivity and configuration."""
    from .db.database import get_db
    from sqlalchemy import text
    import time

    start_time = time.time()
    checks = {"database": False, "config": False}
    errors = []

    try:
        db = next(get_db())
        try:
            db.execute(text("SELECT 1"))
            checks["database"] = True
        finally:
            db.close()
    except Exception as e:
        errors.append(f"Database check failed: {str(e)}")

    try:
        if get_config():
            checks["config"] = True
    except Exception as e:
        errors.append(f"Config check failed: {str(e)}")

    response_time_ms = round((time.time() - start_time) * 1000, 2)
    all_ready = all(checks.values())

    response = {
        "status": "ready" if all_ready else "not_ready",
        "service": "family-stars",
        "version": __version__,
        "checks": checks,
        "response_time_ms": response_time_ms,
    }

    if errors:
        response["errors"] = errors

    return JSONResponse(content=response, status_code=200 if all_ready else 503)
