# carebook/main.py
import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .core.logging import setup_logging
from .dependencies import get_default_store, get_dispatcher
from .exceptions import BookingError
from .limiter import limiter
from .routers import appointments, blocked_periods, booking, cron, health, schedule
from .scheduler import BookingScheduler

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# --- Error envelope ---
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid input"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "code": "INVALID_INPUT"},
    )


app.include_router(booking.router, prefix="/api/v1")
app.include_router(schedule.router, prefix="/api/v1")
app.include_router(blocked_periods.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(cron.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.on_event("startup")
def on_startup():
    setup_logging(settings.log_level, settings.json_logs)
    store = get_default_store()
    store.create_schema()
    scheduler = BookingScheduler(
        store,
        get_dispatcher(),
        enabled=settings.scheduler_enabled,
        outbox_batch_size=settings.outbox_batch_size,
    )
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info(f"{settings.app_name} started ({settings.environment}, storage={store.name})")


@app.on_event("shutdown")
def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()


if __name__ == "__main__":
    uvicorn.run("carebook.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
