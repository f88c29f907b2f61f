import logging
import time

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from config import settings
from db.database import engine, Base, get_db, run_startup_migrations
from db import models  # noqa: F401  (registers tables on Base.metadata)
from auth.routes import router as auth_router
from api.habits import router as habits_router
from api.progress import router as progress_router
from services.rate_limit_service import InMemoryRateLimitStore, RateLimiter
from utils.errors import HabitTrackerError
from utils.logging_config import configure_logging

configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
settings.validate_security_configuration()

logger = logging.getLogger(__name__)

# Create all tables
Base.metadata.create_all(bind=engine)
run_startup_migrations()

app = FastAPI(title=settings.APP_NAME, version="1.0.0")
app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore())

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.SECURITY_HEADERS_ENABLED:
        return response
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = settings.SECURITY_CSP
    return response


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            status_code,
            (time.perf_counter() - started) * 1000.0,
        )


@app.exception_handler(HabitTrackerError)
async def habit_tracker_error_handler(request: Request, exc: HabitTrackerError):
    if exc.status_code >= 500:
        logger.error("Unhandled %s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message, "code": exc.code},
    )


# Routers
app.include_router(auth_router, prefix="/api")
app.include_router(habits_router, prefix="/api")
app.include_router(progress_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}


@app.get("/api/health/db")
def health_check_db(db: Session = Depends(get_db)):
    started = time.perf_counter()
    db.execute(text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000.0, 2)}
