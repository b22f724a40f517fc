"""Expose the NetPulse back-office FastAPI app and enforce local development CORS defaults."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .dependencies import shutdown_checkout_service
from .migrations import run_database_migrations
from .routers import (
    metrics_router,
    network_access_router,
    payments_router,
    renewals_router,
    sync_callbacks_router,
)
from .services.renewals import start_renewal_scheduler, stop_renewal_scheduler
from .services.scheduler_monitor import JOB_RENEWALS, SchedulerMonitor
from .settings import read_bool_env

LOCAL_DEVELOPMENT_ORIGINS = {
    "http://localhost:5173",
}
LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

DEFAULT_ALLOWED_ORIGINS = {
    *LOCAL_DEVELOPMENT_ORIGINS,
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
}


def _normalize_origin(origin: str) -> str | None:
    stripped = origin.strip()
    if not stripped:
        return None
    return stripped.rstrip("/")


def _read_allowed_origins(raw_origins: Iterable[str]) -> list[str]:
    normalized = {_normalize_origin(origin) for origin in raw_origins}
    return sorted({origin for origin in normalized if origin})


def _split_raw_origins(raw_value: str) -> list[str]:
    """Split a raw origin string using commas or whitespace as separators."""

    return [origin for origin in re.split(r"[\s,]+", raw_value) if origin]


def _resolve_allowed_origins() -> list[str]:
    raw_value = os.getenv("BACKEND_ALLOWED_ORIGINS")
    if raw_value:
        origins = _read_allowed_origins(_split_raw_origins(raw_value))
    else:
        origins = _read_allowed_origins(DEFAULT_ALLOWED_ORIGINS)

    missing_dev_origins = [
        origin for origin in LOCAL_DEVELOPMENT_ORIGINS if origin not in origins
    ]
    if missing_dev_origins:
        origins = _read_allowed_origins([*origins, *missing_dev_origins])
    return origins


def _maybe_start_job(env_flag: str, job_name: str, starter: Callable[[], None]) -> None:
    enabled = read_bool_env(env_flag, True)
    SchedulerMonitor.set_job_enabled(job_name, enabled)
    if not enabled:
        LOGGER.info("%s disabled via %s", job_name, env_flag)
        return
    starter()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if read_bool_env("RUN_MIGRATIONS_ON_STARTUP", True):
        ensure_database_is_ready()
    start_background_jobs()
    try:
        yield
    finally:
        stop_background_jobs()


app = FastAPI(title="NetPulse Back-office API", lifespan=lifespan)

LOGGER = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(network_access_router, prefix="/network-access", tags=["network-access"])
app.include_router(sync_callbacks_router, prefix="/radius", tags=["network-access"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(renewals_router, prefix="/renewals", tags=["renewals"])
app.include_router(metrics_router, prefix="/metrics", tags=["metrics"])


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when the service starts."""

    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


def start_background_jobs() -> None:
    """Start background tasks required by the service."""

    _maybe_start_job(
        env_flag="ENABLE_RENEWAL_SCHEDULER",
        job_name=JOB_RENEWALS,
        starter=start_renewal_scheduler,
    )


@app.get("/", tags=["health"])
def read_root() -> dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}


def stop_background_jobs() -> None:
    """Ensure background tasks are stopped when the application shuts down."""

    stop_renewal_scheduler()
    shutdown_checkout_service()
