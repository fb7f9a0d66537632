from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Response, status

from app.schemas.health import HealthResponse


def _validate_env() -> None:
    """
    Validate all required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - No empty-string values are accepted.
    - A PostgreSQL URL must be configured; other engines are not supported.
    - REDIS_URL must point at a redis:// or rediss:// server.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    database_url = os.getenv("DATABASE_URL", "").strip()
    cloud_database_url = os.getenv("CLOUD_DATABASE_URL", "").strip()
    local_database_url = os.getenv("LOCAL_DATABASE_URL", "").strip()
    if not database_url and not cloud_database_url and not local_database_url:
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL or LOCAL_DATABASE_URL."
        )
    else:
        from db.config import resolve_database_url

        try:
            resolve_database_url()
        except RuntimeError as exc:
            errors.append(str(exc))

    # --- Cache ----------------------------------------------------------
    redis_url = os.getenv("REDIS_URL", "").strip()
    if not redis_url:
        errors.append("REDIS_URL is not set. The metric cache requires a Redis server.")
    elif not redis_url.startswith(("redis://", "rediss://", "unix://")):
        errors.append(f"REDIS_URL='{redis_url}' is not a redis://, rediss:// or unix:// URL.")

    if errors:
        raise RuntimeError(
            "Startup validation failed. Missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_db() -> None:
    """Open a session and run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    from sqlalchemy import text

    from db.session import session_scope

    try:
        with session_scope() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc


def _check_schema() -> None:
    """
    Compare Base.metadata table names against the live DB schema.

    Every table registered on Base.metadata must exist in the database.
    If any are missing, log a critical error and abort startup so that
    the operator is forced to run migrations before serving traffic.

    Does NOT auto-migrate.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401 (registers all ORM models on Base.metadata)
    from db.base import Base
    from db.session import get_engine

    inspector = sa_inspect(get_engine())
    actual: set[str] = set(inspector.get_table_names())
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        log = logging.getLogger(__name__)
        log.critical(
            "Schema mismatch: %d table(s) defined in ORM metadata are absent from "
            "the database: %s. Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate DB connectivity and schema, start the materialization queue on boot; shut it down on exit."""
    log = logging.getLogger(__name__)
    _check_db()
    log.info("Database connectivity confirmed")
    _check_schema()
    log.info("Database schema validated")

    from app.config import get_materialization_settings
    from app.scheduler.queue import get_materialization_queue

    queue = get_materialization_queue()
    queue.start()
    if get_materialization_settings().recover_on_start:
        queue.recover_incomplete_jobs()
    try:
        yield
    finally:
        queue.shutdown(wait=True)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="BI Dataset Pipeline API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import (
        datasets_router,
        materialization_jobs_router,
        metrics_router,
        uploads_router,
    )

    application.include_router(datasets_router)
    application.include_router(uploads_router)
    application.include_router(metrics_router)
    application.include_router(materialization_jobs_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck(response: Response) -> HealthResponse:
        from app.scheduler.queue import get_materialization_queue

        try:
            _check_db()
            database = "ok"
        except RuntimeError:
            database = "unavailable"

        queue_state = "running" if get_materialization_queue().scheduler.running else "stopped"
        healthy = database == "ok"
        if not healthy:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="ok" if healthy else "degraded",
            database=database,
            materialization_queue=queue_state,
        )

    return application


app = create_app()
