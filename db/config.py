"""
Shared environment-driven database configuration helpers.
"""

from __future__ import annotations

import os
from pathlib import Path

_ENV_FILENAMES: tuple[str, ...] = (".env", ".env.local")
_CLOUD_LIKE_ENVIRONMENTS = frozenset({"prod", "production", "staging", "cloud"})


def load_env_files() -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    project_root = Path(__file__).resolve().parents[1]
    for filename in _ENV_FILENAMES:
        env_path = project_root / filename
        if not env_path.is_file():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if line.startswith("export "):
                line = line[len("export ") :].strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def normalize_postgres_url(url: str) -> str:
    """
    Normalize postgres URLs to SQLAlchemy's psycopg (v3) driver form.
    """

    url = url.strip()
    for scheme in ("postgres://", "postgresql://", "postgresql+psycopg2://"):
        if url.startswith(scheme):
            return "postgresql+psycopg://" + url[len(scheme) :]
    return url


def resolve_database_url() -> str:
    """
    Resolve the database URL from the environment and optional .env files.

    Priority:
    1) DATABASE_URL
    2) CLOUD_DATABASE_URL when ENVIRONMENT is cloud-like
    3) LOCAL_DATABASE_URL

    The JSONB row store, ON CONFLICT upserts and NULLS NOT DISTINCT
    constraints require PostgreSQL; any other scheme is rejected.
    """

    load_env_files()

    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    candidates = [os.getenv("DATABASE_URL")]
    if environment in _CLOUD_LIKE_ENVIRONMENTS:
        candidates.append(os.getenv("CLOUD_DATABASE_URL"))
    candidates.append(os.getenv("LOCAL_DATABASE_URL"))

    for candidate in candidates:
        if candidate and candidate.strip():
            url = normalize_postgres_url(candidate)
            if not url.startswith("postgresql"):
                raise RuntimeError("Only PostgreSQL database URLs are supported.")
            return url

    raise RuntimeError(
        "No database URL configured. Set DATABASE_URL, or configure "
        "LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )
