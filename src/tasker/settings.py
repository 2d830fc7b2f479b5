from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tasker.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - STORAGE_BACKEND: 'memory' (default) or 's3'
    - S3_BUCKET: bucket holding todo attachments. Default 'tasker-attachments'
    - AWS_REGION: region for the S3 client. Default 'us-east-1'
    - AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: static credentials (optional,
      boto3's default credential chain is used when unset)
    - AWS_ENDPOINT_URL: custom S3 endpoint, e.g. MinIO or LocalStack (optional)
    - TASK_BACKEND: 'thread' (default) or 'inline' for background work
    - TASK_MAX_WORKERS: size of the background thread pool. Default 4
    - LOG_LEVEL: root log level. Default 'INFO'
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    storage_backend: str
    s3_bucket: str
    aws_region: str
    aws_access_key_id: Optional[str]
    aws_secret_access_key: Optional[str]
    aws_endpoint_url: Optional[str]
    task_backend: str
    task_max_workers: int
    log_level: str


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _get_optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_choice(value: str, allowed: set, default: str) -> str:
    v = value.strip().lower()
    return v if v in allowed else default


def _parse_int(value: str, default: int, minimum: int = 1) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        # Star will be handled in main via allow_origins=["*"]
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _parse_choice(_get_env("PERSISTENCE_BACKEND", "memory"), {"memory", "sqlite"}, "memory")
    storage_backend = _parse_choice(_get_env("STORAGE_BACKEND", "memory"), {"memory", "s3"}, "memory")
    task_backend = _parse_choice(_get_env("TASK_BACKEND", "thread"), {"thread", "inline"}, "thread")

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/tasker.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        storage_backend=storage_backend,
        s3_bucket=_get_env("S3_BUCKET", "tasker-attachments").strip(),
        aws_region=_get_env("AWS_REGION", "us-east-1").strip(),
        aws_access_key_id=_get_optional_env("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=_get_optional_env("AWS_SECRET_ACCESS_KEY"),
        aws_endpoint_url=_get_optional_env("AWS_ENDPOINT_URL"),
        task_backend=task_backend,
        task_max_workers=_parse_int(_get_env("TASK_MAX_WORKERS", "4"), 4),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
    )
