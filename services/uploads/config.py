from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote_plus

from dotenv import load_dotenv

MIB = 1024 * 1024


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class UploadConfig:
    chunk_size_bytes: int = 10 * MIB
    max_concurrent_chunks: int = 2
    max_retries: int = 5
    retry_base_delay_ms: int = 2000
    retry_max_delay_ms: int = 30000
    retry_max_jitter_ms: int = 2000
    chunk_timeout_ms: int = 300000
    storage_operation_timeout_ms: int = 60000
    manifest_timeout_ms: int = 30000
    batch_pause_ms: int = 1000
    chunk_threshold_bytes: int = 100 * MIB
    max_file_size_bytes: int = 2 * 1024 * MIB
    require_manifest_write: bool = False
    storage_endpoint_url: str = "http://localhost:9000"
    storage_public_endpoint_url: str | None = None
    storage_region: str = "us-east-1"
    storage_access_key: str = "minioadmin"
    storage_secret_key: str = "minioadmin"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "uploads"
    db_user: str = "uploads"
    db_password: str = ""
    db_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_locks: bool = False
    publish_progress: bool = False

    def __post_init__(self) -> None:
        if self.chunk_size_bytes <= 0:
            raise ValueError("chunk_size_bytes must be positive")
        if self.max_concurrent_chunks <= 0:
            raise ValueError("max_concurrent_chunks must be positive")
        if self.max_retries <= 0:
            raise ValueError("max_retries must be at least 1")

    @property
    def database_dsn(self) -> str:
        if self.db_url:
            return self.db_url
        user = quote_plus(self.db_user)
        password = quote_plus(self.db_password)
        return (
            f"postgresql+psycopg://{user}:{password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def public_endpoint_url(self) -> str:
        return self.storage_public_endpoint_url or self.storage_endpoint_url


def load_config() -> UploadConfig:
    _load_repo_env()
    defaults = UploadConfig()
    return UploadConfig(
        chunk_size_bytes=_env_int("UPLOAD_CHUNK_SIZE_BYTES", defaults.chunk_size_bytes),
        max_concurrent_chunks=_env_int(
            "UPLOAD_MAX_CONCURRENT_CHUNKS", defaults.max_concurrent_chunks
        ),
        max_retries=_env_int("UPLOAD_MAX_RETRIES", defaults.max_retries),
        retry_base_delay_ms=_env_int(
            "UPLOAD_RETRY_BASE_DELAY_MS", defaults.retry_base_delay_ms
        ),
        retry_max_delay_ms=_env_int(
            "UPLOAD_RETRY_MAX_DELAY_MS", defaults.retry_max_delay_ms
        ),
        retry_max_jitter_ms=_env_int(
            "UPLOAD_RETRY_MAX_JITTER_MS", defaults.retry_max_jitter_ms
        ),
        chunk_timeout_ms=_env_int("UPLOAD_CHUNK_TIMEOUT_MS", defaults.chunk_timeout_ms),
        storage_operation_timeout_ms=_env_int(
            "UPLOAD_STORAGE_TIMEOUT_MS", defaults.storage_operation_timeout_ms
        ),
        manifest_timeout_ms=_env_int(
            "UPLOAD_MANIFEST_TIMEOUT_MS", defaults.manifest_timeout_ms
        ),
        batch_pause_ms=_env_int("UPLOAD_BATCH_PAUSE_MS", defaults.batch_pause_ms),
        chunk_threshold_bytes=_env_int(
            "UPLOAD_CHUNK_THRESHOLD_BYTES", defaults.chunk_threshold_bytes
        ),
        max_file_size_bytes=_env_int(
            "UPLOAD_MAX_FILE_SIZE_BYTES", defaults.max_file_size_bytes
        ),
        require_manifest_write=_env_bool(
            "UPLOAD_REQUIRE_MANIFEST_WRITE", defaults.require_manifest_write
        ),
        storage_endpoint_url=os.getenv(
            "UPLOAD_STORAGE_ENDPOINT_URL", defaults.storage_endpoint_url
        ),
        storage_public_endpoint_url=os.getenv("UPLOAD_STORAGE_PUBLIC_ENDPOINT_URL"),
        storage_region=os.getenv("UPLOAD_STORAGE_REGION", defaults.storage_region),
        storage_access_key=os.getenv(
            "UPLOAD_STORAGE_ACCESS_KEY", defaults.storage_access_key
        ),
        storage_secret_key=os.getenv(
            "UPLOAD_STORAGE_SECRET_KEY", defaults.storage_secret_key
        ),
        db_host=os.getenv("UPLOAD_DB_HOST", defaults.db_host),
        db_port=_env_int("UPLOAD_DB_PORT", defaults.db_port),
        db_name=os.getenv("UPLOAD_DB_NAME", defaults.db_name),
        db_user=os.getenv("UPLOAD_DB_USER", defaults.db_user),
        db_password=os.getenv("UPLOAD_DB_PASSWORD", defaults.db_password),
        db_url=os.getenv("UPLOAD_DB_URL"),
        redis_host=os.getenv("UPLOAD_REDIS_HOST", defaults.redis_host),
        redis_port=_env_int("UPLOAD_REDIS_PORT", defaults.redis_port),
        redis_db=_env_int("UPLOAD_REDIS_DB", defaults.redis_db),
        redis_locks=_env_bool("UPLOAD_REDIS_LOCKS", defaults.redis_locks),
        publish_progress=_env_bool("UPLOAD_PUBLISH_PROGRESS", defaults.publish_progress),
    )
