from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (set via .env; sqlite file by default for local development)
    DATABASE_URL: str = "sqlite:///./livedrop.db"

    # Public base URL used to build photo links
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Object storage (S3-compatible, e.g. Cloudflare R2). Local filesystem if no bucket.
    S3_ENDPOINT_URL: str = ""  # e.g. https://<account>.r2.cloudflarestorage.com
    S3_REGION: str = "auto"
    S3_BUCKET: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_PUBLIC_URL: str = ""  # public bucket URL; falls back to endpoint/bucket
    LOCAL_STORAGE_ROOT: str = "storage"

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True
    LOG_FILE: str = "logs/app.log"
    LOG_MAX_BYTES: int = 5_000_000  # 5 MB
    LOG_BACKUP_COUNT: int = 5

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # Archive downloads
    ARCHIVE_FETCH_CONCURRENCY: int = 16
    ARCHIVE_FETCH_TIMEOUT_SECONDS: float = 30.0
    ARCHIVE_DEFAULT_LABEL: str = "photos"

    # Live view
    LIVE_POLL_INTERVAL_SECONDS: float = 5.0
    VIEWER_HEARTBEAT_SECONDS: float = 60.0
    VIEWER_ONLINE_WINDOW_SECONDS: int = 5 * 60
    LIVE_STREAM_KEEPALIVE_SECONDS: float = 15.0

    # Uploads
    MAX_UPLOAD_BYTES: int = 20_000_000  # 20 MB per photo
    MAX_COMMENT_LENGTH: int = 500

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()

# Basic validation so a half-configured object store is noticed early
_missing = []
if settings.S3_BUCKET:
    if not settings.S3_ENDPOINT_URL:
        _missing.append("S3_ENDPOINT_URL")
    if not settings.S3_ACCESS_KEY_ID:
        _missing.append("S3_ACCESS_KEY_ID")
    if not settings.S3_SECRET_ACCESS_KEY:
        _missing.append("S3_SECRET_ACCESS_KEY")

if _missing:
    # Do not crash imports in some tools; instead, provide a helpful message.
    import warnings

    warnings.warn(
        "Missing object storage settings in .env: "
        + ", ".join(_missing)
        + ". Uploads and downloads will fail until they are set."
    )
