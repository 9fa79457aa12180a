import os
from dataclasses import dataclass

DEFAULT_UPLOAD_EXTENSIONS = "pdf,doc,docx,xls,xlsx,ppt,pptx,txt,jpg,jpeg,png,gif"


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    upload_max_bytes: int
    upload_allowed_extensions: tuple[str, ...]
    per_page_default: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _split_extensions(raw: str) -> tuple[str, ...]:
    return tuple(sorted({p.strip().lower().lstrip(".") for p in raw.split(",") if p.strip()}))


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///campus.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        upload_max_bytes=_getenv_int("UPLOAD_MAX_BYTES", 10 * 1024 * 1024),
        upload_allowed_extensions=_split_extensions(_getenv("UPLOAD_ALLOWED_EXTENSIONS", DEFAULT_UPLOAD_EXTENSIONS)),
        per_page_default=_getenv_int("PER_PAGE_DEFAULT", 15),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "UPLOAD_MAX_BYTES": s.upload_max_bytes,
        "UPLOAD_ALLOWED_EXTENSIONS": s.upload_allowed_extensions,
        "PER_PAGE_DEFAULT": s.per_page_default,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # whole-request limit; per-file limit is UPLOAD_MAX_BYTES
        "MAX_CONTENT_LENGTH": 50 * 1024 * 1024,
    }
