"""Configuration values shared by the listing client, persistence layer and driver."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

DEFAULT_PUBLIC_HOST = "https://storage.googleapis.com"
DEFAULT_LISTING_API = "https://storage.googleapis.com/storage/v1"
DEFAULT_USER_AGENT = "artwork-media-sync/1.0"
DEFAULT_PAGE_SIZE = 1000

_BUCKET_ENV = "MEDIASYNC_BUCKET"
_PREFIX_ENV = "MEDIASYNC_PREFIX"
_DB_URL_ENV = "MEDIASYNC_DATABASE_URL"
_DB_PASSWORD_ENV = "MEDIASYNC_DB_PASSWORD"
_TOKEN_ENV = "MEDIASYNC_GCS_TOKEN"
_ANONYMOUS_ENV = "MEDIASYNC_GCS_ANONYMOUS"
_WORKERS_ENV = "MEDIASYNC_MAX_WORKERS"


class ConfigurationError(RuntimeError):
    """Raised when a required setting or credential is missing or malformed."""


@dataclass(slots=True, frozen=True)
class MediaExtensions:
    """Lower-cased file extensions recognised for each asset class."""

    still: tuple[str, ...] = ("jpg",)
    motion: tuple[str, ...] = ("mp4",)


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 10.0


@dataclass(slots=True)
class SyncConfig:
    bucket: str
    db_url: Optional[str] = None
    prefix: str = ""
    access_token: Optional[str] = None
    anonymous: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    max_workers: int = 1
    dry_run: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    public_host: str = DEFAULT_PUBLIC_HOST
    listing_api_url: str = DEFAULT_LISTING_API
    extensions: MediaExtensions = field(default_factory=MediaExtensions)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    @property
    def public_base_url(self) -> str:
        """Base URL under which every object of the bucket is publicly served."""

        return f"{self.public_host.rstrip('/')}/{self.bucket}/"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_workers(raw_value: str | int | None) -> int:
    if raw_value is None:
        return 1
    try:
        workers = int(raw_value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid worker count {raw_value!r}") from exc
    return max(1, workers)


def _env_flag(raw_value: str | None) -> bool:
    cleaned = _clean(raw_value)
    if cleaned is None:
        return False
    lowered = cleaned.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean {raw_value!r} for {_ANONYMOUS_ENV}")


def _apply_password(db_url: str, password: str | None) -> str:
    try:
        url = make_url(db_url)
    except ArgumentError as exc:
        raise ConfigurationError(f"Invalid database URL: {exc}") from exc
    if password is None:
        return db_url
    return url.set(password=password).render_as_string(hide_password=False)


def load_sync_config(
    *,
    bucket: str | None = None,
    prefix: str | None = None,
    db_url: str | None = None,
    max_workers: int | None = None,
    page_size: int | None = None,
    dry_run: bool = False,
    anonymous: bool = False,
    environ: Mapping[str, str] | None = None,
) -> SyncConfig:
    """Merge explicit settings with environment variables.

    Explicit arguments win over the environment. A database password supplied
    through ``MEDIASYNC_DB_PASSWORD`` replaces whatever the URL carries, so the
    secret never has to appear on the command line. Bucket credentials come from
    ``MEDIASYNC_GCS_TOKEN`` when set, otherwise from Application Default
    Credentials unless anonymous access is requested.
    """

    env = os.environ if environ is None else environ

    resolved_bucket = _clean(bucket) or _clean(env.get(_BUCKET_ENV))
    if not resolved_bucket:
        raise ConfigurationError(f"Bucket name is required (--bucket or {_BUCKET_ENV})")

    resolved_db_url = _clean(db_url) or _clean(env.get(_DB_URL_ENV))
    if resolved_db_url:
        resolved_db_url = _apply_password(resolved_db_url, _clean(env.get(_DB_PASSWORD_ENV)))
    elif not dry_run:
        raise ConfigurationError(f"Database URL is required (--db-url or {_DB_URL_ENV})")

    resolved_prefix = prefix if prefix is not None else env.get(_PREFIX_ENV, "")
    workers = _coerce_workers(max_workers if max_workers is not None else _clean(env.get(_WORKERS_ENV)))

    config = SyncConfig(
        bucket=resolved_bucket,
        db_url=resolved_db_url,
        prefix=resolved_prefix.strip(),
        access_token=_clean(env.get(_TOKEN_ENV)),
        anonymous=anonymous or _env_flag(env.get(_ANONYMOUS_ENV)),
        max_workers=workers,
        dry_run=dry_run,
    )
    if page_size is not None:
        if page_size <= 0:
            raise ConfigurationError(f"Page size must be positive (got {page_size})")
        config.page_size = page_size
    return config
