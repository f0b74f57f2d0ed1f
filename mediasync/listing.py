"""Bucket listing client for the Cloud Storage JSON API."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator
from urllib.parse import quote

import google.auth
import google.auth.transport.requests
import httpx
from google.auth.credentials import AnonymousCredentials, Credentials
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.oauth2.credentials import Credentials as TokenCredentials

from .config import ConfigurationError, SyncConfig

LOGGER = logging.getLogger(__name__)

_LIST_FIELDS = "items(name),nextPageToken"
READ_ONLY_SCOPE = "https://www.googleapis.com/auth/devstorage.read_only"


class ConnectivityError(RuntimeError):
    """Raised when the bucket listing cannot be retrieved."""


def resolve_credentials(config: SyncConfig) -> Credentials:
    """Pick the credentials used to authorize listing requests.

    A static ``access_token`` wins, then anonymous access, then Application
    Default Credentials (service account key, workload identity, gcloud login).
    """

    if config.access_token:
        return TokenCredentials(token=config.access_token)
    if config.anonymous:
        return AnonymousCredentials()
    try:
        credentials, project_id = google.auth.default(scopes=[READ_ONLY_SCOPE])
    except DefaultCredentialsError as exc:
        raise ConfigurationError(
            f"No Cloud Storage credentials found; set MEDIASYNC_GCS_TOKEN, "
            f"configure Application Default Credentials or use anonymous access: {exc}"
        ) from exc
    LOGGER.debug("Using Application Default Credentials (project=%s)", project_id)
    return credentials


class GcsObjectLister:
    """Page through the object names of a bucket, one page request at a time."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
        credentials: Credentials | None = None,
        auth_request: google.auth.transport.Request | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials if credentials is not None else resolve_credentials(config)
        self._auth_request = auth_request or google.auth.transport.requests.Request()
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None
        self._sleep = sleep or time.sleep
        self.pages_fetched = 0

    def _build_client(self) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self._config.timeout.request_timeout,
            "headers": {"User-Agent": self._config.user_agent},
        }
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    @property
    def objects_url(self) -> str:
        bucket = quote(self._config.bucket, safe="")
        return f"{self._config.listing_api_url.rstrip('/')}/b/{bucket}/o"

    def iter_keys(self) -> Iterator[str]:
        """Yield object names lazily; raises ``ConnectivityError`` on any unrecoverable failure."""

        page_token: str | None = None
        while True:
            params = {
                "prefix": self._config.prefix,
                "maxResults": str(self._config.page_size),
                "fields": _LIST_FIELDS,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = self._fetch_page(params)
            self.pages_fetched += 1
            items = payload.get("items", [])
            if not isinstance(items, list):
                raise ConnectivityError(
                    f"Malformed listing response for bucket {self._config.bucket}: items is {type(items).__name__}"
                )
            for item in items:
                name = item.get("name") if isinstance(item, dict) else None
                if name:
                    yield name

            page_token = payload.get("nextPageToken")
            if not page_token:
                LOGGER.debug(
                    "Listing of gs://%s/%s finished after %d page(s)",
                    self._config.bucket,
                    self._config.prefix,
                    self.pages_fetched,
                )
                return

    def __iter__(self) -> Iterator[str]:
        return self.iter_keys()

    def _authorization_headers(self) -> dict[str, str]:
        # Expired credentials are refreshed here, once per request attempt.
        headers: dict[str, str] = {}
        try:
            self._credentials.before_request(self._auth_request, "GET", self.objects_url, headers)
        except GoogleAuthError as exc:
            raise ConnectivityError(f"Could not authorize listing of bucket {self._config.bucket}: {exc}") from exc
        return headers

    def _fetch_page(self, params: dict[str, str]) -> dict:
        max_attempts = max(1, self._config.retry.max_attempts)
        for attempt in range(max_attempts):
            headers = self._authorization_headers()
            try:
                response = self._client.get(self.objects_url, params=params, headers=headers)
                response.raise_for_status()
            except httpx.TimeoutException as exc:
                LOGGER.warning(
                    "Bucket listing timeout (%s) attempt %d/%d: %s",
                    self._config.bucket,
                    attempt + 1,
                    max_attempts,
                    exc,
                )
                if self._should_retry(attempt, max_attempts):
                    self._sleep_before_retry(attempt)
                    continue
                raise ConnectivityError(f"Timed out listing bucket {self._config.bucket}: {exc}") from exc
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                LOGGER.warning("Bucket listing failed (%s): HTTP %d", self._config.bucket, status)
                if 500 <= status < 600 and self._should_retry(attempt, max_attempts):
                    self._sleep_before_retry(attempt)
                    continue
                raise ConnectivityError(f"Unexpected status {status} listing bucket {self._config.bucket}") from exc
            except httpx.HTTPError as exc:
                LOGGER.warning(
                    "Bucket listing error (%s) attempt %d/%d: %s",
                    self._config.bucket,
                    attempt + 1,
                    max_attempts,
                    exc,
                )
                if self._should_retry(attempt, max_attempts):
                    self._sleep_before_retry(attempt)
                    continue
                raise ConnectivityError(f"Could not list bucket {self._config.bucket}: {exc}") from exc

            try:
                payload = response.json()
            except ValueError as exc:
                raise ConnectivityError(f"Malformed listing response for bucket {self._config.bucket}") from exc
            if not isinstance(payload, dict):
                raise ConnectivityError(f"Malformed listing response for bucket {self._config.bucket}")
            return payload

        raise ConnectivityError("Exhausted retries while listing bucket")

    def _should_retry(self, attempt: int, max_attempts: int) -> bool:
        return attempt + 1 < max_attempts

    def _sleep_before_retry(self, attempt: int) -> None:
        retry = self._config.retry
        if retry.base_delay <= 0:
            return
        self._sleep(retry.base_delay * (retry.backoff_factor ** attempt))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "GcsObjectLister":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
