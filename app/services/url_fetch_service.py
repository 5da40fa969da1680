"""
app/services/url_fetch_service.py

Remote file download for scheduled imports.

Downloads are streamed with a running byte count so an oversized response
is abandoned without buffering it. Retries, backoff and Retry-After come
from BaseConnector. Any non-2xx response is retried.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import posixpath
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import unquote, urlparse

import requests

from app.config import UrlFetchSettings, get_url_fetch_settings
from app.connectors.base import BaseConnector, ConnectorRequestError, HttpClientSettings
from app.connectors.rate_limiter import KeyedRateLimiter
from app.services.file_parsing import detect_file_type
from db.models.scheduled_import import AuthType

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_HEADER = "X-API-Key"
_CHUNK_SIZE = 64 * 1024
_CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
}


class UrlFetchError(RuntimeError):
    """
    Raised when a remote file cannot be fetched.
    """

    def __init__(self, message: str, *, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


@dataclass(frozen=True)
class FetchRequest:
    url: str
    auth_config: Mapping[str, Any] | None = None
    timeout_seconds: float | None = None
    max_file_size_mb: float | None = None
    expected_content_type: str | None = None
    max_retries: int | None = None
    retry_delay_seconds: float | None = None
    exponential_backoff: bool = True


@dataclass(frozen=True)
class FetchedFile:
    url: str
    content: bytes
    content_type: str
    file_type: str
    file_name: str
    content_hash: str
    fetched_at: datetime
    attempts: int = 1

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    def metadata(self) -> dict[str, Any]:
        return {
            "source_url": self.url,
            "content_hash": self.content_hash,
            "fetched_at": self.fetched_at.isoformat(),
            "content_type": self.content_type,
            "file_size_bytes": self.size_bytes,
        }


def build_auth_headers(auth_config: Mapping[str, Any] | None) -> dict[str, str]:
    """
    Request headers for a schedule's auth settings, custom headers last.
    """

    config = dict(auth_config or {})
    headers: dict[str, str] = {}
    auth_type = config.get("type") or AuthType.NONE
    if auth_type == AuthType.API_KEY and config.get("api_key"):
        headers[str(config.get("api_key_header") or DEFAULT_API_KEY_HEADER)] = str(config["api_key"])
    elif auth_type == AuthType.BEARER and config.get("bearer_token"):
        headers["Authorization"] = f"Bearer {config['bearer_token']}"
    elif auth_type == AuthType.BASIC and config.get("username") is not None:
        token = f"{config['username']}:{config.get('password') or ''}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(token).decode('ascii')}"
    for name, value in (config.get("custom_headers") or {}).items():
        headers[str(name)] = str(value)
    return headers


def file_name_from_url(url: str, file_type: str) -> str:
    path = unquote(urlparse(url).path or "")
    name = posixpath.basename(path.rstrip("/"))
    if not name:
        name = "download"
    if not name.lower().endswith(f".{file_type}"):
        name = f"{name}.{file_type}"
    return name


class UrlFetcher(BaseConnector):
    def __init__(
        self,
        *,
        http_settings: HttpClientSettings,
        user_agent: str,
        session: requests.Session | None = None,
        rate_limiter: KeyedRateLimiter | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        super().__init__(
            source="url-fetch",
            http_settings=http_settings,
            session=session,
            rate_limiter=rate_limiter,
            **kwargs,
        )
        self._user_agent = user_agent

    def _is_retryable_status(self, status_code: int) -> bool:
        return not 200 <= status_code < 300

    def download(self, url: str, *, headers: dict[str, str], max_bytes: int) -> tuple[bytes, str | None, int]:
        """
        Stream the body at `url` and return (content, content type, attempts).

        Every non-2xx response and every connection dropped while the body
        is streaming counts as a failed attempt.
        """

        def read_body(response: requests.Response) -> tuple[bytes, str | None]:
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise UrlFetchError(f"Remote file too large: {declared} bytes exceeds limit of {max_bytes} bytes")

            received = 0
            chunks: list[bytes] = []
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if not chunk:
                    continue
                received += len(chunk)
                if received > max_bytes:
                    raise UrlFetchError(f"Remote file exceeded size limit of {max_bytes} bytes while downloading")
                chunks.append(chunk)
            return b"".join(chunks), response.headers.get("Content-Type")

        try:
            (content, content_type), attempts = self._request_with_retries(
                method="GET",
                url=url,
                headers={"User-Agent": self._user_agent, **headers},
                stream=True,
                consume=read_body,
            )
        except ConnectorRequestError as exc:
            raise UrlFetchError(str(exc), status_code=exc.status_code, attempts=exc.attempts) from exc
        except requests.RequestException as exc:
            raise UrlFetchError(f"Download interrupted: {exc}") from exc
        return content, content_type, attempts


class UrlFetchService:
    def __init__(
        self,
        *,
        settings: UrlFetchSettings | None = None,
        session: requests.Session | None = None,
        rate_limiter: KeyedRateLimiter | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._settings = settings or get_url_fetch_settings()
        self._session = session
        self._rate_limiter = rate_limiter or KeyedRateLimiter(
            default_rate_limit_per_second=self._settings.rate_limit_per_second
        )
        self._sleep = sleep

    def http_settings_for(self, request: FetchRequest) -> HttpClientSettings:
        settings = self._settings
        return HttpClientSettings(
            timeout_seconds=request.timeout_seconds or settings.timeout_seconds,
            max_retries=settings.max_retries if request.max_retries is None else max(0, request.max_retries),
            backoff_initial_seconds=(
                settings.retry_delay_seconds if request.retry_delay_seconds is None else request.retry_delay_seconds
            ),
            backoff_multiplier=settings.backoff_multiplier if request.exponential_backoff else 1.0,
            max_backoff_seconds=settings.max_retry_delay_seconds,
            rate_limit_per_second=settings.rate_limit_per_second,
        )

    def fetch(self, request: FetchRequest) -> FetchedFile:
        max_mb = request.max_file_size_mb or self._settings.max_file_size_mb
        max_bytes = int(max_mb * 1024 * 1024)
        fetcher = UrlFetcher(
            http_settings=self.http_settings_for(request),
            user_agent=self._settings.user_agent,
            session=self._session,
            rate_limiter=self._rate_limiter,
            sleep=self._sleep,
        )

        logger.info("Fetching remote file url=%s max_bytes=%s", request.url, max_bytes)
        content, response_type, attempts = fetcher.download(
            request.url,
            headers=build_auth_headers(request.auth_config),
            max_bytes=max_bytes,
        )
        if not content:
            raise UrlFetchError(f"Remote file is empty: {request.url}")

        declared_type = request.expected_content_type or response_type
        file_type = detect_file_type(
            file_name=urlparse(request.url).path,
            content_type=declared_type,
            head=content[:8],
        )
        fetched = FetchedFile(
            url=request.url,
            content=content,
            content_type=_CONTENT_TYPES[file_type],
            file_type=file_type,
            file_name=file_name_from_url(request.url, file_type),
            content_hash=hashlib.sha256(content).hexdigest(),
            fetched_at=datetime.now(timezone.utc),
            attempts=attempts,
        )
        logger.info(
            "Remote file fetched url=%s type=%s size=%s hash=%s attempts=%s",
            request.url,
            file_type,
            fetched.size_bytes,
            fetched.content_hash[:12],
            fetched.attempts,
        )
        return fetched
