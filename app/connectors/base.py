"""
app/connectors/base.py

Shared HTTP mechanics for outbound clients: rate limiting, retries with
exponential backoff and Retry-After handling.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import requests

from app.connectors.rate_limiter import KeyedRateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

T = TypeVar("T")


class ConnectorRequestError(RuntimeError):
    """
    Raised when a request cannot be completed after retries.
    """

    def __init__(self, message: str, *, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


@dataclass(frozen=True)
class HttpClientSettings:
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 300.0
    rate_limit_per_second: float = 0.0


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """
    Seconds to wait from a Retry-After header (delta seconds or HTTP date).
    """

    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        return float(text)
    try:
        target = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    delta = (target - (now or datetime.now(timezone.utc))).total_seconds()
    return max(0.0, delta)


class BaseConnector:
    """
    Base for HTTP clients that talk to one external source.
    """

    source: str

    def __init__(
        self,
        *,
        source: str,
        http_settings: HttpClientSettings,
        session: requests.Session | None = None,
        rate_limiter: KeyedRateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self._session = session or requests.Session()
        self._timeout_seconds = http_settings.timeout_seconds
        self._max_retries = http_settings.max_retries
        self._backoff_initial_seconds = http_settings.backoff_initial_seconds
        self._backoff_multiplier = http_settings.backoff_multiplier
        self._max_backoff_seconds = http_settings.max_backoff_seconds
        self._rate_limit_per_second = http_settings.rate_limit_per_second
        self._rate_limiter = rate_limiter
        if self._rate_limiter is None and self._rate_limit_per_second > 0:
            self._rate_limiter = KeyedRateLimiter(default_rate_limit_per_second=self._rate_limit_per_second)
        self._sleep = sleep

    def _request_json(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Execute an HTTP request and return parsed JSON with retry support.
        """

        response = self._request(method=method, url=url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectorRequestError(f"{self.source}: response was not valid JSON.") from exc

    def _request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
        timeout_seconds: float | None = None,
    ) -> requests.Response:
        """
        Execute an HTTP request with rate limiting and exponential backoff.
        """

        response, _ = self._request_with_retries(
            method=method,
            url=url,
            params=params,
            headers=headers,
            stream=stream,
            timeout_seconds=timeout_seconds,
        )
        return response

    def _is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES

    def _request_with_retries(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
        timeout_seconds: float | None = None,
        consume: Callable[[requests.Response], T] | None = None,
    ) -> tuple[Any, int]:
        """
        Send a request and return (result, attempts).

        With `consume` the response body is read inside the retry loop, so
        a connection dropped mid-body is retried like a failed request. The
        result is then whatever `consume` returns and the response is closed.
        """

        last_error: Exception | None = None
        last_status: int | None = None
        for attempt in range(self._max_retries + 1):
            self._apply_rate_limit()
            retry_after: float | None = None
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    timeout=timeout_seconds or self._timeout_seconds,
                    stream=stream,
                )
                if self._is_retryable_status(response.status_code):
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                if consume is None:
                    return response, attempt + 1
                try:
                    return consume(response), attempt + 1
                finally:
                    response.close()
            except requests.HTTPError as exc:
                last_error = exc
                last_status = exc.response.status_code if exc.response is not None else None
                if last_status is None or not self._is_retryable_status(last_status):
                    logger.error(
                        "Connector request failed source=%s status=%s url=%s error=%s",
                        self.source,
                        last_status,
                        url,
                        exc,
                    )
                    raise ConnectorRequestError(
                        f"{self.source}: non-retryable request failure (HTTP {last_status}).",
                        status_code=last_status,
                        attempts=attempt + 1,
                    ) from exc
                if exc.response is not None:
                    retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
            except (requests.Timeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
                last_error = exc
                last_status = None

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_seconds(attempt, retry_after)
            logger.warning(
                "Connector request retry source=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                self.source,
                attempt + 1,
                self._max_retries,
                backoff_seconds,
                url,
            )
            self._sleep(backoff_seconds)

        logger.error(
            "Connector request exhausted retries source=%s url=%s error=%s",
            self.source,
            url,
            last_error,
        )
        raise ConnectorRequestError(
            f"{self.source}: request failed after retries.",
            status_code=last_status,
            attempts=self._max_retries + 1,
        ) from last_error

    def _backoff_seconds(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_backoff_seconds)
        backoff = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
        return min(backoff, self._max_backoff_seconds)

    def _apply_rate_limit(self) -> None:
        """
        Enforce minimum interval between outbound requests.
        """

        if self._rate_limiter is None:
            return
        self._rate_limiter.wait(
            key=self.source,
            rate_limit_per_second=self._rate_limit_per_second or None,
        )
