"""
tests/test_connectors.py

Coverage:
- Retry-After parsing
- retry, backoff and non-retryable failures in BaseConnector
- Nominatim and Google response handling
- provider chain fallback
- per-key rate limiting
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest
import requests

from app.connectors.base import HttpClientSettings, parse_retry_after
from app.connectors.geocoding_connectors import GoogleGeocodingConnector, NominatimConnector
from app.connectors.rate_limiter import KeyedRateLimiter
from app.domain.geocoding import GeocodeResult, GeocodingProviderError
from app.services.geocoding_service import ProviderChain

FAST = HttpClientSettings(timeout_seconds=5.0, max_retries=2, backoff_initial_seconds=1.0, backoff_multiplier=2.0)

NOMINATIM_HIT = [
    {
        "lat": "52.5219",
        "lon": "13.4132",
        "importance": 0.71,
        "display_name": "Alexanderplatz, Mitte, Berlin",
        "address": {"city": "Berlin", "country_code": "de"},
    }
]


def _nominatim(http_session, sleeps: list[float], settings: HttpClientSettings = FAST) -> NominatimConnector:
    return NominatimConnector(
        user_agent="tests/1.0",
        http_settings=settings,
        session=http_session,
        sleep=sleeps.append,
    )


class TestRetryAfter:
    def test_delta_seconds(self) -> None:
        assert parse_retry_after("5") == 5.0

    def test_http_date(self) -> None:
        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=30), usegmt=True)
        assert parse_retry_after(header, now=now) == 30.0

    def test_past_date_and_garbage(self) -> None:
        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        assert parse_retry_after(format_datetime(now - timedelta(minutes=1), usegmt=True), now=now) == 0.0
        assert parse_retry_after("soon") is None
        assert parse_retry_after(None) is None


class TestNominatimConnector:
    def test_parses_best_result(self, http_session) -> None:
        http_session.add(200, NOMINATIM_HIT, headers={"Content-Type": "application/json"})
        result = _nominatim(http_session, []).geocode("Alexanderplatz, Berlin")

        assert result == GeocodeResult(
            latitude=52.5219,
            longitude=13.4132,
            confidence=0.71,
            provider="nominatim",
            normalized_address="alexanderplatz, berlin",
            formatted_address="Alexanderplatz, Mitte, Berlin",
            components={"city": "Berlin", "country_code": "de"},
        )
        sent = http_session.requests[0]
        assert sent["url"] == "https://nominatim.openstreetmap.org/search"
        assert sent["params"]["q"] == "Alexanderplatz, Berlin"
        assert sent["headers"]["User-Agent"] == "tests/1.0"

    def test_empty_result_list_is_a_miss(self, http_session) -> None:
        http_session.add(200, [])
        assert _nominatim(http_session, []).geocode("Nowhere 1") is None

    def test_retries_retryable_status_with_retry_after(self, http_session) -> None:
        sleeps: list[float] = []
        http_session.add(429, b"", headers={"Retry-After": "3"}).add(503).add(200, NOMINATIM_HIT)

        result = _nominatim(http_session, sleeps).geocode("Alexanderplatz")

        assert result is not None
        assert sleeps == [3.0, 2.0]
        assert len(http_session.requests) == 3

    def test_connection_errors_are_retried(self, http_session) -> None:
        sleeps: list[float] = []
        http_session.fail_with(requests.ConnectionError("reset")).add(200, NOMINATIM_HIT)
        assert _nominatim(http_session, sleeps).geocode("Alexanderplatz") is not None
        assert sleeps == [1.0]

    def test_exhausted_retries_raise_provider_error(self, http_session) -> None:
        sleeps: list[float] = []
        http_session.add(500).add(500).add(500)
        with pytest.raises(GeocodingProviderError) as excinfo:
            _nominatim(http_session, sleeps).geocode("Alexanderplatz")
        assert excinfo.value.provider == "nominatim"
        assert sleeps == [1.0, 2.0]

    def test_non_retryable_status_fails_immediately(self, http_session) -> None:
        sleeps: list[float] = []
        http_session.add(403)
        with pytest.raises(GeocodingProviderError):
            _nominatim(http_session, sleeps).geocode("Alexanderplatz")
        assert sleeps == []
        assert len(http_session.requests) == 1

    def test_unexpected_shape(self, http_session) -> None:
        http_session.add(200, {"error": "nope"})
        with pytest.raises(GeocodingProviderError):
            _nominatim(http_session, []).geocode("Alexanderplatz")


class TestGoogleGeocodingConnector:
    def _client(self, http_session) -> GoogleGeocodingConnector:
        return GoogleGeocodingConnector(api_key="secret", http_settings=FAST, session=http_session, sleep=lambda _: None)

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError):
            GoogleGeocodingConnector(api_key="", http_settings=FAST)

    def test_ok_response(self, http_session) -> None:
        http_session.add(
            200,
            {
                "status": "OK",
                "results": [
                    {
                        "formatted_address": "Hafen, Hamburg, Germany",
                        "geometry": {"location": {"lat": 53.54, "lng": 9.98}, "location_type": "ROOFTOP"},
                        "address_components": [{"long_name": "Hamburg", "types": ["locality", "political"]}],
                    }
                ],
            },
        )
        result = self._client(http_session).geocode("Hamburg Hafen")

        assert (result.latitude, result.longitude) == (53.54, 9.98)
        assert result.confidence == 1.0
        assert result.provider == "google"
        assert result.components == {"locality": "Hamburg"}
        assert http_session.requests[0]["params"] == {"address": "Hamburg Hafen", "key": "secret"}

    def test_zero_results_is_a_miss(self, http_session) -> None:
        http_session.add(200, {"status": "ZERO_RESULTS", "results": []})
        assert self._client(http_session).geocode("Nowhere") is None

    def test_error_status_raises(self, http_session) -> None:
        http_session.add(200, {"status": "REQUEST_DENIED", "error_message": "bad key"})
        with pytest.raises(GeocodingProviderError, match="REQUEST_DENIED bad key"):
            self._client(http_session).geocode("Hamburg")


class _StaticClient:
    def __init__(self, name: str, outcome) -> None:
        self.name = name
        self._outcome = outcome
        self.calls = 0

    def geocode(self, address: str):
        self.calls += 1
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


class TestProviderChain:
    def test_falls_through_errors_and_misses(self) -> None:
        hit = GeocodeResult(latitude=1.0, longitude=2.0, confidence=None, provider="third", normalized_address="x")
        broken = _StaticClient("first", GeocodingProviderError("first", "down"))
        empty = _StaticClient("second", None)
        third = _StaticClient("third", hit)
        unused = _StaticClient("fourth", hit)
        chain = ProviderChain([broken, empty, third, unused])

        assert chain.geocode("x") is hit
        assert chain.names == ["first", "second", "third", "fourth"]
        assert (broken.calls, empty.calls, third.calls, unused.calls) == (1, 1, 1, 0)

    def test_empty_chain(self) -> None:
        chain = ProviderChain([])
        assert not chain
        assert chain.geocode("x") is None


class TestKeyedRateLimiter:
    def test_waits_per_key(self) -> None:
        now = [100.0]
        sleeps: list[float] = []
        limiter = KeyedRateLimiter(default_rate_limit_per_second=2.0, clock=lambda: now[0], sleep=sleeps.append)

        limiter.wait(key="nominatim")
        limiter.wait(key="google")
        limiter.wait(key="nominatim")
        now[0] += 1.0
        limiter.wait(key="nominatim")

        assert sleeps == [0.5]

    def test_blank_key_never_waits(self) -> None:
        sleeps: list[float] = []
        limiter = KeyedRateLimiter(default_rate_limit_per_second=1.0, clock=lambda: 0.0, sleep=sleeps.append)
        limiter.wait(key="")
        limiter.wait(key="")
        assert sleeps == []
