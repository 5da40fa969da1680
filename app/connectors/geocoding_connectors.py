"""
app/connectors/geocoding_connectors.py

HTTP geocoding clients for Nominatim and the Google Geocoding API.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

import requests

from app.connectors.base import BaseConnector, ConnectorRequestError, HttpClientSettings
from app.connectors.rate_limiter import KeyedRateLimiter
from app.domain.geocoding import GeocodeResult, GeocodingProviderError, normalize_address

logger = logging.getLogger(__name__)

# Google location_type -> confidence
_GOOGLE_CONFIDENCE = {
    "ROOFTOP": 1.0,
    "RANGE_INTERPOLATED": 0.8,
    "GEOMETRIC_CENTER": 0.6,
    "APPROXIMATE": 0.4,
}


class GeocodingClient(Protocol):
    name: str

    def geocode(self, address: str) -> GeocodeResult | None:
        ...


class NominatimConnector(BaseConnector):
    """
    OpenStreetMap Nominatim search client.
    """

    def __init__(
        self,
        *,
        name: str = "nominatim",
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str,
        http_settings: HttpClientSettings,
        session: requests.Session | None = None,
        rate_limiter: KeyedRateLimiter | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        super().__init__(
            source=name,
            http_settings=http_settings,
            session=session,
            rate_limiter=rate_limiter,
            **kwargs,
        )
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent

    def geocode(self, address: str) -> GeocodeResult | None:
        try:
            payload = self._request_json(
                method="GET",
                url=f"{self._base_url}/search",
                params={"q": address, "format": "jsonv2", "limit": 1, "addressdetails": 1},
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )
        except ConnectorRequestError as exc:
            raise GeocodingProviderError(self.name, str(exc)) from exc

        if not isinstance(payload, list):
            raise GeocodingProviderError(self.name, "unexpected response shape")
        if not payload:
            return None

        best = payload[0]
        try:
            latitude = float(best["lat"])
            longitude = float(best["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingProviderError(self.name, "result without coordinates") from exc

        importance = best.get("importance")
        return GeocodeResult(
            latitude=latitude,
            longitude=longitude,
            confidence=float(importance) if importance is not None else None,
            provider=self.name,
            normalized_address=normalize_address(address),
            formatted_address=best.get("display_name"),
            components=dict(best.get("address") or {}),
        )


class GoogleGeocodingConnector(BaseConnector):
    """
    Google Maps Geocoding API client.
    """

    def __init__(
        self,
        *,
        name: str = "google",
        api_key: str,
        base_url: str = "https://maps.googleapis.com/maps/api/geocode/json",
        http_settings: HttpClientSettings,
        session: requests.Session | None = None,
        rate_limiter: KeyedRateLimiter | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Google geocoding requires an API key")
        kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        super().__init__(
            source=name,
            http_settings=http_settings,
            session=session,
            rate_limiter=rate_limiter,
            **kwargs,
        )
        self.name = name
        self._api_key = api_key
        self._base_url = base_url

    def geocode(self, address: str) -> GeocodeResult | None:
        try:
            payload = self._request_json(
                method="GET",
                url=self._base_url,
                params={"address": address, "key": self._api_key},
            )
        except ConnectorRequestError as exc:
            raise GeocodingProviderError(self.name, str(exc)) from exc

        status = payload.get("status") if isinstance(payload, dict) else None
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            message = payload.get("error_message") if isinstance(payload, dict) else None
            raise GeocodingProviderError(self.name, f"status={status} {message or ''}".strip())

        results = payload.get("results") or []
        if not results:
            return None
        best = results[0]
        geometry = best.get("geometry") or {}
        location = geometry.get("location") or {}
        try:
            latitude = float(location["lat"])
            longitude = float(location["lng"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingProviderError(self.name, "result without coordinates") from exc

        return GeocodeResult(
            latitude=latitude,
            longitude=longitude,
            confidence=_GOOGLE_CONFIDENCE.get(str(geometry.get("location_type")), 0.5),
            provider=self.name,
            normalized_address=normalize_address(address),
            formatted_address=best.get("formatted_address"),
            components={
                component.get("types", ["unknown"])[0]: component.get("long_name")
                for component in best.get("address_components") or []
                if component.get("types")
            },
        )
