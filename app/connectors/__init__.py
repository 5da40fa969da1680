"""
app/connectors package marker.
"""

from app.connectors.base import BaseConnector, ConnectorRequestError, HttpClientSettings
from app.connectors.geocoding_connectors import GeocodingClient, GoogleGeocodingConnector, NominatimConnector
from app.connectors.rate_limiter import KeyedRateLimiter

__all__ = [
    "BaseConnector",
    "ConnectorRequestError",
    "GeocodingClient",
    "GoogleGeocodingConnector",
    "HttpClientSettings",
    "KeyedRateLimiter",
    "NominatimConnector",
]
