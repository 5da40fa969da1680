"""
app/domain/geocoding.py

Address normalization, coordinate validation and geocoding result types.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from app.domain.value_parsing import parse_coordinate

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s,.\-]", re.UNICODE)
_REPEATED_COMMAS = re.compile(r"\s*,[\s,]*")


class ValidationStatus:
    VALID = "valid"
    SWAPPED = "swapped"
    SUSPICIOUS_ZERO = "suspicious_zero"
    INVALID = "invalid"

    USABLE = (VALID, SWAPPED, SUSPICIOUS_ZERO)


class GeocodingProviderError(RuntimeError):
    """
    Raised when a provider call fails. Callers may try the next provider.
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    confidence: float | None
    provider: str
    normalized_address: str
    formatted_address: str | None = None
    components: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "confidence": self.confidence,
            "provider": self.provider,
            "normalized_address": self.normalized_address,
            "formatted_address": self.formatted_address,
        }


@dataclass(frozen=True)
class CoordinateValidation:
    status: str
    latitude: float | None = None
    longitude: float | None = None

    @property
    def usable(self) -> bool:
        return self.status in ValidationStatus.USABLE


def normalize_address(address: Any) -> str:
    """
    Canonical cache key for a free-text address.

    Lowercases, trims, drops punctuation other than `,.-`, collapses
    whitespace and repeated commas.
    """

    if address is None:
        return ""
    text = str(address).lower().strip()
    text = _DISALLOWED.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    text = _REPEATED_COMMAS.sub(", ", text)
    return text.strip(" ,")


def validate_coordinates(latitude: Any, longitude: Any) -> CoordinateValidation:
    """
    Validate a provided latitude/longitude pair.

    A pair that is out of range as given but valid when swapped is corrected
    and reported as `swapped`. Exactly (0, 0) is kept but flagged.
    """

    lat = parse_coordinate(latitude)
    lon = parse_coordinate(longitude)
    if lat is None or lon is None:
        return CoordinateValidation(status=ValidationStatus.INVALID)

    if lat == 0 and lon == 0:
        return CoordinateValidation(status=ValidationStatus.SUSPICIOUS_ZERO, latitude=0.0, longitude=0.0)
    if -90 <= lat <= 90 and -180 <= lon <= 180:
        return CoordinateValidation(status=ValidationStatus.VALID, latitude=lat, longitude=lon)
    if abs(lat) > 90 and abs(lat) <= 180 and abs(lon) <= 90:
        return CoordinateValidation(status=ValidationStatus.SWAPPED, latitude=lon, longitude=lat)
    return CoordinateValidation(status=ValidationStatus.INVALID)
