"""
db/models/geocoding_provider.py

Configured geocoding provider with priority and rate limit.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Boolean, Float, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class GeocodingProviderType:
    NOMINATIM = "nominatim"
    GOOGLE = "google"


class GeocodingProvider(Base, TimestampMixin):
    __tablename__ = "geocoding_providers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )
    provider_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
        comment="Lower values are tried first",
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    rate_limit_per_second: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=1.0,
    )
    config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Provider specific settings such as api_key or base_url",
    )

    __table_args__ = (Index("ix_geocoding_providers_enabled_priority", "enabled", "priority"),)
