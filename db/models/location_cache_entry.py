"""
db/models/location_cache_entry.py

Geocoding cache keyed by normalized address.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Float, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin, UTCDateTime


class LocationCacheEntry(Base, TimestampMixin):
    __tablename__ = "location_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    normalized_address: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        unique=True,
    )
    original_address: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
    )
    latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    confidence: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    provider: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    formatted_address: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )
    components: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )
    hit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<LocationCacheEntry address={self.normalized_address!r} "
            f"hits={self.hit_count} provider={self.provider!r}>"
        )
