"""
Repository for configured geocoding providers.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.geocoding_provider import GeocodingProvider


class GeocodingProviderRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_enabled(self) -> list[GeocodingProvider]:
        stmt = (
            select(GeocodingProvider)
            .where(GeocodingProvider.enabled.is_(True))
            .order_by(GeocodingProvider.priority.asc(), GeocodingProvider.name.asc())
        )
        return list(self._session.scalars(stmt).all())

    def create(
        self,
        *,
        name: str,
        provider_type: str,
        priority: int = 100,
        rate_limit_per_second: float = 1.0,
        config: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> GeocodingProvider:
        provider = GeocodingProvider(
            name=name,
            provider_type=provider_type,
            priority=priority,
            rate_limit_per_second=rate_limit_per_second,
            config=config,
            enabled=enabled,
        )
        self._session.add(provider)
        self._session.flush()
        return provider
