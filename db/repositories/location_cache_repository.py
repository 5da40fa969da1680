"""
Repository for the normalized-address geocoding cache.

Writes are upserts so concurrent jobs resolving the same new address converge
on a single row.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from db.models.location_cache_entry import LocationCacheEntry


class LocationCacheRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, normalized_address: str) -> LocationCacheEntry | None:
        stmt = select(LocationCacheEntry).where(
            LocationCacheEntry.normalized_address == normalized_address
        )
        return self._session.scalars(stmt).first()

    def get_many(self, normalized_addresses: Sequence[str], *, chunk_size: int = 1000) -> dict[str, LocationCacheEntry]:
        found: dict[str, LocationCacheEntry] = {}
        distinct = list(dict.fromkeys(normalized_addresses))
        for start in range(0, len(distinct), chunk_size):
            chunk = distinct[start : start + chunk_size]
            stmt = select(LocationCacheEntry).where(LocationCacheEntry.normalized_address.in_(chunk))
            for entry in self._session.scalars(stmt):
                found[entry.normalized_address] = entry
        return found

    def record_hit(self, normalized_address: str, *, hits: int = 1) -> None:
        stmt = (
            update(LocationCacheEntry)
            .where(LocationCacheEntry.normalized_address == normalized_address)
            .values(
                hit_count=LocationCacheEntry.hit_count + hits,
                last_used_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self._session.execute(stmt)

    def upsert_result(
        self,
        *,
        normalized_address: str,
        original_address: str,
        latitude: float,
        longitude: float,
        confidence: float | None,
        provider: str | None,
        formatted_address: str | None = None,
        components: dict[str, Any] | None = None,
        hits: int = 1,
    ) -> None:
        """
        Insert a freshly geocoded address, or count a hit if another writer won.
        """

        now = datetime.now(timezone.utc)
        values = {
            "normalized_address": normalized_address,
            "original_address": original_address,
            "latitude": latitude,
            "longitude": longitude,
            "confidence": confidence,
            "provider": provider,
            "formatted_address": formatted_address,
            "components": components,
            "hit_count": hits,
            "last_used_at": now,
            "created_at": now,
            "updated_at": now,
        }
        dialect_name = self._session.get_bind().dialect.name
        if dialect_name == "postgresql":
            insert_stmt = postgresql.insert(LocationCacheEntry)
        elif dialect_name == "sqlite":
            insert_stmt = sqlite.insert(LocationCacheEntry)
        else:
            self._upsert_fallback(values=values, hits=hits)
            return

        insert_stmt = insert_stmt.values(**values)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[LocationCacheEntry.normalized_address],
            set_={
                "hit_count": LocationCacheEntry.hit_count + hits,
                "last_used_at": now,
            },
        )
        self._session.execute(stmt)

    def _upsert_fallback(self, *, values: dict[str, Any], hits: int) -> None:
        existing = self.get(values["normalized_address"])
        if existing is None:
            self._session.add(LocationCacheEntry(**values))
            self._session.flush()
            return
        self.record_hit(values["normalized_address"], hits=hits)

    def count(self) -> int:
        return int(self._session.scalar(select(func.count(LocationCacheEntry.id))) or 0)

    def purge(self, *, older_than: datetime | None = None, max_hit_count: int | None = None) -> int:
        """
        Administrative purge; the pipeline itself never deletes entries.
        """

        stmt = delete(LocationCacheEntry)
        if older_than is not None:
            stmt = stmt.where(LocationCacheEntry.last_used_at < older_than)
        if max_hit_count is not None:
            stmt = stmt.where(LocationCacheEntry.hit_count <= max_hit_count)
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)
