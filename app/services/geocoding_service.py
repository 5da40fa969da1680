"""
app/services/geocoding_service.py

Provider chain and the geocode-batch stage.

Each unique normalized address is resolved at most once per batch: cache
hits reuse stored coordinates and bump the hit counter, misses trigger one
provider call whose result is upserted into the cache. Rows that already
carry valid coordinates never reach the cache.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import Any, Mapping

import requests
from sqlalchemy.orm import Session

from app.config import GeocodingSettings, get_geocoding_settings
from app.connectors.base import HttpClientSettings
from app.connectors.geocoding_connectors import GeocodingClient, GoogleGeocodingConnector, NominatimConnector
from app.connectors.rate_limiter import KeyedRateLimiter
from app.domain.geocoding import (
    CoordinateValidation,
    GeocodeResult,
    GeocodingProviderError,
    normalize_address,
    validate_coordinates,
)
from app.mappers.field_mapping_detector import FieldMappingResolution
from app.services.id_generation import extract_field_value
from app.services.stage_context import StageContext, StageOutcome
from db.models.geocoding_provider import GeocodingProvider, GeocodingProviderType
from db.models.import_job import ImportStage
from db.repositories.geocoding_provider_repository import GeocodingProviderRepository
from db.repositories.location_cache_repository import LocationCacheRepository

logger = logging.getLogger(__name__)


class GeocodingStageError(RuntimeError):
    """
    Raised when no address of a job could be geocoded.
    """


# ---------------------------------------------------------------------------
# Row helpers shared with the event materializer
# ---------------------------------------------------------------------------


def row_coordinates(row: Mapping[str, Any], mappings: FieldMappingResolution) -> CoordinateValidation | None:
    """
    Validated import-provided coordinates, or None when the row has none.
    """

    lat_path = mappings.path_for("latitude")
    lon_path = mappings.path_for("longitude")
    if not lat_path or not lon_path:
        return None
    latitude = extract_field_value(row, lat_path)
    longitude = extract_field_value(row, lon_path)
    if latitude in (None, "") or longitude in (None, ""):
        return None
    return validate_coordinates(latitude, longitude)


def row_address(row: Mapping[str, Any], mappings: FieldMappingResolution) -> str | None:
    for field_name in ("location", "location_name"):
        path = mappings.path_for(field_name)
        if not path:
            continue
        value = extract_field_value(row, path)
        if value not in (None, "") and str(value).strip():
            return str(value).strip()
    return None


def has_location_mapping(mappings: FieldMappingResolution) -> bool:
    return any(mappings.path_for(name) for name in ("location", "location_name", "latitude", "longitude"))


ROW_COUNTERS = (
    "rows_total",
    "rows_with_coordinates",
    "rows_without_location",
    "rows_geocoded",
    "rows_failed",
    "cache_hits",
    "provider_calls",
)


def summarize_batches(
    batches: Mapping[str, Mapping[str, int]],
    *,
    addresses_resolved: int,
    addresses_failed: int,
) -> dict[str, int]:
    """
    Job-level summary from per-batch row counters.

    Batches are keyed by batch number, so a batch that runs again replaces
    its own counters instead of adding to them.
    """

    summary = {name: sum(int(batch.get(name) or 0) for batch in batches.values()) for name in ROW_COUNTERS}
    summary["addresses_resolved"] = addresses_resolved
    summary["addresses_failed"] = addresses_failed
    return summary


def empty_geocoding_results() -> dict[str, Any]:
    return {
        "results": {},
        "failed": [],
        "batches": {},
        "summary": summarize_batches({}, addresses_resolved=0, addresses_failed=0),
    }


# ---------------------------------------------------------------------------
# Provider chain
# ---------------------------------------------------------------------------


class ProviderChain:
    """
    Tries geocoding clients in priority order until one returns a result.
    """

    def __init__(self, clients: Sequence[GeocodingClient]) -> None:
        self._clients = list(clients)

    @property
    def names(self) -> list[str]:
        return [client.name for client in self._clients]

    def __bool__(self) -> bool:
        return bool(self._clients)

    def geocode(self, address: str) -> GeocodeResult | None:
        for client in self._clients:
            try:
                result = client.geocode(address)
            except GeocodingProviderError as exc:
                logger.warning("Geocoding provider failed provider=%s address=%r error=%s", client.name, address, exc)
                continue
            if result is not None:
                return result
        return None


def _client_for(
    *,
    name: str,
    provider_type: str,
    config: Mapping[str, Any],
    rate_limit_per_second: float,
    settings: GeocodingSettings,
    rate_limiter: KeyedRateLimiter,
    session: requests.Session | None,
) -> GeocodingClient | None:
    http_settings = HttpClientSettings(
        timeout_seconds=float(config.get("timeout_seconds") or settings.timeout_seconds),
        max_retries=int(config.get("max_retries", 2)),
        backoff_initial_seconds=1.0,
        backoff_multiplier=2.0,
        max_backoff_seconds=30.0,
        rate_limit_per_second=rate_limit_per_second,
    )
    if provider_type == GeocodingProviderType.NOMINATIM:
        return NominatimConnector(
            name=name,
            base_url=str(config.get("base_url") or settings.nominatim_base_url),
            user_agent=str(config.get("user_agent") or settings.user_agent),
            http_settings=http_settings,
            session=session,
            rate_limiter=rate_limiter,
        )
    if provider_type == GeocodingProviderType.GOOGLE:
        api_key = config.get("api_key") or settings.google_api_key
        if not api_key:
            logger.warning("Skipping Google geocoding provider without API key name=%s", name)
            return None
        return GoogleGeocodingConnector(
            name=name,
            api_key=str(api_key),
            http_settings=http_settings,
            session=session,
            rate_limiter=rate_limiter,
        )
    logger.warning("Unknown geocoding provider type name=%s type=%s", name, provider_type)
    return None


def build_provider_chain(
    db: Session,
    *,
    settings: GeocodingSettings | None = None,
    session: requests.Session | None = None,
) -> ProviderChain:
    """
    Chain from enabled provider records, or from settings when none are stored.
    """

    settings = settings or get_geocoding_settings()
    rate_limiter = KeyedRateLimiter(default_rate_limit_per_second=settings.nominatim_rate_limit_per_second)
    records: list[GeocodingProvider] = GeocodingProviderRepository(db).list_enabled()
    clients: list[GeocodingClient] = []
    if records:
        for record in records:
            client = _client_for(
                name=record.name,
                provider_type=record.provider_type,
                config=record.config or {},
                rate_limit_per_second=record.rate_limit_per_second,
                settings=settings,
                rate_limiter=rate_limiter,
                session=session,
            )
            if client is not None:
                clients.append(client)
    else:
        rates = {
            GeocodingProviderType.NOMINATIM: settings.nominatim_rate_limit_per_second,
            GeocodingProviderType.GOOGLE: settings.google_rate_limit_per_second,
        }
        for provider_type in settings.provider_order:
            client = _client_for(
                name=provider_type,
                provider_type=provider_type,
                config={},
                rate_limit_per_second=rates.get(provider_type, 1.0),
                settings=settings,
                rate_limiter=rate_limiter,
                session=session,
            )
            if client is not None:
                clients.append(client)
    return ProviderChain(clients)


# ---------------------------------------------------------------------------
# geocode-batch stage
# ---------------------------------------------------------------------------


class BatchGeocoder:
    def __init__(
        self,
        *,
        settings: GeocodingSettings | None = None,
        provider_chain: ProviderChain | None = None,
    ) -> None:
        self._settings = settings or get_geocoding_settings()
        self._provider_chain = provider_chain

    def chain_for(self, db: Session) -> ProviderChain:
        if self._provider_chain is None:
            self._provider_chain = build_provider_chain(db, settings=self._settings)
        return self._provider_chain

    def run_batch(self, ctx: StageContext) -> StageOutcome:
        job = ctx.job
        mappings = FieldMappingResolution.from_dict(job.detected_field_mappings)
        if not self._settings.enabled or not has_location_mapping(mappings):
            reason = "disabled" if not self._settings.enabled else "no_location_field"
            job.geocoding_results = {**empty_geocoding_results(), "skipped": reason}
            logger.info("Geocoding skipped job=%s reason=%s", job.id, reason)
            return StageOutcome.advance(ImportStage.CREATE_EVENTS, skipped=reason)

        state = dict(job.geocoding_results or {}) if ctx.batch_number else empty_geocoding_results()
        results = dict(state.get("results") or {})
        failed = {item["normalized_address"]: item for item in state.get("failed") or []}
        batches = dict(state.get("batches") or {})
        counters = dict.fromkeys(ROW_COUNTERS, 0)

        rows = ctx.read_batch()
        counters["rows_total"] = len(rows)

        rows_by_address: Counter[str] = Counter()
        original_by_address: dict[str, str] = {}
        for row in rows:
            provided = row_coordinates(row, mappings)
            if provided is not None and provided.usable:
                counters["rows_with_coordinates"] += 1
                continue
            address = row_address(row, mappings)
            normalized = normalize_address(address)
            if not normalized:
                counters["rows_without_location"] += 1
                continue
            rows_by_address[normalized] += 1
            original_by_address.setdefault(normalized, address or normalized)

        cache = LocationCacheRepository(ctx.db)
        cached = cache.get_many(list(rows_by_address))
        for normalized, entry in cached.items():
            cache.record_hit(normalized, hits=rows_by_address[normalized])
            counters["cache_hits"] += rows_by_address[normalized]
            counters["rows_geocoded"] += rows_by_address[normalized]
            results[normalized] = {
                "latitude": entry.latitude,
                "longitude": entry.longitude,
                "confidence": entry.confidence,
                "provider": entry.provider,
                "normalized_address": normalized,
                "formatted_address": entry.formatted_address,
                "cached": True,
            }

        misses = [normalized for normalized in rows_by_address if normalized not in cached]
        chain = self.chain_for(ctx.db) if misses else None
        for normalized in misses:
            count = rows_by_address[normalized]
            counters["provider_calls"] += 1
            result = chain.geocode(original_by_address[normalized]) if chain else None
            if result is None:
                counters["rows_failed"] += count
                if normalized not in results:
                    failed.setdefault(
                        normalized,
                        {"address": original_by_address[normalized], "normalized_address": normalized},
                    )
                continue
            cache.upsert_result(
                normalized_address=normalized,
                original_address=original_by_address[normalized],
                latitude=result.latitude,
                longitude=result.longitude,
                confidence=result.confidence,
                provider=result.provider,
                formatted_address=result.formatted_address,
                components=result.components,
                hits=count,
            )
            counters["rows_geocoded"] += count
            results[normalized] = {**result.to_dict(), "normalized_address": normalized, "cached": False}

        for normalized in results:
            failed.pop(normalized, None)
        batches[str(ctx.batch_number)] = counters
        summary = summarize_batches(batches, addresses_resolved=len(results), addresses_failed=len(failed))
        job.geocoding_results = {
            "results": results,
            "failed": list(failed.values()),
            "batches": batches,
            "summary": summary,
        }
        logger.info(
            "Geocoding batch complete job=%s batch=%s rows=%s cache_hits=%s provider_calls=%s failed=%s",
            job.id,
            ctx.batch_number,
            len(rows),
            summary["cache_hits"],
            summary["provider_calls"],
            summary["addresses_failed"],
        )

        if ctx.has_more_after(len(rows)):
            return StageOutcome.next_batch(rows_processed=len(rows))

        if summary["addresses_failed"] and not summary["addresses_resolved"]:
            raise GeocodingStageError(
                f"Geocoding failed for all {summary['addresses_failed']} address(es) of import job {job.id}"
            )
        return StageOutcome.advance(ImportStage.CREATE_EVENTS, rows_processed=len(rows), summary=summary)
