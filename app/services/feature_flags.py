"""
app/services/feature_flags.py

Process-wide feature flag cache backed by the app_settings table.

Flags are loaded lazily on first use and cached for a fixed TTL. Writes go
through update_flags(), which persists and invalidates the cache; any other
settings change must call invalidate() explicitly.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Mapping

from sqlalchemy.orm import Session, sessionmaker

from app.config import get_feature_flag_settings
from db.repositories.setting_repository import SettingRepository

logger = logging.getLogger(__name__)

FEATURE_FLAGS_KEY = "feature_flags"


class FeatureFlag:
    SCHEDULED_IMPORTS = "enable_scheduled_imports"
    EVENT_CREATION = "enable_event_creation"
    DATASET_CREATION = "enable_dataset_creation"
    IMPORT_CREATION = "enable_import_creation"
    SCHEDULED_JOB_EXECUTION = "enable_scheduled_job_execution"
    URL_FETCH_CACHING = "enable_url_fetch_caching"

    ALL = (
        SCHEDULED_IMPORTS,
        EVENT_CREATION,
        DATASET_CREATION,
        IMPORT_CREATION,
        SCHEDULED_JOB_EXECUTION,
        URL_FETCH_CACHING,
    )


DEFAULT_FLAGS: dict[str, bool] = {flag: True for flag in FeatureFlag.ALL}


class FeatureDisabledError(RuntimeError):
    """
    Raised when an operation is blocked by a disabled feature flag.
    """

    def __init__(self, flag: str) -> None:
        self.flag = flag
        super().__init__(f"Feature disabled: {flag}")


class FeatureFlagService:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._ttl_seconds = get_feature_flag_settings().cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._flags: dict[str, bool] | None = None
        self._loaded_at = 0.0

    def is_enabled(self, flag: str) -> bool:
        return self.get_flags().get(flag, DEFAULT_FLAGS.get(flag, False))

    def require(self, flag: str) -> None:
        if not self.is_enabled(flag):
            raise FeatureDisabledError(flag)

    def get_flags(self) -> dict[str, bool]:
        with self._lock:
            if self._flags is None or self._clock() - self._loaded_at >= self._ttl_seconds:
                self._flags = self._load()
                self._loaded_at = self._clock()
            return dict(self._flags)

    def invalidate(self) -> None:
        with self._lock:
            self._flags = None
            self._loaded_at = 0.0

    def update_flags(self, db: Session, updates: Mapping[str, Any]) -> dict[str, bool]:
        """
        Persist flag changes and drop the cached copy. The caller commits.
        """

        unknown = sorted(set(updates) - set(FeatureFlag.ALL))
        if unknown:
            raise ValueError(f"Unknown feature flags: {', '.join(unknown)}")

        repository = SettingRepository(db)
        merged = {**DEFAULT_FLAGS, **(repository.get_value(FEATURE_FLAGS_KEY) or {})}
        merged.update({name: bool(value) for name, value in updates.items()})
        repository.put_value(FEATURE_FLAGS_KEY, merged)
        self.invalidate()
        logger.info("Feature flags updated flags=%s", {name: merged[name] for name in updates})
        return merged

    def _load(self) -> dict[str, bool]:
        db = self._session_factory()
        try:
            stored = SettingRepository(db).get_value(FEATURE_FLAGS_KEY) or {}
        except Exception:
            logger.exception("Failed to load feature flags; using defaults")
            return dict(DEFAULT_FLAGS)
        finally:
            db.close()
        return {**DEFAULT_FLAGS, **{name: bool(value) for name, value in stored.items()}}


@lru_cache(maxsize=1)
def get_feature_flag_service() -> FeatureFlagService:
    return FeatureFlagService()
