"""
tests/conftest.py

Shared fixtures for pipeline tests.

Every test gets its own SQLite database file under tmp_path, local file
storage in the same directory, and a fully wired pipeline whose geocoding
provider is an in-process fake that records every address it is asked for.
No network access and no PostgreSQL server are required.
"""

from __future__ import annotations

import io
import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db.models  # noqa: F401  registers ORM models on Base.metadata
from app.config import GeocodingSettings, PipelineSettings, UrlFetchSettings
from app.connectors.rate_limiter import KeyedRateLimiter
from app.domain.geocoding import GeocodeResult, normalize_address
from app.services.event_materializer import EventMaterializer
from app.services.feature_flags import FeatureFlagService
from app.services.file_intake_service import FileIntakeService
from app.services.geocoding_service import BatchGeocoder, ProviderChain
from app.services.scheduled_imports import ScheduledImportManager
from app.services.stage_orchestrator import StageOrchestrator
from app.services.task_queue import TaskQueue
from app.services.url_fetch_service import UrlFetchService
from db.base import Base
from db.models.import_job import ImportStage
from db.repositories.storage import LocalFileStorage
from db.repositories.types import FileIntakeInput
from db.session import build_session_factory


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGeocodingClient:
    """
    Geocoding client that resolves every address to a deterministic point.

    Set `fail` to make every lookup come back empty, or add addresses to
    `fail_addresses` to fail only those.
    """

    def __init__(self, name: str = "fake", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.fail_addresses: set[str] = set()
        self.calls: list[str] = []

    def geocode(self, address: str) -> GeocodeResult | None:
        self.calls.append(address)
        if self.fail or address in self.fail_addresses:
            return None
        offset = len(self.calls) / 100
        return GeocodeResult(
            latitude=52.5 + offset,
            longitude=13.4 + offset,
            confidence=0.9,
            provider=self.name,
            normalized_address=normalize_address(address),
            formatted_address=address.title(),
        )


class InterruptedStream(io.BytesIO):
    """
    Response body that raises `error` once its bytes are used up.
    """

    def __init__(self, body: bytes, error: Exception) -> None:
        super().__init__(body)
        self._error = error

    def read(self, size: int | None = -1) -> bytes:
        chunk = super().read(size)
        if not chunk:
            raise self._error
        return chunk


class FakeHttpSession:
    """
    Stand-in for requests.Session that replays queued responses.

    Each queued item is either a response spec or an exception instance to
    raise. A response added with `interrupt_with` drops the connection
    after its body. Every call is recorded in `requests`.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self._queue: list[Any] = []

    def add(
        self,
        status_code: int = 200,
        body: bytes | str | Any = b"",
        *,
        headers: dict[str, str] | None = None,
        interrupt_with: Exception | None = None,
    ) -> "FakeHttpSession":
        if isinstance(body, str):
            body = body.encode("utf-8")
        elif not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self._queue.append((status_code, body, dict(headers or {}), interrupt_with))
        return self

    def fail_with(self, exc: Exception) -> "FakeHttpSession":
        self._queue.append(exc)
        return self

    def request(self, *, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self._queue:
            raise AssertionError(f"Unexpected request {method} {url}")
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        status_code, body, headers, interrupt_with = item
        response = requests.Response()
        response.status_code = status_code
        response.url = url
        response.headers.update(headers)
        response.raw = io.BytesIO(body) if interrupt_with is None else InterruptedStream(body, interrupt_with)
        return response


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pipeline.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@dataclass
class Pipeline:
    session_factory: sessionmaker[Session]
    storage: LocalFileStorage
    settings: PipelineSettings
    feature_flags: FeatureFlagService
    task_queue: TaskQueue
    orchestrator: StageOrchestrator
    intake: FileIntakeService
    geocoder: FakeGeocodingClient
    uploads: list[str] = field(default_factory=list)

    def upload_csv(self, content: str, *, name: str = "events.csv", **kwargs) -> str:
        import_file = self.intake.intake(
            FileIntakeInput(
                file_name=name,
                content=content.encode("utf-8"),
                content_type="text/csv",
                original_name=kwargs.pop("original_name", name),
                **kwargs,
            )
        )
        self.uploads.append(str(import_file.id))
        return str(import_file.id)

    def drain(self) -> None:
        self.task_queue.run_until_idle(limit=50)


@pytest.fixture()
def pipeline_settings() -> PipelineSettings:
    return PipelineSettings(batch_size=2, duplicate_query_chunk_size=2, schema_sample_size=100)


@pytest.fixture()
def geocoder() -> FakeGeocodingClient:
    return FakeGeocodingClient()


@pytest.fixture()
def http_session() -> FakeHttpSession:
    return FakeHttpSession()


@pytest.fixture()
def feature_flags(session_factory: sessionmaker[Session]) -> FeatureFlagService:
    return FeatureFlagService(session_factory=session_factory, ttl_seconds=0)


@pytest.fixture()
def pipeline(
    tmp_path: Path,
    session_factory: sessionmaker[Session],
    pipeline_settings: PipelineSettings,
    feature_flags: FeatureFlagService,
    geocoder: FakeGeocodingClient,
) -> Pipeline:
    storage = LocalFileStorage(tmp_path / "imports")
    task_queue = TaskQueue(session_factory=session_factory)
    geocoding = BatchGeocoder(
        settings=GeocodingSettings(enabled=True),
        provider_chain=ProviderChain([geocoder]),
    )
    orchestrator = StageOrchestrator(
        session_factory=session_factory,
        task_queue=task_queue,
        storage=storage,
        settings=pipeline_settings,
        feature_flags=feature_flags,
        handlers={
            ImportStage.GEOCODE_BATCH: geocoding.run_batch,
            ImportStage.CREATE_EVENTS: EventMaterializer(feature_flags=feature_flags).run_batch,
        },
    )
    orchestrator.register_with()
    intake = FileIntakeService(
        session_factory=session_factory,
        orchestrator=orchestrator,
        settings=pipeline_settings,
        feature_flags=feature_flags,
    )
    return Pipeline(
        session_factory=session_factory,
        storage=storage,
        settings=pipeline_settings,
        feature_flags=feature_flags,
        task_queue=task_queue,
        orchestrator=orchestrator,
        intake=intake,
        geocoder=geocoder,
    )


@pytest.fixture()
def manager(pipeline: Pipeline, http_session: FakeHttpSession) -> ScheduledImportManager:
    fetch_service = UrlFetchService(
        settings=UrlFetchSettings(max_retries=0),
        session=http_session,
        rate_limiter=KeyedRateLimiter(default_rate_limit_per_second=1.0, sleep=lambda _: None),
        sleep=lambda _: None,
    )
    manager = ScheduledImportManager(
        session_factory=pipeline.session_factory,
        task_queue=pipeline.task_queue,
        fetch_service=fetch_service,
        intake_service=pipeline.intake,
        feature_flags=pipeline.feature_flags,
    )
    manager.register_with()
    return manager
