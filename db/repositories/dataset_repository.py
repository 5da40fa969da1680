"""
Dataset repository: exact-name lookup and creation with pipeline defaults.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.dataset import (
    DEFAULT_LANGUAGE,
    Dataset,
    default_deduplication_config,
    default_id_strategy,
    default_schema_config,
)
from db.repositories.errors import DatasetNotFoundError


class DatasetRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, dataset_id: uuid.UUID) -> Dataset | None:
        return self._session.get(Dataset, dataset_id)

    def require(self, dataset_id: uuid.UUID) -> Dataset:
        dataset = self.get(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(f"Dataset not found: {dataset_id}")
        return dataset

    def find_by_exact_name(self, *, catalog_id: uuid.UUID | None, name: str) -> Dataset | None:
        """
        Case-sensitive name match within one catalog.
        """

        stmt = select(Dataset).where(Dataset.name == name)
        if catalog_id is not None:
            stmt = stmt.where(Dataset.catalog_id == catalog_id)
        stmt = stmt.order_by(Dataset.created_at.asc())
        # Some collations compare case-insensitively; re-check in Python.
        for dataset in self._session.scalars(stmt):
            if dataset.name == name:
                return dataset
        return None

    def create(
        self,
        *,
        catalog_id: uuid.UUID,
        name: str,
        language: str = DEFAULT_LANGUAGE,
        schema_config: dict[str, Any] | None = None,
        deduplication_config: dict[str, Any] | None = None,
        id_strategy: dict[str, Any] | None = None,
        field_mapping_overrides: dict[str, Any] | None = None,
        import_transforms: list[dict[str, Any]] | None = None,
        processing_options: dict[str, Any] | None = None,
    ) -> Dataset:
        dataset = Dataset(
            catalog_id=catalog_id,
            name=name,
            language=language,
            schema_config=schema_config or default_schema_config(),
            deduplication_config=deduplication_config or default_deduplication_config(),
            id_strategy=id_strategy or default_id_strategy(),
            field_mapping_overrides=field_mapping_overrides,
            import_transforms=import_transforms,
            processing_options=processing_options,
        )
        self._session.add(dataset)
        self._session.flush()
        return dataset

    def set_current_schema_version(self, *, dataset: Dataset, version_id: uuid.UUID) -> Dataset:
        dataset.current_schema_version_id = version_id
        return dataset
