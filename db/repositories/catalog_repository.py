"""
Repository for catalog lookup and creation.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.catalog import Catalog
from db.repositories.errors import CatalogNotFoundError


class CatalogRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, catalog_id: uuid.UUID) -> Catalog | None:
        return self._session.get(Catalog, catalog_id)

    def ensure_exists(self, catalog_id: uuid.UUID) -> Catalog:
        catalog = self.get(catalog_id)
        if catalog is None:
            raise CatalogNotFoundError(f"Catalog not found: {catalog_id}")
        return catalog

    def get_by_name(self, name: str) -> Catalog | None:
        return self._session.scalars(select(Catalog).where(Catalog.name == name)).first()

    def create(self, *, name: str, description: str | None = None, is_public: bool = False) -> Catalog:
        catalog = Catalog(name=name, description=description, is_public=is_public)
        self._session.add(catalog)
        self._session.flush()
        return catalog
