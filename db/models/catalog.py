"""
db/models/catalog.py

Catalog model is the top-level container that groups datasets and import files.
"""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from db.models.dataset import Dataset


class Catalog(Base, TimestampMixin):
    __tablename__ = "catalogs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    is_public: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Public catalogs are readable without ownership",
    )

    # ── Relationships ──────────────────────────────────────────────────────────

    datasets: Mapped[list["Dataset"]] = relationship(
        "Dataset",
        back_populates="catalog",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_catalogs_is_public", "is_public"),)

    def __repr__(self) -> str:
        return f"<Catalog id={self.id} name={self.name!r} public={self.is_public}>"
