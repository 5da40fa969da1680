"""
db/models/import_row_key.py

Identity key computed for every row of an import job during duplicate analysis.
"""

from __future__ import annotations

import uuid

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base

# SQLite only autoincrements INTEGER primary keys.
_ROW_KEY_ID = BigInteger().with_variant(Integer(), "sqlite")


class ImportRowKey(Base):
    __tablename__ = "import_row_keys"

    id: Mapped[int] = mapped_column(
        _ROW_KEY_ID,
        primary_key=True,
        autoincrement=True,
    )
    import_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Zero-based data row index within the sheet",
    )
    unique_id: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
    )
    is_internal_duplicate: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    existing_event_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Set when the key already exists in stored events",
    )

    __table_args__ = (
        UniqueConstraint("import_job_id", "row_number", name="uq_import_row_keys_job_row"),
        Index("ix_import_row_keys_job_unique_id", "import_job_id", "unique_id"),
    )
