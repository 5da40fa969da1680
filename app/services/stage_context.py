"""
app/services/stage_context.py

Per-invocation context handed to pipeline stage handlers, and the outcome
they return to the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.config import PipelineSettings
from app.services.file_parsing import TabularFileReader, detect_file_type
from app.services.import_transforms import apply_transforms_to_rows
from db.models.dataset import Dataset
from db.models.import_file import ImportFile
from db.models.import_job import ImportJob
from db.repositories.storage import FileStorageBackend


@dataclass(frozen=True)
class StageOutcome:
    """
    What the orchestrator should do after one batch.

    more_batches re-enqueues the same stage; next_stage advances; neither
    means the job halts where it is (awaiting approval).
    """

    next_stage: str | None = None
    more_batches: bool = False
    rows_processed: int = 0
    output: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def advance(cls, next_stage: str, *, rows_processed: int = 0, **output: Any) -> "StageOutcome":
        return cls(next_stage=next_stage, rows_processed=rows_processed, output=output)

    @classmethod
    def next_batch(cls, *, rows_processed: int, **output: Any) -> "StageOutcome":
        return cls(more_batches=True, rows_processed=rows_processed, output=output)

    @classmethod
    def halt(cls, **output: Any) -> "StageOutcome":
        return cls(output=output)


def open_reader(import_file: ImportFile, storage: FileStorageBackend) -> TabularFileReader:
    path = storage.resolve(storage_path=import_file.storage_path)
    file_type = import_file.detected_type
    if not file_type:
        with open(path, "rb") as handle:
            head = handle.read(8)
        file_type = detect_file_type(
            file_name=import_file.original_name,
            content_type=import_file.mime_type,
            head=head,
        )
    return TabularFileReader(path, file_type=file_type)


@dataclass
class StageContext:
    db: Session
    job: ImportJob
    dataset: Dataset
    import_file: ImportFile
    batch_number: int
    settings: PipelineSettings
    storage: FileStorageBackend
    _reader: TabularFileReader | None = field(default=None, repr=False)

    @property
    def batch_size(self) -> int:
        return self.settings.batch_size

    @property
    def batch_start(self) -> int:
        return self.batch_number * self.settings.batch_size

    @property
    def total_rows(self) -> int:
        return int((self.job.progress or {}).get("total_rows") or 0)

    def reader(self) -> TabularFileReader:
        if self._reader is None:
            self._reader = open_reader(self.import_file, self.storage)
        return self._reader

    def read_raw_rows(self, *, offset: int | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        return self.reader().read_rows(
            self.job.sheet_index,
            offset=self.batch_start if offset is None else offset,
            limit=self.batch_size if limit is None else limit,
        )

    def read_batch(self, *, limit: int | None = None) -> list[dict[str, Any]]:
        """
        Current batch with the dataset's active transforms applied.
        """

        return apply_transforms_to_rows(self.read_raw_rows(limit=limit), self.dataset.import_transforms)

    def has_more_after(self, rows_in_batch: int) -> bool:
        return rows_in_batch > 0 and self.batch_start + rows_in_batch < self.total_rows
