"""
app/services/file_parsing.py

Sheet discovery and windowed row reading for CSV and Excel import files.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

CSV_MIME_TYPES = {"text/csv", "application/csv", "text/plain", "text/comma-separated-values"}
XLSX_MIME_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
XLS_MIME_TYPES = {"application/vnd.ms-excel"}

XLSX_MAGIC = bytes.fromhex("504b0304")
XLS_MAGIC = bytes.fromhex("d0cf11e0")

_CSV_ENCODINGS = ("utf-8-sig", "latin-1")
_COUNT_CHUNK_SIZE = 10_000


class FileParseError(RuntimeError):
    """
    Raised when an import file cannot be read as a table.
    """


@dataclass(frozen=True)
class SheetInfo:
    index: int
    name: str
    row_count: int
    headers: tuple[str, ...]


def detect_file_type(
    *,
    file_name: str | None = None,
    content_type: str | None = None,
    head: bytes | None = None,
) -> str:
    """
    Resolve csv / xlsx / xls from declared content type, then extension,
    then magic bytes. Defaults to csv.
    """

    base_type = (content_type or "").split(";", 1)[0].strip().lower()
    if base_type in XLSX_MIME_TYPES:
        return "xlsx"
    if base_type in XLS_MIME_TYPES:
        # Browsers send this for CSV too; only trust it when bytes agree.
        if head is None or head.startswith(XLS_MAGIC):
            return "xls"
    if base_type in CSV_MIME_TYPES and not (head or b"").startswith((XLSX_MAGIC, XLS_MAGIC)):
        return "csv"

    suffix = Path(file_name or "").suffix.lower()
    if suffix in {".xlsx", ".xls", ".csv"}:
        return suffix.lstrip(".")

    if head:
        if head.startswith(XLSX_MAGIC):
            return "xlsx"
        if head.startswith(XLS_MAGIC):
            return "xls"
    return "csv"


def _clean_header(value: Any, position: int) -> str:
    text = str(value).strip() if value is not None else ""
    if not text or text.lower().startswith("unnamed:"):
        return f"column_{position + 1}"
    return text


def _to_python(value: Any) -> Any:
    """
    Convert pandas/numpy cell values to JSON-friendly Python values.
    Returns None for empty cells.
    """

    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def _frame_to_rows(frame: pd.DataFrame, headers: tuple[str, ...]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for record in frame.itertuples(index=False, name=None):
        row: dict[str, Any] = {}
        for header, raw in zip(headers, record):
            value = _to_python(raw)
            # Missing trailing cells are absent, not null.
            if value is not None:
                row[header] = value
        rows.append(row)
    return rows


class TabularFileReader:
    """
    Reads one stored import file as a list of sheets.

    CSV files are streamed with `skiprows`/`nrows` windows. Workbook sheets
    are loaded once per reader and sliced.
    """

    def __init__(self, path: str | Path, *, file_type: str) -> None:
        self._path = Path(path)
        self._file_type = file_type
        self._sheets: list[SheetInfo] | None = None
        self._sheet_frames: dict[int, pd.DataFrame] = {}
        self._csv_encoding: str | None = None

    @property
    def file_type(self) -> str:
        return self._file_type

    def list_sheets(self) -> list[SheetInfo]:
        if self._sheets is None:
            try:
                if self._file_type == "csv":
                    self._sheets = [self._describe_csv()]
                else:
                    self._sheets = self._describe_workbook()
            except FileParseError:
                raise
            except (ValueError, OSError, pd.errors.ParserError) as exc:
                raise FileParseError(f"Unable to read {self._file_type} file: {exc}") from exc
        return self._sheets

    def get_sheet(self, sheet_index: int) -> SheetInfo:
        for sheet in self.list_sheets():
            if sheet.index == sheet_index:
                return sheet
        raise FileParseError(f"Sheet index {sheet_index} not found in file")

    def read_rows(self, sheet_index: int, *, offset: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        """
        Return up to `limit` data rows starting at zero-based `offset`.
        """

        sheet = self.get_sheet(sheet_index)
        if offset >= sheet.row_count:
            return []
        if self._file_type == "csv":
            return self._read_csv_window(sheet, offset=offset, limit=limit)
        frame = self._load_sheet_frame(sheet.index)
        stop = None if limit is None else offset + limit
        return _frame_to_rows(frame.iloc[offset:stop], sheet.headers)

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------

    def _csv_kwargs(self) -> dict[str, Any]:
        return {
            "dtype": str,
            "keep_default_na": False,
            "skip_blank_lines": True,
            "on_bad_lines": "skip",
            "encoding": self._csv_encoding or _CSV_ENCODINGS[0],
        }

    def _describe_csv(self) -> SheetInfo:
        last_error: Exception | None = None
        for encoding in _CSV_ENCODINGS:
            self._csv_encoding = encoding
            try:
                header_frame = pd.read_csv(self._path, nrows=0, **self._csv_kwargs())
                row_count = 0
                for chunk in pd.read_csv(self._path, chunksize=_COUNT_CHUNK_SIZE, **self._csv_kwargs()):
                    row_count += len(chunk)
                break
            except UnicodeDecodeError as exc:
                last_error = exc
                continue
            except pd.errors.EmptyDataError:
                return SheetInfo(index=0, name=self._path.stem, row_count=0, headers=())
        else:
            raise FileParseError(f"Unable to decode CSV file: {last_error}")

        headers = tuple(_clean_header(value, i) for i, value in enumerate(header_frame.columns))
        return SheetInfo(index=0, name=self._path.stem, row_count=row_count, headers=headers)

    def _read_csv_window(self, sheet: SheetInfo, *, offset: int, limit: int | None) -> list[dict[str, Any]]:
        # Windowed over parsed rows, not file lines, so blank and skipped lines
        # never shift offsets relative to row_count.
        stop = None if limit is None else offset + limit
        pieces: list[pd.DataFrame] = []
        position = 0
        with pd.read_csv(self._path, chunksize=_COUNT_CHUNK_SIZE, **self._csv_kwargs()) as chunks:
            for chunk in chunks:
                chunk_end = position + len(chunk)
                if chunk_end > offset:
                    start_in_chunk = max(0, offset - position)
                    stop_in_chunk = None if stop is None else max(0, stop - position)
                    pieces.append(chunk.iloc[start_in_chunk:stop_in_chunk])
                position = chunk_end
                if stop is not None and position >= stop:
                    break
        if not pieces:
            return []
        return _frame_to_rows(pd.concat(pieces), sheet.headers)

    # ------------------------------------------------------------------
    # Workbooks
    # ------------------------------------------------------------------

    def _engine(self) -> str:
        return "xlrd" if self._file_type == "xls" else "openpyxl"

    def _describe_workbook(self) -> list[SheetInfo]:
        sheets: list[SheetInfo] = []
        with pd.ExcelFile(self._path, engine=self._engine()) as workbook:
            for index, name in enumerate(workbook.sheet_names):
                frame = workbook.parse(sheet_name=name, dtype=object)
                frame = frame.dropna(how="all").reset_index(drop=True)
                headers = tuple(_clean_header(value, i) for i, value in enumerate(frame.columns))
                self._sheet_frames[index] = frame
                sheets.append(
                    SheetInfo(index=index, name=str(name), row_count=len(frame), headers=headers)
                )
        return sheets

    def _load_sheet_frame(self, sheet_index: int) -> pd.DataFrame:
        if sheet_index not in self._sheet_frames:
            self._describe_workbook()
        return self._sheet_frames[sheet_index]
