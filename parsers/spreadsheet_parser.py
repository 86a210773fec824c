"""
Spreadsheet parser for customer imports.

Reads an uploaded workbook or delimited text file into ordered row records
keyed by inferred headers. Finds the header row when it is not row 1 and
picks the first populated sheet unless the caller names one.

No side effects: the caller owns batch state and persistence.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, Optional
import hashlib
import math
import structlog

import pandas as pd

from exceptions import (
    UnsupportedFileTypeError,
    FileTooLargeError,
    UnreadableFileError,
    EmptyWorkbookError,
    EmptySheetError,
    SheetNotFoundError,
)
from utils.text_utils import is_blank, collapse_whitespace

logger = structlog.get_logger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
TEXT_EXTENSIONS = (".csv", ".txt")
SUPPORTED_EXTENSIONS = EXCEL_EXTENSIONS + TEXT_EXTENSIONS

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_HEADER_SCAN_ROWS = 20

# Delimiters tried for text files, in preference order on ties
CSV_DELIMITERS = (";", ",", "\t", "|")


@dataclass
class ParsedRow:
    """One data row. row_number is the 1-based row in the source sheet."""
    row_number: int
    values: dict[str, Any]


@dataclass
class SpreadsheetParseResult:
    """Result of parsing an uploaded spreadsheet."""
    filename: str
    size_bytes: int
    file_hash: str
    headers: list[str]
    rows: list[ParsedRow] = field(default_factory=list)
    sheet_name: Optional[str] = None
    sheet_names: list[str] = field(default_factory=list)
    header_row_offset: int = 0

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def sample_values(self, header: str, limit: int = 3) -> list[Any]:
        """First non-empty distinct values of a column."""
        samples: list[Any] = []
        for row in self.rows:
            value = row.values.get(header)
            if value is not None and value not in samples:
                samples.append(value)
                if len(samples) >= limit:
                    break
        return samples

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "filename": self.filename,
            "size_bytes": self.size_bytes,
            "file_hash": self.file_hash,
            "sheet_name": self.sheet_name,
            "sheet_names": self.sheet_names,
            "header_row_offset": self.header_row_offset,
            "headers": self.headers,
            "row_count": self.row_count,
        }


def parse_spreadsheet(
    content: bytes,
    filename: str,
    sheet_name: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    header_scan_rows: int = DEFAULT_HEADER_SCAN_ROWS,
) -> SpreadsheetParseResult:
    """
    Parse an uploaded customer spreadsheet.

    Args:
        content: Raw file bytes
        filename: Original filename (extension selects the reader)
        sheet_name: Sheet to read; first populated sheet when None
        max_bytes: Upload size limit
        header_scan_rows: How many leading rows may precede the header

    Returns:
        SpreadsheetParseResult with headers and data rows

    Raises:
        UnsupportedFileTypeError: Extension is not a spreadsheet or text file
        FileTooLargeError: content exceeds max_bytes
        UnreadableFileError: File is corrupt or not what its extension says
        EmptyWorkbookError: No sheet holds any data
        EmptySheetError: Selected sheet has no header or no data rows
        SheetNotFoundError: sheet_name is not in the workbook
    """
    extension = Path(filename or "").suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileTypeError(filename, list(SUPPORTED_EXTENSIONS))

    size_bytes = len(content)
    if size_bytes > max_bytes:
        raise FileTooLargeError(filename, size_bytes, max_bytes)
    if size_bytes == 0:
        raise EmptyWorkbookError(filename)

    logger.info("parsing_spreadsheet", filename=filename, size_bytes=size_bytes, extension=extension)

    if extension in EXCEL_EXTENSIONS:
        frame, selected_sheet, sheet_names = _read_workbook(content, filename, sheet_name)
    else:
        frame = _read_delimited(content, filename, header_scan_rows)
        selected_sheet, sheet_names = None, []

    header_index = _detect_header_row(frame, header_scan_rows)
    if header_index is None:
        raise EmptySheetError(filename, selected_sheet or filename)

    headers, columns = _build_headers(frame, header_index)
    rows = _extract_rows(frame, header_index, headers, columns)

    if not rows:
        raise EmptySheetError(filename, selected_sheet or filename)

    result = SpreadsheetParseResult(
        filename=filename,
        size_bytes=size_bytes,
        file_hash=hashlib.sha256(content).hexdigest(),
        headers=headers,
        rows=rows,
        sheet_name=selected_sheet,
        sheet_names=sheet_names,
        header_row_offset=int(header_index),
    )

    logger.info(
        "spreadsheet_parsed",
        filename=filename,
        sheet=selected_sheet,
        header_row_offset=result.header_row_offset,
        columns=len(headers),
        rows=result.row_count,
    )

    return result


# ===================
# READERS
# ===================

def _read_workbook(
    content: bytes,
    filename: str,
    sheet_name: Optional[str]
) -> tuple[pd.DataFrame, str, list[str]]:
    """Load the requested sheet, or the first one holding data."""
    try:
        excel = pd.ExcelFile(BytesIO(content), engine="openpyxl")
    except Exception as e:
        logger.warning("workbook_read_failed", filename=filename, error=str(e))
        raise UnreadableFileError(filename, "not a valid Excel workbook") from e

    sheet_names = [str(name) for name in excel.sheet_names]
    if not sheet_names:
        raise EmptyWorkbookError(filename)

    if sheet_name is not None:
        if sheet_name not in sheet_names:
            raise SheetNotFoundError(sheet_name, sheet_names)
        frame = _drop_blank_rows(_parse_sheet(excel, sheet_name, filename))
        if frame.empty:
            raise EmptySheetError(filename, sheet_name)
        return frame, sheet_name, sheet_names

    for name in sheet_names:
        frame = _drop_blank_rows(_parse_sheet(excel, name, filename))
        if not frame.empty:
            return frame, name, sheet_names

    raise EmptyWorkbookError(filename)


def _parse_sheet(excel: pd.ExcelFile, name: str, filename: str) -> pd.DataFrame:
    try:
        return excel.parse(name, header=None, dtype=object)
    except Exception as e:
        logger.warning("sheet_read_failed", filename=filename, sheet=name, error=str(e))
        raise UnreadableFileError(filename, f"sheet '{name}' could not be read") from e


def _read_delimited(content: bytes, filename: str, scan_rows: int = DEFAULT_HEADER_SCAN_ROWS) -> pd.DataFrame:
    """Load a CSV/TXT file, sniffing the delimiter from the leading lines."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Norwegian exports from older Excel versions are often latin-1
        text = content.decode("latin-1")

    if not text.strip():
        raise EmptyWorkbookError(filename)

    lines = [line for line in text.splitlines() if line.strip()]
    delimiter = _sniff_delimiter(lines[:scan_rows])

    # Title lines above the table have fewer fields than the table itself
    width = max(line.count(delimiter) for line in lines) + 1

    try:
        frame = pd.read_csv(
            StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            engine="python",
        )
    except (pd.errors.ParserError, ValueError) as e:
        logger.warning("delimited_read_failed", filename=filename, error=str(e))
        raise UnreadableFileError(filename, "rows could not be split into columns") from e

    frame = _drop_blank_rows(frame)
    if frame.empty:
        raise EmptyWorkbookError(filename)
    return frame


def _sniff_delimiter(lines: list[str]) -> str:
    """
    Pick the delimiter that splits the most leading lines the same way.

    For each candidate, the most common non-zero per-line count is the
    table width; the candidate seen at that width on the most lines wins.
    Ties go to the wider split, then to CSV_DELIMITERS order.
    """
    best, best_key = ",", (0, 0)
    for delimiter in CSV_DELIMITERS:
        frequencies: dict[int, int] = {}
        for line in lines:
            count = line.count(delimiter)
            if count:
                frequencies[count] = frequencies.get(count, 0) + 1
        if not frequencies:
            continue
        count, lines_at_count = max(frequencies.items(), key=lambda item: (item[1], item[0]))
        key = (lines_at_count, count)
        if key > best_key:
            best, best_key = delimiter, key
    return best


# ===================
# HEADER DETECTION
# ===================

def _drop_blank_rows(frame: pd.DataFrame) -> pd.DataFrame:
    """Remove rows with no populated cell, keeping the original index."""
    if frame.empty:
        return frame
    populated = frame.apply(lambda row: any(not is_blank(v) for v in row), axis=1)
    return frame[populated]


def _detect_header_row(frame: pd.DataFrame, scan_rows: int) -> Optional[int]:
    """
    Find the index of the header row.

    The header is the first row among the leading rows that fills at least
    half as many cells as the widest leading row and is mostly text. Title
    rows above a table ("Kundeliste 2024") fail the width test.

    Returns:
        DataFrame index label of the header row, or None for an empty frame
    """
    if frame.empty:
        return None

    leading = frame.head(scan_rows)
    filled_counts = {
        index: sum(1 for v in row if not is_blank(v))
        for index, row in leading.iterrows()
    }
    widest = max(filled_counts.values())
    min_filled = max(1, math.ceil(widest / 2))

    for index, row in leading.iterrows():
        filled = [v for v in row if not is_blank(v)]
        if len(filled) < min_filled:
            continue
        text_cells = sum(1 for v in filled if isinstance(v, str) and not _looks_numeric(v))
        if text_cells * 2 >= len(filled):
            return index

    # No text-like row: treat the first populated row as the header
    return leading.index[0]


def _looks_numeric(value: str) -> bool:
    try:
        float(value.replace(",", ".").replace(" ", ""))
        return True
    except ValueError:
        return False


def _build_headers(frame: pd.DataFrame, header_index: int) -> tuple[list[str], list[Any]]:
    """
    Name every column that has a header or any data.

    Blank headers become Kolonne_N and repeats get the first free _1, _2
    suffix, so every column keeps a distinct name.

    Returns:
        (headers, frame column labels in the same order)
    """
    header_row = frame.loc[header_index]
    body = frame.loc[frame.index > header_index]

    headers: list[str] = []
    columns: list[Any] = []
    seen: set[str] = set()

    for position, column in enumerate(frame.columns):
        raw = header_row[column]
        has_data = any(not is_blank(v) for v in body[column])
        if is_blank(raw) and not has_data:
            continue

        base = f"Kolonne_{position + 1}" if is_blank(raw) else collapse_whitespace(str(raw))
        name, suffix = base, 0
        while name in seen:
            suffix += 1
            name = f"{base}_{suffix}"
        seen.add(name)

        headers.append(name)
        columns.append(column)

    return headers, columns


def _extract_rows(
    frame: pd.DataFrame,
    header_index: int,
    headers: list[str],
    columns: list[Any]
) -> list[ParsedRow]:
    rows: list[ParsedRow] = []
    body = frame.loc[frame.index > header_index]

    for index, row in body.iterrows():
        values = {header: _clean_cell(row[column]) for header, column in zip(headers, columns)}
        if all(v is None for v in values.values()):
            continue
        rows.append(ParsedRow(row_number=int(index) + 1, values=values))

    return rows


def _clean_cell(value: Any) -> Any:
    """
    Convert a cell to a plain Python value.

    - Blank / NaN → None
    - Timestamps → ISO date (or datetime when a time is present)
    - Integral floats → int (postal codes read as 7010.0)
    - Strings → stripped
    """
    if is_blank(value):
        return None

    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()

    if isinstance(value, datetime):
        if value.hour == 0 and value.minute == 0 and value.second == 0:
            return value.date().isoformat()
        return value.isoformat()

    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, bool):
        return value

    if isinstance(value, float):
        return int(value) if value.is_integer() else value

    if isinstance(value, int):
        return value

    return str(value).strip()
