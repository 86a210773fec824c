"""
Data cleaner for customer imports.

Runs between parsing and mapping. Removes rows that are not customers
(totals rows, exact repeats, rows left empty after cleaning) and fixes cells
that would otherwise fail validation for reasons unrelated to the data:
invisible characters, UTF-8 read as latin-1, and placeholder text such as
"-" or "#N/A".

Every change is recorded in a CleaningReport so the preview can show it.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import math
import re
import structlog

from config.import_fields import (
    EMPTY_VALUE_MARKERS,
    EMPTY_VALUE_WORDS,
    INVISIBLE_CHARACTERS,
    MOJIBAKE_FIXES,
    SUMMARY_ROW_WORDS,
    VOCABULARIES,
)
from models.customer_import import (
    CleanedCell,
    CleaningReport,
    CleaningRuleSummary,
    RemovedRow,
)
from parsers.spreadsheet_parser import ParsedRow
from services.column_mapper import lookup_synonym
from utils.text_utils import is_blank

logger = structlog.get_logger(__name__)

# rule id -> (description, category)
CLEANING_RULES: dict[str, tuple[str, str]] = {
    "remove_summary_rows": ("Removes totals rows such as 'Sum' or 'Totalt'", "rows"),
    "remove_duplicate_rows": ("Removes exact repeats of an earlier row (keeps the first)", "rows"),
    "remove_empty_rows": ("Removes rows left without any value after cleaning", "rows"),
    "remove_invisible_chars": ("Removes zero-width characters and non-breaking spaces", "cells"),
    "fix_encoding": ("Repairs Norwegian letters garbled by a wrong encoding (Ã¸ → ø)", "cells"),
    "standardize_empty": ("Treats placeholders like '-', 'N/A' and '#REF!' as empty", "cells"),
}

_SUMMARY_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(word) for word in SUMMARY_ROW_WORDS) + r")\b",
    re.IGNORECASE,
)


@dataclass
class CleaningResult:
    rows: list[ParsedRow] = field(default_factory=list)
    report: CleaningReport = field(default_factory=CleaningReport)


def vocabulary_columns(headers: list[str]) -> set[str]:
    """Headers the synonym table maps to a vocabulary-backed field."""
    return {h for h in headers if lookup_synonym(h) in VOCABULARIES}


class DataCleaner:
    """
    Cleans parsed rows before they are mapped.

    Word placeholders ("ingen", "tom", "n/a") are left alone in vocabulary
    columns, where they can be real values ("Ingen" is a driftskategori).
    """

    def clean(
        self,
        headers: list[str],
        rows: list[ParsedRow],
        protected_columns: Optional[set[str]] = None
    ) -> CleaningResult:
        """
        Clean parsed rows.

        Args:
            headers: Column headers in sheet order
            rows: Parsed data rows
            protected_columns: Columns where word placeholders are kept;
                defaults to the columns that look like vocabulary fields

        Returns:
            CleaningResult with the surviving rows (copies) and the report
        """
        if protected_columns is None:
            protected_columns = vocabulary_columns(headers)

        removed: list[RemovedRow] = []
        cells: list[CleanedCell] = []

        kept: list[ParsedRow] = []
        for row in rows:
            reason = self._summary_reason(headers, row.values)
            if reason:
                removed.append(self._removal(row, "remove_summary_rows", reason))
            else:
                kept.append(row)

        first_seen: dict[tuple, int] = {}
        unique: list[ParsedRow] = []
        for row in kept:
            key = tuple(row.values.get(h) for h in headers)
            if key in first_seen:
                removed.append(self._removal(
                    row, "remove_duplicate_rows", f"Repeats row {first_seen[key]}"
                ))
                continue
            first_seen[key] = row.row_number
            unique.append(row)

        cleaned_rows: list[ParsedRow] = []
        for row in unique:
            values = {
                header: self._clean_cell(row.row_number, header, value, header in protected_columns, cells)
                for header, value in row.values.items()
            }
            if all(v is None for v in values.values()):
                removed.append(self._removal(row, "remove_empty_rows", "No values left after cleaning"))
                continue
            cleaned_rows.append(ParsedRow(row_number=row.row_number, values=values))

        removed.sort(key=lambda r: r.row_number)
        report = CleaningReport(
            rules=self._summaries(removed, cells),
            removed_rows=removed,
            cleaned_cells=cells,
            total_rows_removed=len(removed),
            total_cells_cleaned=len(cells),
        )

        if removed or cells:
            logger.info(
                "import_rows_cleaned",
                rows_in=len(rows),
                rows_out=len(cleaned_rows),
                rows_removed=report.total_rows_removed,
                cells_cleaned=report.total_cells_cleaned,
            )

        return CleaningResult(rows=cleaned_rows, report=report)

    # ===================
    # ROW RULES
    # ===================

    def _summary_reason(self, headers: list[str], values: dict[str, Any]) -> Optional[str]:
        """
        A totals row names a summary word and fills at most half the columns.

        Customer rows that happen to contain "Total" are usually fuller.
        """
        keyword_cell = next(
            (v for v in values.values() if isinstance(v, str) and _SUMMARY_PATTERN.search(v)),
            None,
        )
        if keyword_cell is None:
            return None

        filled = sum(1 for v in values.values() if not is_blank(v))
        if filled > math.ceil(len(headers) / 2):
            return None

        return f"Summary row ('{keyword_cell[:40]}')"

    def _removal(self, row: ParsedRow, rule_id: str, reason: str) -> RemovedRow:
        return RemovedRow(
            row_number=row.row_number,
            rule_id=rule_id,
            reason=reason,
            values=dict(row.values),
        )

    # ===================
    # CELL RULES
    # ===================

    def _clean_cell(
        self,
        row_number: int,
        column: str,
        value: Any,
        protected: bool,
        changes: list[CleanedCell]
    ) -> Any:
        if not isinstance(value, str):
            return value

        def record(before: Any, after: Any, rule_id: str) -> None:
            changes.append(CleanedCell(
                row_number=row_number, column=column, before=before, after=after, rule_id=rule_id
            ))

        current = value

        visible = remove_invisible_characters(current)
        if visible != current:
            record(current, visible, "remove_invisible_chars")
            current = visible

        repaired = fix_mojibake(current)
        if repaired != current:
            record(current, repaired, "fix_encoding")
            current = repaired

        if is_empty_marker(current, allow_words=not protected):
            record(current, None, "standardize_empty")
            return None

        return current or None

    def _summaries(self, removed: list[RemovedRow], cells: list[CleanedCell]) -> list[CleaningRuleSummary]:
        summaries = []
        for rule_id, (description, category) in CLEANING_RULES.items():
            source = removed if category == "rows" else cells
            summaries.append(CleaningRuleSummary(
                rule_id=rule_id,
                description=description,
                category=category,
                affected_count=sum(1 for item in source if item.rule_id == rule_id),
            ))
        return summaries


def remove_invisible_characters(text: str) -> str:
    """
    Drop zero-width characters; non-breaking spaces become spaces.

    Leading and trailing spaces are trimmed as well.
    """
    for char in INVISIBLE_CHARACTERS:
        text = text.replace(char, "")
    return text.replace("\u00a0", " ").strip()


def fix_mojibake(text: str) -> str:
    """
    Repair UTF-8 text that was decoded as latin-1.

    - "TromsÃ¸" → "Tromsø"
    - "BÃ¦rum" → "Bærum"
    """
    if "Ã" not in text:
        return text
    for garbled, letter in MOJIBAKE_FIXES.items():
        text = text.replace(garbled, letter)
    return text


def is_empty_marker(text: str, allow_words: bool = True) -> bool:
    """True for placeholder text meaning "no value" ("-", "#N/A", "ingen")."""
    key = text.strip().casefold()
    if key in EMPTY_VALUE_MARKERS:
        return True
    return allow_words and key in EMPTY_VALUE_WORDS
