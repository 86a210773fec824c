"""
Unit tests for the spreadsheet parser.

Covers sheet selection, header row detection, header naming, cell cleaning
and the file-level errors.
"""

from datetime import date
import pytest
import pandas as pd

from parsers.spreadsheet_parser import parse_spreadsheet
from exceptions import (
    EmptySheetError,
    EmptyWorkbookError,
    FileTooLargeError,
    SheetNotFoundError,
    UnreadableFileError,
    UnsupportedFileTypeError,
)
from tests.factories import make_csv, make_excel


# ===================
# EXCEL
# ===================

class TestExcelParsing:
    """Tests for .xlsx uploads."""

    def test_headers_and_rows_are_read(self):
        """Header row becomes headers; data rows keep their sheet row number."""
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1"], ["Kari Nordmann", "Storgata 3"]],
            columns=["Navn", "Adresse"],
        )

        result = parse_spreadsheet(content, "kunder.xlsx")

        assert result.headers == ["Navn", "Adresse"]
        assert result.row_count == 2
        assert result.rows[0].row_number == 2
        assert result.rows[0].values == {"Navn": "Ola Nordmann", "Adresse": "Storgata 1"}
        assert result.sheet_name == "Kunder"
        assert result.header_row_offset == 0

    def test_title_rows_above_header_are_skipped(self):
        """A report title above the table is not mistaken for the header."""
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", "7010"]],
            columns=["Navn", "Adresse", "Postnummer"],
            leading_rows=[["Kundeliste 2026"]],
        )

        result = parse_spreadsheet(content, "kunder.xlsx")

        assert result.headers == ["Navn", "Adresse", "Postnummer"]
        assert result.header_row_offset == 1
        assert result.rows[0].row_number == 3

    def test_first_populated_sheet_is_selected(self):
        """Empty sheets before the data are skipped."""
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1"]],
            columns=["Navn", "Adresse"],
            extra_sheets={"Info": pd.DataFrame()},
        )

        result = parse_spreadsheet(content, "kunder.xlsx")

        assert result.sheet_name == "Kunder"
        assert result.sheet_names == ["Info", "Kunder"]

    def test_requested_sheet_missing_raises(self):
        content = make_excel(rows=[["Ola Nordmann", "Storgata 1"]], columns=["Navn", "Adresse"])

        with pytest.raises(SheetNotFoundError) as exc_info:
            parse_spreadsheet(content, "kunder.xlsx", sheet_name="Mangler")

        assert exc_info.value.details["available"] == ["Kunder"]

    def test_cells_are_cleaned(self):
        """Dates become ISO strings, blanks become None, integral floats ints."""
        content = make_excel(
            rows=[["Ola Nordmann", None, date(2025, 3, 15), 12.0]],
            columns=["Navn", "Telefon", "Siste kontroll", "Intervall"],
        )

        result = parse_spreadsheet(content, "kunder.xlsx")
        values = result.rows[0].values

        assert values["Telefon"] is None
        assert values["Siste kontroll"] == "2025-03-15"
        assert values["Intervall"] == 12

    def test_corrupt_workbook_raises(self):
        with pytest.raises(UnreadableFileError):
            parse_spreadsheet(b"this is not a zip archive", "kunder.xlsx")

    def test_file_hash_is_content_hash(self):
        content = make_excel(rows=[["Ola Nordmann", "Storgata 1"]], columns=["Navn", "Adresse"])

        first = parse_spreadsheet(content, "a.xlsx")
        second = parse_spreadsheet(content, "b.xlsx")

        assert first.file_hash == second.file_hash
        assert len(first.file_hash) == 64


# ===================
# DELIMITED TEXT
# ===================

class TestDelimitedParsing:
    """Tests for .csv / .txt uploads."""

    def test_semicolon_delimiter_is_detected(self):
        content = make_csv([["Ola Nordmann", "Storgata 1"]], ["Navn", "Adresse"], delimiter=";")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.headers == ["Navn", "Adresse"]
        assert result.rows[0].values["Adresse"] == "Storgata 1"

    def test_comma_delimiter_is_detected(self):
        content = make_csv([["Ola Nordmann", "Storgata 1"]], ["Navn", "Adresse"], delimiter=",")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.headers == ["Navn", "Adresse"]

    def test_latin1_file_is_decoded(self):
        content = make_csv([["Bøe Gård", "Sjøgata 5"]], ["Navn", "Adresse"], encoding="latin-1")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.rows[0].values["Navn"] == "Bøe Gård"

    def test_repeated_and_blank_headers_are_named(self):
        """Repeated headers get a suffix; a blank header with data gets Kolonne_N."""
        content = "Navn;Telefon;Telefon;\nOla Nordmann;111;222;ekstra\n".encode("utf-8")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.headers == ["Navn", "Telefon", "Telefon_1", "Kolonne_4"]

    def test_suffix_never_collides_with_a_real_header(self):
        content = "Navn;Navn;Navn_1;Adresse\nA;B;C;Storgata 1\n".encode("utf-8")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.headers == ["Navn", "Navn_1", "Navn_1_1", "Adresse"]
        assert result.rows[0].values == {
            "Navn": "A", "Navn_1": "B", "Navn_1_1": "C", "Adresse": "Storgata 1",
        }

    def test_title_line_above_header_is_skipped(self):
        """A title line without delimiters must not decide the delimiter."""
        content = (
            "Kundeliste 2024\n"
            "Navn;Adresse;Kategori\n"
            "Ola Nordmann;Storgata 1;El-kontroll\n"
        ).encode("utf-8")

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.headers == ["Navn", "Adresse", "Kategori"]
        assert result.header_row_offset == 1
        assert result.rows[0].row_number == 3
        assert result.rows[0].values == {
            "Navn": "Ola Nordmann", "Adresse": "Storgata 1", "Kategori": "El-kontroll",
        }

    def test_comma_in_title_does_not_win_over_table_delimiter(self):
        content = (
            "Kunder, eksport fra fagsystem\n"
            "Navn;Adresse;Postnr\n"
            "Ola Nordmann;Storgata 1;7010\n"
            "Kari Nordmann;Storgata 3;7011\n"
        ).encode("utf-8")

        result = parse_spreadsheet(content, "kunder.txt")

        assert result.headers == ["Navn", "Adresse", "Postnr"]
        assert len(result.rows) == 2

    def test_empty_cells_are_none(self):
        content = make_csv([["", "Storgata 2"]], ["Navn", "Adresse"])

        result = parse_spreadsheet(content, "kunder.csv")

        assert result.rows[0].values["Navn"] is None

    def test_header_only_file_raises(self):
        content = "Navn;Adresse\n".encode("utf-8")

        with pytest.raises(EmptySheetError):
            parse_spreadsheet(content, "kunder.csv")


# ===================
# FILE CHECKS
# ===================

class TestFileChecks:
    """Extension, size and emptiness checks."""

    def test_unsupported_extension_raises(self):
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            parse_spreadsheet(b"%PDF-1.4", "kunder.pdf")

        assert exc_info.value.status_code == 422
        assert ".xlsx" in exc_info.value.details["supported"]

    def test_too_large_raises(self):
        content = make_csv([["Ola Nordmann", "Storgata 1"]], ["Navn", "Adresse"])

        with pytest.raises(FileTooLargeError) as exc_info:
            parse_spreadsheet(content, "kunder.csv", max_bytes=10)

        assert exc_info.value.status_code == 413

    def test_empty_file_raises(self):
        with pytest.raises(EmptyWorkbookError):
            parse_spreadsheet(b"", "kunder.csv")
