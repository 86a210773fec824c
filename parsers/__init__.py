"""
Spreadsheet parsers module.
"""

from parsers.spreadsheet_parser import (
    parse_spreadsheet,
    SpreadsheetParseResult,
    ParsedRow,
)

__all__ = [
    "parse_spreadsheet",
    "SpreadsheetParseResult",
    "ParsedRow",
]
