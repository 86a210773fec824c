"""
Value normalizer for imported customer fields.

Turns one raw cell into a canonical value and reports what changed and why.
Pure functions over values: no lookups, no side effects.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional
import re

from utils.text_utils import is_blank, collapse_whitespace

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PHONE_DIGITS = 8

# Domain typos seen in customer lists
EMAIL_DOMAIN_TYPOS: dict[str, str] = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gmail.co": "gmail.com",
    "gmail.no": "gmail.com",
    "hotmial.com": "hotmail.com",
    "hotmai.com": "hotmail.com",
    "hotmail.co": "hotmail.com",
    "outlok.com": "outlook.com",
    "yahooo.com": "yahoo.com",
    "onlin.no": "online.no",
}

NORWEGIAN_MONTHS: dict[str, int] = {
    "januar": 1, "jan": 1,
    "februar": 2, "feb": 2,
    "mars": 3, "mar": 3,
    "april": 4, "apr": 4,
    "mai": 5,
    "juni": 6, "jun": 6,
    "juli": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "oktober": 10, "okt": 10,
    "november": 11, "nov": 11,
    "desember": 12, "des": 12,
}

# Day-first shapes common in Norwegian spreadsheets
_DAY_FIRST = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2}|\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T ].*)?$")
_MONTH_NAME = re.compile(r"^(?:(\d{1,2})\.?\s+)?([a-zæøå]+)\.?\s+(\d{4})$")
_QUARTER = re.compile(r"^(?:q([1-4])\s*(\d{4})|([1-4])\.?\s*kvartal\s+(\d{4}))$")

# Excel serial day 1 is 1900-01-01; serial 60 is the non-existent 1900-02-29
_EXCEL_EPOCH = date(1899, 12, 30)
_EXCEL_MAX_SERIAL = 2958465


@dataclass
class NormalizedValue:
    """
    Canonical form of one cell.

    Attributes:
        value: Canonical value, None when empty or rejected
        original: Raw cell value
        reason: Why the value changed (None when unchanged)
        issue_code: Validation code when the value is suspect or rejected
        issue_message: Human message naming the field and value
        suggestion: Suggested correction, if any
    """
    value: Any
    original: Any
    reason: Optional[str] = None
    issue_code: Optional[str] = None
    issue_message: Optional[str] = None
    suggestion: Optional[str] = None

    @property
    def was_modified(self) -> bool:
        return self.reason is not None


class ValueNormalizer:
    """
    Field-kind aware normalizer.

    Kinds: text, phone, email, postal_code, date, integer, vocabulary.
    Vocabulary values are only cleaned here; resolution is the matcher's job.
    """

    def normalize(self, field: str, kind: str, raw: Any) -> NormalizedValue:
        """
        Normalize one value for a target field.

        Empty string, whitespace and missing values all normalize to None.
        """
        if is_blank(raw):
            return NormalizedValue(value=None, original=raw)

        handler = {
            "phone": self.normalize_phone,
            "email": self.normalize_email,
            "postal_code": self.normalize_postal_code,
            "date": self.normalize_date,
            "integer": self.normalize_integer,
        }.get(kind, self.normalize_text)

        return handler(field, raw)

    # ===================
    # TEXT
    # ===================

    def normalize_text(self, field: str, raw: Any) -> NormalizedValue:
        text = str(raw)
        cleaned = collapse_whitespace(text)
        reason = "whitespace collapsed" if cleaned != text else None
        return NormalizedValue(value=cleaned, original=raw, reason=reason)

    # ===================
    # PHONE
    # ===================

    def normalize_phone(self, field: str, raw: Any) -> NormalizedValue:
        """
        Strip separators and the Norwegian country prefix.

        - "+47 912 34 567" → "91234567"
        - "0047 91234567" → "91234567"
        - "+46 70 123 45 67" → "+46701234567"

        Fewer than 8 digits keeps the raw text and raises INVALID_PHONE.
        """
        text = collapse_whitespace(str(raw))
        digits = re.sub(r"\D", "", text)
        international = text.startswith("+") or text.startswith("00")

        if international:
            digits = digits[2:] if text.startswith("00") else digits
            if digits.startswith("47") and len(digits) == 10:
                digits = digits[2:]
                international = False

        if len(digits) < MIN_PHONE_DIGITS:
            return NormalizedValue(
                value=text,
                original=raw,
                issue_code="INVALID_PHONE",
                issue_message=f"{field}: '{text}' has fewer than {MIN_PHONE_DIGITS} digits",
            )

        value = f"+{digits}" if international else digits
        reason = "separators removed" if value != text else None
        return NormalizedValue(value=value, original=raw, reason=reason)

    # ===================
    # EMAIL
    # ===================

    def normalize_email(self, field: str, raw: Any) -> NormalizedValue:
        """
        Lowercase, remove whitespace, and validate the address shape.

        A known domain typo keeps the value but suggests the fix.
        """
        text = str(raw)
        value = re.sub(r"\s+", "", text).lower()
        reason = "lowercased, whitespace removed" if value != text.strip() else None

        if not EMAIL_PATTERN.match(value):
            return NormalizedValue(
                value=value,
                original=raw,
                reason=reason,
                issue_code="INVALID_EMAIL",
                issue_message=f"{field}: '{text.strip()}' is not a valid email address",
            )

        domain = value.rsplit("@", 1)[1]
        if domain in EMAIL_DOMAIN_TYPOS:
            suggestion = value.rsplit("@", 1)[0] + "@" + EMAIL_DOMAIN_TYPOS[domain]
            return NormalizedValue(
                value=value,
                original=raw,
                reason=reason,
                issue_code="EMAIL_TYPO_SUSPECTED",
                issue_message=f"{field}: '{value}' looks like a typo of '{suggestion}'",
                suggestion=suggestion,
            )

        return NormalizedValue(value=value, original=raw, reason=reason)

    # ===================
    # POSTAL CODE
    # ===================

    def normalize_postal_code(self, field: str, raw: Any) -> NormalizedValue:
        """
        Norwegian postal codes are four digits.

        Excel drops leading zeros ("184" for "0184"), so 1-3 digit numbers are
        padded. Anything else is kept as-is with INVALID_POSTNUMMER.
        """
        text = collapse_whitespace(str(raw)).replace(" ", "")

        if text.isdigit() and len(text) == 4:
            return NormalizedValue(
                value=text,
                original=raw,
                reason=None if text == str(raw).strip() else "whitespace removed",
            )

        if text.isdigit() and len(text) < 4:
            padded = text.zfill(4)
            return NormalizedValue(value=padded, original=raw, reason="padded to 4 digits")

        return NormalizedValue(
            value=text,
            original=raw,
            issue_code="INVALID_POSTNUMMER",
            issue_message=f"{field}: '{raw}' is not a 4-digit postal code",
        )

    # ===================
    # DATES
    # ===================

    def normalize_date(self, field: str, raw: Any) -> NormalizedValue:
        """
        Coerce a date to ISO YYYY-MM-DD.

        Accepts ISO dates, DD.MM.YYYY / DD/MM/YYYY / DD-MM-YYYY (2-digit
        years too), Excel serial numbers, Norwegian month names
        ("15. mars 2024", "mars 2024") and quarters ("Q2 2024").
        Unrecognised values are rejected with INVALID_DATE.
        """
        parsed = parse_date(raw)

        if parsed is None:
            return NormalizedValue(
                value=None,
                original=raw,
                issue_code="INVALID_DATE",
                issue_message=f"{field}: '{raw}' is not a recognised date (expected YYYY-MM-DD)",
            )

        value = parsed.isoformat()
        reason = None if value == str(raw).strip() else "converted to YYYY-MM-DD"
        return NormalizedValue(value=value, original=raw, reason=reason)

    # ===================
    # NUMBERS
    # ===================

    def normalize_integer(self, field: str, raw: Any) -> NormalizedValue:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return NormalizedValue(value=raw, original=raw)

        text = str(raw).strip().replace(" ", "").replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            return NormalizedValue(
                value=None,
                original=raw,
                issue_code="INVALID_NUMBER",
                issue_message=f"{field}: '{raw}' is not a whole number",
            )

        if not number.is_integer():
            return NormalizedValue(
                value=None,
                original=raw,
                issue_code="INVALID_NUMBER",
                issue_message=f"{field}: '{raw}' is not a whole number",
            )

        value = int(number)
        reason = None if str(value) == str(raw).strip() else "converted to integer"
        return NormalizedValue(value=value, original=raw, reason=reason)


_ADDRESS_WITH_POSTAL = re.compile(r"^(.+?),?\s+(\d{4})(?:\s+(.+))?$")


def split_norwegian_address(combined: Any) -> Optional[tuple[str, str, Optional[str]]]:
    """
    Split a one-cell address into street, postal code and place.

    - "Storgata 5, 0184 Oslo" → ("Storgata 5", "0184", "Oslo")
    - "Storgata 5 0184 Oslo" → ("Storgata 5", "0184", "Oslo")
    - "Storgata 5, 0184" → ("Storgata 5", "0184", None)
    - "Storgata 5" → None

    Returns:
        (adresse, postnummer, poststed) or None when no postal code is found
    """
    if is_blank(combined):
        return None
    match = _ADDRESS_WITH_POSTAL.match(collapse_whitespace(str(combined)))
    if not match:
        return None
    street, postal, place = match.groups()
    return street.strip().rstrip(","), postal, place.strip() if place else None


def parse_date(raw: Any) -> Optional[date]:
    """Parse the date shapes seen in customer spreadsheets. None if unrecognised."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _from_excel_serial(raw)

    text = collapse_whitespace(str(raw)).lower()
    if not text:
        return None

    if re.fullmatch(r"\d+(\.0+)?", text):
        return _from_excel_serial(float(text))

    match = _ISO_DATE.match(text)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = _DAY_FIRST.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        if year < 100:
            year += 2000 if year < 50 else 1900
        return _safe_date(year, month, day)

    match = _MONTH_NAME.match(text)
    if match:
        month = NORWEGIAN_MONTHS.get(match.group(2))
        if month is None:
            return None
        day = int(match.group(1)) if match.group(1) else 1
        return _safe_date(int(match.group(3)), month, day)

    match = _QUARTER.match(text)
    if match:
        quarter = int(match.group(1) or match.group(3))
        year = int(match.group(2) or match.group(4))
        return date(year, (quarter - 1) * 3 + 1, 1)

    return None


def _from_excel_serial(serial: float) -> Optional[date]:
    days = int(serial)
    if days < 1 or days > _EXCEL_MAX_SERIAL or days == 60:
        return None
    if days < 60:
        # Before the phantom leap day the epoch is one day later
        return _EXCEL_EPOCH + timedelta(days=days + 1)
    return _EXCEL_EPOCH + timedelta(days=days)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None
