"""
Dynamic schema analyzer.

Aggregates what a batch could not place: columns with no target field and
vocabulary values that matched nothing. Returns proposals only; schema
changes happen through the separate proposals confirmation endpoint.
"""

from collections import Counter
from typing import Any
import re

from models.customer_import import (
    CategoryValueProposal,
    CustomFieldProposal,
    MatchType,
    SchemaProposals,
    StagingRow,
)
from services.value_normalizer import EMAIL_PATTERN, parse_date
from utils.text_utils import slugify_field_name

# Share of non-empty values that must fit a type for it to be proposed
TYPE_AGREEMENT = 0.8
SAMPLE_SIZE = 3
SAMPLE_SCAN = 50

_PHONE = re.compile(r"^\+?[\d\s\-()]{8,}$")
_POSTAL = re.compile(r"^\d{4}$")
_INTEGER = re.compile(r"^-?\d+$")
_NUMBER = re.compile(r"^-?\d+([.,]\d+)?$")
_BOOLEAN = {"ja", "nei", "yes", "no", "true", "false", "x", "1", "0"}


def detect_field_type(values: list[Any]) -> str:
    """
    Guess a field type from sample values.

    Checked in order: email, phone, postal_code, date, integer, number,
    boolean; falls back to text.
    """
    texts = [str(v).strip() for v in values if v is not None and str(v).strip()]
    if not texts:
        return "text"

    checks = [
        ("email", lambda t: bool(EMAIL_PATTERN.match(t))),
        ("phone", lambda t: bool(_PHONE.match(t)) and len(re.sub(r"\D", "", t)) >= 8),
        ("postal_code", lambda t: bool(_POSTAL.match(t))),
        ("date", lambda t: not _INTEGER.match(t) and parse_date(t) is not None),
        ("integer", lambda t: bool(_INTEGER.match(t))),
        ("number", lambda t: bool(_NUMBER.match(t))),
        ("boolean", lambda t: t.lower() in _BOOLEAN),
    ]
    for kind, check in checks:
        hits = sum(1 for t in texts if check(t))
        if hits / len(texts) >= TYPE_AGREEMENT:
            return kind
    return "text"


class SchemaAnalyzer:
    """Builds advisory schema proposals for one batch."""

    def analyze(
        self,
        unmapped_columns: list[str],
        raw_rows: list[dict[str, Any]],
        staging_rows: list[StagingRow]
    ) -> SchemaProposals:
        """
        Args:
            unmapped_columns: Headers with no target field
            raw_rows: Raw values of every row, keyed by header
            staging_rows: Processed rows (their unresolved vocabulary matches)

        Returns:
            SchemaProposals sorted by occurrence count, highest first
        """
        custom_fields: list[CustomFieldProposal] = []
        for header in unmapped_columns:
            values = [row.get(header) for row in raw_rows if row.get(header) is not None]
            if not values:
                continue
            samples: list[Any] = []
            for value in values:
                if value not in samples:
                    samples.append(value)
                if len(samples) >= SAMPLE_SIZE:
                    break
            custom_fields.append(CustomFieldProposal(
                source_column=header,
                field_name=slugify_field_name(header),
                field_type=detect_field_type(values[:SAMPLE_SCAN]),
                occurrences=len(values),
                sample_values=samples,
            ))

        counts: Counter = Counter()
        first_seen: dict[tuple[str, str], str] = {}
        closest: dict[tuple[str, str], list[str]] = {}
        for row in staging_rows:
            for match in row.vocabulary_matches:
                if match.match_type != MatchType.NONE:
                    continue
                key = (match.field, match.raw_value.casefold())
                counts[key] += 1
                first_seen.setdefault(key, match.raw_value)
                closest.setdefault(key, match.candidates)

        category_values = [
            CategoryValueProposal(
                field=field,
                value=first_seen[(field, folded)],
                occurrences=count,
                closest_matches=closest[(field, folded)],
            )
            for (field, folded), count in counts.items()
        ]

        custom_fields.sort(key=lambda p: p.occurrences, reverse=True)
        category_values.sort(key=lambda p: p.occurrences, reverse=True)

        return SchemaProposals(custom_fields=custom_fields, category_values=category_values)
