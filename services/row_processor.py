"""
Row processor for customer imports.

Runs mapping → normalization → vocabulary matching → duplicate detection
for each row and assembles an annotated StagingRow. Overall status:

- error: name or address missing / too short (excluded from commit)
- duplicate: matches an existing customer (advisory)
- warning: any other non-fatal issue
- valid: nothing to report

Also flags rows that repeat an earlier row of the same batch.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional
import structlog

from config.import_fields import (
    CONTROL_DATE_PAIRS,
    MIN_ADDRESS_LENGTH,
    MIN_NAME_LENGTH,
    TARGET_FIELDS,
)
from models.customer_import import (
    IssueSeverity,
    MatchType,
    StagingRow,
    StagingRowStatus,
    ValidationIssue,
    ValueChange,
    VocabularyMatch,
)
from services.duplicate_detector import DuplicateDetector, normalize_address, normalize_company_name
from services.import_store import ImportStore
from services.import_summary import completeness_score
from services.value_normalizer import ValueNormalizer, split_norwegian_address
from services.vocabulary_matcher import Vocabulary, VocabularyMatcher
from utils.text_utils import collapse_whitespace, is_blank

logger = structlog.get_logger(__name__)

EARLIEST_PLAUSIBLE_YEAR = 2000
MAX_YEARS_AHEAD = 10

DATE_FIELDS = tuple(f for f, kind in TARGET_FIELDS.items() if kind == "date")


@dataclass
class RowContext:
    """Everything constant across the rows of one batch."""
    tenant_id: str
    mapping: dict[str, str]
    allowed_fields: set[str]
    vocabularies: dict[str, Vocabulary]
    overrides: dict[str, str] = field(default_factory=dict)  # override_key(raw) -> canonical
    today: date = field(default_factory=date.today)

    def field_kind(self, target: str) -> str:
        if target in self.vocabularies:
            return "vocabulary"
        return TARGET_FIELDS.get(target, "text")


def override_key(raw_value: str) -> str:
    """Lookup key for a category override: "El  Kontroll " → "el kontroll"."""
    return collapse_whitespace(str(raw_value)).casefold()


def resolve_status(row: StagingRow) -> StagingRowStatus:
    if row.has_errors:
        return StagingRowStatus.ERROR
    if row.duplicate is not None:
        return StagingRowStatus.DUPLICATE
    if row.has_warnings:
        return StagingRowStatus.WARNING
    return StagingRowStatus.VALID


class RowProcessor:
    """
    Orchestrates the per-row pipeline.

    Collaborators are injectable; defaults read thresholds from settings.
    """

    def __init__(
        self,
        store: ImportStore,
        normalizer: Optional[ValueNormalizer] = None,
        matcher: Optional[VocabularyMatcher] = None,
        detector: Optional[DuplicateDetector] = None
    ):
        self.store = store
        self.normalizer = normalizer or ValueNormalizer()
        self.matcher = matcher or VocabularyMatcher()
        self.detector = detector or DuplicateDetector()

    def process_rows(
        self,
        context: RowContext,
        rows: list[tuple[int, dict[str, Any]]],
        row_edits: Optional[dict[int, dict[str, Any]]] = None
    ) -> list[StagingRow]:
        """
        Process every row of a batch.

        Args:
            context: Mapping, vocabularies and overrides for the batch
            rows: (row_number, raw values keyed by header)
            row_edits: Row number -> target field -> corrected raw value

        Returns:
            StagingRows in input order
        """
        row_edits = row_edits or {}
        staged = [
            self.process_row(context, row_number, values, row_edits.get(row_number))
            for row_number, values in rows
        ]
        self._flag_batch_duplicates(staged)

        logger.info(
            "rows_processed",
            tenant_id=context.tenant_id,
            rows=len(staged),
            errors=sum(1 for r in staged if r.status == StagingRowStatus.ERROR),
        )
        return staged

    def process_row(
        self,
        context: RowContext,
        row_number: int,
        raw_values: dict[str, Any],
        edits: Optional[dict[str, Any]] = None
    ) -> StagingRow:
        """Turn one raw row into an annotated StagingRow."""
        row = StagingRow(row_number=row_number, raw_values=dict(raw_values))
        issues: list[ValidationIssue] = []
        changes: list[ValueChange] = []
        matches: list[VocabularyMatch] = []
        values: dict[str, Any] = {}

        # Mapping: only allowed target fields ever reach mapped values
        sources: dict[str, str] = {}
        mapped_raw: dict[str, Any] = {}
        for header, target in context.mapping.items():
            if target not in context.allowed_fields:
                continue
            mapped_raw[target] = raw_values.get(header)
            sources[target] = header
        for target, value in (edits or {}).items():
            if target in context.allowed_fields:
                mapped_raw[target] = value

        split = self._split_address(mapped_raw)
        if split is not None:
            street, postal, place = split
            changes.append(ValueChange(
                field="adresse",
                before=mapped_raw["adresse"],
                after=street,
                reason="postal code split from address",
            ))
            mapped_raw["adresse"] = street
            mapped_raw["postnummer"] = postal
            sources["postnummer"] = sources.get("adresse")
            if place:
                mapped_raw["poststed"] = place
                sources["poststed"] = sources.get("adresse")

        # Normalization and vocabulary matching
        for target, raw in mapped_raw.items():
            kind = context.field_kind(target)
            normalized = self.normalizer.normalize(target, kind, raw)

            if normalized.was_modified:
                changes.append(ValueChange(
                    field=target, before=raw, after=normalized.value, reason=normalized.reason
                ))
            if normalized.issue_code:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code=normalized.issue_code,
                    field=target,
                    source_column=sources.get(target),
                    message=f"Row {row_number}, {normalized.issue_message}",
                    value=raw,
                    suggestion=normalized.suggestion,
                ))

            value = normalized.value
            if kind == "vocabulary" and value is not None:
                match = self._match_vocabulary(context, target, str(value))
                matches.append(match)
                if match.match_type == MatchType.NONE:
                    issues.append(self._unknown_value_issue(row_number, match, sources.get(target)))
                elif match.value != value:
                    changes.append(ValueChange(
                        field=target,
                        before=value,
                        after=match.value,
                        reason=f"{match.match_type.value} vocabulary match",
                    ))
                value = match.value

            values[target] = value

        issues.extend(self._check_required(row_number, values, sources))
        issues.extend(self._check_dates(row_number, values, sources, context.today))

        row.mapped_values = values
        row.issues = issues
        row.changes = changes
        row.vocabulary_matches = matches
        row.completeness_score = completeness_score(values)

        if not row.has_errors:
            candidates = self.store.find_duplicate_candidates(context.tenant_id, values)
            row.duplicate = self.detector.find_match(values, candidates)

        row.status = resolve_status(row)
        return row

    def _split_address(self, mapped_raw: dict[str, Any]) -> Optional[tuple[str, str, Optional[str]]]:
        """Split "Storgata 5, 0184 Oslo" when the sheet has no postal columns filled."""
        if is_blank(mapped_raw.get("adresse")):
            return None
        if not is_blank(mapped_raw.get("postnummer")) or not is_blank(mapped_raw.get("poststed")):
            return None
        return split_norwegian_address(mapped_raw["adresse"])

    # ===================
    # VOCABULARY
    # ===================

    def _match_vocabulary(self, context: RowContext, target: str, value: str) -> VocabularyMatch:
        vocabulary = context.vocabularies[target]
        override = context.overrides.get(override_key(value))
        if override is not None and override in vocabulary.canonical:
            return VocabularyMatch(
                field=target,
                raw_value=value,
                value=override,
                confidence=1.0,
                match_type=MatchType.EXACT,
            )
        return self.matcher.match(value, vocabulary)

    def _unknown_value_issue(
        self,
        row_number: int,
        match: VocabularyMatch,
        source_column: Optional[str]
    ) -> ValidationIssue:
        code = "UNKNOWN_CATEGORY" if match.field == "kategori" else "UNKNOWN_VALUE"
        if match.candidates and match.confidence > 0:
            hint = f"closest: {', '.join(match.candidates)}"
        else:
            hint = "no close match"
        return ValidationIssue(
            severity=IssueSeverity.WARNING,
            code=code,
            field=match.field,
            source_column=source_column,
            message=f"Row {row_number}, {match.field}: '{match.raw_value}' is not a known value ({hint})",
            value=match.raw_value,
            suggestion=match.candidates[0] if match.candidates else None,
        )

    # ===================
    # RULES
    # ===================

    def _check_required(
        self,
        row_number: int,
        values: dict[str, Any],
        sources: dict[str, str]
    ) -> list[ValidationIssue]:
        issues = []
        for target, minimum in (("navn", MIN_NAME_LENGTH), ("adresse", MIN_ADDRESS_LENGTH)):
            value = values.get(target)
            if value is None:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    code="REQUIRED_FIELD_MISSING",
                    field=target,
                    source_column=sources.get(target),
                    message=f"Row {row_number}, {target}: value is required",
                ))
            elif len(str(value)) < minimum:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    code="VALUE_TOO_SHORT",
                    field=target,
                    source_column=sources.get(target),
                    message=f"Row {row_number}, {target}: '{value}' must be at least {minimum} characters",
                    value=value,
                ))
        return issues

    def _check_dates(
        self,
        row_number: int,
        values: dict[str, Any],
        sources: dict[str, str],
        today: date
    ) -> list[ValidationIssue]:
        issues = []
        present = {f: values[f] for f in DATE_FIELDS if values.get(f)}

        if not present:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                code="NO_CONTROL_DATES",
                message=f"Row {row_number}: no control dates; schedule will start from import date",
            ))
            return issues

        latest = today + timedelta(days=365 * MAX_YEARS_AHEAD)
        for target, value in present.items():
            parsed = date.fromisoformat(value)
            if parsed.year < EARLIEST_PLAUSIBLE_YEAR or parsed > latest:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="VALUE_OUT_OF_RANGE",
                    field=target,
                    source_column=sources.get(target),
                    message=f"Row {row_number}, {target}: '{value}' is outside the plausible range",
                    value=value,
                ))

        for last_field, next_field in CONTROL_DATE_PAIRS:
            last, upcoming = present.get(last_field), present.get(next_field)
            if last and upcoming and upcoming <= last:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="INVALID_DATE_ORDER",
                    field=next_field,
                    source_column=sources.get(next_field),
                    message=f"Row {row_number}, {next_field}: '{upcoming}' is not after {last_field} '{last}'",
                    value=upcoming,
                ))

        return issues

    def _flag_batch_duplicates(self, rows: list[StagingRow]) -> None:
        """Warn on rows repeating the name + address of an earlier row."""
        first_row: dict[tuple[str, str], int] = {}
        for row in rows:
            if row.has_errors:
                continue
            key = (
                normalize_company_name(row.mapped_values.get("navn")),
                normalize_address(row.mapped_values.get("adresse")),
            )
            if key in first_row:
                row.issues = row.issues + [ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    code="DUPLICATE_IN_BATCH",
                    field="navn",
                    message=f"Row {row.row_number}: same name and address as row {first_row[key]}",
                    value=row.mapped_values.get("navn"),
                )]
                row.status = resolve_status(row)
            else:
                first_row[key] = row.row_number
