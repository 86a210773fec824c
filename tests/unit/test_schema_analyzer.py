"""
Unit tests for SchemaAnalyzer, field type detection and batch summaries.
"""

import pytest

from models.customer_import import (
    MatchType,
    StagingRow,
    StagingRowStatus,
    VocabularyMatch,
)
from services.import_summary import build_quality_report, completeness_score, summarize_rows
from services.schema_analyzer import SchemaAnalyzer, detect_field_type
from tests.factories import StagingRowFactory


def unresolved(field: str, value: str, candidates: list[str] = None) -> VocabularyMatch:
    return VocabularyMatch(
        field=field,
        raw_value=value,
        value=value,
        confidence=0.4,
        match_type=MatchType.NONE,
        candidates=candidates or [],
    )


class TestDetectFieldType:

    @pytest.mark.parametrize("values,expected", [
        (["post@firma.no", "kari@firma.no"], "email"),
        (["+47 912 34 567", "91234567"], "phone"),
        (["7010", "0184"], "postal_code"),
        (["15.03.2024", "2024-01-01"], "date"),
        ([40, "12", 7], "integer"),
        (["12,5", "3.75"], "number"),
        (["ja", "nei", "Ja"], "boolean"),
        (["Rød låve", "Ingen merknad"], "text"),
        ([], "text"),
    ])
    def test_detection(self, values, expected):
        assert detect_field_type(values) == expected

    def test_minority_of_misfits_is_tolerated(self):
        values = ["7010", "7011", "7012", "7013", "ukjent"]

        assert detect_field_type(values) == "postal_code"


class TestAnalyze:

    def test_unmapped_column_becomes_field_proposal(self):
        raw_rows = [{"Antall dyr": 40}, {"Antall dyr": 12}, {"Antall dyr": 40}, {"Antall dyr": None}]

        proposals = SchemaAnalyzer().analyze(["Antall dyr"], raw_rows, [])
        proposal = proposals.custom_fields[0]

        assert proposal.field_name == "antall_dyr"
        assert proposal.field_type == "integer"
        assert proposal.occurrences == 3
        assert proposal.sample_values == [40, 12]

    def test_empty_column_is_not_proposed(self):
        proposals = SchemaAnalyzer().analyze(["Tom"], [{"Tom": None}], [])

        assert proposals.custom_fields == []

    def test_unresolved_values_are_counted_case_insensitively(self):
        rows = [
            StagingRow(row_number=2, vocabulary_matches=[unresolved("kategori", "Ventilasjon")]),
            StagingRow(row_number=3, vocabulary_matches=[unresolved("kategori", "ventilasjon")]),
            StagingRow(row_number=4, vocabulary_matches=[unresolved("el_type", "Hytte", ["Bolig"])]),
        ]

        proposals = SchemaAnalyzer().analyze([], [], rows)

        assert [(p.field, p.value, p.occurrences) for p in proposals.category_values] == [
            ("kategori", "Ventilasjon", 2),
            ("el_type", "Hytte", 1),
        ]
        assert proposals.category_values[1].closest_matches == ["Bolig"]

    def test_resolved_values_are_not_proposed(self):
        match = VocabularyMatch(
            field="kategori", raw_value="Brann", value="Brannvarsling",
            confidence=1.0, match_type=MatchType.EXACT,
        )

        proposals = SchemaAnalyzer().analyze([], [], [StagingRow(row_number=2, vocabulary_matches=[match])])

        assert proposals.category_values == []


# ===================
# SUMMARIES
# ===================

class TestSummaries:

    def test_counts_follow_row_statuses(self):
        rows = [
            StagingRowFactory.create(row_number=2),
            StagingRowFactory.create(row_number=3, status=StagingRowStatus.ERROR),
            StagingRowFactory.create(row_number=4, status=StagingRowStatus.DUPLICATE),
            StagingRowFactory.create(row_number=5, status=StagingRowStatus.WARNING),
        ]

        counts = summarize_rows(rows)

        assert (counts.total, counts.valid, counts.error, counts.duplicate, counts.warning) == (4, 1, 1, 1, 1)

    def test_completeness_of_full_and_empty_rows(self):
        full = {
            "navn": "Ola", "adresse": "Storgata 1", "postnummer": "7010", "poststed": "Trondheim",
            "telefon": "91234567", "epost": "ola@firma.no", "kontaktperson": "Ola",
            "siste_kontroll": "2025-01-01", "neste_kontroll": "2026-01-01",
        }

        assert completeness_score(full) == 1.0
        assert completeness_score({}) == 0.0

    def test_quality_report_counts_duplicates_as_valid(self):
        rows = [
            StagingRowFactory.create(row_number=2),
            StagingRowFactory.create(row_number=3, status=StagingRowStatus.DUPLICATE),
            StagingRowFactory.create(row_number=4, status=StagingRowStatus.ERROR),
            StagingRowFactory.create(row_number=5, status=StagingRowStatus.ERROR),
        ]

        report = build_quality_report(rows)

        assert report.valid_percentage == 50.0
        assert report.field_coverage["navn"] == 1.0
        assert report.common_issues[0] == {"code": "REQUIRED_FIELD_MISSING", "count": 2}
        assert 0 <= report.overall_score <= 100

    def test_empty_batch_scores_zero(self):
        assert build_quality_report([]).overall_score == 0
