"""
Unit tests for DuplicateDetector and its normalization helpers.
"""

from datetime import datetime, timezone
import pytest

from models.customer_import import CustomerRecord, DuplicateMatchType
from services.duplicate_detector import (
    DuplicateDetector,
    address_similarity,
    normalize_address,
    normalize_company_name,
)
from tests.factories import TENANT_ID


def customer(id: str, navn: str, adresse: str = None, postnummer: str = None,
             ekstern_id: str = None, updated_at: datetime = None) -> CustomerRecord:
    return CustomerRecord(
        id=id,
        tenant_id=TENANT_ID,
        navn=navn,
        adresse=adresse,
        postnummer=postnummer,
        ekstern_id=ekstern_id,
        updated_at=updated_at,
    )


@pytest.fixture
def detector():
    return DuplicateDetector(threshold=0.85)


# ===================
# NORMALIZATION
# ===================

class TestNormalization:

    @pytest.mark.parametrize("raw,expected", [
        ("Ola Nordmann A/S", "ola nordmann as"),
        ("OLA NORDMANN AS", "ola nordmann as"),
        ("Bøe Gård ANS", "boe gard ans"),
    ])
    def test_company_name(self, raw, expected):
        assert normalize_company_name(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("Storgt. 1", "storgate 1"),
        ("Storgata 1", "storgata 1"),
        ("Kirkevn 12B", "kirkeveien 12b"),
    ])
    def test_address(self, raw, expected):
        assert normalize_address(raw) == expected

    def test_different_house_numbers_never_match(self):
        assert address_similarity("storgata 1", "storgata 11") == 0.0

    def test_same_address_matches(self):
        assert address_similarity("storgata 1", "storgata 1") == 1.0


# ===================
# MATCHING
# ===================

class TestFindMatch:

    def test_no_customers_no_match(self, detector):
        assert detector.find_match({"navn": "Ola Nordmann", "adresse": "Storgata 1"}, []) is None

    def test_external_id_wins(self, detector):
        existing = [
            customer("c1", "Helt Annet Navn", "Fjordveien 9", ekstern_id="K-100"),
            customer("c2", "Ola Nordmann", "Storgata 1"),
        ]

        match = detector.find_match(
            {"navn": "Ola Nordmann", "adresse": "Storgata 1", "ekstern_id": "K-100"},
            existing,
        )

        assert match.customer_id == "c1"
        assert match.match_type == DuplicateMatchType.EXACT
        assert match.matched_fields == ["ekstern_id"]

    def test_identical_name_and_address_is_exact(self, detector):
        existing = [customer("c1", "Ola Nordmann AS", "Storgata 1", "7010")]

        match = detector.find_match(
            {"navn": "Ola Nordmann A/S", "adresse": "Storgata 1", "postnummer": "7010"},
            existing,
        )

        assert match.customer_id == "c1"
        assert match.match_type == DuplicateMatchType.EXACT
        assert match.score == 1.0
        assert set(match.matched_fields) == {"navn", "adresse", "postnummer"}

    def test_abbreviated_address_is_fuzzy_match(self, detector):
        existing = [customer("c1", "Ola Nordmann", "Storgata 1", "7010")]

        match = detector.find_match(
            {"navn": "Ola Nordmann", "adresse": "Storgt. 1", "postnummer": "7010"},
            existing,
        )

        assert match is not None
        assert match.match_type == DuplicateMatchType.FUZZY
        assert 0.85 <= match.score < 1.0

    @pytest.mark.parametrize("adresse", [
        "Storgata 3",
        "Stortorget 1",
        "Strandveien 1",
        "Kongens gate 1",
    ])
    def test_neighbour_is_not_a_duplicate(self, detector, adresse):
        """Same name and postal code, different building or street."""
        existing = [customer("c1", "Ola Nordmann AS", "Storgata 1", "7010")]

        match = detector.find_match(
            {"navn": "Ola Nordmann AS", "adresse": adresse, "postnummer": "7010"},
            existing,
        )

        assert match is None

    def test_different_street_scores_zero(self, detector):
        score, fields = detector.score(
            {"navn": "Ola Nordmann AS", "adresse": "Stortorget 1", "postnummer": "7010"},
            customer("c1", "Ola Nordmann AS", "Storgata 1", "7010"),
        )

        assert score == 0.0
        assert "adresse" not in fields

    def test_tie_goes_to_most_recently_updated(self, detector):
        existing = [
            customer("old", "Ola Nordmann", "Storgata 1",
                     updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            customer("new", "Ola Nordmann", "Storgata 1",
                     updated_at=datetime(2025, 6, 1, tzinfo=timezone.utc)),
            customer("unknown", "Ola Nordmann", "Storgata 1"),
        ]

        match = detector.find_match({"navn": "Ola Nordmann", "adresse": "Storgata 1"}, existing)

        assert match.customer_id == "new"

    def test_missing_address_is_not_scored(self, detector):
        existing = [customer("c1", "Ola Nordmann", "Storgata 1")]

        assert detector.find_match({"navn": "Ola Nordmann"}, existing) is None

    def test_postal_code_weight_is_dropped_when_missing(self, detector):
        """Without a postal code on one side, name and address decide alone."""
        existing = [customer("c1", "Ola Nordmann", "Storgata 1", postnummer=None)]

        score, fields = detector.score(
            {"navn": "Ola Nordmann", "adresse": "Storgata 1", "postnummer": "7010"},
            existing[0],
        )

        assert score == 1.0
        assert fields == ["navn", "adresse"]
