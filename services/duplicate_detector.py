"""
Duplicate detector for imported customer rows.

Decides whether a normalized row refers to an existing customer of the same
organization. Priority: external id, then a composite name / address /
postal code score. Ties go to the most recently updated customer.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import re
import structlog

from rapidfuzz import fuzz

from config.import_fields import (
    ADDRESS_ABBREVIATIONS,
    COMPANY_SUFFIXES,
    DUPLICATE_FIELD_WEIGHTS,
)
from config.settings import settings
from models.customer_import import CustomerRecord, DuplicateMatch, DuplicateMatchType
from utils.text_utils import normalize_words

logger = structlog.get_logger(__name__)

_NUMBER_TOKEN = re.compile(r"\d+[a-z]?")
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def normalize_company_name(name: Optional[str]) -> str:
    """
    Normalize a customer name for comparison.

    - "Ola Nordmann A/S" → "ola nordmann as"
    - "OLA NORDMANN AS." → "ola nordmann as"
    - "Bøe Gård ANS" → "boe gard ans"
    """
    if not name:
        return ""
    lowered = str(name).casefold().strip()
    for suffix, canonical in COMPANY_SUFFIXES.items():
        if lowered.endswith(" " + suffix):
            lowered = lowered[: -len(suffix)] + canonical
            break
    return normalize_words(lowered)


def normalize_address(address: Optional[str]) -> str:
    """
    Normalize a street address for comparison.

    - "Storgt. 1" → "storgate 1"
    - "Kirkevn 12B" → "kirkeveien 12b"
    - "Torget Pl. 3" → "torget plass 3"
    """
    if not address:
        return ""
    words = []
    for word in str(address).casefold().split():
        if word in ADDRESS_ABBREVIATIONS:
            words.append(ADDRESS_ABBREVIATIONS[word])
            continue
        # Glued abbreviations: "storgt." / "kirkevn"
        for abbreviation, expansion in ADDRESS_ABBREVIATIONS.items():
            if len(abbreviation) > 1 and word.endswith(abbreviation) and len(word) > len(abbreviation) + 2:
                word = word[: -len(abbreviation)] + expansion
                break
        words.append(word)
    return normalize_words(" ".join(words))


def address_similarity(left: str, right: str) -> float:
    """
    Similarity of two normalized addresses in [0, 1].

    Different house numbers mean different buildings, so the score is 0
    whenever both addresses carry numbers and the numbers differ.
    """
    if not left or not right:
        return 0.0
    left_numbers = _NUMBER_TOKEN.findall(left)
    right_numbers = _NUMBER_TOKEN.findall(right)
    if left_numbers and right_numbers and left_numbers != right_numbers:
        return 0.0
    return fuzz.token_sort_ratio(left, right) / 100


class DuplicateDetector:
    """
    Matches a candidate row against existing customers.

    The candidate list comes from the storage port; this class only scores.
    A strong name and postal code cannot carry a different street: the
    address must clear address_threshold on its own.
    """

    def __init__(self, threshold: Optional[float] = None, address_threshold: Optional[float] = None):
        self.threshold = settings.duplicate_match_threshold if threshold is None else threshold
        self.address_threshold = (
            settings.duplicate_address_min_similarity if address_threshold is None else address_threshold
        )

    def find_match(
        self,
        candidate: dict[str, Any],
        existing: list[CustomerRecord]
    ) -> Optional[DuplicateMatch]:
        """
        Find the existing customer a row refers to.

        Args:
            candidate: Normalized mapped values of the row
            existing: Customers of the same organization to compare against

        Returns:
            DuplicateMatch for the best customer, or None
        """
        if not existing:
            return None

        external_id = candidate.get("ekstern_id")
        if external_id:
            by_external = [c for c in existing if c.ekstern_id and str(c.ekstern_id) == str(external_id)]
            if by_external:
                chosen = self._most_recent(by_external)
                return DuplicateMatch(
                    customer_id=chosen.id,
                    match_type=DuplicateMatchType.EXACT,
                    score=1.0,
                    matched_fields=["ekstern_id"],
                    customer_name=chosen.navn,
                )

        name = normalize_company_name(candidate.get("navn"))
        address = normalize_address(candidate.get("adresse"))
        if not name or not address:
            return None

        scored: list[tuple[float, list[str], CustomerRecord]] = []
        for customer in existing:
            score, fields = self.score(candidate, customer)
            if score >= self.threshold:
                scored.append((score, fields, customer))

        if not scored:
            return None

        best_score = max(score for score, _, _ in scored)
        tied = [entry for entry in scored if entry[0] == best_score]
        score, fields, chosen = max(tied, key=lambda entry: entry[2].updated_at or _OLDEST)

        exact = {"navn", "adresse"}.issubset(fields) and score >= 1.0
        logger.debug(
            "duplicate_match_found",
            customer_id=chosen.id,
            score=round(score, 3),
            tied=len(tied),
        )

        return DuplicateMatch(
            customer_id=chosen.id,
            match_type=DuplicateMatchType.EXACT if exact else DuplicateMatchType.FUZZY,
            score=round(min(score, 1.0), 3),
            matched_fields=fields,
            customer_name=chosen.navn,
        )

    def score(self, candidate: dict[str, Any], customer: CustomerRecord) -> tuple[float, list[str]]:
        """
        Composite similarity of a row and one customer.

        Weights are renormalized over the fields both sides have, so a row
        without a postal code is judged on name and address alone. Scores 0
        when both sides have an address and they are less similar than
        address_threshold.

        Returns:
            (score in [0, 1], fields that matched exactly after normalization)
        """
        weights = DUPLICATE_FIELD_WEIGHTS
        total_weight = 0.0
        total = 0.0
        matched: list[str] = []

        name_left = normalize_company_name(candidate.get("navn"))
        name_right = normalize_company_name(customer.navn)
        if name_left and name_right:
            similarity = fuzz.token_sort_ratio(name_left, name_right) / 100
            total += weights["navn"] * similarity
            total_weight += weights["navn"]
            if name_left == name_right:
                matched.append("navn")

        address_left = normalize_address(candidate.get("adresse"))
        address_right = normalize_address(customer.adresse)
        if address_left and address_right:
            similarity = address_similarity(address_left, address_right)
            if similarity < self.address_threshold:
                return 0.0, matched
            total += weights["adresse"] * similarity
            total_weight += weights["adresse"]
            if address_left == address_right:
                matched.append("adresse")

        postal_left = candidate.get("postnummer")
        postal_right = customer.postnummer
        if postal_left and postal_right:
            same = str(postal_left) == str(postal_right)
            total += weights["postnummer"] * (1.0 if same else 0.0)
            total_weight += weights["postnummer"]
            if same:
                matched.append("postnummer")

        if total_weight == 0:
            return 0.0, matched

        return total / total_weight, matched

    def _most_recent(self, customers: list[CustomerRecord]) -> CustomerRecord:
        return max(customers, key=lambda c: c.updated_at or _OLDEST)
