"""
Vocabulary matcher for category, subtype, equipment and mode fields.

Resolves free text to one canonical entry. First hit wins:
exact (canonical or registered alias), normalized, then fuzzy. A fuzzy
near-tie never auto-resolves; it comes back as `none` with the candidates
so the reviewer can choose.
"""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from rapidfuzz import fuzz

from config.import_fields import VOCABULARIES
from config.settings import settings
from models.customer_import import MatchType, VocabularyMatch
from utils.text_utils import collapse_whitespace, compact_key

logger = structlog.get_logger(__name__)

NORMALIZED_CONFIDENCE = 0.95
MAX_CANDIDATES = 3


@dataclass
class Vocabulary:
    """Canonical values for one field plus known dirty aliases."""
    field: str
    canonical: list[str]
    aliases: dict[str, str] = field(default_factory=dict)  # casefolded alias -> canonical

    @classmethod
    def from_entries(cls, field_name: str, entries: dict[str, list[str]]) -> "Vocabulary":
        aliases = {}
        for canonical, alias_list in entries.items():
            for alias in alias_list:
                aliases[alias.casefold()] = canonical
        return cls(field=field_name, canonical=list(entries.keys()), aliases=aliases)

    def extended(self, values: list[str]) -> "Vocabulary":
        """Copy with organization-specific canonical values appended."""
        canonical = list(self.canonical)
        for value in values:
            if value not in canonical:
                canonical.append(value)
        return Vocabulary(field=self.field, canonical=canonical, aliases=dict(self.aliases))

    def canonical_for(self, value: str) -> Optional[str]:
        """Case-insensitive lookup of a canonical entry."""
        folded = value.casefold()
        for canonical in self.canonical:
            if canonical.casefold() == folded:
                return canonical
        return None


def build_vocabularies(extensions: Optional[dict[str, list[str]]] = None) -> dict[str, Vocabulary]:
    """
    Vocabularies for every vocabulary-backed field.

    Args:
        extensions: Organization-added values per field

    Returns:
        Dict of field name to Vocabulary
    """
    extensions = extensions or {}
    vocabularies = {
        name: Vocabulary.from_entries(name, entries)
        for name, entries in VOCABULARIES.items()
    }
    for name, values in extensions.items():
        if name in vocabularies:
            vocabularies[name] = vocabularies[name].extended(values)
        else:
            vocabularies[name] = Vocabulary(field=name, canonical=list(values))
    return vocabularies


class VocabularyMatcher:
    """
    Free text to canonical value resolver.

    Thresholds come from settings unless given explicitly.
    """

    def __init__(
        self,
        fuzzy_threshold: Optional[float] = None,
        ambiguity_margin: Optional[float] = None
    ):
        self.fuzzy_threshold = (
            settings.vocabulary_fuzzy_threshold if fuzzy_threshold is None else fuzzy_threshold
        )
        self.ambiguity_margin = (
            settings.vocabulary_ambiguity_margin if ambiguity_margin is None else ambiguity_margin
        )

    def match(self, raw_value: str, vocabulary: Vocabulary) -> VocabularyMatch:
        """
        Resolve one value.

        Args:
            raw_value: Cell text as uploaded
            vocabulary: Vocabulary for the target field

        Returns:
            VocabularyMatch; for match_type NONE, value is the raw text
        """
        raw = collapse_whitespace(str(raw_value))
        folded = raw.casefold()

        # 1. Exact, case-insensitive, on canonical values then registered aliases
        canonical = vocabulary.canonical_for(raw)
        if canonical is None:
            canonical = vocabulary.aliases.get(folded)
        if canonical is not None:
            return self._result(vocabulary, raw, canonical, 1.0, MatchType.EXACT)

        # 2. Exact after folding diacritics, punctuation and spacing
        key = compact_key(raw)
        if key:
            for candidate in vocabulary.canonical:
                if compact_key(candidate) == key:
                    return self._result(vocabulary, raw, candidate, NORMALIZED_CONFIDENCE, MatchType.NORMALIZED)
            for alias, candidate in vocabulary.aliases.items():
                if compact_key(alias) == key:
                    return self._result(vocabulary, raw, candidate, NORMALIZED_CONFIDENCE, MatchType.NORMALIZED)

        # 3. Fuzzy, only with a clear winner
        ranked = self._rank(key, vocabulary)
        if not ranked:
            return self._result(vocabulary, raw, raw, 0.0, MatchType.NONE)

        best_value, best_score = ranked[0]
        runner_up = ranked[1][1] if len(ranked) > 1 else 0.0
        candidates = [value for value, _ in ranked[:MAX_CANDIDATES]]

        if best_score >= self.fuzzy_threshold:
            if best_score - runner_up > self.ambiguity_margin:
                return self._result(
                    vocabulary, raw, best_value, round(best_score, 3), MatchType.FUZZY, candidates
                )
            logger.debug(
                "vocabulary_match_ambiguous",
                field=vocabulary.field,
                best=best_value,
                best_score=round(best_score, 3),
                runner_up_score=round(runner_up, 3),
            )

        return self._result(vocabulary, raw, raw, round(best_score, 3), MatchType.NONE, candidates)

    def _rank(self, key: str, vocabulary: Vocabulary) -> list[tuple[str, float]]:
        """Best similarity per canonical value, highest first."""
        if not key:
            return []

        best: dict[str, float] = {}
        for canonical in vocabulary.canonical:
            best[canonical] = fuzz.ratio(key, compact_key(canonical)) / 100
        for alias, canonical in vocabulary.aliases.items():
            score = fuzz.ratio(key, compact_key(alias)) / 100
            if score > best.get(canonical, 0.0):
                best[canonical] = score

        return sorted(best.items(), key=lambda item: item[1], reverse=True)

    def _result(
        self,
        vocabulary: Vocabulary,
        raw: str,
        value: str,
        confidence: float,
        match_type: MatchType,
        candidates: Optional[list[str]] = None
    ) -> VocabularyMatch:
        return VocabularyMatch(
            field=vocabulary.field,
            raw_value=raw,
            value=value,
            confidence=confidence,
            match_type=match_type,
            candidates=candidates or [],
        )
