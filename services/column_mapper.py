"""
Column mapper for customer imports.

Maps source headers to target fields through the static synonym table,
then lets the tenant's saved Mapping Profile for the same column signature
override and extend the result. Unknown layouts are flagged for remapping.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import hashlib
import structlog

from rapidfuzz import fuzz

from config.import_fields import HEADER_SYNONYMS, TARGET_FIELDS
from config.settings import settings
from exceptions import InvalidMappingError
from models.customer_import import (
    ColumnSuggestion,
    FormatChange,
    MappingProfile,
    RenamedColumn,
    utc_now,
)
from services.import_store import ImportStore
from utils.text_utils import normalize_header, slugify_field_name

logger = structlog.get_logger(__name__)

SIGNATURE_LENGTH = 16


def compute_column_signature(headers: list[str]) -> str:
    """
    Stable fingerprint of a header set.

    Order-insensitive and case-insensitive: headers are lowercased,
    trimmed, whitespace replaced by "_", sorted and joined with "|".
    The first 16 hex chars of the SHA-256 are the signature.
    """
    normalized = sorted(
        "_".join(str(h).strip().lower().split())
        for h in headers
    )
    digest = hashlib.sha256("|".join(normalized).encode("utf-8")).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def lookup_synonym(header: str) -> Optional[str]:
    """
    Target field for a header from the synonym table.

    Tries the normalized header, then the header with separators removed
    ("E-post" → "epost", "Post nr" → "postnr").
    """
    key = normalize_header(header)
    if key in HEADER_SYNONYMS:
        return HEADER_SYNONYMS[key]
    compact = "".join(ch for ch in key if ch.isalnum())
    return HEADER_SYNONYMS.get(compact)


@dataclass
class ColumnMappingResult:
    """Mapping of one upload's headers plus format-change information."""
    column_signature: str
    mapping: dict[str, str]
    suggestions: list[ColumnSuggestion]
    unmapped_columns: list[str]
    format_change: FormatChange
    profile: Optional[MappingProfile] = None
    allowed_fields: set[str] = field(default_factory=set)

    @property
    def requires_remapping(self) -> bool:
        return self.format_change.requires_remapping


class ColumnMapper:
    """
    Header → target field mapping for one organization.

    Reads profiles and signature history through the storage port.
    """

    def __init__(self, store: ImportStore, rename_similarity: Optional[float] = None):
        self.store = store
        self.rename_similarity = (
            settings.column_rename_similarity if rename_similarity is None else rename_similarity
        )

    def map_columns(
        self,
        tenant_id: str,
        headers: list[str],
        custom_fields: Optional[list[str]] = None,
        samples: Optional[dict[str, list[Any]]] = None
    ) -> ColumnMappingResult:
        """
        Map an upload's headers.

        Args:
            tenant_id: Organization id
            headers: Source headers in file order
            custom_fields: Organization custom fields (extend the target set)
            samples: Sample values per header, echoed in suggestions

        Returns:
            ColumnMappingResult
        """
        custom_fields = custom_fields or []
        samples = samples or {}
        allowed = allowed_target_fields(custom_fields)
        signature = compute_column_signature(headers)

        mapping: dict[str, str] = {}
        sources: dict[str, str] = {}
        for header in headers:
            target = lookup_synonym(header)
            source = "synonym"
            if target is None and slugify_field_name(header) in custom_fields:
                target = slugify_field_name(header)
                source = "custom_field"
            if target is None or target in mapping.values():
                continue
            mapping[header] = target
            sources[header] = source

        profile = self.store.get_mapping_profile(tenant_id, signature)
        if profile is not None:
            for header, target in profile.mapping.items():
                if header not in headers:
                    continue
                if target is None or target not in allowed:
                    mapping.pop(header, None)
                    continue
                # Profile wins: drop any synonym mapping claiming the same target
                for other, other_target in list(mapping.items()):
                    if other_target == target and other != header:
                        del mapping[other]
                mapping[header] = target
                sources[header] = "profile"

        format_change = self.detect_format_change(tenant_id, headers, signature, profile)

        suggestions = [
            ColumnSuggestion(
                source_column=header,
                target_field=mapping.get(header),
                confidence=1.0 if header in mapping else 0.0,
                source=sources.get(header) if header in mapping else None,
                sample_values=samples.get(header, []),
            )
            for header in headers
        ]
        unmapped = [h for h in headers if h not in mapping]

        logger.info(
            "columns_mapped",
            tenant_id=tenant_id,
            signature=signature,
            mapped=len(mapping),
            unmapped=len(unmapped),
            profile_id=profile.id if profile else None,
            requires_remapping=format_change.requires_remapping,
        )

        return ColumnMappingResult(
            column_signature=signature,
            mapping=mapping,
            suggestions=suggestions,
            unmapped_columns=unmapped,
            format_change=format_change,
            profile=profile,
            allowed_fields=allowed,
        )

    def detect_format_change(
        self,
        tenant_id: str,
        headers: list[str],
        signature: str,
        profile: Optional[MappingProfile] = None
    ) -> FormatChange:
        """
        Compare this upload's layout with the tenant's signature history.

        - Saved profile for the signature: known format, no remapping
        - Signature seen before: known format, no remapping
        - Otherwise: format change, remapping required; added / removed /
          renamed columns are reported against the most recent signature
        """
        if profile is not None:
            return FormatChange()

        history = self.store.list_signature_history(tenant_id)
        if any(entry.column_signature == signature for entry in history):
            return FormatChange()

        if not history:
            return FormatChange(format_change_detected=True, requires_remapping=True)

        previous = history[0]
        previous_keys = {normalize_header(c): c for c in previous.columns}
        current_keys = {normalize_header(h): h for h in headers}

        added = [current_keys[k] for k in current_keys if k not in previous_keys]
        removed = [previous_keys[k] for k in previous_keys if k not in current_keys]

        renamed: list[RenamedColumn] = []
        for old in list(removed):
            best, best_score = None, 0.0
            for new in added:
                score = fuzz.ratio(normalize_header(old), normalize_header(new)) / 100
                if score > best_score:
                    best, best_score = new, score
            if best is not None and best_score > self.rename_similarity:
                renamed.append(RenamedColumn(previous=old, current=best, similarity=round(best_score, 3)))
                removed.remove(old)
                added.remove(best)

        logger.info(
            "column_format_changed",
            tenant_id=tenant_id,
            signature=signature,
            previous_signature=previous.column_signature,
            added=len(added),
            removed=len(removed),
            renamed=len(renamed),
        )

        return FormatChange(
            format_change_detected=True,
            requires_remapping=True,
            previous_signature=previous.column_signature,
            added_columns=added,
            removed_columns=removed,
            renamed_columns=renamed,
        )

    def validate_mapping(
        self,
        mapping: dict[str, Optional[str]],
        headers: list[str],
        allowed_fields: set[str]
    ) -> dict[str, str]:
        """
        Check a human-supplied mapping and drop null entries.

        Raises:
            InvalidMappingError: Unknown header, field outside the allowed
                set, or two headers mapped to one field
        """
        unknown_headers = [h for h in mapping if h not in headers]
        if unknown_headers:
            raise InvalidMappingError(
                f"Mapping names columns not in the file: {', '.join(unknown_headers)}",
                details={"unknown_columns": unknown_headers},
            )

        cleaned = {h: f for h, f in mapping.items() if f}
        bad_fields = sorted({f for f in cleaned.values() if f not in allowed_fields})
        if bad_fields:
            raise InvalidMappingError(
                f"Unknown target fields: {', '.join(bad_fields)}",
                details={"unknown_fields": bad_fields},
            )

        seen: dict[str, str] = {}
        for header, target in cleaned.items():
            if target in seen:
                raise InvalidMappingError(
                    f"Columns '{seen[target]}' and '{header}' are both mapped to '{target}'",
                    details={"field": target, "columns": [seen[target], header]},
                )
            seen[target] = header

        return cleaned

    def save_confirmed_profile(
        self,
        tenant_id: str,
        headers: list[str],
        signature: str,
        mapping: dict[str, str],
        name: Optional[str] = None
    ) -> MappingProfile:
        """Create or update the human-confirmed profile for a signature."""
        existing = self.store.get_mapping_profile(tenant_id, signature)
        if existing is not None:
            existing.mapping = dict(mapping)
            existing.human_confirmed = True
            existing.suggested = False
            existing.name = name or existing.name
            existing.updated_at = utc_now()
            return self.store.save_mapping_profile(existing)

        profile = MappingProfile(
            tenant_id=tenant_id,
            name=name or f"Import {signature[:8]}",
            column_signature=signature,
            source_columns=list(headers),
            mapping=dict(mapping),
            human_confirmed=True,
            suggested=False,
        )
        return self.store.save_mapping_profile(profile)


def allowed_target_fields(custom_fields: Optional[list[str]] = None) -> set[str]:
    """Standard target fields plus the organization's custom fields."""
    return set(TARGET_FIELDS) | set(custom_fields or [])
