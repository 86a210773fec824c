"""
Customer import domain models.

Batch lifecycle, staging rows and their annotations, mapping profiles,
signature history and the customer shape the duplicate detector needs.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional
from enum import Enum
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ImportModel(BaseModel):
    """
    Base for import models.

    Features:
        - Validate on attribute assignment
        - Enum fields serialize as their values
    """
    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        use_enum_values=False,
    )


# ===================
# ENUMS
# ===================

class ImportBatchStatus(str, Enum):
    """Import batch lifecycle states."""
    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    MAPPING = "mapping"
    MAPPED = "mapped"
    VALIDATING = "validating"
    VALIDATED = "validated"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StagingRowStatus(str, Enum):
    """Overall status of one staged row."""
    PENDING = "pending"
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"
    DUPLICATE = "duplicate"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class MatchType(str, Enum):
    """How a vocabulary value was resolved."""
    EXACT = "exact"
    NORMALIZED = "normalized"
    FUZZY = "fuzzy"
    NONE = "none"


class DuplicateMatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"


class RowAction(str, Enum):
    """Terminal action taken for a row at commit."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


# ===================
# BATCH STATE MACHINE
# ===================

TERMINAL_BATCH_STATUSES = {
    ImportBatchStatus.COMMITTED,
    ImportBatchStatus.FAILED,
    ImportBatchStatus.CANCELLED,
}

# Forward edges only; FAILED and CANCELLED are added for every non-terminal state
BATCH_TRANSITIONS: dict[ImportBatchStatus, set[ImportBatchStatus]] = {
    ImportBatchStatus.UPLOADED: {ImportBatchStatus.PARSING},
    ImportBatchStatus.PARSING: {ImportBatchStatus.PARSED},
    ImportBatchStatus.PARSED: {ImportBatchStatus.MAPPING},
    ImportBatchStatus.MAPPING: {ImportBatchStatus.MAPPED},
    ImportBatchStatus.MAPPED: {ImportBatchStatus.VALIDATING, ImportBatchStatus.MAPPING},
    ImportBatchStatus.VALIDATING: {ImportBatchStatus.VALIDATED},
    ImportBatchStatus.VALIDATED: {ImportBatchStatus.COMMITTING},
    ImportBatchStatus.COMMITTING: {ImportBatchStatus.COMMITTED},
}


def is_valid_import_batch_transition(
    current: ImportBatchStatus,
    new: ImportBatchStatus,
    requires_remapping: bool = False
) -> bool:
    """
    Check if an import batch status transition is valid.

    Rules:
    - COMMITTED, FAILED and CANCELLED are terminal
    - FAILED / CANCELLED are reachable from any non-terminal state
    - MAPPED -> VALIDATING only once the mapping no longer needs confirmation
    - MAPPED -> MAPPING re-opens mapping when the user edits it again
    """
    if current in TERMINAL_BATCH_STATUSES:
        return False

    if new in (ImportBatchStatus.FAILED, ImportBatchStatus.CANCELLED):
        return True

    if current == ImportBatchStatus.MAPPED and new == ImportBatchStatus.VALIDATING:
        return not requires_remapping

    return new in BATCH_TRANSITIONS.get(current, set())


# ===================
# ROW ANNOTATIONS
# ===================

class ValidationIssue(ImportModel):
    """One problem found on a row. Messages name the row, field and value."""
    severity: IssueSeverity
    code: str
    field: Optional[str] = None
    source_column: Optional[str] = None
    message: str
    value: Optional[Any] = None
    suggestion: Optional[str] = None


class ValueChange(ImportModel):
    """A coercion applied by the normalizer, shown as before -> after."""
    field: str
    before: Any
    after: Any
    reason: str


class VocabularyMatch(ImportModel):
    """Resolution of one free-text value against a vocabulary."""
    field: str
    raw_value: str
    value: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    candidates: list[str] = Field(default_factory=list)


class DuplicateMatch(ImportModel):
    """Existing customer a row appears to refer to."""
    customer_id: str
    match_type: DuplicateMatchType
    score: float = Field(ge=0.0, le=1.0)
    matched_fields: list[str] = Field(default_factory=list)
    customer_name: Optional[str] = None


class StagingRow(ImportModel):
    """One parsed, mapped and validated input row."""
    row_number: int
    raw_values: dict[str, Any] = Field(default_factory=dict)
    mapped_values: dict[str, Any] = Field(default_factory=dict)
    status: StagingRowStatus = StagingRowStatus.PENDING
    issues: list[ValidationIssue] = Field(default_factory=list)
    changes: list[ValueChange] = Field(default_factory=list)
    vocabulary_matches: list[VocabularyMatch] = Field(default_factory=list)
    duplicate: Optional[DuplicateMatch] = None
    completeness_score: float = 0.0
    action: Optional[RowAction] = None
    customer_id: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return any(i.severity == IssueSeverity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == IssueSeverity.WARNING for i in self.issues)


class ImportCounts(ImportModel):
    """Aggregate status counts, always derived from staging rows."""
    total: int = 0
    valid: int = 0
    warning: int = 0
    error: int = 0
    duplicate: int = 0


class CleaningRuleSummary(ImportModel):
    """How many rows or cells one cleaning rule touched."""
    rule_id: str
    description: str
    category: str  # rows, cells
    affected_count: int = 0


class RemovedRow(ImportModel):
    """A source row dropped before mapping, with the reason."""
    row_number: int
    rule_id: str
    reason: str
    values: dict[str, Any] = Field(default_factory=dict)


class CleanedCell(ImportModel):
    row_number: int
    column: str
    before: Any
    after: Any
    rule_id: str


class CleaningReport(ImportModel):
    """What the cleaning pass changed between parsing and mapping."""
    rules: list[CleaningRuleSummary] = Field(default_factory=list)
    removed_rows: list[RemovedRow] = Field(default_factory=list)
    cleaned_cells: list[CleanedCell] = Field(default_factory=list)
    total_rows_removed: int = 0
    total_cells_cleaned: int = 0


class QualityReport(ImportModel):
    """Batch-level data quality summary."""
    overall_score: int = Field(ge=0, le=100)
    valid_percentage: float
    average_completeness: float
    field_coverage: dict[str, float] = Field(default_factory=dict)
    common_issues: list[dict] = Field(default_factory=list)


# ===================
# BATCH / PROFILES / HISTORY
# ===================

class ImportBatch(ImportModel):
    """One uploaded file and its processing lifecycle."""
    id: str
    tenant_id: str
    filename: str
    size_bytes: int
    file_hash: str
    column_signature: Optional[str] = None
    row_count: int = 0
    status: ImportBatchStatus = ImportBatchStatus.UPLOADED
    sheet_name: Optional[str] = None
    header_row_offset: int = 0
    counts: ImportCounts = Field(default_factory=ImportCounts)
    quality_report: Optional[QualityReport] = None
    format_change_detected: bool = False
    requires_remapping: bool = False
    mapping_profile_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    committed_at: Optional[datetime] = None


class MappingProfile(ImportModel):
    """Saved header -> field mapping keyed by column signature."""
    id: Optional[str] = None
    tenant_id: str
    name: str
    column_signature: str
    source_columns: list[str]
    mapping: dict[str, str]
    human_confirmed: bool = False
    suggested: bool = True
    use_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ColumnSignatureHistory(ImportModel):
    """Every distinct column signature a tenant has uploaded."""
    id: Optional[str] = None
    tenant_id: str
    column_signature: str
    columns: list[str]
    first_seen_at: datetime = Field(default_factory=utc_now)
    last_seen_at: datetime = Field(default_factory=utc_now)
    occurrence_count: int = 1


class CustomerRecord(ImportModel):
    """Existing customer as seen by duplicate detection."""
    id: str
    tenant_id: str
    navn: str
    adresse: Optional[str] = None
    postnummer: Optional[str] = None
    ekstern_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class TenantSchema(ImportModel):
    """Organization-level additions to the import target set."""
    custom_fields: list[str] = Field(default_factory=list)
    vocabulary_extensions: dict[str, list[str]] = Field(default_factory=dict)


class AuditEntry(ImportModel):
    """One audit record per affected customer."""
    tenant_id: str
    batch_id: str
    action: RowAction
    customer_id: str
    row_number: int
    created_at: datetime = Field(default_factory=utc_now)


# ===================
# MAPPING / PROPOSALS
# ===================

class ColumnSuggestion(ImportModel):
    """Suggested target field for one source column."""
    source_column: str
    target_field: Optional[str] = None
    confidence: float = 0.0
    source: Optional[str] = None  # synonym, profile, manual
    sample_values: list[Any] = Field(default_factory=list)


class RenamedColumn(ImportModel):
    previous: str
    current: str
    similarity: float


class FormatChange(ImportModel):
    """How this upload's column layout compares to earlier uploads."""
    format_change_detected: bool = False
    requires_remapping: bool = False
    previous_signature: Optional[str] = None
    added_columns: list[str] = Field(default_factory=list)
    removed_columns: list[str] = Field(default_factory=list)
    renamed_columns: list[RenamedColumn] = Field(default_factory=list)


class CustomFieldProposal(ImportModel):
    source_column: str
    field_name: str
    field_type: str
    occurrences: int
    sample_values: list[Any] = Field(default_factory=list)


class CategoryValueProposal(ImportModel):
    field: str
    value: str
    occurrences: int
    closest_matches: list[str] = Field(default_factory=list)


class SchemaProposals(ImportModel):
    """Advisory suggestions for new custom fields and category values."""
    custom_fields: list[CustomFieldProposal] = Field(default_factory=list)
    category_values: list[CategoryValueProposal] = Field(default_factory=list)
