"""
Request and response schemas for the customer import endpoints.
"""

from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from models.customer_import import (
    ColumnSuggestion,
    FormatChange,
    ImportBatchStatus,
    ImportCounts,
    CleaningReport,
    QualityReport,
    RowAction,
    SchemaProposals,
    StagingRow,
)


# ===================
# PREVIEW
# ===================

class PreviouslyUploaded(BaseModel):
    """Earlier batch with the same file contents."""
    batch_id: str
    filename: str
    uploaded_at: datetime
    status: ImportBatchStatus


class ImportPreviewResponse(BaseModel):
    """Response from POST /api/import/preview and POST /api/import/mapping."""

    session_id: str
    batch_id: str
    status: ImportBatchStatus
    filename: str
    sheet_name: Optional[str] = None
    sheet_names: list[str] = Field(default_factory=list)
    header_row_offset: int = 0
    column_signature: str
    format_change: FormatChange
    mapping_profile_id: Optional[str] = None
    columns: list[ColumnSuggestion]
    counts: ImportCounts
    total_rows: int
    rows: list[StagingRow] = Field(description="First annotated rows, capped by the preview limit")
    proposals: SchemaProposals
    quality_report: Optional[QualityReport] = None
    cleaning_report: CleaningReport = Field(default_factory=CleaningReport)
    previously_uploaded: Optional[PreviouslyUploaded] = None
    expires_at: datetime


class ConfirmMappingRequest(BaseModel):
    """Human confirmation of the header -> field mapping for a session."""

    session_id: str
    mapping: dict[str, Optional[str]] = Field(
        description="Source column -> target field; null leaves the column unmapped"
    )
    profile_name: Optional[str] = Field(None, max_length=100)


# ===================
# EXECUTE
# ===================

class ImportExecuteRequest(BaseModel):
    """Body of POST /api/import/execute."""

    session_id: str
    category_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Raw vocabulary value -> canonical value chosen by the user"
    )
    geocode_after_import: bool = False
    confirmed_mapping: Optional[dict[str, Optional[str]]] = None
    accept_suggested_mapping: bool = False
    excluded_rows: list[int] = Field(default_factory=list)
    row_edits: dict[int, dict[str, Any]] = Field(
        default_factory=dict,
        description="Row number -> target field -> corrected value"
    )
    dry_run: bool = False


class RowOutcome(BaseModel):
    row_number: int
    action: RowAction
    customer_id: Optional[str] = None
    error: Optional[str] = None


class RowError(BaseModel):
    row_number: int
    error: str


class ImportExecuteResponse(BaseModel):
    """Per-row outcome plus aggregate counts."""

    batch_id: str
    status: ImportBatchStatus
    dry_run: bool = False
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    created_ids: list[str] = Field(default_factory=list)
    updated_ids: list[str] = Field(default_factory=list)
    rows: list[RowOutcome] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)
    geocoding_note: Optional[str] = None
    started_at: datetime
    completed_at: datetime
    duration_ms: int


# ===================
# SESSIONS / PROPOSALS
# ===================

class CancelImportResponse(BaseModel):
    session_id: str
    batch_id: str
    status: ImportBatchStatus


class ConfirmProposalsRequest(BaseModel):
    """Accepts schema proposals returned by a preview."""

    custom_fields: list[str] = Field(default_factory=list)
    category_values: dict[str, list[str]] = Field(default_factory=dict)


class ConfirmProposalsResponse(BaseModel):
    custom_fields: list[str]
    vocabulary_extensions: dict[str, list[str]]
