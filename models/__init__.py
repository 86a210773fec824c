"""
Pydantic models for validation and serialization.
"""

from models.customer_import import (
    ImportBatchStatus,
    StagingRowStatus,
    IssueSeverity,
    MatchType,
    DuplicateMatchType,
    RowAction,
    is_valid_import_batch_transition,
    ValidationIssue,
    ValueChange,
    VocabularyMatch,
    DuplicateMatch,
    StagingRow,
    ImportCounts,
    CleaningRuleSummary,
    RemovedRow,
    CleanedCell,
    CleaningReport,
    QualityReport,
    ImportBatch,
    MappingProfile,
    ColumnSignatureHistory,
    CustomerRecord,
    TenantSchema,
    AuditEntry,
    ColumnSuggestion,
    RenamedColumn,
    FormatChange,
    CustomFieldProposal,
    CategoryValueProposal,
    SchemaProposals,
)
from models.import_api import (
    PreviouslyUploaded,
    ImportPreviewResponse,
    ConfirmMappingRequest,
    ImportExecuteRequest,
    RowOutcome,
    RowError,
    ImportExecuteResponse,
    CancelImportResponse,
    ConfirmProposalsRequest,
    ConfirmProposalsResponse,
)
