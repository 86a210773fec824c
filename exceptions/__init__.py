"""
Custom exceptions module.

Import routes turn these into JSON via AppError.to_dict().
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,
    MissingTenantError,

    # File-level
    UnsupportedFileTypeError,
    FileTooLargeError,
    UnreadableFileError,
    EmptyWorkbookError,
    EmptySheetError,
    SheetNotFoundError,

    # Sessions
    ImportSessionNotFoundError,
    ImportSessionExpiredError,
    ImportSessionForbiddenError,

    # Mapping / workflow
    RemappingRequiredError,
    InvalidMappingError,
    InvalidOverrideError,
    InvalidStatusTransitionError,
    CommitTransactionError,
)

__all__ = [
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",
    "MissingTenantError",
    "UnsupportedFileTypeError",
    "FileTooLargeError",
    "UnreadableFileError",
    "EmptyWorkbookError",
    "EmptySheetError",
    "SheetNotFoundError",
    "ImportSessionNotFoundError",
    "ImportSessionExpiredError",
    "ImportSessionForbiddenError",
    "RemappingRequiredError",
    "InvalidMappingError",
    "InvalidOverrideError",
    "InvalidStatusTransitionError",
    "CommitTransactionError",
]
