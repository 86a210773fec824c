"""
Custom exception classes for the application.

File-level and session-level failures are exceptions. Row-level issues are
data on the staging rows and never raised.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_SESSION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None,
        message: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=message or f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class MissingTenantError(AppError):
    """Request carried no organization id (400)."""

    def __init__(self):
        super().__init__(
            code="TENANT_REQUIRED",
            message="X-Organization-Id header is required",
            status_code=400
        )


# ===================
# FILE ERRORS
# ===================

class UnsupportedFileTypeError(ValidationError):
    """Upload extension is not a spreadsheet or delimited text file."""

    def __init__(self, filename: str, supported: list[str]):
        super().__init__(
            code="IMPORT_UNSUPPORTED_FILE_TYPE",
            message=f"File '{filename}' is not a supported format ({', '.join(supported)})",
            details={"filename": filename, "supported": supported}
        )


class FileTooLargeError(AppError):
    """Upload exceeds the size limit (413)."""

    def __init__(self, filename: str, size_bytes: int, max_bytes: int):
        super().__init__(
            code="IMPORT_FILE_TOO_LARGE",
            message=(
                f"File '{filename}' is {size_bytes / 1024 / 1024:.1f} MB, "
                f"the limit is {max_bytes // 1024 // 1024} MB"
            ),
            status_code=413,
            details={"filename": filename, "size_bytes": size_bytes, "max_bytes": max_bytes}
        )


class UnreadableFileError(ValidationError):
    """File could not be opened as a spreadsheet."""

    def __init__(self, filename: str, reason: str):
        super().__init__(
            code="IMPORT_UNREADABLE_FILE",
            message=f"File '{filename}' could not be read: {reason}",
            details={"filename": filename, "reason": reason}
        )


class EmptyWorkbookError(ValidationError):
    """No sheet in the workbook holds any data."""

    def __init__(self, filename: str):
        super().__init__(
            code="IMPORT_EMPTY_WORKBOOK",
            message=f"File '{filename}' contains no data",
            details={"filename": filename}
        )


class EmptySheetError(ValidationError):
    """Selected sheet has no header or no data rows."""

    def __init__(self, filename: str, sheet_name: str):
        super().__init__(
            code="IMPORT_EMPTY_SHEET",
            message=f"Sheet '{sheet_name}' in '{filename}' has no data rows",
            details={"filename": filename, "sheet_name": sheet_name}
        )


class SheetNotFoundError(ValidationError):
    """Requested sheet is not in the workbook."""

    def __init__(self, sheet_name: str, available: list[str]):
        super().__init__(
            code="IMPORT_SHEET_NOT_FOUND",
            message=f"Sheet '{sheet_name}' not found",
            details={"sheet_name": sheet_name, "available": available}
        )


# ===================
# SESSION ERRORS
# ===================

class ImportSessionNotFoundError(NotFoundError):
    """Session id unknown or already consumed."""

    def __init__(self, session_id: str):
        super().__init__(
            resource="Import session",
            identifier=session_id,
            code="IMPORT_SESSION_NOT_FOUND",
            message="Import session not found. It may already have been executed; upload the file again to start a new preview"
        )


class ImportSessionExpiredError(AppError):
    """Session outlived its TTL (410)."""

    def __init__(self, session_id: str, expired_at: str):
        super().__init__(
            code="IMPORT_SESSION_EXPIRED",
            message="Import session has expired. Upload the file again to start a new preview",
            status_code=410,
            details={"id": session_id, "expired_at": expired_at}
        )


class ImportSessionForbiddenError(AppError):
    """Session belongs to another organization (403)."""

    def __init__(self, session_id: str):
        super().__init__(
            code="IMPORT_SESSION_FORBIDDEN",
            message="Import session belongs to a different organization",
            status_code=403,
            details={"id": session_id}
        )


# ===================
# MAPPING / WORKFLOW ERRORS
# ===================

class RemappingRequiredError(ConflictError):
    """Column format is new and the mapping has not been confirmed."""

    def __init__(self, session_id: str, signature: str):
        super().__init__(
            code="IMPORT_REMAPPING_REQUIRED",
            message=(
                "The column layout of this file has not been seen before. "
                "Confirm the column mapping before executing the import"
            ),
            details={"session_id": session_id, "column_signature": signature}
        )


class InvalidMappingError(ValidationError):
    """Mapping references unknown headers or fields outside the allowed set."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="IMPORT_INVALID_MAPPING",
            message=message,
            details=details
        )


class InvalidOverrideError(ValidationError):
    """Override maps a raw value to something that is not a canonical entry."""

    def __init__(self, raw_value: str, canonical: str, valid: list[str]):
        super().__init__(
            code="IMPORT_INVALID_OVERRIDE",
            message=f"Override for '{raw_value}' points to unknown value '{canonical}'",
            details={"raw_value": raw_value, "provided": canonical, "valid": valid}
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid import batch status transition."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition import batch from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
            }
        )


class CommitTransactionError(AppError):
    """The store's transaction wrapper failed; nothing was saved."""

    def __init__(self, batch_id: str, reason: str):
        super().__init__(
            code="IMPORT_COMMIT_FAILED",
            message=f"Import failed and was rolled back, nothing was saved: {reason}",
            status_code=500,
            details={"batch_id": batch_id, "nothing_saved": True, "reason": reason}
        )
