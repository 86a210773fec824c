"""
Customer import API routes.

Spreadsheet upload → preview → (mapping confirmation) → execute.
Every request is scoped to the organization in the X-Organization-Id header.
"""

from fastapi import APIRouter, UploadFile, File, Form, Header
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from config import settings
from models.import_api import (
    CancelImportResponse,
    ConfirmMappingRequest,
    ConfirmProposalsRequest,
    ConfirmProposalsResponse,
    ImportExecuteRequest,
    ImportExecuteResponse,
    ImportPreviewResponse,
)
from services.import_service import get_import_service
from exceptions import AppError, FileTooLargeError, MissingTenantError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def require_tenant(organization_id: Optional[str]) -> str:
    """Organization id from the request header; raises if absent."""
    if not organization_id or not organization_id.strip():
        raise MissingTenantError()
    return organization_id.strip()


async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    """
    Read an upload, never holding more than max_bytes + 1 bytes.

    Raises:
        FileTooLargeError: The declared or actual size exceeds max_bytes
    """
    filename = file.filename or ""
    if file.size is not None and file.size > max_bytes:
        raise FileTooLargeError(filename, file.size, max_bytes)

    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise FileTooLargeError(filename, len(content), max_bytes)
    return content


# ===================
# PREVIEW / MAPPING
# ===================

@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_import(
    file: UploadFile = File(..., description="Customer spreadsheet (.xlsx, .xlsm, .csv)"),
    sheet_name: Optional[str] = Form(None, description="Sheet to import; first populated sheet by default"),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id")
):
    """
    Parse and validate a customer spreadsheet without importing it.

    Returns annotated rows, column mapping suggestions, format-change
    information and schema proposals, plus a session id for execute.
    """
    try:
        tenant_id = require_tenant(x_organization_id)
        content = await read_upload(file, settings.import_max_file_size_bytes)

        logger.info(
            "import_preview_requested",
            tenant_id=tenant_id,
            filename=file.filename,
            size_bytes=len(content),
        )

        service = get_import_service()
        return await run_in_threadpool(
            service.preview, tenant_id, file.filename or "", content, sheet_name
        )

    except Exception as e:
        return handle_error(e)


@router.post("/mapping", response_model=ImportPreviewResponse)
async def confirm_mapping(
    request: ConfirmMappingRequest,
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id")
):
    """
    Confirm the column mapping for a session.

    The mapping is saved as the organization's profile for this column
    layout and the staged rows are re-validated.
    """
    try:
        tenant_id = require_tenant(x_organization_id)
        service = get_import_service()
        return await run_in_threadpool(service.confirm_mapping, tenant_id, request)

    except Exception as e:
        return handle_error(e)


# ===================
# EXECUTE / CANCEL
# ===================

@router.post("/execute", response_model=ImportExecuteResponse)
async def execute_import(
    request: ImportExecuteRequest,
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id")
):
    """
    Commit a previewed import.

    Each session commits at most once. Rows with validation errors and
    excluded rows are skipped; a failing row does not stop the others.
    """
    try:
        tenant_id = require_tenant(x_organization_id)
        service = get_import_service()
        return await run_in_threadpool(service.execute, tenant_id, request)

    except Exception as e:
        return handle_error(e)


@router.delete("/sessions/{session_id}", response_model=CancelImportResponse)
async def cancel_import(
    session_id: str,
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id")
):
    """Discard a previewed import."""
    try:
        tenant_id = require_tenant(x_organization_id)
        return get_import_service().cancel(tenant_id, session_id)

    except Exception as e:
        return handle_error(e)


# ===================
# SCHEMA PROPOSALS
# ===================

@router.post("/proposals/confirm", response_model=ConfirmProposalsResponse)
async def confirm_proposals(
    request: ConfirmProposalsRequest,
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id")
):
    """
    Accept proposed custom fields and category values.

    Accepted fields become mapping targets on the next preview; accepted
    values become canonical vocabulary entries for the organization.
    """
    try:
        tenant_id = require_tenant(x_organization_id)
        return get_import_service().confirm_proposals(tenant_id, request)

    except Exception as e:
        return handle_error(e)
