"""
Customer import service.

Drives a batch through its lifecycle:

    preview:  uploaded → parsing → parsed → mapping → mapped
    mapping:  (re)confirm the header mapping, rows re-validated
    execute:  mapped → validating → validated → committing → committed
    cancel:   any non-terminal state → cancelled

The staged result lives in an ImportSession between preview and execute;
execute consumes it atomically so one preview commits at most once.
"""

from datetime import datetime, timezone
from typing import Optional
import hashlib
import re
import uuid
import structlog

from config.import_fields import TARGET_FIELDS, VOCABULARIES
from config.settings import settings
from exceptions import (
    AppError,
    CommitTransactionError,
    EmptySheetError,
    InvalidMappingError,
    InvalidOverrideError,
    InvalidStatusTransitionError,
    RemappingRequiredError,
    ValidationError,
)
from models.customer_import import (
    ColumnSuggestion,
    ImportBatch,
    ImportBatchStatus,
    RowAction,
    StagingRow,
    TenantSchema,
    is_valid_import_batch_transition,
)
from models.import_api import (
    CancelImportResponse,
    ConfirmMappingRequest,
    ConfirmProposalsRequest,
    ConfirmProposalsResponse,
    ImportExecuteRequest,
    ImportExecuteResponse,
    ImportPreviewResponse,
    PreviouslyUploaded,
    RowError,
    RowOutcome,
)
from parsers.spreadsheet_parser import parse_spreadsheet
from services.column_mapper import ColumnMapper, allowed_target_fields
from services.commit_engine import CommitEngine, CommitResult
from services.data_cleaner import DataCleaner
from services.import_session_store import (
    ImportSession,
    ImportSessionStore,
    get_import_session_store,
)
from services.import_store import ImportStore, get_import_store
from services.import_summary import build_quality_report, summarize_rows
from services.row_processor import RowContext, RowProcessor, override_key
from services.schema_analyzer import SchemaAnalyzer
from services.vocabulary_matcher import Vocabulary, build_vocabularies

logger = structlog.get_logger(__name__)

_FIELD_NAME = re.compile(r"^[a-z][a-z0-9_]{0,62}$")


class ImportService:
    """
    Service for spreadsheet customer imports.

    Handles:
    - Preview (parse, map, normalize, validate, detect duplicates)
    - Mapping confirmation and saved mapping profiles
    - Execute (commit staged rows) and cancel
    - Accepting custom field / category value proposals
    """

    def __init__(
        self,
        store: Optional[ImportStore] = None,
        session_store: Optional[ImportSessionStore] = None
    ):
        self.store = store or get_import_store()
        self.sessions = session_store or get_import_session_store()
        self.cleaner = DataCleaner()
        self.mapper = ColumnMapper(self.store)
        self.processor = RowProcessor(self.store)
        self.analyzer = SchemaAnalyzer()
        self.engine = CommitEngine(self.store)

    # ===================
    # PREVIEW
    # ===================

    def preview(
        self,
        tenant_id: str,
        filename: str,
        content: bytes,
        sheet_name: Optional[str] = None
    ) -> ImportPreviewResponse:
        """
        Parse, map and validate an upload without writing any customer.

        Parsed rows go through the DataCleaner before mapping; totals rows,
        repeated rows and placeholder cells are reported in cleaning_report.

        Args:
            tenant_id: Organization id
            filename: Original filename
            content: Raw file bytes
            sheet_name: Sheet to read (first populated sheet when None)

        Returns:
            ImportPreviewResponse with a session id for execute

        Raises:
            UnsupportedFileTypeError, FileTooLargeError, UnreadableFileError,
            EmptyWorkbookError, EmptySheetError, SheetNotFoundError: The file
                could not be parsed; the batch is recorded as failed
        """
        batch = ImportBatch(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            filename=filename,
            size_bytes=len(content),
            file_hash=hashlib.sha256(content).hexdigest(),
        )
        previous = self.store.find_batch_by_hash(tenant_id, batch.file_hash)

        logger.info(
            "import_preview_started",
            tenant_id=tenant_id,
            batch_id=batch.id,
            filename=filename,
            size_bytes=batch.size_bytes,
        )

        self._transition(batch, ImportBatchStatus.PARSING)
        try:
            parsed = parse_spreadsheet(
                content,
                filename,
                sheet_name=sheet_name,
                max_bytes=settings.import_max_file_size_bytes,
                header_scan_rows=settings.import_header_scan_rows,
            )
        except AppError as e:
            self._fail(batch, e.message)
            raise

        cleaning = self.cleaner.clean(parsed.headers, parsed.rows)
        if not cleaning.rows:
            error = EmptySheetError(filename, parsed.sheet_name or filename)
            self._fail(batch, error.message)
            raise error
        parsed.rows = cleaning.rows

        batch.sheet_name = parsed.sheet_name
        batch.header_row_offset = parsed.header_row_offset
        batch.row_count = parsed.row_count
        self._transition(batch, ImportBatchStatus.PARSED)
        self._transition(batch, ImportBatchStatus.MAPPING)

        schema = self.store.get_tenant_schema(tenant_id)
        samples = {h: parsed.sample_values(h) for h in parsed.headers}
        mapped = self.mapper.map_columns(tenant_id, parsed.headers, schema.custom_fields, samples)

        batch.column_signature = mapped.column_signature
        batch.format_change_detected = mapped.format_change.format_change_detected
        batch.requires_remapping = mapped.requires_remapping
        batch.mapping_profile_id = mapped.profile.id if mapped.profile else None

        raw_rows = [(row.row_number, row.values) for row in parsed.rows]
        context = self._row_context(tenant_id, mapped.mapping, schema)
        rows = self.processor.process_rows(context, raw_rows)
        proposals = self.analyzer.analyze(mapped.unmapped_columns, [v for _, v in raw_rows], rows)
        self._summarize(batch, rows)

        if not batch.requires_remapping:
            self._transition(batch, ImportBatchStatus.MAPPED)

        session = self.sessions.create(ImportSession(
            id=self.sessions.new_session_id(),
            tenant_id=tenant_id,
            batch=batch,
            headers=parsed.headers,
            raw_rows=raw_rows,
            mapping=mapped.mapping,
            suggestions=mapped.suggestions,
            rows=rows,
            proposals=proposals,
            sheet_names=parsed.sheet_names,
            format_change=mapped.format_change,
            previous_batch=previous,
            cleaning_report=cleaning.report,
        ))
        self.store.save_batch(batch)

        logger.info(
            "import_preview_completed",
            tenant_id=tenant_id,
            batch_id=batch.id,
            session_id=session.id,
            status=batch.status.value,
            rows=batch.row_count,
            errors=batch.counts.error,
            requires_remapping=batch.requires_remapping,
        )

        return self._preview_response(session)

    def confirm_mapping(self, tenant_id: str, request: ConfirmMappingRequest) -> ImportPreviewResponse:
        """
        Apply a human-confirmed mapping to a session.

        Saves it as the tenant's profile for the column signature (so the
        next upload with the same layout maps itself), then re-validates
        every staged row.

        Raises:
            ImportSessionNotFoundError / ImportSessionExpiredError /
            ImportSessionForbiddenError: Session cannot be used
            InvalidMappingError: Mapping names unknown columns or fields
        """
        session = self.sessions.open(request.session_id, tenant_id)
        schema = self.store.get_tenant_schema(tenant_id)

        self._apply_mapping(session, schema, request.mapping, request.profile_name)
        self.sessions.put(session)
        self.store.save_batch(session.batch)

        return self._preview_response(session)

    # ===================
    # EXECUTE
    # ===================

    def execute(self, tenant_id: str, request: ImportExecuteRequest) -> ImportExecuteResponse:
        """
        Commit a previewed batch.

        The session is consumed before anything else, so a concurrent or
        repeated execute of the same session gets ImportSessionNotFoundError.
        Request problems the user can fix (unconfirmed mapping, bad mapping,
        bad override) put the session back; a dry run always does, even when
        it fails.

        Raises:
            ImportSessionNotFoundError / ImportSessionExpiredError /
            ImportSessionForbiddenError: Session cannot be used
            RemappingRequiredError: New column layout and no confirmed mapping
            InvalidMappingError: confirmed_mapping is invalid
            InvalidOverrideError: Override points to a non-canonical value
            CommitTransactionError: Store transaction failed, nothing saved
        """
        session = self.sessions.consume(request.session_id, tenant_id)
        restore = request.dry_run

        try:
            return self._execute_session(tenant_id, session, request)
        except (RemappingRequiredError, InvalidMappingError, InvalidOverrideError):
            restore = True
            raise
        finally:
            # A dry run never uses up the session, even when it fails
            if restore:
                self.sessions.put(session)

    def _execute_session(
        self,
        tenant_id: str,
        session: ImportSession,
        request: ImportExecuteRequest
    ) -> ImportExecuteResponse:
        batch = session.batch
        schema = self.store.get_tenant_schema(tenant_id)

        if request.confirmed_mapping is not None:
            self._apply_mapping(session, schema, request.confirmed_mapping)
        elif batch.requires_remapping:
            if not request.accept_suggested_mapping:
                raise RemappingRequiredError(session.id, batch.column_signature or "")
            self._apply_mapping(session, schema, dict(session.mapping))

        vocabularies = build_vocabularies(schema.vocabulary_extensions)
        overrides = self._resolve_overrides(request.category_overrides, vocabularies)
        context = self._row_context(tenant_id, session.mapping, schema, overrides)

        if request.dry_run:
            rows = self.processor.process_rows(context, session.raw_rows, request.row_edits)
            result = self.engine.commit(
                tenant_id, batch.id, rows, set(request.excluded_rows), dry_run=True
            )
            return self._execute_response(batch, result, request)

        self._transition(batch, ImportBatchStatus.VALIDATING)
        rows = self.processor.process_rows(context, session.raw_rows, request.row_edits)
        self._summarize(batch, rows)
        self._transition(batch, ImportBatchStatus.VALIDATED)
        self._transition(batch, ImportBatchStatus.COMMITTING)
        self.store.save_batch(batch)

        try:
            result = self.engine.commit(tenant_id, batch.id, rows, set(request.excluded_rows))
        except CommitTransactionError as e:
            self._fail(batch, e.message)
            raise

        self._transition(batch, ImportBatchStatus.COMMITTED)
        batch.committed_at = datetime.now(timezone.utc)
        self.store.save_batch(batch)

        self.store.record_signature(tenant_id, batch.column_signature, session.headers)
        if batch.mapping_profile_id:
            self.store.touch_mapping_profile(tenant_id, batch.mapping_profile_id)

        logger.info(
            "import_executed",
            tenant_id=tenant_id,
            batch_id=batch.id,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
        )

        return self._execute_response(batch, result, request)

    def _execute_response(
        self,
        batch: ImportBatch,
        result: CommitResult,
        request: ImportExecuteRequest
    ) -> ImportExecuteResponse:
        geocoding_note = None
        if request.geocode_after_import and not request.dry_run:
            affected = len(result.created_ids) + len(result.updated_ids)
            geocoding_note = (
                f"Geocoding is not part of the import; {affected} customers "
                "need coordinates from the geocoding job"
            )

        return ImportExecuteResponse(
            batch_id=batch.id,
            status=batch.status,
            dry_run=result.dry_run,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
            created_ids=result.created_ids,
            updated_ids=result.updated_ids,
            rows=[
                RowOutcome(
                    row_number=o.row_number,
                    action=o.action,
                    customer_id=o.customer_id,
                    error=o.error,
                )
                for o in result.outcomes
            ],
            errors=[
                RowError(row_number=o.row_number, error=o.error)
                for o in result.outcomes
                if o.action == RowAction.ERROR and o.error
            ],
            geocoding_note=geocoding_note,
            started_at=result.started_at,
            completed_at=result.completed_at,
            duration_ms=result.duration_ms,
        )

    # ===================
    # CANCEL / PROPOSALS
    # ===================

    def cancel(self, tenant_id: str, session_id: str) -> CancelImportResponse:
        """Discard a session and mark its batch cancelled."""
        session = self.sessions.consume(session_id, tenant_id)
        batch = session.batch
        self._transition(batch, ImportBatchStatus.CANCELLED)
        self.store.save_batch(batch)

        logger.info("import_cancelled", tenant_id=tenant_id, batch_id=batch.id, session_id=session_id)

        return CancelImportResponse(session_id=session_id, batch_id=batch.id, status=batch.status)

    def confirm_proposals(
        self,
        tenant_id: str,
        request: ConfirmProposalsRequest
    ) -> ConfirmProposalsResponse:
        """
        Register accepted custom fields and category values.

        Raises:
            ValidationError: Field name is not a valid identifier, clashes
                with a standard field, or a value targets a field that has
                no vocabulary
        """
        for name in request.custom_fields:
            if not _FIELD_NAME.match(name):
                raise ValidationError(
                    f"'{name}' is not a valid field name (lowercase letters, digits, underscores)",
                    details={"field": name},
                )
            if name in TARGET_FIELDS:
                raise ValidationError(
                    f"'{name}' is already a standard field",
                    details={"field": name},
                )

        unknown = sorted(f for f in request.category_values if f not in VOCABULARIES)
        if unknown:
            raise ValidationError(
                f"Fields without a vocabulary: {', '.join(unknown)}",
                details={"fields": unknown, "valid": sorted(VOCABULARIES)},
            )

        schema = self.store.get_tenant_schema(tenant_id)
        if request.custom_fields:
            schema = self.store.add_custom_fields(tenant_id, request.custom_fields)
        for field_name, values in request.category_values.items():
            cleaned = [v.strip() for v in values if v and v.strip()]
            if cleaned:
                schema = self.store.add_vocabulary_values(tenant_id, field_name, cleaned)

        logger.info(
            "import_proposals_confirmed",
            tenant_id=tenant_id,
            custom_fields=len(request.custom_fields),
            category_fields=len(request.category_values),
        )

        return ConfirmProposalsResponse(
            custom_fields=schema.custom_fields,
            vocabulary_extensions=schema.vocabulary_extensions,
        )

    # ===================
    # HELPERS
    # ===================

    def _apply_mapping(
        self,
        session: ImportSession,
        schema: TenantSchema,
        mapping: dict[str, Optional[str]],
        profile_name: Optional[str] = None
    ) -> None:
        """Validate a mapping, save it as a profile and re-stage the rows."""
        batch = session.batch
        allowed = allowed_target_fields(schema.custom_fields)
        cleaned = self.mapper.validate_mapping(mapping, session.headers, allowed)

        profile = self.mapper.save_confirmed_profile(
            session.tenant_id,
            session.headers,
            batch.column_signature,
            cleaned,
            profile_name,
        )

        if batch.status == ImportBatchStatus.MAPPED:
            self._transition(batch, ImportBatchStatus.MAPPING)
        batch.requires_remapping = False
        batch.mapping_profile_id = profile.id
        self._transition(batch, ImportBatchStatus.MAPPED)

        samples = {s.source_column: s.sample_values for s in session.suggestions}
        session.mapping = cleaned
        session.suggestions = [
            ColumnSuggestion(
                source_column=header,
                target_field=cleaned.get(header),
                confidence=1.0 if header in cleaned else 0.0,
                source="manual" if header in cleaned else None,
                sample_values=samples.get(header, []),
            )
            for header in session.headers
        ]
        session.format_change = session.format_change.model_copy(update={"requires_remapping": False})

        context = self._row_context(session.tenant_id, cleaned, schema)
        session.rows = self.processor.process_rows(context, session.raw_rows)
        unmapped = [h for h in session.headers if h not in cleaned]
        session.proposals = self.analyzer.analyze(
            unmapped, [v for _, v in session.raw_rows], session.rows
        )
        self._summarize(batch, session.rows)

        logger.info(
            "import_mapping_confirmed",
            tenant_id=session.tenant_id,
            batch_id=batch.id,
            profile_id=profile.id,
            mapped=len(cleaned),
        )

    def _resolve_overrides(
        self,
        overrides: dict[str, str],
        vocabularies: dict[str, Vocabulary]
    ) -> dict[str, str]:
        """Check each override targets a canonical value; keyed by override_key(raw value)."""
        resolved = {}
        for raw_value, canonical in overrides.items():
            match = None
            for vocabulary in vocabularies.values():
                match = vocabulary.canonical_for(canonical)
                if match is not None:
                    break
            if match is None:
                valid = sorted({c for v in vocabularies.values() for c in v.canonical})
                raise InvalidOverrideError(raw_value, canonical, valid)
            resolved[override_key(raw_value)] = match
        return resolved

    def _row_context(
        self,
        tenant_id: str,
        mapping: dict[str, str],
        schema: TenantSchema,
        overrides: Optional[dict[str, str]] = None
    ) -> RowContext:
        return RowContext(
            tenant_id=tenant_id,
            mapping=mapping,
            allowed_fields=allowed_target_fields(schema.custom_fields),
            vocabularies=build_vocabularies(schema.vocabulary_extensions),
            overrides=overrides or {},
        )

    def _summarize(self, batch: ImportBatch, rows: list[StagingRow]) -> None:
        batch.counts = summarize_rows(rows)
        batch.quality_report = build_quality_report(rows)

    def _transition(self, batch: ImportBatch, new_status: ImportBatchStatus) -> None:
        if not is_valid_import_batch_transition(batch.status, new_status, batch.requires_remapping):
            raise InvalidStatusTransitionError(batch.status.value, new_status.value)
        batch.status = new_status
        batch.updated_at = datetime.now(timezone.utc)

    def _fail(self, batch: ImportBatch, message: str) -> None:
        batch.error_message = message
        self._transition(batch, ImportBatchStatus.FAILED)
        self.store.save_batch(batch)
        logger.warning("import_batch_failed", batch_id=batch.id, error=message)

    def _preview_response(self, session: ImportSession) -> ImportPreviewResponse:
        batch = session.batch
        previous = session.previous_batch
        return ImportPreviewResponse(
            session_id=session.id,
            batch_id=batch.id,
            status=batch.status,
            filename=batch.filename,
            sheet_name=batch.sheet_name,
            sheet_names=session.sheet_names,
            header_row_offset=batch.header_row_offset,
            column_signature=batch.column_signature,
            format_change=session.format_change,
            mapping_profile_id=batch.mapping_profile_id,
            columns=session.suggestions,
            counts=batch.counts,
            total_rows=batch.row_count,
            rows=session.rows[:settings.import_preview_row_limit],
            proposals=session.proposals,
            quality_report=batch.quality_report,
            cleaning_report=session.cleaning_report,
            previously_uploaded=PreviouslyUploaded(
                batch_id=previous.id,
                filename=previous.filename,
                uploaded_at=previous.created_at,
                status=previous.status,
            ) if previous else None,
            expires_at=session.expires_at,
        )


# Singleton instance
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create import service instance."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
