"""
Commit engine for customer imports.

Writes one create or update per staged row. Policy:

- Duplicate detection is re-run per row against current stored state
  immediately before the write; the preview-time match is not trusted.
- A failing row is recorded as an error and the next row continues.
- When the store supports transactions the whole batch runs inside one,
  but row errors are caught inside it, so one bad row never rolls back
  the others. Only a failure of the transaction itself (or of the audit
  write inside it) rolls back, reported as "nothing was saved".
- Without transactions each row write stands alone.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import structlog

from config.import_fields import TARGET_FIELDS
from exceptions import AppError, CommitTransactionError
from models.customer_import import (
    AuditEntry,
    RowAction,
    StagingRow,
    StagingRowStatus,
)
from services.duplicate_detector import DuplicateDetector
from services.import_store import ImportStore

logger = structlog.get_logger(__name__)


@dataclass
class CommitRowOutcome:
    """Terminal action for one row."""
    row_number: int
    action: RowAction
    customer_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CommitResult:
    """Outcome of committing one batch."""
    batch_id: str
    started_at: datetime
    completed_at: datetime
    outcomes: list[CommitRowOutcome] = field(default_factory=list)
    dry_run: bool = False

    def _count(self, action: RowAction) -> int:
        return sum(1 for o in self.outcomes if o.action == action)

    @property
    def created(self) -> int:
        return self._count(RowAction.CREATED)

    @property
    def updated(self) -> int:
        return self._count(RowAction.UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(RowAction.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(RowAction.ERROR)

    @property
    def created_ids(self) -> list[str]:
        return [o.customer_id for o in self.outcomes if o.action == RowAction.CREATED and o.customer_id]

    @property
    def updated_ids(self) -> list[str]:
        return [o.customer_id for o in self.outcomes if o.action == RowAction.UPDATED and o.customer_id]

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


def build_customer_data(values: dict[str, Any]) -> dict[str, Any]:
    """
    Customer columns for a write.

    Standard fields become columns, anything else (organization custom
    fields) goes under custom_data. Empty values are left out so an update
    never blanks an existing field.
    """
    data: dict[str, Any] = {}
    custom: dict[str, Any] = {}
    for name, value in values.items():
        if value is None or value == "":
            continue
        if name in TARGET_FIELDS:
            data[name] = value
        else:
            custom[name] = value
    if custom:
        data["custom_data"] = custom
    return data


class CommitEngine:
    """Applies staged rows to the customer store."""

    def __init__(self, store: ImportStore, detector: Optional[DuplicateDetector] = None):
        self.store = store
        self.detector = detector or DuplicateDetector()

    def commit(
        self,
        tenant_id: str,
        batch_id: str,
        rows: list[StagingRow],
        excluded_rows: Optional[set[int]] = None,
        dry_run: bool = False
    ) -> CommitResult:
        """
        Commit a batch.

        Args:
            tenant_id: Organization id
            batch_id: Batch being committed (for audit)
            rows: Staging rows; error rows and excluded rows are skipped
            excluded_rows: Row numbers the reviewer chose to skip
            dry_run: Decide create vs update without writing

        Returns:
            CommitResult with exactly one outcome per row

        Raises:
            CommitTransactionError: The store's transaction failed and was
                rolled back; nothing was saved
        """
        excluded_rows = excluded_rows or set()
        started_at = datetime.now(timezone.utc)

        logger.info(
            "import_commit_started",
            tenant_id=tenant_id,
            batch_id=batch_id,
            rows=len(rows),
            dry_run=dry_run,
            transactional=self.store.supports_transactions,
        )

        if dry_run:
            outcomes = self._write_rows(tenant_id, rows, excluded_rows, dry_run=True)
        elif self.store.supports_transactions:
            try:
                with self.store.transaction():
                    outcomes = self._write_rows(tenant_id, rows, excluded_rows)
                    self.store.append_audit_entries(self._audit_entries(tenant_id, batch_id, outcomes))
            except Exception as e:
                logger.error(
                    "import_commit_transaction_failed",
                    tenant_id=tenant_id,
                    batch_id=batch_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise CommitTransactionError(batch_id, str(e)) from e
        else:
            outcomes = self._write_rows(tenant_id, rows, excluded_rows)
            try:
                self.store.append_audit_entries(self._audit_entries(tenant_id, batch_id, outcomes))
            except Exception as e:
                # Customer writes are already durable; audit loss is logged, not fatal
                logger.error("import_audit_failed", batch_id=batch_id, error=str(e))

        result = CommitResult(
            batch_id=batch_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            outcomes=outcomes,
            dry_run=dry_run,
        )

        if not dry_run:
            self._stamp_rows(rows, outcomes)

        logger.info(
            "import_commit_completed",
            tenant_id=tenant_id,
            batch_id=batch_id,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
            duration_ms=result.duration_ms,
        )

        return result

    def _write_rows(
        self,
        tenant_id: str,
        rows: list[StagingRow],
        excluded_rows: set[int],
        dry_run: bool = False
    ) -> list[CommitRowOutcome]:
        outcomes = []
        for row in rows:
            if row.status == StagingRowStatus.ERROR:
                outcomes.append(CommitRowOutcome(
                    row_number=row.row_number,
                    action=RowAction.SKIPPED,
                    error="row has validation errors",
                ))
                continue
            if row.row_number in excluded_rows:
                outcomes.append(CommitRowOutcome(row_number=row.row_number, action=RowAction.SKIPPED))
                continue

            try:
                outcomes.append(self._write_row(tenant_id, row, dry_run))
            except Exception as e:
                message = e.message if isinstance(e, AppError) else str(e)
                logger.warning(
                    "import_row_failed",
                    tenant_id=tenant_id,
                    row_number=row.row_number,
                    error=message,
                    error_type=type(e).__name__,
                )
                outcomes.append(CommitRowOutcome(
                    row_number=row.row_number,
                    action=RowAction.ERROR,
                    error=f"Row {row.row_number} ({row.mapped_values.get('navn')}): {message}",
                ))
        return outcomes

    def _write_row(self, tenant_id: str, row: StagingRow, dry_run: bool) -> CommitRowOutcome:
        values = row.mapped_values
        candidates = self.store.find_duplicate_candidates(tenant_id, values)
        match = self.detector.find_match(values, candidates)
        data = build_customer_data(values)

        if match is not None:
            if not dry_run:
                self.store.update_customer(tenant_id, match.customer_id, data)
            return CommitRowOutcome(
                row_number=row.row_number,
                action=RowAction.UPDATED,
                customer_id=match.customer_id,
            )

        customer_id = None if dry_run else self.store.create_customer(tenant_id, data)
        return CommitRowOutcome(
            row_number=row.row_number,
            action=RowAction.CREATED,
            customer_id=customer_id,
        )

    def _stamp_rows(self, rows: list[StagingRow], outcomes: list[CommitRowOutcome]) -> None:
        """Copy each committed outcome onto its staging row."""
        by_number = {o.row_number: o for o in outcomes}
        for row in rows:
            outcome = by_number.get(row.row_number)
            if outcome is not None:
                row.action = outcome.action
                row.customer_id = outcome.customer_id

    def _audit_entries(
        self,
        tenant_id: str,
        batch_id: str,
        outcomes: list[CommitRowOutcome]
    ) -> list[AuditEntry]:
        return [
            AuditEntry(
                tenant_id=tenant_id,
                batch_id=batch_id,
                action=o.action,
                customer_id=o.customer_id,
                row_number=o.row_number,
            )
            for o in outcomes
            if o.customer_id and o.action in (RowAction.CREATED, RowAction.UPDATED)
        ]
