"""
In-memory ImportStore adapter.

Thread-safe dictionaries behind one re-entrant lock. transaction() takes a
snapshot and restores it if the wrapped block raises, so it reports
supports_transactions = True.

State lives for the life of the process only.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional
import copy
import threading
import uuid
import structlog

from exceptions import NotFoundError
from models.customer_import import (
    AuditEntry,
    ColumnSignatureHistory,
    CustomerRecord,
    ImportBatch,
    MappingProfile,
    TenantSchema,
    utc_now,
)
from services.import_store import ImportStore

logger = structlog.get_logger(__name__)


class InMemoryImportStore(ImportStore):
    """Dictionary-backed store used in development and tests."""

    supports_transactions = True

    def __init__(self):
        self._lock = threading.RLock()
        self._customers: dict[str, dict[str, dict[str, Any]]] = {}
        self._profiles: dict[str, MappingProfile] = {}
        self._history: dict[tuple[str, str], ColumnSignatureHistory] = {}
        self._batches: dict[str, ImportBatch] = {}
        self._audit: list[AuditEntry] = []
        self._schemas: dict[str, TenantSchema] = {}

    # ===================
    # MAPPING PROFILES
    # ===================

    def get_mapping_profile(self, tenant_id: str, signature: str) -> Optional[MappingProfile]:
        with self._lock:
            matches = [
                p for p in self._profiles.values()
                if p.tenant_id == tenant_id and p.column_signature == signature
            ]
            if not matches:
                return None
            best = max(matches, key=lambda p: (p.human_confirmed, p.use_count))
            return best.model_copy(deep=True)

    def save_mapping_profile(self, profile: MappingProfile) -> MappingProfile:
        with self._lock:
            saved = profile.model_copy(deep=True)
            if saved.id is None:
                saved.id = str(uuid.uuid4())
            saved.updated_at = utc_now()
            self._profiles[saved.id] = saved
            logger.info(
                "mapping_profile_saved",
                tenant_id=saved.tenant_id,
                profile_id=saved.id,
                signature=saved.column_signature,
            )
            return saved.model_copy(deep=True)

    def touch_mapping_profile(self, tenant_id: str, profile_id: str) -> None:
        with self._lock:
            profile = self._profiles.get(profile_id)
            if profile is None or profile.tenant_id != tenant_id:
                return
            profile.use_count += 1
            profile.last_used_at = utc_now()

    # ===================
    # SIGNATURE HISTORY
    # ===================

    def list_signature_history(self, tenant_id: str) -> list[ColumnSignatureHistory]:
        with self._lock:
            entries = [h for (tenant, _), h in self._history.items() if tenant == tenant_id]
            entries.sort(key=lambda h: h.last_seen_at, reverse=True)
            return [h.model_copy(deep=True) for h in entries]

    def record_signature(
        self,
        tenant_id: str,
        signature: str,
        columns: list[str]
    ) -> ColumnSignatureHistory:
        with self._lock:
            key = (tenant_id, signature)
            entry = self._history.get(key)
            if entry is None:
                entry = ColumnSignatureHistory(
                    id=str(uuid.uuid4()),
                    tenant_id=tenant_id,
                    column_signature=signature,
                    columns=list(columns),
                )
                self._history[key] = entry
            else:
                entry.last_seen_at = utc_now()
                entry.occurrence_count += 1
            return entry.model_copy(deep=True)

    # ===================
    # CUSTOMERS
    # ===================

    def find_duplicate_candidates(
        self,
        tenant_id: str,
        candidate: dict[str, Any]
    ) -> list[CustomerRecord]:
        # Small data sets: every customer of the tenant is a candidate
        with self._lock:
            return [
                self._to_record(tenant_id, row)
                for row in self._customers.get(tenant_id, {}).values()
            ]

    def create_customer(self, tenant_id: str, data: dict[str, Any]) -> str:
        with self._lock:
            customer_id = str(uuid.uuid4())
            now = utc_now()
            self._customers.setdefault(tenant_id, {})[customer_id] = {
                **copy.deepcopy(data),
                "id": customer_id,
                "created_at": now,
                "updated_at": now,
            }
            return customer_id

    def update_customer(self, tenant_id: str, customer_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            row = self._customers.get(tenant_id, {}).get(customer_id)
            if row is None:
                raise NotFoundError("Customer", customer_id)
            custom = {**row.get("custom_data", {}), **data.get("custom_data", {})}
            row.update(copy.deepcopy(data))
            if custom:
                row["custom_data"] = custom
            row["updated_at"] = utc_now()

    def seed_customer(self, tenant_id: str, **data: Any) -> str:
        """Insert a customer directly, keeping a given id / updated_at."""
        with self._lock:
            customer_id = data.pop("id", None) or str(uuid.uuid4())
            now = utc_now()
            self._customers.setdefault(tenant_id, {})[customer_id] = {
                "created_at": now,
                "updated_at": now,
                **data,
                "id": customer_id,
            }
            return customer_id

    def get_customer(self, tenant_id: str, customer_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._customers.get(tenant_id, {}).get(customer_id)
            return copy.deepcopy(row) if row else None

    def list_customers(self, tenant_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._customers.get(tenant_id, {}).values()]

    # ===================
    # BATCHES / AUDIT
    # ===================

    def save_batch(self, batch: ImportBatch) -> ImportBatch:
        with self._lock:
            saved = batch.model_copy(deep=True)
            saved.updated_at = utc_now()
            self._batches[saved.id] = saved
            return saved.model_copy(deep=True)

    def get_batch(self, batch_id: str) -> Optional[ImportBatch]:
        with self._lock:
            batch = self._batches.get(batch_id)
            return batch.model_copy(deep=True) if batch else None

    def find_batch_by_hash(self, tenant_id: str, file_hash: str) -> Optional[ImportBatch]:
        with self._lock:
            matches = [
                b for b in self._batches.values()
                if b.tenant_id == tenant_id and b.file_hash == file_hash
            ]
            if not matches:
                return None
            return max(matches, key=lambda b: b.created_at).model_copy(deep=True)

    def append_audit_entries(self, entries: list[AuditEntry]) -> None:
        with self._lock:
            self._audit.extend(e.model_copy(deep=True) for e in entries)

    def list_audit_entries(self, tenant_id: str) -> list[AuditEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._audit if e.tenant_id == tenant_id]

    # ===================
    # TENANT SCHEMA
    # ===================

    def get_tenant_schema(self, tenant_id: str) -> TenantSchema:
        with self._lock:
            return self._schemas.get(tenant_id, TenantSchema()).model_copy(deep=True)

    def add_custom_fields(self, tenant_id: str, fields: list[str]) -> TenantSchema:
        with self._lock:
            schema = self._schemas.setdefault(tenant_id, TenantSchema())
            for field in fields:
                if field not in schema.custom_fields:
                    schema.custom_fields.append(field)
            return schema.model_copy(deep=True)

    def add_vocabulary_values(self, tenant_id: str, field: str, values: list[str]) -> TenantSchema:
        with self._lock:
            schema = self._schemas.setdefault(tenant_id, TenantSchema())
            existing = schema.vocabulary_extensions.setdefault(field, [])
            for value in values:
                if value not in existing:
                    existing.append(value)
            return schema.model_copy(deep=True)

    # ===================
    # TRANSACTIONS
    # ===================

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Snapshot state; restore it if the block raises."""
        with self._lock:
            snapshot = (
                copy.deepcopy(self._customers),
                copy.deepcopy(self._audit),
                copy.deepcopy(self._history),
                copy.deepcopy(self._profiles),
            )
            try:
                yield
            except Exception:
                self._customers, self._audit, self._history, self._profiles = snapshot
                logger.warning("memory_transaction_rolled_back")
                raise

    def _to_record(self, tenant_id: str, row: dict[str, Any]) -> CustomerRecord:
        return CustomerRecord(
            id=row["id"],
            tenant_id=tenant_id,
            navn=row.get("navn") or "",
            adresse=row.get("adresse"),
            postnummer=row.get("postnummer"),
            ekstern_id=row.get("ekstern_id"),
            updated_at=row.get("updated_at"),
        )
