"""
Storage port for the customer import pipeline.

Business logic talks only to ImportStore. Two adapters implement it:
InMemoryImportStore (tests, single-node dev) and SupabaseImportStore.
The adapter is chosen once at startup from settings.storage_backend.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from models.customer_import import (
    AuditEntry,
    ColumnSignatureHistory,
    CustomerRecord,
    ImportBatch,
    MappingProfile,
    TenantSchema,
)


class ImportStore(ABC):
    """
    Everything the import pipeline reads from or writes to persistent storage.

    All methods are tenant-scoped; an adapter must never return another
    organization's rows.
    """

    # Whether transaction() gives real all-or-nothing semantics
    supports_transactions: bool = False

    # ===================
    # MAPPING PROFILES
    # ===================

    @abstractmethod
    def get_mapping_profile(self, tenant_id: str, signature: str) -> Optional[MappingProfile]:
        """Default profile for a column signature (most used first)."""

    @abstractmethod
    def save_mapping_profile(self, profile: MappingProfile) -> MappingProfile:
        """Insert or update a profile; returns it with an id."""

    @abstractmethod
    def touch_mapping_profile(self, tenant_id: str, profile_id: str) -> None:
        """Increment use_count and set last_used_at."""

    # ===================
    # SIGNATURE HISTORY
    # ===================

    @abstractmethod
    def list_signature_history(self, tenant_id: str) -> list[ColumnSignatureHistory]:
        """Every signature seen for the tenant, most recently seen first."""

    @abstractmethod
    def record_signature(
        self,
        tenant_id: str,
        signature: str,
        columns: list[str]
    ) -> ColumnSignatureHistory:
        """Create the history entry or bump last_seen_at / occurrence_count."""

    # ===================
    # CUSTOMERS
    # ===================

    @abstractmethod
    def find_duplicate_candidates(
        self,
        tenant_id: str,
        candidate: dict[str, Any]
    ) -> list[CustomerRecord]:
        """Existing customers that could match a candidate row."""

    @abstractmethod
    def create_customer(self, tenant_id: str, data: dict[str, Any]) -> str:
        """Create a customer; returns its id."""

    @abstractmethod
    def update_customer(self, tenant_id: str, customer_id: str, data: dict[str, Any]) -> None:
        """Update an existing customer of the tenant."""

    # ===================
    # BATCHES / AUDIT
    # ===================

    @abstractmethod
    def save_batch(self, batch: ImportBatch) -> ImportBatch:
        """Upsert a batch record. Batches are never deleted."""

    @abstractmethod
    def find_batch_by_hash(self, tenant_id: str, file_hash: str) -> Optional[ImportBatch]:
        """Most recent batch of the tenant with the same file contents."""

    @abstractmethod
    def append_audit_entries(self, entries: list[AuditEntry]) -> None:
        """Append audit records."""

    # ===================
    # TENANT SCHEMA
    # ===================

    @abstractmethod
    def get_tenant_schema(self, tenant_id: str) -> TenantSchema:
        """Custom fields and vocabulary extensions of the organization."""

    @abstractmethod
    def add_custom_fields(self, tenant_id: str, fields: list[str]) -> TenantSchema:
        """Register new organization custom fields."""

    @abstractmethod
    def add_vocabulary_values(self, tenant_id: str, field: str, values: list[str]) -> TenantSchema:
        """Register new canonical values for a vocabulary field."""

    # ===================
    # TRANSACTIONS
    # ===================

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Wrap a batch of writes.

        Adapters without multi-statement transactions inherit this no-op;
        supports_transactions tells the caller which one it got.
        """
        yield


# ===================
# ADAPTER SELECTION
# ===================

_import_store: Optional[ImportStore] = None


def get_import_store() -> ImportStore:
    """
    Get the ImportStore adapter configured by settings.storage_backend.

    Created once per process.
    """
    global _import_store
    if _import_store is None:
        from config.settings import settings

        if settings.storage_backend == "supabase":
            from services.supabase_import_store import SupabaseImportStore
            _import_store = SupabaseImportStore()
        else:
            from services.memory_import_store import InMemoryImportStore
            _import_store = InMemoryImportStore()
    return _import_store


def reset_import_store() -> None:
    """Drop the cached adapter (tests, config reload)."""
    global _import_store
    _import_store = None
