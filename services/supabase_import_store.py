"""
Supabase ImportStore adapter.

PostgREST has no multi-statement transactions, so transaction() is the
inherited no-op and supports_transactions is False: each row write stands
on its own.

Tables: kunder, import_batches, import_mapping_templates,
import_column_history, import_audit_log, organization_fields,
organization_categories.
"""

from typing import Any, Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError
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

CANDIDATE_LIMIT = 50
CUSTOMER_COLUMNS = "id, navn, adresse, postnummer, ekstern_id, updated_at"


class SupabaseImportStore(ImportStore):
    """ImportStore backed by Supabase tables."""

    supports_transactions = False

    def __init__(self, client=None):
        self.db = client or get_supabase_client()

    # ===================
    # MAPPING PROFILES
    # ===================

    def get_mapping_profile(self, tenant_id: str, signature: str) -> Optional[MappingProfile]:
        try:
            result = (
                self.db.table("import_mapping_templates")
                .select("*")
                .eq("organization_id", tenant_id)
                .eq("source_column_fingerprint", signature)
                .order("use_count", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_mapping_profile_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None
        return self._row_to_profile(result.data[0])

    def save_mapping_profile(self, profile: MappingProfile) -> MappingProfile:
        data = {
            "organization_id": profile.tenant_id,
            "name": profile.name,
            "source_column_fingerprint": profile.column_signature,
            "source_columns": profile.source_columns,
            "mapping_config": profile.mapping,
            "ai_suggested": profile.suggested,
            "human_confirmed": profile.human_confirmed,
            "use_count": profile.use_count,
            "updated_at": utc_now().isoformat(),
        }
        try:
            if profile.id:
                result = (
                    self.db.table("import_mapping_templates")
                    .update(data)
                    .eq("id", profile.id)
                    .eq("organization_id", profile.tenant_id)
                    .execute()
                )
            else:
                result = self.db.table("import_mapping_templates").insert(data).execute()
        except Exception as e:
            logger.error("save_mapping_profile_failed", tenant_id=profile.tenant_id, error=str(e))
            raise DatabaseError("upsert", str(e))

        saved = self._row_to_profile(result.data[0]) if result.data else profile
        logger.info("mapping_profile_saved", tenant_id=profile.tenant_id, profile_id=saved.id)
        return saved

    def touch_mapping_profile(self, tenant_id: str, profile_id: str) -> None:
        try:
            result = (
                self.db.table("import_mapping_templates")
                .select("use_count")
                .eq("id", profile_id)
                .eq("organization_id", tenant_id)
                .limit(1)
                .execute()
            )
            if not result.data:
                return
            self.db.table("import_mapping_templates").update({
                "use_count": (result.data[0].get("use_count") or 0) + 1,
                "last_used_at": utc_now().isoformat(),
            }).eq("id", profile_id).execute()
        except Exception as e:
            # Usage counters are informational
            logger.warning("touch_mapping_profile_failed", profile_id=profile_id, error=str(e))

    # ===================
    # SIGNATURE HISTORY
    # ===================

    def list_signature_history(self, tenant_id: str) -> list[ColumnSignatureHistory]:
        try:
            result = (
                self.db.table("import_column_history")
                .select("*")
                .eq("organization_id", tenant_id)
                .order("last_seen_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error("list_signature_history_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [self._row_to_history(row) for row in result.data or []]

    def record_signature(
        self,
        tenant_id: str,
        signature: str,
        columns: list[str]
    ) -> ColumnSignatureHistory:
        try:
            existing = (
                self.db.table("import_column_history")
                .select("*")
                .eq("organization_id", tenant_id)
                .eq("column_fingerprint", signature)
                .limit(1)
                .execute()
            )
            now = utc_now().isoformat()
            if existing.data:
                row = existing.data[0]
                count = (row.get("batch_count") or 0) + 1
                self.db.table("import_column_history").update({
                    "last_seen_at": now,
                    "batch_count": count,
                }).eq("id", row["id"]).execute()
                return self._row_to_history({**row, "last_seen_at": now, "batch_count": count})

            result = self.db.table("import_column_history").insert({
                "organization_id": tenant_id,
                "column_fingerprint": signature,
                "columns": columns,
                "first_seen_at": now,
                "last_seen_at": now,
                "batch_count": 1,
            }).execute()
        except Exception as e:
            logger.error("record_signature_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("upsert", str(e))

        return self._row_to_history(result.data[0])

    # ===================
    # CUSTOMERS
    # ===================

    def find_duplicate_candidates(
        self,
        tenant_id: str,
        candidate: dict[str, Any]
    ) -> list[CustomerRecord]:
        """
        Prefilter customers that could match.

        Union of: same external id, same postal code, and name starting with
        the candidate's first word. The detector does the real scoring.
        """
        found: dict[str, CustomerRecord] = {}
        filters: list[tuple[str, str, str]] = []

        if candidate.get("ekstern_id"):
            filters.append(("eq", "ekstern_id", str(candidate["ekstern_id"])))
        if candidate.get("postnummer"):
            filters.append(("eq", "postnummer", str(candidate["postnummer"])))
        name = (candidate.get("navn") or "").split()
        if name:
            filters.append(("ilike", "navn", f"{name[0]}%"))

        try:
            for operator, column, value in filters:
                query = (
                    self.db.table("kunder")
                    .select(CUSTOMER_COLUMNS)
                    .eq("organization_id", tenant_id)
                )
                query = query.eq(column, value) if operator == "eq" else query.ilike(column, value)
                result = query.limit(CANDIDATE_LIMIT).execute()
                for row in result.data or []:
                    found[str(row["id"])] = self._row_to_customer(tenant_id, row)
        except Exception as e:
            logger.error("find_duplicate_candidates_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("select", str(e))

        return list(found.values())

    def create_customer(self, tenant_id: str, data: dict[str, Any]) -> str:
        try:
            result = (
                self.db.table("kunder")
                .insert({**data, "organization_id": tenant_id})
                .execute()
            )
        except Exception as e:
            logger.warning("create_customer_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("insert", str(e))

        return str(result.data[0]["id"])

    def update_customer(self, tenant_id: str, customer_id: str, data: dict[str, Any]) -> None:
        """Update a customer; custom_data keys are merged into the stored ones."""
        try:
            if data.get("custom_data"):
                existing = (
                    self.db.table("kunder")
                    .select("custom_data")
                    .eq("id", customer_id)
                    .eq("organization_id", tenant_id)
                    .limit(1)
                    .execute()
                )
                stored = (existing.data[0].get("custom_data") if existing.data else None) or {}
                data = {**data, "custom_data": {**stored, **data["custom_data"]}}
            (
                self.db.table("kunder")
                .update({**data, "updated_at": utc_now().isoformat()})
                .eq("id", customer_id)
                .eq("organization_id", tenant_id)
                .execute()
            )
        except Exception as e:
            logger.warning("update_customer_failed", tenant_id=tenant_id, customer_id=customer_id, error=str(e))
            raise DatabaseError("update", str(e))

    # ===================
    # BATCHES / AUDIT
    # ===================

    def save_batch(self, batch: ImportBatch) -> ImportBatch:
        data = {
            "id": batch.id,
            "organization_id": batch.tenant_id,
            "file_name": batch.filename,
            "file_size": batch.size_bytes,
            "file_hash": batch.file_hash,
            "column_fingerprint": batch.column_signature,
            "row_count": batch.row_count,
            "status": batch.status.value,
            "sheet_name": batch.sheet_name,
            "header_row_offset": batch.header_row_offset,
            "valid_row_count": batch.counts.valid,
            "warning_row_count": batch.counts.warning,
            "error_row_count": batch.counts.error,
            "duplicate_row_count": batch.counts.duplicate,
            "quality_report": batch.quality_report.model_dump() if batch.quality_report else None,
            "format_change_detected": batch.format_change_detected,
            "requires_remapping": batch.requires_remapping,
            "mapping_template_id": batch.mapping_profile_id,
            "error_message": batch.error_message,
            "created_at": batch.created_at.isoformat(),
            "updated_at": utc_now().isoformat(),
            "committed_at": batch.committed_at.isoformat() if batch.committed_at else None,
        }
        try:
            self.db.table("import_batches").upsert(data).execute()
        except Exception as e:
            logger.error("save_batch_failed", batch_id=batch.id, error=str(e))
            raise DatabaseError("upsert", str(e))
        return batch

    def find_batch_by_hash(self, tenant_id: str, file_hash: str) -> Optional[ImportBatch]:
        try:
            result = (
                self.db.table("import_batches")
                .select("*")
                .eq("organization_id", tenant_id)
                .eq("file_hash", file_hash)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("find_batch_by_hash_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None
        row = result.data[0]
        return ImportBatch(
            id=str(row["id"]),
            tenant_id=str(row["organization_id"]),
            filename=row["file_name"],
            size_bytes=row.get("file_size") or 0,
            file_hash=row["file_hash"],
            column_signature=row.get("column_fingerprint"),
            row_count=row.get("row_count") or 0,
            status=row["status"],
            created_at=row["created_at"],
        )

    def append_audit_entries(self, entries: list[AuditEntry]) -> None:
        if not entries:
            return
        rows = [
            {
                "organization_id": e.tenant_id,
                "batch_id": e.batch_id,
                "action": f"customer_{e.action.value}",
                "affected_kunde_ids": [e.customer_id],
                "details": {"row_number": e.row_number},
                "created_at": e.created_at.isoformat(),
            }
            for e in entries
        ]
        try:
            self.db.table("import_audit_log").insert(rows).execute()
        except Exception as e:
            logger.error("append_audit_entries_failed", count=len(rows), error=str(e))
            raise DatabaseError("insert", str(e))

    # ===================
    # TENANT SCHEMA
    # ===================

    def get_tenant_schema(self, tenant_id: str) -> TenantSchema:
        try:
            fields = (
                self.db.table("organization_fields")
                .select("field_name")
                .eq("organization_id", tenant_id)
                .execute()
            )
            categories = (
                self.db.table("organization_categories")
                .select("field, name")
                .eq("organization_id", tenant_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_tenant_schema_failed", tenant_id=tenant_id, error=str(e))
            raise DatabaseError("select", str(e))

        extensions: dict[str, list[str]] = {}
        for row in categories.data or []:
            extensions.setdefault(row["field"], []).append(row["name"])

        return TenantSchema(
            custom_fields=[row["field_name"] for row in fields.data or []],
            vocabulary_extensions=extensions,
        )

    def add_custom_fields(self, tenant_id: str, fields: list[str]) -> TenantSchema:
        current = self.get_tenant_schema(tenant_id)
        new_fields = [f for f in fields if f not in current.custom_fields]
        if new_fields:
            try:
                self.db.table("organization_fields").insert([
                    {"organization_id": tenant_id, "field_name": f, "field_type": "text"}
                    for f in new_fields
                ]).execute()
            except Exception as e:
                logger.error("add_custom_fields_failed", tenant_id=tenant_id, error=str(e))
                raise DatabaseError("insert", str(e))
        return self.get_tenant_schema(tenant_id)

    def add_vocabulary_values(self, tenant_id: str, field: str, values: list[str]) -> TenantSchema:
        current = self.get_tenant_schema(tenant_id)
        known = current.vocabulary_extensions.get(field, [])
        new_values = [v for v in values if v not in known]
        if new_values:
            try:
                self.db.table("organization_categories").insert([
                    {"organization_id": tenant_id, "field": field, "name": v}
                    for v in new_values
                ]).execute()
            except Exception as e:
                logger.error("add_vocabulary_values_failed", tenant_id=tenant_id, error=str(e))
                raise DatabaseError("insert", str(e))
        return self.get_tenant_schema(tenant_id)

    # ===================
    # HELPERS
    # ===================

    def _row_to_profile(self, row: dict) -> MappingProfile:
        return MappingProfile(
            id=str(row["id"]),
            tenant_id=str(row["organization_id"]),
            name=row["name"],
            column_signature=row["source_column_fingerprint"],
            source_columns=row.get("source_columns") or [],
            mapping=row.get("mapping_config") or {},
            human_confirmed=bool(row.get("human_confirmed")),
            suggested=bool(row.get("ai_suggested")),
            use_count=row.get("use_count") or 0,
            last_used_at=row.get("last_used_at"),
        )

    def _row_to_history(self, row: dict) -> ColumnSignatureHistory:
        return ColumnSignatureHistory(
            id=str(row.get("id")) if row.get("id") is not None else None,
            tenant_id=str(row["organization_id"]),
            column_signature=row["column_fingerprint"],
            columns=row.get("columns") or [],
            first_seen_at=row.get("first_seen_at") or utc_now(),
            last_seen_at=row.get("last_seen_at") or utc_now(),
            occurrence_count=row.get("batch_count") or 1,
        )

    def _row_to_customer(self, tenant_id: str, row: dict) -> CustomerRecord:
        return CustomerRecord(
            id=str(row["id"]),
            tenant_id=tenant_id,
            navn=row.get("navn") or "",
            adresse=row.get("adresse"),
            postnummer=str(row["postnummer"]) if row.get("postnummer") else None,
            ekstern_id=row.get("ekstern_id"),
            updated_at=row.get("updated_at"),
        )
