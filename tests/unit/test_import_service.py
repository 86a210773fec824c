"""
Unit tests for ImportService.

Preview → mapping → execute against the in-memory stores.
"""

import hashlib
import pytest

from exceptions import (
    CommitTransactionError,
    DatabaseError,
    EmptySheetError,
    ImportSessionExpiredError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
    InvalidMappingError,
    InvalidOverrideError,
    RemappingRequiredError,
    UnsupportedFileTypeError,
    ValidationError,
)
from models.customer_import import ImportBatchStatus, RowAction, StagingRowStatus
from models.import_api import (
    ConfirmMappingRequest,
    ConfirmProposalsRequest,
    ImportExecuteRequest,
)
from services.import_service import ImportService
from services.memory_import_store import InMemoryImportStore
from tests.factories import OTHER_TENANT_ID, TENANT_ID, make_excel


class FailingAuditStore(InMemoryImportStore):

    def append_audit_entries(self, entries):
        raise RuntimeError("audit table unavailable")


class FlakyLookupStore(InMemoryImportStore):

    fail_lookups = False

    def find_duplicate_candidates(self, tenant_id, candidate):
        if self.fail_lookups:
            raise DatabaseError("select", "connection reset")
        return super().find_duplicate_candidates(tenant_id, candidate)


def execute(service, session_id: str, tenant_id: str = TENANT_ID, **kwargs):
    return service.execute(tenant_id, ImportExecuteRequest(session_id=session_id, **kwargs))


# ===================
# PREVIEW
# ===================

class TestPreview:
    """Tests for the first upload of a file."""

    def test_scenario_counts(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        assert preview.total_rows == 3
        assert preview.counts.total == 3
        assert preview.counts.valid == 2
        assert preview.counts.error == 1
        assert [r.status for r in preview.rows] == [
            StagingRowStatus.VALID,
            StagingRowStatus.ERROR,
            StagingRowStatus.VALID,
        ]

    def test_first_upload_waits_for_mapping(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        assert preview.status == ImportBatchStatus.MAPPING
        assert preview.format_change.requires_remapping is True
        assert preview.mapping_profile_id is None
        assert preview.previously_uploaded is None

    def test_columns_carry_suggestions(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        assert {c.source_column: c.target_field for c in preview.columns} == {
            "Navn": "navn", "Adresse": "adresse", "Kategori": "kategori"
        }

    def test_batch_is_stored(self, import_service, memory_store, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        batch = memory_store.get_batch(preview.batch_id)

        assert batch.status == ImportBatchStatus.MAPPING
        assert batch.file_hash == hashlib.sha256(scenario_file).hexdigest()
        assert batch.counts.error == 1

    def test_preview_writes_no_customers(self, import_service, memory_store, scenario_file):
        import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        assert memory_store.list_customers(TENANT_ID) == []

    def test_unreadable_file_fails_the_batch(self, import_service, memory_store):
        content = b"%PDF-1.4"

        with pytest.raises(UnsupportedFileTypeError):
            import_service.preview(TENANT_ID, "kunder.pdf", content)

        batch = memory_store.find_batch_by_hash(TENANT_ID, hashlib.sha256(content).hexdigest())
        assert batch.status == ImportBatchStatus.FAILED
        assert batch.error_message

    def test_unmapped_column_is_proposed(self, import_service):
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", 40], ["Kari Nordmann", "Storgata 3", 12]],
            columns=["Navn", "Adresse", "Antall dyr"],
        )

        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)
        proposal = preview.proposals.custom_fields[0]

        assert proposal.field_name == "antall_dyr"
        assert proposal.field_type == "integer"
        assert proposal.occurrences == 2

    def test_unknown_category_is_proposed(self, import_service):
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", "Ventilasjon"], ["Kari Nordmann", "Storgata 3", "ventilasjon"]],
            columns=["Navn", "Adresse", "Kategori"],
        )

        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)
        proposal = preview.proposals.category_values[0]

        assert proposal.field == "kategori"
        assert proposal.value == "Ventilasjon"
        assert proposal.occurrences == 2

    def test_totals_row_and_placeholders_are_cleaned(self, import_service):
        content = make_excel(
            rows=[
                ["Ola Nordmann", "Storgata 1", "-"],
                ["Kari Nordmann", "Storgata 3", "N/A"],
                ["Sum", "2 kunder", None],
            ],
            columns=["Navn", "Adresse", "Telefon"],
        )

        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)
        codes = {issue.code for row in preview.rows for issue in row.issues}

        assert preview.total_rows == 2
        assert "INVALID_PHONE" not in codes
        assert [r.row_number for r in preview.cleaning_report.removed_rows] == [4]
        assert preview.cleaning_report.removed_rows[0].rule_id == "remove_summary_rows"
        assert preview.cleaning_report.total_cells_cleaned == 2

    def test_sheet_with_only_totals_is_rejected(self, import_service):
        content = make_excel(rows=[["Sum", None, None]], columns=["Navn", "Adresse", "Telefon"])

        with pytest.raises(EmptySheetError):
            import_service.preview(TENANT_ID, "kunder.xlsx", content)


# ===================
# EXECUTE
# ===================

class TestExecute:

    def test_execute_requires_confirmed_mapping(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(RemappingRequiredError) as exc_info:
            execute(import_service, preview.session_id)

        assert exc_info.value.status_code == 409

    def test_accepting_suggestions_commits(self, import_service, memory_store, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        with pytest.raises(RemappingRequiredError):
            execute(import_service, preview.session_id)

        result = execute(import_service, preview.session_id, accept_suggested_mapping=True)

        assert result.status == ImportBatchStatus.COMMITTED
        assert result.created == 2
        assert result.skipped == 1
        assert result.failed == 0
        assert [r.action for r in result.rows] == [RowAction.CREATED, RowAction.SKIPPED, RowAction.CREATED]

        customers = memory_store.list_customers(TENANT_ID)
        assert sorted(c["navn"] for c in customers) == ["Kari Nordmann", "Ola Nordmann"]
        assert {c["kategori"] for c in customers} == {"El-Kontroll"}
        assert memory_store.get_batch(preview.batch_id).status == ImportBatchStatus.COMMITTED

    def test_session_commits_only_once(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        execute(import_service, preview.session_id, accept_suggested_mapping=True)

        with pytest.raises(ImportSessionNotFoundError):
            execute(import_service, preview.session_id, accept_suggested_mapping=True)

    def test_second_upload_maps_itself(self, import_service, memory_store, scenario_file):
        first = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        execute(import_service, first.session_id, accept_suggested_mapping=True)

        second = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        assert second.status == ImportBatchStatus.MAPPED
        assert second.format_change.requires_remapping is False
        assert second.mapping_profile_id is not None
        assert second.previously_uploaded.batch_id == first.batch_id
        assert second.previously_uploaded.status == ImportBatchStatus.COMMITTED
        assert second.counts.duplicate == 2

        result = execute(import_service, second.session_id)

        assert result.updated == 2
        assert result.created == 0
        assert len(memory_store.list_customers(TENANT_ID)) == 2

    def test_row_edits_fix_error_row(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        result = execute(
            import_service, preview.session_id,
            accept_suggested_mapping=True,
            row_edits={3: {"navn": "Per Hansen"}},
        )

        assert result.created == 3
        assert result.skipped == 0

    def test_excluded_rows_are_skipped(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        result = execute(
            import_service, preview.session_id, accept_suggested_mapping=True, excluded_rows=[4]
        )

        assert result.created == 1
        assert result.skipped == 2

    def test_category_override_is_applied(self, import_service, memory_store):
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", "Ventilasjon"]],
            columns=["Navn", "Adresse", "Kategori"],
        )
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)

        result = execute(
            import_service, preview.session_id,
            accept_suggested_mapping=True,
            category_overrides={"Ventilasjon": "brannvarsling"},
        )

        customer = memory_store.get_customer(TENANT_ID, result.created_ids[0])
        assert customer["kategori"] == "Brannvarsling"

    def test_override_matches_value_with_extra_spaces(self, import_service, memory_store):
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", "Ventilasjon  anlegg"]],
            columns=["Navn", "Adresse", "Kategori"],
        )
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)

        result = execute(
            import_service, preview.session_id,
            accept_suggested_mapping=True,
            category_overrides={"Ventilasjon  anlegg ": "Brannvarsling"},
        )

        customer = memory_store.get_customer(TENANT_ID, result.created_ids[0])
        assert customer["kategori"] == "Brannvarsling"

    def test_invalid_override_keeps_session(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(InvalidOverrideError):
            execute(
                import_service, preview.session_id,
                accept_suggested_mapping=True,
                category_overrides={"Ventilasjon": "Finnes ikke"},
            )

        result = execute(import_service, preview.session_id, accept_suggested_mapping=True)
        assert result.created == 2

    def test_invalid_confirmed_mapping_keeps_session(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(InvalidMappingError):
            execute(import_service, preview.session_id, confirmed_mapping={"Navn": "passord"})

        result = execute(
            import_service, preview.session_id,
            confirmed_mapping={"Navn": "navn", "Adresse": "adresse", "Kategori": "kategori"},
        )
        assert result.status == ImportBatchStatus.COMMITTED

    def test_geocoding_note(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        result = execute(
            import_service, preview.session_id, accept_suggested_mapping=True, geocode_after_import=True
        )

        assert "2 customers" in result.geocoding_note

    def test_dry_run_writes_nothing_and_keeps_session(self, import_service, memory_store, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        dry = execute(import_service, preview.session_id, accept_suggested_mapping=True, dry_run=True)

        assert dry.dry_run is True
        assert dry.created == 2
        assert dry.created_ids == []
        assert memory_store.list_customers(TENANT_ID) == []

        result = execute(import_service, preview.session_id)
        assert result.created == 2

    def test_failed_dry_run_keeps_session(self, session_store, scenario_file):
        store = FlakyLookupStore()
        service = ImportService(store=store, session_store=session_store)
        preview = service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        store.fail_lookups = True
        with pytest.raises(DatabaseError):
            execute(service, preview.session_id, accept_suggested_mapping=True, dry_run=True)

        store.fail_lookups = False
        result = execute(service, preview.session_id, accept_suggested_mapping=True)
        assert result.created == 2

    def test_failed_execute_consumes_session(self, session_store, scenario_file):
        store = FlakyLookupStore()
        service = ImportService(store=store, session_store=session_store)
        preview = service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        store.fail_lookups = True
        with pytest.raises(DatabaseError):
            execute(service, preview.session_id, accept_suggested_mapping=True)

        with pytest.raises(ImportSessionNotFoundError):
            execute(service, preview.session_id, accept_suggested_mapping=True)

    def test_transaction_failure_fails_batch(self, session_store, scenario_file):
        store = FailingAuditStore()
        service = ImportService(store=store, session_store=session_store)
        preview = service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(CommitTransactionError):
            execute(service, preview.session_id, accept_suggested_mapping=True)

        assert store.list_customers(TENANT_ID) == []
        assert store.get_batch(preview.batch_id).status == ImportBatchStatus.FAILED


# ===================
# SESSIONS
# ===================

class TestSessionAccess:

    def test_expired_session(self, import_service, clock, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        clock.advance(minutes=61)

        with pytest.raises(ImportSessionExpiredError):
            execute(import_service, preview.session_id, accept_suggested_mapping=True)

    def test_other_tenant_is_forbidden(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(ImportSessionForbiddenError):
            execute(import_service, preview.session_id, tenant_id=OTHER_TENANT_ID)

        result = execute(import_service, preview.session_id, accept_suggested_mapping=True)
        assert result.created == 2

    def test_cancel(self, import_service, memory_store, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        response = import_service.cancel(TENANT_ID, preview.session_id)

        assert response.status == ImportBatchStatus.CANCELLED
        assert memory_store.get_batch(preview.batch_id).status == ImportBatchStatus.CANCELLED
        with pytest.raises(ImportSessionNotFoundError):
            execute(import_service, preview.session_id, accept_suggested_mapping=True)


# ===================
# MAPPING
# ===================

class TestConfirmMapping:

    def test_confirmed_mapping_restages_rows(self, import_service, memory_store, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        updated = import_service.confirm_mapping(TENANT_ID, ConfirmMappingRequest(
            session_id=preview.session_id,
            mapping={"Navn": "navn", "Adresse": "adresse", "Kategori": None},
            profile_name="Hovedliste",
        ))

        assert updated.status == ImportBatchStatus.MAPPED
        assert updated.session_id == preview.session_id
        assert updated.mapping_profile_id is not None
        assert {c.source_column: c.target_field for c in updated.columns}["Kategori"] is None
        assert all("kategori" not in r.mapped_values for r in updated.rows)

        profile = memory_store.get_mapping_profile(TENANT_ID, preview.column_signature)
        assert profile.name == "Hovedliste"
        assert profile.human_confirmed is True

    def test_confirmed_mapping_allows_plain_execute(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)
        import_service.confirm_mapping(TENANT_ID, ConfirmMappingRequest(
            session_id=preview.session_id,
            mapping={"Navn": "navn", "Adresse": "adresse", "Kategori": "kategori"},
        ))

        result = execute(import_service, preview.session_id)

        assert result.created == 2

    def test_invalid_mapping_is_rejected(self, import_service, scenario_file):
        preview = import_service.preview(TENANT_ID, "kunder.xlsx", scenario_file)

        with pytest.raises(InvalidMappingError):
            import_service.confirm_mapping(TENANT_ID, ConfirmMappingRequest(
                session_id=preview.session_id, mapping={"Navn": "passord"}
            ))


# ===================
# PROPOSALS
# ===================

class TestConfirmProposals:

    def test_custom_field_is_used_by_next_import(self, import_service, memory_store):
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", 40]],
            columns=["Navn", "Adresse", "Antall dyr"],
        )
        import_service.confirm_proposals(TENANT_ID, ConfirmProposalsRequest(custom_fields=["antall_dyr"]))

        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)
        result = execute(import_service, preview.session_id, accept_suggested_mapping=True)

        customer = memory_store.get_customer(TENANT_ID, result.created_ids[0])
        assert customer["custom_data"] == {"antall_dyr": "40"}

    def test_category_value_becomes_canonical(self, import_service):
        import_service.confirm_proposals(
            TENANT_ID, ConfirmProposalsRequest(category_values={"kategori": ["Ventilasjon"]})
        )
        content = make_excel(
            rows=[["Ola Nordmann", "Storgata 1", "ventilasjon"]],
            columns=["Navn", "Adresse", "Kategori"],
        )

        preview = import_service.preview(TENANT_ID, "kunder.xlsx", content)

        assert preview.rows[0].mapped_values["kategori"] == "Ventilasjon"
        assert preview.proposals.category_values == []

    def test_extensions_are_tenant_scoped(self, import_service, memory_store):
        import_service.confirm_proposals(TENANT_ID, ConfirmProposalsRequest(custom_fields=["antall_dyr"]))

        assert memory_store.get_tenant_schema(OTHER_TENANT_ID).custom_fields == []

    @pytest.mark.parametrize("name", ["Antall dyr", "1felt", "navn"])
    def test_bad_field_names_are_rejected(self, import_service, name):
        with pytest.raises(ValidationError):
            import_service.confirm_proposals(TENANT_ID, ConfirmProposalsRequest(custom_fields=[name]))

    def test_values_for_field_without_vocabulary_are_rejected(self, import_service):
        with pytest.raises(ValidationError):
            import_service.confirm_proposals(
                TENANT_ID, ConfirmProposalsRequest(category_values={"navn": ["X"]})
            )
