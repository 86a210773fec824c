"""
Unit tests for the import session store.

Expiry uses an injected clock; no test sleeps.
"""

import pytest

from exceptions import (
    ImportSessionExpiredError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
)
from models.customer_import import ImportBatch, SchemaProposals
from services.import_session_store import ImportSession
from tests.factories import OTHER_TENANT_ID, TENANT_ID


def make_session(session_store, tenant_id: str = TENANT_ID) -> ImportSession:
    batch = ImportBatch(
        id="batch-1",
        tenant_id=tenant_id,
        filename="kunder.xlsx",
        size_bytes=100,
        file_hash="abc",
    )
    return ImportSession(
        id=session_store.new_session_id(),
        tenant_id=tenant_id,
        batch=batch,
        headers=["Navn"],
        raw_rows=[(2, {"Navn": "Ola Nordmann"})],
        mapping={"Navn": "navn"},
        suggestions=[],
        rows=[],
        proposals=SchemaProposals(),
    )


class TestCreateAndOpen:

    def test_create_stamps_expiry_from_clock(self, session_store, clock):
        session = session_store.create(make_session(session_store))

        assert session.created_at == clock.now
        assert (session.expires_at - session.created_at).total_seconds() == 3600

    def test_open_returns_session(self, session_store):
        session = session_store.create(make_session(session_store))

        assert session_store.open(session.id, TENANT_ID) is session

    def test_unknown_id_is_not_found(self, session_store):
        with pytest.raises(ImportSessionNotFoundError) as exc_info:
            session_store.open("missing", TENANT_ID)

        assert exc_info.value.status_code == 404

    def test_other_tenant_is_forbidden(self, session_store):
        session = session_store.create(make_session(session_store))

        with pytest.raises(ImportSessionForbiddenError) as exc_info:
            session_store.open(session.id, OTHER_TENANT_ID)

        assert exc_info.value.status_code == 403
        assert session_store.get(session.id) is not None

    def test_expired_session_is_gone_and_removed(self, session_store, clock):
        session = session_store.create(make_session(session_store))
        clock.advance(minutes=61)

        with pytest.raises(ImportSessionExpiredError) as exc_info:
            session_store.open(session.id, TENANT_ID)

        assert exc_info.value.status_code == 410
        assert session_store.get(session.id) is None

    def test_session_is_usable_until_ttl(self, session_store, clock):
        session = session_store.create(make_session(session_store))
        clock.advance(minutes=59)

        assert session_store.open(session.id, TENANT_ID) is session


class TestConsume:

    def test_consume_removes_session(self, session_store):
        session = session_store.create(make_session(session_store))

        consumed = session_store.consume(session.id, TENANT_ID)

        assert consumed is session
        assert session_store.get(session.id) is None

    def test_second_consume_is_not_found(self, session_store):
        """A session commits at most once."""
        session = session_store.create(make_session(session_store))
        session_store.consume(session.id, TENANT_ID)

        with pytest.raises(ImportSessionNotFoundError):
            session_store.consume(session.id, TENANT_ID)

    def test_delete_reports_only_first_removal(self, session_store):
        session = session_store.create(make_session(session_store))

        assert session_store.delete(session.id) is True
        assert session_store.delete(session.id) is False


class TestSweep:

    def test_sweep_removes_only_expired(self, session_store, clock):
        old = session_store.create(make_session(session_store))
        clock.advance(minutes=30)
        fresh = session_store.create(make_session(session_store))
        clock.advance(minutes=31)

        removed = session_store.sweep()

        assert removed == 1
        assert session_store.get(old.id) is None
        assert session_store.get(fresh.id) is not None
        assert session_store.count() == 1

    def test_sweep_with_nothing_expired(self, session_store):
        session_store.create(make_session(session_store))

        assert session_store.sweep() == 0
        assert session_store.count() == 1
