"""
Shared test fixtures.

Import pipeline tests run against InMemoryImportStore and an
InMemoryImportSessionStore with a controllable clock.
"""

import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from unittest.mock import patch
from datetime import datetime
from typing import Generator

from tests.factories import FrozenClock, SCENARIO_COLUMNS, SCENARIO_ROWS, make_excel


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, data: list = None, count: int = None, client=None, table_name: str = None):
        self._data = data or []
        self._count = count
        self._is_single = False
        self._client = client
        self._table_name = table_name

    def _record(self, operation: str, payload) -> None:
        if self._client is not None:
            self._client.calls.append((self._table_name, operation, payload))

    def select(self, *args, **kwargs):
        return self

    def insert(self, data):
        self._record("insert", data)
        # Simulate insert - add id and timestamps
        if isinstance(data, dict):
            data = [data]
        for item in data:
            item.setdefault("id", "test-uuid-123")
            item.setdefault("created_at", datetime.utcnow().isoformat() + "Z")
            item.setdefault("updated_at", datetime.utcnow().isoformat() + "Z")
        self._data = data
        return self

    def upsert(self, data):
        self._record("upsert", data)
        self._data = [data] if isinstance(data, dict) else data
        return self

    def update(self, data):
        self._record("update", data)
        # Simulate update - merge with existing data
        updated_data = []
        for item in self._data:
            merged = {**item, **data}
            merged["updated_at"] = datetime.utcnow().isoformat() + "Z"
            updated_data.append(merged)
        self._data = updated_data if updated_data else [data]
        return self

    def delete(self):
        return self

    def eq(self, column, value):
        return self

    def neq(self, column, value):
        return self

    def ilike(self, column, pattern):
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, **kwargs):
        return self

    def range(self, start, end):
        return self

    def limit(self, count):
        return self

    def execute(self) -> MockSupabaseResponse:
        if self._is_single:
            # Return first item or empty for single()
            data = self._data[0] if self._data else None
            return MockSupabaseResponse(
                data=data,
                count=1 if data else 0
            )
        return MockSupabaseResponse(
            data=self._data,
            count=self._count if self._count is not None else len(self._data)
        )


class MockSupabaseTable:
    """Mock Supabase table with configurable responses."""

    def __init__(self, data: list = None, count: int = None, client=None, name: str = None):
        self._data = data or []
        self._count = count
        self._client = client
        self._name = name

    def _query(self) -> MockSupabaseQuery:
        return MockSupabaseQuery(self._data.copy(), self._count, self._client, self._name)

    def select(self, *args, **kwargs):
        return self._query()

    def insert(self, data):
        return self._query().insert(data)

    def upsert(self, data):
        return self._query().upsert(data)

    def update(self, data):
        # For update, pass the existing data so it can be merged
        return self._query().update(data)

    def delete(self):
        return self._query()


class MockSupabaseClient:
    """Mock Supabase client. Writes are recorded in calls as (table, operation, payload)."""

    def __init__(self):
        self._tables = {}
        self.calls = []

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure mock data for a table."""
        self._tables[table_name] = {"data": data, "count": count}

    def table(self, name: str) -> MockSupabaseTable:
        """Get mock table."""
        config = self._tables.get(name, {"data": [], "count": None})
        return MockSupabaseTable(config["data"], config["count"], self, name)

    def writes(self, table_name: str, operation: str) -> list:
        return [p for t, op, p in self.calls if t == table_name and op == operation]


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("kunder", [
                {"id": "1", "navn": "Bakeri AS", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """Patch the database client with mock."""
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.supabase_import_store.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


@pytest.fixture
def memory_store():
    """Fresh in-memory ImportStore."""
    from services.memory_import_store import InMemoryImportStore
    return InMemoryImportStore()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def session_store(clock):
    """Session store with a 60 minute TTL driven by the frozen clock."""
    from services.import_session_store import InMemoryImportSessionStore
    return InMemoryImportSessionStore(ttl_minutes=60, clock=clock)


@pytest.fixture
def import_service(memory_store, session_store):
    from services.import_service import ImportService
    return ImportService(store=memory_store, session_store=session_store)


@pytest.fixture
def scenario_file() -> bytes:
    """Three rows: two clean, one without a name."""
    return make_excel(SCENARIO_ROWS, SCENARIO_COLUMNS)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(import_service) -> Generator:
    """
    FastAPI test client wired to the in-memory import service.

    Usage:
        def test_endpoint(test_client):
            response = test_client.post("/api/import/preview", ...)
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.customer_import.get_import_service", return_value=import_service):
        yield TestClient(app)
