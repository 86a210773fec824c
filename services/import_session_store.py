"""
Import session store.

Holds staged rows and the resolved mapping between preview and execute, so
execute never re-reads the file. Sessions expire after a fixed TTL and are
purged by a periodic sweep.

ImportSessionStore is the interface; InMemoryImportSessionStore is the
process-local implementation. Sessions do not survive a restart.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import threading
import uuid
import structlog

from config.settings import settings
from exceptions import (
    ImportSessionExpiredError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
)
from models.customer_import import (
    CleaningReport,
    ColumnSuggestion,
    FormatChange,
    ImportBatch,
    SchemaProposals,
    StagingRow,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ImportSession:
    """Everything execute needs from a preview."""
    id: str
    tenant_id: str
    batch: ImportBatch
    headers: list[str]
    raw_rows: list[tuple[int, dict[str, Any]]]
    mapping: dict[str, str]
    suggestions: list[ColumnSuggestion]
    rows: list[StagingRow]
    proposals: SchemaProposals
    sheet_names: list[str] = field(default_factory=list)
    format_change: FormatChange = field(default_factory=FormatChange)
    previous_batch: Optional[ImportBatch] = None  # earlier upload of the same file
    cleaning_report: CleaningReport = field(default_factory=CleaningReport)
    created_at: datetime = field(default_factory=system_clock)
    expires_at: datetime = field(default_factory=system_clock)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ImportSessionStore(ABC):
    """
    get / put / delete / sweep over opaque session ids.

    delete() must be atomic: of two concurrent deletes of the same id,
    exactly one returns True. Commit relies on this to consume a session.
    """

    ttl: timedelta = timedelta(hours=1)

    @abstractmethod
    def put(self, session: ImportSession) -> None:
        """Store or replace a session."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ImportSession]:
        """Session by id, including expired ones not yet swept."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session; True only for the call that removed it."""

    @abstractmethod
    def sweep(self) -> int:
        """Purge expired sessions; returns how many were removed."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time according to the store's clock."""

    def count(self) -> int:
        """Sessions currently held (expired ones included until swept)."""
        return 0

    # ===================
    # POLICY
    # ===================

    def new_session_id(self) -> str:
        return str(uuid.uuid4())

    def create(self, session: ImportSession) -> ImportSession:
        """Stamp created_at / expires_at from the clock and store."""
        now = self.now()
        session.created_at = now
        session.expires_at = now + self.ttl
        self.put(session)
        logger.info(
            "import_session_created",
            session_id=session.id,
            tenant_id=session.tenant_id,
            expires_at=session.expires_at.isoformat(),
        )
        return session

    def open(self, session_id: str, tenant_id: str) -> ImportSession:
        """
        Fetch a session for a tenant or raise a distinct error.

        Raises:
            ImportSessionNotFoundError: Unknown or already consumed id
            ImportSessionExpiredError: Past its TTL (removed as a side effect)
            ImportSessionForbiddenError: Belongs to another organization
        """
        session = self.get(session_id)
        if session is None:
            raise ImportSessionNotFoundError(session_id)
        if session.tenant_id != tenant_id:
            logger.warning("import_session_tenant_mismatch", session_id=session_id)
            raise ImportSessionForbiddenError(session_id)
        if session.is_expired(self.now()):
            self.delete(session_id)
            raise ImportSessionExpiredError(session_id, session.expires_at.isoformat())
        return session

    def consume(self, session_id: str, tenant_id: str) -> ImportSession:
        """
        Open a session and atomically remove it.

        A second concurrent consume of the same id gets
        ImportSessionNotFoundError, so one session commits at most once.
        """
        session = self.open(session_id, tenant_id)
        if not self.delete(session_id):
            raise ImportSessionNotFoundError(session_id)
        logger.info("import_session_consumed", session_id=session_id, tenant_id=tenant_id)
        return session


class InMemoryImportSessionStore(ImportSessionStore):
    """
    Dictionary-backed session store.

    Args:
        ttl_minutes: Session lifetime; defaults to settings
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(self, ttl_minutes: Optional[int] = None, clock: Optional[Clock] = None):
        self.ttl = timedelta(
            minutes=settings.import_session_ttl_minutes if ttl_minutes is None else ttl_minutes
        )
        self.clock = clock or system_clock
        self._sessions: dict[str, ImportSession] = {}
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self.clock()

    def put(self, session: ImportSession) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[ImportSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("import_sessions_swept", removed=len(expired))
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)


# ===================
# SINGLETON
# ===================

_session_store: Optional[ImportSessionStore] = None


def get_import_session_store() -> ImportSessionStore:
    """Get or create the process-wide session store."""
    global _session_store
    if _session_store is None:
        _session_store = InMemoryImportSessionStore()
    return _session_store
