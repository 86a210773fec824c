"""
Business logic services.

Each service handles one stage of the customer import pipeline.
"""

from services.import_service import ImportService, get_import_service
from services.import_store import ImportStore, get_import_store, reset_import_store
from services.import_session_store import (
    ImportSession,
    ImportSessionStore,
    InMemoryImportSessionStore,
    get_import_session_store,
)
from services.commit_engine import CommitEngine, CommitResult
from services.column_mapper import ColumnMapper, compute_column_signature
from services.row_processor import RowProcessor
from services.value_normalizer import ValueNormalizer
from services.vocabulary_matcher import VocabularyMatcher
from services.duplicate_detector import DuplicateDetector

__all__ = [
    "ImportService",
    "get_import_service",
    "ImportStore",
    "get_import_store",
    "reset_import_store",
    "ImportSession",
    "ImportSessionStore",
    "InMemoryImportSessionStore",
    "get_import_session_store",
    "CommitEngine",
    "CommitResult",
    "ColumnMapper",
    "compute_column_signature",
    "RowProcessor",
    "ValueNormalizer",
    "VocabularyMatcher",
    "DuplicateDetector",
]
