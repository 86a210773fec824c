"""
Batch summaries derived from staging rows.

Counts and the quality report are recomputed from rows every time; nothing
here is stored independently of the rows it describes.
"""

from collections import Counter
from typing import Any

from config.import_fields import COMPLETENESS_WEIGHTS
from models.customer_import import (
    ImportCounts,
    QualityReport,
    StagingRow,
    StagingRowStatus,
)

COMMON_ISSUE_LIMIT = 5


def completeness_score(values: dict[str, Any]) -> float:
    """Weighted share of the key customer fields that are filled, in [0, 1]."""
    total = sum(COMPLETENESS_WEIGHTS.values())
    filled = sum(
        weight for field, weight in COMPLETENESS_WEIGHTS.items()
        if values.get(field) not in (None, "")
    )
    return round(filled / total, 3)


def summarize_rows(rows: list[StagingRow]) -> ImportCounts:
    """Status counts for a batch."""
    statuses = Counter(row.status for row in rows)
    return ImportCounts(
        total=len(rows),
        valid=statuses[StagingRowStatus.VALID],
        warning=statuses[StagingRowStatus.WARNING],
        error=statuses[StagingRowStatus.ERROR],
        duplicate=statuses[StagingRowStatus.DUPLICATE],
    )


def build_quality_report(rows: list[StagingRow]) -> QualityReport:
    """
    Data quality summary for a batch.

    overall_score = valid% * 40 + average completeness * 40 + coverage * 20,
    where rows with status valid or duplicate count as valid and coverage is
    the mean fill rate of the completeness fields.
    """
    if not rows:
        return QualityReport(overall_score=0, valid_percentage=0.0, average_completeness=0.0)

    total = len(rows)
    valid = sum(
        1 for row in rows
        if row.status in (StagingRowStatus.VALID, StagingRowStatus.DUPLICATE)
    )
    valid_ratio = valid / total
    average_completeness = sum(row.completeness_score for row in rows) / total

    field_coverage = {
        field: round(
            sum(1 for row in rows if row.mapped_values.get(field) not in (None, "")) / total,
            3,
        )
        for field in COMPLETENESS_WEIGHTS
    }
    coverage = sum(field_coverage.values()) / len(field_coverage)

    issue_counts = Counter(issue.code for row in rows for issue in row.issues)
    common_issues = [
        {"code": code, "count": count}
        for code, count in issue_counts.most_common(COMMON_ISSUE_LIMIT)
    ]

    overall = round(valid_ratio * 40 + average_completeness * 40 + coverage * 20)

    return QualityReport(
        overall_score=max(0, min(100, overall)),
        valid_percentage=round(valid_ratio * 100, 1),
        average_completeness=round(average_completeness, 3),
        field_coverage=field_coverage,
        common_issues=common_issues,
    )
