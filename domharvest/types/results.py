"""Result records for harvest runs."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class HarvestRecord(BaseModel):
    """Terminal result of one batch item."""

    index: int = Field(description="Position of the item in the batch input")
    url: str = Field(description="Target URL")
    success: bool = Field(default=False)
    duration: float = Field(default=0.0, description="Wall time in seconds, retries included")
    data: Optional[list[Any]] = Field(default=None, description="Extracted results on success")
    error: Optional[str] = Field(default=None, description="Error message on failure")
    error_kind: Optional[str] = Field(
        default=None,
        description="TimeoutError, NavigationError, ExtractionError or the exception class name",
    )
    completed_at: datetime = Field(default_factory=datetime.now)


class BatchSummary(BaseModel):
    """Aggregate statistics for a batch run."""

    total: int = Field(default=0)
    succeeded: int = Field(default=0)
    failed: int = Field(default=0)
    total_duration_seconds: float = Field(default=0.0)
    items_extracted: int = Field(default=0)
    errors_by_kind: dict[str, int] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if every item succeeded."""
        return self.failed == 0

    @property
    def partial_success(self) -> bool:
        """Check if at least one item succeeded."""
        return self.succeeded > 0


def summarize(records: list[HarvestRecord]) -> BatchSummary:
    """Build summary statistics from batch records."""
    summary = BatchSummary(total=len(records))

    for record in records:
        summary.total_duration_seconds += record.duration
        if record.success:
            summary.succeeded += 1
            summary.items_extracted += len(record.data or [])
        else:
            summary.failed += 1
            kind = record.error_kind or "Unknown"
            summary.errors_by_kind[kind] = summary.errors_by_kind.get(kind, 0) + 1

    return summary
