# ============================================================================
# RECORD OUTCOME MODEL
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core model - Per-record processing outcome
# PURPOSE: What the record processor reports for each input record
# CREATED: 18 OCT 2026
# ============================================================================
"""
Record Outcome Model

One outcome per input record. Business failures are reported here as
data (status ERROR / NOT_SUBMITTED); only session-fatal conditions are
raised by the record processor.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field

from core.contracts import RecordStatus


class RecordOutcome(BaseModel):
    """Result of processing a single record."""

    record_ref: Any = Field(
        default=None,
        description="Caller-meaningful reference to the record (index, name, key)"
    )
    status: RecordStatus
    detail: Optional[Any] = Field(
        default=None,
        description="Free-form detail (confirmation id, validation message)"
    )

    @property
    def succeeded(self) -> bool:
        return self.status.is_success()

    @classmethod
    def submitted(cls, record_ref: Any, detail: Any = None) -> "RecordOutcome":
        return cls(record_ref=record_ref, status=RecordStatus.SUBMITTED, detail=detail)

    @classmethod
    def error(cls, record_ref: Any, detail: Any = None) -> "RecordOutcome":
        return cls(record_ref=record_ref, status=RecordStatus.ERROR, detail=detail)

    @classmethod
    def not_submitted(cls, record_ref: Any, detail: Any = None) -> "RecordOutcome":
        return cls(record_ref=record_ref, status=RecordStatus.NOT_SUBMITTED, detail=detail)


__all__ = ["RecordOutcome"]
