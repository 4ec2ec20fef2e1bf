"""
Analysis Domain Models

Status state machine definition and request/response DTOs for the
analysis bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class AnalysisStatus(str, Enum):
    """Analysis lifecycle status."""
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class SourceType(str, Enum):
    UPLOAD = "upload"
    URL = "url"


TERMINAL_STATUSES = frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.ERROR})

# Forward-only edges. Subscription tiers are inserted directly at PROCESSING.
ALLOWED_TRANSITIONS = {
    AnalysisStatus.PENDING: frozenset({AnalysisStatus.PAID}),
    AnalysisStatus.PAID: frozenset({AnalysisStatus.PROCESSING}),
    AnalysisStatus.PROCESSING: frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.ERROR}),
    AnalysisStatus.COMPLETED: frozenset(),
    AnalysisStatus.ERROR: frozenset(),
}

_ORDER = {
    AnalysisStatus.PENDING: 0,
    AnalysisStatus.PAID: 1,
    AnalysisStatus.PROCESSING: 2,
    AnalysisStatus.COMPLETED: 3,
    AnalysisStatus.ERROR: 3,
}


def can_transition(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    """Whether ``current -> target`` is a legal forward edge."""
    return target in ALLOWED_TRANSITIONS[current]


def status_rank(status: AnalysisStatus) -> int:
    """Position in the lifecycle; observed ranks never decrease for one id."""
    return _ORDER[status]


# =============================================================================
# Request/Response DTOs
# =============================================================================

class SubmitResponse(BaseModel):
    """Response DTO for a new submission."""
    id: str
    requiresPayment: bool


class SubmitUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Direct HTTPS link to an audio file")


class AnalysisIdRequest(BaseModel):
    """Body for confirm-payment and single-analysis checkout."""
    analysisId: str = Field(..., min_length=1)


class ConfirmPaymentResponse(BaseModel):
    status: AnalysisStatus


class AnalysisStatusResponse(BaseModel):
    """Stable shape returned by the public status poll."""
    status: AnalysisStatus
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    fileName: str
    createdAt: datetime


class AnalysisSummary(BaseModel):
    id: str
    fileName: str
    status: AnalysisStatus
    createdAt: datetime
    result: Optional[dict[str, Any]] = None


class AnalysisListResponse(BaseModel):
    analyses: list[AnalysisSummary]
