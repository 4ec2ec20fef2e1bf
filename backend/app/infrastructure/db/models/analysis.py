"""
Analysis Database Model

SQLModel table for submitted recordings and their lifecycle status.
"""

from typing import Any, Optional

from sqlalchemy import Column, JSON, Text
from sqlmodel import Field

from app.domain.analysis import AnalysisStatus, SourceType
from app.domain.billing import PlanTier
from app.infrastructure.db.models.base import TimestampMixin, new_id


class Analysis(TimestampMixin, table=True):
    """
    One row per submitted recording.

    ``status`` is only ever advanced through conditional updates
    (see AnalysisRepository.transition).
    """

    __tablename__ = "analyses"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    user_id: str = Field(..., index=True, max_length=64)

    # Display-only source descriptor (file name or URL)
    file_name: str = Field(..., max_length=2048)
    source_type: str = Field(default=SourceType.UPLOAD.value, max_length=10)
    audio_path: Optional[str] = Field(default=None, max_length=1024)

    # Immutable tier captured at submission
    tier: str = Field(default=PlanTier.SINGLE.value, max_length=10)
    status: str = Field(default=AnalysisStatus.PENDING.value, index=True, max_length=20)

    paddle_transaction_id: Optional[str] = Field(default=None, index=True, max_length=255)

    # Transient, only present while processing
    transcript: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    result: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    processing_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    @property
    def status_enum(self) -> AnalysisStatus:
        return AnalysisStatus(self.status)

    @property
    def tier_enum(self) -> PlanTier:
        return PlanTier(self.tier)
