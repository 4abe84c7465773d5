"""
Module: fiscal_kernel.models.reprocess
Responsibility: ORM persistence for reclassification batch runs.
Architecture position: Kernel > Models.  May import from db/base.py only.

Audit relevance:
    Every run of the reclassification service leaves one row, dry-runs
    included: the parameters it ran with, the counts it produced, a sample
    of the changes and any warnings.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TimestampedBase


class ReprocessMode(str, Enum):
    DRY_RUN = "dry-run"
    COMMIT = "commit"


class ReprocessStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ReprocessBatch(TimestampedBase):
    __tablename__ = "reprocess_batches"

    __table_args__ = (
        Index("idx_reprocess_company_started", "company_id", "started_at"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    mode: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ReprocessStatus.RUNNING.value
    )

    params: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    warnings: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
