"""
Module: fiscal_kernel.models.dre
Responsibility: ORM persistence for manual DRE deductions.
Architecture position: Kernel > Models.  May import from db/base.py only.

A deduction covers a date range and is included, in full, in every DRE
period it overlaps (start_date <= period.end and end_date >= period.start).
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TimestampedBase


class DREDeduction(TimestampedBase):
    __tablename__ = "dre_deductions"

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_dre_deduction_range"),
        Index("idx_dre_deduction_company_range", "company_id", "start_date", "end_date"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    start_date: Mapped[dt.date] = mapped_column(nullable=False)

    end_date: Mapped[dt.date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
