"""
Module: fiscal_kernel.models.sequence
Responsibility: Named monotonic counters (one row per sequence name).
Architecture position: Kernel > Models.  May import from db/base.py only.

Rows are only ever touched by SequenceService under SELECT ... FOR UPDATE.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # e.g. "movement:<company_id>"
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
