"""
Module: fiscal_kernel.models.inventory
Responsibility: ORM persistence for the costing side: manual openings,
    classified movement records, the ledger checkpoint (cached fold state)
    and kardex ledger entries.
Architecture position: Kernel > Models.  May import from db/ and the status
    enums in domain/movement.py.

Invariants enforced:
    - At most one InventoryOpening per (company_id, product_id).
    - One LedgerCheckpoint per (company_id, product_id); ``version`` is
      bumped on every write and checked with compare-and-swap.
    - MovementRecord carries a snapshot of its classification so the DRE of
      a closed period does not move when a natureza is later edited; a
      reclassification batch rewrites the snapshot explicitly.
    - MovementRecord.sequence is a per-company monotonic tie-breaker for
      movements sharing a date.
    - Product rows referenced here cannot be deleted (ON DELETE RESTRICT).

Audit relevance:
    LedgerEntry rows are the kardex: each one shows the balance before and
    after a movement and the unit cost applied.  They are rebuilt whole on
    replay and always equal the fold of the movement history.
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TimestampedBase
from fiscal_kernel.domain.movement import ClassificationStatus, LedgerStatus


class InventoryOpening(TimestampedBase):
    __tablename__ = "inventory_openings"

    __table_args__ = (
        UniqueConstraint("company_id", "product_id", name="uq_opening_company_product"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    date: Mapped[dt.date] = mapped_column(nullable=False)

    qty_native: Mapped[Decimal | None] = mapped_column(nullable=True)

    sc_equivalent: Mapped[Decimal] = mapped_column(nullable=False)

    total_value: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)


class MovementRecord(TimestampedBase):
    """
    One persisted document line with its classification snapshot.

    ledger_status tells where the record stands relative to the product
    ledger; unclassified records keep their reason for the review queue.
    """

    __tablename__ = "movement_records"

    __table_args__ = (
        Index("idx_movement_company_date", "company_id", "date"),
        Index("idx_movement_product_order", "company_id", "product_id", "date", "sequence"),
        Index("idx_movement_invoice_item", "invoice_item_id"),
        Index("idx_movement_status", "company_id", "classification_status"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    invoice_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoice_items.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Free-form origin, e.g. "<chave>#<line>"
    source_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=True,
    )

    date: Mapped[dt.date] = mapped_column(nullable=False)

    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    direction: Mapped[str] = mapped_column(String(3), nullable=False)

    cfop_code: Mapped[str | None] = mapped_column(String(4), nullable=True)

    nat_op: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_self_issued_entrada: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    qty_native: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str | None] = mapped_column(String(10), nullable=True)

    sc_equivalent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    total_value: Mapped[Decimal] = mapped_column(nullable=False)

    # Classification snapshot
    natureza_operacao_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("naturezas_operacao.id", ondelete="SET NULL"),
        nullable=True,
    )
    classification_source: Mapped[str | None] = mapped_column(String(10), nullable=True)
    dre_include: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dre_category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    dre_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dre_sign: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    affects_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    classification_status: Mapped[str] = mapped_column(
        String(15), nullable=False, default=ClassificationStatus.UNCLASSIFIED.value
    )
    unclassified_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    ledger_status: Mapped[str] = mapped_column(
        String(12), nullable=False, default=LedgerStatus.PENDING.value
    )

    flags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_classified(self) -> bool:
        return self.classification_status == ClassificationStatus.CLASSIFIED.value

    @property
    def is_costable(self) -> bool:
        """Classified, mapped, in the product unit, inventory-affecting, live."""
        return (
            self.is_classified
            and self.product_id is not None
            and self.unclassified_reason is None
            and self.affects_inventory
            and not self.is_cancelled
        )


class LedgerCheckpoint(TimestampedBase):
    """Cached fold state of one product ledger."""

    __tablename__ = "ledger_checkpoints"

    __table_args__ = (
        UniqueConstraint("company_id", "product_id", name="uq_checkpoint_company_product"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    qty_native: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sc_equivalent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    last_applied_date: Mapped[dt.date | None] = mapped_column(nullable=True)

    movement_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    seeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Interrupted replay: movements folded so far, the order key of the last
    # one and a digest of them.  Cleared when a replay completes.
    replay_cursor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    resume_after_date: Mapped[dt.date | None] = mapped_column(nullable=True)
    resume_after_sequence: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resume_after_movement_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    replay_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_replaying: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class LedgerEntry(TimestampedBase):
    """Kardex line."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("company_id", "product_id", "step", name="uq_ledger_entry_step"),
        UniqueConstraint("movement_id", name="uq_ledger_entry_movement"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    movement_id: Mapped[UUID] = mapped_column(
        ForeignKey("movement_records.id", ondelete="CASCADE"),
        nullable=False,
    )

    step: Mapped[int] = mapped_column(BigInteger, nullable=False)

    date: Mapped[dt.date] = mapped_column(nullable=False)

    direction: Mapped[str] = mapped_column(String(3), nullable=False)

    qty_moved: Mapped[Decimal] = mapped_column(nullable=False)
    sc_moved: Mapped[Decimal] = mapped_column(nullable=False)
    value_moved: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost_applied: Mapped[Decimal] = mapped_column(nullable=False)

    sc_before: Mapped[Decimal] = mapped_column(nullable=False)
    value_before: Mapped[Decimal] = mapped_column(nullable=False)
    qty_after: Mapped[Decimal] = mapped_column(nullable=False)
    sc_after: Mapped[Decimal] = mapped_column(nullable=False)
    value_after: Mapped[Decimal] = mapped_column(nullable=False)

    flags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
