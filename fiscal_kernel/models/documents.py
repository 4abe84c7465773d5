"""
Module: fiscal_kernel.models.documents
Responsibility: ORM persistence for ingested fiscal documents: NF-e invoices
    and their items, item-to-product mappings (explicit and rule based) and
    CT-e freight documents.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (company_id, chave) unique for invoices and for CT-e.
    - (invoice_id, line_number) unique for items.
    - An invoice item maps to at most one product (unique invoice_item_id).
    - Mapping rules are unique per (company_id, description_key, unit_key).

Failure modes:
    - IntegrityError when the same access key is imported twice for one
      company.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiscal_kernel.db.base import TimestampedBase
from fiscal_kernel.models.company import Product


class Invoice(TimestampedBase):
    """
    An NF-e as seen by one company.

    ``type`` is the direction for this company (derive_document_direction);
    the same physical document imported by two companies is two rows.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("company_id", "chave", name="uq_invoice_company_chave"),
        CheckConstraint("type IN ('IN', 'OUT')", name="ck_invoice_type"),
        Index("idx_invoice_company_emissao", "company_id", "emissao"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 44-digit access key
    chave: Mapped[str] = mapped_column(String(44), nullable=False)

    numero: Mapped[str | None] = mapped_column(String(20), nullable=True)
    serie: Mapped[str | None] = mapped_column(String(5), nullable=True)

    emissao: Mapped[date] = mapped_column(nullable=False)

    type: Mapped[str] = mapped_column(String(3), nullable=False)

    is_self_issued_entrada: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    nat_op: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Primary CFOP of the document (determine_primary_cfop)
    cfop: Mapped[str | None] = mapped_column(String(4), nullable=True)

    issuer_cnpj: Mapped[str | None] = mapped_column(String(14), nullable=True)
    recipient_cnpj: Mapped[str | None] = mapped_column(String(14), nullable=True)

    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.line_number",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.chave} {self.type}>"


class InvoiceItem(TimestampedBase):
    __tablename__ = "invoice_items"

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_item_line"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_code: Mapped[str | None] = mapped_column(String(60), nullable=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)

    cfop_code: Mapped[str | None] = mapped_column(String(4), nullable=True)

    unit: Mapped[str | None] = mapped_column(String(10), nullable=True)

    qty: Mapped[Decimal] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    gross: Mapped[Decimal] = mapped_column(nullable=False)

    # Unconditional discount (vDesc)
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    invoice: Mapped[Invoice] = relationship(back_populates="items")

    mapping: Mapped["InvoiceItemProductMapping | None"] = relationship(
        back_populates="invoice_item",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def net_value(self) -> Decimal:
        return self.gross - (self.discount or Decimal("0"))


class InvoiceItemProductMapping(TimestampedBase):
    """Links an invoice item to the product it moves."""

    __tablename__ = "invoice_item_product_mappings"

    invoice_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Item quantity expressed in the product's unit
    converted_qty: Mapped[Decimal | None] = mapped_column(nullable=True)

    invoice_item: Mapped[InvoiceItem] = relationship(back_populates="mapping")

    product: Mapped[Product] = relationship(lazy="joined")


class InvoiceItemMappingRule(TimestampedBase):
    """
    Auto-mapping rule: items with this description and unit are this product.

    Keys are strip_key() of the raw text; ``conversion_multiplier`` turns the
    item quantity into the product unit when set.
    """

    __tablename__ = "invoice_item_mapping_rules"

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "description_key",
            "unit_key",
            name="uq_item_mapping_rule",
        ),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )

    description_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description_raw: Mapped[str] = mapped_column(String(255), nullable=False)

    # "" when the rule applies regardless of unit
    unit_key: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    unit_raw: Mapped[str | None] = mapped_column(String(30), nullable=True)

    conversion_multiplier: Mapped[Decimal | None] = mapped_column(nullable=True)


class Cte(TimestampedBase):
    """Transport document; non-cancelled ones feed the DRE freight deduction."""

    __tablename__ = "ctes"

    __table_args__ = (
        UniqueConstraint("company_id", "chave", name="uq_cte_company_chave"),
        Index("idx_cte_company_emissao", "company_id", "emissao"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    chave: Mapped[str] = mapped_column(String(44), nullable=False)

    emissao: Mapped[date] = mapped_column(nullable=False)

    cfop: Mapped[str | None] = mapped_column(String(4), nullable=True)

    nat_op: Mapped[str | None] = mapped_column(String(255), nullable=True)

    valor_prestacao: Mapped[Decimal] = mapped_column(nullable=False)

    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
