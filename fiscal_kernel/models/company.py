"""
Module: fiscal_kernel.models.company
Responsibility: ORM persistence for tenants (Company) and the products they
    stock (Product, ProductUnitConversion).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Product.name is unique per company; (company_id, sku) is unique.
    - Product.unit is one of SC, KG, FD.
    - A product is never hard-deleted while ledger rows reference it
      (ON DELETE RESTRICT from openings, checkpoints and kardex rows);
      only deleting the company cascades.

Failure modes:
    - IntegrityError on duplicate product name/sku within a company.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiscal_kernel.db.base import TimestampedBase


class Company(TimestampedBase):
    """Tenant root.  Every other row belongs to exactly one company."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # CNPJ digits (14) or CPF digits (11)
    cnpj: Mapped[str | None] = mapped_column(String(14), nullable=True, unique=True)

    products: Mapped[list["Product"]] = relationship(
        back_populates="company",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Company {self.name}>"


class Product(TimestampedBase):
    """
    A stock item carried in the inventory ledger.

    ``unit`` is the declared unit; document quantities are converted into it
    before they reach the ledger, which then works in SC-equivalents.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_product_company_name"),
        UniqueConstraint("company_id", "sku", name="uq_product_company_sku"),
        CheckConstraint("unit IN ('SC', 'KG', 'FD')", name="ck_product_unit"),
        Index("idx_product_company", "company_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    sku: Mapped[str | None] = mapped_column(String(60), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit: Mapped[str] = mapped_column(String(2), nullable=False)

    ncm: Mapped[str | None] = mapped_column(String(10), nullable=True)

    company: Mapped[Company] = relationship(back_populates="products")

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.unit})>"


class ProductUnitConversion(TimestampedBase):
    """
    Document-unit to product-unit multiplier.

    ``product_id`` null means the rule applies to every product of the
    company; a product-specific rule wins over a company-wide one.
    """

    __tablename__ = "product_unit_conversions"

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "product_id",
            "source_unit",
            "target_unit",
            name="uq_unit_conversion",
        ),
        Index("idx_unit_conversion_lookup", "company_id", "source_unit"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=True,
    )

    # Stored as strip_key() of the unit text
    source_unit: Mapped[str] = mapped_column(String(30), nullable=False)

    target_unit: Mapped[str] = mapped_column(String(2), nullable=False)

    multiplier: Mapped[Decimal] = mapped_column(nullable=False)
