"""
Module: fiscal_kernel.selectors.dre_selector
Responsibility: Read the inputs of a DRE for one company and period:
    movement snapshots, overlapping manual deductions, CT-e freight and
    unconditional discounts.
Architecture position: Kernel > Selectors.

All queries run in the caller's session; DREService opens that session at
REPEATABLE READ on PostgreSQL so the four reads see one snapshot.
Cancelled documents and cancelled movement records never contribute.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fiscal_kernel.db.types import ZERO
from fiscal_kernel.domain.movement import ClassificationStatus, Direction
from fiscal_kernel.models.company import Product
from fiscal_kernel.models.documents import Cte, Invoice, InvoiceItem
from fiscal_kernel.models.dre import DREDeduction
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class DREMovementRow:
    classified: bool
    dre_include: bool
    dre_category: str | None
    dre_label: str | None
    dre_sign: int
    total_value: Decimal
    qty_native: Decimal
    product_id: UUID | None
    product_name: str | None


@dataclass(frozen=True)
class DeductionRow:
    title: str
    start_date: date
    end_date: date
    amount: Decimal


class DRESelector(BaseSelector):
    def movement_rows(
        self, company_id: UUID, start: date, end: date
    ) -> list[DREMovementRow]:
        rows = self.session.execute(
            select(MovementRecord, Product.name)
            .outerjoin(Product, Product.id == MovementRecord.product_id)
            .where(
                MovementRecord.company_id == company_id,
                MovementRecord.is_cancelled.is_(False),
                MovementRecord.date >= start,
                MovementRecord.date <= end,
            )
            .order_by(MovementRecord.date, MovementRecord.sequence)
        ).all()
        return [
            DREMovementRow(
                classified=record.classification_status
                == ClassificationStatus.CLASSIFIED.value,
                dre_include=record.dre_include,
                dre_category=record.dre_category,
                dre_label=record.dre_label,
                dre_sign=record.dre_sign,
                total_value=record.total_value,
                qty_native=record.qty_native,
                product_id=record.product_id,
                product_name=product_name,
            )
            for record, product_name in rows
        ]

    def deductions(self, company_id: UUID, start: date, end: date) -> list[DeductionRow]:
        rows = self.session.execute(
            select(DREDeduction)
            .where(
                DREDeduction.company_id == company_id,
                DREDeduction.start_date <= end,
                DREDeduction.end_date >= start,
            )
            .order_by(DREDeduction.start_date, DREDeduction.title)
        ).scalars().all()
        return [
            DeductionRow(
                title=row.title,
                start_date=row.start_date,
                end_date=row.end_date,
                amount=row.amount,
            )
            for row in rows
        ]

    def cte_freight_total(self, company_id: UUID, start: date, end: date) -> Decimal:
        total = self.session.execute(
            select(func.sum(Cte.valor_prestacao)).where(
                Cte.company_id == company_id,
                Cte.is_cancelled.is_(False),
                Cte.emissao >= start,
                Cte.emissao <= end,
            )
        ).scalar_one_or_none()
        return Decimal(total) if total is not None else ZERO

    def unconditional_discount_total(
        self, company_id: UUID, start: date, end: date
    ) -> Decimal:
        """Item discounts (vDesc) on outbound, non-cancelled invoices."""
        total = self.session.execute(
            select(func.sum(InvoiceItem.discount))
            .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
            .where(
                Invoice.company_id == company_id,
                Invoice.type == Direction.OUT.value,
                Invoice.is_cancelled.is_(False),
                Invoice.emissao >= start,
                Invoice.emissao <= end,
            )
        ).scalar_one_or_none()
        return Decimal(total) if total is not None else ZERO
