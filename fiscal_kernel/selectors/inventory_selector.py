"""
Module: fiscal_kernel.selectors.inventory_selector
Responsibility: Read-only views of product ledgers: current balance and the
    kardex.
Architecture position: Kernel > Selectors.

The balance comes from the checkpoint when one exists, from the opening when
the product was seeded but never moved, and is zero otherwise.  unit_cost is
always derived (total_value / sc_equivalent), never read from a column.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fiscal_kernel.db.types import ZERO
from fiscal_kernel.domain.movement import ClassificationStatus
from fiscal_kernel.models.inventory import (
    InventoryOpening,
    LedgerCheckpoint,
    LedgerEntry,
    MovementRecord,
)
from fiscal_kernel.selectors.base import BaseSelector


def _unit_cost(total_value: Decimal, sc_equivalent: Decimal) -> Decimal:
    if sc_equivalent is None or sc_equivalent == ZERO:
        return ZERO
    return total_value / sc_equivalent


@dataclass(frozen=True)
class LedgerBalance:
    company_id: UUID
    product_id: UUID
    qty_native: Decimal
    sc_equivalent: Decimal
    total_value: Decimal
    unit_cost: Decimal
    last_applied_date: date | None = None
    movement_count: int = 0
    is_replaying: bool = False


@dataclass(frozen=True)
class KardexLine:
    step: int
    movement_id: UUID
    date: date
    direction: str
    qty_moved: Decimal
    sc_moved: Decimal
    value_moved: Decimal
    unit_cost_applied: Decimal
    sc_before: Decimal
    value_before: Decimal
    qty_after: Decimal
    sc_after: Decimal
    value_after: Decimal
    flags: tuple[str, ...] = ()


class InventorySelector(BaseSelector):
    def balance(self, company_id: UUID, product_id: UUID) -> LedgerBalance:
        checkpoint = self.session.execute(
            select(LedgerCheckpoint).where(
                LedgerCheckpoint.company_id == company_id,
                LedgerCheckpoint.product_id == product_id,
            )
        ).scalar_one_or_none()

        if checkpoint is not None:
            return LedgerBalance(
                company_id=company_id,
                product_id=product_id,
                qty_native=checkpoint.qty_native,
                sc_equivalent=checkpoint.sc_equivalent,
                total_value=checkpoint.total_value,
                unit_cost=_unit_cost(checkpoint.total_value, checkpoint.sc_equivalent),
                last_applied_date=checkpoint.last_applied_date,
                movement_count=checkpoint.movement_count,
                is_replaying=checkpoint.is_replaying,
            )

        opening = self.opening(company_id, product_id)
        if opening is not None:
            return LedgerBalance(
                company_id=company_id,
                product_id=product_id,
                qty_native=opening.qty_native or ZERO,
                sc_equivalent=opening.sc_equivalent,
                total_value=opening.total_value,
                unit_cost=_unit_cost(opening.total_value, opening.sc_equivalent),
                last_applied_date=opening.date,
            )

        return LedgerBalance(
            company_id=company_id,
            product_id=product_id,
            qty_native=ZERO,
            sc_equivalent=ZERO,
            total_value=ZERO,
            unit_cost=ZERO,
        )

    def opening(self, company_id: UUID, product_id: UUID) -> InventoryOpening | None:
        return self.session.execute(
            select(InventoryOpening).where(
                InventoryOpening.company_id == company_id,
                InventoryOpening.product_id == product_id,
            )
        ).scalar_one_or_none()

    def kardex(self, company_id: UUID, product_id: UUID) -> list[KardexLine]:
        rows = self.session.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.company_id == company_id,
                LedgerEntry.product_id == product_id,
            )
            .order_by(LedgerEntry.step)
        ).scalars().all()
        return [
            KardexLine(
                step=row.step,
                movement_id=row.movement_id,
                date=row.date,
                direction=row.direction,
                qty_moved=row.qty_moved,
                sc_moved=row.sc_moved,
                value_moved=row.value_moved,
                unit_cost_applied=row.unit_cost_applied,
                sc_before=row.sc_before,
                value_before=row.value_before,
                qty_after=row.qty_after,
                sc_after=row.sc_after,
                value_after=row.value_after,
                flags=tuple(row.flags or ()),
            )
            for row in rows
        ]

    def products_with_movements(self, company_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(MovementRecord.product_id)
                .where(
                    MovementRecord.company_id == company_id,
                    MovementRecord.product_id.is_not(None),
                )
                .distinct()
            ).scalars()
        )

    def unclassified_count(self, company_id: UUID) -> int:
        return self.session.execute(
            select(func.count(MovementRecord.id)).where(
                MovementRecord.company_id == company_id,
                MovementRecord.classification_status
                == ClassificationStatus.UNCLASSIFIED.value,
                MovementRecord.is_cancelled.is_(False),
            )
        ).scalar_one()
