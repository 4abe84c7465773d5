"""
fiscal_engines.dre -- Period income statement aggregation.

Responsibility:
    Turn classified movement lines and manual deductions into a DRE for one
    period: totals per (category, label) with a per-product breakdown,
    the deductions that overlap the period, and the net result.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  DREService (fiscal_services)
    reads the movement snapshot and deductions and calls aggregate_dre().

Invariants enforced:
    - Unclassified lines never reach a category; they are only counted.
    - An included line without a category is not dropped: it is grouped
      under UNCATEGORIZED (by its label) and a warning is logged.
    - Group total = sum(dre_sign * total_value).  The sign stored on the
      movement is trusted, never re-derived from the category.
    - A deduction is included iff start_date <= period.end and
      end_date >= period.start (inclusive overlap, full amount).
    - net = total_categories - total_deductions.
    - Groups are ordered by (category, label); items by product name.

Failure modes:
    - InvalidPeriodError when period.start > period.end.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from fiscal_engines.tracer import traced_engine
from fiscal_kernel.db.types import ZERO
from fiscal_kernel.exceptions import InvalidPeriodError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("engines.dre")

UNCATEGORIZED = "UNCATEGORIZED"
UNCATEGORIZED_LABEL = "Sem categoria"


@dataclass(frozen=True)
class DREPeriod:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidPeriodError(self.start, self.end)

    def overlaps(self, start: date, end: date) -> bool:
        return start <= self.end and end >= self.start


@dataclass(frozen=True)
class DREMovementLine:
    classified: bool
    dre_include: bool
    dre_category: str | None
    dre_label: str | None
    dre_sign: int
    total_value: Decimal
    qty: Decimal = ZERO
    product_key: str | None = None
    product_name: str | None = None


@dataclass(frozen=True)
class DeductionLine:
    title: str
    start_date: date
    end_date: date
    amount: Decimal


@dataclass(frozen=True)
class DREProductItem:
    product: str
    qty: Decimal
    total: Decimal
    avg_price: Decimal


@dataclass(frozen=True)
class DRECategoryGroup:
    category: str
    label: str
    total: Decimal
    items: tuple[DREProductItem, ...] = ()


@dataclass(frozen=True)
class DREDeductionItem:
    title: str
    amount: Decimal


@dataclass(frozen=True)
class DREReport:
    company_id: UUID | None
    period: DREPeriod
    categories: tuple[DRECategoryGroup, ...]
    deductions: tuple[DREDeductionItem, ...]
    total_categories: Decimal
    total_deductions: Decimal
    net: Decimal
    unclassified_count: int

    def category_total(self, category: str) -> Decimal:
        return sum(
            (g.total for g in self.categories if g.category == category), ZERO
        )


class _ProductAccumulator:
    __slots__ = ("name", "qty", "total")

    def __init__(self, name: str):
        self.name = name
        self.qty = ZERO
        self.total = ZERO


@traced_engine("dre", "1.0", fingerprint_fields=("company_id", "period"))
def aggregate_dre(
    company_id: UUID | None,
    period: DREPeriod,
    lines: Iterable[DREMovementLine],
    deductions: Iterable[DeductionLine] = (),
) -> DREReport:
    """Aggregate movement lines and deductions into a DREReport."""
    groups: dict[tuple[str, str], dict[str, _ProductAccumulator]] = {}
    unclassified = 0
    uncategorized = 0

    for line in lines:
        if not line.classified:
            unclassified += 1
            continue
        if not line.dre_include:
            continue

        category = line.dre_category
        if not category:
            uncategorized += 1
            category = UNCATEGORIZED
        label = line.dre_label or (
            UNCATEGORIZED_LABEL if category == UNCATEGORIZED else category
        )
        products = groups.setdefault((category, label), {})
        key = line.product_key or label
        acc = products.get(key)
        if acc is None:
            acc = products[key] = _ProductAccumulator(line.product_name or label)
        acc.qty += line.qty
        acc.total += line.dre_sign * line.total_value

    categories: list[DRECategoryGroup] = []
    for (category, label) in sorted(groups):
        items = []
        for acc in sorted(groups[(category, label)].values(), key=lambda a: a.name):
            avg_price = abs(acc.total) / acc.qty if acc.qty > ZERO else ZERO
            items.append(
                DREProductItem(
                    product=acc.name, qty=acc.qty, total=acc.total, avg_price=avg_price
                )
            )
        categories.append(
            DRECategoryGroup(
                category=category,
                label=label,
                total=sum((i.total for i in items), ZERO),
                items=tuple(items),
            )
        )

    applied = [
        DREDeductionItem(title=d.title, amount=d.amount)
        for d in sorted(deductions, key=lambda d: (d.start_date, d.title))
        if period.overlaps(d.start_date, d.end_date)
    ]

    total_categories = sum((g.total for g in categories), ZERO)
    total_deductions = sum((d.amount for d in applied), ZERO)

    if uncategorized:
        logger.warning(
            "dre_uncategorized_lines",
            extra={
                "company_id": str(company_id) if company_id else None,
                "count": uncategorized,
            },
        )
    if unclassified:
        logger.info(
            "dre_unclassified_lines_excluded",
            extra={
                "company_id": str(company_id) if company_id else None,
                "count": unclassified,
            },
        )

    return DREReport(
        company_id=company_id,
        period=period,
        categories=tuple(categories),
        deductions=tuple(applied),
        total_categories=total_categories,
        total_deductions=total_deductions,
        net=total_categories - total_deductions,
        unclassified_count=unclassified,
    )
