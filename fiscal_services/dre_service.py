"""
DREService -- period income statement over the persisted snapshots.

Responsibility:
    Read movement snapshots, overlapping deductions and the document-derived
    deductions (CT-e freight, unconditional discounts) for one company and
    period, and aggregate them with the pure ``fiscal_engines.dre``.

Architecture position:
    Services -- read-only orchestration.  Never writes.

Invariants enforced:
    - All reads share one snapshot: on PostgreSQL the session's connection
      is opened at REPEATABLE READ before the first query.
    - Document-derived deductions cover exactly the requested period and
      are only added when enabled in ``dre`` settings and non-zero.

Failure modes:
    - InvalidPeriodError when start > end.
    - CompanyNotFoundError for an unknown company.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from fiscal_config import FiscalSettings, get_active_config
from fiscal_engines.dre import (
    DeductionLine,
    DREMovementLine,
    DREPeriod,
    DREReport,
    aggregate_dre,
)
from fiscal_kernel.db.engine import is_postgres
from fiscal_kernel.db.types import ZERO
from fiscal_kernel.exceptions import CompanyNotFoundError
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.models.company import Company
from fiscal_kernel.selectors.dre_selector import DRESelector
from fiscal_kernel.services.base import BaseService

logger = get_logger("services.dre")


class DREService(BaseService):
    def __init__(self, session: Session, settings: FiscalSettings | None = None):
        super().__init__(session)
        self.settings = settings or get_active_config()
        self.selector = DRESelector(session)

    def _pin_snapshot(self) -> None:
        if is_postgres(self.session) and not self.session.in_transaction():
            self.session.connection(
                execution_options={"isolation_level": "REPEATABLE READ"}
            )

    def _document_deductions(
        self, company_id: UUID, period: DREPeriod
    ) -> list[DeductionLine]:
        dre_settings = self.settings.dre
        extra: list[DeductionLine] = []

        if dre_settings.include_cte_freight:
            freight = self.selector.cte_freight_total(company_id, period.start, period.end)
            if freight > ZERO:
                extra.append(
                    DeductionLine(
                        title=dre_settings.freight_deduction_title,
                        start_date=period.start,
                        end_date=period.end,
                        amount=freight,
                    )
                )

        if dre_settings.include_unconditional_discounts:
            discounts = self.selector.unconditional_discount_total(
                company_id, period.start, period.end
            )
            if discounts > ZERO:
                extra.append(
                    DeductionLine(
                        title=dre_settings.discount_deduction_title,
                        start_date=period.start,
                        end_date=period.end,
                        amount=discounts,
                    )
                )
        return extra

    def compute_dre(self, company_id: UUID, start: date, end: date) -> DREReport:
        """Aggregate the DRE of ``company_id`` for [start, end]."""
        period = DREPeriod(start, end)
        self._pin_snapshot()
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        with LogContext.bind(company_id=company_id):
            lines = [
                DREMovementLine(
                    classified=row.classified,
                    dre_include=row.dre_include,
                    dre_category=row.dre_category,
                    dre_label=row.dre_label,
                    dre_sign=row.dre_sign,
                    total_value=row.total_value,
                    qty=row.qty_native,
                    product_key=str(row.product_id) if row.product_id else None,
                    product_name=row.product_name,
                )
                for row in self.selector.movement_rows(company_id, start, end)
            ]
            deductions = [
                DeductionLine(
                    title=row.title,
                    start_date=row.start_date,
                    end_date=row.end_date,
                    amount=row.amount,
                )
                for row in self.selector.deductions(company_id, start, end)
            ]
            deductions.extend(self._document_deductions(company_id, period))

            report = aggregate_dre(company_id, period, lines, deductions)

            logger.info(
                "dre_computed",
                extra={
                    "period_start": start,
                    "period_end": end,
                    "movement_lines": len(lines),
                    "categories": len(report.categories),
                    "deductions": len(report.deductions),
                    "net": report.net,
                    "unclassified_count": report.unclassified_count,
                },
            )
            return report
