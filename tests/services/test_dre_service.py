"""
Tests for DREService.

Covers:
- Snapshot-based grouping with signs and product names
- Period filter, cancelled and unclassified movements
- Manual deductions by inclusive overlap
- CT-e freight and unconditional discount deductions, per settings
- Invalid period and unknown company
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from fiscal_kernel.domain.movement import ClassificationStatus, Direction, UnclassifiedReason
from fiscal_kernel.exceptions import CompanyNotFoundError, InvalidPeriodError
from fiscal_kernel.models.documents import Cte, Invoice, InvoiceItem
from fiscal_kernel.models.dre import DREDeduction
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_services.dre_service import DREService

JAN_START, JAN_END = date(2025, 1, 1), date(2025, 1, 31)

_sequence = iter(range(1, 10_000))


def _movement(session, company_id, *, day=10, month=1, category="REVENUE",
              label="Receita de vendas", sign=1, total="100", qty="1", product_id=None,
              classified=True, include=True, cancelled=False):
    record = MovementRecord(
        company_id=company_id,
        product_id=product_id,
        date=date(2025, month, day),
        sequence=next(_sequence),
        direction=Direction.OUT.value,
        cfop_code="5102",
        qty_native=Decimal(qty),
        total_value=Decimal(total),
        classification_status=(
            ClassificationStatus.CLASSIFIED.value
            if classified
            else ClassificationStatus.UNCLASSIFIED.value
        ),
        unclassified_reason=None if classified else UnclassifiedReason.NO_RULE.value,
        dre_include=include and classified,
        dre_category=category if classified else None,
        dre_label=label if classified else None,
        dre_sign=sign,
        is_cancelled=cancelled,
        flags=[],
    )
    session.add(record)
    session.flush()
    return record


@pytest.fixture
def service(session, settings):
    return DREService(session, settings)


class TestCategories:
    def test_revenue_and_returns(self, service, session, company_id, product_id):
        _movement(session, company_id, total="1000", qty="10", product_id=product_id)
        _movement(session, company_id, total="500", qty="5", product_id=product_id)
        _movement(session, company_id, category="RETURN", label="Devoluções", sign=-1,
                  total="150", product_id=product_id)

        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert report.category_total("REVENUE") == Decimal("1500")
        assert report.category_total("RETURN") == Decimal("-150")
        assert report.net == Decimal("1350")
        revenue = next(g for g in report.categories if g.category == "REVENUE")
        assert revenue.label == "Receita de vendas"
        assert [i.product for i in revenue.items] == ["Café cru arábica"]
        assert revenue.items[0].qty == Decimal("15")
        assert revenue.items[0].avg_price == Decimal("100")

    def test_unmapped_line_groups_under_its_label(self, service, session, company_id):
        _movement(session, company_id, total="80")

        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert report.categories[0].items[0].product == "Receita de vendas"

    def test_filters(self, service, session, company_id, other_company_id):
        _movement(session, company_id, total="100")
        _movement(session, company_id, total="999", month=2)
        _movement(session, company_id, total="999", cancelled=True)
        _movement(session, company_id, total="999", include=False)
        _movement(session, company_id, classified=False)
        _movement(session, company_id, classified=False, cancelled=True)
        _movement(session, other_company_id, total="999")

        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert report.total_categories == Decimal("100")
        assert report.unclassified_count == 1

    def test_logged(self, service, session, company_id, captured_logs):
        _movement(session, company_id)

        service.compute_dre(company_id, JAN_START, JAN_END)

        computed = [r for r in captured_logs() if r["message"] == "dre_computed"]
        assert computed[0]["company_id"] == str(company_id)
        assert computed[0]["movement_lines"] == 1


class TestDeductions:
    def test_manual_deduction_by_overlap(self, service, session, company_id):
        _movement(session, company_id, total="1000")
        session.add_all([
            DREDeduction(company_id=company_id, title="Simples Nacional",
                         start_date=date(2024, 12, 15), end_date=date(2025, 1, 15),
                         amount=Decimal("60")),
            DREDeduction(company_id=company_id, title="Aluguel",
                         start_date=date(2025, 2, 1), end_date=date(2025, 2, 28),
                         amount=Decimal("500")),
        ])
        session.flush()

        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert [d.title for d in report.deductions] == ["Simples Nacional"]
        assert report.net == Decimal("940")

    def test_cte_freight(self, service, session, company_id):
        session.add_all([
            Cte(company_id=company_id, chave="1" * 44, emissao=date(2025, 1, 5),
                valor_prestacao=Decimal("120")),
            Cte(company_id=company_id, chave="2" * 44, emissao=date(2025, 1, 25),
                valor_prestacao=Decimal("30")),
            Cte(company_id=company_id, chave="3" * 44, emissao=date(2025, 1, 26),
                valor_prestacao=Decimal("1000"), is_cancelled=True),
            Cte(company_id=company_id, chave="4" * 44, emissao=date(2025, 2, 1),
                valor_prestacao=Decimal("1000")),
        ])
        session.flush()

        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert [(d.title, d.amount) for d in report.deductions] == [("Fretes (CT-e)", Decimal("150"))]
        assert report.net == Decimal("-150")

    def test_cte_freight_disabled(self, session, settings, company_id):
        session.add(Cte(company_id=company_id, chave="1" * 44, emissao=date(2025, 1, 5),
                        valor_prestacao=Decimal("120")))
        session.flush()
        no_freight = replace(settings, dre=replace(settings.dre, include_cte_freight=False))

        report = DREService(session, no_freight).compute_dre(company_id, JAN_START, JAN_END)

        assert report.deductions == ()

    def test_no_freight_line_when_zero(self, service, company_id):
        report = service.compute_dre(company_id, JAN_START, JAN_END)

        assert report.deductions == ()

    def test_unconditional_discounts_when_enabled(self, session, settings, company_id):
        invoice = Invoice(company_id=company_id, chave="5" * 44, emissao=date(2025, 1, 8),
                          type=Direction.OUT.value)
        invoice.items.append(InvoiceItem(line_number=1, description="Café torrado",
                                         qty=Decimal("1"), gross=Decimal("100"),
                                         discount=Decimal("7")))
        session.add(invoice)
        session.flush()

        default_report = DREService(session, settings).compute_dre(company_id, JAN_START, JAN_END)
        with_discounts = replace(
            settings, dre=replace(settings.dre, include_unconditional_discounts=True)
        )
        report = DREService(session, with_discounts).compute_dre(company_id, JAN_START, JAN_END)

        assert default_report.deductions == ()
        assert [(d.title, d.amount) for d in report.deductions] == [
            ("Descontos incondicionais", Decimal("7"))
        ]


class TestErrors:
    def test_inverted_period(self, service, company_id):
        with pytest.raises(InvalidPeriodError):
            service.compute_dre(company_id, JAN_END, JAN_START)

    def test_unknown_company(self, service):
        with pytest.raises(CompanyNotFoundError):
            service.compute_dre(uuid4(), JAN_START, JAN_END)
