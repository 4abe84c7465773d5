"""
Tests for ClassificationService.

Covers:
- Natureza creation (sign defaults, validation, company check)
- CFOP rule upsert
- Alias registration: no-op, conflict, replace, validation, scope
- Resolution through the database (alias precedence, key normalization)
- Natureza merge, including ledger replay when the inventory flag changes
- CFOP catalog descriptions
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from fiscal_kernel.domain.movement import (
    ClassificationSource,
    ClassificationStatus,
    Direction,
    LedgerStatus,
    MovementDescriptor,
    UnclassifiedMovement,
    UnclassifiedReason,
)
from fiscal_kernel.exceptions import (
    AmbiguousAliasError,
    CompanyNotFoundError,
    CompanyScopeError,
    NaturezaMergeError,
    NaturezaNotFoundError,
)
from fiscal_kernel.models.classification import (
    CfopRule,
    NaturezaOperacao,
    NaturezaOperacaoAlias,
)
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_services.classification_service import ClassificationService
from fiscal_services.ledger_service import LedgerService


@pytest.fixture
def service(session, settings):
    return ClassificationService(session, settings)


def _movement(session, company_id, natureza_id, sequence=1):
    record = MovementRecord(
        company_id=company_id,
        date=date(2025, 1, 10),
        sequence=sequence,
        direction=Direction.OUT.value,
        cfop_code="5102",
        qty_native=Decimal("1"),
        total_value=Decimal("100"),
        natureza_operacao_id=natureza_id,
        classification_status=ClassificationStatus.CLASSIFIED.value,
        dre_include=False,
        flags=[],
    )
    session.add(record)
    session.flush()
    return record


class TestCreateNatureza:
    def test_sign_defaults_from_category(self, service, company_id):
        devolucao = service.create_natureza(
            company_id, "Devolução de venda", dre_include=True, dre_category="RETURN"
        )
        venda = service.create_natureza(
            company_id, "Venda", dre_include=True, dre_category="REVENUE"
        )
        other = service.create_natureza(company_id, "Remessa", dre_category="SOMETHING_ELSE")

        assert devolucao.dre_sign == -1
        assert venda.dre_sign == 1
        assert other.dre_sign == 1

    def test_explicit_sign_wins(self, service, company_id):
        natureza = service.create_natureza(
            company_id, "Bonificação", dre_include=True, dre_category="REVENUE", dre_sign=-1
        )
        assert natureza.dre_sign == -1

    def test_invalid_sign(self, service, company_id):
        with pytest.raises(ValueError):
            service.create_natureza(company_id, "X", dre_sign=2)

    def test_name_is_sanitized_and_descricao_normalized(self, service, company_id):
        natureza = service.create_natureza(company_id, "  VENDA   DE MERCADORIA ")

        assert natureza.name == "VENDA DE MERCADORIA"
        assert natureza.descricao == "Venda de Mercadoria"
        assert natureza.display_label == "Venda de Mercadoria"
        assert service.find_natureza_by_name(company_id, "VENDA DE  MERCADORIA").id == natureza.id

    def test_blank_name(self, service, company_id):
        with pytest.raises(ValueError):
            service.create_natureza(company_id, "   ")

    def test_unknown_company(self, service):
        with pytest.raises(CompanyNotFoundError):
            service.create_natureza(uuid4(), "Venda")

    def test_logged(self, service, company_id, captured_logs):
        service.create_natureza(company_id, "Venda", dre_category="REVENUE")

        records = [r for r in captured_logs() if r["message"] == "natureza_created"]
        assert records and records[0]["dre_sign"] == 1
        assert records[0]["natureza_name"] == "Venda"

    def test_dre_natureza_needs_a_category(self, service, company_id):
        with pytest.raises(ValueError):
            service.create_natureza(company_id, "Venda de serviço", dre_include=True)
        with pytest.raises(ValueError):
            service.create_natureza(company_id, "Venda de serviço", dre_include=True,
                                    dre_category="  ")


class TestCfopRules:
    def test_upsert_repoints_existing_rule(self, service, company_id, standard_naturezas):
        service.upsert_cfop_rule(company_id, "5102", "OUT", standard_naturezas["devolucao"])

        rules = service.session.execute(
            select(CfopRule).where(CfopRule.company_id == company_id, CfopRule.cfop_code == "5102")
        ).scalars().all()
        assert len(rules) == 1
        assert rules[0].natureza_operacao_id == standard_naturezas["devolucao"]

    def test_unknown_natureza(self, service, company_id):
        with pytest.raises(NaturezaNotFoundError):
            service.upsert_cfop_rule(company_id, "5102", Direction.OUT, uuid4())

    def test_foreign_natureza(self, service, other_company_id, standard_naturezas):
        with pytest.raises(CompanyScopeError):
            service.upsert_cfop_rule(
                other_company_id, "5102", Direction.OUT, standard_naturezas["venda"]
            )


class TestAliases:
    def test_register_stores_normalized_key(self, service, company_id, standard_naturezas):
        alias = service.register_alias(
            company_id, "  Venda  DE Mercadoria ", "5102", Direction.OUT, False,
            standard_naturezas["venda"],
        )

        assert alias.nat_op_key == "venda de mercadoria"
        assert alias.nat_op_raw == "Venda DE Mercadoria"

    def test_same_target_is_a_noop(self, service, company_id, standard_naturezas):
        first = service.register_alias(
            company_id, "Venda", "5102", "OUT", False, standard_naturezas["venda"]
        )
        second = service.register_alias(
            company_id, "VENDA", "5102", "OUT", False, standard_naturezas["venda"]
        )

        assert first.id == second.id

    def test_conflicting_target_raises(self, service, company_id, standard_naturezas):
        service.register_alias(company_id, "Venda", "5102", "OUT", False, standard_naturezas["venda"])

        with pytest.raises(AmbiguousAliasError):
            service.register_alias(
                company_id, "venda", "5102", "OUT", False, standard_naturezas["devolucao"]
            )

    def test_replace_repoints(self, service, company_id, standard_naturezas):
        service.register_alias(company_id, "Venda", "5102", "OUT", False, standard_naturezas["venda"])

        alias = service.register_alias(
            company_id, "venda", "5102", "OUT", False, standard_naturezas["devolucao"], replace=True
        )

        assert alias.natureza_operacao_id == standard_naturezas["devolucao"]
        count = len(service.session.execute(select(NaturezaOperacaoAlias)).scalars().all())
        assert count == 1

    def test_self_issued_is_a_separate_identity(self, service, company_id, standard_naturezas):
        service.register_alias(company_id, "Devolução", "1202", "IN", False, standard_naturezas["compra"])
        service.register_alias(company_id, "Devolução", "1202", "IN", True, standard_naturezas["devolucao"])

        count = len(service.session.execute(select(NaturezaOperacaoAlias)).scalars().all())
        assert count == 2

    @pytest.mark.parametrize("nat_op,cfop", [("  ", "5102"), ("Venda", None), ("Venda", " ")])
    def test_requires_text_and_cfop(self, service, company_id, standard_naturezas, nat_op, cfop):
        with pytest.raises(ValueError):
            service.register_alias(company_id, nat_op, cfop, "OUT", False, standard_naturezas["venda"])

    def test_foreign_target(self, service, other_company_id, standard_naturezas):
        with pytest.raises(CompanyScopeError):
            service.register_alias(
                other_company_id, "Venda", "5102", "OUT", False, standard_naturezas["venda"]
            )


class TestResolve:
    def test_cfop_rule(self, service, company_id, standard_naturezas, make_line):
        result = service.resolve(
            make_line(company_id, cfop_code="5102", direction=Direction.OUT, nat_op="Venda")
        )

        assert isinstance(result, MovementDescriptor)
        assert result.natureza_operacao_id == standard_naturezas["venda"]
        assert result.source is ClassificationSource.CFOP_RULE
        assert result.dre_category == "REVENUE"
        assert result.dre_label == "Receita de vendas"

    def test_alias_beats_rule_regardless_of_case(
        self, service, company_id, standard_naturezas, make_line
    ):
        service.register_alias(
            company_id, "Devolução de venda", "5102", "OUT", False, standard_naturezas["devolucao"]
        )

        result = service.resolve(
            make_line(
                company_id, cfop_code="5102", direction=Direction.OUT,
                nat_op="  DEVOLUÇÃO  de VENDA",
            )
        )

        assert result.natureza_operacao_id == standard_naturezas["devolucao"]
        assert result.source is ClassificationSource.ALIAS
        assert result.dre_sign == -1

    def test_rule_for_other_direction_does_not_match(
        self, service, company_id, standard_naturezas, make_line
    ):
        result = service.resolve(make_line(company_id, cfop_code="5102", direction=Direction.IN))

        assert isinstance(result, UnclassifiedMovement)
        assert result.reason is UnclassifiedReason.NO_RULE

    def test_other_company_rules_are_invisible(
        self, service, other_company_id, standard_naturezas, make_line
    ):
        result = service.resolve(make_line(other_company_id, cfop_code="1102"))

        assert isinstance(result, UnclassifiedMovement)

    def test_unknown_company(self, service, make_line):
        with pytest.raises(CompanyNotFoundError):
            service.resolve(make_line(uuid4()))


class TestMerge:
    def test_moves_everything_to_target(self, service, company_id, standard_naturezas, session):
        duplicate_id = service.create_natureza(
            company_id, "VENDA MERCADORIA", dre_include=False, dre_category=None
        ).id
        service.upsert_cfop_rule(company_id, "5405", "OUT", duplicate_id)
        service.register_alias(company_id, "Venda merc.", "5102", "OUT", False, duplicate_id)
        record = _movement(session, company_id, duplicate_id)

        target = service.merge_naturezas(company_id, standard_naturezas["venda"], [duplicate_id])

        assert target.id == standard_naturezas["venda"]
        assert session.get(NaturezaOperacao, duplicate_id) is None
        rule = session.execute(select(CfopRule).where(CfopRule.cfop_code == "5405")).scalar_one()
        assert rule.natureza_operacao_id == target.id
        alias = session.execute(select(NaturezaOperacaoAlias)).scalar_one()
        assert alias.natureza_operacao_id == target.id

        session.refresh(record)
        assert record.natureza_operacao_id == target.id
        assert record.dre_include is True
        assert record.dre_category == "REVENUE"
        assert record.dre_label == "Receita de vendas"
        assert record.dre_sign == 1

    def test_inventory_flag_follows_target_and_ledger_is_replayed(
        self, service, company_id, product_id, standard_naturezas, session
    ):
        consignacao_id = service.create_natureza(
            company_id, "Entrada em consignação", affects_inventory=False
        ).id
        record = _movement(session, company_id, consignacao_id)
        record.direction = Direction.IN.value
        record.product_id = product_id
        record.unit = "SC"
        record.qty_native = record.sc_equivalent = Decimal("4")
        record.total_value = Decimal("400")
        record.ledger_status = LedgerStatus.NOT_COSTED.value
        session.flush()
        record_id = record.id

        service.merge_naturezas(company_id, standard_naturezas["compra"], [consignacao_id])

        merged = session.get(MovementRecord, record_id)
        assert merged.affects_inventory is True
        assert merged.ledger_status == LedgerStatus.APPLIED.value
        balance = LedgerService(session, service.settings).current_balance(company_id, product_id)
        assert balance.sc_equivalent == Decimal("4")
        assert balance.total_value == Decimal("400")

    def test_records_leaving_the_ledger_are_replayed_out(
        self, service, company_id, product_id, standard_naturezas, session
    ):
        remessa_id = service.create_natureza(
            company_id, "Remessa para armazém", affects_inventory=False
        ).id
        record = _movement(session, company_id, standard_naturezas["compra"])
        record.direction = Direction.IN.value
        record.product_id = product_id
        record.unit = "SC"
        record.qty_native = record.sc_equivalent = Decimal("4")
        record.total_value = Decimal("400")
        record.affects_inventory = True
        session.flush()
        record_id = record.id
        ledger = LedgerService(session, service.settings)
        ledger.replay_product(company_id, product_id)
        assert ledger.current_balance(company_id, product_id).sc_equivalent == Decimal("4")

        service.merge_naturezas(company_id, remessa_id, [standard_naturezas["compra"]])

        merged = session.get(MovementRecord, record_id)
        assert merged.affects_inventory is False
        assert merged.ledger_status == LedgerStatus.NOT_COSTED.value
        balance = ledger.current_balance(company_id, product_id)
        assert balance.sc_equivalent == Decimal("0")
        assert ledger.kardex(company_id, product_id) == []

    def test_requires_sources(self, service, company_id, standard_naturezas):
        with pytest.raises(NaturezaMergeError):
            service.merge_naturezas(company_id, standard_naturezas["venda"], [])

    def test_target_cannot_be_a_source(self, service, company_id, standard_naturezas):
        with pytest.raises(NaturezaMergeError):
            service.merge_naturezas(
                company_id, standard_naturezas["venda"],
                [standard_naturezas["compra"], standard_naturezas["venda"]],
            )

    def test_unknown_source_writes_nothing(self, service, company_id, standard_naturezas, session):
        with pytest.raises(NaturezaNotFoundError):
            service.merge_naturezas(
                company_id, standard_naturezas["venda"], [standard_naturezas["compra"], uuid4()]
            )

        assert session.get(NaturezaOperacao, standard_naturezas["compra"]) is not None

    def test_logged(self, service, company_id, standard_naturezas, captured_logs):
        service.merge_naturezas(
            company_id, standard_naturezas["venda"], [standard_naturezas["devolucao"]]
        )

        merged = [r for r in captured_logs() if r["message"] == "naturezas_merged"]
        assert merged[0]["rules_moved"] == 1


class TestCatalog:
    def test_known_code(self, service):
        assert service.describe_cfop("5102") == (
            "5102 - Venda de mercadoria adquirida ou recebida de terceiros"
        )

    def test_unknown_code(self, service):
        assert service.describe_cfop("9999") == "9999"

    def test_default_direction(self, service):
        assert service.default_direction("6102") is Direction.OUT
        assert service.default_direction("2102") is Direction.IN
