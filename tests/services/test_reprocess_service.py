"""
Tests for ReprocessService.

Covers:
- Dry-run reports without writing; commit rewrites snapshots and replays
- Batch row with params, summary and samples
- since / only_unclassified filters, batch size paging, sample limit
- Cancelled records excluded
- Ambiguous alias counted as failed with a warning
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from fiscal_kernel.db.engine import session_scope
from fiscal_kernel.domain.movement import (
    ClassificationStatus,
    Direction,
    LedgerStatus,
    NaturezaView,
)
from fiscal_kernel.exceptions import CompanyNotFoundError
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_kernel.models.reprocess import ReprocessBatch, ReprocessMode
from fiscal_kernel.selectors.classification_selector import ClassificationSelector
from fiscal_services.classification_service import ClassificationService
from fiscal_services.import_service import DocumentImportService
from fiscal_services.ledger_service import LedgerService
from fiscal_services.reprocess_service import ReprocessService


@pytest.fixture
def unruled_purchases(session_factory, settings, standard_naturezas, company_id, product_id,
                      make_line):
    """Two purchases under CFOP 1949, which has no rule yet."""
    importer = DocumentImportService(session_factory, settings=settings)
    importer.import_lines([
        make_line(company_id, cfop_code="1949", product_id=product_id, date_=date(2025, 1, day),
                  source_ref=f"NF-{day}#1")
        for day in (5, 20)
    ])


def _add_rule_for_1949(session_factory, settings, natureza_id, company_id):
    with session_scope(session_factory) as s:
        ClassificationService(s, settings).upsert_cfop_rule(
            company_id, "1949", Direction.IN, natureza_id
        )


def _run(session_factory, settings, company_id, **kwargs):
    with session_scope(session_factory) as s:
        return ReprocessService(s, settings).reprocess_company(company_id, **kwargs)


def _records(session_factory):
    with session_scope(session_factory) as s:
        return s.execute(select(MovementRecord).order_by(MovementRecord.sequence)).scalars().all()


class TestModes:
    def test_dry_run_changes_nothing(self, session_factory, settings, company_id, product_id,
                                     standard_naturezas, unruled_purchases):
        _add_rule_for_1949(session_factory, settings, standard_naturezas["compra"], company_id)

        result = _run(session_factory, settings, company_id)

        assert result.mode is ReprocessMode.DRY_RUN
        assert result.stats.scanned == 2
        assert result.stats.reclassified == 2
        assert result.replayed_products == []
        assert len(result.samples) == 2
        assert result.samples[0]["before"]["classification_status"] == "UNCLASSIFIED"
        assert result.samples[0]["after"]["natureza_operacao_id"] == str(standard_naturezas["compra"])
        assert {r.classification_status for r in _records(session_factory)} == {
            ClassificationStatus.UNCLASSIFIED.value
        }

    def test_commit_reclassifies_and_replays(self, session_factory, settings, company_id,
                                             product_id, standard_naturezas, unruled_purchases):
        _add_rule_for_1949(session_factory, settings, standard_naturezas["compra"], company_id)

        result = _run(session_factory, settings, company_id, mode="commit")

        assert result.replayed_products == [product_id]
        records = _records(session_factory)
        assert {r.natureza_operacao_id for r in records} == {standard_naturezas["compra"]}
        assert {r.ledger_status for r in records} == {LedgerStatus.APPLIED.value}
        with session_scope(session_factory) as s:
            balance = LedgerService(s, settings).current_balance(company_id, product_id)
        assert balance.sc_equivalent == Decimal("20")
        assert balance.total_value == Decimal("2000")

    def test_second_commit_finds_nothing(self, session_factory, settings, company_id,
                                         standard_naturezas, unruled_purchases):
        _add_rule_for_1949(session_factory, settings, standard_naturezas["compra"], company_id)
        _run(session_factory, settings, company_id, mode=ReprocessMode.COMMIT)

        result = _run(session_factory, settings, company_id, mode=ReprocessMode.COMMIT)

        assert result.stats.unchanged == 2
        assert result.stats.reclassified == 0
        assert result.replayed_products == []

    def test_retargeted_rule_leaves_ledger(self, session_factory, settings, company_id,
                                           product_id, standard_naturezas, make_line):
        importer = DocumentImportService(session_factory, settings=settings)
        importer.import_lines([make_line(company_id, product_id=product_id)])
        with session_scope(session_factory) as s:
            svc = ClassificationService(s, settings)
            consignment = svc.create_natureza(company_id, "Entrada em consignação",
                                              affects_inventory=False)
            svc.upsert_cfop_rule(company_id, "1102", Direction.IN, consignment.id)

        result = _run(session_factory, settings, company_id, mode="commit")

        assert result.replayed_products == [product_id]
        [record] = _records(session_factory)
        assert record.ledger_status == LedgerStatus.NOT_COSTED.value
        with session_scope(session_factory) as s:
            balance = LedgerService(s, settings).current_balance(company_id, product_id)
        assert balance.sc_equivalent == Decimal("0")


class TestBatchRow:
    def test_row_records_params_and_summary(self, session_factory, settings, company_id,
                                            unruled_purchases):
        result = _run(session_factory, settings, company_id, batch_size=1,
                      only_unclassified=True)

        with session_scope(session_factory) as s:
            batch = s.get(ReprocessBatch, result.batch_id)
            assert batch.status == "COMPLETED"
            assert batch.mode == "dry-run"
            assert batch.params == {
                "mode": "dry-run",
                "batch_size": 1,
                "since": None,
                "only_unclassified": True,
            }
            assert batch.summary["scanned"] == 2
            assert batch.summary["unchanged"] == 2
            assert batch.summary["samples"] == []
            assert batch.finished_at is not None

    def test_logged_with_batch_id(self, session_factory, settings, company_id, captured_logs):
        result = _run(session_factory, settings, company_id)

        completed = [r for r in captured_logs() if r["message"] == "reprocess_completed"]
        assert completed[0]["batch_id"] == str(result.batch_id)

    def test_unknown_company(self, session_factory, settings):
        with pytest.raises(CompanyNotFoundError):
            _run(session_factory, settings, uuid4())


class TestFilters:
    def test_since(self, session_factory, settings, company_id, standard_naturezas,
                   unruled_purchases):
        _add_rule_for_1949(session_factory, settings, standard_naturezas["compra"], company_id)

        result = _run(session_factory, settings, company_id, since=date(2025, 1, 10))

        assert result.stats.scanned == 1
        assert result.samples[0]["source_ref"] == "NF-20#1"

    def test_only_unclassified(self, session_factory, settings, company_id, product_id,
                               standard_naturezas, unruled_purchases, make_line):
        DocumentImportService(session_factory, settings=settings).import_lines(
            [make_line(company_id, product_id=product_id, date_=date(2025, 1, 25))]
        )

        everything = _run(session_factory, settings, company_id)
        unclassified = _run(session_factory, settings, company_id, only_unclassified=True)

        assert everything.stats.scanned == 3
        assert unclassified.stats.scanned == 2

    def test_cancelled_records_are_skipped(self, session_factory, company_id, settings,
                                           unruled_purchases):
        with session_scope(session_factory) as s:
            s.execute(update(MovementRecord).values(is_cancelled=True))

        result = _run(session_factory, settings, company_id)

        assert result.stats.scanned == 0

    def test_sample_limit(self, session_factory, settings, company_id, standard_naturezas,
                          unruled_purchases):
        _add_rule_for_1949(session_factory, settings, standard_naturezas["compra"], company_id)
        limited = replace(settings, reprocess=replace(settings.reprocess, sample_limit=1))

        result = _run(session_factory, limited, company_id, batch_size=1)

        assert result.stats.reclassified == 2
        assert len(result.samples) == 1


class TestFailures:
    def test_ambiguous_alias_becomes_a_warning(self, session_factory, settings, company_id,
                                               unruled_purchases, monkeypatch):
        view = NaturezaView(id=uuid4(), name="X", dre_include=False, dre_category=None,
                            dre_label=None, dre_sign=1)
        monkeypatch.setattr(ClassificationSelector, "find_aliases", lambda self, *a: (view, view))

        result = _run(session_factory, settings, company_id, mode="commit")

        assert result.stats.failed == 2
        assert result.stats.scanned == 2
        assert len(result.warnings) == 2
        assert result.warnings[0].startswith("NF-")
        with session_scope(session_factory) as s:
            batch = s.get(ReprocessBatch, result.batch_id)
            assert batch.status == "COMPLETED"
            assert len(batch.warnings) == 2
