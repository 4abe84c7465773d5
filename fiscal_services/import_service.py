"""
Document import -- from invoice items to classified, costed movements.

Responsibility:
    - ProductMappingService links invoice items to products, either through
      an existing InvoiceItemProductMapping or a matching
      InvoiceItemMappingRule (description + unit keys).
    - lines_from_invoice() turns a stored invoice into DocumentLines with
      quantities in the product's declared unit.
    - DocumentImportService classifies each line, persists its
      MovementRecord and folds costable movements into the product ledger,
      one transaction per line.
    - cancel_invoice() takes a cancelled document out of the ledger and the
      DRE by replaying the affected products.

Architecture position:
    Services -- stateful orchestration.  DocumentImportService owns its
    transactions (one ``session_scope`` per line); the other helpers are
    flush-only.

Invariants enforced:
    - No single line aborts a batch: every line gets an outcome.
    - Lines of one product are serialized by ProductLockRegistry; the
      sequence is allocated inside the same transaction that persists the
      record, so (date, sequence) order matches commit order per company.
    - A line is costed only when classified, mapped to a product, in a
      convertible unit and its natureza affects inventory.
    - Cancelled invoices yield no lines.
    - An invoice item is imported once: while it has a live movement record
      a second import reports DUPLICATE and writes nothing.

Failure modes (reported per line, never raised out of import_lines):
    - AmbiguousAliasError -> REJECTED (configuration fault).
    - OutOfOrderReplayError -> REJECTED (record kept; folded by next replay).
    - UnsupportedUnitError -> UNCLASSIFIED (UNSUPPORTED_UNIT).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from fiscal_config import FiscalSettings, get_active_config
from fiscal_engines.classification import resolve_classification
from fiscal_engines.units import ProductUnit, convert_quantity, normalize_unit, to_sc_equivalent
from fiscal_kernel.db.engine import session_scope
from fiscal_kernel.db.types import round_ledger, to_decimal
from fiscal_kernel.domain.movement import (
    ClassificationStatus,
    Direction,
    DocumentLine,
    LedgerStatus,
    LineOutcome,
    MovementDescriptor,
    UnclassifiedMovement,
    UnclassifiedReason,
)
from fiscal_kernel.domain.natop import sanitize_nat_op, strip_key
from fiscal_kernel.exceptions import (
    AmbiguousAliasError,
    CompanyScopeError,
    DocumentNotFoundError,
    FiscalKernelError,
    OutOfOrderReplayError,
    ProductNotFoundError,
    UnsupportedUnitError,
)
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.models.company import Product, ProductUnitConversion
from fiscal_kernel.models.documents import (
    Invoice,
    InvoiceItem,
    InvoiceItemMappingRule,
    InvoiceItemProductMapping,
)
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_kernel.selectors.classification_selector import ClassificationSelector
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.sequence_service import (
    SequenceService,
    movement_sequence_name,
)
from fiscal_services.ledger_service import LedgerService, ProductLockRegistry

logger = get_logger("services.import")


# ---------------------------------------------------------------------------
# Unit conversion against stored rules
# ---------------------------------------------------------------------------


def to_product_unit(
    session: Session,
    product: Product,
    qty: Any,
    unit: str | None,
    aliases: dict | None = None,
) -> Decimal:
    """
    Express ``qty`` of a document ``unit`` in the product's declared unit.

    Order: same unit; a ProductUnitConversion rule (product-specific before
    company-wide); the built-in SC/KG/FD dispatch.  A missing unit is taken
    to be the product's.

    Raises:
        UnsupportedUnitError: no rule and no built-in conversion applies.
    """
    quantity = to_decimal(qty)
    target = ProductUnit(product.unit)
    if sanitize_nat_op(unit) is None:
        return quantity

    source = normalize_unit(unit, aliases)
    if source is target:
        return quantity

    source_key = strip_key(unit)
    rules = session.execute(
        select(ProductUnitConversion).where(
            ProductUnitConversion.company_id == product.company_id,
            ProductUnitConversion.source_unit == source_key,
            ProductUnitConversion.target_unit == target.value,
            (ProductUnitConversion.product_id == product.id)
            | ProductUnitConversion.product_id.is_(None),
        )
    ).scalars().all()
    if rules:
        rule = min(rules, key=lambda r: r.product_id is None)
        return quantity * rule.multiplier

    if source is None:
        raise UnsupportedUnitError(unit, target.value)
    return convert_quantity(quantity, source, target)


# ---------------------------------------------------------------------------
# Product mapping
# ---------------------------------------------------------------------------


class ProductMappingService(BaseService):
    """Links invoice items to products."""

    def _require_product(self, company_id: UUID, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id), str(company_id))
        if product.company_id != company_id:
            raise CompanyScopeError("Product", str(product_id), str(company_id))
        return product

    def create_rule(
        self,
        company_id: UUID,
        product_id: UUID,
        description: str,
        unit: str | None = None,
        conversion_multiplier: Decimal | None = None,
    ) -> InvoiceItemMappingRule:
        """Create or update the rule for (description, unit)."""
        self._require_product(company_id, product_id)
        description_key = strip_key(description)
        if description_key is None:
            raise ValueError("mapping rule requires a description")
        unit_key = strip_key(unit) or ""
        multiplier = to_decimal(conversion_multiplier) if conversion_multiplier else None

        rule = self.session.execute(
            select(InvoiceItemMappingRule).where(
                InvoiceItemMappingRule.company_id == company_id,
                InvoiceItemMappingRule.description_key == description_key,
                InvoiceItemMappingRule.unit_key == unit_key,
            )
        ).scalar_one_or_none()
        if rule is None:
            rule = InvoiceItemMappingRule(
                company_id=company_id,
                description_key=description_key,
                unit_key=unit_key,
            )
            self.session.add(rule)
        rule.product_id = product_id
        rule.description_raw = sanitize_nat_op(description)
        rule.unit_raw = sanitize_nat_op(unit)
        rule.conversion_multiplier = multiplier
        self.session.flush()

        logger.info(
            "mapping_rule_saved",
            extra={
                "company_id": str(company_id),
                "product_id": str(product_id),
                "description_key": description_key,
                "unit_key": unit_key,
            },
        )
        return rule

    def find_rule(
        self, company_id: UUID, description: str | None, unit: str | None
    ) -> InvoiceItemMappingRule | None:
        description_key = strip_key(description)
        if description_key is None:
            return None
        unit_key = strip_key(unit) or ""
        candidates = self.session.execute(
            select(InvoiceItemMappingRule).where(
                InvoiceItemMappingRule.company_id == company_id,
                InvoiceItemMappingRule.description_key == description_key,
                InvoiceItemMappingRule.unit_key.in_({unit_key, ""}),
            )
        ).scalars().all()
        # exact unit first, then the unit-agnostic rule
        return min(candidates, key=lambda r: r.unit_key != unit_key, default=None)

    def map_item(
        self, item: InvoiceItem, company_id: UUID | None = None
    ) -> InvoiceItemProductMapping | None:
        """Existing mapping of ``item``, or a new one from a matching rule."""
        if item.mapping is not None:
            return item.mapping

        company_id = company_id or item.invoice.company_id
        rule = self.find_rule(company_id, item.description, item.unit)
        if rule is None:
            return None

        converted = (
            item.qty * rule.conversion_multiplier
            if rule.conversion_multiplier
            else None
        )
        mapping = InvoiceItemProductMapping(
            invoice_item_id=item.id,
            product_id=rule.product_id,
            converted_qty=converted,
        )
        item.mapping = mapping
        self.session.add(mapping)
        self.session.flush()

        logger.debug(
            "invoice_item_mapped",
            extra={
                "invoice_item_id": str(item.id),
                "product_id": str(rule.product_id),
                "rule_id": str(rule.id),
            },
        )
        return mapping


def lines_from_invoice(
    session: Session,
    invoice: Invoice,
    settings: FiscalSettings | None = None,
) -> list[DocumentLine]:
    """
    DocumentLines of a stored invoice, in line-number order.

    Quantities are converted to the mapped product's unit where possible;
    an unconvertible item keeps its document quantity and unit so the
    importer reports it as UNSUPPORTED_UNIT.
    """
    if invoice.is_cancelled:
        return []

    settings = settings or get_active_config()
    aliases = settings.units.as_mapping()
    mapper = ProductMappingService(session)
    direction = Direction(invoice.type)
    lines: list[DocumentLine] = []

    for item in sorted(invoice.items, key=lambda i: i.line_number):
        mapping = mapper.map_item(item, invoice.company_id)
        product = mapping.product if mapping is not None else None
        qty, unit = item.qty, item.unit

        if product is not None:
            if mapping.converted_qty is not None:
                qty, unit = mapping.converted_qty, product.unit
            else:
                try:
                    qty = to_product_unit(session, product, item.qty, item.unit, aliases)
                    unit = product.unit
                except UnsupportedUnitError:
                    logger.warning(
                        "invoice_item_unit_unsupported",
                        extra={
                            "invoice_item_id": str(item.id),
                            "unit": item.unit,
                            "product_unit": product.unit,
                        },
                    )

        lines.append(
            DocumentLine(
                company_id=invoice.company_id,
                cfop_code=item.cfop_code or invoice.cfop,
                direction=direction,
                nat_op=invoice.nat_op,
                is_self_issued_entrada=invoice.is_self_issued_entrada,
                date=invoice.emissao,
                qty_native=qty,
                unit=unit,
                total_value=item.gross,
                product_id=product.id if product is not None else None,
                source_ref=f"{invoice.chave}#{item.line_number}",
                invoice_item_id=item.id,
            )
        )
    return lines


# ---------------------------------------------------------------------------
# Batch import
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineResult:
    index: int
    source_ref: str | None
    outcome: LineOutcome
    movement_id: UUID | None = None
    reason: str | None = None
    flags: tuple[str, ...] = ()


@dataclass
class ImportReport:
    outcomes: list[LineResult] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        tally = Counter(r.outcome.value for r in self.outcomes)
        return {outcome.value: tally.get(outcome.value, 0) for outcome in LineOutcome}


class DocumentImportService:
    """
    Imports document lines, one transaction per line.

    Usage:
        service = DocumentImportService(get_session_factory(), locks)
        report = service.import_lines(lines)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: ProductLockRegistry | None = None,
        settings: FiscalSettings | None = None,
    ):
        self.session_factory = session_factory
        self.locks = locks or ProductLockRegistry()
        self.settings = settings or get_active_config()

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def import_lines(self, lines: Iterable[DocumentLine]) -> ImportReport:
        report = ImportReport()
        for index, line in enumerate(lines):
            report.outcomes.append(self._import_guarded(index, line))

        logger.info("import_batch_completed", extra={"counts": report.counts})
        return report

    def _import_guarded(self, index: int, line: DocumentLine) -> LineResult:
        with LogContext.bind(company_id=line.company_id, document_ref=line.source_ref):
            try:
                if line.product_id is None:
                    return self._import_one(index, line)
                with self.locks.hold(line.company_id, line.product_id):
                    return self._import_one(index, line)
            except AmbiguousAliasError as exc:
                logger.error(
                    "import_line_rejected",
                    extra={"reason": exc.code, "nat_op_key": exc.nat_op_key},
                )
                return LineResult(
                    index=index,
                    source_ref=line.source_ref,
                    outcome=LineOutcome.REJECTED,
                    reason=exc.code,
                )
            except FiscalKernelError as exc:
                logger.error("import_line_rejected", extra={"reason": exc.code})
                return LineResult(
                    index=index,
                    source_ref=line.source_ref,
                    outcome=LineOutcome.REJECTED,
                    reason=exc.code,
                )

    def _new_record(
        self,
        session: Session,
        line: DocumentLine,
        result: MovementDescriptor | UnclassifiedMovement,
        product: Product | None,
    ) -> MovementRecord:
        sequence = SequenceService(session).next_value(
            movement_sequence_name(line.company_id)
        )
        record = MovementRecord(
            company_id=line.company_id,
            invoice_item_id=line.invoice_item_id,
            source_ref=line.source_ref,
            product_id=line.product_id,
            date=line.date,
            sequence=sequence,
            direction=line.direction.value,
            cfop_code=sanitize_nat_op(line.cfop_code),
            nat_op=sanitize_nat_op(line.nat_op),
            is_self_issued_entrada=line.is_self_issued_entrada,
            qty_native=to_decimal(line.qty_native),
            unit=line.unit,
            sc_equivalent=to_decimal(0),
            total_value=to_decimal(line.total_value),
            flags=[],
        )
        if isinstance(result, MovementDescriptor):
            record.natureza_operacao_id = result.natureza_operacao_id
            record.classification_source = result.source.value
            record.dre_include = result.dre_include
            record.dre_category = result.dre_category
            record.dre_label = result.dre_label
            record.dre_sign = result.dre_sign
            record.affects_inventory = result.affects_inventory
            record.classification_status = ClassificationStatus.CLASSIFIED.value
        else:
            record.classification_status = ClassificationStatus.UNCLASSIFIED.value
            record.unclassified_reason = result.reason.value
            record.ledger_status = LedgerStatus.NOT_COSTED.value
        return record

    def _convert(self, session: Session, record: MovementRecord, product: Product) -> bool:
        """Express the record in the product unit; False when impossible."""
        try:
            qty = to_product_unit(
                session, product, record.qty_native, record.unit,
                self.settings.units.as_mapping(),
            )
        except UnsupportedUnitError:
            return False
        places = self.settings.ledger.decimal_places
        record.qty_native = round_ledger(qty, places)
        record.unit = product.unit
        record.sc_equivalent = round_ledger(to_sc_equivalent(qty, product.unit), places)
        return True

    def _import_one(self, index: int, line: DocumentLine) -> LineResult:
        with session_scope(self.session_factory) as session:
            product = None
            if line.product_id is not None:
                product = session.get(Product, line.product_id)
                if product is None:
                    raise ProductNotFoundError(str(line.product_id), str(line.company_id))
                if product.company_id != line.company_id:
                    raise CompanyScopeError(
                        "Product", str(line.product_id), str(line.company_id)
                    )

            if line.invoice_item_id is not None:
                existing = session.execute(
                    select(MovementRecord.id).where(
                        MovementRecord.company_id == line.company_id,
                        MovementRecord.invoice_item_id == line.invoice_item_id,
                        MovementRecord.is_cancelled.is_(False),
                    )
                ).scalars().first()
                if existing is not None:
                    logger.info(
                        "movement_already_imported",
                        extra={
                            "movement_id": str(existing),
                            "invoice_item_id": str(line.invoice_item_id),
                        },
                    )
                    return LineResult(
                        index=index,
                        source_ref=line.source_ref,
                        outcome=LineOutcome.DUPLICATE,
                        movement_id=existing,
                        reason="ALREADY_IMPORTED",
                    )

            result = resolve_classification(line, ClassificationSelector(session))
            record = self._new_record(session, line, result, product)
            session.add(record)
            converted = product is not None and self._convert(session, record, product)

            if isinstance(result, UnclassifiedMovement):
                session.flush()
                return self._result(index, line, record, LineOutcome.UNCLASSIFIED,
                                    result.reason.value)

            if not record.affects_inventory:
                # in the DRE only; product and unit do not matter
                record.ledger_status = LedgerStatus.NOT_COSTED.value
                session.flush()
                return self._result(index, line, record, LineOutcome.RECORDED)

            reason = None
            if product is None:
                reason = UnclassifiedReason.UNMAPPED_PRODUCT
            elif not converted:
                reason = UnclassifiedReason.UNSUPPORTED_UNIT
            if reason is not None:
                # classified for the DRE, kept out of the ledger
                record.unclassified_reason = reason.value
                record.ledger_status = LedgerStatus.NOT_COSTED.value
                session.flush()
                return self._result(index, line, record, LineOutcome.UNCLASSIFIED,
                                    reason.value)

            session.flush()
            try:
                step = LedgerService(session, self.settings).apply_movement(record)
            except OutOfOrderReplayError as exc:
                # record stays REJECTED and is folded in by the next replay
                return self._result(index, line, record, LineOutcome.REJECTED, exc.code)
            if step is not None and step.flags:
                return self._result(index, line, record, LineOutcome.FLAGGED,
                                    flags=tuple(f.value for f in step.flags))
            return self._result(index, line, record, LineOutcome.APPLIED)

    @staticmethod
    def _result(
        index: int,
        line: DocumentLine,
        record: MovementRecord,
        outcome: LineOutcome,
        reason: str | None = None,
        flags: tuple[str, ...] = (),
    ) -> LineResult:
        logger.info(
            "movement_imported",
            extra={
                "movement_id": str(record.id),
                "outcome": outcome.value,
                "reason": reason,
                "sequence": record.sequence,
            },
        )
        return LineResult(
            index=index,
            source_ref=line.source_ref,
            outcome=outcome,
            movement_id=record.id,
            reason=reason,
            flags=flags,
        )

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def import_invoice(self, company_id: UUID, chave: str) -> ImportReport:
        """Map, convert and import every line of a stored invoice."""
        with session_scope(self.session_factory) as session:
            invoice = _find_invoice(session, company_id, chave)
            lines = lines_from_invoice(session, invoice, self.settings)
        return self.import_lines(lines)

    def cancel_invoice(
        self, company_id: UUID, chave: str, reason: str | None = None
    ) -> list[UUID]:
        """
        Mark an invoice and its movement records cancelled and replay the
        ledgers of the products they touched.

        Returns the ids of the replayed products.  Cancelling twice is a
        no-op.
        """
        with session_scope(self.session_factory) as session:
            invoice = _find_invoice(session, company_id, chave)
            if invoice.is_cancelled:
                return []
            invoice.is_cancelled = True
            invoice.cancelled_at = datetime.now(timezone.utc)
            invoice.cancellation_reason = reason

            item_ids = [item.id for item in invoice.items]
            records = session.execute(
                select(MovementRecord).where(
                    MovementRecord.company_id == company_id,
                    MovementRecord.invoice_item_id.in_(item_ids),
                )
            ).scalars().all() if item_ids else []
            product_ids = sorted(
                {r.product_id for r in records if r.product_id is not None and r.is_costable},
                key=str,
            )
            for record in records:
                record.is_cancelled = True
                record.ledger_status = LedgerStatus.NOT_COSTED.value

            logger.info(
                "invoice_cancelled",
                extra={
                    "company_id": str(company_id),
                    "chave": chave,
                    "movements": len(records),
                    "products": len(product_ids),
                },
            )

        for product_id in product_ids:
            with self.locks.hold(company_id, product_id):
                with session_scope(self.session_factory) as session:
                    LedgerService(session, self.settings).replay_product(
                        company_id, product_id
                    )
        return product_ids


def _find_invoice(session: Session, company_id: UUID, chave: str) -> Invoice:
    invoice = session.execute(
        select(Invoice).where(Invoice.company_id == company_id, Invoice.chave == chave)
    ).scalar_one_or_none()
    if invoice is None:
        raise DocumentNotFoundError(chave, str(company_id))
    return invoice
