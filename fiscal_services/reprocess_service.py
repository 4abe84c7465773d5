"""
ReprocessService -- re-run classification over stored movements.

Responsibility:
    After naturezas, aliases or CFOP rules change, re-resolve a company's
    movement records in batches and report (dry-run) or apply (commit) the
    differences.  Commit mode rewrites the classification snapshots and
    replays the ledgers of every product whose costable set changed.

Architecture position:
    Services -- stateful orchestration.  Flush-only.

Invariants enforced:
    - Every run leaves a ReprocessBatch row with its parameters, stats,
      warnings and a bounded sample of changes.
    - Dry-run never touches movement records or ledgers.
    - Batch size is clamped to [1, reprocess.max_batch_size].
    - Cancelled records are never reprocessed.

Failure modes:
    - CompanyNotFoundError for an unknown company.
    - AmbiguousAliasError on one record counts as ``failed`` and becomes a
      warning; the run continues.
    - Any other error marks the batch FAILED and propagates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_config import FiscalSettings, get_active_config
from fiscal_engines.classification import resolve_classification
from fiscal_kernel.domain.movement import (
    ClassificationStatus,
    Direction,
    DocumentLine,
    LedgerStatus,
    MovementDescriptor,
    UnclassifiedReason,
)
from fiscal_kernel.exceptions import AmbiguousAliasError, CompanyNotFoundError
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.models.company import Company, Product
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_kernel.models.reprocess import ReprocessBatch, ReprocessMode, ReprocessStatus
from fiscal_kernel.selectors.classification_selector import ClassificationSelector
from fiscal_kernel.services.base import BaseService
from fiscal_services.ledger_service import LedgerService

logger = get_logger("services.reprocess")


@dataclass
class ReprocessStats:
    scanned: int = 0
    reclassified: int = 0
    unchanged: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "reclassified": self.reclassified,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class ReprocessResult:
    batch_id: UUID
    mode: ReprocessMode
    stats: ReprocessStats
    samples: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    replayed_products: list[UUID] = field(default_factory=list)


_SNAPSHOT_FIELDS = (
    "classification_status",
    "unclassified_reason",
    "natureza_operacao_id",
    "classification_source",
    "dre_include",
    "dre_category",
    "dre_label",
    "dre_sign",
    "affects_inventory",
)


def _line_of(record: MovementRecord) -> DocumentLine:
    return DocumentLine(
        company_id=record.company_id,
        cfop_code=record.cfop_code,
        direction=Direction(record.direction),
        nat_op=record.nat_op,
        is_self_issued_entrada=record.is_self_issued_entrada,
        date=record.date,
        qty_native=record.qty_native,
        unit=record.unit,
        total_value=record.total_value,
        product_id=record.product_id,
        source_ref=record.source_ref,
        invoice_item_id=record.invoice_item_id,
    )


def _snapshot_of(record: MovementRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in _SNAPSHOT_FIELDS}


def _printable(snapshot: dict[str, Any]) -> dict[str, Any]:
    return {
        key: str(value) if isinstance(value, UUID) else value
        for key, value in snapshot.items()
    }


class ReprocessService(BaseService):
    def __init__(self, session: Session, settings: FiscalSettings | None = None):
        super().__init__(session)
        self.settings = settings or get_active_config()
        self.selector = ClassificationSelector(session)

    def _target_snapshot(
        self, record: MovementRecord, result, product_units: dict[UUID, str]
    ) -> dict[str, Any]:
        if not isinstance(result, MovementDescriptor):
            return {
                "classification_status": ClassificationStatus.UNCLASSIFIED.value,
                "unclassified_reason": result.reason.value,
                "natureza_operacao_id": None,
                "classification_source": None,
                "dre_include": False,
                "dre_category": None,
                "dre_label": None,
                "dre_sign": 1,
                "affects_inventory": False,
            }

        reason = None
        if record.product_id is None:
            reason = UnclassifiedReason.UNMAPPED_PRODUCT.value
        elif record.unit != product_units.get(record.product_id):
            reason = UnclassifiedReason.UNSUPPORTED_UNIT.value
        return {
            "classification_status": ClassificationStatus.CLASSIFIED.value,
            "unclassified_reason": reason,
            "natureza_operacao_id": result.natureza_operacao_id,
            "classification_source": result.source.value,
            "dre_include": result.dre_include,
            "dre_category": result.dre_category,
            "dre_label": result.dre_label,
            "dre_sign": result.dre_sign,
            "affects_inventory": result.affects_inventory,
        }

    def _page(
        self,
        company_id: UUID,
        after_id: UUID | None,
        batch_size: int,
        since: date | None,
        only_unclassified: bool,
    ) -> list[MovementRecord]:
        stmt = select(MovementRecord).where(
            MovementRecord.company_id == company_id,
            MovementRecord.is_cancelled.is_(False),
        )
        if since is not None:
            stmt = stmt.where(MovementRecord.date >= since)
        if only_unclassified:
            stmt = stmt.where(
                MovementRecord.classification_status
                == ClassificationStatus.UNCLASSIFIED.value
            )
        if after_id is not None:
            stmt = stmt.where(MovementRecord.id > after_id)
        return list(
            self.session.execute(stmt.order_by(MovementRecord.id).limit(batch_size)).scalars()
        )

    def reprocess_company(
        self,
        company_id: UUID,
        mode: ReprocessMode | str = ReprocessMode.DRY_RUN,
        batch_size: int | None = None,
        since: date | None = None,
        only_unclassified: bool = False,
    ) -> ReprocessResult:
        """
        Re-resolve the company's movement records.

        Returns the stats, the bounded sample of changes and, in commit
        mode, the products whose ledgers were replayed.
        """
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        mode = ReprocessMode(mode)
        size = self.settings.reprocess.clamp(batch_size)
        sample_limit = self.settings.reprocess.sample_limit

        batch = ReprocessBatch(
            company_id=company_id,
            mode=mode.value,
            status=ReprocessStatus.RUNNING.value,
            params={
                "mode": mode.value,
                "batch_size": size,
                "since": since.isoformat() if since else None,
                "only_unclassified": bool(only_unclassified),
            },
            warnings=[],
            started_at=datetime.now(timezone.utc),
        )
        self.session.add(batch)
        self.session.flush()

        stats = ReprocessStats()
        samples: list[dict[str, Any]] = []
        warnings: list[str] = []
        affected: set[UUID] = set()
        product_units = dict(
            self.session.execute(
                select(Product.id, Product.unit).where(Product.company_id == company_id)
            ).all()
        )

        with LogContext.bind(company_id=company_id, batch_id=batch.id):
            try:
                after_id = None
                while True:
                    page = self._page(company_id, after_id, size, since, only_unclassified)
                    if not page:
                        break
                    after_id = page[-1].id

                    for record in page:
                        stats.scanned += 1
                        try:
                            result = resolve_classification(_line_of(record), self.selector)
                        except AmbiguousAliasError as exc:
                            stats.failed += 1
                            warnings.append(f"{record.source_ref or record.id}: {exc}")
                            continue

                        before = _snapshot_of(record)
                        after = self._target_snapshot(record, result, product_units)
                        if before == after:
                            stats.unchanged += 1
                            continue

                        stats.reclassified += 1
                        if len(samples) < sample_limit:
                            samples.append(
                                {
                                    "movement_id": str(record.id),
                                    "source_ref": record.source_ref,
                                    "before": _printable(before),
                                    "after": _printable(after),
                                }
                            )
                        if mode is ReprocessMode.COMMIT:
                            was_costable = record.is_costable
                            for name, value in after.items():
                                setattr(record, name, value)
                            if not record.is_costable:
                                record.ledger_status = LedgerStatus.NOT_COSTED.value
                                record.flags = []
                            elif not was_costable:
                                record.ledger_status = LedgerStatus.PENDING.value
                            if record.product_id is not None and (
                                was_costable or record.is_costable
                            ):
                                affected.add(record.product_id)

                    if mode is ReprocessMode.COMMIT:
                        self.session.flush()
                    logger.debug(
                        "reprocess_page_done",
                        extra={"scanned": stats.scanned, "reclassified": stats.reclassified},
                    )

                replayed = sorted(affected, key=str)
                ledgers = LedgerService(self.session, self.settings)
                for product_id in replayed:
                    ledgers.replay_product(company_id, product_id)
            except Exception:
                batch.status = ReprocessStatus.FAILED.value
                batch.summary = stats.as_dict()
                batch.warnings = warnings
                batch.finished_at = datetime.now(timezone.utc)
                self.session.flush()
                logger.exception("reprocess_failed", extra={"stats": stats.as_dict()})
                raise

            batch.status = ReprocessStatus.COMPLETED.value
            batch.summary = {**stats.as_dict(), "samples": samples}
            batch.warnings = warnings
            batch.finished_at = datetime.now(timezone.utc)
            self.session.flush()

            logger.info(
                "reprocess_completed",
                extra={
                    "mode": mode.value,
                    "stats": stats.as_dict(),
                    "replayed_products": len(replayed),
                    "warnings": len(warnings),
                },
            )

        return ReprocessResult(
            batch_id=batch.id,
            mode=mode,
            stats=stats,
            samples=samples,
            warnings=warnings,
            replayed_products=replayed,
        )
