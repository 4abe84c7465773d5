"""
LedgerService -- persisted weighted-average inventory ledger.

Responsibility:
    Keep a LedgerCheckpoint (the cached fold state) and the kardex
    (LedgerEntry rows) of every company+product in step with its movement
    records, using the pure fold in ``fiscal_engines.ledger``.

Architecture position:
    Services -- stateful orchestration.  Flush-only: the caller owns the
    transaction (``session_scope``).

Invariants enforced:
    - The checkpoint is only a cache: replay_product() rebuilds it, and the
      kardex, from the opening and the costable movement records in
      canonical (date, sequence, id) order.
    - Writers of one product are serialized three ways: the in-process
      ProductLockRegistry, ``SELECT ... FOR UPDATE`` on the checkpoint row
      and a compare-and-swap on ``LedgerCheckpoint.version``.
    - A movement dated before the checkpoint's last applied date is
      REJECTED on incremental apply; the next full replay folds it in order.
    - An interrupted replay leaves ``is_replaying`` set together with the
      order key and digest of the movements it folded.  Resuming continues
      after that key only while those movements are unchanged, otherwise it
      replays from the opening.  Incremental applies finish that replay first.

Failure modes:
    - OutOfOrderReplayError (record marked REJECTED, then re-raised).
    - OptimisticLockError when the checkpoint version moved underneath.
    - OpeningAlreadyExistsError / InvalidOpeningError from set_opening().
    - ProductNotFoundError / CompanyScopeError for foreign ids.

Audit relevance:
    Every applied movement leaves a LedgerEntry with balances before and
    after.  Negative balances are flagged on the record and the entry and
    logged as ``ledger_negative_inventory``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fiscal_config import FiscalSettings, get_active_config
from fiscal_engines import ledger as ledger_engine
from fiscal_engines.ledger import (
    CostedMovement,
    LedgerLine,
    LedgerState,
    LedgerStep,
    OpeningBalance,
    ResumePoint,
    canonical_order,
    resume_index,
    resume_point,
)
from fiscal_engines.units import from_sc_equivalent, to_sc_equivalent
from fiscal_kernel.db.types import ZERO, round_ledger, to_decimal
from fiscal_kernel.domain.movement import (
    ClassificationStatus,
    Direction,
    LedgerStatus,
    MovementFlag,
)
from fiscal_kernel.exceptions import (
    CompanyScopeError,
    InvalidOpeningError,
    OpeningAlreadyExistsError,
    OptimisticLockError,
    OutOfOrderReplayError,
    ProductNotFoundError,
)
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.models.company import Product
from fiscal_kernel.models.inventory import (
    InventoryOpening,
    LedgerCheckpoint,
    LedgerEntry,
    MovementRecord,
)
from fiscal_kernel.selectors.inventory_selector import (
    InventorySelector,
    KardexLine,
    LedgerBalance,
)
from fiscal_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class ProductLockRegistry:
    """
    In-process keyed locks, one per (company_id, product_id).

    Locks are re-entrant so a holder may replay the product it is applying
    to.  Different products never contend.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[UUID, UUID], threading.RLock] = {}

    def lock_for(self, company_id: UUID, product_id: UUID) -> threading.RLock:
        key = (company_id, product_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, company_id: UUID, product_id: UUID) -> Iterator[None]:
        lock = self.lock_for(company_id, product_id)
        with lock:
            yield


@dataclass(frozen=True)
class ReplayOutcome:
    company_id: UUID
    product_id: UUID
    state: LedgerState
    applied: int
    flagged: int
    skipped: int
    total: int
    next_index: int
    completed: bool


def costed_movement(record: MovementRecord) -> CostedMovement:
    return CostedMovement(
        movement_id=record.id,
        date=record.date,
        sequence=record.sequence,
        direction=Direction(record.direction),
        qty_native=record.qty_native,
        sc_equivalent=record.sc_equivalent,
        total_value=record.total_value,
    )


class LedgerService(BaseService):
    """Checkpointed, replayable product ledgers."""

    def __init__(self, session: Session, settings: FiscalSettings | None = None):
        super().__init__(session)
        self.settings = settings or get_active_config()
        self.decimal_places = self.settings.ledger.decimal_places
        self.selector = InventorySelector(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def require_product(self, company_id: UUID, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id), str(company_id))
        if product.company_id != company_id:
            raise CompanyScopeError("Product", str(product_id), str(company_id))
        return product

    def _opening_balance(self, company_id: UUID, product_id: UUID) -> OpeningBalance | None:
        opening = self.selector.opening(company_id, product_id)
        if opening is None:
            return None
        return OpeningBalance(
            date=opening.date,
            qty_native=opening.qty_native or ZERO,
            sc_equivalent=opening.sc_equivalent,
            total_value=opening.total_value,
        )

    def _lock_checkpoint(self, company_id: UUID, product_id: UUID) -> LedgerCheckpoint | None:
        return self.session.execute(
            select(LedgerCheckpoint)
            .where(
                LedgerCheckpoint.company_id == company_id,
                LedgerCheckpoint.product_id == product_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _costable_records(self, company_id: UUID, product_id: UUID) -> list[MovementRecord]:
        return list(
            self.session.execute(
                select(MovementRecord)
                .where(
                    MovementRecord.company_id == company_id,
                    MovementRecord.product_id == product_id,
                    MovementRecord.classification_status
                    == ClassificationStatus.CLASSIFIED.value,
                    MovementRecord.affects_inventory.is_(True),
                    MovementRecord.unclassified_reason.is_(None),
                    MovementRecord.is_cancelled.is_(False),
                )
                .order_by(MovementRecord.date, MovementRecord.sequence, MovementRecord.id)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Checkpoint persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _state_of(checkpoint: LedgerCheckpoint) -> LedgerState:
        return LedgerState(
            company_id=checkpoint.company_id,
            product_id=checkpoint.product_id,
            qty_native=checkpoint.qty_native,
            sc_equivalent=checkpoint.sc_equivalent,
            total_value=checkpoint.total_value,
            last_applied_date=checkpoint.last_applied_date,
            movement_count=checkpoint.movement_count,
            seeded=checkpoint.seeded,
        )

    @staticmethod
    def _resume_point_of(checkpoint: LedgerCheckpoint) -> ResumePoint | None:
        if (
            not checkpoint.is_replaying
            or checkpoint.resume_after_date is None
            or checkpoint.replay_fingerprint is None
        ):
            return None
        return ResumePoint(
            after=(
                checkpoint.resume_after_date,
                checkpoint.resume_after_sequence,
                checkpoint.resume_after_movement_id,
            ),
            processed=checkpoint.replay_cursor,
            fingerprint=checkpoint.replay_fingerprint,
        )

    def _get_or_create_checkpoint(
        self, company_id: UUID, product_id: UUID
    ) -> LedgerCheckpoint:
        checkpoint = self._lock_checkpoint(company_id, product_id)
        if checkpoint is not None:
            return checkpoint

        state = ledger_engine.seed(
            company_id,
            product_id,
            self._opening_balance(company_id, product_id),
            decimal_places=self.decimal_places,
        )
        savepoint = self.session.begin_nested()
        try:
            checkpoint = LedgerCheckpoint(
                company_id=company_id,
                product_id=product_id,
                qty_native=state.qty_native,
                sc_equivalent=state.sc_equivalent,
                total_value=state.total_value,
                last_applied_date=state.last_applied_date,
                movement_count=0,
                seeded=state.seeded,
                replay_cursor=0,
                is_replaying=False,
                version=0,
            )
            self.session.add(checkpoint)
            self.session.flush()
            savepoint.commit()
            return checkpoint
        except IntegrityError:
            logger.debug(
                "ledger_checkpoint_race_retry",
                extra={"product_id": str(product_id)},
            )
            savepoint.rollback()
            checkpoint = self._lock_checkpoint(company_id, product_id)
            if checkpoint is None:
                raise
            return checkpoint

    def _write_checkpoint(
        self,
        checkpoint: LedgerCheckpoint,
        state: LedgerState,
        interrupted: bool = False,
        resume: ResumePoint | None = None,
    ) -> None:
        expected = checkpoint.version
        after_date, after_sequence, after_movement_id = (
            resume.after if resume is not None else (None, None, None)
        )
        result = self.session.execute(
            update(LedgerCheckpoint)
            .where(
                LedgerCheckpoint.id == checkpoint.id,
                LedgerCheckpoint.version == expected,
            )
            .values(
                qty_native=state.qty_native,
                sc_equivalent=state.sc_equivalent,
                total_value=state.total_value,
                last_applied_date=state.last_applied_date,
                movement_count=state.movement_count,
                seeded=state.seeded,
                replay_cursor=resume.processed if resume is not None else 0,
                resume_after_date=after_date,
                resume_after_sequence=after_sequence,
                resume_after_movement_id=after_movement_id,
                replay_fingerprint=resume.fingerprint if resume is not None else None,
                is_replaying=interrupted,
                version=expected + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "ledger_checkpoint_conflict",
                extra={
                    "product_id": str(checkpoint.product_id),
                    "expected_version": expected,
                },
            )
            raise OptimisticLockError("LedgerCheckpoint", str(checkpoint.id))
        self.session.expire(checkpoint)

    def _add_entry(self, record: MovementRecord, step: LedgerStep) -> None:
        entry = step.entry
        self.session.add(
            LedgerEntry(
                company_id=record.company_id,
                product_id=record.product_id,
                movement_id=record.id,
                step=entry.step,
                date=entry.date,
                direction=entry.direction.value,
                qty_moved=entry.qty_moved,
                sc_moved=entry.sc_moved,
                value_moved=entry.value_moved,
                unit_cost_applied=entry.unit_cost_applied,
                sc_before=entry.sc_before,
                value_before=entry.value_before,
                qty_after=entry.qty_after,
                sc_after=entry.sc_after,
                value_after=entry.value_after,
                flags=[flag.value for flag in entry.flags],
            )
        )
        record.ledger_status = (
            LedgerStatus.FLAGGED.value if step.flags else LedgerStatus.APPLIED.value
        )
        record.flags = [flag.value for flag in step.flags]

    # ------------------------------------------------------------------
    # Openings
    # ------------------------------------------------------------------

    def set_opening(
        self,
        company_id: UUID,
        product_id: UUID,
        date: date,
        sc_equivalent: Decimal | None = None,
        qty_native: Decimal | None = None,
        total_value: Decimal | None = None,
        unit_cost: Decimal | None = None,
        notes: str | None = None,
        replace: bool = False,
    ) -> InventoryOpening:
        """
        Record the opening position of a product and replay its ledger.

        The missing one of sc_equivalent / qty_native is derived through the
        product unit; total_value defaults to sc_equivalent * unit_cost.
        """
        product = self.require_product(company_id, product_id)

        if sc_equivalent is None and qty_native is None:
            raise InvalidOpeningError(str(product_id), "sc_equivalent or qty_native required")
        if total_value is None and unit_cost is None:
            raise InvalidOpeningError(str(product_id), "total_value or unit_cost required")

        if sc_equivalent is None:
            sc_equivalent = to_sc_equivalent(qty_native, product.unit)
        if qty_native is None:
            qty_native = from_sc_equivalent(sc_equivalent, product.unit)
        sc_equivalent = round_ledger(to_decimal(sc_equivalent), self.decimal_places)
        qty_native = round_ledger(to_decimal(qty_native), self.decimal_places)

        if total_value is None:
            total_value = sc_equivalent * to_decimal(unit_cost)
        total_value = round_ledger(to_decimal(total_value), self.decimal_places)
        if unit_cost is None and sc_equivalent != ZERO:
            unit_cost = total_value / sc_equivalent

        existing = self.session.execute(
            select(InventoryOpening)
            .where(
                InventoryOpening.company_id == company_id,
                InventoryOpening.product_id == product_id,
            )
            .with_for_update()
        ).scalar_one_or_none()

        if existing is not None and not replace:
            raise OpeningAlreadyExistsError(str(company_id), str(product_id))

        opening = existing or InventoryOpening(company_id=company_id, product_id=product_id)
        opening.date = date
        opening.qty_native = qty_native
        opening.sc_equivalent = sc_equivalent
        opening.total_value = total_value
        opening.unit_cost = (
            round_ledger(to_decimal(unit_cost), self.decimal_places)
            if unit_cost is not None
            else None
        )
        opening.notes = notes
        if existing is None:
            self.session.add(opening)
        self.session.flush()

        logger.info(
            "inventory_opening_set",
            extra={
                "company_id": str(company_id),
                "product_id": str(product_id),
                "opening_date": date,
                "sc_equivalent": sc_equivalent,
                "total_value": total_value,
                "replaced": existing is not None,
            },
        )

        self.replay_product(company_id, product_id)
        return opening

    # ------------------------------------------------------------------
    # Incremental apply
    # ------------------------------------------------------------------

    def apply_movement(self, record: MovementRecord) -> LedgerStep | None:
        """
        Fold one persisted, costable movement into its product ledger.

        Returns the step, or None when the movement was handled by finishing
        an interrupted replay and ended up skipped (dated before the opening).

        Raises:
            ValueError: the record is not costable.
            OutOfOrderReplayError: the record predates the last applied date
                (the record is left REJECTED).
            OptimisticLockError: concurrent checkpoint write.
        """
        if not record.is_costable:
            raise ValueError(f"movement {record.id} is not costable")

        company_id, product_id = record.company_id, record.product_id
        checkpoint = self._get_or_create_checkpoint(company_id, product_id)

        if checkpoint.is_replaying:
            logger.info(
                "ledger_finishing_interrupted_replay",
                extra={"product_id": str(product_id), "cursor": checkpoint.replay_cursor},
            )
            self.replay_product(company_id, product_id, resume=True)
            entry = self.session.execute(
                select(LedgerEntry).where(LedgerEntry.movement_id == record.id)
            ).scalars().first()
            if entry is None:
                return None
            return self._step_from_entry(checkpoint, entry)

        state = self._state_of(checkpoint)
        try:
            step = ledger_engine.apply_movement(
                state, costed_movement(record), self.decimal_places
            )
        except OutOfOrderReplayError:
            record.ledger_status = LedgerStatus.REJECTED.value
            self.session.flush()
            logger.warning(
                "ledger_movement_rejected",
                extra={
                    "product_id": str(product_id),
                    "movement_id": str(record.id),
                    "movement_date": record.date,
                    "last_applied_date": state.last_applied_date,
                },
            )
            raise

        self._write_checkpoint(checkpoint, step.state)
        self._add_entry(record, step)
        self.session.flush()

        logger.info(
            "ledger_movement_applied",
            extra={
                "product_id": str(product_id),
                "movement_id": str(record.id),
                "direction": record.direction,
                "sc_after": step.state.sc_equivalent,
                "value_after": step.state.total_value,
                "flags": [f.value for f in step.flags],
            },
        )
        return step

    def _step_from_entry(self, checkpoint: LedgerCheckpoint, entry: LedgerEntry) -> LedgerStep:
        self.session.refresh(checkpoint)
        kardex = next(
            line
            for line in self.selector.kardex(checkpoint.company_id, checkpoint.product_id)
            if line.movement_id == entry.movement_id
        )
        flags = tuple(MovementFlag(f) for f in kardex.flags)
        return LedgerStep(
            state=self._state_of(checkpoint),
            entry=LedgerLine(
                step=kardex.step,
                movement_id=kardex.movement_id,
                date=kardex.date,
                direction=Direction(kardex.direction),
                qty_moved=kardex.qty_moved,
                sc_moved=kardex.sc_moved,
                value_moved=kardex.value_moved,
                unit_cost_applied=kardex.unit_cost_applied,
                sc_before=kardex.sc_before,
                value_before=kardex.value_before,
                qty_after=kardex.qty_after,
                sc_after=kardex.sc_after,
                value_after=kardex.value_after,
                flags=flags,
            ),
            flags=flags,
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def replay_product(
        self,
        company_id: UUID,
        product_id: UUID,
        should_cancel: Callable[[], bool] | None = None,
        resume: bool = False,
    ) -> ReplayOutcome:
        """
        Rebuild checkpoint and kardex from the opening and movement history.

        With ``resume=True`` and an interrupted replay on record, folding
        continues after the last movement that replay folded, from the
        stored state.  If any movement up to that point was added, cancelled
        or changed since, or there is nothing to resume, the kardex is
        cleared and the fold starts over from the opening.
        ``should_cancel`` is polled between steps; a cancelled replay
        persists its partial state.
        """
        self.require_product(company_id, product_id)

        with LogContext.bind(company_id=company_id, product_id=product_id):
            checkpoint = self._get_or_create_checkpoint(company_id, product_id)
            opening = self._opening_balance(company_id, product_id)
            records = self._costable_records(company_id, product_id)
            by_id = {record.id: record for record in records}
            ordered = canonical_order(costed_movement(r) for r in records)

            resume_at = None
            if resume and checkpoint.is_replaying:
                resume_at = resume_index(ordered, self._resume_point_of(checkpoint))
                if resume_at is None:
                    logger.warning(
                        "ledger_resume_history_changed",
                        extra={"processed": checkpoint.replay_cursor},
                    )

            resuming = resume_at is not None
            if resuming:
                start = resume_at
                initial_state = self._state_of(checkpoint)
            else:
                start = 0
                initial_state = None
                self.session.execute(
                    delete(LedgerEntry)
                    .where(
                        LedgerEntry.company_id == company_id,
                        LedgerEntry.product_id == product_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                for record in records:
                    record.ledger_status = LedgerStatus.PENDING.value
                    record.flags = []

            result = ledger_engine.replay(
                company_id,
                product_id,
                opening,
                ordered,
                start=start,
                initial_state=initial_state,
                should_cancel=should_cancel,
                decimal_places=self.decimal_places,
            )

            flagged = 0
            for step in result.steps:
                self._add_entry(by_id[step.entry.movement_id], step)
                if step.flags:
                    flagged += 1
            for movement in result.skipped:
                record = by_id[movement.movement_id]
                record.ledger_status = LedgerStatus.SKIPPED.value
                record.flags = []

            self._write_checkpoint(
                checkpoint,
                result.state,
                interrupted=not result.completed,
                resume=None if result.completed else resume_point(ordered, result.next_index),
            )
            self.session.flush()

            outcome = ReplayOutcome(
                company_id=company_id,
                product_id=product_id,
                state=result.state,
                applied=len(result.steps),
                flagged=flagged,
                skipped=len(result.skipped),
                total=len(ordered),
                next_index=result.next_index,
                completed=result.completed,
            )
            logger.info(
                "ledger_replayed",
                extra={
                    "resumed": resuming,
                    "applied": outcome.applied,
                    "skipped": outcome.skipped,
                    "flagged": outcome.flagged,
                    "completed": outcome.completed,
                    "next_index": outcome.next_index,
                },
            )
            return outcome

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_balance(self, company_id: UUID, product_id: UUID) -> LedgerBalance:
        self.require_product(company_id, product_id)
        return self.selector.balance(company_id, product_id)

    def kardex(self, company_id: UUID, product_id: UUID) -> list[KardexLine]:
        self.require_product(company_id, product_id)
        return self.selector.kardex(company_id, product_id)
