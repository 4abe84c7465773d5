"""
fiscal_engines.ledger -- Weighted-average inventory fold.

Responsibility:
    Maintain the running SC-equivalent balance, native quantity and value of
    one company+product as a pure fold over its opening and its costable
    movements.  Unit cost is the moving weighted average
    ``total_value / sc_equivalent`` and is never stored.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    LedgerService (fiscal_services) persists the fold state as a checkpoint
    and the per-step LedgerLine as kardex rows.

Invariants enforced:
    - Determinism: the same opening and movements in canonical order
      ``(date, sequence, movement_id)`` always produce the same state; every
      amount is quantized to the ledger scale after each step.
    - Inbound adds quantity, SC and value.  Outbound removes SC at the
      pre-movement unit cost.
    - An outbound movement that leaves the SC balance below zero is flagged
      (NEGATIVE_INVENTORY), never blocked.  Inbound steps are never flagged.
    - A movement dated before the last applied date is refused.
    - During replay, movements dated before the opening are superseded by
      the opening and skipped.

Failure modes:
    - OutOfOrderReplayError from apply_movement().
    - OpeningAlreadySeededError from seed() on an already seeded state.

Audit relevance:
    Each LedgerStep carries a LedgerLine with balances before and after, the
    unit cost applied and any flags, so a kardex can be rebuilt or checked
    from the movement history alone.
"""

from __future__ import annotations

import hashlib
from bisect import bisect_right
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import UUID

from fiscal_engines.tracer import traced_engine
from fiscal_kernel.db.types import LEDGER_DECIMAL_PLACES, ZERO, round_ledger
from fiscal_kernel.domain.movement import Direction, MovementFlag
from fiscal_kernel.exceptions import OpeningAlreadySeededError, OutOfOrderReplayError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("engines.ledger")


@dataclass(frozen=True)
class OpeningBalance:
    """Manual opening position of a product."""

    date: date
    qty_native: Decimal
    sc_equivalent: Decimal
    total_value: Decimal


@dataclass(frozen=True)
class CostedMovement:
    """A classified, mapped, inventory-affecting movement ready to fold."""

    movement_id: UUID
    date: date
    sequence: int
    direction: Direction
    qty_native: Decimal
    sc_equivalent: Decimal
    total_value: Decimal


@dataclass(frozen=True)
class LedgerState:
    company_id: UUID
    product_id: UUID
    qty_native: Decimal = ZERO
    sc_equivalent: Decimal = ZERO
    total_value: Decimal = ZERO
    last_applied_date: date | None = None
    movement_count: int = 0
    seeded: bool = False

    @property
    def unit_cost(self) -> Decimal:
        """Average cost per SC-equivalent; 0 when the SC balance is 0."""
        if self.sc_equivalent.is_zero():
            return ZERO
        return self.total_value / self.sc_equivalent


@dataclass(frozen=True)
class LedgerLine:
    """One kardex line: what a single movement did to the balance."""

    step: int
    movement_id: UUID
    date: date
    direction: Direction
    qty_moved: Decimal
    sc_moved: Decimal
    value_moved: Decimal
    unit_cost_applied: Decimal
    sc_before: Decimal
    value_before: Decimal
    qty_after: Decimal
    sc_after: Decimal
    value_after: Decimal
    flags: tuple[MovementFlag, ...] = ()


@dataclass(frozen=True)
class LedgerStep:
    state: LedgerState
    entry: LedgerLine
    flags: tuple[MovementFlag, ...] = ()


@dataclass(frozen=True)
class ReplayResult:
    """
    Outcome of a (possibly partial) replay.

    ``next_index`` points into the canonically ordered movement list; a
    replay that was cancelled resumes with ``start=next_index`` and
    ``initial_state=state`` as long as the list is unchanged up to that
    point (see resume_point / resume_index).
    """

    state: LedgerState
    steps: tuple[LedgerStep, ...]
    skipped: tuple[CostedMovement, ...]
    next_index: int
    completed: bool


def seed(
    company_id: UUID,
    product_id: UUID,
    opening: OpeningBalance | None,
    state: LedgerState | None = None,
    decimal_places: int = LEDGER_DECIMAL_PLACES,
) -> LedgerState:
    """
    Initial fold state for a product.

    With an opening the state carries its position and ``last_applied_date``
    equals the opening date; without one the state is empty.

    Raises:
        OpeningAlreadySeededError: ``state`` was already seeded.
    """
    if state is not None and state.seeded:
        raise OpeningAlreadySeededError(product_id=str(product_id))

    if opening is None:
        return LedgerState(company_id=company_id, product_id=product_id)

    return LedgerState(
        company_id=company_id,
        product_id=product_id,
        qty_native=round_ledger(opening.qty_native, decimal_places),
        sc_equivalent=round_ledger(opening.sc_equivalent, decimal_places),
        total_value=round_ledger(opening.total_value, decimal_places),
        last_applied_date=opening.date,
        movement_count=0,
        seeded=True,
    )


def apply_movement(
    state: LedgerState,
    movement: CostedMovement,
    decimal_places: int = LEDGER_DECIMAL_PLACES,
) -> LedgerStep:
    """
    Fold one movement into the state.

    Raises:
        OutOfOrderReplayError: movement.date < state.last_applied_date.
    """
    if state.last_applied_date is not None and movement.date < state.last_applied_date:
        raise OutOfOrderReplayError(
            product_id=str(state.product_id),
            movement_date=movement.date,
            last_applied_date=state.last_applied_date,
            movement_id=str(movement.movement_id),
        )

    qty = round_ledger(movement.qty_native, decimal_places)
    sc = round_ledger(movement.sc_equivalent, decimal_places)
    unit_cost_before = state.unit_cost

    if movement.direction is Direction.IN:
        value = round_ledger(movement.total_value, decimal_places)
        new_qty = state.qty_native + qty
        new_sc = state.sc_equivalent + sc
        new_value = state.total_value + value
        unit_cost_applied = (
            round_ledger(value / sc, decimal_places) if not sc.is_zero() else ZERO
        )
    else:
        value = round_ledger(sc * unit_cost_before, decimal_places)
        new_qty = state.qty_native - qty
        new_sc = state.sc_equivalent - sc
        new_value = state.total_value - value
        unit_cost_applied = round_ledger(unit_cost_before, decimal_places)

    flags: tuple[MovementFlag, ...] = ()
    if movement.direction is Direction.OUT and new_sc < ZERO:
        flags = (MovementFlag.NEGATIVE_INVENTORY,)
        logger.warning(
            "ledger_negative_inventory",
            extra={
                "company_id": str(state.company_id),
                "product_id": str(state.product_id),
                "movement_id": str(movement.movement_id),
                "movement_date": movement.date,
                "sc_after": new_sc,
            },
        )

    new_state = replace(
        state,
        qty_native=round_ledger(new_qty, decimal_places),
        sc_equivalent=round_ledger(new_sc, decimal_places),
        total_value=round_ledger(new_value, decimal_places),
        last_applied_date=movement.date,
        movement_count=state.movement_count + 1,
    )

    entry = LedgerLine(
        step=new_state.movement_count,
        movement_id=movement.movement_id,
        date=movement.date,
        direction=movement.direction,
        qty_moved=qty,
        sc_moved=sc,
        value_moved=value,
        unit_cost_applied=unit_cost_applied,
        sc_before=state.sc_equivalent,
        value_before=state.total_value,
        qty_after=new_state.qty_native,
        sc_after=new_state.sc_equivalent,
        value_after=new_state.total_value,
        flags=flags,
    )
    return LedgerStep(state=new_state, entry=entry, flags=flags)


OrderKey = tuple[date, int, str]


def order_key(movement: CostedMovement) -> OrderKey:
    return (movement.date, movement.sequence, str(movement.movement_id))


def canonical_order(movements: Iterable[CostedMovement]) -> list[CostedMovement]:
    """Sort by (date, sequence, movement_id)."""
    return sorted(movements, key=order_key)


@dataclass(frozen=True)
class ResumePoint:
    """
    Where an interrupted replay stopped.

    ``after`` is the order key of the last movement folded (or skipped),
    ``processed`` how many movements came up to and including it, and
    ``fingerprint`` a digest of exactly those movements.
    """

    after: OrderKey
    processed: int
    fingerprint: str


def history_fingerprint(movements: Iterable[CostedMovement]) -> str:
    digest = hashlib.sha256()
    for m in movements:
        # normalize() so 10 and 10.000000000 hash alike
        fields = (
            m.movement_id,
            m.date.isoformat(),
            m.sequence,
            m.direction.value,
            m.qty_native.normalize(),
            m.sc_equivalent.normalize(),
            m.total_value.normalize(),
        )
        digest.update(("|".join(str(f) for f in fields) + "\n").encode())
    return digest.hexdigest()


def resume_point(ordered: Sequence[CostedMovement], next_index: int) -> ResumePoint | None:
    """ResumePoint of a replay cancelled at ``next_index``; None before any step."""
    if next_index <= 0:
        return None
    done = ordered[:next_index]
    return ResumePoint(
        after=order_key(done[-1]),
        processed=next_index,
        fingerprint=history_fingerprint(done),
    )


def resume_index(ordered: Sequence[CostedMovement], point: ResumePoint | None) -> int | None:
    """
    Index in ``ordered`` of the first movement after ``point``.

    None when the movements up to ``point`` are no longer the ones the
    interrupted replay folded (one was added, cancelled or edited); the
    caller must then replay from the opening.
    """
    if point is None:
        return None
    index = bisect_right([order_key(m) for m in ordered], point.after)
    if index != point.processed or order_key(ordered[index - 1]) != point.after:
        return None
    if history_fingerprint(ordered[:index]) != point.fingerprint:
        return None
    return index


@traced_engine("ledger_replay", "1.0", fingerprint_fields=("product_id", "start"))
def replay(
    company_id: UUID,
    product_id: UUID,
    opening: OpeningBalance | None,
    movements: Sequence[CostedMovement],
    start: int = 0,
    initial_state: LedgerState | None = None,
    should_cancel: Callable[[], bool] | None = None,
    decimal_places: int = LEDGER_DECIMAL_PLACES,
) -> ReplayResult:
    """
    Fold ``movements`` (any order) over the opening.

    ``should_cancel`` is polled before each step; when it returns True the
    fold stops and the result has ``completed=False``.
    """
    ordered = canonical_order(movements)
    state = (
        initial_state
        if initial_state is not None
        else seed(company_id, product_id, opening, decimal_places=decimal_places)
    )

    steps: list[LedgerStep] = []
    skipped: list[CostedMovement] = []

    for index in range(start, len(ordered)):
        if should_cancel is not None and should_cancel():
            logger.info(
                "ledger_replay_cancelled",
                extra={
                    "product_id": str(product_id),
                    "next_index": index,
                    "total": len(ordered),
                },
            )
            return ReplayResult(
                state=state,
                steps=tuple(steps),
                skipped=tuple(skipped),
                next_index=index,
                completed=False,
            )

        movement = ordered[index]
        if opening is not None and movement.date < opening.date:
            skipped.append(movement)
            continue

        step = apply_movement(state, movement, decimal_places)
        steps.append(step)
        state = step.state

    return ReplayResult(
        state=state,
        steps=tuple(steps),
        skipped=tuple(skipped),
        next_index=len(ordered),
        completed=True,
    )
