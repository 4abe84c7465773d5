"""
Tests for the weighted-average inventory fold.

Covers:
- Inbound accumulation and the moving average
- Outbound at the pre-movement unit cost
- Negative inventory is flagged, never blocked
- Out-of-order movements are refused
- Opening seeding and skip-before-opening on replay
- Replay determinism and cancel/resume equivalence
- Resume points refuse a history that changed before them
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from fiscal_engines.ledger import (
    CostedMovement,
    LedgerState,
    OpeningBalance,
    apply_movement,
    canonical_order,
    replay,
    resume_index,
    resume_point,
    seed,
)
from fiscal_kernel.domain.movement import Direction, MovementFlag
from fiscal_kernel.exceptions import OpeningAlreadySeededError, OutOfOrderReplayError

COMPANY = UUID("00000000-0000-0000-0000-0000000000c1")
PRODUCT = UUID("00000000-0000-0000-0000-0000000000a1")


def _mv(day, direction, sc, value="0", seq=None, month=1):
    return CostedMovement(
        movement_id=uuid4(),
        date=date(2025, month, day),
        sequence=seq if seq is not None else day,
        direction=direction,
        qty_native=Decimal(sc),
        sc_equivalent=Decimal(sc),
        total_value=Decimal(value),
    )


def _empty():
    return seed(COMPANY, PRODUCT, None)


class TestInbound:
    def test_two_purchases_average(self):
        """10 SC for 1000 then 10 SC for 1200: 20 SC, 2200, 110 per SC."""
        state = apply_movement(_empty(), _mv(5, Direction.IN, "10", "1000")).state
        state = apply_movement(state, _mv(6, Direction.IN, "10", "1200")).state

        assert state.sc_equivalent == Decimal("20")
        assert state.total_value == Decimal("2200")
        assert state.unit_cost == Decimal("110")
        assert state.movement_count == 2
        assert state.last_applied_date == date(2025, 1, 6)

    def test_inbound_entry_records_its_own_unit_cost(self):
        step = apply_movement(_empty(), _mv(5, Direction.IN, "8", "1000"))

        assert step.entry.unit_cost_applied == Decimal("125")
        assert step.entry.sc_before == Decimal("0")
        assert step.entry.sc_after == Decimal("8")
        assert step.entry.step == 1

    def test_zero_sc_inbound_adds_value_only(self):
        state = apply_movement(_empty(), _mv(5, Direction.IN, "10", "1000")).state
        step = apply_movement(state, _mv(6, Direction.IN, "0", "50"))

        assert step.state.sc_equivalent == Decimal("10")
        assert step.state.total_value == Decimal("1050")
        assert step.entry.unit_cost_applied == Decimal("0")


class TestOutbound:
    def test_sale_removes_at_average_cost(self):
        """After 20 SC / 2200, selling 5 SC leaves 15 SC / 1650 at 110."""
        state = apply_movement(_empty(), _mv(5, Direction.IN, "10", "1000")).state
        state = apply_movement(state, _mv(6, Direction.IN, "10", "1200")).state

        step = apply_movement(state, _mv(7, Direction.OUT, "5", "999"))

        assert step.entry.value_moved == Decimal("550")
        assert step.entry.unit_cost_applied == Decimal("110")
        assert step.state.sc_equivalent == Decimal("15")
        assert step.state.total_value == Decimal("1650")
        assert step.state.unit_cost == Decimal("110")
        assert step.flags == ()

    def test_outbound_document_value_is_ignored(self):
        state = apply_movement(_empty(), _mv(5, Direction.IN, "10", "1000")).state
        cheap = apply_movement(state, _mv(6, Direction.OUT, "1", "1")).state
        dear = apply_movement(state, _mv(6, Direction.OUT, "1", "100000")).state

        assert cheap == dear


class TestNegativeInventory:
    def test_overdraw_is_flagged_not_blocked(self, captured_logs):
        state = apply_movement(_empty(), _mv(5, Direction.IN, "2", "200")).state

        step = apply_movement(state, _mv(6, Direction.OUT, "3"))

        assert step.flags == (MovementFlag.NEGATIVE_INVENTORY,)
        assert step.entry.flags == (MovementFlag.NEGATIVE_INVENTORY,)
        assert step.state.sc_equivalent == Decimal("-1")
        assert any(r["message"] == "ledger_negative_inventory" for r in captured_logs())

    def test_sale_from_empty_stock_costs_zero(self):
        step = apply_movement(_empty(), _mv(5, Direction.OUT, "1"))

        assert step.entry.value_moved == Decimal("0")
        assert step.state.sc_equivalent == Decimal("-1")
        assert MovementFlag.NEGATIVE_INVENTORY in step.flags

    def test_purchase_into_a_deficit_is_not_flagged(self):
        state = apply_movement(_empty(), _mv(5, Direction.OUT, "5")).state

        step = apply_movement(state, _mv(6, Direction.IN, "2", "200"))

        assert step.state.sc_equivalent == Decimal("-3")
        assert step.flags == ()
        assert step.entry.flags == ()


class TestOrdering:
    def test_earlier_movement_is_refused(self):
        state = apply_movement(_empty(), _mv(10, Direction.IN, "1", "100")).state

        with pytest.raises(OutOfOrderReplayError) as exc_info:
            apply_movement(state, _mv(9, Direction.IN, "1", "100"))

        assert exc_info.value.code == "OUT_OF_ORDER_REPLAY"
        assert exc_info.value.last_applied_date == date(2025, 1, 10)

    def test_same_date_is_accepted(self):
        state = apply_movement(_empty(), _mv(10, Direction.IN, "1", "100")).state

        step = apply_movement(state, _mv(10, Direction.IN, "1", "100", seq=99))

        assert step.state.movement_count == 2

    def test_canonical_order_uses_date_then_sequence(self):
        late = _mv(3, Direction.IN, "1", seq=1)
        first = _mv(2, Direction.IN, "1", seq=7)
        second = _mv(2, Direction.OUT, "1", seq=8)

        assert canonical_order([late, second, first]) == [first, second, late]


class TestOpening:
    def test_seed_from_opening(self):
        opening = OpeningBalance(date(2025, 1, 1), Decimal("48"), Decimal("1"), Decimal("500"))

        state = seed(COMPANY, PRODUCT, opening)

        assert state.seeded is True
        assert state.sc_equivalent == Decimal("1")
        assert state.qty_native == Decimal("48")
        assert state.last_applied_date == date(2025, 1, 1)
        assert state.movement_count == 0

    def test_seed_twice_is_refused(self):
        opening = OpeningBalance(date(2025, 1, 1), Decimal("1"), Decimal("1"), Decimal("1"))
        state = seed(COMPANY, PRODUCT, opening)

        with pytest.raises(OpeningAlreadySeededError):
            seed(COMPANY, PRODUCT, opening, state=state)

    def test_seed_without_opening_is_empty(self):
        assert seed(COMPANY, PRODUCT, None) == LedgerState(COMPANY, PRODUCT)

    def test_replay_skips_movements_before_opening(self):
        opening = OpeningBalance(date(2025, 1, 10), Decimal("5"), Decimal("5"), Decimal("500"))
        before = _mv(5, Direction.IN, "100", "1")
        on_day = _mv(10, Direction.IN, "5", "600")

        result = replay(COMPANY, PRODUCT, opening, [on_day, before])

        assert result.skipped == (before,)
        assert len(result.steps) == 1
        assert result.state.sc_equivalent == Decimal("10")
        assert result.state.total_value == Decimal("1100")


class TestReplay:
    def _history(self):
        return [
            _mv(3, Direction.IN, "10", "1000"),
            _mv(4, Direction.IN, "10", "1200"),
            _mv(6, Direction.OUT, "5"),
            _mv(9, Direction.IN, "3", "400"),
            _mv(12, Direction.OUT, "7"),
        ]

    def test_order_of_input_does_not_matter(self):
        history = self._history()

        forward = replay(COMPANY, PRODUCT, None, history)
        backward = replay(COMPANY, PRODUCT, None, list(reversed(history)))

        assert forward.state == backward.state
        assert [s.entry for s in forward.steps] == [s.entry for s in backward.steps]

    def test_matches_incremental_application(self):
        history = self._history()
        state = _empty()
        for movement in canonical_order(history):
            state = apply_movement(state, movement).state

        assert replay(COMPANY, PRODUCT, None, history).state == state

    def test_cancel_then_resume_equals_full_replay(self):
        history = self._history()
        polls = {"n": 0}

        def cancel_after_two():
            polls["n"] += 1
            return polls["n"] > 2

        partial = replay(COMPANY, PRODUCT, None, history, should_cancel=cancel_after_two)
        assert partial.completed is False
        assert partial.next_index == 2

        resumed = replay(
            COMPANY, PRODUCT, None, history,
            start=partial.next_index, initial_state=partial.state,
        )

        full = replay(COMPANY, PRODUCT, None, history)
        assert resumed.completed is True
        assert resumed.state == full.state
        assert [s.entry for s in partial.steps + resumed.steps] == [s.entry for s in full.steps]

    def test_every_amount_is_quantized(self):
        """1000 / 3 SC does not leave more than nine decimal places behind."""
        state = apply_movement(_empty(), _mv(1, Direction.IN, "3", "1000")).state
        state = apply_movement(state, _mv(2, Direction.OUT, "1")).state

        assert state.total_value.as_tuple().exponent >= -9
        assert state.total_value == Decimal("666.666666667")


class TestResumePoint:
    def _history(self):
        return canonical_order([
            _mv(1, Direction.IN, "1", "100"),
            _mv(3, Direction.IN, "1", "100"),
            _mv(5, Direction.IN, "1", "100"),
        ])

    def test_nothing_folded_has_no_point(self):
        assert resume_point(self._history(), 0) is None
        assert resume_index(self._history(), None) is None

    def test_unchanged_history_resumes_after_the_point(self):
        history = self._history()
        point = resume_point(history, 2)

        assert point.after == (date(2025, 1, 3), 3, str(history[1].movement_id))
        assert resume_index(history, point) == 2

    def test_later_movement_keeps_the_point(self):
        history = self._history()
        point = resume_point(history, 2)

        grown = canonical_order(history + [_mv(9, Direction.IN, "1", "100")])

        assert resume_index(grown, point) == 2

    def test_movement_before_the_point_invalidates_it(self):
        history = self._history()
        point = resume_point(history, 2)

        grown = canonical_order(history + [_mv(2, Direction.IN, "1", "500")])

        assert resume_index(grown, point) is None

    def test_removed_movement_invalidates_it(self):
        history = self._history()
        point = resume_point(history, 2)

        assert resume_index([history[1], history[2]], point) is None

    def test_edited_movement_invalidates_it(self):
        history = self._history()
        point = resume_point(history, 2)

        first = history[0]
        edited = [
            CostedMovement(
                movement_id=first.movement_id, date=first.date, sequence=first.sequence,
                direction=first.direction, qty_native=first.qty_native,
                sc_equivalent=first.sc_equivalent, total_value=Decimal("999"),
            ),
            *history[1:],
        ]

        assert resume_index(edited, point) is None

    def test_scale_does_not_change_the_fingerprint(self):
        history = self._history()
        point = resume_point(history, 1)

        first = history[0]
        rescaled = CostedMovement(
            movement_id=first.movement_id, date=first.date, sequence=first.sequence,
            direction=first.direction, qty_native=Decimal("1.000000000"),
            sc_equivalent=Decimal("1.000000000"), total_value=Decimal("100.000000000"),
        )

        assert resume_index([rescaled, *history[1:]], point) == 1
