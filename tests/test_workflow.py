"""Tests for the three-step return workflow."""

import pytest

from conftest import EXPECTED_RETURN, days_after, make_line, make_transaction
from use_cases.rental_returns.domain.models import ConditionSplit, ProcessingMode, SplitMode
from use_cases.rental_returns.errors import InvalidScheduleError, SplitEditError, UnknownLineError
from use_cases.rental_returns.session import ReturnStep


@pytest.fixture
def session(state_machine):
    transaction = make_transaction(
        make_line("LN-1", quantity=3),
        make_line("LN-2", quantity=2, product_name="Kemeja Batik"),
    )
    return state_machine.create_session(transaction)


def declare_all_good(state_machine, session):
    for line_id, state in session.lines.items():
        state_machine.set_condition_split(
            session, line_id, 0, ConditionSplit("Baik - tidak ada kerusakan", state.total_quantity)
        )


class TestSessionCreation:

    def test_one_full_split_per_returnable_line(self, state_machine, session):
        assert session.step == ReturnStep.DECLARING_CONDITIONS
        assert session.transaction_code == "TXN-TEST-001"
        assert [s.splits[0].quantity for s in session.lines.values()] == [3, 2]
        assert session.last_calculation is None
        assert not session.validation.can_proceed

    def test_to_dict_shape(self, session):
        data = session.to_dict()
        assert data["step"] == 1
        assert data["processing_mode"] == "single-condition"
        assert len(data["lines"]) == 2
        assert data["penalty"] is None


class TestAdvance:

    def test_blocked_until_conditions_declared(self, state_machine, spy_calculator, session):
        transition = state_machine.advance(session)

        assert not transition.moved
        assert transition.step == ReturnStep.DECLARING_CONDITIONS
        assert transition.validation.errors
        assert spy_calculator.calls == []

    def test_over_allocation_never_reaches_calculator(self, state_machine, spy_calculator):
        session = state_machine.create_session(make_transaction(make_line("LN-1", quantity=5)))
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 4))
        result = state_machine.add_condition_split(session, "LN-1", ConditionSplit("Buruk - ada noda berat", 3))

        transition = state_machine.advance(session)

        assert result.error == "Allocated quantity exceeds available quantity by 2"
        assert not transition.moved
        assert spy_calculator.calls == []
        assert session.last_calculation is None

    def test_entering_review_computes_with_clock(self, state_machine, spy_calculator, clock, session):
        clock.now = days_after(2)
        declare_all_good(state_machine, session)

        transition = state_machine.advance(session)

        assert transition.moved
        assert session.step == ReturnStep.REVIEWING_PENALTY
        assert spy_calculator.calls == [days_after(2)]
        assert session.last_calculation.total_penalty == 2 * 5000 * 5
        assert session.actual_return_date == days_after(2)

    def test_explicit_return_date(self, state_machine, session):
        declare_all_good(state_machine, session)

        state_machine.advance(session, "2025-01-11T00:00:00Z")

        assert session.last_calculation.total_penalty == 5000 * 5

    def test_entering_confirmation_reuses_calculation(self, state_machine, spy_calculator, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)

        transition = state_machine.advance(session)

        assert transition.moved
        assert session.step == ReturnStep.CONFIRMING
        assert len(spy_calculator.calls) == 1

    def test_nothing_past_confirmation(self, state_machine, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)
        state_machine.advance(session)

        transition = state_machine.advance(session)

        assert not transition.moved
        assert session.step == ReturnStep.CONFIRMING

    def test_bad_schedule_surfaces_and_stays(self, state_machine):
        session = state_machine.create_session(
            make_transaction(make_line("LN-1", quantity=1, expected_return_date="soon"))
        )
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 1))

        with pytest.raises(InvalidScheduleError):
            state_machine.advance(session)

        assert session.step == ReturnStep.DECLARING_CONDITIONS
        assert "Expected return date" in session.processing_error

        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Kusut", 1))
        assert session.processing_error is None


class TestEditsAfterCalculation:

    def test_edit_marks_stale_without_moving(self, state_machine, spy_calculator, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)

        state_machine.set_condition_split(session, "LN-2", 0, ConditionSplit("Buruk - ada kerusakan besar", 2))

        assert session.step == ReturnStep.REVIEWING_PENALTY
        assert session.calculation_dirty
        assert not session.has_fresh_calculation
        assert len(spy_calculator.calls) == 1

    def test_stale_calculation_recomputed_on_confirmation(self, state_machine, spy_calculator, clock, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)
        clock.now = days_after(30)
        state_machine.set_condition_split(session, "LN-2", 0, ConditionSplit("Buruk - ada kerusakan besar", 2))

        state_machine.advance(session)

        assert session.step == ReturnStep.CONFIRMING
        assert len(spy_calculator.calls) == 2
        # recomputed as of the original return date, not the clock
        assert spy_calculator.calls[-1] == EXPECTED_RETURN
        assert session.last_calculation.total_penalty == 40000
        assert not session.calculation_dirty

    def test_invalid_edit_blocks_confirmation(self, state_machine, spy_calculator, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 9))

        transition = state_machine.advance(session)

        assert not transition.moved
        assert session.step == ReturnStep.REVIEWING_PENALTY
        assert len(spy_calculator.calls) == 1


class TestComputePenalty:

    def test_valid_session_is_computed(self, state_machine, spy_calculator, session):
        declare_all_good(state_machine, session)

        outcome = state_machine.compute_penalty(session, days_after(1))

        assert outcome.computed
        assert outcome.result.total_penalty == 5 * 5000
        assert session.last_calculation is outcome.result
        assert spy_calculator.calls == [days_after(1)]

    def test_over_allocated_session_is_not_computed(self, state_machine, spy_calculator):
        session = state_machine.create_session(make_transaction(make_line("LN-1", quantity=5)))
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 7))

        outcome = state_machine.compute_penalty(session, days_after(1))

        assert not outcome.computed
        assert outcome.result is None
        assert not outcome.validation.can_proceed
        assert outcome.to_dict()["penalty"] is None
        assert spy_calculator.calls == []
        assert session.last_calculation is None

    def test_invalid_edit_keeps_previous_calculation(self, state_machine, spy_calculator, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)
        previous = session.last_calculation
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 9))

        outcome = state_machine.compute_penalty(session)

        assert not outcome.computed
        assert session.last_calculation is previous
        assert session.calculation_dirty
        assert len(spy_calculator.calls) == 1


class TestRetreat:

    def test_steps_back_then_exits(self, state_machine, session):
        declare_all_good(state_machine, session)
        state_machine.advance(session)
        state_machine.advance(session)

        assert state_machine.retreat(session).step == ReturnStep.REVIEWING_PENALTY
        assert state_machine.retreat(session).step == ReturnStep.DECLARING_CONDITIONS

        transition = state_machine.retreat(session)
        assert transition.exited
        assert not transition.moved
        assert session.step == ReturnStep.DECLARING_CONDITIONS


class TestSplitEdits:

    def test_add_split_takes_remaining_quantity(self, state_machine, session):
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 1))

        result = state_machine.add_condition_split(session, "LN-1")

        state = session.lines["LN-1"]
        assert [s.quantity for s in state.splits] == [1, 2]
        assert state.mode == SplitMode.MULTI
        assert result.remaining_quantity == 0
        assert session.processing_mode == ProcessingMode.MIXED

    def test_split_limit(self, state_machine, rules):
        session = state_machine.create_session(make_transaction(make_line("LN-1", quantity=20)))
        for _ in range(rules.max_conditions_per_line - 1):
            state_machine.add_condition_split(session, "LN-1", ConditionSplit("Baik", 1))

        with pytest.raises(SplitEditError):
            state_machine.add_condition_split(session, "LN-1")

    def test_cannot_remove_last_split(self, state_machine, session):
        with pytest.raises(SplitEditError):
            state_machine.remove_condition_split(session, "LN-1", 0)

    def test_remove_split(self, state_machine, session):
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 1))
        state_machine.add_condition_split(session, "LN-1", ConditionSplit("Kusut", 2))

        result = state_machine.remove_condition_split(session, "LN-1", 1)

        assert len(session.lines["LN-1"].splits) == 1
        assert result.remaining_quantity == 2

    def test_bad_index(self, state_machine, session):
        with pytest.raises(SplitEditError):
            state_machine.set_condition_split(session, "LN-1", 3, ConditionSplit("Baik", 1))

    def test_unknown_line(self, state_machine, session):
        with pytest.raises(UnknownLineError):
            state_machine.set_condition_split(session, "LN-404", 0, ConditionSplit("Baik", 1))
        with pytest.raises(KeyError):
            state_machine.add_condition_split(session, "LN-404")

    def test_over_allocation_is_kept_not_clamped(self, state_machine, session):
        result = state_machine.set_condition_split(session, "LN-2", 0, ConditionSplit("Baik", 7))

        assert session.lines["LN-2"].splits[0].quantity == 7
        assert not result.is_valid

    def test_back_to_single_mode_keeps_first_split(self, state_machine, session):
        state_machine.set_condition_split(session, "LN-1", 0, ConditionSplit("Baik", 1))
        state_machine.add_condition_split(session, "LN-1", ConditionSplit("Kusut", 2))

        state_machine.set_line_mode(session, "LN-1", SplitMode.SINGLE)

        state = session.lines["LN-1"]
        assert state.mode == SplitMode.SINGLE
        assert [s.condition_label for s in state.splits] == ["Baik"]
