"""End-to-end tests of the return engine against the in-memory gateway."""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeMonotonic, FixedClock
from use_cases.rental_returns import (
    ConditionSplit,
    DuplicateSubmissionError,
    GatewayError,
    InMemoryTransactionGateway,
    RentalLineItem,
    RentalTransaction,
    ReturnEngine,
    ReturnNotEligibleError,
    ReturnSessionStateMachine,
    ReturnStep,
    SessionNotFoundError,
    TransactionNotFoundError,
    sample_transactions,
)
from use_cases.rental_returns.domain.models import ReturnedStatus

CODE = "TXN-20250101-001"
RETURNED_ON = datetime(2025, 1, 10, tzinfo=timezone.utc)


@pytest.fixture
def gateway():
    return InMemoryTransactionGateway(sample_transactions())


@pytest.fixture
def engine(gateway, rules):
    state_machine = ReturnSessionStateMachine(rules, clock=FixedClock(RETURNED_ON))
    return ReturnEngine(gateway, rules=rules, state_machine=state_machine)


def open_session(engine, code=CODE):
    return asyncio.run(engine.open_session(code))


def prepare_confirmed_session(engine, code=CODE):
    """Kebaya back in good condition, one batik shirt badly damaged."""
    session = open_session(engine, code)
    engine.set_condition_split(session, "LN-001", 0, ConditionSplit("Baik - tidak ada kerusakan", 3))
    engine.set_condition_split(session, "LN-002", 0, ConditionSplit("Buruk - ada kerusakan besar", 1))
    engine.add_condition_split(session, "LN-002")
    engine.set_condition_split(session, "LN-002", 1, ConditionSplit("Baik", 1))
    assert engine.advance_step(session).moved
    assert engine.advance_step(session).moved
    return session


class TestLoadTransaction:

    def test_active_transaction(self, engine):
        transaction = asyncio.run(engine.load_transaction(CODE))
        assert [line.line_id for line in transaction.returnable_lines] == ["LN-001", "LN-002"]

    def test_unknown_code(self, engine):
        with pytest.raises(TransactionNotFoundError):
            asyncio.run(engine.load_transaction("TXN-NOPE"))

    @pytest.mark.parametrize("code", ["TXN-20250103-003", "TXN-20250104-004"])
    def test_not_returnable(self, engine, code):
        with pytest.raises(ReturnNotEligibleError):
            asyncio.run(engine.load_transaction(code))


class TestSessions:

    def test_open_registers_session(self, engine):
        session = open_session(engine)
        assert engine.get_session(CODE) is session

    def test_reopen_replaces_session(self, engine):
        first = open_session(engine)
        second = open_session(engine)
        assert first is not second
        assert engine.get_session(CODE) is second

    def test_exit_from_first_step_discards(self, engine):
        session = open_session(engine)

        transition = engine.retreat_step(session)

        assert transition.exited
        with pytest.raises(SessionNotFoundError):
            engine.get_session(CODE)


class TestCommit:

    def test_happy_path(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        assert session.last_calculation.total_penalty == 20000

        result = asyncio.run(engine.commit_return(session, notes="  noda di lengan  "))

        assert result.success
        assert result.items_processed == 2
        assert result.total_penalty == 20000
        assert result.processing_mode == "mixed"
        assert gateway.commit_calls == 1
        assert gateway.committed[0].notes == "noda di lengan"
        with pytest.raises(SessionNotFoundError):
            engine.get_session(CODE)
        with pytest.raises(ReturnNotEligibleError):
            asyncio.run(engine.load_transaction(CODE))

    def test_requires_confirmation_step(self, engine, gateway):
        session = open_session(engine)

        result = asyncio.run(engine.commit_return(session))

        assert not result.success
        assert gateway.commit_calls == 0

    def test_double_submit_commits_once(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        gateway.delay = 0.05

        async def scenario():
            return await asyncio.gather(engine.commit_return(session), engine.commit_return(session))

        first, second = asyncio.run(scenario())

        assert first.success and second.success
        assert gateway.commit_calls == 1

    def test_resubmit_within_cooldown_rejected(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        asyncio.run(engine.commit_return(session))

        with pytest.raises(DuplicateSubmissionError):
            asyncio.run(engine.commit_return(session))

        assert gateway.commit_calls == 1

    def test_gateway_failure_allows_retry(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        gateway.fail_next = "Service unavailable"

        with pytest.raises(GatewayError):
            asyncio.run(engine.commit_return(session))

        assert session.processing_error == "Service unavailable"
        assert not session.is_committing
        assert engine.get_session(CODE) is session

        result = asyncio.run(engine.commit_return(session))
        assert result.success
        assert gateway.commit_calls == 2

    def test_already_returned_is_success(self, gateway, rules):
        counter_a = ReturnEngine(gateway, rules=rules)
        counter_b = ReturnEngine(gateway, rules=rules)
        session_a = prepare_confirmed_session(counter_a)
        session_b = prepare_confirmed_session(counter_b)

        asyncio.run(counter_a.commit_return(session_a))
        result = asyncio.run(counter_b.commit_return(session_b))

        assert result.success
        assert result.items_processed == 0
        assert gateway.commit_calls == 2

    def test_edit_on_confirmation_is_recomputed(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        engine.set_condition_split(session, "LN-001", 0, ConditionSplit("Hilang/tidak dikembalikan", 3))

        result = asyncio.run(engine.commit_return(session))

        assert session.step == ReturnStep.CONFIRMING
        assert result.total_penalty == 3 * 350000 + 20000
        assert gateway.committed[0].total_penalty == result.total_penalty

    def test_invalid_edit_blocks_commit(self, engine, gateway):
        session = prepare_confirmed_session(engine)
        engine.set_condition_split(session, "LN-001", 0, ConditionSplit("Baik", 4))

        result = asyncio.run(engine.commit_return(session))

        assert not result.success
        assert result.errors[0]["code"] == "exceeds_available"
        assert gateway.commit_calls == 0

    def test_partial_return_keeps_remaining_units_returnable(self, engine, gateway):
        gateway.add(RentalTransaction(
            code="TXN-PARTIAL",
            lines=[RentalLineItem("LN-P", "Beskap Jawa", 5, expected_return_date=RETURNED_ON)],
        ))
        session = open_session(engine, "TXN-PARTIAL")
        engine.set_condition_split(session, "LN-P", 0, ConditionSplit("Baik - tidak ada kerusakan", 3))
        assert engine.advance_step(session).moved
        assert engine.advance_step(session).moved

        result = asyncio.run(engine.commit_return(session))

        assert result.success
        assert result.items_processed == 1
        assert gateway.committed[0].items[0]["returned_quantity"] == 3
        stored = asyncio.run(gateway.get_transaction("TXN-PARTIAL"))
        assert stored.lines[0].already_returned_status == ReturnedStatus.PARTIAL
        assert stored.status == "active"
        assert asyncio.run(engine.load_transaction("TXN-PARTIAL")).returnable_lines


class TestSubmissionGuards:

    def test_idle_guards_are_dropped(self, gateway, rules):
        monotonic = FakeMonotonic()
        state_machine = ReturnSessionStateMachine(rules, clock=FixedClock(RETURNED_ON))
        engine = ReturnEngine(gateway, rules=rules, state_machine=state_machine, guard_clock=monotonic)

        asyncio.run(engine.commit_return(prepare_confirmed_session(engine)))
        assert list(engine._guards) == [CODE]

        monotonic.now += 30
        session = open_session(engine, "TXN-20250102-002")
        engine.set_condition_split(session, "LN-003", 0, ConditionSplit("Baik", 1))
        engine.advance_step(session)
        engine.advance_step(session)
        asyncio.run(engine.commit_return(session))

        assert list(engine._guards) == ["TXN-20250102-002"]

    def test_guard_kept_during_cooldown(self, engine):
        session = prepare_confirmed_session(engine)
        asyncio.run(engine.commit_return(session))

        engine._guard_for("TXN-20250102-002")

        assert CODE in engine._guards
