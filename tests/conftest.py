"""Shared pytest fixtures for the rental returns tests."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from use_cases.rental_returns.domain.models import (
    ConditionSplit,
    LineReturnState,
    RentalLineItem,
    RentalTransaction,
    ReturnedStatus,
)
from use_cases.rental_returns.domain.policies import PenaltyRules
from use_cases.rental_returns.domain.services import ConditionSplitValidator, PenaltyCalculator
from use_cases.rental_returns.workflow import ReturnSessionStateMachine

EXPECTED_RETURN = datetime(2025, 1, 10, tzinfo=timezone.utc)


def days_after(days: float) -> datetime:
    return EXPECTED_RETURN + timedelta(days=days)


def make_line(
    line_id: str = "LN-1",
    quantity: int = 3,
    product_name: str = "Kebaya Brokat",
    unit_original_cost: Optional[int] = None,
    expected_return_date=EXPECTED_RETURN,
    status: ReturnedStatus = ReturnedStatus.NONE,
) -> RentalLineItem:
    return RentalLineItem(
        line_id=line_id,
        product_name=product_name,
        quantity_taken_out=quantity,
        already_returned_status=status,
        unit_original_cost=unit_original_cost,
        expected_return_date=expected_return_date,
    )


def make_transaction(*lines: RentalLineItem, code: str = "TXN-TEST-001", status: str = "active") -> RentalTransaction:
    return RentalTransaction(code=code, lines=list(lines) or [make_line()], status=status)


def line_state(line: RentalLineItem, *splits: ConditionSplit) -> LineReturnState:
    return LineReturnState(line=line, splits=list(splits))


class FixedClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = EXPECTED_RETURN):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeMonotonic:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class SpyCalculator(PenaltyCalculator):
    """PenaltyCalculator that counts full calculations."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[datetime] = []

    def compute_transaction_penalty(self, session, actual_return_date):
        self.calls.append(actual_return_date)
        return super().compute_transaction_penalty(session, actual_return_date)


@pytest.fixture
def rules() -> PenaltyRules:
    return PenaltyRules()


@pytest.fixture
def calculator(rules) -> PenaltyCalculator:
    return PenaltyCalculator(rules)


@pytest.fixture
def validator(rules) -> ConditionSplitValidator:
    return ConditionSplitValidator(rules)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def spy_calculator(rules) -> SpyCalculator:
    return SpyCalculator(rules)


@pytest.fixture
def state_machine(rules, spy_calculator, validator, clock) -> ReturnSessionStateMachine:
    return ReturnSessionStateMachine(rules, spy_calculator, validator, clock=clock)
