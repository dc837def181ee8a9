"""
Return Workflow State Machine.

Drives a ReturnSession through its three steps:

    1. DECLARING_CONDITIONS - cashier records condition splits per line
    2. REVIEWING_PENALTY    - penalty breakdown is shown
    3. CONFIRMING           - cashier confirms and commits

Moving forward is guarded (valid splits for 1 -> 2, a calculation for
2 -> 3). Moving back is always allowed; at step 1 it means "leave the
workflow". Edits never move the step, they only mark the calculation stale
so it is recomputed before the return is confirmed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from core.domain import coerce_datetime

from .domain.models import ConditionSplit, DateLike, PenaltyCalculationResult, RentalTransaction, SplitMode
from .domain.policies import PenaltyRules
from .domain.services import (
    ConditionSplitValidator,
    LineValidationResult,
    PenaltyCalculator,
    SessionValidationResult,
)
from .errors import InvalidScheduleError, SplitEditError
from .session import ReturnSession, ReturnStep


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StepTransition:
    """Outcome of an advance/retreat request."""
    moved: bool
    step: ReturnStep
    exited: bool = False
    reason: str = ""
    validation: Optional[SessionValidationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moved": self.moved,
            "step": int(self.step),
            "exited": self.exited,
            "reason": self.reason,
            "validation": self.validation.to_dict() if self.validation else None,
        }


@dataclass
class PenaltyComputation:
    """Outcome of an explicit compute request."""
    computed: bool
    validation: SessionValidationResult
    result: Optional[PenaltyCalculationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computed": self.computed,
            "penalty": self.result.to_dict() if self.result else None,
            "validation": self.validation.to_dict(),
        }


class ReturnSessionStateMachine:
    """
    Orchestrates split edits, validation, step gating and calculation.

    All collaborators are injected; defaults are built from one
    PenaltyRules table so calculator and validator agree on limits.
    """

    def __init__(
        self,
        rules: Optional[PenaltyRules] = None,
        calculator: Optional[PenaltyCalculator] = None,
        validator: Optional[ConditionSplitValidator] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.rules = rules or PenaltyRules()
        self.calculator = calculator or PenaltyCalculator(self.rules)
        self.validator = validator or ConditionSplitValidator(self.rules)
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def create_session(self, transaction: RentalTransaction) -> ReturnSession:
        session = ReturnSession.for_transaction(transaction)
        self.revalidate(session)
        self.logger.info(
            f"Return session opened for {transaction.code} "
            f"({len(session.lines)} returnable line(s))"
        )
        return session

    def revalidate(self, session: ReturnSession) -> SessionValidationResult:
        session.validation = self.validator.validate_session(session)
        return session.validation

    # =========================================================================
    # SPLIT EDITS
    # =========================================================================

    def set_condition_split(
        self,
        session: ReturnSession,
        line_id: str,
        split_index: int,
        split: ConditionSplit,
    ) -> LineValidationResult:
        state = session.line(line_id)
        if not 0 <= split_index < len(state.splits):
            raise SplitEditError(f"Line {line_id} has no condition #{split_index + 1}")

        state.splits[split_index] = ConditionSplit(
            condition_label=split.condition_label,
            quantity=split.quantity,
            original_cost_override=split.original_cost_override,
        )
        return self._after_edit(session, line_id)

    def add_condition_split(
        self,
        session: ReturnSession,
        line_id: str,
        split: Optional[ConditionSplit] = None,
    ) -> LineValidationResult:
        """Append a split, defaulting its quantity to whatever is still unallocated."""
        state = session.line(line_id)
        if len(state.splits) >= self.rules.max_conditions_per_line:
            raise SplitEditError(
                f"Line {line_id} already has the maximum of "
                f"{self.rules.max_conditions_per_line} conditions"
            )

        state.splits.append(split or ConditionSplit(quantity=max(state.remaining_quantity, 0)))
        state.mode = SplitMode.MULTI
        return self._after_edit(session, line_id)

    def remove_condition_split(
        self,
        session: ReturnSession,
        line_id: str,
        split_index: int,
    ) -> LineValidationResult:
        state = session.line(line_id)
        if len(state.splits) <= 1:
            raise SplitEditError(f"Line {line_id} must keep at least one condition")
        if not 0 <= split_index < len(state.splits):
            raise SplitEditError(f"Line {line_id} has no condition #{split_index + 1}")

        del state.splits[split_index]
        return self._after_edit(session, line_id)

    def set_line_mode(self, session: ReturnSession, line_id: str, mode: SplitMode) -> LineValidationResult:
        """Switch the display mode. Going back to single keeps only the first split."""
        state = session.line(line_id)
        if mode == SplitMode.SINGLE and len(state.splits) > 1:
            state.splits = state.splits[:1]
        state.mode = mode
        return self._after_edit(session, line_id)

    def _after_edit(self, session: ReturnSession, line_id: str) -> LineValidationResult:
        session.mark_edited()
        validation = self.revalidate(session)
        result = validation.line_results.get(line_id)
        if result is None:
            result = self.validator.validate_line(session.line(line_id))
        self.logger.debug(
            f"{session.transaction_code}/{line_id} edited: "
            f"{result.allocated_quantity}/{result.total_quantity} allocated, valid={result.is_valid}"
        )
        return result

    # =========================================================================
    # STEP NAVIGATION
    # =========================================================================

    def advance(self, session: ReturnSession, actual_return_date: DateLike = None) -> StepTransition:
        """
        Move one step forward if the current step allows it.

        Entering step 2 computes the penalty as of ``actual_return_date``
        (now, when omitted). Entering step 3 reuses that calculation unless
        splits changed since, in which case it is recomputed first.

        Raises:
            InvalidScheduleError: If a line's expected return date is unusable
        """
        if session.step == ReturnStep.DECLARING_CONDITIONS:
            validation = self.revalidate(session)
            if not validation.can_proceed:
                return StepTransition(
                    moved=False,
                    step=session.step,
                    reason="Item conditions are not complete",
                    validation=validation,
                )
            self._calculate(session, actual_return_date or self.clock())
            return self._move(session, ReturnStep.REVIEWING_PENALTY, validation)

        if session.step == ReturnStep.REVIEWING_PENALTY:
            if session.last_calculation is None:
                return StepTransition(
                    moved=False,
                    step=session.step,
                    reason="Penalty has not been calculated",
                    validation=session.validation,
                )
            validation = self.ensure_fresh_calculation(session)
            if not validation.can_proceed:
                return StepTransition(
                    moved=False,
                    step=session.step,
                    reason="Item conditions changed and are no longer valid",
                    validation=validation,
                )
            return self._move(session, ReturnStep.CONFIRMING, validation)

        return StepTransition(
            moved=False,
            step=session.step,
            reason="Already at the confirmation step",
            validation=session.validation,
        )

    def retreat(self, session: ReturnSession) -> StepTransition:
        """Move one step back. At step 1 this signals leaving the workflow."""
        if session.step == ReturnStep.DECLARING_CONDITIONS:
            return StepTransition(
                moved=False,
                step=session.step,
                exited=True,
                reason="Leaving the return workflow",
            )
        return self._move(session, ReturnStep(session.step - 1), session.validation)

    def _move(
        self,
        session: ReturnSession,
        step: ReturnStep,
        validation: Optional[SessionValidationResult],
    ) -> StepTransition:
        previous = session.step
        session.step = step
        session._touch()
        self.logger.info(f"{session.transaction_code}: step {int(previous)} -> {int(step)}")
        return StepTransition(moved=True, step=step, validation=validation)

    # =========================================================================
    # CALCULATION
    # =========================================================================

    def compute_penalty(
        self,
        session: ReturnSession,
        actual_return_date: DateLike = None,
    ) -> PenaltyComputation:
        """
        Compute and store the penalty, as of the session's return date when none is given.

        Invalid splits are reported back without calling the calculator;
        the previous calculation is left as it was.
        """
        validation = self.revalidate(session)
        if not validation.can_proceed:
            self.logger.info(f"{session.transaction_code}: penalty not computed, item conditions are invalid")
            return PenaltyComputation(computed=False, validation=validation)
        result = self._calculate(session, actual_return_date or session.actual_return_date or self.clock())
        return PenaltyComputation(computed=True, validation=validation, result=result)

    def ensure_fresh_calculation(self, session: ReturnSession) -> SessionValidationResult:
        """
        Revalidate and, if splits changed since the last calculation, recompute.

        Returns the current validation; nothing is recomputed when it fails.
        """
        validation = self.revalidate(session)
        if validation.can_proceed and not session.has_fresh_calculation:
            self.logger.info(f"{session.transaction_code}: recomputing stale penalty")
            self._calculate(session, session.actual_return_date or self.clock())
        return validation

    def _calculate(self, session: ReturnSession, actual_return_date: DateLike) -> PenaltyCalculationResult:
        actual = coerce_datetime(actual_return_date)
        try:
            if actual is None:
                raise InvalidScheduleError(f"Actual return date is missing or invalid: {actual_return_date!r}")
            result = self.calculator.compute_transaction_penalty(session, actual)
        except InvalidScheduleError as exc:
            session.processing_error = str(exc)
            self.logger.warning(f"{session.transaction_code}: penalty calculation failed: {exc}")
            raise

        session.last_calculation = result
        session.actual_return_date = actual
        session.calculation_dirty = False
        session.processing_error = None
        self.logger.info(
            f"{session.transaction_code}: penalty {result.total_penalty} over "
            f"{result.summary.total_conditions} condition(s)"
        )
        return result
