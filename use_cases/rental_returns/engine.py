"""
Rental Return Engine.

The single entry point the application uses: load a transaction, open a
return session, edit condition splits, navigate steps, compute the
penalty and commit the return exactly once.
"""

import logging
import time
from typing import Callable, Dict, Optional

from core.session import SessionManager

from .domain.models import ConditionSplit, DateLike, RentalTransaction, SplitMode
from .domain.policies import PenaltyRules, ReturnEligibilityPolicy
from .domain.services import LineValidationResult, ReturnRequestBuilder
from .errors import AlreadyReturnedError, GatewayError, ReturnNotEligibleError, SessionNotFoundError
from .gateway import CommitResult, TransactionGateway
from .guard import DEFAULT_COOLDOWN_SECONDS, ReturnSubmissionGuard, SubmissionFingerprint
from .session import ReturnSession, ReturnStep
from .workflow import PenaltyComputation, ReturnSessionStateMachine, StepTransition


class ReturnEngine:
    """
    Facade over the return workflow.

    Args:
        gateway: Where transactions are read and returns recorded
        rules: Penalty rule table (defaults to the built-in constants)
        state_machine: Workflow driver (built from ``rules`` when omitted)
        cooldown_seconds: Duplicate-commit window after a success
        guard_clock: Monotonic clock handed to each submission guard
        logger: Logger for engine events
    """

    def __init__(
        self,
        gateway: TransactionGateway,
        rules: Optional[PenaltyRules] = None,
        state_machine: Optional[ReturnSessionStateMachine] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        guard_clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.rules = rules or PenaltyRules()
        self.logger = logger or logging.getLogger(__name__)
        self.state_machine = state_machine or ReturnSessionStateMachine(self.rules, logger=self.logger)
        self.eligibility = ReturnEligibilityPolicy()
        self.request_builder = ReturnRequestBuilder()
        self.sessions: SessionManager[ReturnSession] = SessionManager()
        self.cooldown_seconds = cooldown_seconds
        self.guard_clock = guard_clock
        self._guards: Dict[str, ReturnSubmissionGuard] = {}

    # =========================================================================
    # TRANSACTIONS AND SESSIONS
    # =========================================================================

    async def load_transaction(self, code: str) -> RentalTransaction:
        """
        Fetch a transaction and check it can be returned.

        Raises:
            TransactionNotFoundError: Unknown code
            ReturnNotEligibleError: Not active, or nothing left to return
            GatewayError: Gateway failure
        """
        transaction = await self.gateway.get_transaction(code)
        decision = self.eligibility.evaluate({
            "status": transaction.status,
            "returnable_line_count": len(transaction.returnable_lines),
        })
        if decision.is_denied:
            self.logger.info(f"Transaction {code} not eligible: {decision.reason}")
            raise ReturnNotEligibleError(code, decision.reason)
        return transaction

    def create_return_session(self, transaction: RentalTransaction) -> ReturnSession:
        """Open (or reopen) the return session for a transaction."""
        session = self.state_machine.create_session(transaction)
        return self.sessions.register(session)

    async def open_session(self, code: str) -> ReturnSession:
        """Load a transaction and open its return session."""
        transaction = await self.load_transaction(code)
        return self.create_return_session(transaction)

    def get_session(self, code: str) -> ReturnSession:
        session = self.sessions.get(code)
        if session is None:
            raise SessionNotFoundError(code)
        return session

    def discard_session(self, session: ReturnSession) -> bool:
        removed = self.sessions.clear(session.transaction_code)
        if removed:
            self.logger.info(f"Return session for {session.transaction_code} discarded")
        return removed

    # =========================================================================
    # EDITS AND NAVIGATION
    # =========================================================================

    def set_condition_split(
        self, session: ReturnSession, line_id: str, split_index: int, split: ConditionSplit
    ) -> LineValidationResult:
        return self.state_machine.set_condition_split(session, line_id, split_index, split)

    def add_condition_split(
        self, session: ReturnSession, line_id: str, split: Optional[ConditionSplit] = None
    ) -> LineValidationResult:
        return self.state_machine.add_condition_split(session, line_id, split)

    def remove_condition_split(self, session: ReturnSession, line_id: str, split_index: int) -> LineValidationResult:
        return self.state_machine.remove_condition_split(session, line_id, split_index)

    def set_line_mode(self, session: ReturnSession, line_id: str, mode: SplitMode) -> LineValidationResult:
        return self.state_machine.set_line_mode(session, line_id, mode)

    def advance_step(self, session: ReturnSession, actual_return_date: DateLike = None) -> StepTransition:
        return self.state_machine.advance(session, actual_return_date)

    def retreat_step(self, session: ReturnSession) -> StepTransition:
        """Step back; leaving from step 1 discards the session."""
        transition = self.state_machine.retreat(session)
        if transition.exited:
            self.discard_session(session)
        return transition

    def compute_penalty(self, session: ReturnSession, actual_return_date: DateLike = None) -> PenaltyComputation:
        return self.state_machine.compute_penalty(session, actual_return_date)

    # =========================================================================
    # COMMIT
    # =========================================================================

    def _prune_guards(self):
        """Drop guards with nothing in flight and an expired cooldown."""
        for code in [code for code, guard in self._guards.items() if guard.is_idle]:
            del self._guards[code]

    def _guard_for(self, code: str) -> ReturnSubmissionGuard:
        self._prune_guards()
        guard = self._guards.get(code)
        if guard is None:
            guard = ReturnSubmissionGuard(self.cooldown_seconds, self.guard_clock, self.logger)
            self._guards[code] = guard
        return guard

    async def commit_return(self, session: ReturnSession, notes: Optional[str] = None) -> CommitResult:
        """
        Commit the return through the submission guard.

        Validation problems come back as an unsuccessful CommitResult. A
        commit already running for this transaction is joined, not repeated.

        Raises:
            DuplicateSubmissionError: Identical commit succeeded within the cooldown
            GatewayError: The gateway failed; the session stays open for a retry
            InvalidScheduleError: A stale calculation could not be recomputed
        """
        code = session.transaction_code
        if session.step != ReturnStep.CONFIRMING:
            return CommitResult(
                success=False,
                transaction_code=code,
                message="Return must be confirmed before it can be committed",
            )

        validation = self.state_machine.ensure_fresh_calculation(session)
        if not validation.can_proceed:
            return CommitResult(
                success=False,
                transaction_code=code,
                message="Item conditions are not valid",
                errors=[error.to_dict() for error in validation.errors],
            )

        request = self.request_builder.execute(session, notes)
        fingerprint = SubmissionFingerprint.from_request(request)

        async def operation() -> CommitResult:
            self.logger.info(f"{code}: committing return ({request.condition_count} condition(s))")
            return await self.gateway.commit_return(request)

        def already_returned(exc: AlreadyReturnedError) -> CommitResult:
            return CommitResult(
                success=True,
                transaction_code=code,
                items_processed=0,
                total_penalty=request.total_penalty,
                message=str(exc),
                processing_mode=request.processing_mode.value,
            )

        self.logger.debug(session.to_context_string())
        session.is_committing = True
        try:
            result = await self._guard_for(code).submit(fingerprint, operation, already_returned)
        except GatewayError as exc:
            session.processing_error = str(exc)
            raise
        finally:
            session.is_committing = False

        if result.success:
            self.logger.info(f"{code}: return committed, penalty {result.total_penalty}")
            self.discard_session(session)
        return result
