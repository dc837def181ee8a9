"""
Rental Returns Use Case.

Everything needed to take back rented clothing at the point of sale:
declare the condition of each returned unit, validate the quantities,
compute late and condition penalties, and commit the return exactly once.

Components:
- ReturnEngine: Facade used by the application
- ReturnSessionStateMachine: Three-step workflow driver
- PenaltyCalculator / ConditionSplitValidator: Pure domain services
- ReturnSubmissionGuard: Duplicate commit protection
- TransactionGateway: Storage boundary (in-memory here, Cosmos DB in cosmos_gateway)

Usage:
    from use_cases.rental_returns import ReturnEngine, InMemoryTransactionGateway

    engine = ReturnEngine(InMemoryTransactionGateway(sample_transactions()))
    session = await engine.open_session("TXN-20250101-001")
"""

from use_cases.rental_returns.domain import (
    ConditionSplit,
    PenaltyCalculationResult,
    PenaltyCalculator,
    PenaltyRules,
    RentalLineItem,
    RentalTransaction,
    SplitMode,
)
from use_cases.rental_returns.engine import ReturnEngine
from use_cases.rental_returns.errors import (
    AlreadyReturnedError,
    DuplicateSubmissionError,
    GatewayError,
    InvalidScheduleError,
    ReturnEngineError,
    ReturnNotEligibleError,
    SessionNotFoundError,
    SplitEditError,
    TransactionNotFoundError,
    UnknownLineError,
)
from use_cases.rental_returns.gateway import CommitResult, InMemoryTransactionGateway, TransactionGateway
from use_cases.rental_returns.guard import ReturnSubmissionGuard, SubmissionFingerprint
from use_cases.rental_returns.sample_data import sample_transactions
from use_cases.rental_returns.session import ReturnSession, ReturnStep
from use_cases.rental_returns.workflow import PenaltyComputation, ReturnSessionStateMachine, StepTransition

__all__ = [
    # Engine
    "ReturnEngine",
    "ReturnSessionStateMachine",
    "StepTransition",
    "PenaltyComputation",
    "ReturnSession",
    "ReturnStep",
    # Domain
    "ConditionSplit",
    "PenaltyCalculationResult",
    "PenaltyCalculator",
    "PenaltyRules",
    "RentalLineItem",
    "RentalTransaction",
    "SplitMode",
    # Commit
    "CommitResult",
    "InMemoryTransactionGateway",
    "TransactionGateway",
    "ReturnSubmissionGuard",
    "SubmissionFingerprint",
    "sample_transactions",
    # Errors
    "AlreadyReturnedError",
    "DuplicateSubmissionError",
    "GatewayError",
    "InvalidScheduleError",
    "ReturnEngineError",
    "ReturnNotEligibleError",
    "SessionNotFoundError",
    "SplitEditError",
    "TransactionNotFoundError",
    "UnknownLineError",
]
