"""
Rental Returns Domain Layer.

Contains pure business logic for the rental return use case.
No database access or I/O - just business rules.
"""

from .models import (
    ConditionSplit,
    LineReturnState,
    PenaltyCalculationResult,
    PenaltyLineBreakdown,
    PenaltySummary,
    ProcessingMode,
    RentalLineItem,
    RentalTransaction,
    ReturnedStatus,
    SeverityTier,
    SplitMode,
)
from .policies import (
    ConditionClassificationPolicy,
    PenaltyRules,
    ReturnEligibilityPolicy,
)
from .services import (
    ConditionSplitValidator,
    PenaltyCalculator,
    ReturnRequest,
    ReturnRequestBuilder,
    compute_late_days,
)

__all__ = [
    "ConditionSplit",
    "LineReturnState",
    "PenaltyCalculationResult",
    "PenaltyLineBreakdown",
    "PenaltySummary",
    "ProcessingMode",
    "RentalLineItem",
    "RentalTransaction",
    "ReturnedStatus",
    "SeverityTier",
    "SplitMode",
    "ConditionClassificationPolicy",
    "PenaltyRules",
    "ReturnEligibilityPolicy",
    "ConditionSplitValidator",
    "PenaltyCalculator",
    "ReturnRequest",
    "ReturnRequestBuilder",
    "compute_late_days",
]
