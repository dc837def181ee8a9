"""
Domain Layer Base Classes.

The domain layer contains pure business logic with no external dependencies.
This makes business rules:
- Easy to test (no mocking needed)
- Reusable across different interfaces
- Clear and self-documenting

Example Usage:
    class LateFeePolicy(PolicyEngine):
        def evaluate(self, context: dict) -> PolicyDecision:
            # Pure business logic here
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class PolicyResult(Enum):
    """Result of a policy evaluation."""
    APPROVED = "approved"
    DENIED = "denied"
    REQUIRES_REVIEW = "requires_review"
    CONDITIONAL = "conditional"


@dataclass
class PolicyDecision:
    """
    The outcome of a policy evaluation.

    Attributes:
        result: The policy decision result
        reason: Human-readable explanation
        conditions: Any conditions that must be met (for CONDITIONAL results)
        metadata: Additional context for the decision
    """
    result: PolicyResult
    reason: str
    conditions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.result == PolicyResult.APPROVED

    @property
    def is_denied(self) -> bool:
        return self.result == PolicyResult.DENIED


class PolicyEngine(ABC):
    """
    Abstract base class for policy engines.

    A PolicyEngine encapsulates a set of business rules that can be
    evaluated against a context to produce a decision.

    Example:
        class ReturnEligibilityPolicy(PolicyEngine):
            def evaluate(self, context: dict) -> PolicyDecision:
                if context.get("status") != "active":
                    return PolicyDecision(
                        result=PolicyResult.DENIED,
                        reason="Only active rentals can be returned"
                    )
                return PolicyDecision(
                    result=PolicyResult.APPROVED,
                    reason="Rental is eligible for return"
                )
    """

    @abstractmethod
    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        """
        Evaluate the policy against the given context.

        Args:
            context: Dictionary containing all data needed for evaluation

        Returns:
            PolicyDecision with the result and explanation
        """
        pass

    def explain(self, context: Dict[str, Any]) -> str:
        """
        Provide a human-readable explanation of how the policy would be applied.

        Default implementation returns the reason from evaluate().
        Override for more detailed explanations.
        """
        decision = self.evaluate(context)
        return decision.reason


class DomainService(ABC):
    """
    Abstract base class for domain services.

    Domain services contain business logic that doesn't belong to a single entity.
    They orchestrate multiple policies and entities to perform complex operations.

    Key principles:
    - No I/O operations (database, network, file)
    - All dependencies passed as parameters
    - Return domain objects, not DTOs
    """

    @abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """
        Execute the domain service operation.

        Implementation should contain pure business logic only.
        """
        pass


@dataclass
class ValidationError:
    """A validation error with field and message."""
    field: str
    message: str
    code: str = "invalid"

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


class Validator(ABC):
    """
    Abstract base class for validators.

    Validators check that data meets business requirements before processing.
    """

    @abstractmethod
    def validate(self, data: Any) -> List[ValidationError]:
        """
        Validate the data and return any errors.

        Args:
            data: The data to validate

        Returns:
            List of ValidationError objects (empty if valid)
        """
        pass

    def is_valid(self, data: Any) -> bool:
        """Check if data is valid."""
        return len(self.validate(data)) == 0


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(date_string: str) -> Optional[datetime]:
    """Parse an ISO format date string safely."""
    if not date_string:
        return None
    try:
        if "Z" in date_string:
            return datetime.fromisoformat(date_string.replace("Z", "+00:00"))
        return ensure_utc(datetime.fromisoformat(date_string))
    except (ValueError, TypeError):
        return None


def coerce_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Normalize a date-like value to an aware datetime.

    Plain dates are taken as midnight UTC. Returns None for anything
    missing or unparsable so callers can decide how loudly to fail.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_date(value.strip())
    return None
