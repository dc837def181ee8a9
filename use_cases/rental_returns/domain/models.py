"""
Rental Returns Domain Models.

Plain data structures shared by the policies, services and the session.
No I/O and no business rules beyond simple derived values.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


DateLike = Union[str, datetime, None]

# Condition label length bounds
MIN_CONDITION_LENGTH = 4
MAX_CONDITION_LENGTH = 500


class ReturnedStatus(Enum):
    """How much of a line has already been brought back."""
    NONE = "none"
    PARTIAL = "partial"
    COMPLETE = "complete"


class SeverityTier(Enum):
    """Fee classification of one condition split."""
    ON_TIME = "on_time"
    LATE = "late"
    DAMAGED = "damaged"
    LOST = "lost"


# Headline priority when a split must be reduced to one label
TIER_PRIORITY = {
    SeverityTier.ON_TIME: 0,
    SeverityTier.LATE: 1,
    SeverityTier.DAMAGED: 2,
    SeverityTier.LOST: 3,
}


class SplitMode(Enum):
    """Display tag for a line: one condition or several."""
    SINGLE = "single"
    MULTI = "multi"


class ProcessingMode(Enum):
    SINGLE_CONDITION = "single-condition"
    MULTI_CONDITION = "multi-condition"
    MIXED = "mixed"


@dataclass
class RentalLineItem:
    """One rented product line of a transaction (read-only input)."""
    line_id: str
    product_name: str
    quantity_taken_out: int
    already_returned_status: ReturnedStatus = ReturnedStatus.NONE
    unit_original_cost: Optional[int] = None
    expected_return_date: DateLike = None

    @property
    def is_returnable(self) -> bool:
        return (
            self.quantity_taken_out > 0
            and self.already_returned_status != ReturnedStatus.COMPLETE
        )

    def to_dict(self) -> Dict[str, Any]:
        expected = self.expected_return_date
        return {
            "line_id": self.line_id,
            "product_name": self.product_name,
            "quantity_taken_out": self.quantity_taken_out,
            "already_returned_status": self.already_returned_status.value,
            "unit_original_cost": self.unit_original_cost,
            "expected_return_date": expected.isoformat() if isinstance(expected, datetime) else expected,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RentalLineItem":
        return cls(
            line_id=str(data["line_id"]),
            product_name=data.get("product_name", ""),
            quantity_taken_out=int(data.get("quantity_taken_out", 0)),
            already_returned_status=ReturnedStatus(data.get("already_returned_status", "none")),
            unit_original_cost=data.get("unit_original_cost"),
            expected_return_date=data.get("expected_return_date"),
        )


@dataclass
class RentalTransaction:
    """A rental transaction as returned by the gateway."""
    code: str
    lines: List[RentalLineItem] = field(default_factory=list)
    status: str = "active"
    customer_name: str = ""

    @property
    def returnable_lines(self) -> List[RentalLineItem]:
        return [line for line in self.lines if line.is_returnable]

    def get_line(self, line_id: str) -> Optional[RentalLineItem]:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "status": self.status,
            "customer_name": self.customer_name,
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RentalTransaction":
        return cls(
            code=data["code"],
            status=data.get("status", "active"),
            customer_name=data.get("customer_name", ""),
            lines=[RentalLineItem.from_dict(line) for line in data.get("lines", [])],
        )


@dataclass
class ConditionSplit:
    """One declared condition for some sub-quantity of a line."""
    condition_label: str = ""
    quantity: int = 0
    original_cost_override: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition_label": self.condition_label,
            "quantity": self.quantity,
            "original_cost_override": self.original_cost_override,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionSplit":
        return cls(
            condition_label=data.get("condition_label", ""),
            quantity=int(data.get("quantity", 0)),
            original_cost_override=data.get("original_cost_override"),
        )


@dataclass
class LineReturnState:
    """
    One line's full declaration.

    A line starts with exactly one split covering its whole quantity.
    Splits are only appended, and only removed while more than one remains.
    """
    line: RentalLineItem
    splits: List[ConditionSplit] = field(default_factory=list)
    mode: SplitMode = SplitMode.SINGLE

    @classmethod
    def seeded(cls, line: RentalLineItem) -> "LineReturnState":
        return cls(line=line, splits=[ConditionSplit(quantity=line.quantity_taken_out)])

    @property
    def line_id(self) -> str:
        return self.line.line_id

    @property
    def total_quantity(self) -> int:
        return self.line.quantity_taken_out

    @property
    def allocated_quantity(self) -> int:
        return sum(split.quantity for split in self.splits)

    @property
    def remaining_quantity(self) -> int:
        return self.total_quantity - self.allocated_quantity

    @property
    def is_multi(self) -> bool:
        return self.mode == SplitMode.MULTI and len(self.splits) > 1

    @property
    def is_complete(self) -> bool:
        return self.remaining_quantity == 0 and all(
            MIN_CONDITION_LENGTH <= len(split.condition_label.strip()) <= MAX_CONDITION_LENGTH
            and split.quantity > 0
            for split in self.splits
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_id": self.line_id,
            "product_name": self.line.product_name,
            "mode": self.mode.value,
            "splits": [split.to_dict() for split in self.splits],
            "total_quantity": self.total_quantity,
            "allocated_quantity": self.allocated_quantity,
            "remaining_quantity": self.remaining_quantity,
            "is_complete": self.is_complete,
        }


@dataclass(frozen=True)
class ConditionClassification:
    """How a condition label maps onto a fee tier."""
    tier: SeverityTier
    category: str
    per_unit_condition_fee: int
    description: str
    calculation_method: str = "none"


@dataclass(frozen=True)
class PenaltyLineBreakdown:
    """Computed penalty for one condition split. Never persisted directly."""
    line_id: str
    product_name: str
    split_index: int
    condition_label: str
    quantity: int
    late_days: int
    late_fee_for_split: int
    condition_fee_for_split: int
    total_for_split: int
    severity_tier: SeverityTier
    human_description: str
    calculation_method: str = "none"
    rate_applied: int = 0
    original_cost_used: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_id": self.line_id,
            "product_name": self.product_name,
            "split_index": self.split_index,
            "condition_label": self.condition_label,
            "quantity": self.quantity,
            "late_days": self.late_days,
            "late_fee_for_split": self.late_fee_for_split,
            "condition_fee_for_split": self.condition_fee_for_split,
            "total_for_split": self.total_for_split,
            "severity_tier": self.severity_tier.value,
            "human_description": self.human_description,
            "calculation_method": self.calculation_method,
            "rate_applied": self.rate_applied,
            "original_cost_used": self.original_cost_used,
        }


@dataclass(frozen=True)
class PenaltySummary:
    total_lines: int = 0
    total_conditions: int = 0
    on_time_units: int = 0
    late_units: int = 0
    damaged_units: int = 0
    lost_units: int = 0
    single_condition_lines: int = 0
    multi_condition_lines: int = 0
    average_conditions_per_line: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_lines": self.total_lines,
            "total_conditions": self.total_conditions,
            "on_time_units": self.on_time_units,
            "late_units": self.late_units,
            "damaged_units": self.damaged_units,
            "lost_units": self.lost_units,
            "single_condition_lines": self.single_condition_lines,
            "multi_condition_lines": self.multi_condition_lines,
            "average_conditions_per_line": self.average_conditions_per_line,
        }


@dataclass(frozen=True)
class PenaltyCalculationResult:
    """Full penalty breakdown for a return session."""
    total_penalty: int
    total_late_days: int
    breakdown: List[PenaltyLineBreakdown]
    summary: PenaltySummary
    processing_mode: ProcessingMode = ProcessingMode.SINGLE_CONDITION

    @property
    def headline_tier(self) -> SeverityTier:
        """The single most severe tier across the breakdown."""
        if not self.breakdown:
            return SeverityTier.ON_TIME
        return max((entry.severity_tier for entry in self.breakdown), key=TIER_PRIORITY.get)

    def for_line(self, line_id: str) -> List[PenaltyLineBreakdown]:
        return [entry for entry in self.breakdown if entry.line_id == line_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_penalty": self.total_penalty,
            "total_late_days": self.total_late_days,
            "headline_tier": self.headline_tier.value,
            "processing_mode": self.processing_mode.value,
            "breakdown": [entry.to_dict() for entry in self.breakdown],
            "summary": self.summary.to_dict(),
        }
