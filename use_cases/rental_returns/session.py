"""
Rental Returns Session Context.

Extends the base SessionContext with the state of one return workflow:
the transaction being returned, the condition splits declared per line,
the current step and the last penalty calculation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional

from core.session import SessionContext

from .domain.models import (
    LineReturnState,
    PenaltyCalculationResult,
    ProcessingMode,
    RentalTransaction,
)
from .domain.services import SessionValidationResult, processing_mode_for
from .errors import UnknownLineError


class ReturnStep(IntEnum):
    """Steps in the return workflow."""
    DECLARING_CONDITIONS = 1
    REVIEWING_PENALTY = 2
    CONFIRMING = 3


@dataclass
class ReturnSession(SessionContext):
    """
    Session context for one rental return.

    Owns its LineReturnState entries and the last calculation. The
    session_id is the transaction code: one open return per transaction.
    """

    transaction: Optional[RentalTransaction] = None

    # line_id -> declared splits, one entry per returnable line
    lines: Dict[str, LineReturnState] = field(default_factory=dict)

    step: ReturnStep = ReturnStep.DECLARING_CONDITIONS

    # Last computed penalty and whether splits changed since
    last_calculation: Optional[PenaltyCalculationResult] = None
    calculation_dirty: bool = False
    actual_return_date: Optional[datetime] = None

    validation: Optional[SessionValidationResult] = None
    processing_error: Optional[str] = None
    is_committing: bool = False

    @classmethod
    def for_transaction(cls, transaction: RentalTransaction) -> "ReturnSession":
        """Create a session seeded with one full-quantity split per returnable line."""
        return cls(
            session_id=transaction.code,
            transaction=transaction,
            lines={
                line.line_id: LineReturnState.seeded(line)
                for line in transaction.returnable_lines
            },
        )

    @property
    def transaction_code(self) -> str:
        return self.session_id

    @property
    def processing_mode(self) -> ProcessingMode:
        return processing_mode_for(self.lines.values())

    @property
    def has_fresh_calculation(self) -> bool:
        return self.last_calculation is not None and not self.calculation_dirty

    def line(self, line_id: str) -> LineReturnState:
        """Get a line's state, raising UnknownLineError if it is not part of the return."""
        try:
            return self.lines[line_id]
        except KeyError:
            raise UnknownLineError(line_id) from None

    def mark_edited(self):
        """Record a split edit: stale calculation, cleared error."""
        self.processing_error = None
        if self.last_calculation is not None:
            self.calculation_dirty = True
        self._touch()

    def to_context_string(self) -> str:
        parts = [f"Return for transaction {self.transaction_code} (step {int(self.step)})"]
        for state in self.lines.values():
            parts.append(
                f"  - {state.line.product_name}: {state.allocated_quantity}/{state.total_quantity} "
                f"allocated over {len(state.splits)} condition(s)"
            )
        if self.last_calculation is not None:
            stale = " (stale)" if self.calculation_dirty else ""
            parts.append(f"Total penalty: {self.last_calculation.total_penalty}{stale}")
        if self.processing_error:
            parts.append(f"Error: {self.processing_error}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        base = super().to_dict()
        base.update({
            "transaction_code": self.transaction_code,
            "step": int(self.step),
            "processing_mode": self.processing_mode.value,
            "lines": [state.to_dict() for state in self.lines.values()],
            "validation": self.validation.to_dict() if self.validation else None,
            "penalty": self.last_calculation.to_dict() if self.last_calculation else None,
            "calculation_dirty": self.calculation_dirty,
            "actual_return_date": (
                self.actual_return_date.isoformat() if self.actual_return_date else None
            ),
            "processing_error": self.processing_error,
            "is_committing": self.is_committing,
        })
        return base
