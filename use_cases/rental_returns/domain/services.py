"""
Domain Services - Business Operations.

These services orchestrate business logic without I/O dependencies.
They use policies for decisions and work with pure data structures.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.domain import DomainService, ValidationError, Validator, coerce_datetime

from ..errors import InvalidScheduleError
from .models import (
    ConditionSplit,
    DateLike,
    LineReturnState,
    MAX_CONDITION_LENGTH,
    MIN_CONDITION_LENGTH,
    PenaltyCalculationResult,
    PenaltyLineBreakdown,
    PenaltySummary,
    ProcessingMode,
    RentalLineItem,
    SeverityTier,
)
from .policies import (
    ConditionClassificationPolicy,
    MAX_PENALTY_DAYS,
    PenaltyRules,
    SPLIT_COMPLEXITY_WARNING_THRESHOLD,
)

SECONDS_PER_DAY = 24 * 60 * 60


def _line_states(session) -> List[LineReturnState]:
    """Accept a session (anything with a ``lines`` mapping) or an iterable of line states."""
    lines = getattr(session, "lines", session)
    if isinstance(lines, dict):
        return list(lines.values())
    return list(lines)


def processing_mode_for(line_states: Iterable[LineReturnState]) -> ProcessingMode:
    """Classify a set of lines as single-, multi-condition or mixed."""
    single = 0
    multi = 0
    for state in line_states:
        if state.is_multi:
            multi += 1
        else:
            single += 1
    if multi == 0:
        return ProcessingMode.SINGLE_CONDITION
    if single == 0:
        return ProcessingMode.MULTI_CONDITION
    return ProcessingMode.MIXED


def compute_late_days(
    expected_return_date: DateLike,
    actual_return_date: DateLike,
    max_penalty_days: int = MAX_PENALTY_DAYS,
    line_id: Optional[str] = None,
) -> int:
    """
    Whole late days between the expected and actual return.

    Any started day counts as a full day. Never negative, and capped at
    ``max_penalty_days``.

    Raises:
        InvalidScheduleError: If either date is missing or unparsable
    """
    expected = coerce_datetime(expected_return_date)
    if expected is None:
        raise InvalidScheduleError(
            f"Expected return date is missing or invalid: {expected_return_date!r}",
            line_id=line_id,
        )
    actual = coerce_datetime(actual_return_date)
    if actual is None:
        raise InvalidScheduleError(
            f"Actual return date is missing or invalid: {actual_return_date!r}",
            line_id=line_id,
        )

    seconds_late = (actual - expected).total_seconds()
    if seconds_late <= 0:
        return 0
    return min(math.ceil(seconds_late / SECONDS_PER_DAY), max_penalty_days)


class PenaltyCalculator(DomainService):
    """
    Computes late fees and condition fees for a return.

    This is pure business logic with no I/O. The same session state and
    actual return date always produce the same result.
    """

    def __init__(
        self,
        rules: Optional[PenaltyRules] = None,
        classifier: Optional[ConditionClassificationPolicy] = None,
    ):
        self.rules = rules or PenaltyRules()
        self.classifier = classifier or ConditionClassificationPolicy(self.rules)

    def classify_condition(
        self,
        condition_label: str,
        original_cost_override: Optional[int] = None,
        unit_original_cost: Optional[int] = None,
    ):
        return self.classifier.classify(condition_label, original_cost_override, unit_original_cost)

    def compute_late_days(self, expected_return_date: DateLike, actual_return_date: DateLike) -> int:
        return compute_late_days(expected_return_date, actual_return_date, self.rules.max_penalty_days)

    def compute_split_penalty(
        self,
        split: ConditionSplit,
        expected_return_date: DateLike,
        actual_return_date: DateLike,
        line: Optional[RentalLineItem] = None,
        split_index: int = 0,
    ) -> PenaltyLineBreakdown:
        """
        Calculate the penalty for one condition split.

        Fees are per unit and scale with the split quantity, including the
        lost-item valuation. A lost split carries no late fee: its valuation
        already covers the unit.
        """
        line_id = line.line_id if line else ""
        late_days = compute_late_days(
            expected_return_date,
            actual_return_date,
            self.rules.max_penalty_days,
            line_id=line_id or None,
        )
        classification = self.classify_condition(
            split.condition_label,
            split.original_cost_override,
            line.unit_original_cost if line else None,
        )

        quantity = split.quantity
        if classification.tier == SeverityTier.LOST:
            late_fee = 0
        else:
            late_fee = late_days * self.rules.daily_late_rate * quantity
        condition_fee = classification.per_unit_condition_fee * quantity

        tier = classification.tier
        if tier == SeverityTier.ON_TIME and late_days > 0:
            tier = SeverityTier.LATE

        if late_fee > 0 and condition_fee > 0:
            description = f"{late_days} day(s) late combined with {classification.description.lower()}"
        elif late_fee > 0:
            description = f"Returned {late_days} day(s) late"
        elif tier == SeverityTier.ON_TIME:
            description = "Returned on time in good condition"
        else:
            description = classification.description

        calculation_method = classification.calculation_method
        if calculation_method == "none" and late_fee > 0:
            calculation_method = "late_fee"

        return PenaltyLineBreakdown(
            line_id=line_id,
            product_name=line.product_name if line else "",
            split_index=split_index,
            condition_label=split.condition_label,
            quantity=quantity,
            late_days=late_days,
            late_fee_for_split=late_fee,
            condition_fee_for_split=condition_fee,
            total_for_split=late_fee + condition_fee,
            severity_tier=tier,
            human_description=description,
            calculation_method=calculation_method,
            rate_applied=self.rules.daily_late_rate,
            original_cost_used=(
                classification.per_unit_condition_fee
                if classification.calculation_method == "modal_awal"
                else None
            ),
        )

    def compute_line_penalty(
        self,
        line_state: LineReturnState,
        actual_return_date: DateLike,
    ) -> List[PenaltyLineBreakdown]:
        line = line_state.line
        return [
            self.compute_split_penalty(split, line.expected_return_date, actual_return_date, line, index)
            for index, split in enumerate(line_state.splits)
        ]

    def compute_transaction_penalty(self, session, actual_return_date: DateLike) -> PenaltyCalculationResult:
        """
        Calculate the full penalty breakdown for every split of every line.

        Args:
            session: A ReturnSession, or any iterable of LineReturnState
            actual_return_date: When the goods came back

        Returns:
            PenaltyCalculationResult with totals, breakdown and summary
        """
        line_states = _line_states(session)
        breakdown: List[PenaltyLineBreakdown] = []
        for state in line_states:
            breakdown.extend(self.compute_line_penalty(state, actual_return_date))

        units = {tier: 0 for tier in SeverityTier}
        for entry in breakdown:
            units[entry.severity_tier] += entry.quantity

        multi_lines = sum(1 for state in line_states if state.is_multi)
        summary = PenaltySummary(
            total_lines=len(line_states),
            total_conditions=len(breakdown),
            on_time_units=units[SeverityTier.ON_TIME],
            late_units=units[SeverityTier.LATE],
            damaged_units=units[SeverityTier.DAMAGED],
            lost_units=units[SeverityTier.LOST],
            single_condition_lines=len(line_states) - multi_lines,
            multi_condition_lines=multi_lines,
            average_conditions_per_line=(
                round(len(breakdown) / len(line_states), 2) if line_states else 0.0
            ),
        )

        return PenaltyCalculationResult(
            total_penalty=sum(entry.total_for_split for entry in breakdown),
            total_late_days=sum(entry.late_days * entry.quantity for entry in breakdown),
            breakdown=breakdown,
            summary=summary,
            processing_mode=processing_mode_for(line_states),
        )

    def execute(self, session, actual_return_date: DateLike) -> PenaltyCalculationResult:
        return self.compute_transaction_penalty(session, actual_return_date)


# =============================================================================
# VALIDATION
# =============================================================================

@dataclass
class LineValidationResult:
    """Validation outcome for one line's condition splits."""
    line_id: str
    is_valid: bool
    total_quantity: int
    allocated_quantity: int
    remaining_quantity: int
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    can_add_split: bool = False

    @property
    def error(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_id": self.line_id,
            "is_valid": self.is_valid,
            "error": self.error,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "total_quantity": self.total_quantity,
            "allocated_quantity": self.allocated_quantity,
            "remaining_quantity": self.remaining_quantity,
            "can_add_split": self.can_add_split,
        }


@dataclass
class SessionValidationResult:
    """Validation outcome for a whole return session."""
    is_form_valid: bool
    can_proceed: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    line_results: Dict[str, LineValidationResult] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_form_valid": self.is_form_valid,
            "can_proceed": self.can_proceed,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "lines": {line_id: result.to_dict() for line_id, result in self.line_results.items()},
        }


class ConditionSplitValidator(Validator):
    """
    Validates the condition splits declared for rental lines.

    Over-allocation, empty allocation and malformed splits are errors.
    Unallocated units and overly fragmented lines are warnings only.
    """

    def __init__(self, rules: Optional[PenaltyRules] = None):
        self.rules = rules or PenaltyRules()

    def _split_errors(self, line_id: str, index: int, split: ConditionSplit) -> List[ValidationError]:
        errors = []
        field_prefix = f"lines[{line_id}].splits[{index}]"
        label = (split.condition_label or "").strip()

        if not label:
            errors.append(ValidationError(
                field=f"{field_prefix}.condition_label",
                message=f"Condition {index + 1} is required",
                code="required",
            ))
        elif len(label) < MIN_CONDITION_LENGTH:
            errors.append(ValidationError(
                field=f"{field_prefix}.condition_label",
                message=f"Condition {index + 1} must be at least {MIN_CONDITION_LENGTH} characters",
                code="min_length",
            ))
        elif len(label) > MAX_CONDITION_LENGTH:
            errors.append(ValidationError(
                field=f"{field_prefix}.condition_label",
                message=f"Condition {index + 1} must be at most {MAX_CONDITION_LENGTH} characters",
                code="max_length",
            ))

        if split.quantity <= 0:
            errors.append(ValidationError(
                field=f"{field_prefix}.quantity",
                message=f"Condition {index + 1} quantity must be greater than zero",
                code="min_value",
            ))
        return errors

    def validate(self, data: LineReturnState) -> List[ValidationError]:
        return self.validate_line(data).errors

    def validate_line(self, line_state: LineReturnState) -> LineValidationResult:
        line_id = line_state.line_id
        total = line_state.total_quantity
        allocated = line_state.allocated_quantity
        remaining = total - allocated
        errors: List[ValidationError] = []
        warnings: List[str] = []

        if allocated > total:
            errors.append(ValidationError(
                field=f"lines[{line_id}].quantity",
                message=f"Allocated quantity exceeds available quantity by {allocated - total}",
                code="exceeds_available",
            ))
        elif allocated == 0:
            errors.append(ValidationError(
                field=f"lines[{line_id}].quantity",
                message="Allocate at least one unit, or mark the whole line as lost",
                code="nothing_allocated",
            ))

        split_errors = [
            error
            for index, split in enumerate(line_state.splits)
            for error in self._split_errors(line_id, index, split)
        ]
        errors.extend(split_errors)

        if remaining > 0:
            warnings.append(f"{remaining} unit(s) not yet allocated")
        if len(line_state.splits) > SPLIT_COMPLEXITY_WARNING_THRESHOLD:
            warnings.append(
                f"{len(line_state.splits)} different conditions on one line, consider merging similar ones"
            )

        first_split_ok = bool(line_state.splits) and not self._split_errors(line_id, 0, line_state.splits[0])
        can_add_split = (
            first_split_ok
            and 0 < remaining < total
            and len(line_state.splits) < self.rules.max_conditions_per_line
        )

        return LineValidationResult(
            line_id=line_id,
            is_valid=not errors,
            total_quantity=total,
            allocated_quantity=allocated,
            remaining_quantity=remaining,
            errors=errors,
            warnings=warnings,
            can_add_split=can_add_split,
        )

    def validate_session(self, session) -> SessionValidationResult:
        """
        Validate every returnable line of the session's transaction.

        Lines that are not returnable (nothing taken out, or already fully
        returned) are ignored entirely.
        """
        errors: List[ValidationError] = []
        warnings: List[str] = []
        line_results: Dict[str, LineValidationResult] = {}

        for line in session.transaction.returnable_lines:
            state = session.lines.get(line.line_id)
            if state is None:
                errors.append(ValidationError(
                    field=f"lines[{line.line_id}]",
                    message=f"{line.product_name}: condition not declared",
                    code="missing_line",
                ))
                continue
            if not state.splits:
                errors.append(ValidationError(
                    field=f"lines[{line.line_id}].splits",
                    message=f"{line.product_name}: at least one condition is required",
                    code="no_conditions",
                ))
                continue

            result = self.validate_line(state)
            line_results[line.line_id] = result
            errors.extend(
                ValidationError(field=e.field, message=f"{line.product_name}: {e.message}", code=e.code)
                for e in result.errors
            )
            warnings.extend(f"{line.product_name}: {w}" for w in result.warnings)

        is_valid = not errors
        return SessionValidationResult(
            is_form_valid=is_valid,
            can_proceed=is_valid,
            errors=errors,
            warnings=warnings,
            line_results=line_results,
        )


# =============================================================================
# RETURN REQUEST
# =============================================================================

@dataclass
class ReturnRequest:
    """A return ready to be committed through the transaction gateway."""
    transaction_code: str
    items: List[Dict[str, Any]]
    actual_return_date: datetime
    total_penalty: int
    processing_mode: ProcessingMode
    notes: Optional[str] = None

    @property
    def condition_count(self) -> int:
        return sum(len(item["conditions"]) for item in self.items)

    def fingerprint_payload(self) -> Dict[str, Any]:
        """
        The allow-listed part of the request that identifies a user intent.

        The return date is deliberately absent: two clicks a second apart
        are the same intent.
        """
        return {
            "transaction_code": self.transaction_code,
            "items": sorted(
                (
                    {
                        "line_id": item["line_id"],
                        "conditions": [
                            {
                                "condition_label": c["condition_label"],
                                "quantity": c["quantity"],
                                "original_cost_override": c.get("original_cost_override"),
                            }
                            for c in item["conditions"]
                        ],
                    }
                    for item in self.items
                ),
                key=lambda item: item["line_id"],
            ),
            "notes": self.notes or "",
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "transaction_code": self.transaction_code,
            "items": self.items,
            "notes": self.notes,
            "actual_return_date": self.actual_return_date.isoformat(),
            "total_penalty": self.total_penalty,
            "processing_mode": self.processing_mode.value,
        }


class ReturnRequestBuilder(DomainService):
    """
    Builds the commit payload from a return session.

    The session must already carry an up-to-date penalty calculation.
    """

    def execute(self, session, notes: Optional[str] = None) -> ReturnRequest:
        if session.last_calculation is None:
            raise ValueError("Penalty must be calculated before building a return request")

        items = [
            {
                "line_id": state.line_id,
                "mode": state.mode.value,
                "returned_quantity": state.allocated_quantity,
                "conditions": [
                    {
                        "condition_label": split.condition_label.strip(),
                        "quantity": split.quantity,
                        "original_cost_override": split.original_cost_override,
                    }
                    for split in state.splits
                ],
            }
            for state in session.lines.values()
        ]

        return ReturnRequest(
            transaction_code=session.transaction_code,
            items=items,
            actual_return_date=session.actual_return_date,
            total_penalty=session.last_calculation.total_penalty,
            processing_mode=session.last_calculation.processing_mode,
            notes=notes.strip() if notes else None,
        )
