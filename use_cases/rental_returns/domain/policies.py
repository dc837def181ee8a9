"""
Return Penalty Policies - Pure Business Rules.

These policies encapsulate the business rules for rental returns.
They have NO dependencies on databases or external services.
All data needed for evaluation is passed in as parameters.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.domain import (
    PolicyEngine,
    PolicyDecision,
    PolicyResult,
)

from .models import ConditionClassification, SeverityTier


# =============================================================================
# CONFIGURATION (overridable through config.Settings)
# =============================================================================

# Late fee per unit per day (IDR)
DAILY_LATE_RATE = 5000

# Condition fee as a multiple of the daily rate
CONDITION_TIER_MULTIPLIERS = {
    "light": 1,
    "moderate": 2,
    "severe": 4,
}

# Lost item with no known cost is charged this many days of late fee
LOST_ITEM_DEFAULT_DAYS = 30

# Hard cap on late days used in fee computation
MAX_PENALTY_DAYS = 365

# More splits than this on one line is a warning, not an error
SPLIT_COMPLEXITY_WARNING_THRESHOLD = 5

# Hard limit on splits per line
MAX_CONDITIONS_PER_LINE = 10

# Only transactions in this status can be returned
RETURNABLE_TRANSACTION_STATUSES = ["active"]

# Standard condition labels offered to the cashier
SUPPORTED_CONDITIONS = [
    "Baik - tidak ada kerusakan",
    "Baik - sedikit kotor/kusut",
    "Cukup - ada noda ringan",
    "Cukup - ada kerusakan kecil",
    "Buruk - ada noda berat",
    "Buruk - ada kerusakan besar",
    "Hilang/tidak dikembalikan",
]

# Keyword tables, checked in this order
LOST_KEYWORDS = ["hilang", "tidak dikembalikan"]
SEVERE_KEYWORDS = ["kerusakan besar", "rusak berat", "rusak parah"]
MODERATE_KEYWORDS = ["cukup - ada kerusakan", "kerusakan kecil", "kerusakan sedang", "noda berat", "buruk - ada noda"]
LIGHT_KEYWORDS = ["baik - sedikit", "sedikit kotor", "kusut", "noda ringan"]
GOOD_PHRASES = ["baik", "baik - tidak ada kerusakan", "tidak ada kerusakan"]


def normalize_condition(label: str) -> str:
    """Lowercase, collapse whitespace and normalize the ' - ' separator."""
    text = " ".join((label or "").lower().split())
    return re.sub(r"\s*-\s*", " - ", text)


def _matches(normalized: str, keywords: List[str]) -> bool:
    return any(keyword in normalized for keyword in keywords)


@dataclass(frozen=True)
class PenaltyRules:
    """The rule table every penalty computation reads from."""
    daily_late_rate: int = DAILY_LATE_RATE
    tier_multipliers: Dict[str, int] = field(
        default_factory=lambda: dict(CONDITION_TIER_MULTIPLIERS)
    )
    lost_item_default_days: int = LOST_ITEM_DEFAULT_DAYS
    max_penalty_days: int = MAX_PENALTY_DAYS
    max_conditions_per_line: int = MAX_CONDITIONS_PER_LINE

    @classmethod
    def from_settings(cls, settings) -> "PenaltyRules":
        return cls(
            daily_late_rate=settings.daily_late_rate,
            lost_item_default_days=settings.lost_item_default_days,
            max_penalty_days=settings.max_penalty_days,
            max_conditions_per_line=settings.max_conditions_per_line,
        )

    def condition_fee(self, category: str) -> int:
        """Per-unit fee for a damage category (light / moderate / severe)."""
        return self.daily_late_rate * self.tier_multipliers[category]

    @property
    def lost_item_fallback_fee(self) -> int:
        return self.daily_late_rate * self.lost_item_default_days

    def describe(self) -> Dict[str, Any]:
        return {
            "daily_late_rate": self.daily_late_rate,
            "tier_multipliers": dict(self.tier_multipliers),
            "lost_item_default_days": self.lost_item_default_days,
            "max_penalty_days": self.max_penalty_days,
            "max_conditions_per_line": self.max_conditions_per_line,
            "supported_conditions": list(SUPPORTED_CONDITIONS),
        }


# =============================================================================
# POLICIES
# =============================================================================

class ConditionClassificationPolicy(PolicyEngine):
    """
    Classifies a free-text condition label into a severity tier and fee.

    Precedence: lost, severe damage, moderate damage, light damage,
    good condition. Anything unrecognized is charged the moderate fee,
    never zero.

    Context required:
        - condition_label: The label typed or picked by the cashier
        - original_cost_override: Optional per-unit valuation for lost items
        - unit_original_cost: Optional product cost from the rental line
    """

    def __init__(self, rules: Optional[PenaltyRules] = None):
        self.rules = rules or PenaltyRules()

    def classify(
        self,
        condition_label: str,
        original_cost_override: Optional[int] = None,
        unit_original_cost: Optional[int] = None,
    ) -> ConditionClassification:
        normalized = normalize_condition(condition_label)
        rules = self.rules

        if _matches(normalized, LOST_KEYWORDS):
            if original_cost_override and original_cost_override > 0:
                return ConditionClassification(
                    tier=SeverityTier.LOST,
                    category="lost",
                    per_unit_condition_fee=int(original_cost_override),
                    description=f"Lost item charged at declared value {int(original_cost_override)} per unit",
                    calculation_method="modal_awal",
                )
            if unit_original_cost and unit_original_cost > 0:
                return ConditionClassification(
                    tier=SeverityTier.LOST,
                    category="lost",
                    per_unit_condition_fee=int(unit_original_cost),
                    description=f"Lost item charged at product cost {int(unit_original_cost)} per unit",
                    calculation_method="modal_awal",
                )
            return ConditionClassification(
                tier=SeverityTier.LOST,
                category="lost",
                per_unit_condition_fee=rules.lost_item_fallback_fee,
                description=f"Lost item charged {rules.lost_item_default_days} days of late fee",
                calculation_method="late_fee",
            )

        if _matches(normalized, SEVERE_KEYWORDS):
            return ConditionClassification(
                tier=SeverityTier.DAMAGED,
                category="severe",
                per_unit_condition_fee=rules.condition_fee("severe"),
                description="Severe damage",
                calculation_method="damage_fee",
            )

        if _matches(normalized, MODERATE_KEYWORDS):
            return ConditionClassification(
                tier=SeverityTier.DAMAGED,
                category="moderate",
                per_unit_condition_fee=rules.condition_fee("moderate"),
                description="Moderate damage or heavy stains",
                calculation_method="damage_fee",
            )

        if _matches(normalized, LIGHT_KEYWORDS):
            return ConditionClassification(
                tier=SeverityTier.DAMAGED,
                category="light",
                per_unit_condition_fee=rules.condition_fee("light"),
                description="Light dirt or minor damage",
                calculation_method="damage_fee",
            )

        if normalized in GOOD_PHRASES or normalized.startswith("baik - tidak ada kerusakan"):
            return ConditionClassification(
                tier=SeverityTier.ON_TIME,
                category="none",
                per_unit_condition_fee=0,
                description="Returned in good condition",
            )

        return ConditionClassification(
            tier=SeverityTier.DAMAGED,
            category="unrecognized",
            per_unit_condition_fee=rules.condition_fee("moderate"),
            description="Non-standard condition charged as moderate damage",
            calculation_method="damage_fee",
        )

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        classification = self.classify(
            context.get("condition_label", ""),
            context.get("original_cost_override"),
            context.get("unit_original_cost"),
        )
        metadata = {
            "tier": classification.tier.value,
            "category": classification.category,
            "per_unit_condition_fee": classification.per_unit_condition_fee,
            "calculation_method": classification.calculation_method,
        }

        if classification.per_unit_condition_fee > 0:
            return PolicyDecision(
                result=PolicyResult.CONDITIONAL,
                reason=classification.description,
                conditions=[
                    f"Customer pays {classification.per_unit_condition_fee} per unit for condition"
                ],
                metadata=metadata,
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason=classification.description,
            metadata=metadata,
        )


class ReturnEligibilityPolicy(PolicyEngine):
    """
    Checks whether a rental transaction can be returned at all.

    Context required:
        - status: Transaction status string
        - returnable_line_count: Lines taken out and not yet fully returned
    """

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        status = (context.get("status") or "").lower()
        if status not in RETURNABLE_TRANSACTION_STATUSES:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Transaction with status '{status}' cannot be returned",
                metadata={"status": status},
            )

        returnable = context.get("returnable_line_count", 0)
        if returnable <= 0:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason="No items left to return on this transaction",
                metadata={"status": status, "returnable_line_count": 0},
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason=f"{returnable} line(s) can be returned",
            metadata={"status": status, "returnable_line_count": returnable},
        )
