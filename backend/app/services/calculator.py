"""Commission calculator.

Pure function of (base amount, assignment). No I/O, no logging; callers
decide what to do with zero or negative results.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

from app.core.exceptions import ValidationError
from app.models.commission import CalculationMethod

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionResult:
    amount: Decimal
    method: CalculationMethod
    applied_rate: Decimal  # fixed amount, or percentage for PERCENTAGE


def to_decimal(value: Any, field: str = "value") -> Decimal:
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps floats like 7.5 exact instead of their binary expansion
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be numeric, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return result


def _method_of(assignment) -> CalculationMethod:
    raw = getattr(assignment, "calculation_method", None)
    if raw is None:
        raise ValidationError("Assignment has no calculation method")
    try:
        return CalculationMethod(raw)
    except ValueError:
        raise ValidationError(f"Unknown calculation method: {raw!r}")


def calculate_commission(base_amount, assignment) -> CommissionResult:
    """Compute the commission an assignment yields for a base amount.

    FIXED_AMOUNT returns the stored amount whatever the base amount is.
    PERCENTAGE returns base * pct / 100 rounded half-up to two places.
    """
    method = _method_of(assignment)
    base = to_decimal(base_amount, "base_amount")

    if method == CalculationMethod.FIXED_AMOUNT:
        amount = getattr(assignment, "commission_amount", None)
        if amount is None:
            raise ValidationError("FIXED_AMOUNT assignment is missing commission_amount")
        amount = to_decimal(amount, "commission_amount")
        return CommissionResult(amount=amount, method=method, applied_rate=amount)

    percentage = getattr(assignment, "commission_percentage", None)
    if percentage is None:
        raise ValidationError("PERCENTAGE assignment is missing commission_percentage")
    percentage = to_decimal(percentage, "commission_percentage")
    amount = (base * percentage / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return CommissionResult(amount=amount, method=method, applied_rate=percentage)
