from app.models.user import User, UserRole
from app.models.client import Client
from app.models.rate import RateType, Rate, CommissionRateType
from app.models.commission import (
    CalculationMethod,
    CommissionStatus,
    FieldUserCommissionAssignment,
    CommissionCalculation,
)

__all__ = [
    "User",
    "UserRole",
    "Client",
    "RateType",
    "Rate",
    "CommissionRateType",
    "CalculationMethod",
    "CommissionStatus",
    "FieldUserCommissionAssignment",
    "CommissionCalculation",
]
