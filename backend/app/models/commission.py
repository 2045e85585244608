from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class CalculationMethod(str, enum.Enum):
    FIXED_AMOUNT = "FIXED_AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class CommissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


# Statuses a reviewer can still act on
OPEN_STATUSES = (CommissionStatus.PENDING, CommissionStatus.CALCULATED)


class FieldUserCommissionAssignment(Base):
    """Commission rule for one field agent and rate type.

    client_id NULL means the assignment applies to every client.
    Exactly one of commission_amount / commission_percentage is set,
    matching calculation_method.
    """
    __tablename__ = "field_user_commission_assignments"
    __table_args__ = (
        CheckConstraint(
            "(calculation_method = 'FIXED_AMOUNT' AND commission_amount IS NOT NULL AND commission_percentage IS NULL)"
            " OR (calculation_method = 'PERCENTAGE' AND commission_percentage IS NOT NULL AND commission_amount IS NULL)",
            name="ck_assignment_single_value",
        ),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_assignment_window",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rate_type_id = Column(Integer, ForeignKey("rate_types.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)

    calculation_method = Column(String, nullable=False, default=CalculationMethod.FIXED_AMOUNT.value)
    commission_amount = Column(Numeric(10, 2), nullable=True)
    commission_percentage = Column(Numeric(5, 2), nullable=True)  # 7.5 means 7.5%
    currency = Column(String(3), nullable=False, default="INR")

    is_active = Column(Boolean, default=True, nullable=False)
    effective_from = Column(DateTime(timezone=True), nullable=False)
    effective_to = Column(DateTime(timezone=True), nullable=True)  # open-ended when NULL

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    rate_type = relationship("RateType")
    client = relationship("Client")


class CommissionCalculation(Base):
    """Ledger entry: one per (case, field agent).

    Amounts are a snapshot taken at creation and are never recomputed.
    Rows are never deleted.
    """
    __tablename__ = "commission_calculations"
    __table_args__ = (
        UniqueConstraint("case_id", "user_id", name="uq_commission_calculations_case_user"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Case snapshot
    case_id = Column(String, nullable=False, index=True)
    case_number = Column(Integer, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    rate_type_id = Column(Integer, ForeignKey("rate_types.id"), nullable=False, index=True)

    # Calculation snapshot
    base_amount = Column(Numeric(10, 2), nullable=False)
    applied_rate = Column(Numeric(10, 2), nullable=False)  # fixed amount or percentage used
    commission_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    calculation_method = Column(String, nullable=False)

    status = Column(String, nullable=False, default=CommissionStatus.PENDING.value, index=True)
    case_completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    calculated_at = Column(DateTime(timezone=True), nullable=False)

    # Review trail
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    paid_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String, nullable=True)
    transaction_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    client = relationship("Client")
    rate_type = relationship("RateType")
