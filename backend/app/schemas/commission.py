from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from app.services.commission_lifecycle import BulkOperation


# -- Assignments -------------------------------------------------------------

class AssignmentCreate(BaseModel):
    user_id: int = Field(..., ge=1)
    rate_type_id: int = Field(..., ge=1)
    commission_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    commission_percentage: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    client_id: Optional[int] = Field(None, ge=1)  # None = all clients
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None

    class Config:
        extra = "forbid"


class AssignmentUpdate(BaseModel):
    rate_type_id: Optional[int] = Field(None, ge=1)
    commission_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    commission_percentage: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    client_id: Optional[int] = Field(None, ge=1)
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    is_active: Optional[bool] = None

    class Config:
        extra = "forbid"


class Assignment(BaseModel):
    id: int
    user_id: int
    rate_type_id: int
    client_id: Optional[int]
    calculation_method: str
    commission_amount: Optional[Decimal]
    commission_percentage: Optional[Decimal]
    currency: str
    is_active: bool
    effective_from: datetime
    effective_to: Optional[datetime]
    created_by: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class AssignmentList(BaseModel):
    data: List[Assignment]
    pagination: dict


# -- Case completion / ledger ---------------------------------------------

class CaseCompletedEvent(BaseModel):
    """Case snapshot sent when a verification case reaches COMPLETED."""
    case_id: str = Field(..., min_length=1)
    case_number: Optional[int] = None
    user_id: Optional[int] = None  # assigned field agent
    client_id: Optional[int] = None
    rate_type_id: Optional[int] = None
    base_amount: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    product_id: Optional[int] = None
    verification_type_id: Optional[int] = None
    completed_at: Optional[datetime] = None

    class Config:
        extra = "forbid"


class CommissionCalculation(BaseModel):
    id: int
    case_id: str
    case_number: Optional[int]
    user_id: int
    client_id: Optional[int]
    rate_type_id: int
    base_amount: Decimal
    applied_rate: Decimal
    commission_amount: Decimal
    currency: str
    calculation_method: str
    status: str
    case_completed_at: Optional[datetime]
    calculated_at: datetime
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    rejected_by: Optional[int]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    paid_by: Optional[int]
    paid_at: Optional[datetime]
    payment_method: Optional[str]
    transaction_id: Optional[str]
    notes: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class CaseCompletedResult(BaseModel):
    calculated: bool
    created: bool = False
    skipped_reason: Optional[str] = None
    calculation: Optional[CommissionCalculation] = None


class CalculationList(BaseModel):
    data: List[CommissionCalculation]
    summary: dict
    pagination: dict


# -- Lifecycle ----------------------------------------------------------------

class ApproveRequest(BaseModel):
    notes: Optional[str] = None

    class Config:
        extra = "forbid"


class RejectRequest(BaseModel):
    reason: str

    class Config:
        extra = "forbid"


class MarkPaidRequest(BaseModel):
    payment_method: str
    transaction_id: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        extra = "forbid"


class BulkCommissionOperation(BaseModel):
    commission_ids: List[int] = Field(..., min_length=1)
    operation: BulkOperation
    reason: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        extra = "forbid"


class BulkFailure(BaseModel):
    id: int
    reason: str
    code: str


class BulkOperationResult(BaseModel):
    operation: BulkOperation
    succeeded: List[int]
    failed: List[BulkFailure]

    class Config:
        from_attributes = True


class CommissionStats(BaseModel):
    total_commissions: int
    total_amount: Decimal
    pending_commissions: int
    pending_amount: Decimal
    approved_commissions: int
    approved_amount: Decimal
    paid_commissions: int
    paid_amount: Decimal
    rejected_commissions: int
    rejected_amount: Decimal
    average_commission: Decimal
    active_field_users: int
    total_assignments: int
    currency: str
