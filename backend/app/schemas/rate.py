from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class RateTypeBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class RateTypeCreate(RateTypeBase):
    is_active: bool = True

    class Config:
        extra = "forbid"


class RateTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None

    class Config:
        extra = "forbid"


class RateType(RateTypeBase):
    id: int
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class RateUpsert(BaseModel):
    client_id: int = Field(..., ge=1)
    product_id: int = Field(..., ge=1)
    verification_type_id: int = Field(..., ge=1)
    rate_type_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    class Config:
        extra = "forbid"


class Rate(BaseModel):
    id: int
    client_id: int
    product_id: int
    verification_type_id: int
    rate_type_id: int
    amount: Decimal
    currency: str
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class CommissionRateTypeCreate(BaseModel):
    rate_type_id: int = Field(..., ge=1)
    commission_amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_active: bool = True

    class Config:
        extra = "forbid"


class CommissionRateTypeUpdate(BaseModel):
    commission_amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_active: Optional[bool] = None

    class Config:
        extra = "forbid"


class CommissionRateType(BaseModel):
    id: int
    rate_type_id: int
    rate_type_name: Optional[str] = None
    commission_amount: Decimal
    currency: str
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True
