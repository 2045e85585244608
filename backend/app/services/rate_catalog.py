"""Rate catalog administration: rate types, client rates, commission defaults."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import RecordNotFoundError, ValidationError
from app.models.client import Client
from app.models.commission import FieldUserCommissionAssignment
from app.models.rate import RateType, Rate, CommissionRateType
from app.schemas.rate import (
    RateTypeCreate, RateTypeUpdate, RateUpsert,
    CommissionRateTypeCreate, CommissionRateTypeUpdate,
)

logger = logging.getLogger(__name__)


def normalize_currency(currency: Optional[str]) -> str:
    currency = (currency or settings.DEFAULT_CURRENCY).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError(f"Currency must be a 3-letter code, got {currency!r}")
    return currency


class RateCatalogService:
    def __init__(self, db: Session):
        self.db = db

    # -- rate types -----------------------------------------------------------

    def get_rate_type(self, rate_type_id: int) -> RateType:
        rate_type = self.db.query(RateType).filter(RateType.id == rate_type_id).first()
        if not rate_type:
            raise RecordNotFoundError(f"Rate type {rate_type_id} not found")
        return rate_type

    def list_rate_types(self, is_active: Optional[bool] = None, search: Optional[str] = None) -> List[RateType]:
        query = self.db.query(RateType)
        if is_active is not None:
            query = query.filter(RateType.is_active == is_active)
        if search:
            like = f"%{search}%"
            query = query.filter(RateType.name.ilike(like) | RateType.description.ilike(like))
        return query.order_by(RateType.name).all()

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None):
        query = self.db.query(RateType).filter(RateType.name.ilike(name))
        if exclude_id is not None:
            query = query.filter(RateType.id != exclude_id)
        if query.first():
            raise ValidationError(f"Rate type '{name}' already exists")

    def create_rate_type(self, data: RateTypeCreate) -> RateType:
        name = data.name.strip()
        if not name:
            raise ValidationError("Rate type name is required")
        self._ensure_unique_name(name)

        rate_type = RateType(name=name, description=data.description, is_active=data.is_active)
        self.db.add(rate_type)
        self.db.commit()
        self.db.refresh(rate_type)
        logger.info(f"Created rate type {rate_type.id} ({rate_type.name})")
        return rate_type

    def update_rate_type(self, rate_type_id: int, data: RateTypeUpdate) -> RateType:
        rate_type = self.get_rate_type(rate_type_id)
        if data.name is not None:
            name = data.name.strip()
            if not name:
                raise ValidationError("Rate type name is required")
            self._ensure_unique_name(name, exclude_id=rate_type_id)
            rate_type.name = name
        if data.description is not None:
            rate_type.description = data.description
        if data.is_active is not None:
            rate_type.is_active = data.is_active
        self.db.commit()
        self.db.refresh(rate_type)
        logger.info(f"Updated rate type {rate_type_id}")
        return rate_type

    def deactivate_rate_type(self, rate_type_id: int) -> RateType:
        rate_type = self.get_rate_type(rate_type_id)
        rate_type.is_active = False
        self.db.commit()
        logger.info(f"Deactivated rate type {rate_type_id}")
        return rate_type

    # -- client rates ---------------------------------------------------------

    def list_rates(
        self,
        client_id: Optional[int] = None,
        rate_type_id: Optional[int] = None,
        is_active: Optional[bool] = True,
    ) -> List[Rate]:
        query = self.db.query(Rate)
        if client_id is not None:
            query = query.filter(Rate.client_id == client_id)
        if rate_type_id is not None:
            query = query.filter(Rate.rate_type_id == rate_type_id)
        if is_active is not None:
            query = query.filter(Rate.is_active == is_active)
        return query.order_by(Rate.client_id, Rate.product_id, Rate.verification_type_id).all()

    def _active_rate(self, client_id, product_id, verification_type_id, rate_type_id) -> Optional[Rate]:
        return (
            self.db.query(Rate)
            .filter(
                Rate.client_id == client_id,
                Rate.product_id == product_id,
                Rate.verification_type_id == verification_type_id,
                Rate.rate_type_id == rate_type_id,
                Rate.is_active == True,
            )
            .with_for_update()
            .first()
        )

    def upsert_rate(self, data: RateUpsert, user_id: Optional[int] = None) -> Rate:
        """Create the active rate for a combination, or update its amount."""
        if data.amount < 0:
            raise ValidationError("Amount must be non-negative")
        if not self.db.query(Client).filter(Client.id == data.client_id).first():
            raise RecordNotFoundError(f"Client {data.client_id} not found")
        self.get_rate_type(data.rate_type_id)
        currency = normalize_currency(data.currency)

        rate = self._active_rate(data.client_id, data.product_id, data.verification_type_id, data.rate_type_id)
        created = rate is None
        if rate:
            old_amount = rate.amount
            rate.amount = data.amount
            rate.currency = currency
            logger.info(f"Updated rate {rate.id}: {old_amount} -> {data.amount}")
        else:
            rate = Rate(
                client_id=data.client_id,
                product_id=data.product_id,
                verification_type_id=data.verification_type_id,
                rate_type_id=data.rate_type_id,
                amount=data.amount,
                currency=currency,
                created_by=user_id,
            )
            self.db.add(rate)
        self.db.commit()
        self.db.refresh(rate)
        if created:
            logger.info(f"Created rate {rate.id} for client {rate.client_id}, rate type {rate.rate_type_id}")
        return rate

    def deactivate_rate(self, rate_id: int) -> Rate:
        rate = self.db.query(Rate).filter(Rate.id == rate_id).first()
        if not rate:
            raise RecordNotFoundError(f"Rate {rate_id} not found")
        rate.is_active = False
        self.db.commit()
        logger.info(f"Deactivated rate {rate_id}")
        return rate

    def lookup_base_amount(
        self,
        client_id: Optional[int],
        product_id: Optional[int],
        verification_type_id: Optional[int],
        rate_type_id: Optional[int],
    ) -> Optional[Decimal]:
        """Active client rate for the combination, or None."""
        if None in (client_id, product_id, verification_type_id, rate_type_id):
            return None
        rate = (
            self.db.query(Rate)
            .filter(
                Rate.client_id == client_id,
                Rate.product_id == product_id,
                Rate.verification_type_id == verification_type_id,
                Rate.rate_type_id == rate_type_id,
                Rate.is_active == True,
            )
            .first()
        )
        return rate.amount if rate else None

    # -- commission rate types --------------------------------------------------

    def get_commission_rate_type(self, commission_rate_type_id: int) -> CommissionRateType:
        crt = self.db.query(CommissionRateType).filter(CommissionRateType.id == commission_rate_type_id).first()
        if not crt:
            raise RecordNotFoundError(f"Commission rate type {commission_rate_type_id} not found")
        return crt

    def list_commission_rate_types(self, is_active: Optional[bool] = None) -> List[CommissionRateType]:
        query = self.db.query(CommissionRateType)
        if is_active is not None:
            query = query.filter(CommissionRateType.is_active == is_active)
        return query.order_by(CommissionRateType.created_at.desc()).all()

    def create_commission_rate_type(self, data: CommissionRateTypeCreate, user_id: Optional[int] = None) -> CommissionRateType:
        if data.commission_amount is None or data.commission_amount <= 0:
            raise ValidationError("Commission amount must be provided and greater than 0")
        self.get_rate_type(data.rate_type_id)
        existing = (
            self.db.query(CommissionRateType)
            .filter(CommissionRateType.rate_type_id == data.rate_type_id)
            .first()
        )
        if existing:
            raise ValidationError("Commission rate type already exists for this rate type")

        crt = CommissionRateType(
            rate_type_id=data.rate_type_id,
            commission_amount=data.commission_amount,
            currency=normalize_currency(data.currency),
            is_active=data.is_active,
            created_by=user_id,
        )
        self.db.add(crt)
        self.db.commit()
        self.db.refresh(crt)
        logger.info(f"Created commission rate type {crt.id} for rate type {crt.rate_type_id}")
        return crt

    def update_commission_rate_type(self, commission_rate_type_id: int, data: CommissionRateTypeUpdate) -> CommissionRateType:
        crt = self.get_commission_rate_type(commission_rate_type_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")
        if "commission_amount" in changes:
            if changes["commission_amount"] is None or changes["commission_amount"] <= 0:
                raise ValidationError("Commission amount must be greater than 0")
            crt.commission_amount = changes["commission_amount"]
        if "currency" in changes:
            crt.currency = normalize_currency(changes["currency"])
        if changes.get("is_active") is not None:
            crt.is_active = changes["is_active"]
        self.db.commit()
        self.db.refresh(crt)
        logger.info(f"Updated commission rate type {commission_rate_type_id}")
        return crt

    def delete_commission_rate_type(self, commission_rate_type_id: int):
        crt = self.get_commission_rate_type(commission_rate_type_id)
        in_use = (
            self.db.query(FieldUserCommissionAssignment.id)
            .filter(
                FieldUserCommissionAssignment.rate_type_id == crt.rate_type_id,
                FieldUserCommissionAssignment.is_active == True,
            )
            .first()
        )
        if in_use:
            raise ValidationError("Cannot delete commission rate type with active assignments")
        self.db.delete(crt)
        self.db.commit()
        logger.info(f"Deleted commission rate type {commission_rate_type_id}")
