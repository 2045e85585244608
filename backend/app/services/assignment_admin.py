"""Field user commission assignment administration.

Writes enforce the invariant the resolver relies on: for one
(agent, rate type, client) there is never more than one active assignment
whose effective window overlaps another's. The check runs under a row lock
on the agent, in the same transaction as the write, so two concurrent
creations cannot both pass it.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import (
    CommissionError, DuplicateAssignmentError, RecordNotFoundError, ValidationError,
)
from app.core.timeutil import as_naive_utc, utcnow
from app.models.client import Client
from app.models.commission import CalculationMethod, FieldUserCommissionAssignment
from app.models.rate import RateType
from app.models.user import User
from app.schemas.commission import AssignmentCreate, AssignmentUpdate
from app.services.rate_catalog import normalize_currency

logger = logging.getLogger(__name__)


def windows_overlap(
    a_start: datetime, a_end: Optional[datetime], b_start: datetime, b_end: Optional[datetime]
) -> bool:
    """Closed intervals; a missing end is open-ended."""
    a_start, a_end = as_naive_utc(a_start), as_naive_utc(a_end)
    b_start, b_end = as_naive_utc(b_start), as_naive_utc(b_end)
    return (a_end is None or b_start <= a_end) and (b_end is None or a_start <= b_end)


def resolve_rule(
    commission_amount: Optional[Decimal], commission_percentage: Optional[Decimal]
) -> Tuple[CalculationMethod, Optional[Decimal], Optional[Decimal]]:
    if commission_amount is not None and commission_percentage is not None:
        raise ValidationError("Provide either commission_amount or commission_percentage, not both")
    if commission_amount is None and commission_percentage is None:
        raise ValidationError("Either commission_amount or commission_percentage is required")
    if commission_amount is not None:
        if commission_amount < 0:
            raise ValidationError("Commission amount must be non-negative")
        return CalculationMethod.FIXED_AMOUNT, commission_amount, None
    if commission_percentage < 0 or commission_percentage > 100:
        raise ValidationError("Commission percentage must be between 0 and 100")
    return CalculationMethod.PERCENTAGE, None, commission_percentage


class AssignmentAdminService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, assignment_id: int, for_update: bool = False) -> FieldUserCommissionAssignment:
        query = self.db.query(FieldUserCommissionAssignment).filter(
            FieldUserCommissionAssignment.id == assignment_id
        )
        if for_update:
            query = query.with_for_update()
        assignment = query.first()
        if not assignment:
            raise RecordNotFoundError(f"Field user commission assignment {assignment_id} not found")
        return assignment

    def list(
        self,
        user_id: Optional[int] = None,
        rate_type_id: Optional[int] = None,
        client_id: Optional[int] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[FieldUserCommissionAssignment], int]:
        query = self.db.query(FieldUserCommissionAssignment)
        if user_id is not None:
            query = query.filter(FieldUserCommissionAssignment.user_id == user_id)
        if rate_type_id is not None:
            query = query.filter(FieldUserCommissionAssignment.rate_type_id == rate_type_id)
        if client_id is not None:
            query = query.filter(FieldUserCommissionAssignment.client_id == client_id)
        if is_active is not None:
            query = query.filter(FieldUserCommissionAssignment.is_active == is_active)

        total = query.count()
        items = (
            query.order_by(FieldUserCommissionAssignment.created_at.desc(), FieldUserCommissionAssignment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def create(self, data: AssignmentCreate, created_by: Optional[int] = None) -> FieldUserCommissionAssignment:
        try:
            self._lock_field_agent(data.user_id)
            self._require_rate_type(data.rate_type_id)
            self._require_client(data.client_id)
            method, amount, percentage = resolve_rule(data.commission_amount, data.commission_percentage)
            start, end = self._window(data.effective_from, data.effective_to)

            self._check_overlap(data.user_id, data.rate_type_id, data.client_id, start, end)

            assignment = FieldUserCommissionAssignment(
                user_id=data.user_id,
                rate_type_id=data.rate_type_id,
                client_id=data.client_id,
                calculation_method=method.value,
                commission_amount=amount,
                commission_percentage=percentage,
                currency=normalize_currency(data.currency),
                is_active=True,
                effective_from=start,
                effective_to=end,
                created_by=created_by,
            )
            self.db.add(assignment)
            self.db.commit()
        except CommissionError:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        logger.info(
            f"Created commission assignment {assignment.id} for user {assignment.user_id}, "
            f"rate type {assignment.rate_type_id}, client {assignment.client_id or 'ALL'} "
            f"({method.value} {amount if amount is not None else percentage})"
        )
        return assignment

    def update(self, assignment_id: int, data: AssignmentUpdate) -> FieldUserCommissionAssignment:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")

        try:
            assignment = self.get(assignment_id, for_update=True)
            self._lock_field_agent(assignment.user_id)

            if "rate_type_id" in changes and changes["rate_type_id"] is not None:
                self._require_rate_type(changes["rate_type_id"])
                assignment.rate_type_id = changes["rate_type_id"]
            if "client_id" in changes:
                self._require_client(changes["client_id"])
                assignment.client_id = changes["client_id"]

            new_amount = changes.get("commission_amount")
            new_percentage = changes.get("commission_percentage")
            if new_amount is not None or new_percentage is not None:
                method, amount, percentage = resolve_rule(new_amount, new_percentage)
                assignment.calculation_method = method.value
                assignment.commission_amount = amount
                assignment.commission_percentage = percentage

            if changes.get("currency") is not None:
                assignment.currency = normalize_currency(changes["currency"])

            start = changes.get("effective_from") or assignment.effective_from
            end = changes["effective_to"] if "effective_to" in changes else assignment.effective_to
            assignment.effective_from, assignment.effective_to = self._window(start, end)

            if changes.get("is_active") is not None:
                assignment.is_active = changes["is_active"]

            if assignment.is_active:
                self._check_overlap(
                    assignment.user_id,
                    assignment.rate_type_id,
                    assignment.client_id,
                    assignment.effective_from,
                    assignment.effective_to,
                    exclude_id=assignment.id,
                )
            self.db.commit()
        except CommissionError:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        logger.info(f"Updated commission assignment {assignment_id}: {sorted(changes)}")
        return assignment

    def deactivate(self, assignment_id: int) -> FieldUserCommissionAssignment:
        assignment = self.get(assignment_id, for_update=True)
        assignment.is_active = False
        self.db.commit()
        self.db.refresh(assignment)
        logger.info(f"Deactivated commission assignment {assignment_id}")
        return assignment

    def delete(self, assignment_id: int):
        # Ledger rows hold snapshots, not a foreign key, so deletion is safe
        assignment = self.get(assignment_id, for_update=True)
        self.db.delete(assignment)
        self.db.commit()
        logger.info(f"Deleted commission assignment {assignment_id}")

    # -- validation helpers -------------------------------------------------------

    def _lock_field_agent(self, user_id: int) -> User:
        """Row lock on the agent serialises assignment writes for that agent."""
        user = self.db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise RecordNotFoundError(f"User {user_id} not found")
        if not user.is_field_agent:
            raise ValidationError("User must be a field agent to assign commission rates")
        return user

    def _require_rate_type(self, rate_type_id: int):
        if not self.db.query(RateType).filter(RateType.id == rate_type_id).first():
            raise RecordNotFoundError(f"Rate type {rate_type_id} not found")

    def _require_client(self, client_id: Optional[int]):
        if client_id is None:
            return
        if not self.db.query(Client).filter(Client.id == client_id).first():
            raise RecordNotFoundError(f"Client {client_id} not found")

    @staticmethod
    def _window(start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, Optional[datetime]]:
        start = as_naive_utc(start) if start is not None else utcnow()
        end = as_naive_utc(end)
        if end is not None and end < start:
            raise ValidationError("effective_to must not be earlier than effective_from")
        return start, end

    def _check_overlap(
        self,
        user_id: int,
        rate_type_id: int,
        client_id: Optional[int],
        start: datetime,
        end: Optional[datetime],
        exclude_id: Optional[int] = None,
    ):
        query = self.db.query(FieldUserCommissionAssignment).filter(
            FieldUserCommissionAssignment.user_id == user_id,
            FieldUserCommissionAssignment.rate_type_id == rate_type_id,
            FieldUserCommissionAssignment.is_active == True,
        )
        if client_id is None:
            query = query.filter(FieldUserCommissionAssignment.client_id.is_(None))
        else:
            query = query.filter(FieldUserCommissionAssignment.client_id == client_id)
        if exclude_id is not None:
            query = query.filter(FieldUserCommissionAssignment.id != exclude_id)

        for other in query.all():
            if windows_overlap(start, end, other.effective_from, other.effective_to):
                raise DuplicateAssignmentError(
                    "Active commission assignment already exists for this user, rate type, "
                    f"and client combination with an overlapping effective window (assignment {other.id})",
                    conflicting_id=other.id,
                )
