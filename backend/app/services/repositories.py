"""Persistence seams for the commission engine.

The resolver, ledger and lifecycle manager depend on these protocols, not on
a Session, so they can run against in-memory fakes.
"""
import logging
from typing import List, Optional, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ConcurrencyConflict
from app.models.commission import FieldUserCommissionAssignment, CommissionCalculation

logger = logging.getLogger(__name__)


class AssignmentRepository(Protocol):
    def find_candidates(
        self, user_id: int, rate_type_id: int, client_id: Optional[int]
    ) -> List[FieldUserCommissionAssignment]:
        """Active assignments for the agent and rate type that are either
        global or scoped to ``client_id``. Window filtering is the caller's job."""
        ...


class LedgerRepository(Protocol):
    def get(self, calculation_id: int) -> Optional[CommissionCalculation]: ...

    def get_for_update(self, calculation_id: int) -> Optional[CommissionCalculation]: ...

    def find_by_case_and_user(self, case_id: str, user_id: int) -> Optional[CommissionCalculation]: ...

    def insert(self, calculation: CommissionCalculation) -> CommissionCalculation:
        """Persist a new row. Raises ConcurrencyConflict on a (case, user) clash."""
        ...

    def save(self, calculation: CommissionCalculation) -> CommissionCalculation: ...

    def discard(self) -> None:
        """Abandon pending changes and release row locks."""
        ...


CASE_USER_CONSTRAINT = "uq_commission_calculations_case_user"


def is_case_user_conflict(error: IntegrityError) -> bool:
    """True when the error is the ledger's (case_id, user_id) unique violation.

    PostgreSQL reports the constraint name; SQLite only lists the columns.
    """
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == CASE_USER_CONSTRAINT
    message = str(error.orig)
    if CASE_USER_CONSTRAINT in message:
        return True
    return (
        "UNIQUE constraint failed" in message
        and "commission_calculations.case_id" in message
        and "commission_calculations.user_id" in message
    )


class SqlAssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_candidates(self, user_id, rate_type_id, client_id):
        client_filter = FieldUserCommissionAssignment.client_id.is_(None)
        if client_id is not None:
            client_filter = or_(client_filter, FieldUserCommissionAssignment.client_id == client_id)
        return (
            self.db.query(FieldUserCommissionAssignment)
            .filter(
                FieldUserCommissionAssignment.user_id == user_id,
                FieldUserCommissionAssignment.rate_type_id == rate_type_id,
                FieldUserCommissionAssignment.is_active == True,
                client_filter,
            )
            .all()
        )


class SqlLedgerRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, calculation_id):
        return self.db.query(CommissionCalculation).filter(CommissionCalculation.id == calculation_id).first()

    def get_for_update(self, calculation_id):
        return (
            self.db.query(CommissionCalculation)
            .filter(CommissionCalculation.id == calculation_id)
            .with_for_update()
            .first()
        )

    def find_by_case_and_user(self, case_id, user_id):
        return (
            self.db.query(CommissionCalculation)
            .filter(
                CommissionCalculation.case_id == case_id,
                CommissionCalculation.user_id == user_id,
            )
            .first()
        )

    def insert(self, calculation):
        self.db.add(calculation)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not is_case_user_conflict(e):
                logger.error(f"Ledger insert failed for case {calculation.case_id}: {e.orig}")
                raise
            logger.info(
                f"Ledger insert lost race for case {calculation.case_id} / user {calculation.user_id}: {e.orig}"
            )
            raise ConcurrencyConflict(
                f"Commission for case {calculation.case_id} and user {calculation.user_id} already exists"
            )
        self.db.refresh(calculation)
        return calculation

    def save(self, calculation):
        self.db.commit()
        self.db.refresh(calculation)
        return calculation

    def discard(self):
        self.db.rollback()
