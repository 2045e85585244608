from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import logging

from sqlalchemy import func, case as sql_case
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import RecordNotFoundError
from app.core.timeutil import as_naive_utc, utcnow
from app.models.commission import (
    CommissionCalculation, CommissionStatus, FieldUserCommissionAssignment,
)
from app.services.assignment_resolver import AssignmentResolver, AssignmentNotFound
from app.services.calculator import calculate_commission, to_decimal
from app.services.commission_ledger import CaseSnapshot, CommissionLedger
from app.services.rate_catalog import RateCatalogService
from app.services.repositories import SqlAssignmentRepository, SqlLedgerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionSkipped:
    reason: str


@dataclass(frozen=True)
class CommissionRecorded:
    calculation: CommissionCalculation
    created: bool


CaseCommissionOutcome = Union[CommissionRecorded, CommissionSkipped]


class CommissionCalculationService:
    """
    Commission pipeline for completed verification cases:
    1. Resolve the agent's assignment in force at case completion
    2. Calculate the commission against the case's base amount
    3. Record it once per (case, agent) in the ledger
    """

    def __init__(
        self,
        db: Session,
        resolver: Optional[AssignmentResolver] = None,
        ledger: Optional[CommissionLedger] = None,
        catalog: Optional[RateCatalogService] = None,
    ):
        self.db = db
        self.resolver = resolver or AssignmentResolver(SqlAssignmentRepository(db))
        self.ledger = ledger or CommissionLedger(SqlLedgerRepository(db))
        self.catalog = catalog or RateCatalogService(db)

    def on_case_completed(self, case: CaseSnapshot) -> CaseCommissionOutcome:
        """Automatic path, called when a case reaches COMPLETED.

        Never raises for business conditions: a missing agent, rate type or
        assignment yields CommissionSkipped so case completion can proceed.
        """
        return self._process(case, settings.AUTO_CALCULATION_STATUS)

    def calculate_for_case(self, case: CaseSnapshot, created_by: Optional[int] = None) -> CommissionRecorded:
        """Manual path triggered by a reviewer. Raises when nothing is configured."""
        outcome = self._process(case, settings.MANUAL_CALCULATION_STATUS, created_by)
        if isinstance(outcome, CommissionSkipped):
            raise RecordNotFoundError(f"No commission configured: {outcome.reason}")
        return outcome

    def _process(self, case: CaseSnapshot, status: str, created_by: Optional[int] = None) -> CaseCommissionOutcome:
        if case.user_id is None:
            logger.info(f"No field agent assigned to case {case.case_id}; skipping commission")
            return CommissionSkipped(f"No field agent assigned to case {case.case_id}")
        if case.rate_type_id is None:
            logger.info(f"No rate type on case {case.case_id}; skipping commission")
            return CommissionSkipped(f"No rate type assigned for case {case.case_id}")

        existing = self.ledger.find(case.case_id, case.user_id)
        if existing is not None:
            logger.info(f"Commission already calculated for case {case.case_id}")
            return CommissionRecorded(existing, created=False)

        as_of = as_naive_utc(case.completed_at) or utcnow()
        resolution = self.resolver.resolve(case.user_id, case.rate_type_id, case.client_id, as_of)
        if isinstance(resolution, AssignmentNotFound):
            logger.info(f"Case {case.case_id}: {resolution.reason}")
            return CommissionSkipped(resolution.reason)
        assignment = resolution.assignment

        base_amount = self._base_amount(case)
        result = calculate_commission(base_amount, assignment)

        calculation, created = self.ledger.create_if_absent(
            case, assignment, result, base_amount, status=status, created_by=created_by
        )
        return CommissionRecorded(calculation, created)

    def _base_amount(self, case: CaseSnapshot) -> Decimal:
        if case.base_amount is not None:
            base = to_decimal(case.base_amount, "base_amount")
        else:
            base = self.catalog.lookup_base_amount(
                case.client_id, case.product_id, case.verification_type_id, case.rate_type_id
            )
            if base is None:
                logger.warning(f"No client rate found for case {case.case_id}; using base amount 0")
                base = Decimal("0")
        if base <= 0:
            logger.warning(f"Case {case.case_id} has non-positive base amount {base}")
        return base

    # -- ledger reads ---------------------------------------------------------------

    def get_calculation(self, calculation_id: int) -> CommissionCalculation:
        calc = self.db.query(CommissionCalculation).filter(CommissionCalculation.id == calculation_id).first()
        if not calc:
            raise RecordNotFoundError(f"Commission calculation {calculation_id} not found")
        return calc

    def list_calculations(
        self,
        user_id: Optional[int] = None,
        client_id: Optional[int] = None,
        rate_type_id: Optional[int] = None,
        status: Optional[CommissionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[CommissionCalculation], int, Dict]:
        query = self.db.query(CommissionCalculation)
        if user_id is not None:
            query = query.filter(CommissionCalculation.user_id == user_id)
        if client_id is not None:
            query = query.filter(CommissionCalculation.client_id == client_id)
        if rate_type_id is not None:
            query = query.filter(CommissionCalculation.rate_type_id == rate_type_id)
        if status is not None:
            query = query.filter(CommissionCalculation.status == CommissionStatus(status).value)
        if date_from is not None:
            query = query.filter(CommissionCalculation.case_completed_at >= as_naive_utc(date_from))
        if date_to is not None:
            query = query.filter(CommissionCalculation.case_completed_at <= as_naive_utc(date_to))

        total = query.count()
        summary = self._status_summary(query)
        items = (
            query.order_by(CommissionCalculation.created_at.desc(), CommissionCalculation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total, summary

    def _status_summary(self, query) -> Dict:
        rows = (
            query.with_entities(
                CommissionCalculation.status,
                func.count(CommissionCalculation.id),
                func.coalesce(func.sum(CommissionCalculation.commission_amount), 0),
            )
            .group_by(CommissionCalculation.status)
            .order_by(None)
            .all()
        )
        summary = {s.value: {"count": 0, "amount": Decimal("0")} for s in CommissionStatus}
        for status, count, amount in rows:
            summary[status] = {"count": count, "amount": to_decimal(amount).quantize(Decimal("0.01"))}
        return summary

    def get_stats(self) -> Dict:
        """Counts and amounts per status. CALCULATED rows count as pending review."""
        C = CommissionCalculation

        def _count(*statuses):
            return func.sum(sql_case((C.status.in_([s.value for s in statuses]), 1), else_=0))

        def _amount(*statuses):
            return func.sum(sql_case((C.status.in_([s.value for s in statuses]), C.commission_amount), else_=0))

        open_statuses = (CommissionStatus.PENDING, CommissionStatus.CALCULATED)
        row = self.db.query(
            func.count(C.id),
            func.coalesce(func.sum(C.commission_amount), 0),
            func.coalesce(func.avg(C.commission_amount), 0),
            _count(*open_statuses), _amount(*open_statuses),
            _count(CommissionStatus.APPROVED), _amount(CommissionStatus.APPROVED),
            _count(CommissionStatus.PAID), _amount(CommissionStatus.PAID),
            _count(CommissionStatus.REJECTED), _amount(CommissionStatus.REJECTED),
        ).one()

        active_field_users = (
            self.db.query(func.count(func.distinct(FieldUserCommissionAssignment.user_id)))
            .filter(FieldUserCommissionAssignment.is_active == True)
            .scalar()
        )
        total_assignments = self.db.query(func.count(FieldUserCommissionAssignment.id)).scalar()

        def _dec(value):
            return to_decimal(value or 0).quantize(Decimal("0.01"))

        return {
            "total_commissions": row[0] or 0,
            "total_amount": _dec(row[1]),
            "average_commission": _dec(row[2]),
            "pending_commissions": row[3] or 0,
            "pending_amount": _dec(row[4]),
            "approved_commissions": row[5] or 0,
            "approved_amount": _dec(row[6]),
            "paid_commissions": row[7] or 0,
            "paid_amount": _dec(row[8]),
            "rejected_commissions": row[9] or 0,
            "rejected_amount": _dec(row[10]),
            "active_field_users": active_field_users or 0,
            "total_assignments": total_assignments or 0,
            "currency": settings.DEFAULT_CURRENCY,
        }
