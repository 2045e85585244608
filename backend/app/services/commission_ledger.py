"""Commission ledger: one immutable calculation per (case, field agent)."""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from app.core.config import settings
from app.core.exceptions import ConcurrencyConflict, ValidationError
from app.core.timeutil import as_naive_utc, utcnow
from app.models.commission import CommissionCalculation, CommissionStatus, OPEN_STATUSES
from app.services.calculator import CommissionResult
from app.services.repositories import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaseSnapshot:
    """What the case module hands over when a case reaches COMPLETED."""
    case_id: str
    user_id: Optional[int]
    rate_type_id: Optional[int]
    case_number: Optional[int] = None
    client_id: Optional[int] = None
    base_amount: Optional[Decimal] = None
    product_id: Optional[int] = None
    verification_type_id: Optional[int] = None
    completed_at: Optional[datetime] = None


class CommissionLedger:
    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def find(self, case_id: str, user_id: int) -> Optional[CommissionCalculation]:
        return self.repository.find_by_case_and_user(case_id, user_id)

    def create_if_absent(
        self,
        case: CaseSnapshot,
        assignment,
        result: CommissionResult,
        base_amount: Decimal,
        status: str = CommissionStatus.PENDING.value,
        created_by: Optional[int] = None,
    ) -> Tuple[CommissionCalculation, bool]:
        """Insert the calculation unless one exists for (case, agent).

        Returns ``(row, created)``. A lost insert race returns the winner's
        row with ``created=False``.
        """
        status = CommissionStatus(status)
        if status not in OPEN_STATUSES:
            raise ValidationError(f"A new commission cannot start in status {status.value}")

        existing = self.find(case.case_id, case.user_id)
        if existing is not None:
            logger.info(f"Commission already calculated for case {case.case_id} / user {case.user_id}")
            return existing, False

        calculation = CommissionCalculation(
            case_id=case.case_id,
            case_number=case.case_number,
            user_id=case.user_id,
            client_id=case.client_id,
            rate_type_id=case.rate_type_id,
            base_amount=base_amount,
            applied_rate=result.applied_rate,
            commission_amount=result.amount,
            currency=assignment.currency or settings.DEFAULT_CURRENCY,
            calculation_method=result.method.value,
            status=status.value,
            case_completed_at=as_naive_utc(case.completed_at),
            calculated_at=utcnow(),
            created_by=created_by,
        )

        try:
            calculation = self.repository.insert(calculation)
        except ConcurrencyConflict:
            winner = self.find(case.case_id, case.user_id)
            if winner is None:
                # Conflict on something other than (case, user); surface it
                raise
            return winner, False

        logger.info(
            f"Commission {calculation.id} recorded for case {case.case_id}: "
            f"{calculation.currency} {calculation.commission_amount} ({calculation.calculation_method}, {status.value})"
        )
        return calculation, True
