"""Review workflow for ledger entries.

    PENDING/CALCULATED -> APPROVED -> PAID
    PENDING/CALCULATED -> REJECTED

PAID and REJECTED are terminal. Payment requires a prior approval.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from app.core.config import settings
from app.core.exceptions import (
    CommissionError, InvalidStateError, RecordNotFoundError, ValidationError,
)
from app.core.timeutil import utcnow
from app.models.commission import CommissionCalculation, CommissionStatus, OPEN_STATUSES
from app.services.repositories import LedgerRepository

logger = logging.getLogger(__name__)

ALLOWED_SOURCES = {
    CommissionStatus.APPROVED: OPEN_STATUSES,
    CommissionStatus.REJECTED: OPEN_STATUSES,
    CommissionStatus.PAID: (CommissionStatus.APPROVED,),
}


class BulkOperation(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"


@dataclass
class BulkFailure:
    id: int
    reason: str
    code: str


@dataclass
class BulkOperationResult:
    operation: BulkOperation
    succeeded: List[int] = field(default_factory=list)
    failed: List[BulkFailure] = field(default_factory=list)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text or None


class CommissionLifecycleManager:
    def __init__(self, repository: LedgerRepository, max_batch_size: Optional[int] = None):
        self.repository = repository
        self.max_batch_size = max_batch_size or settings.BULK_OPERATION_MAX_IDS

    # -- single item ------------------------------------------------------

    def approve(self, calculation_id: int, approver_id: int, notes: Optional[str] = None) -> CommissionCalculation:
        def apply(calc):
            calc.approved_by = approver_id
            calc.approved_at = utcnow()
            if _clean(notes):
                calc.notes = _clean(notes)

        return self._transition(calculation_id, CommissionStatus.APPROVED, apply, approver_id)

    def reject(self, calculation_id: int, reviewer_id: int, reason: str) -> CommissionCalculation:
        reason = self._require_reason(reason)

        def apply(calc):
            calc.rejected_by = reviewer_id
            calc.rejected_at = utcnow()
            calc.rejection_reason = reason

        return self._transition(calculation_id, CommissionStatus.REJECTED, apply, reviewer_id)

    def mark_paid(
        self,
        calculation_id: int,
        payer_id: int,
        payment_method: str,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CommissionCalculation:
        payment_method = self._require_payment_method(payment_method)

        def apply(calc):
            calc.paid_by = payer_id
            calc.paid_at = utcnow()
            calc.payment_method = payment_method
            calc.transaction_id = _clean(transaction_id)
            if _clean(notes):
                calc.notes = _clean(notes)

        return self._transition(calculation_id, CommissionStatus.PAID, apply, payer_id)

    # -- bulk ---------------------------------------------------------------

    def bulk_approve(self, ids: Iterable[int], approver_id: int, notes: Optional[str] = None) -> BulkOperationResult:
        return self._run_bulk(
            BulkOperation.APPROVE, ids, lambda cid: self.approve(cid, approver_id, notes)
        )

    def bulk_reject(self, ids: Iterable[int], reviewer_id: int, reason: str) -> BulkOperationResult:
        reason = self._require_reason(reason)
        return self._run_bulk(
            BulkOperation.REJECT, ids, lambda cid: self.reject(cid, reviewer_id, reason)
        )

    def bulk_mark_paid(
        self,
        ids: Iterable[int],
        payer_id: int,
        payment_method: str,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BulkOperationResult:
        payment_method = self._require_payment_method(payment_method)
        return self._run_bulk(
            BulkOperation.MARK_PAID,
            ids,
            lambda cid: self.mark_paid(cid, payer_id, payment_method, transaction_id, notes),
        )

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _require_reason(reason: Optional[str]) -> str:
        reason = _clean(reason)
        if not reason:
            raise ValidationError("A rejection reason is required")
        return reason

    @staticmethod
    def _require_payment_method(payment_method: Optional[str]) -> str:
        payment_method = _clean(payment_method)
        if not payment_method:
            raise ValidationError("Payment method is required")
        return payment_method

    def _transition(
        self,
        calculation_id: int,
        target: CommissionStatus,
        apply: Callable[[CommissionCalculation], None],
        actor_id: int,
    ) -> CommissionCalculation:
        calc = self.repository.get_for_update(calculation_id)
        if calc is None:
            self.repository.discard()
            raise RecordNotFoundError(f"Commission calculation {calculation_id} not found")

        current = CommissionStatus(calc.status)
        if current not in ALLOWED_SOURCES[target]:
            self.repository.discard()
            raise InvalidStateError(
                f"Cannot move commission {calculation_id} from {current.value} to {target.value}",
                current_status=current.value,
            )

        apply(calc)
        calc.status = target.value
        calc = self.repository.save(calc)
        logger.info(f"Commission {calculation_id}: {current.value} -> {target.value} by user {actor_id}")
        return calc

    def _run_bulk(self, operation: BulkOperation, ids: Iterable[int], action) -> BulkOperationResult:
        unique_ids = list(dict.fromkeys(ids or []))
        if not unique_ids:
            raise ValidationError("At least one commission id is required")
        if len(unique_ids) > self.max_batch_size:
            raise ValidationError(
                f"Bulk {operation.value} accepts at most {self.max_batch_size} ids, got {len(unique_ids)}"
            )

        result = BulkOperationResult(operation=operation)
        for calculation_id in unique_ids:
            try:
                action(calculation_id)
            except CommissionError as e:
                result.failed.append(BulkFailure(id=calculation_id, reason=e.message, code=e.code))
            else:
                result.succeeded.append(calculation_id)

        logger.info(
            f"Bulk {operation.value}: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result
