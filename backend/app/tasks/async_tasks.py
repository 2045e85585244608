import logging

from sqlalchemy.exc import OperationalError

from app.celery_app import celery_app
from app.core.database import SessionLocal
from app.schemas.commission import CaseCompletedEvent
from app.services.commission import CommissionCalculationService, CommissionSkipped
from app.services.commission_ledger import CaseSnapshot

logger = logging.getLogger(__name__)


def run_case_completion(db, payload: dict) -> dict:
    event = CaseCompletedEvent.model_validate(payload)
    outcome = CommissionCalculationService(db).on_case_completed(CaseSnapshot(**event.model_dump()))
    if isinstance(outcome, CommissionSkipped):
        return {"case_id": event.case_id, "calculated": False, "skipped_reason": outcome.reason}
    calc = outcome.calculation
    return {
        "case_id": event.case_id,
        "calculated": True,
        "created": outcome.created,
        "calculation_id": calc.id,
        "commission_amount": str(calc.commission_amount),
        "currency": calc.currency,
        "status": calc.status,
    }


@celery_app.task(
    name="calculate_case_commission",
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    max_retries=5,
)
def calculate_case_commission(payload: dict):
    """
    Async task for the case-completion hook.
    Retries are safe: the ledger holds one row per (case, agent).
    """
    db = SessionLocal()
    try:
        return run_case_completion(db, payload)
    finally:
        db.close()
