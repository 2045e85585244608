"""Commission management API: rate catalog, assignments, ledger and review."""
import logging
import math
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import get_current_user, require_roles, require_reviewer
from app.models.commission import CommissionStatus
from app.models.user import User
from app.schemas.commission import (
    Assignment, AssignmentCreate, AssignmentList, AssignmentUpdate,
    ApproveRequest, BulkCommissionOperation, BulkOperationResult,
    CalculationList, CaseCompletedEvent, CaseCompletedResult,
    CommissionCalculation, CommissionStats, MarkPaidRequest, RejectRequest,
)
from app.schemas.rate import (
    CommissionRateType, CommissionRateTypeCreate, CommissionRateTypeUpdate,
    Rate, RateType, RateTypeCreate, RateTypeUpdate, RateUpsert,
)
from app.services.assignment_admin import AssignmentAdminService
from app.services.assignment_resolver import AssignmentFound, AssignmentResolver
from app.services.commission import CommissionCalculationService, CommissionSkipped
from app.services.commission_ledger import CaseSnapshot
from app.services.commission_lifecycle import BulkOperation, CommissionLifecycleManager
from app.services.rate_catalog import RateCatalogService
from app.services.repositories import SqlAssignmentRepository, SqlLedgerRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/commission-management", tags=["commissions"])

ADMIN_ROLES = ("admin", "manager")
# Case module and back office report completions; field agents cannot
CASE_SERVICE_ROLES = ADMIN_ROLES + ("backend_user",)


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


# =====================================================
# RATE TYPES & RATES
# =====================================================

@router.get("/rate-types", response_model=List[RateType])
def list_rate_types(
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RateCatalogService(db).list_rate_types(is_active=is_active, search=search)


@router.post("/rate-types", response_model=RateType, status_code=status.HTTP_201_CREATED)
def create_rate_type(
    data: RateTypeCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).create_rate_type(data)


@router.put("/rate-types/{rate_type_id}", response_model=RateType)
def update_rate_type(
    rate_type_id: int,
    data: RateTypeUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).update_rate_type(rate_type_id, data)


@router.delete("/rate-types/{rate_type_id}", response_model=RateType)
def deactivate_rate_type(
    rate_type_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Rate types are referenced by ledger rows, so they are only deactivated."""
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).deactivate_rate_type(rate_type_id)


@router.get("/rates", response_model=List[Rate])
def list_rates(
    client_id: Optional[int] = None,
    rate_type_id: Optional[int] = None,
    is_active: Optional[bool] = True,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RateCatalogService(db).list_rates(client_id=client_id, rate_type_id=rate_type_id, is_active=is_active)


@router.post("/rates", response_model=Rate)
def upsert_rate(
    data: RateUpsert,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).upsert_rate(data, user_id=current_user.id)


@router.delete("/rates/{rate_id}", response_model=Rate)
def deactivate_rate(
    rate_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).deactivate_rate(rate_id)


# =====================================================
# COMMISSION RATE TYPES
# =====================================================

@router.get("/commission-rate-types", response_model=List[CommissionRateType])
def list_commission_rate_types(
    is_active: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RateCatalogService(db).list_commission_rate_types(is_active=is_active)


@router.post("/commission-rate-types", response_model=CommissionRateType, status_code=status.HTTP_201_CREATED)
def create_commission_rate_type(
    data: CommissionRateTypeCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).create_commission_rate_type(data, user_id=current_user.id)


@router.put("/commission-rate-types/{commission_rate_type_id}", response_model=CommissionRateType)
def update_commission_rate_type(
    commission_rate_type_id: int,
    data: CommissionRateTypeUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return RateCatalogService(db).update_commission_rate_type(commission_rate_type_id, data)


@router.delete("/commission-rate-types/{commission_rate_type_id}")
def delete_commission_rate_type(
    commission_rate_type_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    RateCatalogService(db).delete_commission_rate_type(commission_rate_type_id)
    return {"success": True}


# =====================================================
# FIELD USER COMMISSION ASSIGNMENTS
# =====================================================

@router.get("/field-user-assignments", response_model=AssignmentList)
def list_assignments(
    user_id: Optional[int] = None,
    rate_type_id: Optional[int] = None,
    client_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.is_field_agent:
        user_id = current_user.id
    items, total = AssignmentAdminService(db).list(
        user_id=user_id, rate_type_id=rate_type_id, client_id=client_id,
        is_active=is_active, page=page, limit=limit,
    )
    return {"data": items, "pagination": _pagination(page, limit, total)}


@router.get("/field-user-assignments/resolve")
def resolve_assignment(
    user_id: int,
    rate_type_id: int,
    client_id: Optional[int] = None,
    as_of: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Show which assignment would apply to a case, without recording anything."""
    require_roles(current_user, ADMIN_ROLES)
    resolution = AssignmentResolver(SqlAssignmentRepository(db)).resolve(user_id, rate_type_id, client_id, as_of)
    if isinstance(resolution, AssignmentFound):
        return {"found": True, "assignment": Assignment.model_validate(resolution.assignment)}
    return {"found": False, "reason": resolution.reason}


@router.post("/field-user-assignments", response_model=Assignment, status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: AssignmentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return AssignmentAdminService(db).create(data, created_by=current_user.id)


@router.put("/field-user-assignments/{assignment_id}", response_model=Assignment)
def update_assignment(
    assignment_id: int,
    data: AssignmentUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return AssignmentAdminService(db).update(assignment_id, data)


@router.post("/field-user-assignments/{assignment_id}/deactivate", response_model=Assignment)
def deactivate_assignment(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    return AssignmentAdminService(db).deactivate(assignment_id)


@router.delete("/field-user-assignments/{assignment_id}")
def delete_assignment(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    AssignmentAdminService(db).delete(assignment_id)
    logger.info(f"User {current_user.id} deleted commission assignment {assignment_id}")
    return {"success": True}


# =====================================================
# COMMISSION CALCULATIONS
# =====================================================

@router.post("/case-completed", response_model=CaseCompletedResult)
def case_completed(
    event: CaseCompletedEvent,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Case-completion hook. A missing assignment is reported, not failed."""
    require_roles(current_user, CASE_SERVICE_ROLES)
    outcome = CommissionCalculationService(db).on_case_completed(CaseSnapshot(**event.model_dump()))
    if isinstance(outcome, CommissionSkipped):
        return {"calculated": False, "skipped_reason": outcome.reason}
    return {"calculated": True, "created": outcome.created, "calculation": outcome.calculation}


@router.post("/calculations/calculate", response_model=CommissionCalculation)
def calculate_commission_for_case(
    event: CaseCompletedEvent,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, ADMIN_ROLES)
    recorded = CommissionCalculationService(db).calculate_for_case(
        CaseSnapshot(**event.model_dump()), created_by=current_user.id
    )
    return recorded.calculation


@router.get("/calculations", response_model=CalculationList)
def list_calculations(
    user_id: Optional[int] = None,
    client_id: Optional[int] = None,
    rate_type_id: Optional[int] = None,
    status: Optional[CommissionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Field agents only see their own commissions
    if current_user.is_field_agent:
        user_id = current_user.id
    items, total, summary = CommissionCalculationService(db).list_calculations(
        user_id=user_id, client_id=client_id, rate_type_id=rate_type_id, status=status,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return {"data": items, "summary": summary, "pagination": _pagination(page, limit, total)}


@router.get("/calculations/{calculation_id}", response_model=CommissionCalculation)
def get_calculation(
    calculation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    calc = CommissionCalculationService(db).get_calculation(calculation_id)
    if current_user.is_field_agent and calc.user_id != current_user.id:
        require_reviewer(current_user)
    return calc


@router.post("/calculations/{calculation_id}/approve", response_model=CommissionCalculation)
def approve_calculation(
    calculation_id: int,
    body: ApproveRequest = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_reviewer(current_user)
    notes = body.notes if body else None
    return CommissionLifecycleManager(SqlLedgerRepository(db)).approve(calculation_id, current_user.id, notes)


@router.post("/calculations/{calculation_id}/reject", response_model=CommissionCalculation)
def reject_calculation(
    calculation_id: int,
    body: RejectRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_reviewer(current_user)
    return CommissionLifecycleManager(SqlLedgerRepository(db)).reject(calculation_id, current_user.id, body.reason)


@router.post("/calculations/{calculation_id}/mark-paid", response_model=CommissionCalculation)
def mark_calculation_paid(
    calculation_id: int,
    body: MarkPaidRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_reviewer(current_user)
    return CommissionLifecycleManager(SqlLedgerRepository(db)).mark_paid(
        calculation_id, current_user.id, body.payment_method, body.transaction_id, body.notes
    )


@router.post("/calculations/bulk", response_model=BulkOperationResult)
def bulk_commission_operation(
    body: BulkCommissionOperation,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Apply one transition to many commissions. Failures are reported per id."""
    require_reviewer(current_user)
    manager = CommissionLifecycleManager(SqlLedgerRepository(db))

    if body.operation == BulkOperation.APPROVE:
        result = manager.bulk_approve(body.commission_ids, current_user.id, body.notes)
    elif body.operation == BulkOperation.REJECT:
        result = manager.bulk_reject(body.commission_ids, current_user.id, body.reason)
    else:
        result = manager.bulk_mark_paid(
            body.commission_ids, current_user.id, body.payment_method, body.transaction_id, body.notes
        )
    return result


# =====================================================
# STATISTICS
# =====================================================

@router.get("/stats", response_model=CommissionStats)
def get_commission_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_reviewer(current_user)
    return CommissionCalculationService(db).get_stats()
