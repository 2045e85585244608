"""Case completion through the ledger: idempotency, races, snapshots, skips."""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConcurrencyConflict, RecordNotFoundError, ValidationError
from app.models import CommissionCalculation
from app.schemas.rate import RateUpsert
from app.services.calculator import calculate_commission
from app.services.commission import (
    CommissionCalculationService, CommissionRecorded, CommissionSkipped,
)
from app.services.commission_ledger import CaseSnapshot, CommissionLedger
from app.services.rate_catalog import RateCatalogService
from app.services.repositories import SqlLedgerRepository

COMPLETED = datetime(2025, 6, 10, 14, 30)


def snapshot(agent, rate_type, client=None, **kwargs):
    kwargs.setdefault("case_id", "case-1001")
    kwargs.setdefault("case_number", 1001)
    kwargs.setdefault("base_amount", Decimal("1000"))
    kwargs.setdefault("completed_at", COMPLETED)
    return CaseSnapshot(
        user_id=agent.id if agent else None,
        rate_type_id=rate_type.id if rate_type else None,
        client_id=client.id if client else None,
        **kwargs,
    )


class BlindLedgerRepository(SqlLedgerRepository):
    """Misses existing rows for the first few lookups, like a concurrent
    writer that committed between our read and our insert."""

    def __init__(self, db, misses):
        super().__init__(db)
        self.misses = misses

    def find_by_case_and_user(self, case_id, user_id):
        if self.misses > 0:
            self.misses -= 1
            return None
        return super().find_by_case_and_user(case_id, user_id)


class TestCaseCompletion:
    def test_records_fixed_commission(self, db, agent, local, hdfc, make_assignment):
        make_assignment(agent, local, hdfc, amount="150")
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(agent, local, hdfc))

        assert isinstance(outcome, CommissionRecorded)
        assert outcome.created
        calc = outcome.calculation
        assert calc.commission_amount == Decimal("150")
        assert calc.applied_rate == Decimal("150")
        assert calc.base_amount == Decimal("1000")
        assert calc.calculation_method == "FIXED_AMOUNT"
        assert calc.status == "CALCULATED"
        assert calc.currency == "INR"
        assert calc.case_number == 1001
        assert calc.client_id == hdfc.id

    def test_records_percentage_commission(self, db, agent, local, hdfc, make_assignment):
        make_assignment(agent, local, hdfc, percentage="7.5", currency="USD")
        outcome = CommissionCalculationService(db).on_case_completed(
            snapshot(agent, local, hdfc, base_amount=Decimal("999"))
        )
        assert outcome.calculation.commission_amount == Decimal("74.93")
        assert outcome.calculation.applied_rate == Decimal("7.5")
        assert outcome.calculation.currency == "USD"

    def test_client_specific_assignment_wins(self, db, agent, local, hdfc, make_assignment):
        make_assignment(agent, local, amount="100")
        make_assignment(agent, local, hdfc, amount="180")
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(agent, local, hdfc))
        assert outcome.calculation.commission_amount == Decimal("180")

    def test_resolves_as_of_completion_time(self, db, agent, local, make_assignment):
        make_assignment(agent, local, amount="100", effective_to=datetime(2025, 5, 31, 23, 59, 59))
        make_assignment(agent, local, amount="130", effective_from=datetime(2025, 6, 1))
        service = CommissionCalculationService(db)

        may = service.on_case_completed(snapshot(agent, local, case_id="may", completed_at=datetime(2025, 5, 20)))
        june = service.on_case_completed(snapshot(agent, local, case_id="june"))
        assert may.calculation.commission_amount == Decimal("100")
        assert june.calculation.commission_amount == Decimal("130")

    def test_manual_calculation_is_pending(self, db, admin, agent, local, make_assignment):
        make_assignment(agent, local)
        outcome = CommissionCalculationService(db).calculate_for_case(snapshot(agent, local), created_by=admin.id)
        assert outcome.calculation.status == "PENDING"
        assert outcome.calculation.created_by == admin.id

    def test_each_agent_on_a_case_gets_a_row(self, db, agent, other_agent, local, make_assignment):
        make_assignment(agent, local, amount="100")
        make_assignment(other_agent, local, amount="90")
        service = CommissionCalculationService(db)
        service.on_case_completed(snapshot(agent, local))
        service.on_case_completed(snapshot(other_agent, local))
        assert db.query(CommissionCalculation).filter_by(case_id="case-1001").count() == 2


class TestIdempotency:
    def test_second_completion_returns_existing_row(self, db, agent, local, make_assignment):
        make_assignment(agent, local)
        service = CommissionCalculationService(db)
        first = service.on_case_completed(snapshot(agent, local))
        second = service.on_case_completed(snapshot(agent, local))

        assert first.created
        assert not second.created
        assert second.calculation.id == first.calculation.id
        assert db.query(CommissionCalculation).count() == 1

    def test_amounts_are_not_recomputed_after_rule_change(self, db, agent, local, make_assignment):
        assignment = make_assignment(agent, local, amount="150")
        service = CommissionCalculationService(db)
        first = service.on_case_completed(snapshot(agent, local))

        assignment.commission_amount = Decimal("999")
        db.commit()

        again = service.on_case_completed(snapshot(agent, local, base_amount=Decimal("5000")))
        assert again.calculation.id == first.calculation.id
        assert again.calculation.commission_amount == Decimal("150")
        assert again.calculation.base_amount == Decimal("1000")

    def test_lost_insert_race_returns_winner(self, db, agent, local, make_assignment):
        make_assignment(agent, local)
        winner = CommissionCalculationService(db).on_case_completed(snapshot(agent, local)).calculation

        # Both pre-insert lookups miss; the unique constraint catches the duplicate
        ledger = CommissionLedger(BlindLedgerRepository(db, misses=2))
        outcome = CommissionCalculationService(db, ledger=ledger).on_case_completed(snapshot(agent, local))

        assert isinstance(outcome, CommissionRecorded)
        assert not outcome.created
        assert outcome.calculation.id == winner.id
        assert db.query(CommissionCalculation).count() == 1

    def test_ledger_rejects_closed_initial_status(self, db, agent, local, make_assignment):
        assignment = make_assignment(agent, local)
        ledger = CommissionLedger(SqlLedgerRepository(db))
        result = calculate_commission(Decimal("1000"), assignment)
        with pytest.raises(ValidationError):
            ledger.create_if_absent(snapshot(agent, local), assignment, result, Decimal("1000"), status="APPROVED")
        assert db.query(CommissionCalculation).count() == 0

    def test_repository_translates_only_the_case_user_clash(self, db, agent, local, make_assignment):
        make_assignment(agent, local)
        first = CommissionCalculationService(db).on_case_completed(snapshot(agent, local)).calculation
        duplicate = CommissionCalculation(
            case_id=first.case_id, user_id=agent.id, rate_type_id=local.id,
            base_amount=Decimal("1"), applied_rate=Decimal("1"), commission_amount=Decimal("1"),
            currency="INR", calculation_method="FIXED_AMOUNT", status="PENDING", calculated_at=COMPLETED,
        )
        with pytest.raises(ConcurrencyConflict):
            SqlLedgerRepository(db).insert(duplicate)

    def test_unknown_client_is_not_reported_as_a_duplicate(self, db, agent, local, make_assignment):
        make_assignment(agent, local)
        case = CaseSnapshot(case_id="c-fk", user_id=agent.id, rate_type_id=local.id, client_id=424242,
                            base_amount=Decimal("500"), completed_at=COMPLETED)
        with pytest.raises(IntegrityError):
            CommissionCalculationService(db).on_case_completed(case)
        assert db.query(CommissionCalculation).count() == 0


class TestSkips:
    def test_no_agent(self, db, local):
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(None, local))
        assert isinstance(outcome, CommissionSkipped)
        assert "No field agent" in outcome.reason

    def test_no_rate_type(self, db, agent):
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(agent, None))
        assert isinstance(outcome, CommissionSkipped)
        assert "No rate type" in outcome.reason

    def test_no_assignment(self, db, agent, local, outstation, make_assignment):
        make_assignment(agent, outstation)
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(agent, local))
        assert isinstance(outcome, CommissionSkipped)
        assert db.query(CommissionCalculation).count() == 0

    def test_manual_path_raises_when_not_configured(self, db, agent, local):
        with pytest.raises(RecordNotFoundError, match="No commission configured"):
            CommissionCalculationService(db).calculate_for_case(snapshot(agent, local))


class TestBaseAmount:
    def test_looked_up_from_client_rate(self, db, agent, local, hdfc, make_assignment):
        RateCatalogService(db).upsert_rate(RateUpsert(
            client_id=hdfc.id, product_id=3, verification_type_id=5, rate_type_id=local.id, amount=Decimal("400"),
        ))
        make_assignment(agent, local, percentage="10")
        case = snapshot(agent, local, hdfc, base_amount=None, product_id=3, verification_type_id=5)
        outcome = CommissionCalculationService(db).on_case_completed(case)
        assert outcome.calculation.base_amount == Decimal("400")
        assert outcome.calculation.commission_amount == Decimal("40.00")

    def test_missing_client_rate_means_zero_base(self, db, agent, local, hdfc, make_assignment):
        make_assignment(agent, local, percentage="10")
        case = snapshot(agent, local, hdfc, base_amount=None, product_id=3, verification_type_id=5)
        outcome = CommissionCalculationService(db).on_case_completed(case)
        assert outcome.calculation.base_amount == Decimal("0")
        assert outcome.calculation.commission_amount == Decimal("0")

    def test_fixed_amount_ignores_zero_base(self, db, agent, local, make_assignment):
        make_assignment(agent, local, amount="150")
        outcome = CommissionCalculationService(db).on_case_completed(snapshot(agent, local, base_amount=Decimal("0")))
        assert outcome.calculation.commission_amount == Decimal("150")
