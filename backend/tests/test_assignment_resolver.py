"""Assignment resolution against an in-memory repository."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.core.exceptions import ValidationError
from app.services.assignment_resolver import (
    AssignmentFound, AssignmentNotFound, AssignmentResolver, is_in_effect, select_assignment,
)

AGENT = 7
LOCAL = 1
HDFC = 10
ICICI = 11
AS_OF = datetime(2025, 6, 15, 12, 0, 0)


class FakeAssignmentRepository:
    def __init__(self, assignments):
        self.assignments = list(assignments)

    def find_candidates(self, user_id, rate_type_id, client_id):
        return [
            a for a in self.assignments
            if a.user_id == user_id
            and a.rate_type_id == rate_type_id
            and a.is_active
            and (a.client_id is None or a.client_id == client_id)
        ]


_ids = iter(range(1, 10_000))


def assignment(
    client_id=None,
    effective_from=datetime(2025, 1, 1),
    effective_to=None,
    created_at=datetime(2025, 1, 1),
    is_active=True,
    amount="100",
    user_id=AGENT,
    rate_type_id=LOCAL,
):
    return SimpleNamespace(
        id=next(_ids),
        user_id=user_id,
        rate_type_id=rate_type_id,
        client_id=client_id,
        calculation_method="FIXED_AMOUNT",
        commission_amount=Decimal(amount),
        commission_percentage=None,
        currency="INR",
        is_active=is_active,
        effective_from=effective_from,
        effective_to=effective_to,
        created_at=created_at,
    )


def resolve(assignments, client_id=HDFC, as_of=AS_OF):
    return AssignmentResolver(FakeAssignmentRepository(assignments)).resolve(AGENT, LOCAL, client_id, as_of)


class TestSpecificity:
    def test_client_specific_beats_global_created_later(self):
        specific = assignment(client_id=HDFC, created_at=datetime(2025, 1, 1))
        global_ = assignment(client_id=None, created_at=datetime(2025, 5, 1), effective_from=datetime(2025, 5, 1))
        result = resolve([specific, global_])
        assert isinstance(result, AssignmentFound)
        assert result.assignment is specific

    def test_client_specific_beats_global_created_earlier(self):
        global_ = assignment(client_id=None, created_at=datetime(2024, 1, 1))
        specific = assignment(client_id=HDFC, created_at=datetime(2025, 3, 1))
        assert resolve([global_, specific]).assignment is specific

    def test_falls_back_to_global(self):
        global_ = assignment(client_id=None)
        other_client = assignment(client_id=ICICI)
        assert resolve([global_, other_client]).assignment is global_

    def test_case_without_client_only_sees_global(self):
        global_ = assignment(client_id=None)
        specific = assignment(client_id=HDFC)
        assert resolve([global_, specific], client_id=None).assignment is global_

    def test_expired_specific_does_not_block_global(self):
        expired = assignment(client_id=HDFC, effective_to=datetime(2025, 3, 1))
        global_ = assignment(client_id=None)
        assert resolve([expired, global_]).assignment is global_


class TestWindow:
    def test_before_window_is_not_found(self):
        a = assignment(effective_from=AS_OF + timedelta(seconds=1))
        result = resolve([a])
        assert isinstance(result, AssignmentNotFound)
        assert "No active commission assignment" in result.reason

    def test_after_window_is_not_found(self):
        a = assignment(effective_to=AS_OF - timedelta(seconds=1))
        assert isinstance(resolve([a]), AssignmentNotFound)

    def test_window_bounds_are_inclusive(self):
        starts_now = assignment(effective_from=AS_OF)
        assert resolve([starts_now]).assignment is starts_now
        ends_now = assignment(effective_to=AS_OF)
        assert resolve([ends_now]).assignment is ends_now

    def test_open_ended_window(self):
        a = assignment(effective_to=None)
        assert resolve([a], as_of=datetime(2040, 1, 1)).assignment is a

    def test_inactive_is_ignored(self):
        assert isinstance(resolve([assignment(is_active=False)]), AssignmentNotFound)

    def test_aware_as_of_is_compared_in_utc(self):
        a = assignment(effective_from=datetime(2025, 6, 15, 12, 0, 0))
        # 17:00 IST == 11:30 UTC, before the window opens
        ist = timezone(timedelta(hours=5, minutes=30))
        assert not is_in_effect(a, datetime(2025, 6, 15, 17, 0, 0, tzinfo=ist))
        assert is_in_effect(a, datetime(2025, 6, 15, 18, 0, 0, tzinfo=ist))


class TestTieBreak:
    def test_latest_effective_from_wins(self):
        older = assignment(client_id=HDFC, effective_from=datetime(2025, 1, 1), created_at=datetime(2025, 6, 1))
        newer = assignment(client_id=HDFC, effective_from=datetime(2025, 4, 1), created_at=datetime(2025, 1, 1))
        assert resolve([newer, older]).assignment is newer
        assert resolve([older, newer]).assignment is newer

    def test_latest_created_wins_when_start_ties(self):
        first = assignment(created_at=datetime(2025, 1, 1))
        second = assignment(created_at=datetime(2025, 2, 1))
        assert resolve([second, first], client_id=None).assignment is second
        assert resolve([first, second], client_id=None).assignment is second

    def test_select_assignment_with_no_candidates(self):
        assert select_assignment([], HDFC, AS_OF) is None


class TestInputs:
    def test_agent_is_required(self):
        with pytest.raises(ValidationError):
            AssignmentResolver(FakeAssignmentRepository([])).resolve(None, LOCAL, HDFC)

    def test_rate_type_is_required(self):
        with pytest.raises(ValidationError):
            AssignmentResolver(FakeAssignmentRepository([])).resolve(AGENT, None, HDFC)

    def test_as_of_defaults_to_now(self):
        future = assignment(effective_from=datetime(2999, 1, 1))
        current = assignment(client_id=None, effective_from=datetime(2000, 1, 1))
        result = AssignmentResolver(FakeAssignmentRepository([future, current])).resolve(AGENT, LOCAL, None)
        assert result.assignment is current
