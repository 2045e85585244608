"""Assignment resolution.

Picks the one commission rule in force for an agent, rate type and client
at a given instant:

1. active assignments for the agent and rate type
2. whose window contains ``as_of`` (``effective_from <= as_of`` and
   ``effective_to`` NULL or ``>= as_of``)
3. client-specific beats global, regardless of recency
4. within a level, latest ``effective_from``, then latest creation
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from app.core.exceptions import ValidationError
from app.core.timeutil import as_naive_utc, utcnow
from app.models.commission import FieldUserCommissionAssignment
from app.services.repositories import AssignmentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentFound:
    assignment: FieldUserCommissionAssignment


@dataclass(frozen=True)
class AssignmentNotFound:
    reason: str


Resolution = Union[AssignmentFound, AssignmentNotFound]


def is_in_effect(assignment, as_of: datetime) -> bool:
    as_of = as_naive_utc(as_of)
    start = as_naive_utc(assignment.effective_from)
    end = as_naive_utc(assignment.effective_to)
    if start is None or start > as_of:
        return False
    return end is None or end >= as_of


def _recency_key(assignment):
    return (
        as_naive_utc(assignment.effective_from),
        as_naive_utc(assignment.created_at) or datetime.min,
        assignment.id or 0,
    )


def select_assignment(
    candidates: Iterable, client_id: Optional[int], as_of: datetime
) -> Optional[FieldUserCommissionAssignment]:
    in_effect = [a for a in candidates if a.is_active and is_in_effect(a, as_of)]

    specific = []
    if client_id is not None:
        specific = [a for a in in_effect if a.client_id == client_id]
    pool = specific or [a for a in in_effect if a.client_id is None]
    if not pool:
        return None

    if len(pool) > 1:
        logger.warning(
            f"{len(pool)} overlapping assignments at the same level "
            f"(ids {sorted(a.id for a in pool if a.id)}); picking the most recent"
        )
    return max(pool, key=_recency_key)


class AssignmentResolver:
    def __init__(self, repository: AssignmentRepository):
        self.repository = repository

    def resolve(
        self,
        user_id: int,
        rate_type_id: int,
        client_id: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> Resolution:
        if user_id is None:
            raise ValidationError("user_id is required for assignment resolution")
        if rate_type_id is None:
            raise ValidationError("rate_type_id is required for assignment resolution")
        as_of = as_naive_utc(as_of) if as_of is not None else utcnow()

        candidates = self.repository.find_candidates(user_id, rate_type_id, client_id)
        chosen = select_assignment(candidates, client_id, as_of)
        if chosen is None:
            return AssignmentNotFound(
                reason=(
                    f"No active commission assignment for user {user_id}, rate type "
                    f"{rate_type_id}, client {client_id} at {as_of.isoformat()}"
                )
            )
        return AssignmentFound(chosen)
