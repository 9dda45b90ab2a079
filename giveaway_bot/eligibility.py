"""Entry eligibility rules for giveaways."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .models import DAY_MS, Giveaway, now_ms

INACTIVE = "inactive"
MISSING_ROLE = "missing_role"
TOO_NEW_TO_SERVER = "too_new_to_server"
TOO_NEW_ACCOUNT = "too_new_account"


@dataclass(slots=True, frozen=True)
class Candidate:
    """A participant trying to enter, with the attributes the rules inspect."""
    user_id: int
    role_ids: frozenset[int] = field(default_factory=frozenset)
    joined_at: Optional[int] = None
    created_at: Optional[int] = None


@dataclass(slots=True, frozen=True)
class Eligibility:
    admitted: bool
    reason: Optional[str] = None

    @classmethod
    def admit(cls) -> "Eligibility":
        return cls(admitted=True)

    @classmethod
    def reject(cls, reason: str) -> "Eligibility":
        return cls(admitted=False, reason=reason)


def _old_enough(timestamp: int, days: int, now: int) -> bool:
    return timestamp <= now - days * DAY_MS


def evaluate(
    giveaway: Giveaway, candidate: Candidate, *, now: Optional[int] = None
) -> Eligibility:
    """Check a candidate against the giveaway's entry constraints.

    Rules run in a fixed order and the first failure is returned. An unknown
    server join time counts as passing the server-age rule.
    """
    current = now_ms() if now is None else now

    if not giveaway.is_active:
        return Eligibility.reject(INACTIVE)

    if giveaway.required_role_id and giveaway.required_role_id not in candidate.role_ids:
        return Eligibility.reject(MISSING_ROLE)

    if giveaway.min_server_age_days > 0 and candidate.joined_at:
        if not _old_enough(candidate.joined_at, giveaway.min_server_age_days, current):
            return Eligibility.reject(TOO_NEW_TO_SERVER)

    if giveaway.min_account_age_days > 0:
        created = candidate.created_at if candidate.created_at is not None else current
        if not _old_enough(created, giveaway.min_account_age_days, current):
            return Eligibility.reject(TOO_NEW_ACCOUNT)

    return Eligibility.admit()
