"""Data models used for giveaway persistence and runtime results."""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import List, Optional

DAY_MS = 86_400_000
# Latest instant a datetime (and so an embed timestamp) can represent.
MAX_TIMESTAMP_MS = int(datetime.max.replace(tzinfo=UTC).timestamp() * 1000)


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(datetime.now(tz=UTC).timestamp() * 1000)


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


class GiveawayStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


@dataclass(slots=True)
class Giveaway:
    """A single timed giveaway row."""
    guild_id: int
    channel_id: int
    prize: str
    winners_count: int
    started_at: int
    end_at: int
    required_role_id: Optional[int] = None
    min_server_age_days: int = 0
    min_account_age_days: int = 0
    message_id: Optional[int] = None
    status: GiveawayStatus = GiveawayStatus.ACTIVE
    id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status is GiveawayStatus.ACTIVE

    def remaining_ms(self, now: Optional[int] = None) -> int:
        """Milliseconds until the giveaway expires, never negative."""
        current = now_ms() if now is None else now
        return max(0, self.end_at - current)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Giveaway":
        """Rebuild a Giveaway from a ``giveaways`` table row."""
        return cls(
            id=int(row["id"]),
            guild_id=int(row["guild_id"]),
            channel_id=int(row["channel_id"]),
            message_id=int(row["message_id"]) if row["message_id"] else None,
            prize=str(row["prize"]),
            winners_count=int(row["winners_count"]),
            required_role_id=(
                int(row["required_role_id"]) if row["required_role_id"] else None
            ),
            min_server_age_days=int(row["min_server_age_days"] or 0),
            min_account_age_days=int(row["min_account_age_days"] or 0),
            started_at=int(row["started_at"]),
            end_at=int(row["end_at"]),
            status=GiveawayStatus(row["status"]),
        )


@dataclass(slots=True)
class Winner:
    giveaway_id: int
    user_id: int
    notified: bool = False


@dataclass(slots=True, frozen=True)
class MemberInfo:
    """Guild-scoped view of a participant used for eligibility checks."""
    role_ids: frozenset[int]
    joined_at: Optional[int]


@dataclass(slots=True, frozen=True)
class UserInfo:
    created_at: int


@dataclass(slots=True)
class EntryResult:
    """Outcome of an enter attempt.

    ``status`` is ``"entered"`` on success, otherwise one of ``"not_found"``,
    ``"inactive"``, ``"already_entered"`` or an eligibility rejection reason.
    """
    status: str
    giveaway: Optional[Giveaway] = None

    @property
    def ok(self) -> bool:
        return self.status == "entered"


@dataclass(slots=True)
class FinalizeResult:
    """Outcome of ending or rerolling a giveaway."""
    status: str
    winners: List[int] = field(default_factory=list)
    reason: Optional[str] = None
    giveaway: Optional[Giveaway] = None
