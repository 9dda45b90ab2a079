"""SQLite persistence for giveaways, entries and winners."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Iterable, List, Optional

from .models import Giveaway, GiveawayStatus, Winner

LOGGER = logging.getLogger(__name__)


class GiveawayStore:
    """Async wrapper around a single SQLite database of giveaway state.

    Each operation runs in a worker thread on its own connection. Uniqueness of
    entries and winners is enforced by the table primary keys, and status
    changes are compare-and-set updates, so callers interleaving on the event
    loop cannot double-enter or double-finalize.
    """

    def __init__(self, path: Path, *, timeout: float = 10.0) -> None:
        self.path = path
        self.timeout = timeout

    async def initialize(self) -> None:
        """Create the database file and schema if missing."""
        await asyncio.to_thread(self._initialize)

    async def insert_giveaway(self, giveaway: Giveaway) -> Giveaway:
        """Persist a new giveaway and return it with its assigned ID."""
        giveaway.id = await asyncio.to_thread(self._insert_giveaway, giveaway)
        return giveaway

    async def get_giveaway(self, giveaway_id: int) -> Optional[Giveaway]:
        return await asyncio.to_thread(self._get_giveaway, giveaway_id)

    async def list_active(self) -> List[Giveaway]:
        """Return every giveaway still in ACTIVE status."""
        return await asyncio.to_thread(self._list_active)

    async def update_status(
        self,
        giveaway_id: int,
        status: GiveawayStatus,
        *,
        expected: Optional[GiveawayStatus] = None,
    ) -> bool:
        """Set the status, optionally only if it currently equals ``expected``."""
        return await asyncio.to_thread(
            self._update_status, giveaway_id, status, expected
        )

    async def set_message_id(self, giveaway_id: int, message_id: int) -> None:
        await asyncio.to_thread(self._set_message_id, giveaway_id, message_id)

    async def insert_entry_if_absent(
        self, giveaway_id: int, user_id: int, entered_at: int
    ) -> bool:
        """Record an entry for an ACTIVE giveaway.

        Returns False when the user had already entered or the giveaway is no
        longer active.
        """
        return await asyncio.to_thread(
            self._insert_entry_if_absent, giveaway_id, user_id, entered_at
        )

    async def count_entries(self, giveaway_id: int) -> int:
        return await asyncio.to_thread(self._count_entries, giveaway_id)

    async def list_entries(self, giveaway_id: int) -> List[int]:
        return await asyncio.to_thread(self._list_entries, giveaway_id)

    async def delete_entry(self, giveaway_id: int, user_id: int) -> int:
        return await asyncio.to_thread(self._delete_entry, giveaway_id, user_id)

    async def insert_winners(self, giveaway_id: int, user_ids: Iterable[int]) -> int:
        """Insert winners, ignoring users already recorded for this giveaway."""
        return await asyncio.to_thread(
            self._insert_winners, giveaway_id, list(user_ids)
        )

    async def list_winners(self, giveaway_id: int) -> List[Winner]:
        return await asyncio.to_thread(self._list_winners, giveaway_id)

    async def set_winner_notified(
        self, giveaway_id: int, user_id: int, notified: bool = True
    ) -> bool:
        """Flip the gifted flag; returns False when the user is not a winner."""
        return await asyncio.to_thread(
            self._set_winner_notified, giveaway_id, user_id, notified
        )

    async def delete_winner(self, giveaway_id: int, user_id: int) -> int:
        return await asyncio.to_thread(self._delete_winner, giveaway_id, user_id)

    async def close_giveaway(self, giveaway_id: int, winners: Iterable[int]) -> bool:
        """Atomically end an ACTIVE giveaway and record its winners.

        Runs the same writes as ``update_status(..., expected=ACTIVE)`` and
        ``insert_winners`` inside one transaction.

        Returns False without writing anything when the giveaway is missing or
        already ended.
        """
        return await asyncio.to_thread(
            self._close_giveaway, giveaway_id, list(winners)
        )

    # --- Internal helpers -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            self._ensure_schema(conn)
            conn.commit()
        LOGGER.info("Giveaway database ready at %s", self.path)

    def _insert_giveaway(self, giveaway: Giveaway) -> int:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                """
                INSERT INTO giveaways(
                    guild_id,
                    channel_id,
                    message_id,
                    prize,
                    winners_count,
                    required_role_id,
                    min_server_age_days,
                    min_account_age_days,
                    started_at,
                    end_at,
                    status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(giveaway.guild_id),
                    str(giveaway.channel_id),
                    str(giveaway.message_id) if giveaway.message_id else None,
                    giveaway.prize,
                    giveaway.winners_count,
                    str(giveaway.required_role_id) if giveaway.required_role_id else None,
                    giveaway.min_server_age_days,
                    giveaway.min_account_age_days,
                    giveaway.started_at,
                    giveaway.end_at,
                    giveaway.status.value,
                ),
            )
            return int(cursor.lastrowid)

    def _get_giveaway(self, giveaway_id: int) -> Optional[Giveaway]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM giveaways WHERE id = ?", (giveaway_id,)
            ).fetchone()
        return Giveaway.from_row(row) if row else None

    def _list_active(self) -> List[Giveaway]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM giveaways WHERE status = ? ORDER BY end_at",
                (GiveawayStatus.ACTIVE.value,),
            ).fetchall()
        return [Giveaway.from_row(row) for row in rows]

    @staticmethod
    def _write_status(
        conn: sqlite3.Connection,
        giveaway_id: int,
        status: GiveawayStatus,
        expected: Optional[GiveawayStatus],
    ) -> bool:
        if expected is None:
            cursor = conn.execute(
                "UPDATE giveaways SET status = ? WHERE id = ?",
                (status.value, giveaway_id),
            )
        else:
            cursor = conn.execute(
                "UPDATE giveaways SET status = ? WHERE id = ? AND status = ?",
                (status.value, giveaway_id, expected.value),
            )
        return cursor.rowcount > 0

    def _update_status(
        self,
        giveaway_id: int,
        status: GiveawayStatus,
        expected: Optional[GiveawayStatus],
    ) -> bool:
        with closing(self._connect()) as conn, conn:
            return self._write_status(conn, giveaway_id, status, expected)

    def _set_message_id(self, giveaway_id: int, message_id: int) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "UPDATE giveaways SET message_id = ? WHERE id = ?",
                (str(message_id), giveaway_id),
            )

    def _insert_entry_if_absent(
        self, giveaway_id: int, user_id: int, entered_at: int
    ) -> bool:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO entries(giveaway_id, user_id, entered_at)
                SELECT ?, ?, ?
                WHERE EXISTS (
                    SELECT 1 FROM giveaways WHERE id = ? AND status = ?
                )
                """,
                (
                    giveaway_id,
                    str(user_id),
                    entered_at,
                    giveaway_id,
                    GiveawayStatus.ACTIVE.value,
                ),
            )
            return cursor.rowcount > 0

    def _count_entries(self, giveaway_id: int) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM entries WHERE giveaway_id = ?",
                (giveaway_id,),
            ).fetchone()
        return int(row["c"])

    def _list_entries(self, giveaway_id: int) -> List[int]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT user_id FROM entries WHERE giveaway_id = ? ORDER BY entered_at",
                (giveaway_id,),
            ).fetchall()
        return [int(row["user_id"]) for row in rows]

    def _delete_entry(self, giveaway_id: int, user_id: int) -> int:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "DELETE FROM entries WHERE giveaway_id = ? AND user_id = ?",
                (giveaway_id, str(user_id)),
            )
            return cursor.rowcount

    @staticmethod
    def _write_winners(
        conn: sqlite3.Connection, giveaway_id: int, user_ids: List[int]
    ) -> int:
        before = conn.total_changes
        conn.executemany(
            "INSERT OR IGNORE INTO winners(giveaway_id, user_id, notified) VALUES (?, ?, 0)",
            [(giveaway_id, str(user_id)) for user_id in user_ids],
        )
        return conn.total_changes - before

    def _insert_winners(self, giveaway_id: int, user_ids: List[int]) -> int:
        if not user_ids:
            return 0
        with closing(self._connect()) as conn, conn:
            return self._write_winners(conn, giveaway_id, user_ids)

    def _list_winners(self, giveaway_id: int) -> List[Winner]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT user_id, notified FROM winners WHERE giveaway_id = ? ORDER BY rowid",
                (giveaway_id,),
            ).fetchall()
        return [
            Winner(
                giveaway_id=giveaway_id,
                user_id=int(row["user_id"]),
                notified=bool(row["notified"]),
            )
            for row in rows
        ]

    def _set_winner_notified(
        self, giveaway_id: int, user_id: int, notified: bool
    ) -> bool:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "UPDATE winners SET notified = ? WHERE giveaway_id = ? AND user_id = ?",
                (1 if notified else 0, giveaway_id, str(user_id)),
            )
            return cursor.rowcount > 0

    def _delete_winner(self, giveaway_id: int, user_id: int) -> int:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "DELETE FROM winners WHERE giveaway_id = ? AND user_id = ?",
                (giveaway_id, str(user_id)),
            )
            return cursor.rowcount

    def _close_giveaway(self, giveaway_id: int, winners: List[int]) -> bool:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            if not self._write_status(
                conn, giveaway_id, GiveawayStatus.ENDED, GiveawayStatus.ACTIVE
            ):
                conn.rollback()
                return False
            if winners:
                self._write_winners(conn, giveaway_id, winners)
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS giveaways (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                message_id TEXT,
                prize TEXT NOT NULL,
                winners_count INTEGER NOT NULL,
                required_role_id TEXT,
                min_server_age_days INTEGER DEFAULT 0,
                min_account_age_days INTEGER DEFAULT 0,
                started_at INTEGER NOT NULL,
                end_at INTEGER NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('ACTIVE','ENDED')) DEFAULT 'ACTIVE'
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                giveaway_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                entered_at INTEGER NOT NULL,
                PRIMARY KEY (giveaway_id, user_id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS winners (
                giveaway_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                notified INTEGER DEFAULT 0,
                PRIMARY KEY (giveaway_id, user_id)
            )
            """
        )
