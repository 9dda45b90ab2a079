from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import discord

from .config import Config
from .duration import MINUTE_MS, parse_duration
from .eligibility import Candidate, evaluate
from .messaging import DiscordMessenger
from .models import (
    EntryResult,
    FinalizeResult,
    MAX_TIMESTAMP_MS,
    Giveaway,
    GiveawayStatus,
    Winner,
    now_ms,
)
from .selection import select_winners
from .storage import GiveawayStore
from .timers import TimerRegistry
from .views import EnterView

log = logging.getLogger(__name__)

MIN_DURATION_MS = MINUTE_MS


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, timers and announcements."""

    def __init__(
        self,
        config: Config,
        store: GiveawayStore,
        messenger: DiscordMessenger,
        *,
        timers: Optional[TimerRegistry] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.messenger = messenger
        self.timers = timers or TimerRegistry()

    async def load(self) -> None:
        """Prepare the store and re-arm every giveaway that is still active."""
        await self.store.initialize()
        await self.restore_active_giveaways()

    async def restore_active_giveaways(self) -> int:
        active = await self.store.list_active()
        now = now_ms()
        for giveaway in active:
            if giveaway.message_id:
                self.messenger.register_view(
                    self._build_view(giveaway.id), giveaway.message_id
                )
            self._arm_timer(giveaway, now=now)
        if active:
            log.info("Re-armed timers for %d active giveaway(s).", len(active))
        return len(active)

    def shutdown(self) -> None:
        self.timers.cancel_all()

    def is_admin(
        self,
        member: discord.Member,
        *,
        guild_owner_id: Optional[int] = None,
        base_permissions: Optional[discord.Permissions] = None,
    ) -> bool:
        owner_id = guild_owner_id
        if owner_id is None:
            guild = getattr(member, "guild", None)
            if guild is not None:
                owner_id = getattr(guild, "owner_id", None)
        if owner_id is not None and owner_id == member.id:
            log.debug("Member %s is guild owner; treating as giveaway manager.", member.id)
            return True

        permissions_obj = base_permissions
        if permissions_obj is None:
            try:
                permissions_obj = member.guild_permissions
            except AttributeError:
                permissions_obj = None
        if permissions_obj and (
            permissions_obj.administrator or permissions_obj.manage_guild
        ):
            log.debug(
                "Member %s has manage permissions; treating as giveaway manager.",
                member.id,
            )
            return True

        try:
            effective_role_ids = {role.id for role in member.roles}
        except AttributeError:
            effective_role_ids = set()

        manager_roles = set(self.config.permissions.manager_roles)
        if not manager_roles:
            log.debug("No giveaway manager roles configured; denying member %s.", member.id)
            return False

        matching_roles = sorted(manager_roles.intersection(effective_role_ids))
        if matching_roles:
            log.debug(
                "Member %s matched giveaway manager role(s) %s.",
                member.id,
                matching_roles,
            )
            return True

        log.debug(
            "Member %s lacks giveaway manager roles %s (has %s).",
            member.id,
            sorted(manager_roles),
            sorted(effective_role_ids),
        )
        return False

    async def create_giveaway(
        self,
        *,
        guild_id: int,
        channel_id: int,
        prize: str,
        winners: int,
        duration: str,
        required_role_id: Optional[int] = None,
        min_server_age_days: Optional[int] = None,
        min_account_age_days: Optional[int] = None,
    ) -> Giveaway:
        """Create an ACTIVE giveaway, arm its timer and post the announcement.

        Raises ``ValueError`` for invalid input before anything is written.
        """
        if winners <= 0:
            raise ValueError("Winner count must be at least 1.")
        duration_ms = parse_duration(duration)
        if not duration_ms or duration_ms < MIN_DURATION_MS:
            raise ValueError("Duration must be >= 1 minute.")
        if min_server_age_days is None:
            min_server_age_days = self.config.defaults.min_server_age_days
        if min_account_age_days is None:
            min_account_age_days = self.config.defaults.min_account_age_days
        if min_server_age_days < 0 or min_account_age_days < 0:
            raise ValueError("Minimum age requirements must be zero or greater.")
        started_at = now_ms()
        if started_at + duration_ms > MAX_TIMESTAMP_MS:
            raise ValueError("Duration is too long.")

        giveaway = await self.store.insert_giveaway(
            Giveaway(
                guild_id=guild_id,
                channel_id=channel_id,
                prize=prize,
                winners_count=winners,
                required_role_id=required_role_id,
                min_server_age_days=min_server_age_days,
                min_account_age_days=min_account_age_days,
                started_at=started_at,
                end_at=started_at + duration_ms,
            )
        )
        self._arm_timer(giveaway)
        log.info(
            "Giveaway %s (%s) created in channel %s, ends at %s.",
            giveaway.id,
            giveaway.prize,
            giveaway.channel_id,
            giveaway.end_at,
        )

        message_id = await self.messenger.post_announcement(
            giveaway, self._build_view(giveaway.id)
        )
        if message_id is None:
            log.warning("Giveaway %s is running without an announcement.", giveaway.id)
        else:
            giveaway.message_id = message_id
            await self.store.set_message_id(giveaway.id, message_id)

        await self.messenger.notify_logger(
            f"Giveaway **{giveaway.prize}** (ID {giveaway.id}) started in <#{giveaway.channel_id}>."
        )
        return giveaway

    async def enter(self, giveaway_id: int, user_id: int) -> EntryResult:
        giveaway = await self.store.get_giveaway(giveaway_id)
        if giveaway is None:
            return EntryResult("not_found")
        if not giveaway.is_active:
            return EntryResult("inactive", giveaway)

        candidate = await self._build_candidate(giveaway, user_id)
        verdict = evaluate(giveaway, candidate)
        if not verdict.admitted:
            log.debug(
                "User %s rejected from giveaway %s: %s",
                user_id,
                giveaway_id,
                verdict.reason,
            )
            return EntryResult(verdict.reason, giveaway)

        inserted = await self.store.insert_entry_if_absent(giveaway_id, user_id, now_ms())
        if not inserted:
            latest = await self.store.get_giveaway(giveaway_id)
            if latest is None or not latest.is_active:
                return EntryResult("inactive", latest or giveaway)
            return EntryResult("already_entered", giveaway)

        log.info("User %s entered giveaway %s.", user_id, giveaway_id)
        return EntryResult("entered", giveaway)

    async def finalize(
        self, giveaway_id: int, count: Optional[int] = None
    ) -> FinalizeResult:
        """End an ACTIVE giveaway and draw winners from entrants who have not won yet.

        Used by timer expiry, manual end and reroll. Concurrent calls for one
        giveaway race on the store's status flip; only one reports ``ended``.
        """
        giveaway = await self.store.get_giveaway(giveaway_id)
        if giveaway is None:
            return FinalizeResult("not_found")
        if not giveaway.is_active:
            return FinalizeResult("already_ended", giveaway=giveaway)

        entrants = await self.store.list_entries(giveaway_id)
        already_won = {winner.user_id for winner in await self.store.list_winners(giveaway_id)}
        pool = [user_id for user_id in entrants if user_id not in already_won]
        requested = count or giveaway.winners_count
        chosen = select_winners(pool, requested)

        if not await self.store.close_giveaway(giveaway_id, chosen):
            return FinalizeResult("already_ended", giveaway=giveaway)
        self.timers.cancel(giveaway_id)
        giveaway.status = GiveawayStatus.ENDED

        if not pool:
            log.info("Giveaway %s ended with no valid entries.", giveaway_id)
        else:
            log.info("Giveaway %s ended with winners %s.", giveaway_id, chosen)
        try:
            await self._announce_end(giveaway, chosen)
        except Exception:
            log.exception("Failed to announce the end of giveaway %s", giveaway_id)

        if not pool:
            return FinalizeResult("ended", [], reason="no_entries", giveaway=giveaway)
        return FinalizeResult("ended", chosen, giveaway=giveaway)

    async def _announce_end(self, giveaway: Giveaway, chosen: List[int]) -> None:
        if not chosen:
            await self.messenger.send_notice(
                giveaway.channel_id,
                f"No valid entries for **{giveaway.prize}** (ID {giveaway.id}).",
            )
            await self.messenger.close_announcement(giveaway, [])
            await self.messenger.notify_logger(
                f"Giveaway **{giveaway.prize}** (ID {giveaway.id}) ended with no winners."
            )
            return

        mentions = "\n".join(f"• <@{user_id}>" for user_id in chosen)
        await self.messenger.send_notice(
            giveaway.channel_id,
            f"🎉 **Winners for** *{giveaway.prize}* (ID {giveaway.id}):\n{mentions}\n"
            "Staff will deliver the prize directly.",
        )
        await self.messenger.close_announcement(giveaway, chosen)
        await self.messenger.notify_logger(
            f"Giveaway **{giveaway.prize}** (ID {giveaway.id}) finished with "
            f"{len(chosen)} winner(s): {', '.join(f'<@{u}>' for u in chosen)}."
        )

    async def end_giveaway(self, giveaway_id: int) -> FinalizeResult:
        return await self.finalize(giveaway_id)

    async def reroll(self, giveaway_id: int, count: int = 1) -> FinalizeResult:
        # Shares the finalize path, so an already ENDED giveaway is left untouched.
        if count <= 0:
            raise ValueError("Reroll count must be at least 1.")
        return await self.finalize(giveaway_id, count)

    async def get_giveaway(self, giveaway_id: int) -> Optional[Giveaway]:
        return await self.store.get_giveaway(giveaway_id)

    async def count_entries(self, giveaway_id: int) -> int:
        return await self.store.count_entries(giveaway_id)

    async def list_winners(self, giveaway_id: int) -> List[Winner]:
        return await self.store.list_winners(giveaway_id)

    async def mark_gifted(self, giveaway_id: int, user_id: int) -> bool:
        updated = await self.store.set_winner_notified(giveaway_id, user_id, True)
        if updated:
            log.info("Winner %s of giveaway %s marked as gifted.", user_id, giveaway_id)
            await self.messenger.notify_logger(
                f"<@{user_id}> marked as gifted for giveaway ID {giveaway_id}."
            )
        return updated

    async def remove_entry(
        self, giveaway_id: int, user_id: int, *, purge_winner: bool = False
    ) -> Tuple[int, Optional[int]]:
        """Delete a user's entry and, with ``purge_winner``, their winner row.

        Returns the number of entry rows and winner rows removed (``None`` for
        winners when not purged).
        """
        removed_entries = await self.store.delete_entry(giveaway_id, user_id)
        removed_winners = None
        if purge_winner:
            removed_winners = await self.store.delete_winner(giveaway_id, user_id)
        log.info(
            "Removed %d entr%s for user %s in giveaway %s (winner rows: %s).",
            removed_entries,
            "y" if removed_entries == 1 else "ies",
            user_id,
            giveaway_id,
            removed_winners,
        )
        await self.messenger.notify_logger(
            f"Entry correction for <@{user_id}> in giveaway ID {giveaway_id}: "
            f"{removed_entries} entry row(s), {removed_winners or 0} winner row(s) removed."
        )
        return removed_entries, removed_winners

    async def _on_timer(self, giveaway_id: int) -> None:
        result = await self.finalize(giveaway_id)
        log.debug("Timer finalize for giveaway %s: %s", giveaway_id, result.status)

    def _arm_timer(self, giveaway: Giveaway, *, now: Optional[int] = None) -> None:
        self.timers.arm(giveaway.id, giveaway.remaining_ms(now), self._on_timer)

    async def _build_candidate(self, giveaway: Giveaway, user_id: int) -> Candidate:
        role_ids: frozenset[int] = frozenset()
        joined_at = None
        created_at = None
        if giveaway.required_role_id or giveaway.min_server_age_days:
            member = await self.messenger.fetch_member(giveaway.guild_id, user_id)
            if member is not None:
                role_ids = member.role_ids
                joined_at = member.joined_at
        if giveaway.min_account_age_days:
            user = await self.messenger.fetch_user(user_id)
            if user is not None:
                created_at = user.created_at
        return Candidate(
            user_id=user_id,
            role_ids=role_ids,
            joined_at=joined_at,
            created_at=created_at,
        )

    def _build_view(self, giveaway_id: int) -> EnterView:
        return EnterView(self, giveaway_id)
