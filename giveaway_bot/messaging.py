"""Discord-facing delivery and lookup helpers used by the giveaway manager."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Iterable, Optional

import discord

from .models import Giveaway, MemberInfo, UserInfo, to_epoch_ms

log = logging.getLogger(__name__)

ACTIVE_COLOR = discord.Color(0x00AE86)


def build_announcement_embed(
    giveaway: Giveaway, *, winners: Optional[Iterable[int]] = None
) -> discord.Embed:
    """Render the announcement embed for an active or finished giveaway."""
    end_ts = giveaway.end_at // 1000
    lines = []
    if giveaway.is_active:
        lines.append(f"Ends: <t:{end_ts}:R>")
    else:
        lines.append(f"Ended: <t:{end_ts}:F>")
    lines.append(f"Winners: **{giveaway.winners_count}**")
    if giveaway.required_role_id:
        lines.append(f"Required role: <@&{giveaway.required_role_id}>")
    if giveaway.min_server_age_days:
        lines.append(f"Min server age: {giveaway.min_server_age_days}d")
    if giveaway.min_account_age_days:
        lines.append(f"Min account age: {giveaway.min_account_age_days}d")
    lines.append("")
    lines.append(f"Giveaway ID: **{giveaway.id}**")

    embed = discord.Embed(
        title=f"🎁 Giveaway: {giveaway.prize}",
        description="\n".join(lines),
        color=ACTIVE_COLOR if giveaway.is_active else discord.Color.dark_gray(),
        timestamp=datetime.fromtimestamp(giveaway.end_at / 1000, tz=UTC),
    )
    if winners is not None:
        mentions = " ".join(f"<@{user_id}>" for user_id in winners)
        embed.add_field(name="Winner(s)", value=mentions or "No valid entries", inline=False)
    return embed


class DiscordMessenger:
    """Wraps the bot client so delivery failures never escape as exceptions."""

    def __init__(
        self, bot: discord.Client, *, logger_channel_id: Optional[int] = None
    ) -> None:
        self.bot = bot
        self.logger_channel_id = logger_channel_id

    async def post_announcement(
        self, giveaway: Giveaway, view: Optional[discord.ui.View] = None
    ) -> Optional[int]:
        """Send the announcement and return its message ID, or None on failure."""
        channel = await self._fetch_text_channel(giveaway.channel_id)
        if channel is None:
            log.warning(
                "Unable to locate channel %s for giveaway %s",
                giveaway.channel_id,
                giveaway.id,
            )
            return None
        try:
            embed = build_announcement_embed(giveaway)
        except (OverflowError, OSError, ValueError) as exc:
            log.warning("Unable to render announcement for giveaway %s: %s", giveaway.id, exc)
            return None
        kwargs = {"embed": embed}
        if view is not None:
            kwargs["view"] = view
        try:
            message = await channel.send(**kwargs)
        except discord.HTTPException as exc:
            log.warning("Failed to post giveaway %s: %s", giveaway.id, exc)
            return None
        if view is not None:
            self.register_view(view, message.id)
        return message.id

    async def close_announcement(self, giveaway: Giveaway, winners: Iterable[int]) -> None:
        """Mark the announcement finished and drop the Enter button."""
        if not giveaway.message_id:
            return
        channel = await self._fetch_text_channel(giveaway.channel_id)
        if channel is None:
            return
        message = await self._fetch_message(channel, giveaway.message_id)
        if message is None:
            return
        try:
            embed = build_announcement_embed(giveaway, winners=list(winners))
        except (OverflowError, OSError, ValueError) as exc:
            log.warning("Unable to render announcement for giveaway %s: %s", giveaway.id, exc)
            return
        try:
            await message.edit(embed=embed, view=None)
        except discord.HTTPException as exc:
            log.warning("Failed to update announcement for giveaway %s: %s", giveaway.id, exc)

    async def send_notice(self, channel_id: int, text: str) -> bool:
        channel = await self._fetch_text_channel(channel_id)
        if channel is None:
            log.warning("Notice channel %s unavailable", channel_id)
            return False
        try:
            await channel.send(text)
        except discord.HTTPException as exc:
            log.warning("Failed to send notice to %s: %s", channel_id, exc)
            return False
        return True

    async def notify_logger(self, text: str) -> None:
        if not self.logger_channel_id:
            return
        await self.send_notice(self.logger_channel_id, f"[Giveaway] {text}")

    async def fetch_member(self, guild_id: int, user_id: int) -> Optional[MemberInfo]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except (discord.NotFound, discord.Forbidden, discord.HTTPException):
                return None
        return MemberInfo(
            role_ids=frozenset(role.id for role in member.roles),
            joined_at=to_epoch_ms(member.joined_at),
        )

    async def fetch_user(self, user_id: int) -> Optional[UserInfo]:
        user = self.bot.get_user(user_id)
        if user is None:
            try:
                user = await self.bot.fetch_user(user_id)
            except (discord.NotFound, discord.HTTPException):
                return None
        return UserInfo(created_at=to_epoch_ms(user.created_at))

    def register_view(self, view: discord.ui.View, message_id: int) -> None:
        self.bot.add_view(view, message_id=message_id)

    async def _fetch_text_channel(
        self, channel_id: int
    ) -> Optional[discord.TextChannel]:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, discord.TextChannel) else None

    async def _fetch_message(
        self, channel: discord.TextChannel, message_id: int
    ) -> Optional[discord.Message]:
        try:
            return await channel.fetch_message(message_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
