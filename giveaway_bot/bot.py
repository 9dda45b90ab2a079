from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import Config, ConfigError, load_config, load_env_file, parse_snowflake
from .giveaway_manager import GiveawayManager
from .messaging import DiscordMessenger
from .models import FinalizeResult
from .storage import GiveawayStore

PERMISSION_LOG = logging.getLogger("giveaway.permissions")
GENERIC_FAILURE = "Something broke. Try again or ping an admin."
NO_PERMISSION = "No permission."

log = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config, store: GiveawayStore) -> None:
        intents = discord.Intents.default()
        # needed for role and join-age checks
        intents.members = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.messenger = DiscordMessenger(
            self, logger_channel_id=config.logging.logger_channel_id
        )
        self.manager = GiveawayManager(config, store, self.messenger)

    async def setup_hook(self) -> None:
        await self.manager.load()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        await self.tree.sync()

    async def close(self) -> None:
        self.manager.shutdown()
        await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]


async def admin_required(
    interaction: discord.Interaction, manager: GiveawayManager
) -> Optional[str]:
    """Return an error message when the caller may not manage giveaways."""
    command_name = getattr(getattr(interaction, "command", None), "name", "unknown")
    user = interaction.user
    guild = interaction.guild
    if guild is None:
        PERMISSION_LOG.debug(
            "Denied command %s for user %s: non-guild context.", command_name, user.id
        )
        return "This command can only be used inside a server."

    member: Optional[discord.Member] = user if isinstance(user, discord.Member) else None
    if member is None:
        member = guild.get_member(user.id)
    if member is None:
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: unable to resolve guild member.",
            command_name,
            user.id,
        )
        return NO_PERMISSION

    if not manager.is_admin(
        member,
        guild_owner_id=getattr(guild, "owner_id", None),
        base_permissions=getattr(interaction, "permissions", None),
    ):
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: missing giveaway manager rights.",
            command_name,
            member.id,
        )
        return NO_PERMISSION

    PERMISSION_LOG.debug("Authorized command %s for user %s.", command_name, member.id)
    return None


def parse_user_id(raw: str) -> int:
    """Parse a Discord user ID typed by an admin, ignoring inline comments."""
    try:
        return parse_snowflake((raw or "").strip(), "user_id")
    except ConfigError as exc:
        raise ValueError(f'Invalid Discord ID: "{raw}"') from exc


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def describe_end(giveaway_id: int, result: FinalizeResult) -> str:
    if result.status == "not_found":
        return f"Giveaway ID {giveaway_id} was not found."
    if result.status == "already_ended":
        return f"Giveaway ID {giveaway_id} is already ENDED."
    if result.reason == "no_entries":
        return f"Ended giveaway ID {giveaway_id}. There were no valid entries."
    mentions = ", ".join(f"<@{user_id}>" for user_id in result.winners)
    return f"Ended giveaway ID {giveaway_id}. Winners: {mentions}"


def describe_reroll(giveaway_id: int, count: int, result: FinalizeResult) -> str:
    if result.status == "not_found":
        return f"Giveaway ID {giveaway_id} was not found."
    if result.status == "already_ended":
        return (
            f"Giveaway ID {giveaway_id} is already ENDED; "
            "reroll is only possible while it is active."
        )
    if result.reason == "no_entries":
        return (
            f"No eligible entrants left to reroll for giveaway ID {giveaway_id}. "
            "The giveaway has ended."
        )
    mentions = ", ".join(f"<@{user_id}>" for user_id in result.winners)
    return (
        f"Rerolled {len(result.winners)} of {count} winner(s) for giveaway ID "
        f"{giveaway_id}: {mentions}"
    )


async def _send(interaction: discord.Interaction, content: str) -> None:
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True)
    else:
        await interaction.response.send_message(content, ephemeral=True)


def register_commands(bot: GiveawayBot) -> None:
    manager = bot.manager

    group = app_commands.Group(name="giveaway", description="Manage giveaways")

    @group.command(name="start", description="Start a giveaway")
    @app_commands.describe(
        prize="Prize title",
        duration="e.g., 30m, 2h, 1d",
        winners="Number of winners",
        required_role="Role required to enter",
        min_server_age_days="Min days in server",
        min_account_age_days="Min days since account created",
        channel="Channel to post in",
    )
    async def giveaway_start(
        interaction: discord.Interaction,
        prize: str,
        duration: str,
        winners: int,
        required_role: Optional[discord.Role] = None,
        min_server_age_days: Optional[int] = None,
        min_account_age_days: Optional[int] = None,
        channel: Optional[discord.TextChannel] = None,
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        channel_id = (
            channel.id
            if channel is not None
            else bot.config.defaults.channel_id or interaction.channel_id
        )
        await interaction.response.defer(ephemeral=True)
        try:
            giveaway = await manager.create_giveaway(
                guild_id=interaction.guild_id,
                channel_id=channel_id,
                prize=prize,
                winners=winners,
                duration=duration,
                required_role_id=required_role.id if required_role else None,
                min_server_age_days=min_server_age_days,
                min_account_age_days=min_account_age_days,
            )
        except ValueError as exc:
            await interaction.followup.send(str(exc), ephemeral=True)
            return
        await interaction.followup.send(
            f"Giveaway **{giveaway.prize}** started (ID {giveaway.id}) in <#{giveaway.channel_id}>.",
            ephemeral=True,
        )

    @group.command(name="end", description="End a giveaway early")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID")
    async def giveaway_end(interaction: discord.Interaction, giveaway_id: int) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        result = await manager.end_giveaway(giveaway_id)
        await interaction.followup.send(describe_end(giveaway_id, result), ephemeral=True)

    @group.command(name="reroll", description="Reroll winners")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID", count="How many to reroll (default 1)")
    async def giveaway_reroll(
        interaction: discord.Interaction, giveaway_id: int, count: Optional[int] = None
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        requested = 1 if count is None else count
        if requested <= 0:
            await interaction.response.send_message(
                "Reroll count must be at least 1.", ephemeral=True
            )
            return
        await interaction.response.defer(ephemeral=True)
        result = await manager.reroll(giveaway_id, requested)
        await interaction.followup.send(
            describe_reroll(giveaway_id, requested, result), ephemeral=True
        )

    @group.command(name="status", description="Show entries and status")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID")
    async def giveaway_status(interaction: discord.Interaction, giveaway_id: int) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        giveaway = await manager.get_giveaway(giveaway_id)
        if giveaway is None:
            await interaction.response.send_message("Not found.", ephemeral=True)
            return
        entries = await manager.count_entries(giveaway_id)
        extra = " (no entries yet)" if entries == 0 else ""
        await interaction.response.send_message(
            f"Giveaway {giveaway_id} → {entries} {_plural(entries, 'entry', 'entries')}{extra}. "
            f"Status: {giveaway.status.value}. Ends/Ended: <t:{giveaway.end_at // 1000}:F>",
            ephemeral=True,
        )

    @group.command(name="winners", description="List winners and gift status")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID")
    async def giveaway_winners(interaction: discord.Interaction, giveaway_id: int) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        giveaway = await manager.get_giveaway(giveaway_id)
        if giveaway is None:
            await interaction.response.send_message("Giveaway not found.", ephemeral=True)
            return
        winners = await manager.list_winners(giveaway_id)
        if not winners:
            await interaction.response.send_message(
                "No winners stored for this giveaway.", ephemeral=True
            )
            return
        lines = [
            f"{'✅' if winner.notified else '⬜️'} <@{winner.user_id}>" for winner in winners
        ]
        await interaction.response.send_message(
            f"Winners for **{giveaway.prize}** (ID {giveaway_id}):\n" + "\n".join(lines),
            ephemeral=True,
        )

    @group.command(name="gifted", description="Mark a winner as gifted (tracking only)")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID", user="Winner to mark gifted")
    async def giveaway_gifted(
        interaction: discord.Interaction, giveaway_id: int, user: discord.User
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        if not await manager.mark_gifted(giveaway_id, user.id):
            await interaction.response.send_message(
                "That user is not a recorded winner for this giveaway.", ephemeral=True
            )
            return
        await interaction.response.send_message(
            f"Marked <@{user.id}> as gifted for giveaway ID {giveaway_id}.", ephemeral=True
        )

    @group.command(name="entries", description="Check number of entries for a giveaway")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(giveaway_id="Giveaway ID")
    async def giveaway_entries(interaction: discord.Interaction, giveaway_id: int) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        giveaway = await manager.get_giveaway(giveaway_id)
        if giveaway is None:
            await interaction.response.send_message("Not found.", ephemeral=True)
            return
        count = await manager.count_entries(giveaway_id)
        await interaction.response.send_message(
            f"Giveaway {giveaway_id} has {count} {_plural(count, 'entry', 'entries')}.",
            ephemeral=True,
        )

    @group.command(name="removeentry", description="Remove a giveaway entry by Discord ID")
    @app_commands.rename(giveaway_id="id")
    @app_commands.describe(
        giveaway_id="Giveaway ID",
        user_id="Discord user ID to remove",
        purge_winner="Also remove from winners, if present",
    )
    async def giveaway_removeentry(
        interaction: discord.Interaction,
        giveaway_id: int,
        user_id: str,
        purge_winner: bool = False,
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        try:
            target = parse_user_id(user_id)
        except ValueError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        removed, removed_winners = await manager.remove_entry(
            giveaway_id, target, purge_winner=purge_winner
        )
        message = (
            f"Removed {removed} {_plural(removed, 'entry', 'entries')} for user "
            f"<@{target}> in giveaway {giveaway_id}."
        )
        if removed_winners is not None:
            message += (
                f" Removed {removed_winners} winner "
                f"{_plural(removed_winners, 'record', 'records')}."
            )
        await interaction.response.send_message(message, ephemeral=True)

    @bot.tree.error
    async def on_app_command_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        command_name = getattr(getattr(interaction, "command", None), "name", "unknown")
        log.error("Command %s failed", command_name, exc_info=error)
        try:
            await _send(interaction, GENERIC_FAILURE)
        except discord.HTTPException:
            log.warning("Could not report failure for command %s", command_name)

    bot.tree.add_command(group)


def build_bot(config_path: Path) -> GiveawayBot:
    load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    store = GiveawayStore(config.storage.path)
    return GiveawayBot(config, store)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
