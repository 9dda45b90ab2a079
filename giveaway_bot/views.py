from __future__ import annotations

import logging

import discord

log = logging.getLogger(__name__)

ENTRY_REPLIES = {
    "entered": "Entry recorded. Good luck!",
    "not_found": "This giveaway is not active.",
    "inactive": "This giveaway is not active.",
    "already_entered": "You are already entered.",
}


def entry_reply(status: str, giveaway=None) -> str:
    if status == "missing_role" and giveaway is not None:
        return f"You need the <@&{giveaway.required_role_id}> role to enter."
    if status == "too_new_to_server" and giveaway is not None:
        return (
            f"You must be in the server for at least "
            f"{giveaway.min_server_age_days} day(s)."
        )
    if status == "too_new_account" and giveaway is not None:
        return (
            f"Your Discord account must be at least "
            f"{giveaway.min_account_age_days} day(s) old."
        )
    return ENTRY_REPLIES.get(status, "You cannot enter this giveaway.")


class EnterView(discord.ui.View):
    def __init__(self, manager, giveaway_id: int) -> None:
        super().__init__(timeout=None)
        self.manager = manager
        self.giveaway_id = giveaway_id

        enter_button = discord.ui.Button(
            label="Enter",
            style=discord.ButtonStyle.success,
            custom_id=f"enter_{giveaway_id}",
        )
        enter_button.callback = self.enter_callback  # type: ignore[assignment]
        self.add_item(enter_button)

    async def enter_callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild:
            await interaction.response.send_message(
                "You can only enter giveaways from a server.", ephemeral=True
            )
            return
        result = await self.manager.enter(self.giveaway_id, interaction.user.id)
        await interaction.response.send_message(
            entry_reply(result.status, result.giveaway), ephemeral=True
        )

    async def on_error(
        self,
        interaction: discord.Interaction,
        error: Exception,
        item: discord.ui.Item,
    ) -> None:
        log.error(
            "Enter button for giveaway %s failed",
            self.giveaway_id,
            exc_info=error,
        )
        try:
            if interaction.response.is_done():
                await interaction.followup.send(
                    "Something broke. Try again or ping an admin.", ephemeral=True
                )
            else:
                await interaction.response.send_message(
                    "Something broke. Try again or ping an admin.", ephemeral=True
                )
        except discord.HTTPException:
            log.warning("Could not report enter failure for giveaway %s", self.giveaway_id)
