"""Persistent Join/Leave buttons attached to giveaway announcements."""

from __future__ import annotations

import discord

from .errors import NotFoundError
from .models import Participant


def participant_from_user(user: discord.abc.User) -> Participant:
    return Participant(
        user_id=str(user.id),
        username=user.name,
        display_name=user.display_name,
        avatar_url=str(user.display_avatar.url),
    )


class GiveawayView(discord.ui.View):
    """Persistent Join/Leave buttons shared by every giveaway announcement.

    The giveaway is identified by the message the buttons are attached to.
    """

    def __init__(self, engine) -> None:
        super().__init__(timeout=None)
        self.engine = engine

        join_button = discord.ui.Button(
            label="Join 🎉",
            style=discord.ButtonStyle.success,
            custom_id="giveaway:join",
        )
        join_button.callback = self.join_callback  # type: ignore[assignment]
        self.add_item(join_button)

        leave_button = discord.ui.Button(
            label="Leave",
            style=discord.ButtonStyle.secondary,
            custom_id="giveaway:leave",
        )
        leave_button.callback = self.leave_callback  # type: ignore[assignment]
        self.add_item(leave_button)

    async def join_callback(self, interaction: discord.Interaction) -> None:
        await self._handle(interaction, joined=True)

    async def leave_callback(self, interaction: discord.Interaction) -> None:
        await self._handle(interaction, joined=False)

    async def _handle(self, interaction: discord.Interaction, *, joined: bool) -> None:
        if interaction.message is None or interaction.guild is None:
            await interaction.response.send_message(
                "You can only join giveaways from a guild.", ephemeral=True
            )
            return
        giveaway_id = str(interaction.message.id)
        try:
            record = await self.engine.get_giveaway(giveaway_id)
        except NotFoundError:
            await interaction.response.send_message(
                "This giveaway is no longer available.", ephemeral=True
            )
            return
        if record.ended:
            await interaction.response.send_message(
                "This giveaway has already finished.", ephemeral=True
            )
            return

        user_id = str(interaction.user.id)
        was_in = user_id in record.entrants
        await interaction.response.defer(ephemeral=True)
        count = await self.engine.record_entrant_change(
            giveaway_id, participant_from_user(interaction.user), joined
        )
        is_in = user_id in record.entrants
        if joined and was_in:
            message = "You have already joined this giveaway."
        elif not joined and not was_in:
            message = "You are not part of this giveaway."
        elif is_in == joined:
            message = (
                f"You're in! Good luck! ({count} entries)" if joined else "You've left the giveaway."
            )
        else:
            # The giveaway ended while the change was in flight.
            message = "This giveaway has already finished."
        await interaction.followup.send(message, ephemeral=True)
