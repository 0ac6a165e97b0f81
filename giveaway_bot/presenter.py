"""Discord presentation of giveaways: announcements, counters and results."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol

import discord

from .errors import PresentationFailure
from .models import GiveawayRecord, GiveawaySpec, Participant

log = logging.getLogger(__name__)

ACTIVE_COLOR = discord.Color.blurple()
ENDED_COLOR = discord.Color.dark_gray()


class GiveawayPresenter(Protocol):
    """Everything the engine needs from the chat platform.

    Implementations raise :class:`PresentationFailure` for failed sends or
    edits; ``resolve`` returns ``None`` for unknown users.
    """

    async def publish(self, spec: GiveawaySpec, end_at: datetime) -> str: ...

    async def refresh(self, record: GiveawayRecord, count: int) -> None: ...

    async def resolve(self, user_id: str) -> Optional[Participant]: ...

    async def close_announcement(
        self, record: GiveawayRecord, summary_url: Optional[str]
    ) -> None: ...

    async def announce_winners(
        self, record: GiveawayRecord, summary_url: Optional[str]
    ) -> None: ...

    async def notify_log(self, message: str, *, guild_id: Optional[str] = None) -> None: ...


class DiscordPresenter:
    def __init__(
        self,
        bot: discord.Client,
        *,
        reaction_emoji: str = "🎉",
        logger_channel_id: Optional[int] = None,
    ) -> None:
        self.bot = bot
        self.reaction_emoji = reaction_emoji
        self.logger_channel_id = logger_channel_id
        self.view: Optional[discord.ui.View] = None

    async def publish(self, spec: GiveawaySpec, end_at: datetime) -> str:
        channel = await self._require_channel(spec.channel_id)
        embed = self._build_embed(
            prize=spec.prize,
            description=spec.description,
            host_id=spec.host_id,
            winners_count=spec.winners_count,
            entrants=0,
            end_at=end_at,
        )
        try:
            if self.view is not None:
                message = await channel.send(embed=embed, view=self.view)
            else:
                message = await channel.send(embed=embed)
        except discord.HTTPException as exc:
            raise PresentationFailure(f"Could not post giveaway in channel {spec.channel_id}: {exc}") from exc
        try:
            await message.add_reaction(self.reaction_emoji)
        except discord.HTTPException as exc:
            log.warning("Could not add entry reaction to message %s: %s", message.id, exc)
        return str(message.id)

    async def refresh(self, record: GiveawayRecord, count: int) -> None:
        message = await self._require_message(record)
        try:
            await message.edit(embed=self._embed_from_record(record, entrants=count))
        except discord.HTTPException as exc:
            raise PresentationFailure(f"Could not update giveaway {record.id}: {exc}") from exc

    async def resolve(self, user_id: str) -> Optional[Participant]:
        try:
            snowflake = int(user_id)
        except (TypeError, ValueError):
            return None
        user = self.bot.get_user(snowflake)
        if user is None:
            try:
                user = await self.bot.fetch_user(snowflake)
            except (discord.NotFound, discord.HTTPException):
                return None
        return Participant(
            user_id=str(user.id),
            username=user.name,
            display_name=user.display_name,
            avatar_url=str(user.display_avatar.url),
        )

    async def close_announcement(
        self, record: GiveawayRecord, summary_url: Optional[str]
    ) -> None:
        message = await self._require_message(record)
        embed = self._embed_from_record(
            record, entrants=record.entrant_count, summary_url=summary_url
        )
        try:
            await message.edit(embed=embed, view=None)
        except discord.HTTPException as exc:
            raise PresentationFailure(f"Could not close giveaway {record.id}: {exc}") from exc

    async def announce_winners(
        self, record: GiveawayRecord, summary_url: Optional[str]
    ) -> None:
        channel = await self._require_channel(record.channel_id)
        if record.winners:
            mentions = ", ".join(winner.mention for winner in record.winners)
            content = f"🎉 Congratulations {mentions}! You won **{record.prize}**!"
        else:
            content = f"Giveaway **{record.prize}** ended without any valid entrants."
        if summary_url:
            content += f"\nSummary: {summary_url}"
        try:
            await channel.send(
                content,
                reference=discord.MessageReference(
                    message_id=int(record.id),
                    channel_id=int(record.channel_id),
                    fail_if_not_exists=False,
                ),
                allowed_mentions=discord.AllowedMentions(users=True, roles=False, everyone=False),
            )
        except discord.HTTPException as exc:
            raise PresentationFailure(f"Could not announce winners of {record.id}: {exc}") from exc

    async def notify_log(self, message: str, *, guild_id: Optional[str] = None) -> None:
        if not self.logger_channel_id:
            return
        channel = await self._fetch_text_channel(self.logger_channel_id)
        if channel:
            try:
                await channel.send(f"[Giveaway] {message}")
            except discord.HTTPException as exc:
                log.warning("Failed to send log message to %s: %s", self.logger_channel_id, exc)

    # --- Internal helpers -------------------------------------------------

    async def _require_channel(self, channel_id: str) -> discord.TextChannel:
        try:
            snowflake = int(channel_id)
        except (TypeError, ValueError) as exc:
            raise PresentationFailure(f"Invalid channel id {channel_id!r}") from exc
        channel = await self._fetch_text_channel(snowflake)
        if channel is None:
            raise PresentationFailure(f"Channel {channel_id} is unavailable.")
        return channel

    async def _require_message(self, record: GiveawayRecord) -> discord.Message:
        channel = await self._require_channel(record.channel_id)
        try:
            return await channel.fetch_message(int(record.id))
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
            raise PresentationFailure(f"Announcement for giveaway {record.id} is unavailable: {exc}") from exc

    async def _fetch_text_channel(self, channel_id: int) -> Optional[discord.TextChannel]:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, discord.TextChannel) else None

    def _build_embed(
        self,
        *,
        prize: str,
        description: str,
        host_id: str,
        winners_count: int,
        entrants: int,
        end_at: datetime,
        record: Optional[GiveawayRecord] = None,
        summary_url: Optional[str] = None,
    ) -> discord.Embed:
        ended = record is not None and record.ended
        embed = discord.Embed(
            title=f"🎁 {prize}",
            description=description or None,
            color=ENDED_COLOR if ended else ACTIVE_COLOR,
        )
        embed.add_field(name="Hosted by", value=f"<@{host_id}>", inline=True)
        embed.add_field(name="Winners", value=str(winners_count), inline=True)
        embed.add_field(name="Entries", value=str(entrants), inline=True)
        if ended:
            ended_at = record.ended_at or end_at
            embed.add_field(
                name="Ended", value=discord.utils.format_dt(ended_at, "F"), inline=False
            )
            if record.winners:
                value = "\n".join(f"{w.mention} ({w.label})" for w in record.winners)
            else:
                value = "No winners"
            embed.add_field(name="Winner(s)", value=value[:1024], inline=False)
        else:
            embed.add_field(
                name="Ends",
                value=f"{discord.utils.format_dt(end_at, 'F')} ({discord.utils.format_dt(end_at, 'R')})",
                inline=False,
            )
            embed.set_footer(text=f"React with {self.reaction_emoji} or press Join to enter")
        if summary_url:
            embed.add_field(name="Summary", value=summary_url, inline=False)
        return embed

    def _embed_from_record(
        self,
        record: GiveawayRecord,
        *,
        entrants: int,
        summary_url: Optional[str] = None,
    ) -> discord.Embed:
        return self._build_embed(
            prize=record.prize,
            description=record.description,
            host_id=record.host_id,
            winners_count=record.winners_count,
            entrants=entrants,
            end_at=record.end_at,
            record=record,
            summary_url=summary_url,
        )
