from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from .backend import BackendClient
from .config import Config, ConfigError, load_config
from .duration import MINUTE_MS
from .engine import GiveawayEngine
from .errors import NotFoundError, PresentationFailure, ValidationError
from .models import GiveawaySpec, Participant
from .presenter import DiscordPresenter
from .storage import GiveawayStorage
from .views import GiveawayView, participant_from_user

log = logging.getLogger(__name__)

ENV_PATH = Path(".env")


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


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
    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.presenter = DiscordPresenter(
            self,
            reaction_emoji=config.giveaways.reaction_emoji,
            logger_channel_id=config.logging.logger_channel_id,
        )
        backend = None
        if config.backend.enabled:
            backend = BackendClient(
                config.backend.base_url or "",
                config.backend.api_token,
                timeout_seconds=config.backend.timeout_seconds,
            )
        self.engine = GiveawayEngine(
            GiveawayStorage(config.giveaways.data_path),
            self.presenter,
            backend=backend,
            min_duration_ms=config.giveaways.min_duration_minutes * MINUTE_MS,
            grace_seconds=config.giveaways.overdue_grace_seconds,
            retry_attempts=config.backend.retry_attempts,
        )

    async def setup_hook(self) -> None:
        view = GiveawayView(self.engine)
        self.presenter.view = view
        self.add_view(view)
        await self.engine.load()
        self._overdue_checker.start()
        await self.tree.sync()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)

    @tasks.loop(minutes=1)
    async def _overdue_checker(self) -> None:
        await self.engine.audit_overdue()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]

    async def close(self) -> None:
        self._overdue_checker.cancel()
        await self.engine.shutdown()
        await super().close()

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self._handle_reaction(payload, joined=True)

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        await self._handle_reaction(payload, joined=False)

    async def _handle_reaction(
        self, payload: discord.RawReactionActionEvent, *, joined: bool
    ) -> None:
        if str(payload.emoji) != self.config.giveaways.reaction_emoji:
            return
        if self.user is not None and payload.user_id == self.user.id:
            return
        giveaway_id = str(payload.message_id)
        if giveaway_id not in self.engine.records:
            return

        user = payload.member or self.get_user(payload.user_id)
        if user is not None and user.bot:
            return
        participant = (
            participant_from_user(user)
            if user is not None
            else Participant(user_id=str(payload.user_id))
        )
        try:
            await self.engine.record_entrant_change(giveaway_id, participant, joined)
        except NotFoundError:
            log.debug("Reaction on unknown giveaway %s ignored", giveaway_id)


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    return GiveawayBot(config)


def register_commands(bot: GiveawayBot) -> None:
    engine = bot.engine

    @bot.tree.command(name="giveaway-start", description="Start a new giveaway.")
    @app_commands.describe(
        channel="Channel to post the giveaway in.",
        prize="What is being given away.",
        duration="How long it runs, e.g. '30 minutes', '2 hours', '1 day', '1 bulan'.",
        winners="Number of winners.",
        description="Optional extra details.",
    )
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def giveaway_start(
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        prize: str,
        duration: str,
        winners: app_commands.Range[int, 1, 50] = 1,
        description: Optional[str] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        spec = GiveawaySpec(
            guild_id=str(interaction.guild_id),
            channel_id=str(channel.id),
            host_id=str(interaction.user.id),
            prize=prize,
            winners_count=winners,
            duration=duration,
            description=description or "",
        )
        try:
            record = await engine.create_giveaway(spec)
        except ValidationError as exc:
            await interaction.followup.send(str(exc), ephemeral=True)
            return
        except PresentationFailure as exc:
            log.warning("Could not publish giveaway in %s: %s", channel.id, exc)
            await interaction.followup.send(
                f"I could not post in {channel.mention}. Check my permissions there.",
                ephemeral=True,
            )
            return
        await interaction.followup.send(
            f"Giveaway `{record.id}` started in {channel.mention} and ends "
            f"{discord.utils.format_dt(record.end_at, 'R')}.",
            ephemeral=True,
        )

    @bot.tree.command(name="giveaway-end", description="End a giveaway immediately.")
    @app_commands.describe(giveaway_id="Message ID of the giveaway to end.")
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def giveaway_end(interaction: discord.Interaction, giveaway_id: str) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            record = await engine.get_giveaway(giveaway_id.strip())
        except NotFoundError:
            await interaction.followup.send("Giveaway not found.", ephemeral=True)
            return
        if record.guild_id != str(interaction.guild_id):
            await interaction.followup.send("Giveaway not found.", ephemeral=True)
            return
        if record.ended:
            await interaction.followup.send(
                f"Giveaway `{record.id}` has already ended.", ephemeral=True
            )
            return
        record = await engine.end_giveaway(record.id, ended_by=str(interaction.user.id))
        winners = ", ".join(winner.mention for winner in record.winners) or "no winners"
        await interaction.followup.send(
            f"Giveaway `{record.id}` ended with {winners}.", ephemeral=True
        )

    @bot.tree.command(name="giveaway-list", description="List giveaways in this server.")
    @app_commands.describe(active_only="Only show giveaways that are still running.")
    @app_commands.guild_only()
    async def giveaway_list(interaction: discord.Interaction, active_only: bool = True) -> None:
        records = await engine.list_giveaways(
            str(interaction.guild_id), active_only=active_only
        )
        if not records:
            await interaction.response.send_message("No giveaways found.", ephemeral=True)
            return
        lines = []
        for record in records[-20:]:
            status = "ended" if record.ended else f"ends {discord.utils.format_dt(record.end_at, 'R')}"
            lines.append(
                f"`{record.id}` **{record.prize}** in <#{record.channel_id}>: "
                f"{record.entrant_count} entrant(s), {status}"
            )
        await interaction.response.send_message("\n".join(lines), ephemeral=True)


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
