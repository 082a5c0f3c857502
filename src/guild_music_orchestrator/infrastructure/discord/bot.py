"""Discord bot wiring the DI container, cog loading and slash-command sync."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from guild_music_orchestrator.domain.shared.messages import LogTemplates, UserMessages

if TYPE_CHECKING:
    from ...config.container import Container
    from ...config.settings import Settings

logger = logging.getLogger(__name__)

COGS = (
    "guild_music_orchestrator.infrastructure.discord.cogs.music_cog",
    "guild_music_orchestrator.infrastructure.discord.cogs.health_cog",
)


class OrchestratorBot(commands.Bot):
    def __init__(
        self,
        container: Container,
        settings: Settings,
        **kwargs,
    ) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        intents.guilds = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
            **kwargs,
        )

        self.container = container
        self.settings = settings

    async def setup_hook(self) -> None:
        assert self.user is not None
        await self.container.initialize(self.user.id)

        await self._load_cogs()
        self.tree.on_error = self._on_app_command_error

        if self.settings.discord.sync_on_startup:
            await self._sync_commands()

    async def _load_cogs(self) -> None:
        for cog in COGS:
            try:
                await self.load_extension(cog)
                logger.info(LogTemplates.COG_LOADED, cog)
            except commands.ExtensionError:
                logger.exception(LogTemplates.COG_LOAD_FAILED, cog)
                raise

    async def _on_app_command_error(
        self, interaction: discord.Interaction, error: discord.app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        logger.error(
            LogTemplates.SLASH_COMMAND_ERROR,
            getattr(interaction.command, "name", "<unknown>"),
            original,
        )

        try:
            if interaction.response.is_done():
                await interaction.followup.send(UserMessages.UNEXPECTED_ERROR, ephemeral=True)
            else:
                await interaction.response.send_message(UserMessages.UNEXPECTED_ERROR, ephemeral=True)
        except discord.HTTPException as exc:
            logger.warning(LogTemplates.INTERACTION_REPLY_FAILED, exc)

    async def _sync_commands(self) -> None:
        try:
            for guild_id in self.settings.discord.test_guild_ids:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                logger.info(LogTemplates.SLASH_SYNCED_GUILD, len(synced), guild_id)

            synced = await self.tree.sync()
            logger.info(LogTemplates.SLASH_SYNCED_GLOBAL, len(synced))
        except discord.HTTPException:
            logger.exception(LogTemplates.SLASH_SYNC_FAILED)

    async def on_ready(self) -> None:
        logger.info(
            LogTemplates.BOT_READY,
            self.user,  # type: ignore
            self.user.id,  # type: ignore
        )

        activity = discord.Activity(type=discord.ActivityType.listening, name="/play")
        await self.change_presence(activity=activity)

    async def close(self) -> None:
        logger.info(LogTemplates.BOT_SHUTDOWN)

        for vc in list(self.voice_clients):
            try:
                await vc.disconnect(force=True)
            except (discord.ClientException, discord.HTTPException) as exc:
                logger.warning(LogTemplates.VOICE_DISCONNECT_FAILED, getattr(vc, "guild_id", None), exc)

        try:
            await self.container.shutdown()
        except Exception as exc:
            logger.warning(LogTemplates.BOT_CONTAINER_SHUTDOWN_ERROR, exc)

        await super().close()
        logger.info(LogTemplates.BOT_SHUTDOWN_COMPLETE)

    def run_with_graceful_shutdown(self, token: str, *, shutdown_timeout: float = 30.0) -> None:
        async def runner() -> None:
            async with self:
                loop = asyncio.get_running_loop()

                async def _graceful_close() -> None:
                    try:
                        await asyncio.wait_for(self.close(), timeout=shutdown_timeout)
                    except TimeoutError:
                        logger.warning(LogTemplates.BOT_SHUTDOWN_TIMEOUT, shutdown_timeout)

                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, lambda: asyncio.create_task(_graceful_close()))
                await self.start(token)

        asyncio.run(runner())


def create_bot(container: Container, settings: Settings) -> OrchestratorBot:
    return OrchestratorBot(container=container, settings=settings)
