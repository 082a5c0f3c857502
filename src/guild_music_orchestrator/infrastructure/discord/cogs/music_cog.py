"""Slash-command cog turning interactions into orchestrator commands."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from guild_music_orchestrator.application.commands.models import (
    Command,
    CommandArgs,
    CommandResult,
)
from guild_music_orchestrator.domain.shared.enums import CommandName
from guild_music_orchestrator.domain.shared.messages import ErrorMessages, LogTemplates
from guild_music_orchestrator.infrastructure.discord.adapters.voice_bridge import (
    LavalinkVoiceProtocol,
)

if TYPE_CHECKING:
    from ....config.container import Container

logger = logging.getLogger(__name__)


async def send_reply(
    interaction: discord.Interaction, message: str, *, ephemeral: bool = False
) -> None:
    """Reply once, whether or not the interaction was already deferred."""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(message, ephemeral=ephemeral)
    except discord.HTTPException as exc:
        logger.warning(LogTemplates.INTERACTION_REPLY_FAILED, exc)


def _user_voice_channel(
    interaction: discord.Interaction,
) -> discord.VoiceChannel | discord.StageChannel | None:
    user = interaction.user
    if isinstance(user, discord.Member) and user.voice is not None:
        return user.voice.channel
    return None


class MusicCog(commands.Cog):
    def __init__(self, bot: commands.Bot, container: Container) -> None:
        self.bot = bot
        self.container = container

    @app_commands.command(name="join", description="Join your voice channel.")
    @app_commands.guild_only()
    async def join(self, interaction: discord.Interaction) -> None:
        channel = _user_voice_channel(interaction)
        if channel is None:
            await send_reply(interaction, ErrorMessages.VOICE_CHANNEL_REQUIRED, ephemeral=True)
            return

        await interaction.response.defer(thinking=True)
        result = await self._dispatch(
            interaction,
            CommandName.JOIN,
            CommandArgs(voice_channel_id=channel.id, reply_channel_id=interaction.channel_id),
        )
        if result.success:
            await self._connect_voice(interaction, channel)
        await send_reply(interaction, result.user_message)

    @app_commands.command(name="play", description="Play a song or add it to the queue.")
    @app_commands.describe(query="Song name or URL")
    @app_commands.guild_only()
    async def play(self, interaction: discord.Interaction, query: str) -> None:
        channel = _user_voice_channel(interaction)
        await interaction.response.defer(thinking=True)
        result = await self._dispatch(
            interaction,
            CommandName.PLAY,
            CommandArgs(
                query=query,
                voice_channel_id=channel.id if channel is not None else None,
                reply_channel_id=interaction.channel_id,
            ),
        )
        if result.success and channel is not None:
            await self._connect_voice(interaction, channel)
        await send_reply(interaction, result.user_message)

    @app_commands.command(name="skip", description="Skip the current track.")
    @app_commands.guild_only()
    async def skip(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(thinking=True)
        result = await self._dispatch(interaction, CommandName.SKIP)
        await send_reply(interaction, result.user_message)

    @app_commands.command(name="clear", description="Clear the queue and stop playback.")
    @app_commands.guild_only()
    async def clear(self, interaction: discord.Interaction) -> None:
        result = await self._dispatch(interaction, CommandName.CLEAR)
        await send_reply(interaction, result.user_message)

    @app_commands.command(name="queue", description="Show the queue.")
    @app_commands.guild_only()
    async def queue(self, interaction: discord.Interaction) -> None:
        result = await self._dispatch(interaction, CommandName.QUEUE_SIZE)
        await send_reply(interaction, result.user_message, ephemeral=not result.success)

    @app_commands.command(name="leave", description="Leave the voice channel.")
    @app_commands.guild_only()
    async def leave(self, interaction: discord.Interaction) -> None:
        result = await self._dispatch(interaction, CommandName.LEAVE)
        await self._disconnect_voice(interaction)
        await send_reply(interaction, result.user_message, ephemeral=not result.success)

    async def _dispatch(
        self,
        interaction: discord.Interaction,
        name: CommandName,
        args: CommandArgs | None = None,
    ) -> CommandResult:
        assert interaction.guild_id is not None
        command = Command(
            name=name,
            guild_id=interaction.guild_id,
            user_id=interaction.user.id,
            args=args or CommandArgs(),
        )
        return await self.container.dispatcher.dispatch(command)

    async def _connect_voice(
        self,
        interaction: discord.Interaction,
        channel: discord.VoiceChannel | discord.StageChannel,
    ) -> None:
        guild = interaction.guild
        if guild is None or guild.voice_client is not None:
            return
        try:
            await channel.connect(cls=LavalinkVoiceProtocol, self_deaf=True)
        except (discord.ClientException, asyncio.TimeoutError) as exc:
            logger.warning(LogTemplates.VOICE_CONNECT_FAILED, channel.id, guild.id, exc)

    async def _disconnect_voice(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None or guild.voice_client is None:
            return
        try:
            await guild.voice_client.disconnect(force=True)
        except (discord.ClientException, discord.HTTPException) as exc:
            logger.warning(LogTemplates.VOICE_DISCONNECT_FAILED, guild.id, exc)


async def setup(bot: commands.Bot) -> None:
    container = getattr(bot, "container", None)
    if container is None:
        raise RuntimeError(ErrorMessages.CONTAINER_NOT_FOUND)

    await bot.add_cog(MusicCog(bot, container))
