"""
Unit Tests for OrchestratorBot lifecycle.

Tests for:
- Container initialization with the bot's user id
- Cog loading and optional slash-command sync
- App command error replies
- Shutdown of voice clients and the container
"""

from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import discord
import pytest
from discord.ext import commands

from guild_music_orchestrator.domain.shared.messages import UserMessages
from guild_music_orchestrator.infrastructure.discord.bot import (
    COGS,
    OrchestratorBot,
    create_bot,
)


@pytest.fixture
def mock_settings():
    settings = MagicMock()
    settings.discord.sync_on_startup = False
    settings.discord.test_guild_ids = []
    return settings


@pytest.fixture
def mock_container():
    container = MagicMock()
    container.initialize = AsyncMock()
    container.shutdown = AsyncMock()
    return container


@pytest.fixture
def bot(mock_container, mock_settings):
    return OrchestratorBot(container=mock_container, settings=mock_settings)


def _with_user(bot, user_id=42):
    user = MagicMock()
    user.id = user_id
    return patch.object(type(bot), "user", PropertyMock(return_value=user))


class TestBotInitialization:
    def test_intents(self, bot):
        assert bot.intents.voice_states is True
        assert bot.intents.guilds is True

    def test_stores_container_and_settings(self, bot, mock_container, mock_settings):
        assert bot.container is mock_container
        assert bot.settings is mock_settings

    def test_create_bot(self, mock_container, mock_settings):
        created = create_bot(mock_container, mock_settings)

        assert isinstance(created, OrchestratorBot)
        assert created.container is mock_container


class TestSetupHook:
    @pytest.mark.asyncio
    async def test_initializes_container_with_user_id(self, bot, mock_container):
        with _with_user(bot, 777), patch.object(bot, "_load_cogs", new_callable=AsyncMock):
            await bot.setup_hook()

        mock_container.initialize.assert_awaited_once_with(777)

    @pytest.mark.asyncio
    async def test_loads_every_cog(self, bot):
        with _with_user(bot), patch.object(bot, "load_extension", new_callable=AsyncMock) as load:
            await bot.setup_hook()

        assert [c.args[0] for c in load.await_args_list] == list(COGS)

    @pytest.mark.asyncio
    async def test_cog_failure_propagates(self, bot):
        with _with_user(bot), patch.object(
            bot,
            "load_extension",
            new_callable=AsyncMock,
            side_effect=commands.ExtensionNotFound("missing"),
        ):
            with pytest.raises(commands.ExtensionError):
                await bot.setup_hook()

    @pytest.mark.asyncio
    async def test_sync_only_when_enabled(self, bot, mock_settings):
        with (
            _with_user(bot),
            patch.object(bot, "_load_cogs", new_callable=AsyncMock),
            patch.object(bot, "_sync_commands", new_callable=AsyncMock) as sync,
        ):
            await bot.setup_hook()
            sync.assert_not_awaited()

            mock_settings.discord.sync_on_startup = True
            await bot.setup_hook()
            sync.assert_awaited_once()


class TestSyncCommands:
    @pytest.mark.asyncio
    async def test_syncs_test_guilds_then_global(self, bot, mock_settings):
        mock_settings.discord.test_guild_ids = [111]

        with (
            patch.object(bot.tree, "copy_global_to") as copy,
            patch.object(bot.tree, "sync", new_callable=AsyncMock, return_value=[]) as sync,
        ):
            await bot._sync_commands()

        assert copy.call_args.kwargs["guild"].id == 111
        assert sync.await_count == 2

    @pytest.mark.asyncio
    async def test_sync_failure_is_logged(self, bot):
        error = discord.HTTPException(MagicMock(status=500, reason="err"), "boom")

        with patch.object(bot.tree, "sync", new_callable=AsyncMock, side_effect=error):
            await bot._sync_commands()


class TestAppCommandErrorHandler:
    @pytest.mark.asyncio
    async def test_replies_ephemerally(self, bot):
        interaction = MagicMock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()

        await bot._on_app_command_error(interaction, discord.app_commands.AppCommandError("x"))

        interaction.response.send_message.assert_awaited_once_with(
            UserMessages.UNEXPECTED_ERROR, ephemeral=True
        )

    @pytest.mark.asyncio
    async def test_uses_followup_after_defer(self, bot):
        interaction = MagicMock()
        interaction.response.is_done.return_value = True
        interaction.followup.send = AsyncMock()

        await bot._on_app_command_error(interaction, discord.app_commands.AppCommandError("x"))

        interaction.followup.send.assert_awaited_once_with(
            UserMessages.UNEXPECTED_ERROR, ephemeral=True
        )


class TestBotClose:
    @pytest.mark.asyncio
    async def test_disconnects_voice_and_shuts_down(self, bot, mock_container):
        vc = MagicMock()
        vc.disconnect = AsyncMock()

        with patch.object(type(bot), "voice_clients", PropertyMock(return_value=[vc])):
            await bot.close()

        vc.disconnect.assert_awaited_once_with(force=True)
        mock_container.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_voice_errors_do_not_block_shutdown(self, bot, mock_container):
        vc = MagicMock()
        vc.disconnect = AsyncMock(side_effect=discord.ClientException("gone"))

        with patch.object(type(bot), "voice_clients", PropertyMock(return_value=[vc])):
            await bot.close()

        mock_container.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_container_errors_are_swallowed(self, bot, mock_container):
        mock_container.shutdown.side_effect = RuntimeError("db gone")

        with patch.object(type(bot), "voice_clients", PropertyMock(return_value=[])):
            await bot.close()
