"""Discord voice protocol that hands the voice handshake to an audio node.

discord.py normally opens the voice UDP connection itself. With a remote
audio node the bot only joins the channel at gateway level; the session id,
token and endpoint Discord sends back are forwarded to the node pool, which
passes them to whichever node owns the guild's session.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from guild_music_orchestrator.application.interfaces.node_connection import VoiceState
from guild_music_orchestrator.domain.shared.exceptions import OrchestratorError
from guild_music_orchestrator.domain.shared.messages import LogTemplates

if TYPE_CHECKING:
    from guild_music_orchestrator.infrastructure.lavalink.node_pool import NodePool

logger = logging.getLogger(__name__)


class LavalinkVoiceProtocol(discord.VoiceProtocol):
    def __init__(self, client: discord.Client, channel: discord.abc.Connectable) -> None:
        super().__init__(client, channel)
        container = getattr(client, "container", None)
        if container is None:
            raise RuntimeError("Container not found on bot instance")

        self._node_pool: NodePool = container.node_pool
        self._guild_id: int = channel.guild.id  # type: ignore[attr-defined]
        self._session_id: str | None = None
        self._token: str | None = None
        self._endpoint: str | None = None

    @property
    def guild_id(self) -> int:
        return self._guild_id

    async def on_voice_state_update(self, data: Any) -> None:
        if data.get("channel_id") is None:
            logger.info(LogTemplates.VOICE_SOCKET_LEFT, self._guild_id)
            self.cleanup()
            return
        self._session_id = data.get("session_id")
        await self._forward()

    async def on_voice_server_update(self, data: Any) -> None:
        self._token = data.get("token")
        self._endpoint = data.get("endpoint")
        await self._forward()

    async def _forward(self) -> None:
        if not (self._session_id and self._token and self._endpoint):
            return
        voice = VoiceState(session_id=self._session_id, token=self._token, endpoint=self._endpoint)
        try:
            await self._node_pool.update_voice_state(self._guild_id, voice)
        except OrchestratorError as exc:
            # The pool keeps the credentials, so the next rebind still receives them.
            logger.warning(LogTemplates.VOICE_STATE_FORWARD_FAILED, self._guild_id, exc)

    async def connect(
        self,
        *,
        timeout: float,
        reconnect: bool,
        self_deaf: bool = False,
        self_mute: bool = False,
    ) -> None:
        await self.channel.guild.change_voice_state(  # type: ignore[attr-defined]
            channel=self.channel, self_deaf=self_deaf, self_mute=self_mute
        )

    async def disconnect(self, *, force: bool = False) -> None:
        await self.channel.guild.change_voice_state(channel=None)  # type: ignore[attr-defined]
        self.cleanup()
