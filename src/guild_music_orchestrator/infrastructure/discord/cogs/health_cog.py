"""Status command exposing node pool health and gateway latency."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from guild_music_orchestrator.domain.music.value_objects import NodeConnectivity
from guild_music_orchestrator.domain.shared.messages import (
    ErrorMessages,
    LogTemplates,
    UserMessages,
)
from guild_music_orchestrator.infrastructure.discord.cogs.music_cog import send_reply

if TYPE_CHECKING:
    from ....config.container import Container
    from ....domain.music.entities import NodeInfo

logger = logging.getLogger(__name__)


LATENCY_OK_MS = 200
LATENCY_WARN_MS = 800
ONE_THOUSAND = 1000.0

_CONNECTIVITY_EMOJI = {
    NodeConnectivity.CONNECTED: "🟢",
    NodeConnectivity.CONNECTING: "🟠",
    NodeConnectivity.RECONNECTING: "🟠",
    NodeConnectivity.DISCONNECTED: "🔴",
}


class HealthCog(commands.Cog):
    def __init__(self, bot: commands.Bot, container: Container) -> None:
        self.bot = bot
        self.container = container

    # ─────────────────────────────────────────────────────────────────
    # Helper Methods
    # ─────────────────────────────────────────────────────────────────

    def _latency_ms(self) -> float:
        latency = self.bot.latency
        # discord.py reports inf until the first heartbeat is acknowledged.
        if latency is None or not math.isfinite(latency):
            return 0.0
        return round(latency * ONE_THOUSAND, 1)

    def _latency_emoji(self, ms: float) -> str:
        if ms < LATENCY_OK_MS:
            return "🟢"
        if ms < LATENCY_WARN_MS:
            return "🟠"
        return "🔴"

    def _node_line(self, info: NodeInfo) -> str:
        return UserMessages.STATUS_NODE_LINE.format(
            emoji=_CONNECTIVITY_EMOJI[info.connectivity],
            node_id=info.node_id,
            connectivity=info.connectivity.value,
            load=info.load,
            reconnects=info.reconnect_attempts,
        )

    def build_status(self) -> str:
        """Render one latency line followed by a line per node."""
        lat_ms = self._latency_ms()
        nodes = self.container.node_pool.snapshot()

        lines = [
            UserMessages.STATUS_LATENCY.format(
                emoji=self._latency_emoji(lat_ms), latency_ms=f"{lat_ms:.1f}"
            )
        ]
        if nodes:
            lines.extend(self._node_line(info) for info in nodes)
        else:
            lines.append(UserMessages.STATUS_NO_NODES)

        connected = sum(1 for info in nodes if info.is_connected)
        logger.debug(LogTemplates.STATUS_REQUESTED, connected, len(nodes), lat_ms)
        return "\n".join(lines)

    # ─────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────

    @app_commands.command(name="status", description="Show audio node health and latency.")
    async def status(self, interaction: discord.Interaction) -> None:
        await send_reply(interaction, self.build_status(), ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    container = getattr(bot, "container", None)
    if container is None:
        raise RuntimeError(ErrorMessages.CONTAINER_NOT_FOUND)

    await bot.add_cog(HealthCog(bot, container))
