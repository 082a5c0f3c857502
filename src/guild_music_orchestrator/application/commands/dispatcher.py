"""
Command Dispatcher

Single entry point for user commands. Checks the allowlist before touching
anything else, routes to the playback orchestrator, and turns every failure
into a short user-facing reply.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from ...domain.music.value_objects import TenantState
from ...domain.shared.context import CommandContext
from ...domain.shared.enums import CommandName
from ...domain.shared.exceptions import OrchestratorError, ValidationError
from ...domain.shared.messages import ErrorMessages, LogTemplates, UserMessages
from ...utils.logging import log_classified
from ..queries.get_queue import GetQueueHandler, GetQueueQuery, QueueInfo
from ..services.retry_executor import error_kind
from .models import Command, CommandResult

if TYPE_CHECKING:
    from ...domain.music.repository import TenantQueueStore
    from ..services.playback_orchestrator import PlaybackOrchestrator
    from ..services.retry_executor import RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandDispatcher:
    def __init__(
        self,
        *,
        orchestrator: PlaybackOrchestrator,
        queue_store: TenantQueueStore,
        retry_executor: RetryExecutor,
        queue_listing_limit: int = 10,
    ) -> None:
        self._orchestrator = orchestrator
        self._queue_store = queue_store
        self._retry_executor = retry_executor
        self._queue_listing_limit = queue_listing_limit
        self._queue_handler = GetQueueHandler(
            queue_store=queue_store,
            orchestrator=orchestrator,
            retry_executor=retry_executor,
        )

    async def dispatch(self, command: Command) -> CommandResult:
        ctx = CommandContext(
            guild_id=command.guild_id,
            user_id=command.user_id,
            command=command.name.value,
        )
        logger.debug(LogTemplates.COMMAND_RECEIVED, ctx)

        if not await self._queue_store.is_allowed(ctx):
            logger.warning(LogTemplates.COMMAND_REJECTED_NOT_ALLOWED, ctx)
            if self._orchestrator.tenant_state(ctx.guild_id) != TenantState.NO_SESSION:
                await self._orchestrator.teardown(ctx)
            return CommandResult.failure(UserMessages.TENANT_NOT_ALLOWED)

        try:
            return await self._handle(ctx, command)
        except OrchestratorError as exc:
            classification = self._retry_executor.classify(exc)
            log_classified(
                logger,
                classification,
                LogTemplates.COMMAND_FAILED,
                ctx,
                classification.category,
                error_kind(exc),
                exc.message,
            )
            return CommandResult.failure(classification.user_message or exc.message)
        except Exception:
            logger.exception(LogTemplates.COMMAND_UNEXPECTED_ERROR, ctx)
            return CommandResult.failure(UserMessages.UNEXPECTED_ERROR)

    async def _handle(self, ctx: CommandContext, command: Command) -> CommandResult:
        args = command.args
        match command.name:
            case CommandName.JOIN:
                voice_channel_id = _require(command, "voice_channel_id", args.voice_channel_id)
                joined = await self._orchestrator.join(ctx, voice_channel_id, args.reply_channel_id)
                if joined.resumed_track is not None:
                    return CommandResult.ok(
                        UserMessages.REBOUND_RESUMED.format(title=joined.resumed_track.display_title)
                    )
                if joined.already_connected:
                    return CommandResult.ok(UserMessages.ALREADY_CONNECTED)
                return CommandResult.ok(
                    UserMessages.JOINED.format(channel_id=joined.voice_channel_id)
                )

            case CommandName.PLAY:
                query = _require(command, "query", args.query)
                played = await self._orchestrator.play(
                    ctx, query, args.voice_channel_id, args.reply_channel_id
                )
                if played.started:
                    return CommandResult.ok(
                        UserMessages.NOW_PLAYING.format(title=played.track.display_title)
                    )
                return CommandResult.ok(
                    UserMessages.ADDED_TO_QUEUE.format(
                        title=played.track.display_title, position=played.position
                    )
                )

            case CommandName.SKIP:
                skipped = await self._orchestrator.skip(ctx)
                if not skipped.skipped or skipped.skipped_track is None:
                    return CommandResult.failure(UserMessages.NOTHING_TO_SKIP)
                title = skipped.skipped_track.display_title
                if skipped.next_track is not None:
                    return CommandResult.ok(
                        UserMessages.SKIPPED_NOW_PLAYING.format(
                            title=title, next_title=skipped.next_track.display_title
                        )
                    )
                return CommandResult.ok(UserMessages.SKIPPED.format(title=title))

            case CommandName.CLEAR:
                cleared = await self._orchestrator.clear(ctx)
                return CommandResult.ok(UserMessages.QUEUE_CLEARED.format(count=cleared.removed))

            case CommandName.QUEUE_SIZE:
                info = await self._queue_handler.handle(
                    ctx, GetQueueQuery(guild_id=ctx.guild_id, limit=self._queue_listing_limit)
                )
                return CommandResult.ok(_render_queue(info))

            case CommandName.LEAVE:
                if await self._orchestrator.leave(ctx):
                    return CommandResult.ok(UserMessages.LEFT)
                return CommandResult.failure(UserMessages.NOT_CONNECTED)

            case _:
                raise ValidationError(f"Unknown command: {command.name}", field="name")


def _require(command: Command, field_name: str, value: T | None) -> T:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(
            ErrorMessages.MISSING_COMMAND_ARGUMENT.format(
                field_name=field_name, command=command.name.value
            ),
            field=field_name,
        )
    return value


def _render_queue(info: QueueInfo) -> str:
    lines: list[str] = []
    if info.current_track is not None:
        lines.append(UserMessages.QUEUE_CURRENT_LINE.format(title=info.current_track.display_title))
    if info.is_empty:
        lines.append(UserMessages.QUEUE_EMPTY)
        return "\n".join(lines)

    lines.append(UserMessages.QUEUE_SIZE.format(count=info.size))
    for position, entry in enumerate(info.head, start=1):
        lines.append(UserMessages.QUEUE_LINE.format(position=position, track_ref=entry.track_ref))
    return "\n".join(lines)
