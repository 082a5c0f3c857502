"""Lavalink v4 node connection: websocket event stream plus REST player API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
import pydantic
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from guild_music_orchestrator.application.interfaces.node_connection import (
    NodeConnection,
    RemoteSocketClosed,
    RemoteStats,
    RemoteTrackEnded,
    SignalListener,
    VoiceState,
)
from guild_music_orchestrator.domain.music.entities import TrackMetadata
from guild_music_orchestrator.domain.music.value_objects import TrackEndReason
from guild_music_orchestrator.domain.shared.constants import (
    DEFAULT_RATE_LIMIT_RETRY_AFTER_S,
    URL_PREFIXES,
    LavalinkEventTypes,
    LavalinkHeaders,
    LavalinkOps,
    LavalinkPaths,
    LoadTypes,
)
from guild_music_orchestrator.domain.shared.exceptions import (
    NodeConnectionError,
    NodeRequestRejectedError,
    NodeServerError,
    NodeTimeoutError,
    NodeUnavailableError,
    PermissionDeniedError,
    RateLimitedError,
    TrackNotFoundError,
)
from guild_music_orchestrator.domain.shared.messages import (
    ErrorMessages,
    LavalinkCloseCodes,
    LogTemplates,
)

if TYPE_CHECKING:
    from guild_music_orchestrator.config.settings import NodeSettings

logger = logging.getLogger(__name__)

WebSocketConnector = Callable[..., Awaitable[ClientConnection]]


def parse_track(raw: dict[str, Any]) -> TrackMetadata:
    """Build TrackMetadata from a v4 track object."""
    info = raw["info"]
    return TrackMetadata(
        encoded=raw["encoded"],
        identifier=info["identifier"],
        title=info.get("title") or info["identifier"],
        author=info.get("author") or "",
        length_ms=max(int(info.get("length") or 0), 0),
        uri=info.get("uri"),
        is_stream=bool(info.get("isStream", False)),
        source_name=info.get("sourceName"),
    )


def parse_retry_after(value: str | None) -> float:
    if value is None:
        return DEFAULT_RATE_LIMIT_RETRY_AFTER_S
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RATE_LIMIT_RETRY_AFTER_S


class LavalinkNodeConnection(NodeConnection):
    def __init__(
        self,
        settings: NodeSettings,
        *,
        user_id: int,
        client_name: str,
        search_prefix: str = "ytsearch",
        request_timeout: float = 10.0,
        ready_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        ws_connect: WebSocketConnector = connect,
    ) -> None:
        self._settings = settings
        self._user_id = user_id
        self._client_name = client_name
        self._search_prefix = search_prefix
        self._request_timeout = request_timeout
        self._ready_timeout = ready_timeout
        self._http = http_client
        self._owns_http = http_client is None
        self._ws_connect = ws_connect

        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[str] | None = None
        self._closed = asyncio.Event()
        self._close_code: int | None = None
        self._remote_session_id: str | None = None
        self._listener: SignalListener | None = None

    # ── Properties ──────────────────────────────────────────────────

    @property
    def node_id(self) -> str:
        return self._settings.node_id

    @property
    def endpoint(self) -> str:
        return self._settings.rest_url

    @property
    def remote_session_id(self) -> str | None:
        return self._remote_session_id

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed.is_set()

    def set_signal_listener(self, listener: SignalListener | None) -> None:
        self._listener = listener

    def auth_headers(self) -> dict[str, str]:
        return {
            LavalinkHeaders.AUTHORIZATION: self._settings.password.get_secret_value(),
            LavalinkHeaders.USER_ID: str(self._user_id),
            LavalinkHeaders.CLIENT_NAME: self._client_name,
        }

    # ── Control channel ─────────────────────────────────────────────

    async def connect(self) -> None:
        await self._drop_socket()

        headers = self.auth_headers()
        if self._remote_session_id:
            headers[LavalinkHeaders.SESSION_ID] = self._remote_session_id

        self._closed = asyncio.Event()
        self._close_code = None
        self._ready = asyncio.get_running_loop().create_future()

        url = self._settings.ws_url + LavalinkPaths.WEBSOCKET
        try:
            self._ws = await self._ws_connect(
                url,
                additional_headers=headers,
                ping_interval=20,
                ping_timeout=10,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            message = ErrorMessages.NODE_HANDSHAKE_REJECTED.format(
                node_id=self.node_id, status=status
            )
            if status in (401, 403):
                raise PermissionDeniedError(message) from exc
            raise NodeConnectionError(message, node_id=self.node_id, status=status) from exc
        except (OSError, InvalidHandshake) as exc:
            raise NodeConnectionError(
                ErrorMessages.NODE_TRANSPORT_ERROR.format(node_id=self.node_id, error=exc),
                node_id=self.node_id,
            ) from exc

        self._reader = asyncio.create_task(
            self._read_loop(self._ws), name=f"lavalink-reader-{self.node_id}"
        )
        try:
            await asyncio.wait_for(self._ready, timeout=self._ready_timeout)
        except TimeoutError as exc:
            await self._drop_socket()
            raise NodeConnectionError(
                ErrorMessages.NODE_READY_TIMEOUT.format(
                    node_id=self.node_id, timeout=self._ready_timeout
                ),
                node_id=self.node_id,
            ) from exc

    async def wait_closed(self) -> int | None:
        await self._closed.wait()
        return self._close_code

    async def close(self) -> None:
        await self._drop_socket()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _drop_socket(self) -> None:
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        self._closed.set()

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                self.handle_message(raw)
        except ConnectionClosed:
            pass
        finally:
            self._close_code = ws.close_code
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(
                    NodeConnectionError(
                        ErrorMessages.NODE_TRANSPORT_ERROR.format(
                            node_id=self.node_id,
                            error=LavalinkCloseCodes.describe(ws.close_code),
                        ),
                        node_id=self.node_id,
                    )
                )
            self._closed.set()

    def handle_message(self, raw: str | bytes) -> None:
        """Decode one websocket frame and forward what the pool cares about."""
        try:
            payload = json.loads(raw)
            op = payload.get("op")
            if op == LavalinkOps.READY:
                self._on_ready(payload)
            elif op == LavalinkOps.STATS:
                self._emit(
                    RemoteStats(
                        players=payload.get("players", 0),
                        playing_players=payload.get("playingPlayers", 0),
                    )
                )
            elif op == LavalinkOps.EVENT:
                self._on_event(payload)
            elif op != LavalinkOps.PLAYER_UPDATE:
                logger.debug(LogTemplates.LAVALINK_UNKNOWN_OP, self.node_id, op)
        except (ValueError, KeyError, TypeError, AttributeError, pydantic.ValidationError) as exc:
            logger.warning(LogTemplates.LAVALINK_BAD_PAYLOAD, self.node_id, exc)

    def _on_ready(self, payload: dict[str, Any]) -> None:
        session_id = payload["sessionId"]
        self._remote_session_id = session_id
        logger.info(LogTemplates.LAVALINK_READY, self.node_id, payload.get("resumed"), session_id)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(session_id)

    def _on_event(self, payload: dict[str, Any]) -> None:
        event_type = payload.get("type")
        guild_id = int(payload["guildId"])
        if event_type == LavalinkEventTypes.TRACK_END:
            self._emit(
                RemoteTrackEnded(
                    guild_id=guild_id,
                    track_encoded=payload["track"]["encoded"],
                    reason=TrackEndReason.parse(payload.get("reason", "")),
                )
            )
        elif event_type == LavalinkEventTypes.WEBSOCKET_CLOSED:
            code = payload.get("code")
            reason = payload.get("reason") or LavalinkCloseCodes.describe(code)
            logger.warning(LogTemplates.LAVALINK_SOCKET_CLOSED, self.node_id, guild_id, code, reason)
            self._emit(
                RemoteSocketClosed(
                    guild_id=guild_id,
                    code=code,
                    reason=reason,
                    by_remote=bool(payload.get("byRemote", True)),
                )
            )
        elif event_type in (LavalinkEventTypes.TRACK_EXCEPTION, LavalinkEventTypes.TRACK_STUCK):
            # The node follows these with a TrackEndEvent carrying the real reason.
            logger.warning(
                LogTemplates.LAVALINK_TRACK_TROUBLE,
                self.node_id,
                event_type,
                guild_id,
                payload.get("exception") or payload.get("thresholdMs"),
            )

    def _emit(self, signal: RemoteTrackEnded | RemoteSocketClosed | RemoteStats) -> None:
        if self._listener is not None:
            self._listener(signal)

    # ── REST ────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._settings.rest_url,
                timeout=httpx.Timeout(self._request_timeout),
            )
            self._owns_http = True
        return self._http

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        try:
            response = await self._client().request(
                method, path, params=params, json=body, headers=self.auth_headers()
            )
        except httpx.TimeoutException as exc:
            raise NodeTimeoutError(
                ErrorMessages.NODE_TIMED_OUT.format(
                    node_id=self.node_id, operation=f"{method} {path}", timeout=self._request_timeout
                ),
                node_id=self.node_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise NodeConnectionError(
                ErrorMessages.NODE_TRANSPORT_ERROR.format(node_id=self.node_id, error=exc),
                node_id=self.node_id,
            ) from exc

        if allow_not_found and response.status_code == 404:
            return None
        self._raise_for_status(response, method, path)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        status = response.status_code
        if status < 400:
            return
        message = ErrorMessages.NODE_HTTP_ERROR.format(
            node_id=self.node_id, status=status, method=method, path=path
        )
        if status == 429:
            raise RateLimitedError(
                message,
                node_id=self.node_id,
                status=status,
                retry_after=parse_retry_after(response.headers.get(LavalinkHeaders.RETRY_AFTER)),
            )
        if status in (401, 403):
            raise PermissionDeniedError(message)
        if status >= 500:
            raise NodeServerError(message, node_id=self.node_id, status=status)
        raise NodeRequestRejectedError(message, node_id=self.node_id, status=status)

    def _player_path(self, guild_id: int) -> str:
        if self._remote_session_id is None:
            raise NodeUnavailableError(
                ErrorMessages.NODE_NO_REMOTE_SESSION.format(node_id=self.node_id),
                node_id=self.node_id,
            )
        return LavalinkPaths.PLAYER.format(session_id=self._remote_session_id, guild_id=guild_id)

    async def load_track(self, query: str) -> TrackMetadata:
        identifier = query if query.startswith(URL_PREFIXES) else f"{self._search_prefix}:{query}"
        data = await self._request("GET", LavalinkPaths.LOAD_TRACKS, params={"identifier": identifier})
        load_type = data.get("loadType") if data else LoadTypes.EMPTY

        if load_type == LoadTypes.TRACK:
            return parse_track(data["data"])
        if load_type == LoadTypes.SEARCH:
            results = data["data"]
            if results:
                return parse_track(results[0])
        elif load_type == LoadTypes.PLAYLIST:
            playlist = data["data"]
            tracks = playlist.get("tracks") or []
            if tracks:
                selected = playlist.get("info", {}).get("selectedTrack", -1)
                index = selected if 0 <= selected < len(tracks) else 0
                return parse_track(tracks[index])
        elif load_type == LoadTypes.ERROR:
            exception = data.get("data") or {}
            detail = ErrorMessages.NODE_LOAD_FAILED.format(message=exception.get("message"))
            if exception.get("severity") == "fault":
                raise NodeServerError(detail, node_id=self.node_id)
            raise TrackNotFoundError(query, detail)
        raise TrackNotFoundError(query)

    async def ensure_player(self, guild_id: int, voice: VoiceState | None = None) -> None:
        body: dict[str, Any] = {}
        if voice is not None:
            body["voice"] = {
                "token": voice.token,
                "endpoint": voice.endpoint,
                "sessionId": voice.session_id,
            }
        await self._request(
            "PATCH", self._player_path(guild_id), params={"noReplace": "true"}, body=body
        )

    async def play(self, guild_id: int, track: TrackMetadata) -> None:
        await self._request(
            "PATCH",
            self._player_path(guild_id),
            params={"noReplace": "false"},
            body={"track": {"encoded": track.encoded}},
        )

    async def stop(self, guild_id: int) -> None:
        await self._request(
            "PATCH",
            self._player_path(guild_id),
            params={"noReplace": "false"},
            body={"track": {"encoded": None}},
        )

    async def destroy_player(self, guild_id: int) -> None:
        await self._request("DELETE", self._player_path(guild_id), allow_not_found=True)
