"""Enumerations and small value objects for the playback context."""

from __future__ import annotations

from enum import Enum


class SessionState(Enum):
    """Binding state of a guild's session with enforced transitions.

    State transitions:
    - CONNECTING -> BOUND (node accepted the player)
    - CONNECTING -> CLOSED (acquisition failed)
    - BOUND -> NEEDS_REBIND (node or voice socket closed)
    - NEEDS_REBIND -> CLOSED (replaced by a fresh session)
    - Any -> CLOSED (leave/teardown)
    """

    CONNECTING = "connecting"
    BOUND = "bound"
    NEEDS_REBIND = "needs_rebind"
    CLOSED = "closed"

    def can_transition_to(self, target: SessionState) -> bool:
        """Check if transition to target state is valid."""
        valid_transitions = {
            SessionState.CONNECTING: {SessionState.BOUND, SessionState.CLOSED},
            SessionState.BOUND: {SessionState.NEEDS_REBIND, SessionState.CLOSED},
            SessionState.NEEDS_REBIND: {SessionState.CLOSED},
            SessionState.CLOSED: set(),
        }
        return target in valid_transitions.get(self, set())

    @property
    def is_live(self) -> bool:
        return self != SessionState.CLOSED


class NodeConnectivity(Enum):
    """Connectivity of a node's control channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class TenantState(Enum):
    """Externally visible playback state of a guild, derived from its session."""

    NO_SESSION = "no_session"
    CONNECTING = "connecting"
    IDLE_CONNECTED = "idle_connected"
    PLAYING = "playing"
    NEEDS_REBIND = "needs_rebind"


class TrackEndReason(Enum):
    """Why a node stopped playing a track."""

    FINISHED = "finished"
    LOAD_FAILED = "loadFailed"
    STOPPED = "stopped"
    REPLACED = "replaced"
    CLEANUP = "cleanup"

    @property
    def may_start_next(self) -> bool:
        """Only natural ends advance the queue; the rest were caused by us."""
        return self in {TrackEndReason.FINISHED, TrackEndReason.LOAD_FAILED}

    @classmethod
    def parse(cls, value: str) -> TrackEndReason:
        try:
            return cls(value)
        except ValueError:
            return cls.CLEANUP
