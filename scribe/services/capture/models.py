"""
Session and capture state, plus the typed events the transport emits.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime

from scribe.utils import generate_16_char_uuid, get_current_timestamp_est

# -------------------------------------------------------------- #
# States
# -------------------------------------------------------------- #


class SessionState(enum.Enum):
    RECORDING = "recording"
    STOPPING = "stopping"
    PROCESSING = "processing"
    CLOSED = "closed"


class CaptureState(enum.Enum):
    CAPTURING = "capturing"
    FINALIZING = "finalizing"
    CLOSED = "closed"


# -------------------------------------------------------------- #
# Transport Events
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class SpeakingStarted:
    participant_id: str


@dataclass(frozen=True)
class ParticipantLeft:
    participant_id: str


@dataclass(frozen=True)
class ConnectionLost:
    pass


@dataclass(frozen=True)
class ConnectionRestored:
    pass


TransportEvent = SpeakingStarted | ParticipantLeft | ConnectionLost | ConnectionRestored


# -------------------------------------------------------------- #
# Capture State
# -------------------------------------------------------------- #


@dataclass
class ParticipantCapture:
    """
    Per-speaker capture state, created lazily on first observed speech.

    The raw destination is written only by this capture's pipeline task and
    read only once the capture is CLOSED.
    """

    participant_id: str
    display_label: str
    raw_path: str
    started_at: datetime = field(default_factory=get_current_timestamp_est)
    state: CaptureState = CaptureState.CAPTURING
    bytes_written: int = 0
    frames_decoded: int = 0
    flush_count: int = 0
    error: str | None = None
    pipeline_task: asyncio.Task | None = field(default=None, repr=False)
    stream: object | None = field(default=None, repr=False)

    @property
    def is_capturing(self) -> bool:
        return self.state == CaptureState.CAPTURING


@dataclass
class Session:
    """One recording session for a scope; at most one non-CLOSED per scope."""

    scope_id: str
    session_id: str = field(default_factory=generate_16_char_uuid)
    session_dir: str = ""
    started_at: datetime = field(default_factory=get_current_timestamp_est)
    state: SessionState = SessionState.RECORDING
    participants: dict[str, ParticipantCapture] = field(default_factory=dict)
    first_speech_order: list[str] = field(default_factory=list)
    stop_reason: str | None = None

    def ordered_participants(self) -> list[ParticipantCapture]:
        """Participants in order of first observed speech."""
        return [self.participants[pid] for pid in self.first_speech_order if pid in self.participants]

    def duration_seconds(self) -> float:
        return (get_current_timestamp_est() - self.started_at).total_seconds()
