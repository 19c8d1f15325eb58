"""Session-related data models."""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional
import uuid

from .audio import PlaybackCursor


class SessionStatus(Enum):
    """Lifecycle status of the single active session."""
    IDLE = "idle"
    RECORDING = "recording"
    PREPARING_PLAYBACK = "preparing_playback"
    TRANSCRIBING = "transcribing"
    RELAYING = "relaying"
    COMPLETE = "complete"
    FAILED = "failed"


# Statuses from which a new session may be opened from an external file
INGEST_READY_STATUSES = frozenset({
    SessionStatus.IDLE,
    SessionStatus.FAILED,
    SessionStatus.COMPLETE,
})


@dataclass
class Session:
    """One recording or ingestion-to-summary-link unit of work."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    source_audio: Optional[Path] = None
    status: SessionStatus = SessionStatus.IDLE
    error_message: Optional[str] = None
    result_url: Optional[str] = None


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of every field the presentation layer reads.

    The controller replaces the whole snapshot on each transition, so a
    reader always sees fields that belong to the same transition.
    """
    status: SessionStatus = SessionStatus.IDLE
    session_id: Optional[str] = None
    level: float = 0.0
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    has_recording: bool = False
    playback: PlaybackCursor = field(default_factory=PlaybackCursor)

    @property
    def is_recording(self) -> bool:
        return self.status is SessionStatus.RECORDING

    @property
    def is_uploading(self) -> bool:
        return self.status in (SessionStatus.TRANSCRIBING, SessionStatus.RELAYING)

    @property
    def is_playing(self) -> bool:
        return self.playback.is_playing

    @property
    def duration(self) -> float:
        return self.playback.duration

    @property
    def position(self) -> float:
        return self.playback.position

    def evolve(self, **changes) -> "SessionState":
        """Return a copy of this snapshot with ``changes`` applied."""
        return replace(self, **changes)
