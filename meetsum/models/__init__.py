"""Data models for the Meetsum application."""

from .audio import AudioChunk, PlaybackCursor
from .session import Session, SessionState, SessionStatus, INGEST_READY_STATUSES
from .events import LevelSampled, PlaybackProgress, PlaybackFinished

__all__ = [
    "AudioChunk",
    "PlaybackCursor",
    "Session",
    "SessionState",
    "SessionStatus",
    "INGEST_READY_STATUSES",
    "LevelSampled",
    "PlaybackProgress",
    "PlaybackFinished",
]
