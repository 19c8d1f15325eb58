"""Audio-related data models."""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


@dataclass
class AudioChunk:
    """A bounded time window of the source audio.

    ``index`` is the authoritative merge position, independent of the order
    in which transcripts arrive.
    """
    index: int
    start_seconds: float
    duration_seconds: float
    transcript: Optional[str] = None
    path: Optional[Path] = None  # Exported temporary file while it exists

    @property
    def end_seconds(self) -> float:
        return self.start_seconds + self.duration_seconds


@dataclass(frozen=True)
class PlaybackCursor:
    """Playback position of the loaded recording."""
    position: float = 0.0
    duration: float = 0.0
    is_playing: bool = False

    def moved_to(self, position: float) -> "PlaybackCursor":
        clamped = max(0.0, min(position, self.duration))
        return replace(self, position=clamped)

    def finished(self) -> "PlaybackCursor":
        return replace(self, position=self.duration, is_playing=False)
