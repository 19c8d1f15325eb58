"""Event models delivered from the audio adapters into the controller."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass
class LevelSampled:
    """Normalized input level (0.0 to 1.0) from the capture meter."""
    level: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PlaybackProgress:
    """Current playback position in seconds of the file ``source``."""
    position: float
    source: Optional[Path] = None


@dataclass
class PlaybackFinished:
    """Playback of ``source`` reached the end of the media."""
    source: Optional[Path] = None
    successfully: bool = True
