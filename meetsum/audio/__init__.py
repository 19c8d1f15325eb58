"""Audio capture, playback and splitting adapters."""

from .capture import AudioCapture, normalize_level
from .playback import AudioPlayback, PlaybackUnavailable
from .permissions import AuthorizationStatus, MicrophoneAuthorizer
from .splitter import ChunkSplitter, plan_chunks

__all__ = [
    'AudioCapture',
    'normalize_level',
    'AudioPlayback',
    'PlaybackUnavailable',
    'AuthorizationStatus',
    'MicrophoneAuthorizer',
    'ChunkSplitter',
    'plan_chunks',
]
