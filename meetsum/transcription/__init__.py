"""Transcription module for Meetsum."""

from .base import AbstractTranscriptionBackend
from .whisper_backend import WhisperTranscriptionClient, TranscriptionResponse
from .accumulator import TranscriptAccumulator, IncompleteTranscript
from .chunked import ChunkedTranscriber, SessionSuperseded

__all__ = [
    "AbstractTranscriptionBackend",
    "WhisperTranscriptionClient",
    "TranscriptionResponse",
    "TranscriptAccumulator",
    "IncompleteTranscript",
    "ChunkedTranscriber",
    "SessionSuperseded",
]
