"""Abstract base class for transcription backends."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """A remote speech-to-text service that turns one audio payload into text."""

    def __init__(self, language: str = "ko"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    async def transcribe(self, audio_bytes: bytes, file_name: str) -> str:
        """Transcribe one complete audio file.

        Args:
            audio_bytes: Encoded audio (M4A)
            file_name: File name reported to the service

        Returns:
            Transcribed text

        Raises:
            PipelineError: NetworkError, BadStatus, EmptyBody or DecodeError
        """
        pass
