"""Whisper-compatible speech-to-text backend over HTTP."""

import logging
import time

import aiohttp
from pydantic import BaseModel, ValidationError

from .base import AbstractTranscriptionBackend
from ..errors import DecodeError
from ..http_errors import TRANSPORT_ERRORS, network_error, read_body

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/audio/transcriptions"


class TranscriptionResponse(BaseModel):
    """Successful response body: ``{"text": "..."}``."""
    text: str


class WhisperTranscriptionClient(AbstractTranscriptionBackend):
    """Posts one audio file as multipart/form-data and returns its text.

    Failures are raised, never retried here; the caller owns retry policy.
    """

    def __init__(self,
                 api_key: str,
                 endpoint: str = DEFAULT_ENDPOINT,
                 model: str = "whisper-1",
                 language: str = "ko",
                 timeout: float = 900.0):
        """Initialize the transcription client.

        Args:
            api_key: Bearer token for the service
            endpoint: Transcription URL
            model: Fixed model identifier sent with every request
            language: Source-language hint (ISO 639-1)
            timeout: Total deadline in seconds covering request and response
        """
        super().__init__(language)
        if not api_key:
            raise ValueError("Transcription API key is required")
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self.service_name = "Transcription"

        logger.info(f"WhisperTranscriptionClient initialized: model={model}, language={language}")

    def _build_form(self, audio_bytes: bytes, file_name: str) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("model", self.model)
        form.add_field("language", self.language)
        form.add_field("file", audio_bytes, filename=file_name, content_type="audio/m4a")
        return form

    async def transcribe(self, audio_bytes: bytes, file_name: str) -> str:
        start_time = time.time()
        logger.debug(f"Uploading {file_name} ({len(audio_bytes)} bytes) to {self.endpoint}")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(self.endpoint, headers=headers,
                                        data=self._build_form(audio_bytes, file_name)) as response:
                    body = await read_body(response, self.service_name)
        except TRANSPORT_ERRORS as e:
            logger.error(f"Transcription upload of {file_name} failed: {type(e).__name__}: {e}")
            raise network_error(e, self.service_name) from e

        try:
            text = TranscriptionResponse.model_validate_json(body).text
        except ValidationError as e:
            raise DecodeError(f"unexpected transcription response: {e.error_count()} validation error(s)") from e

        logger.info(f"Transcribed {file_name} in {time.time() - start_time:.1f}s ({len(text)} chars)")
        return text
