"""Sequential transcription of long recordings, one chunk at a time.

Chunks are exported lazily and processed strictly in index order: export,
read, transcribe, store, delete, next. At most one export and one
transcription call are in flight, and at most one chunk file exists on
disk. The first failure aborts the whole run; nothing is merged.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from .accumulator import TranscriptAccumulator
from .base import AbstractTranscriptionBackend
from ..audio.splitter import ChunkSplitter
from ..errors import ExportFailed, PipelineError
from ..retry import RetryPolicy
from ..storage.file_manager import FileManager

logger = logging.getLogger(__name__)


class SessionSuperseded(Exception):
    """The session this work belongs to is no longer the current one."""


class ChunkedTranscriber:
    """Drives the export → transcribe loop over a planned list of chunks."""

    def __init__(self,
                 splitter: ChunkSplitter,
                 backend: AbstractTranscriptionBackend,
                 file_manager: FileManager,
                 retry_policy: RetryPolicy = RetryPolicy()):
        self.splitter = splitter
        self.backend = backend
        self.file_manager = file_manager
        self.retry_policy = retry_policy

    async def transcribe(self,
                         session_id: str,
                         source: Path,
                         is_current: Callable[[], bool] = lambda: True) -> str:
        """Transcribe ``source`` chunk by chunk and return the merged text.

        Args:
            session_id: Owner of the work, used to name the chunk directory
            source: Full recording
            is_current: Checked before every step; when it turns False the
                run stops with SessionSuperseded

        Raises:
            PipelineError: the first chunk failure (UnknownDuration,
                ExportFailed or a transcription error)
            SessionSuperseded: if the session was replaced mid-run
        """
        total = await self.splitter.probe_duration(source)
        chunks = self.splitter.plan(total)
        accumulator = TranscriptAccumulator(len(chunks))
        dest_dir = self.file_manager.chunk_directory(session_id)
        logger.info(f"Session {session_id}: transcribing {total:.1f}s of audio in {len(chunks)} chunk(s)")

        try:
            for chunk in chunks:
                self._ensure_current(is_current, session_id)
                try:
                    chunk_path = await self.splitter.export(source, chunk, dest_dir)
                    try:
                        self._ensure_current(is_current, session_id)
                        audio_bytes = await _read_bytes(chunk_path, chunk.index)
                        text = await self.retry_policy.run(
                            lambda: self.backend.transcribe(audio_bytes, chunk_path.name),
                            f"transcription of chunk {chunk.index}",
                        )
                    finally:
                        self.file_manager.discard(chunk_path)
                        chunk.path = None
                except PipelineError as e:
                    accumulator.mark_failed(chunk.index, e)
                    logger.error(f"Session {session_id}: chunk {chunk.index + 1}/{len(chunks)} failed: {e}")
                    raise

                chunk.transcript = text
                accumulator.store(chunk.index, text)
                logger.info(f"Session {session_id}: chunk {chunk.index + 1}/{len(chunks)} transcribed")

            self._ensure_current(is_current, session_id)
            return accumulator.merge()
        finally:
            self.file_manager.cleanup_session(session_id)

    @staticmethod
    def _ensure_current(is_current: Callable[[], bool], session_id: str) -> None:
        if not is_current():
            logger.info(f"Session {session_id} superseded; abandoning chunked transcription")
            raise SessionSuperseded(session_id)


async def _read_bytes(path: Path, index: int) -> bytes:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, path.read_bytes)
    except OSError as e:
        raise ExportFailed(f"could not read exported chunk {index}", cause=e) from e
