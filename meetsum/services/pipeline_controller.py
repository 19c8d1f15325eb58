"""Pipeline controller that owns the recording-to-summary session state machine.

States:

    IDLE -> RECORDING -> PREPARING_PLAYBACK -> TRANSCRIBING -> RELAYING -> COMPLETE
                                         any -> FAILED

External files enter at PREPARING_PLAYBACK. The controller is the only
writer of session state and it only writes from its asyncio event loop;
adapter callbacks from other threads arrive through ``notify``. Every
in-flight operation carries its session id and its updates are dropped
once a newer session has replaced it.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from ..audio.capture import AudioCapture
from ..audio.permissions import AuthorizationStatus, MicrophoneAuthorizer
from ..audio.playback import AudioPlayback, PlaybackUnavailable
from ..audio.splitter import ChunkSplitter
from ..config import MeetsumConfig
from ..errors import EmptyRecording, PermissionDenied, PipelineError, RecorderInitError
from ..models.audio import PlaybackCursor
from ..models.events import LevelSampled, PlaybackFinished, PlaybackProgress
from ..models.session import INGEST_READY_STATUSES, Session, SessionState, SessionStatus
from ..relay.client import SummaryRelay
from ..retry import RetryPolicy
from ..storage.file_manager import FileManager
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.chunked import ChunkedTranscriber, SessionSuperseded
from ..transcription.whisper_backend import WhisperTranscriptionClient
from .status_publisher import StatusPublisher

logger = logging.getLogger(__name__)

CHUNK_THRESHOLD_BYTES = 20 * 1024 * 1024

PERMISSION_MESSAGE = ("Microphone access is off. Allow this app under "
                      "Privacy & Security > Microphone in the system settings.")


class PipelineController:
    """Sequences capture, transcription and relay for one session at a time."""

    def __init__(self,
                 capture: AudioCapture,
                 playback: AudioPlayback,
                 authorizer: MicrophoneAuthorizer,
                 splitter: ChunkSplitter,
                 backend: AbstractTranscriptionBackend,
                 relay: SummaryRelay,
                 file_manager: FileManager,
                 publisher: Optional[StatusPublisher] = None,
                 retry_policy: RetryPolicy = RetryPolicy(),
                 chunk_threshold_bytes: int = CHUNK_THRESHOLD_BYTES):
        self.capture = capture
        self.playback = playback
        self.authorizer = authorizer
        self.splitter = splitter
        self.backend = backend
        self.relay = relay
        self.file_manager = file_manager
        self.publisher = publisher or StatusPublisher()
        self.retry_policy = retry_policy
        self.chunk_threshold_bytes = chunk_threshold_bytes
        self.chunked_transcriber = ChunkedTranscriber(splitter, backend, file_manager, retry_policy)

        self._state = SessionState()
        self._session: Optional[Session] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._finalizing = False

    @classmethod
    def from_config(cls, config: MeetsumConfig) -> "PipelineController":
        """Build a controller and its adapters from configuration."""
        sample_rate = config.get('audio.sample_rate', 44100)
        channels = config.get('audio.channels', 1)

        capture = AudioCapture(
            sample_rate=sample_rate,
            channels=channels,
            frames_per_buffer=config.get('audio.frames_per_buffer', 1024),
            meter_interval=config.get('audio.meter_interval_seconds', 0.05),
            level_floor_db=config.get('audio.level_floor_db', -60.0),
        )
        playback = AudioPlayback(
            sample_rate=sample_rate,
            channels=channels,
            position_interval=config.get('playback.position_interval_seconds', 0.1),
        )
        backend = WhisperTranscriptionClient(
            api_key=config.get_transcription_api_key(),
            endpoint=config.get('transcription.endpoint'),
            model=config.get('transcription.model', 'whisper-1'),
            language=config.get('transcription.language', 'ko'),
            timeout=config.get('transcription.timeout_seconds', 900),
        )
        relay = SummaryRelay(
            endpoint=config.get_relay_endpoint(),
            timeout=config.get('relay.timeout_seconds', 900),
        )
        controller = cls(
            capture=capture,
            playback=playback,
            authorizer=MicrophoneAuthorizer(),
            splitter=ChunkSplitter(
                chunk_length=config.get('pipeline.chunk_duration_seconds', 600),
                sample_rate=sample_rate,
                channels=channels,
            ),
            backend=backend,
            relay=relay,
            file_manager=FileManager(config.get_temp_directory()),
            retry_policy=config.get_retry_policy(),
            chunk_threshold_bytes=config.get('pipeline.chunk_threshold_bytes', CHUNK_THRESHOLD_BYTES),
        )
        capture.level_callback = controller.notify
        playback.progress_callback = controller.notify
        playback.finished_callback = controller.notify
        return controller

    # Observable state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def should_chunk(self, size_bytes: int) -> bool:
        """Chunked transcription only for sources strictly above the threshold."""
        return size_bytes > self.chunk_threshold_bytes

    # Commands

    async def start(self) -> bool:
        """Start recording a new session.

        Returns:
            True if recording started; on failure the state is FAILED
        """
        loop = self._bind_loop()
        if self._state.status is SessionStatus.RECORDING or self._finalizing:
            logger.warning("Recording already in progress")
            return False

        try:
            await self._ensure_microphone_access(loop)
        except PermissionDenied as e:
            session = self._replace_session()
            self.publisher.publish_permission_denied(self.authorizer.status())
            self._fail(session.id, e)
            return False

        session = self._replace_session()
        target = self.file_manager.new_recording_path()
        session.source_audio = target
        try:
            self.capture.start(target)
        except RecorderInitError as e:
            self._fail(session.id, e)
            return False

        logger.info(f"Session {session.id}: recording to {target.name}")
        self._transition(session.id, SessionStatus.RECORDING)
        return True

    async def stop(self) -> None:
        """Stop recording and hand the finished file to the pipeline."""
        if self._state.status is not SessionStatus.RECORDING:
            return
        loop = self._bind_loop()
        session = self._session
        self._transition(session.id, SessionStatus.PREPARING_PLAYBACK, level=0.0)

        self._finalizing = True
        try:
            path = await loop.run_in_executor(None, self.capture.stop)
        except PipelineError as e:
            self._fail(session.id, e)
            return
        except Exception as e:
            logger.error(f"Session {session.id}: finalizing recording failed: {e}", exc_info=True)
            self._fail(session.id, PipelineError(f"unexpected error: {e}"))
            return
        finally:
            self._finalizing = False
        if not self._is_current(session.id):
            return

        try:
            self._verify_source(path)
        except EmptyRecording as e:
            self._fail(session.id, e)
            return
        await self._begin_processing(session, Path(path))

    async def ingest_external_file(self, path: Union[str, Path]) -> bool:
        """Process an existing audio file as if it had just been recorded.

        Only accepted while idle, failed or complete.
        """
        self._bind_loop()
        if self._state.status not in INGEST_READY_STATUSES or self._finalizing:
            logger.warning(f"Ignoring external file while {self._state.status.value}: {path}")
            return False

        source = Path(path)
        session = self._replace_session()
        session.source_audio = source
        logger.info(f"Session {session.id}: ingesting external file {source}")
        try:
            self._verify_source(source)
        except EmptyRecording as e:
            self._fail(session.id, e)
            return True
        await self._begin_processing(session, source)
        return True

    async def join(self) -> None:
        """Wait until the current pipeline task (if any) has finished."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def shutdown(self) -> None:
        """Cancel in-flight work and release the audio adapters."""
        loop = self._bind_loop()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        if self.capture.is_recording:
            await loop.run_in_executor(None, self.capture.stop)
        self.playback.stop()
        logger.info("PipelineController shut down")

    def open_privacy_settings(self) -> bool:
        """Side-channel action offered after a microphone permission denial."""
        return self.authorizer.open_privacy_settings()

    # Playback

    def play(self) -> None:
        if not self._state.has_recording:
            return
        self.playback.play()
        self._set_state(playback=PlaybackCursor(position=self.playback.position,
                                                duration=self._state.duration,
                                                is_playing=True))

    def pause(self) -> None:
        self.playback.pause()
        self._set_state(playback=PlaybackCursor(position=self.playback.position,
                                                duration=self._state.duration,
                                                is_playing=False))

    def seek(self, seconds: float) -> None:
        if not self._state.has_recording:
            return
        position = self.playback.seek(seconds)
        self._set_state(playback=self._state.playback.moved_to(position))

    # Adapter events

    def notify(self, event) -> None:
        """Deliver an adapter event; safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self._handle_event(event)
        else:
            loop.call_soon_threadsafe(self._handle_event, event)

    def _handle_event(self, event) -> None:
        if isinstance(event, LevelSampled):
            if self._state.status is SessionStatus.RECORDING:
                self._set_state(level=event.level)
        elif isinstance(event, (PlaybackProgress, PlaybackFinished)):
            if not self._owns_playback(event.source):
                logger.debug(f"Dropping playback event for {event.source}")
                return
            if isinstance(event, PlaybackFinished):
                self._set_state(playback=self._state.playback.finished())
            elif self.playback.is_playing:
                cursor = self._state.playback.moved_to(event.position)
                self._set_state(playback=PlaybackCursor(cursor.position, cursor.duration, True))
        else:
            logger.warning(f"Ignoring unknown event: {event!r}")

    def _owns_playback(self, source: Optional[Path]) -> bool:
        """Playback events only apply to the current session's loaded recording."""
        if source is None or self._session is None or not self._state.has_recording:
            return False
        return Path(source) == self._session.source_audio

    # Pipeline

    async def _begin_processing(self, session: Session, source: Path) -> None:
        loop = asyncio.get_running_loop()
        self._transition(session.id, SessionStatus.PREPARING_PLAYBACK,
                         has_recording=False, playback=PlaybackCursor())
        try:
            duration = await loop.run_in_executor(None, self.playback.load, source)
        except (PlaybackUnavailable, OSError) as e:
            logger.warning(f"Session {session.id}: playback unavailable: {e}")
        else:
            if self._is_current(session.id):
                self._set_state(has_recording=True, playback=PlaybackCursor(duration=duration))

        if self._is_current(session.id):
            self._task = loop.create_task(self._run_pipeline(session, source))

    async def _run_pipeline(self, session: Session, source: Path) -> None:
        session_id = session.id
        try:
            size = self.file_manager.file_size(source) or 0
            chunked = self.should_chunk(size)
            logger.info(f"Session {session_id}: {size} bytes -> "
                        f"{'chunked' if chunked else 'single-shot'} transcription")
            self._transition(session_id, SessionStatus.TRANSCRIBING)

            if chunked:
                transcript = await self.chunked_transcriber.transcribe(
                    session_id, source, is_current=lambda: self._is_current(session_id))
            else:
                transcript = await self._transcribe_single(source)

            if not self._transition(session_id, SessionStatus.RELAYING):
                return
            link = await self.retry_policy.run(lambda: self.relay.relay(transcript), "summary relay")
            self._transition(session_id, SessionStatus.COMPLETE, result_url=link)
        except SessionSuperseded:
            logger.info(f"Session {session_id}: superseded, results discarded")
        except asyncio.CancelledError:
            logger.info(f"Session {session_id}: pipeline cancelled")
            raise
        except PipelineError as e:
            self._fail(session_id, e)
        except Exception as e:
            logger.error(f"Session {session_id}: unexpected pipeline error: {e}", exc_info=True)
            self._fail(session_id, PipelineError(f"unexpected error: {e}"))

    async def _transcribe_single(self, source: Path) -> str:
        loop = asyncio.get_running_loop()
        try:
            audio_bytes = await loop.run_in_executor(None, source.read_bytes)
        except OSError as e:
            raise EmptyRecording(f"could not read recording: {e}") from e
        return await self.retry_policy.run(
            lambda: self.backend.transcribe(audio_bytes, source.name), "transcription")

    async def _ensure_microphone_access(self, loop: asyncio.AbstractEventLoop) -> None:
        status = self.authorizer.status()
        if status is AuthorizationStatus.AUTHORIZED:
            return
        if status is AuthorizationStatus.NOT_DETERMINED:
            if await loop.run_in_executor(None, self.authorizer.request_access):
                return
            status = self.authorizer.status()
        logger.warning(f"Microphone access {status.value}")
        raise PermissionDenied(PERMISSION_MESSAGE)

    def _verify_source(self, path: Optional[Path]) -> None:
        size = self.file_manager.file_size(path) if path is not None else None
        if size is None:
            raise EmptyRecording(f"recording file not found: {path}")
        logger.info(f"Recorded file: {path}, size: {size} bytes")
        if size == 0:
            raise EmptyRecording("recording file is empty; nothing was captured")

    # State

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        self._loop = asyncio.get_running_loop()
        return self._loop

    def _is_current(self, session_id: str) -> bool:
        return self._session is not None and self._session.id == session_id

    def _replace_session(self) -> Session:
        """Cancel the previous session's work and open a fresh session."""
        if self._task is not None and not self._task.done():
            logger.info(f"Session {self._session.id}: cancelling in-flight work")
            self._task.cancel()
        self._task = None
        self.playback.stop()
        self._session = Session()
        self._state = SessionState(session_id=self._session.id)
        return self._session

    def _transition(self, session_id: str, status: SessionStatus, **changes) -> bool:
        """Move ``session_id`` to ``status``; stale sessions are ignored."""
        if not self._is_current(session_id):
            logger.debug(f"Dropping stale transition to {status.value} for session {session_id}")
            return False
        session = self._session
        session.status = status
        session.error_message = changes.get("error_message")
        session.result_url = changes.get("result_url")
        self._state = self._state.evolve(status=status,
                                         error_message=session.error_message,
                                         result_url=session.result_url,
                                         **{k: v for k, v in changes.items()
                                            if k not in ("error_message", "result_url")})
        logger.info(f"Session {session_id}: {status.value}")
        self.publisher.publish_state(self._state)
        return True

    def _fail(self, session_id: str, error: PipelineError) -> None:
        logger.error(f"Session {session_id} failed: {error}")
        self._transition(session_id, SessionStatus.FAILED, error_message=str(error), level=0.0)

    def _set_state(self, **changes) -> None:
        self._state = self._state.evolve(**changes)
        self.publisher.publish_state(self._state)
