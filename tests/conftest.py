"""Pytest configuration and fixtures for Meetsum tests."""

import pytest
import tempfile
import logging
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock, patch

import numpy as np
from pubsub import pub

from meetsum.audio.permissions import AuthorizationStatus
from meetsum.audio.splitter import plan_chunks
from meetsum.errors import ExportFailed
from meetsum.services.pipeline_controller import PipelineController
from meetsum.services.status_publisher import STATE_TOPIC
from meetsum.storage.file_manager import FileManager


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests that wire several components together")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def audio_sine():
    """One buffer of a half-scale 440 Hz sine as int16 samples."""
    sample_rate = 44100
    t = np.arange(1024) / sample_rate
    return (np.sin(2 * np.pi * 440 * t) * 16383).astype(np.int16)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_stream.read.return_value = b'\x00' * 2048  # Silent audio
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.get_sample_size.return_value = 2
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def file_manager(temp_data_dir):
    return FileManager(temp_data_dir)


def write_audio_file(path: Path, size: int) -> Path:
    """Create a file of exactly ``size`` bytes (sparse where the OS allows)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        if size:
            f.truncate(size)
    return path


class FakeSplitter:
    """Duck-typed ChunkSplitter: no ffmpeg, writes small files per chunk."""

    def __init__(self, duration: float = 1500.0, chunk_length: float = 600.0, fail_at=None):
        self.duration = duration
        self.chunk_length = chunk_length
        self.fail_at = fail_at
        self.exported = []
        self.alive_at_export = []

    def plan(self, total_duration):
        return plan_chunks(total_duration, self.chunk_length)

    async def probe_duration(self, source):
        return self.duration

    async def export(self, source, chunk, dest_dir):
        self.alive_at_export.append(sorted(p.name for p in Path(dest_dir).iterdir()))
        if chunk.index == self.fail_at:
            raise ExportFailed(f"export of chunk {chunk.index} exited with 1")
        dest = Path(dest_dir) / f"{Path(source).stem}_chunk_{chunk.index:03d}.m4a"
        dest.write_bytes(f"chunk-{chunk.index}".encode())
        chunk.path = dest
        self.exported.append(dest)
        return dest


class FakeBackend:
    """Returns scripted results in call order; exceptions are raised."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []
        self.language = "ko"

    async def transcribe(self, audio_bytes, file_name):
        self.calls.append((audio_bytes, file_name))
        result = self.results.pop(0) if self.results else "transcript"
        if isinstance(result, BaseException):
            raise result
        return result


class FakeRelay:

    def __init__(self, link="https://summary.example.com/s/1", error=None):
        self.link = link
        self.error = error
        self.transcripts = []

    async def relay(self, transcript):
        self.transcripts.append(transcript)
        if self.error is not None:
            raise self.error
        return self.link


@pytest.fixture
def fakes():
    """Fake collaborators and helpers, reachable without importing conftest."""
    return SimpleNamespace(
        Splitter=FakeSplitter,
        Backend=FakeBackend,
        Relay=FakeRelay,
        write_audio_file=write_audio_file,
    )


@pytest.fixture
def fake_capture():
    """Capture whose stop() returns the target it was started with."""
    capture = Mock()
    capture.is_recording = False

    def start(target):
        capture.is_recording = True
        capture.target = target

    def stop():
        capture.is_recording = False
        return capture.target

    capture.start.side_effect = start
    capture.stop.side_effect = stop
    return capture


@pytest.fixture
def fake_playback():
    playback = Mock()
    playback.load.return_value = 12.5
    playback.position = 0.0
    playback.is_playing = False
    playback.seek.side_effect = lambda seconds: max(0.0, min(seconds, 12.5))

    def play():
        playback.is_playing = True

    def halt():
        playback.is_playing = False

    playback.play.side_effect = play
    playback.pause.side_effect = halt
    playback.stop.side_effect = halt
    return playback


@pytest.fixture
def fake_authorizer():
    authorizer = Mock()
    authorizer.status.return_value = AuthorizationStatus.AUTHORIZED
    authorizer.request_access.return_value = True
    return authorizer


@pytest.fixture
def state_log():
    """Every SessionState published while the test runs."""
    states = []

    def listener(state):
        states.append(state)

    pub.subscribe(listener, STATE_TOPIC)
    yield states
    pub.unsubscribe(listener, STATE_TOPIC)


@pytest.fixture
def make_controller(fake_capture, fake_playback, fake_authorizer, file_manager):
    """Build a PipelineController around fakes; keyword args override parts."""

    def build(**overrides):
        parts = dict(
            capture=fake_capture,
            playback=fake_playback,
            authorizer=fake_authorizer,
            splitter=FakeSplitter(),
            backend=FakeBackend(),
            relay=FakeRelay(),
            file_manager=file_manager,
        )
        parts.update(overrides)
        return PipelineController(**parts)

    return build
