"""Microphone capture adapter producing an M4A recording and level samples."""

import math
import shutil
import subprocess
import time
import wave
import logging
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Optional

import numpy as np
import pyaudio

from ..errors import RecorderInitError
from ..models.events import LevelSampled

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_FLOOR_DB = -60.0


def normalize_level(power_db: float, floor_db: float = DEFAULT_LEVEL_FLOOR_DB) -> float:
    """Map a dBFS power reading onto ``[0, 1]``.

    Readings at or below ``floor_db`` map to 0.0, 0 dBFS maps to 1.0, and
    everything between is linear.
    """
    if math.isnan(power_db) or power_db <= floor_db:
        return 0.0
    return min(1.0, (power_db - floor_db) / -floor_db)


def power_dbfs(samples: np.ndarray) -> float:
    """Average power of 16-bit samples in dBFS (``-inf`` for silence)."""
    if samples.size == 0:
        return float("-inf")
    normalized = samples.astype(np.float64) / 32768.0
    rms = float(np.sqrt(np.mean(normalized * normalized)))
    if rms <= 0.0:
        return float("-inf")
    return 20.0 * math.log10(rms)


class AudioCapture:
    """Records the default microphone to an AAC/M4A file.

    PCM is streamed to a sibling WAV file while recording and encoded to
    M4A on ``stop()``. Level samples are reported through ``level_callback``
    from the capture thread; the adapter keeps no session state.
    """

    def __init__(
        self,
        level_callback: Optional[Callable[[LevelSampled], None]] = None,
        sample_rate: int = 44100,
        channels: int = 1,
        frames_per_buffer: int = 1024,
        meter_interval: float = 0.05,
        level_floor_db: float = DEFAULT_LEVEL_FLOOR_DB,
        ffmpeg_path: Optional[str] = None,
    ):
        """Initialize audio capture.

        Args:
            level_callback: Receives a LevelSampled roughly every ``meter_interval``
            sample_rate: Recording sample rate in Hz
            channels: Number of channels (1 for mono)
            frames_per_buffer: Frames read from the device per iteration
            meter_interval: Seconds between level samples
            level_floor_db: dBFS reading that maps to level 0.0
        """
        self.level_callback = level_callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.meter_interval = meter_interval
        self.level_floor_db = level_floor_db
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg") or "ffmpeg"

        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False
        self.target: Optional[Path] = None

        self._pyaudio: Optional[pyaudio.PyAudio] = None
        self._stream = None
        self._wav: Optional[wave.Wave_write] = None
        self._wav_path: Optional[Path] = None
        self._last_meter = 0.0
        self._io_lock = Lock()

    def start(self, target: Path) -> None:
        """Open the microphone and start writing to ``target``.

        Raises:
            RecorderInitError: if the device or the output file cannot be opened
        """
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        self.target = Path(target)
        self._wav_path = self.target.with_suffix(".wav")
        try:
            self._pyaudio = pyaudio.PyAudio()
            self._wav = wave.open(str(self._wav_path), "wb")
            self._wav.setnchannels(self.channels)
            self._wav.setsampwidth(self._pyaudio.get_sample_size(pyaudio.paInt16))
            self._wav.setframerate(self.sample_rate)
            self._stream = self._pyaudio.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
            )
        except Exception as e:
            self._release()
            raise RecorderInitError(f"could not start recording: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, {self.channels} channel(s) -> {self.target}")
        self.stop_event.clear()
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()
        self.is_recording = True

    def stop(self) -> Optional[Path]:
        """Stop recording and return the finalized M4A path.

        Blocks while the recording is encoded; call it off the event loop.
        Returns None if nothing was being recorded.

        Raises:
            RecorderInitError: if the recording cannot be encoded
        """
        if not self.is_recording:
            logger.warning("No recording in progress")
            return None

        logger.info("Stopping audio recording")
        self.stop_event.set()
        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")
        self.is_recording = False
        self._release()

        self._encode()
        return self.target

    def _record_continuously(self) -> None:
        """Capture loop running on the recording thread.

        Device and file handles are only touched under ``_io_lock``, so
        ``_release`` never closes them in the middle of a read or write.
        """
        while True:
            with self._io_lock:
                if self.stop_event.is_set() or self._stream is None or self._wav is None:
                    break
                try:
                    data = self._stream.read(self.frames_per_buffer, exception_on_overflow=False)
                except OSError as e:
                    logger.error(f"Audio read failed: {e}")
                    break
                self._wav.writeframes(data)
            self._report_level(data)

    def _report_level(self, data: bytes) -> None:
        if not self.level_callback:
            return
        now = time.monotonic()
        if now - self._last_meter < self.meter_interval:
            return
        self._last_meter = now
        samples = np.frombuffer(data, dtype=np.int16)
        level = normalize_level(power_dbfs(samples), self.level_floor_db)
        self.level_callback(LevelSampled(level=level))

    def _encode(self) -> None:
        """Encode the intermediate WAV into the AAC/M4A target.

        Raises:
            RecorderInitError: if ffmpeg cannot be run or fails; the WAV is kept
        """
        if self._wav_path is None or not self._wav_path.exists():
            logger.error("No intermediate recording to encode")
            return
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel", "error",
            "-i", str(self._wav_path),
            "-ac", str(self.channels),
            "-ar", str(self.sample_rate),
            "-c:a", "aac",
            "-q:a", "2",
            str(self.target),
        ]
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except OSError as e:
            logger.error(f"Could not run ffmpeg to encode the recording: {e}")
            raise RecorderInitError(
                f"could not encode recording (raw audio kept at {self._wav_path}): {e}") from e
        if proc.returncode != 0:
            reason = proc.stderr.strip() or f"ffmpeg exited with {proc.returncode}"
            logger.error(f"Encoding recording failed: {reason}")
            raise RecorderInitError(
                f"could not encode recording (raw audio kept at {self._wav_path}): {reason}")
        self._wav_path.unlink(missing_ok=True)
        logger.info(f"Recording encoded: {self.target}")

    def _release(self) -> None:
        """Close device and file handles."""
        with self._io_lock:
            if self._stream is not None:
                try:
                    self._stream.stop_stream()
                    self._stream.close()
                except OSError as e:
                    logger.warning(f"Error closing audio stream: {e}")
                self._stream = None
            if self._wav is not None:
                self._wav.close()
                self._wav = None
        if self._pyaudio is not None:
            self._pyaudio.terminate()
            self._pyaudio = None
