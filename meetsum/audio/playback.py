"""Playback adapter for the finished recording."""

import logging
import shutil
import subprocess
import time
from pathlib import Path
from threading import Thread, Event
from typing import Callable, Optional

import pyaudio

from ..models.events import PlaybackFinished, PlaybackProgress

logger = logging.getLogger(__name__)


class PlaybackUnavailable(RuntimeError):
    """The recording could not be prepared for playback."""


class AudioPlayback:
    """Plays an audio file through the default output device.

    The file is decoded to PCM by an ffmpeg process started at the current
    position, so seeking restarts the decoder rather than buffering the
    whole recording. Progress and end-of-media are reported through
    callbacks from the playback thread.
    """

    def __init__(self,
                 progress_callback: Optional[Callable[[PlaybackProgress], None]] = None,
                 finished_callback: Optional[Callable[[PlaybackFinished], None]] = None,
                 sample_rate: int = 44100,
                 channels: int = 1,
                 position_interval: float = 0.1,
                 frames_per_buffer: int = 2048,
                 ffmpeg_path: Optional[str] = None,
                 ffprobe_path: Optional[str] = None):
        self.progress_callback = progress_callback
        self.finished_callback = finished_callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.position_interval = position_interval
        self.frames_per_buffer = frames_per_buffer
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg") or "ffmpeg"
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe") or "ffprobe"

        self.source: Optional[Path] = None
        self.duration = 0.0
        self.position = 0.0
        self.is_playing = False

        self._thread: Optional[Thread] = None
        self._stop_event = Event()

    def load(self, source: Path) -> float:
        """Prepare ``source`` for playback and return its duration in seconds."""
        self.stop()
        proc = subprocess.run(
            [self.ffprobe_path, "-v", "error", "-show_entries", "format=duration",
             "-of", "default=noprint_wrappers=1:nokey=1", str(source)],
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
        )
        if proc.returncode != 0:
            raise PlaybackUnavailable(f"cannot read {source}: {proc.stderr.strip()}")
        try:
            duration = float(proc.stdout.strip())
        except ValueError:
            raise PlaybackUnavailable(f"no duration reported for {source}")

        self.source = Path(source)
        self.duration = duration
        self.position = 0.0
        logger.info(f"Playback prepared: {self.source.name} ({duration:.1f}s)")
        return duration

    def play(self) -> None:
        if self.source is None or self.is_playing:
            return
        if self.position >= self.duration:
            self.position = 0.0
        self._stop_event.clear()
        self.is_playing = True
        self._thread = Thread(target=self._play_from, args=(self.position,), daemon=True)
        self._thread.name = "AudioPlaybackThread"
        self._thread.start()

    def pause(self) -> None:
        if not self.is_playing:
            return
        self._halt()
        self.is_playing = False

    def seek(self, seconds: float) -> float:
        """Move to ``seconds`` clamped to ``[0, duration]`` and return the new position."""
        clamped = max(0.0, min(seconds, self.duration))
        was_playing = self.is_playing
        if was_playing:
            self.pause()
        self.position = clamped
        if was_playing:
            self.play()
        return clamped

    def stop(self) -> None:
        """Stop playback and rewind."""
        self.pause()
        self.position = 0.0

    def _halt(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None

    def _play_from(self, start: float) -> None:
        """Decode and write PCM until the end of media or a stop request."""
        source = self.source
        bytes_per_frame = 2 * self.channels
        decoder = None
        audio = None
        stream = None
        frames_played = 0
        last_report = 0.0
        reached_end = False
        try:
            decoder = subprocess.Popen(
                [self.ffmpeg_path, "-loglevel", "error", "-ss", f"{start:.3f}", "-i", str(source),
                 "-f", "s16le", "-ac", str(self.channels), "-ar", str(self.sample_rate), "-"],
                stdout=subprocess.PIPE, stderr=subprocess.DEVNULL,
            )
            audio = pyaudio.PyAudio()
            stream = audio.open(format=pyaudio.paInt16, channels=self.channels,
                                rate=self.sample_rate, output=True)
            while not self._stop_event.is_set():
                data = decoder.stdout.read(self.frames_per_buffer * bytes_per_frame)
                if not data:
                    reached_end = True
                    break
                stream.write(data)
                frames_played += len(data) // bytes_per_frame
                self.position = min(self.duration, start + frames_played / self.sample_rate)
                now = time.monotonic()
                if self.progress_callback and now - last_report >= self.position_interval:
                    last_report = now
                    self.progress_callback(PlaybackProgress(position=self.position, source=source))
        except OSError as e:
            logger.error(f"Playback of {source} failed: {e}")
            self.is_playing = False
        finally:
            if decoder is not None:
                decoder.kill()
                decoder.wait()
            if stream is not None:
                stream.stop_stream()
                stream.close()
            if audio is not None:
                audio.terminate()

        if reached_end:
            self.is_playing = False
            self.position = self.duration
            logger.debug("Playback reached end of media")
            if self.finished_callback:
                self.finished_callback(PlaybackFinished(source=source))
