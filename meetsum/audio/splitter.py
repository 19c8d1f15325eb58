"""Split long recordings into bounded time chunks.

Duration probing and chunk export shell out to ``ffprobe``/``ffmpeg``.
Chunk planning is pure and has no external dependency.
"""

import asyncio
import logging
import math
import shutil
from pathlib import Path
from typing import List, Optional

from ..errors import ExportFailed, UnknownDuration
from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SECONDS = 600.0


def plan_chunks(total_duration: float, chunk_length: float = DEFAULT_CHUNK_SECONDS) -> List[AudioChunk]:
    """Cover ``[0, total_duration)`` with contiguous chunks of ``chunk_length``.

    The last chunk holds the remainder and may be shorter.

    Raises:
        UnknownDuration: if ``total_duration`` is not finite and positive
    """
    if not _is_usable_duration(total_duration):
        raise UnknownDuration(f"cannot split audio with duration {total_duration!r}")
    if not chunk_length > 0:
        raise ValueError(f"chunk length must be positive, got {chunk_length!r}")

    count = max(1, math.ceil(total_duration / chunk_length))
    chunks = []
    for index in range(count):
        start = index * chunk_length
        duration = min(chunk_length, max(0.0, total_duration - start))
        chunks.append(AudioChunk(index=index, start_seconds=start, duration_seconds=duration))
    return chunks


def _is_usable_duration(value) -> bool:
    try:
        return math.isfinite(value) and value > 0
    except TypeError:
        return False


class ChunkSplitter:
    """Probes durations and exports time windows of an audio asset."""

    def __init__(self,
                 chunk_length: float = DEFAULT_CHUNK_SECONDS,
                 sample_rate: int = 44100,
                 channels: int = 1,
                 ffmpeg_path: Optional[str] = None,
                 ffprobe_path: Optional[str] = None):
        self.chunk_length = chunk_length
        self.sample_rate = sample_rate
        self.channels = channels
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg") or "ffmpeg"
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe") or "ffprobe"

    def plan(self, total_duration: float) -> List[AudioChunk]:
        return plan_chunks(total_duration, self.chunk_length)

    async def probe_duration(self, source: Path) -> float:
        """Return the duration of ``source`` in seconds.

        Raises:
            UnknownDuration: if ffprobe fails or reports no usable duration
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(source),
        ]
        try:
            returncode, stdout, stderr = await _run(cmd)
        except OSError as e:
            raise UnknownDuration(f"could not run ffprobe: {e}") from e

        if returncode != 0:
            raise UnknownDuration(f"ffprobe failed for {source}: {stderr.strip()}")
        try:
            duration = float(stdout.strip())
        except ValueError:
            raise UnknownDuration(f"ffprobe reported no duration for {source}: {stdout.strip()!r}")
        if not _is_usable_duration(duration):
            raise UnknownDuration(f"audio duration is not usable: {duration!r}")

        logger.debug(f"Probed duration of {source}: {duration:.2f}s")
        return duration

    async def export(self, source: Path, chunk: AudioChunk, dest_dir: Path) -> Path:
        """Extract ``chunk``'s window of ``source`` into a new M4A file.

        Raises:
            ExportFailed: if ffmpeg cannot be run, exits non-zero (including
                termination by a signal) or leaves no output
        """
        dest = Path(dest_dir) / f"{Path(source).stem}_chunk_{chunk.index:03d}.m4a"
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel", "error",
            "-ss", f"{chunk.start_seconds:.3f}",
            "-t", f"{chunk.duration_seconds:.3f}",
            "-i", str(source),
            "-vn",
            "-ac", str(self.channels),
            "-ar", str(self.sample_rate),
            "-c:a", "aac",
            "-b:a", "128k",
            str(dest),
        ]
        logger.info(f"Exporting chunk {chunk.index} "
                    f"[{chunk.start_seconds:.1f}s, {chunk.end_seconds:.1f}s) to {dest.name}")
        try:
            returncode, _stdout, stderr = await _run(cmd)
        except OSError as e:
            raise ExportFailed(f"could not run ffmpeg for chunk {chunk.index}", cause=e) from e

        if returncode != 0:
            reason = "was cancelled" if returncode < 0 else f"exited with {returncode}"
            cause = RuntimeError(stderr.strip() or f"ffmpeg {reason}")
            raise ExportFailed(f"export of chunk {chunk.index} {reason}", cause=cause)
        if not dest.exists() or dest.stat().st_size == 0:
            raise ExportFailed(f"export of chunk {chunk.index} produced no audio",
                               cause=FileNotFoundError(str(dest)))

        chunk.path = dest
        return dest


async def _run(cmd: List[str]):
    """Run a subprocess; on cancellation kill it before propagating."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")
