"""File management for temporary recordings and exported chunks."""

import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional, Union


logger = logging.getLogger(__name__)

RECORDING_SUFFIX = ".m4a"


class FileManager:
    """Owns the temporary directory the pipeline writes audio into."""

    def __init__(self, temp_dir: str = "./tmp"):
        """Initialize file manager with temporary directory.

        Args:
            temp_dir: Base directory for recordings and chunk exports
        """
        self.temp_dir = Path(temp_dir)
        self.recordings_dir = self.temp_dir / "recordings"
        self.chunks_dir = self.temp_dir / "chunks"

        self._ensure_directories()

        logger.info(f"FileManager initialized with temp_dir: {self.temp_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.temp_dir, self.recordings_dir, self.chunks_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def new_recording_path(self) -> Path:
        """Return a fresh, uniquely named recording target."""
        path = self.recordings_dir / f"meeting-{uuid.uuid4()}{RECORDING_SUFFIX}"
        logger.debug(f"New recording target: {path}")
        return path

    def chunk_directory(self, session_id: str) -> Path:
        """Directory holding the exported chunks of one session."""
        path = self.chunks_dir / session_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def file_size(path: Union[str, Path]) -> Optional[int]:
        """Size in bytes, or None if the file does not exist."""
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return None

    def discard(self, path: Optional[Union[str, Path]]) -> bool:
        """Delete a temporary file. Failure is logged, never raised.

        Returns:
            True if the file is gone afterwards
        """
        if path is None:
            return True
        try:
            Path(path).unlink(missing_ok=True)
            logger.debug(f"Discarded temporary file: {path}")
            return True
        except OSError as e:
            logger.warning(f"Failed to delete temporary file {path}: {e}")
            return False

    def cleanup_session(self, session_id: str) -> None:
        """Remove whatever is left of a session's chunk directory."""
        path = self.chunks_dir / session_id
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed chunk directory: {path}")
        except OSError as e:
            logger.warning(f"Failed to remove chunk directory {path}: {e}")
