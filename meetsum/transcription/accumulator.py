"""Ordered, fixed-size holder of per-chunk transcripts."""

import logging
from typing import List, Optional

from ..errors import PipelineError

logger = logging.getLogger(__name__)


class IncompleteTranscript(RuntimeError):
    """Merge was requested before every slot was filled, or after a failure."""


class TranscriptAccumulator:
    """Collects chunk transcripts by index and merges them once all arrived.

    Slots are keyed by chunk index, so the merged text does not depend on
    the order in which transcripts are stored. A single failed slot fails
    the whole accumulator; there is no partial merge.
    """

    SEPARATOR = " "

    def __init__(self, chunk_count: int):
        if chunk_count < 1:
            raise ValueError(f"chunk_count must be at least 1, got {chunk_count}")
        self.chunk_count = chunk_count
        self._slots: List[Optional[str]] = [None] * chunk_count
        self.failure: Optional[PipelineError] = None
        self.failed_index: Optional[int] = None

    def store(self, index: int, transcript: str) -> None:
        self._check_index(index)
        if self._slots[index] is not None:
            raise ValueError(f"transcript for chunk {index} already stored")
        self._slots[index] = transcript
        logger.debug(f"Stored transcript {index + 1}/{self.chunk_count} ({len(transcript)} chars)")

    def mark_failed(self, index: int, error: PipelineError) -> None:
        self._check_index(index)
        if self.failure is None:
            self.failure = error
            self.failed_index = index

    @property
    def filled(self) -> int:
        return sum(1 for slot in self._slots if slot is not None)

    @property
    def is_complete(self) -> bool:
        return self.failure is None and self.filled == self.chunk_count

    def merge(self) -> str:
        """Join every transcript in index order with a single space.

        Raises:
            IncompleteTranscript: if a slot failed or is still empty
        """
        if self.failure is not None:
            raise IncompleteTranscript(f"chunk {self.failed_index} failed: {self.failure}")
        if not self.is_complete:
            raise IncompleteTranscript(f"only {self.filled} of {self.chunk_count} transcripts available")
        return self.SEPARATOR.join(self._slots)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.chunk_count:
            raise IndexError(f"chunk index {index} out of range 0..{self.chunk_count - 1}")
