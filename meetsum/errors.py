"""Error taxonomy for the recording-to-summary pipeline.

Every failure the pipeline can surface to the user is a ``PipelineError``.
``str(error)`` is the human text that ends up in the session's
``error_message``; ``kind`` names the failure for logs and tests.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all user-facing pipeline failures."""

    kind = "PipelineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class PermissionDenied(PipelineError):
    kind = "PermissionDenied"


class RecorderInitError(PipelineError):
    kind = "RecorderInitError"


class EmptyRecording(PipelineError):
    kind = "EmptyRecording"


class UnknownDuration(PipelineError):
    kind = "UnknownDuration"


class ExportFailed(PipelineError):
    """Chunk export failed; ``cause`` holds the underlying error."""

    kind = "ExportFailed"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.kind}: {self.message} ({self.cause})"
        return super().__str__()


class NetworkError(PipelineError):
    """Transport-level failure. ``domain`` and ``code`` are for diagnostics."""

    kind = "NetworkError"

    def __init__(self, message: str, domain: str = "", code: Optional[int] = None):
        super().__init__(message)
        self.domain = domain
        self.code = code

    def __str__(self) -> str:
        return f"{self.kind}: {self.message} (domain: {self.domain or 'unknown'}, code: {self.code})"


class BadStatus(PipelineError):
    kind = "BadStatus"

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"server responded with status {code}")
        self.code = code


class EmptyBody(PipelineError):
    kind = "EmptyBody"


class DecodeError(PipelineError):
    kind = "DecodeError"


class MalformedResponse(PipelineError):
    kind = "MalformedResponse"


class LinkParseError(PipelineError):
    kind = "LinkParseError"
