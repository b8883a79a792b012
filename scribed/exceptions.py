"""Exceptions raised by the scribed components."""

from typing import Optional

from .models import AudioBlob


class ScribeError(Exception):
    """Base class for user-facing scribed errors."""


class PermissionDenied(ScribeError):
    """Raised when microphone access is refused or unavailable."""

    def __init__(self, reason: str, cause: Optional[Exception] = None):
        self.reason = reason
        self.cause = cause
        super().__init__(f"Microphone access denied: {reason}")


class RecordingTooShort(ScribeError):
    """Raised when a finalized recording is below the minimum size."""

    def __init__(self, blob: AudioBlob, min_size: int):
        self.blob = blob
        self.min_size = min_size
        super().__init__(
            f"Recording too short: {blob.size} bytes (minimum {min_size})"
        )


class NoFileSelected(ScribeError):
    """Raised when an upload is requested without a usable file."""

    def __init__(self, message: str = "Please select an audio file"):
        super().__init__(message)


class TransmissionFailure(ScribeError):
    """Raised when the transcription request fails in transport or status."""

    def __init__(
        self,
        endpoint: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        self.cause = cause
        if status_code is not None:
            message = f"Transcription request to '{endpoint}' failed with HTTP {status_code}"
        else:
            message = f"Transcription request to '{endpoint}' failed: {cause}"
        super().__init__(message)


class EmptyResult(ScribeError):
    """Raised when the service responds without usable transcript text."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"No transcript returned for '{filename}'")


class NothingToSave(ScribeError):
    """Raised when a text export has no text to write."""
