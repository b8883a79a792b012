"""Value objects passed between the recorder, session and transcriber."""

from dataclasses import dataclass


@dataclass(frozen=True)
class AudioBlob:
    """Immutable audio payload tagged with its MIME type."""

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def subtype(self) -> str:
        """MIME subtype without parameters ("audio/webm;codecs=opus" -> "webm")."""
        essence = self.mime_type.split(";", 1)[0].strip()
        return essence.split("/", 1)[-1]


@dataclass(frozen=True)
class TranscriptionRequest:
    """A single submission to the transcription endpoint."""

    payload: bytes
    filename: str
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class TranscriptionResult:
    """A successful transcription, as kept in the session history."""

    text: str
    source_filename: str
