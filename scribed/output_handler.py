"""Local export of transcripts and recordings."""

import asyncio
import logging
from pathlib import Path

from .config import OutputConfig
from .models import AudioBlob

logger = logging.getLogger(__name__)


def unique_path(directory: Path, filename: str) -> Path:
    """Return a path in directory that does not exist yet.

    Clashing names get a " (n)" suffix before the extension, the way browsers
    name repeated downloads.

    Args:
        directory: Target directory.
        filename: Desired file name.

    Returns:
        A free path inside directory.
    """
    # Never let a caller-supplied name escape the export directory
    name = Path(filename).name or "download"
    candidate = directory / name
    stem, suffix = candidate.stem, candidate.suffix

    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem} ({counter}){suffix}"
        counter += 1
    return candidate


class FileExporter:
    """Writes transcripts and recorded audio into the download directory."""

    def __init__(self, config: OutputConfig):
        """Initialize the exporter.

        Args:
            config: Output configuration with the target directory.
        """
        self.config = config

    @property
    def directory(self) -> Path:
        return self.config.computed_directory

    def _write(self, filename: str, data: bytes) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = unique_path(self.directory, filename)
        path.write_bytes(data)
        return path

    async def save_text(self, text: str, filename: str) -> Path:
        """Save text as a UTF-8 plain-text file.

        Args:
            text: The text to write.
            filename: Requested file name.

        Returns:
            The path written.
        """
        path = await asyncio.to_thread(self._write, filename, text.encode("utf-8"))
        logger.info(f"Saved {len(text)} chars of text to {path}")
        return path

    async def save_audio(self, blob: AudioBlob, filename: str) -> Path:
        """Save recorded audio bytes to a file.

        Args:
            blob: The recorded audio.
            filename: Requested file name.

        Returns:
            The path written.
        """
        path = await asyncio.to_thread(self._write, filename, blob.data)
        logger.info(f"Saved {blob.size} bytes of {blob.mime_type} audio to {path}")
        return path
