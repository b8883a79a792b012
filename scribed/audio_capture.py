"""Microphone capture module."""

import asyncio
import logging
from typing import List, Optional

from .config import RecorderConfig
from .exceptions import PermissionDenied, RecordingTooShort
from .models import AudioBlob
from .state import RecorderStateEnum

logger = logging.getLogger(__name__)

# Define a buffer size for reading from stdout
BUFFER_SIZE = 4096

# ffmpeg encoder used for each supported recording format
CODEC_ENCODERS = {
    "audio/webm;codecs=opus": "libopus",
    "audio/webm": "libvorbis",
}

# Formats that are assumed to be available without checking ffmpeg
BASELINE_MIME_TYPES = {"audio/webm"}


def normalize_mime_type(mime_type: str) -> str:
    """Lowercase a MIME type and strip whitespace around parameters."""
    parts = [part.strip().lower() for part in mime_type.split(";")]
    return ";".join(part for part in parts if part)


class FFmpegCapture:
    """Records the microphone using an ffmpeg subprocess."""

    def __init__(self, config: RecorderConfig):
        """Initialize audio capture.

        Args:
            config: The recorder configuration.
        """
        self.config = config

        # Internal state
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._chunks: List[bytes] = []
        self._state = RecorderStateEnum.INACTIVE
        self._mime_type: Optional[str] = None
        self._encoders: Optional[str] = None

    @property
    def state(self) -> RecorderStateEnum:
        return self._state

    @property
    def mime_type(self) -> Optional[str]:
        """MIME type negotiated for the current or last recording."""
        return self._mime_type

    async def _list_encoders(self) -> str:
        """Return ffmpeg's encoder listing, cached after the first call."""
        if self._encoders is not None:
            return self._encoders

        try:
            process = await asyncio.create_subprocess_exec(
                self.config.ffmpeg_path,
                "-hide_banner",
                "-encoders",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await process.communicate()
            self._encoders = stdout.decode("utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not list ffmpeg encoders: {e}")
            self._encoders = ""

        return self._encoders

    async def negotiate_mime_type(self) -> str:
        """Pick the first preferred recording format ffmpeg can produce.

        Returns:
            The negotiated MIME type.
        """
        encoders = None
        for candidate in self.config.preferred_mime_types:
            mime_type = normalize_mime_type(candidate)
            if mime_type in BASELINE_MIME_TYPES:
                return mime_type

            encoder = CODEC_ENCODERS.get(mime_type)
            if encoder is None:
                logger.debug(f"Skipping unsupported recording format: {candidate}")
                continue

            if encoders is None:
                encoders = await self._list_encoders()
            if encoder in encoders:
                return mime_type
            logger.debug(f"ffmpeg lacks encoder {encoder}, skipping {mime_type}")

        logger.warning("No preferred recording format available, using audio/webm")
        return "audio/webm"

    def _build_command(self, mime_type: str) -> List[str]:
        return [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            self.config.input_format,
            "-i",
            self.config.input_device,
            "-c:a",
            CODEC_ENCODERS[mime_type],
            "-f",
            "webm",
            "-",
        ]

    async def _read_audio_stream(self) -> None:
        """Reads encoded audio chunks from the subprocess stdout."""
        if not self._process or not self._process.stdout:
            logger.error("Audio process or stdout not available for reading.")
            return

        logger.info("Audio reader task started.")
        try:
            while True:
                data = await self._process.stdout.read(BUFFER_SIZE)
                if not data:
                    logger.info("ffmpeg stdout stream ended.")
                    break
                self._chunks.append(data)
        except asyncio.CancelledError:
            logger.info("Audio reader task cancelled.")
        except Exception as e:
            logger.exception(f"Error in audio reader task: {e}")
        finally:
            logger.info("Audio reader task finished.")

    async def start(self) -> None:
        """Start recording from the microphone.

        Raises:
            PermissionDenied: If ffmpeg cannot be run or the device is refused.
        """
        if self._state != RecorderStateEnum.INACTIVE:
            logger.warning("Audio capture is already running.")
            return

        mime_type = await self.negotiate_mime_type()
        command = self._build_command(mime_type)
        logger.info(f"Starting audio capture as {mime_type}")
        self._chunks = []

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error(
                f"'{self.config.ffmpeg_path}' command not found. Please ensure ffmpeg is installed."
            )
            raise PermissionDenied("ffmpeg is not installed", cause=e) from e
        except PermissionError as e:
            logger.error(f"Not allowed to run '{self.config.ffmpeg_path}'.")
            raise PermissionDenied("ffmpeg could not be executed", cause=e) from e

        # A refused or missing device makes ffmpeg exit right away
        await asyncio.sleep(self.config.startup_grace_s)
        if process.returncode is not None:
            stderr = b""
            if process.stderr:
                stderr = await process.stderr.read()
            reason = stderr.decode("utf-8", errors="replace").strip() or (
                f"ffmpeg exited with code {process.returncode}"
            )
            logger.error(f"Microphone capture failed to start: {reason}")
            raise PermissionDenied(reason)

        logger.info(f"Started ffmpeg process with PID: {process.pid}")
        self._process = process
        self._mime_type = mime_type
        self._state = RecorderStateEnum.RECORDING
        self._reader_task = asyncio.create_task(self._read_audio_stream())
        self._stderr_task = asyncio.create_task(self._log_stderr())

    async def _log_stderr(self) -> None:
        """Keep reading ffmpeg diagnostics so its stderr pipe never fills."""
        stderr = self._process.stderr if self._process else None
        if stderr is None:
            return

        try:
            while True:
                data = await stderr.read(BUFFER_SIZE)
                if not data:
                    break
                logger.debug(f"ffmpeg: {data.decode('utf-8', errors='replace').strip()}")
        except asyncio.CancelledError:
            logger.debug("ffmpeg stderr task cancelled.")
        except Exception as e:
            logger.warning(f"Error reading ffmpeg stderr: {e}")

    async def _terminate_process(self) -> None:
        if not self._process or self._process.returncode is not None:
            return
        try:
            # SIGTERM lets ffmpeg write the container trailer before exiting
            self._process.terminate()
            await asyncio.wait_for(self._process.wait(), timeout=2.0)
            logger.info("ffmpeg process terminated.")
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for ffmpeg to terminate, killing.")
            self._process.kill()
        except ProcessLookupError:
            pass  # Process already finished
        except Exception as e:
            logger.exception(f"Error stopping ffmpeg process: {e}")

    async def _drain_reader(self) -> None:
        if not self._reader_task or self._reader_task.done():
            return
        try:
            await asyncio.wait_for(self._reader_task, timeout=2.0)
        except asyncio.TimeoutError:
            logger.warning("Timeout draining ffmpeg output, cancelling reader.")
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                logger.debug("Audio reader task successfully cancelled.")

    async def _stop_stderr_task(self) -> None:
        if not self._stderr_task or self._stderr_task.done():
            return
        try:
            await asyncio.wait_for(self._stderr_task, timeout=1.0)
        except asyncio.TimeoutError:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass

    async def stop(self) -> Optional[AudioBlob]:
        """Stop recording and return the finalized audio.

        Returns:
            The recorded audio, or None if no recording was running.

        Raises:
            RecordingTooShort: If the recording is below the minimum size.
        """
        if self._state != RecorderStateEnum.RECORDING:
            logger.warning("Audio capture is not running.")
            return None

        logger.info("Stopping audio capture.")
        self._state = RecorderStateEnum.FINALIZING

        try:
            await self._terminate_process()
            await self._drain_reader()
            await self._stop_stderr_task()

            logger.info(f"Finalizing {len(self._chunks)} recorded audio chunks.")
            blob = AudioBlob(
                data=b"".join(self._chunks), mime_type=self._mime_type or "audio/webm"
            )
        finally:
            self._chunks = []
            self._process = None
            self._reader_task = None
            self._stderr_task = None
            self._state = RecorderStateEnum.INACTIVE

        logger.info(f"Audio capture stopped ({blob.size} bytes).")
        if blob.size < self.config.min_size_bytes:
            logger.warning(
                f"Recording of {blob.size} bytes is below the "
                f"{self.config.min_size_bytes} byte minimum."
            )
            raise RecordingTooShort(blob, self.config.min_size_bytes)

        return blob
