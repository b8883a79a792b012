"""Transcription session: the operations a user can trigger."""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from .audio_capture import FFmpegCapture
from .config import OutputConfig
from .exceptions import (
    EmptyResult,
    NoFileSelected,
    NothingToSave,
    PermissionDenied,
    RecordingTooShort,
    TransmissionFailure,
)
from .models import AudioBlob, TranscriptionRequest, TranscriptionResult
from .output_handler import FileExporter
from .state import InputMode, RecorderStateEnum, SessionState, SessionStateManager
from .transcriber import TranscriptionClient

logger = logging.getLogger(__name__)

# User-visible warnings shown in place of a transcript
MSG_ALLOW_MICROPHONE = "Please allow microphone access."
MSG_RECORDING_TOO_SHORT = "Recording too short."
MSG_TRANSCRIPTION_FAILED = "Failed to transcribe. Try again."
MSG_COULD_NOT_PROCESS = "Could not process audio, please try again."


class TranscriptionSession:
    """Ties the recorder, transcription client and exporter to one session state."""

    def __init__(
        self,
        state_manager: SessionStateManager,
        audio_capture: FFmpegCapture,
        client: TranscriptionClient,
        exporter: FileExporter,
        output_config: OutputConfig,
    ):
        """Initialize the session.

        Args:
            state_manager: Owner of the session state.
            audio_capture: Recording controller for the microphone.
            client: Client for the transcription endpoint.
            exporter: Writes saved text and audio.
            output_config: Default export file names.
        """
        self.state_manager = state_manager
        self.audio_capture = audio_capture
        self.client = client
        self.exporter = exporter
        self.output_config = output_config

    def snapshot(self) -> SessionState:
        return self.state_manager.state

    def set_mode(self, mode: InputMode) -> None:
        logger.info(f"Switching to {mode.value} mode")
        self.state_manager.set_mode(mode)

    def select_file(self, path: Optional[Path]) -> None:
        """Remember the file the next upload will use."""
        self.state_manager.set_selected_file(path)

    # -- upload --

    async def submit_upload(
        self, path: Optional[Path] = None
    ) -> Optional[TranscriptionResult]:
        """Transcribe an audio file.

        Args:
            path: File to upload; defaults to the selected file.

        Returns:
            The transcription result, or None if it failed.

        Raises:
            NoFileSelected: If there is no file to upload.
        """
        path = path or self.state_manager.state.selected_file
        if path is None:
            raise NoFileSelected()
        if not path.is_file():
            raise NoFileSelected(f"Audio file not found: {path}")

        payload = await asyncio.to_thread(path.read_bytes)
        content_type, _ = mimetypes.guess_type(path.name)
        request = TranscriptionRequest(
            payload=payload,
            filename=path.name,
            content_type=content_type or "application/octet-stream",
        )
        return await self.send_to_transcription(request)

    # -- recording --

    async def start_recording(self) -> None:
        """Start a microphone recording.

        A refused microphone is reported in the transcription text.
        """
        self.state_manager.set_transcription("")
        self.state_manager.set_recording(None)

        try:
            await self.audio_capture.start()
        except PermissionDenied as e:
            logger.error(f"Microphone access denied: {e.reason}")
            self.state_manager.set_transcription(MSG_ALLOW_MICROPHONE)
        finally:
            self.state_manager.set_recorder_state(self.audio_capture.state)

    async def stop_recording(self) -> Optional[TranscriptionResult]:
        """Stop recording and transcribe the result.

        Returns:
            The transcription result, or None if nothing was transcribed.
        """
        if self.audio_capture.state != RecorderStateEnum.RECORDING:
            logger.warning("Stop requested but no recording is active")
            return None

        self.state_manager.set_recorder_state(RecorderStateEnum.FINALIZING)
        try:
            blob = await self.audio_capture.stop()
        except RecordingTooShort as e:
            self.state_manager.set_recording(e.blob)
            self.state_manager.set_transcription(MSG_RECORDING_TOO_SHORT)
            return None
        finally:
            self.state_manager.set_recorder_state(self.audio_capture.state)

        if blob is None:
            return None

        self.state_manager.set_recording(blob)
        return await self.submit_recording(blob)

    async def toggle_recording(self) -> Optional[TranscriptionResult]:
        """Start recording when idle, otherwise stop and transcribe."""
        if self.audio_capture.state == RecorderStateEnum.INACTIVE:
            await self.start_recording()
            return None
        return await self.stop_recording()

    async def submit_recording(self, blob: AudioBlob) -> Optional[TranscriptionResult]:
        """Transcribe a finalized recording."""
        request = TranscriptionRequest(
            payload=blob.data,
            filename=f"recording.{blob.subtype}",
            content_type=blob.mime_type,
        )
        return await self.send_to_transcription(request)

    # -- submission --

    async def send_to_transcription(
        self, request: TranscriptionRequest
    ) -> Optional[TranscriptionResult]:
        """Submit a request and record its outcome in the session state.

        Failures are shown as warning text and never raised.

        Args:
            request: Audio to transcribe.

        Returns:
            The transcription result, or None on failure or empty transcript.
        """
        self.state_manager.set_loading(True)
        self.state_manager.set_transcription("")

        try:
            transcript = await self.client.transcribe(request)
        except TransmissionFailure as e:
            logger.error(f"Error transcribing audio: {e}")
            self.state_manager.set_transcription(MSG_TRANSCRIPTION_FAILED)
            return None
        except EmptyResult:
            self.state_manager.set_transcription(MSG_COULD_NOT_PROCESS)
            return None
        finally:
            self.state_manager.set_loading(False)

        result = TranscriptionResult(text=transcript, source_filename=request.filename)
        self.state_manager.set_transcription(transcript)
        self.state_manager.add_result(result)
        return result

    # -- export --

    async def save_text(
        self,
        text: Optional[str] = None,
        filename: Optional[str] = None,
        index: Optional[int] = None,
    ) -> Path:
        """Save a transcript as a text file.

        Args:
            text: Text to save; defaults to the current transcription.
            filename: File name; defaults to the configured transcript name.
            index: Save this history entry instead, named after its source.

        Returns:
            The path written.

        Raises:
            NothingToSave: If there is no text or the index is out of range.
        """
        if index is not None:
            history = self.state_manager.history
            if not 0 <= index < len(history):
                raise NothingToSave(f"No history entry at index {index}")
            item = history[index]
            text = item.text
            filename = filename or f"{item.source_filename}.txt"

        if text is None:
            text = self.state_manager.state.transcription
        if not text:
            raise NothingToSave("There is no transcription to save")

        return await self.exporter.save_text(
            text, filename or self.output_config.text_filename
        )

    async def download_audio(self) -> Optional[Path]:
        """Save the held recording; a no-op when there is none."""
        blob = self.state_manager.state.recording
        if blob is None:
            logger.debug("No recording held, nothing to download")
            return None
        return await self.exporter.save_audio(blob, self.output_config.audio_filename)

    def delete_current(self) -> None:
        """Discard the displayed transcription and the held recording."""
        self.state_manager.set_transcription("")
        self.state_manager.set_recording(None)

    def clear_history(self) -> None:
        self.state_manager.clear_history()
