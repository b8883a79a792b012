"""IPC command and response models for the scribed daemon."""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel

from .state import InputMode, SessionState


class ModeCommand(BaseModel):
    """Command to switch between upload and record mode."""

    command: Literal["mode"] = "mode"
    mode: InputMode


class SelectCommand(BaseModel):
    """Command to choose the file for the next upload."""

    command: Literal["select"] = "select"
    path: Optional[str] = None


class UploadCommand(BaseModel):
    """Command to transcribe a file (or the selected one)."""

    command: Literal["upload"] = "upload"
    path: Optional[str] = None


class StartCommand(BaseModel):
    """Command to start recording."""

    command: Literal["start"] = "start"


class StopCommand(BaseModel):
    """Command to stop recording and transcribe it."""

    command: Literal["stop"] = "stop"


class ToggleCommand(BaseModel):
    """Command to toggle recording."""

    command: Literal["toggle"] = "toggle"


class StatusCommand(BaseModel):
    """Command to get the session status."""

    command: Literal["status"] = "status"


class SaveTextCommand(BaseModel):
    """Command to save the transcription or a history entry as text."""

    command: Literal["save_text"] = "save_text"
    filename: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)


class DownloadAudioCommand(BaseModel):
    """Command to save the held recording."""

    command: Literal["download_audio"] = "download_audio"


class DeleteCommand(BaseModel):
    """Command to clear the transcription and held recording."""

    command: Literal["delete"] = "delete"


class ClearHistoryCommand(BaseModel):
    """Command to empty the history."""

    command: Literal["clear_history"] = "clear_history"


class ShutdownCommand(BaseModel):
    """Command to shut down the daemon."""

    command: Literal["shutdown"] = "shutdown"


class SubscribeCommand(BaseModel):
    """Command to subscribe to state change events."""

    command: Literal["subscribe"] = "subscribe"


# Use discriminated union for command parsing
DaemonCommand = Annotated[
    Union[
        ModeCommand,
        SelectCommand,
        UploadCommand,
        StartCommand,
        StopCommand,
        ToggleCommand,
        StatusCommand,
        SaveTextCommand,
        DownloadAudioCommand,
        DeleteCommand,
        ClearHistoryCommand,
        ShutdownCommand,
        SubscribeCommand,
    ],
    Field(discriminator="command"),
]


# Wrapper for easy command parsing using RootModel
class CommandWrapper(RootModel[DaemonCommand]):
    """Wrapper model for parsing incoming commands."""

    root: DaemonCommand


class HistoryItemModel(BaseModel):
    """One past transcription."""

    text: str
    name: str


class SessionStateModel(BaseModel):
    """Model representing the session state."""

    mode: InputMode
    recorder_state: str
    loading: bool
    transcription: str
    selected_file: Optional[str] = None
    recording_bytes: Optional[int] = None
    recording_mime_type: Optional[str] = None
    history: List[HistoryItemModel] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionStateModel":
        recording = state.recording
        return cls(
            mode=state.mode,
            recorder_state=state.recorder_state.value,
            loading=state.loading,
            transcription=state.transcription,
            selected_file=str(state.selected_file) if state.selected_file else None,
            recording_bytes=recording.size if recording else None,
            recording_mime_type=recording.mime_type if recording else None,
            history=[
                HistoryItemModel(text=item.text, name=item.source_filename)
                for item in state.history
            ],
        )


class AckResponse(BaseModel):
    """Simple acknowledgment response."""

    response_type: Literal["ack"] = "ack"


class SavedResponse(BaseModel):
    """Response naming a file written by the daemon."""

    response_type: Literal["saved"] = "saved"
    path: Optional[str] = None


class StatusResponse(BaseModel):
    """Response containing the session status."""

    response_type: Literal["status"] = "status"
    status: SessionStateModel


class ErrorResponse(BaseModel):
    """Response indicating an error."""

    response_type: Literal["error"] = "error"
    message: str


class StateNotification(BaseModel):
    """Notification broadcast when the session state changes."""

    response_type: Literal["state_change"] = "state_change"
    status: SessionStateModel


# Use discriminated union for response serialization
DaemonResponse = Annotated[
    Union[AckResponse, SavedResponse, StatusResponse, ErrorResponse, StateNotification],
    Field(discriminator="response_type"),
]


# Wrapper for easy response serialization using RootModel
class ResponseWrapper(RootModel[DaemonResponse]):
    """Wrapper model for serializing outgoing responses."""

    root: DaemonResponse
