"""State management for the scribed session."""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from .models import AudioBlob, TranscriptionResult


class RecorderStateEnum(str, Enum):
    """Possible states of the recording controller."""

    INACTIVE = "inactive"
    RECORDING = "recording"
    FINALIZING = "finalizing"


class InputMode(str, Enum):
    """Where audio for the next transcription comes from."""

    UPLOAD = "upload"
    RECORD = "record"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of everything the user sees."""

    mode: InputMode = InputMode.UPLOAD
    recorder_state: RecorderStateEnum = RecorderStateEnum.INACTIVE
    loading: bool = False
    transcription: str = ""
    recording: Optional[AudioBlob] = None
    selected_file: Optional[Path] = None
    history: Tuple[TranscriptionResult, ...] = field(default_factory=tuple)


class SessionStateManager:
    """Owns the session state and notifies observers on every change."""

    def __init__(self):
        """Initialize state manager with an empty session."""
        self._state = SessionState()
        self._observers: List[Callable[[SessionState], Any]] = []

    @property
    def state(self) -> SessionState:
        """Get the current session snapshot."""
        return self._state

    @property
    def history(self) -> Tuple[TranscriptionResult, ...]:
        return self._state.history

    def add_observer(self, observer: Callable[[SessionState], Any]) -> None:
        """Add an observer callback for state changes.

        The callback receives the new session snapshot.
        """
        self._observers.append(observer)

    def _notify_observers(self) -> None:
        """Notify all observers of the current state."""
        for observer in self._observers:
            try:
                observer(self._state)
            except Exception:
                # Don't let observer errors break state management
                pass

    def _update(self, **changes: Any) -> None:
        new_state = replace(self._state, **changes)
        if new_state != self._state:
            self._state = new_state
            self._notify_observers()

    def set_mode(self, mode: InputMode) -> None:
        """Set the input mode.

        Raises:
            TypeError: If the provided mode is not an InputMode.
        """
        if not isinstance(mode, InputMode):
            raise TypeError(f"Mode must be an InputMode, got {type(mode)}")
        self._update(mode=mode)

    def set_recorder_state(self, recorder_state: RecorderStateEnum) -> None:
        if not isinstance(recorder_state, RecorderStateEnum):
            raise TypeError(
                f"State must be a RecorderStateEnum, got {type(recorder_state)}"
            )
        self._update(recorder_state=recorder_state)

    def set_loading(self, loading: bool) -> None:
        self._update(loading=loading)

    def set_transcription(self, text: str) -> None:
        self._update(transcription=text)

    def set_recording(self, blob: Optional[AudioBlob]) -> None:
        self._update(recording=blob)

    def set_selected_file(self, path: Optional[Path]) -> None:
        self._update(selected_file=path)

    def add_result(self, result: TranscriptionResult) -> None:
        """Prepend a result to the history (most recent first)."""
        self._update(history=(result,) + self._state.history)

    def clear_history(self) -> None:
        self._update(history=())
