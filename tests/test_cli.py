"""Tests for the scribe command-line client."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from scribed.cli import cli, format_history, format_status
from scribed.ipc_models import (
    AckResponse,
    ErrorResponse,
    HistoryItemModel,
    ResponseWrapper,
    SavedResponse,
    SessionStateModel,
    StatusResponse,
)
from scribed.state import InputMode


@pytest.fixture
def status_model():
    return SessionStateModel(
        mode=InputMode.RECORD,
        recorder_state="inactive",
        loading=False,
        transcription="hello world",
        history=[
            HistoryItemModel(text="hello world", name="recording.webm"),
            HistoryItemModel(text="earlier", name="talk.wav"),
        ],
    )


@pytest.fixture
def send():
    """Patch the socket round trip."""
    with patch("scribed.cli.send_command", new_callable=AsyncMock) as mock_send:
        mock_send.return_value = ResponseWrapper(root=AckResponse())
        yield mock_send


def run(*args):
    return CliRunner().invoke(cli, ["--socket", "/tmp/test.sock", *args])


def test_status(send, status_model):
    send.return_value = ResponseWrapper(root=StatusResponse(status=status_model))

    result = run("status")

    assert result.exit_code == 0
    assert "Mode: record" in result.output
    assert "hello world" in result.output
    send.assert_awaited_once_with(Path("/tmp/test.sock"), {"command": "status"})


def test_upload_sends_absolute_path(send, tmp_path):
    audio = tmp_path / "talk.wav"
    audio.touch()

    result = run("upload", str(audio))

    assert result.exit_code == 0
    send.assert_awaited_once_with(
        Path("/tmp/test.sock"), {"command": "upload", "path": str(audio)}
    )


def test_upload_selected_file(send):
    result = run("upload")

    assert result.exit_code == 0
    send.assert_awaited_once_with(Path("/tmp/test.sock"), {"command": "upload"})


def test_error_response_exits_nonzero(send):
    send.return_value = ResponseWrapper(
        root=ErrorResponse(message="Please select an audio file")
    )

    result = run("upload")

    assert result.exit_code == 1
    assert "Please select an audio file" in result.output


def test_daemon_not_running(send):
    send.side_effect = FileNotFoundError()

    result = run("status")

    assert result.exit_code == 1
    assert "Daemon is not running" in result.output


def test_record_stop_toggle(send):
    assert run("record").exit_code == 0
    assert run("stop").exit_code == 0
    assert run("toggle").exit_code == 0

    commands = [call.args[1]["command"] for call in send.await_args_list]
    assert commands == ["start", "stop", "toggle"]


def test_mode(send):
    result = run("mode", "record")

    assert result.exit_code == 0
    send.assert_awaited_once_with(
        Path("/tmp/test.sock"), {"command": "mode", "mode": "record"}
    )


def test_mode_rejects_unknown(send):
    result = run("mode", "dictate")

    assert result.exit_code == 2
    send.assert_not_awaited()


def test_save_with_options(send):
    send.return_value = ResponseWrapper(root=SavedResponse(path="/dl/talk.wav.txt"))

    result = run("save", "--index", "1", "--filename", "talk.wav.txt")

    assert result.exit_code == 0
    assert "Saved to /dl/talk.wav.txt" in result.output
    send.assert_awaited_once_with(
        Path("/tmp/test.sock"),
        {"command": "save_text", "filename": "talk.wav.txt", "index": 1},
    )


def test_download_without_recording(send):
    send.return_value = ResponseWrapper(root=SavedResponse(path=None))

    result = run("download")

    assert result.exit_code == 0
    assert "Nothing to save." in result.output


def test_history(send, status_model):
    send.return_value = ResponseWrapper(root=StatusResponse(status=status_model))

    result = run("history")

    assert result.exit_code == 0
    assert "[0] recording.webm: hello world" in result.output
    assert "[1] talk.wav: earlier" in result.output


def test_delete_clear_shutdown(send):
    assert run("delete").exit_code == 0
    assert run("clear-history").exit_code == 0
    assert run("shutdown").exit_code == 0

    commands = [call.args[1]["command"] for call in send.await_args_list]
    assert commands == ["delete", "clear_history", "shutdown"]


def test_format_status_loading(status_model):
    status_model.loading = True
    status_model.recording_bytes = 1500
    status_model.recording_mime_type = "audio/webm"

    text = format_status(status_model)

    assert "Transcribing..." in text
    assert "Recording: 1500 bytes (audio/webm)" in text


def test_format_history_empty(status_model):
    status_model.history = []
    assert format_history(status_model) == "No transcriptions yet."
