"""Tests for the ffmpeg microphone capture."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from scribed.audio_capture import FFmpegCapture, normalize_mime_type
from scribed.config import RecorderConfig
from scribed.exceptions import PermissionDenied, RecordingTooShort
from scribed.state import RecorderStateEnum

ENCODERS_WITH_OPUS = b" A....D libopus    libopus Opus\n A....D libvorbis  libvorbis\n"
ENCODERS_WITHOUT_OPUS = b" A....D libvorbis  libvorbis\n"


@pytest.fixture
def config():
    """Recorder config that does not wait for ffmpeg to fail."""
    return RecorderConfig(startup_grace_s=0)


@pytest_asyncio.fixture
async def audio_capture(config):
    """Create an FFmpegCapture instance with a known encoder list."""
    capture = FFmpegCapture(config)
    capture._encoders = ENCODERS_WITH_OPUS.decode()
    yield capture
    # Ensure cleanup if a task is running
    if capture._reader_task and not capture._reader_task.done():
        capture._reader_task.cancel()
    if capture._stderr_task and not capture._stderr_task.done():
        capture._stderr_task.cancel()


def make_process(chunks):
    """Create a mock ffmpeg process that emits the given chunks then EOF."""
    process = AsyncMock()
    process.pid = 1234
    process.returncode = None

    # terminate() and kill() are sync methods
    process.terminate = MagicMock()
    process.kill = MagicMock()

    process.stdout = AsyncMock(spec=asyncio.StreamReader)
    process.stdout.read.side_effect = list(chunks) + [b""]
    process.stderr = AsyncMock(spec=asyncio.StreamReader)
    process.stderr.read.return_value = b""
    return process


def test_normalize_mime_type():
    assert normalize_mime_type("Audio/WebM; codecs=opus") == "audio/webm;codecs=opus"


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_start_success(mock_create_subprocess, audio_capture):
    """start() spawns ffmpeg with the negotiated opus encoder."""
    process = make_process([b"a" * 100])
    mock_create_subprocess.return_value = process

    await audio_capture.start()

    mock_create_subprocess.assert_called_once_with(
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "pulse",
        "-i",
        "default",
        "-c:a",
        "libopus",
        "-f",
        "webm",
        "-",
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    assert audio_capture.state == RecorderStateEnum.RECORDING
    assert audio_capture.mime_type == "audio/webm;codecs=opus"
    assert audio_capture._reader_task is not None


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_stop_finalizes_blob(mock_create_subprocess, audio_capture):
    """stop() joins the chunks in order into one blob and clears the buffer."""
    process = make_process([b"a" * 700, b"b" * 800])
    mock_create_subprocess.return_value = process

    await audio_capture.start()
    await asyncio.sleep(0.01)
    blob = await audio_capture.stop()

    process.terminate.assert_called_once()
    assert blob.size == 1500
    assert blob.data == b"a" * 700 + b"b" * 800
    assert blob.mime_type == "audio/webm;codecs=opus"
    assert audio_capture.state == RecorderStateEnum.INACTIVE
    assert audio_capture._chunks == []


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_stop_rejects_short_recording(mock_create_subprocess, audio_capture):
    """A blob under the minimum size raises RecordingTooShort carrying the blob."""
    mock_create_subprocess.return_value = make_process([b"x" * 500])

    await audio_capture.start()
    await asyncio.sleep(0.01)

    with pytest.raises(RecordingTooShort) as exc_info:
        await audio_capture.stop()

    assert exc_info.value.blob.size == 500
    assert audio_capture.state == RecorderStateEnum.INACTIVE


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_start_while_running(mock_create_subprocess, audio_capture):
    """Calling start() while recording is a no-op."""
    mock_create_subprocess.return_value = make_process([b"a" * 10])

    await audio_capture.start()
    mock_create_subprocess.assert_called_once()

    await audio_capture.start()
    mock_create_subprocess.assert_called_once()


@pytest.mark.asyncio
async def test_stop_when_not_running(audio_capture):
    """Calling stop() when not recording returns None."""
    assert await audio_capture.stop() is None
    assert audio_capture.state == RecorderStateEnum.INACTIVE


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg"))
async def test_ffmpeg_not_found(mock_create_subprocess, audio_capture):
    """A missing ffmpeg binary is reported as PermissionDenied."""
    with pytest.raises(PermissionDenied, match="not installed"):
        await audio_capture.start()

    assert audio_capture.state == RecorderStateEnum.INACTIVE


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_device_refused(mock_create_subprocess, audio_capture):
    """ffmpeg exiting right away means the microphone is unavailable."""
    process = make_process([])
    process.returncode = 1
    process.stderr.read.return_value = b"default: Connection refused"
    mock_create_subprocess.return_value = process

    with pytest.raises(PermissionDenied, match="Connection refused"):
        await audio_capture.start()

    assert audio_capture.state == RecorderStateEnum.INACTIVE
    assert audio_capture._reader_task is None


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_negotiate_prefers_opus(mock_create_subprocess, config):
    listing = AsyncMock()
    listing.communicate.return_value = (ENCODERS_WITH_OPUS, b"")
    mock_create_subprocess.return_value = listing
    capture = FFmpegCapture(config)

    assert await capture.negotiate_mime_type() == "audio/webm;codecs=opus"
    # The encoder listing is cached
    assert await capture.negotiate_mime_type() == "audio/webm;codecs=opus"
    mock_create_subprocess.assert_called_once()


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_negotiate_falls_back_to_webm(mock_create_subprocess, config):
    listing = AsyncMock()
    listing.communicate.return_value = (ENCODERS_WITHOUT_OPUS, b"")
    mock_create_subprocess.return_value = listing
    capture = FFmpegCapture(config)

    assert await capture.negotiate_mime_type() == "audio/webm"


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg"))
async def test_negotiate_without_ffmpeg(mock_create_subprocess, config):
    capture = FFmpegCapture(config)
    assert await capture.negotiate_mime_type() == "audio/webm"


@pytest.mark.asyncio
async def test_negotiate_skips_unknown_formats():
    capture = FFmpegCapture(
        RecorderConfig(preferred_mime_types=["audio/mp4", "audio/webm"])
    )
    assert await capture.negotiate_mime_type() == "audio/webm"


@pytest.mark.asyncio
@patch("asyncio.create_subprocess_exec")
async def test_stderr_drained_while_recording(mock_create_subprocess, audio_capture):
    """ffmpeg diagnostics are read continuously so the pipe cannot fill up."""
    process = make_process([b"a" * 1200])
    process.stderr.read.side_effect = [b"[pulse] buffer underrun\n"] * 50 + [b""]
    mock_create_subprocess.return_value = process

    await audio_capture.start()
    assert audio_capture._stderr_task is not None
    await asyncio.sleep(0.01)

    assert process.stderr.read.await_count == 51
    assert audio_capture._stderr_task.done()

    blob = await audio_capture.stop()
    assert blob.size == 1200
    assert audio_capture._stderr_task is None
