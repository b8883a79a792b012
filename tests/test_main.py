"""Tests for main daemon module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scribed.config import AppConfig, BackendConfig
from scribed.main import main


@pytest.fixture
def mock_config():
    """Create a mock config."""
    with patch("scribed.main.load_config") as mock_load:
        config = AppConfig(backend=BackendConfig(base_url="http://stt.test"))
        mock_load.return_value = config
        yield config


@pytest.fixture
def mock_handlers():
    """Create mock handlers."""
    # Create a real event for shutdown testing
    shutdown_event = asyncio.Event()

    with (
        patch("scribed.main.IPCServer") as mock_ipc,
        patch("scribed.main.FFmpegCapture") as mock_audio,
        patch("scribed.main.TranscriptionClient") as mock_client,
        patch("scribed.main.setup_logging") as mock_logging,
        patch("scribed.main.asyncio.Event") as mock_event,
    ):
        mock_event.return_value = shutdown_event

        ipc = AsyncMock()
        ipc._server = object()
        client = AsyncMock()

        mock_ipc.return_value = ipc
        mock_audio.return_value = MagicMock()
        mock_client.return_value = client

        yield {
            "ipc": ipc,
            "client": client,
            "ipc_class": mock_ipc,
            "client_class": mock_client,
            "logging": mock_logging,
            "shutdown_event": shutdown_event,
        }


@pytest.mark.asyncio
async def test_main_startup_shutdown(mock_config, mock_handlers):
    """Test normal startup and shutdown flow."""
    main_task = asyncio.create_task(main())

    try:
        await asyncio.sleep(0.1)
        mock_handlers["shutdown_event"].set()

        exit_code = await asyncio.wait_for(main_task, timeout=1.0)

        assert exit_code == 0
        mock_handlers["client_class"].assert_called_once_with(
            "http://stt.test/transcribe", timeout=None
        )
        mock_handlers["ipc"].start.assert_awaited_once()
        mock_handlers["ipc"].stop.assert_awaited_once()
        mock_handlers["client"].aclose.assert_awaited_once()
    finally:
        if not main_task.done():
            main_task.cancel()
            await asyncio.sleep(0.1)


@pytest.mark.asyncio
async def test_main_config_error(mock_handlers):
    """Test that an unusable config exits before anything starts."""
    with patch("scribed.main.load_config", side_effect=ValueError("bad config")):
        exit_code = await main()

    assert exit_code == 1
    mock_handlers["ipc_class"].assert_not_called()
    mock_handlers["logging"].assert_not_called()


@pytest.mark.asyncio
async def test_main_no_endpoint(mock_handlers):
    """Test that a deployed host without an endpoint refuses to start."""
    config = AppConfig(backend=BackendConfig(host="kiosk-7"))
    with (
        patch("scribed.main.load_config", return_value=config),
        patch.dict("os.environ", {}, clear=True),
    ):
        exit_code = await main()

    assert exit_code == 1
    mock_handlers["ipc_class"].assert_not_called()


@pytest.mark.asyncio
async def test_main_startup_error(mock_config, mock_handlers):
    """Test handling of startup error."""
    mock_handlers["ipc"].start.side_effect = RuntimeError("Test error")

    exit_code = await main()

    assert exit_code == 1
    mock_handlers["ipc"].stop.assert_awaited_once()
    mock_handlers["client"].aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_endpoint_without_scheme(mock_handlers):
    """Test that a scheme-less backend URL refuses to start."""
    config = AppConfig(backend=BackendConfig(base_url="stt.example.org"))
    with (
        patch("scribed.main.load_config", return_value=config),
        patch.dict("os.environ", {}, clear=True),
    ):
        exit_code = await main()

    assert exit_code == 1
    mock_handlers["ipc_class"].assert_not_called()
