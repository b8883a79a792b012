"""Main entry point for the scribed daemon."""

import asyncio
import logging
import signal
import sys
from typing import NoReturn

from .audio_capture import FFmpegCapture
from .config import load_config
from .ipc_server import IPCServer
from .logging_setup import setup_logging
from .output_handler import FileExporter
from .session import TranscriptionSession
from .state import SessionStateManager
from .transcriber import TranscriptionClient


logger = logging.getLogger(__name__)

__all__ = ["run"]  # Export the run function


async def main() -> int:
    """Main daemon function.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    # Load configuration first
    try:
        config = load_config()
        endpoint = config.backend.resolve_endpoint()
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Setup logging
    setup_logging(config.daemon.log_level, config.daemon.computed_log_file)
    logger.info("Starting scribed daemon...")
    logger.info(f"Transcription endpoint: {endpoint}")

    shutdown_event = asyncio.Event()

    # Create component instances
    state_manager = SessionStateManager()
    audio_capture = FFmpegCapture(config.recorder)
    client = TranscriptionClient(endpoint, timeout=config.backend.timeout_s)
    exporter = FileExporter(config.output)
    session = TranscriptionSession(
        state_manager, audio_capture, client, exporter, config.output
    )
    ipc_server = IPCServer(config.daemon.computed_socket_path, session, shutdown_event)

    try:
        # Setup signal handlers
        def handle_signal(sig: int) -> None:
            sig_name = signal.Signals(sig).name
            logger.info(f"Received signal {sig_name}, initiating shutdown...")
            shutdown_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

        # Start IPC server to handle user commands
        await ipc_server.start()

        logger.info("Daemon started successfully")

        # Wait for shutdown signal
        await shutdown_event.wait()

        logger.info("Starting graceful shutdown...")

    except Exception:
        logger.exception("Fatal error in daemon startup:")
        return 1

    finally:
        if ipc_server._server:
            await ipc_server.stop()
        await client.aclose()

        logger.info("Daemon shutdown complete")

    return 0


def run() -> NoReturn:
    """Entry point for the daemon."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        # Fallback logger in case of early failure
        logging.basicConfig()
        logger.exception(f"Daemon failed with unhandled exception: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
