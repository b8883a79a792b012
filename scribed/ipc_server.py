"""IPC server implementation using Unix domain sockets."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Set

from pydantic import ValidationError

from .exceptions import ScribeError
from .ipc_models import (
    AckResponse,
    ClearHistoryCommand,
    CommandWrapper,
    DeleteCommand,
    DownloadAudioCommand,
    ErrorResponse,
    ModeCommand,
    ResponseWrapper,
    SavedResponse,
    SaveTextCommand,
    SelectCommand,
    SessionStateModel,
    ShutdownCommand,
    StartCommand,
    StateNotification,
    StatusCommand,
    StatusResponse,
    StopCommand,
    SubscribeCommand,
    ToggleCommand,
    UploadCommand,
)
from .session import TranscriptionSession
from .state import RecorderStateEnum, SessionState

logger = logging.getLogger(__name__)

# Size limit for incoming messages (64KB should be plenty for commands)
MAX_MESSAGE_SIZE = 64 * 1024
MESSAGE_TERMINATOR = b"\n"


class IPCServer:
    """Handles IPC communication over Unix domain socket."""

    def __init__(
        self,
        socket_path: Path,
        session: TranscriptionSession,
        shutdown_event: asyncio.Event,
    ):
        """Initialize the IPC server.

        Args:
            socket_path: Path to the Unix domain socket
            session: The transcription session commands act on
            shutdown_event: Event to signal daemon shutdown
        """
        self.socket_path = socket_path
        self.session = session
        self.shutdown_event = shutdown_event

        self._server: Optional[asyncio.Server] = None
        self._client_tasks: Set[asyncio.Task] = set()
        self._broadcast_tasks: Set[asyncio.Task] = set()
        self._subscribers: Set[asyncio.StreamWriter] = set()

        # Register for state updates
        self.session.state_manager.add_observer(self._on_state_change)

    def _on_state_change(self, state: SessionState) -> None:
        """Handle state change notifications."""
        if not self._subscribers:
            return

        try:
            notification = ResponseWrapper(
                root=StateNotification(status=SessionStateModel.from_state(state))
            )

            # Create tasks for broadcasting to avoid blocking
            task = asyncio.create_task(self._broadcast_notification(notification))
            self._broadcast_tasks.add(task)
            task.add_done_callback(self._broadcast_tasks.discard)
        except Exception as e:
            logger.error(f"Error preparing state notification: {e}")

    async def _broadcast_notification(self, notification: ResponseWrapper) -> None:
        """Broadcast a notification to all subscribers."""
        if not self._subscribers:
            return

        data = notification.model_dump_json().encode("utf-8") + MESSAGE_TERMINATOR

        # Copy set to avoid modification during iteration
        subscribers = list(self._subscribers)

        for writer in subscribers:
            if writer.is_closing():
                self._subscribers.discard(writer)
                continue

            try:
                writer.write(data)
                await writer.drain()
            except Exception as e:
                logger.warning(f"Error broadcasting to subscriber: {e}")
                self._subscribers.discard(writer)

    async def _send_response(
        self, writer: asyncio.StreamWriter, response: ResponseWrapper
    ) -> None:
        """Send a response to a client.

        Args:
            writer: StreamWriter to send through
            response: Response to send
        """
        try:
            response_json = response.model_dump_json()
            writer.write(response_json.encode("utf-8") + MESSAGE_TERMINATOR)
            await writer.drain()
            logger.debug(f"Sent response: {response_json}")
        except Exception as e:
            logger.error(f"Error sending response: {e}")

    def _status_response(self) -> ResponseWrapper:
        state_model = SessionStateModel.from_state(self.session.snapshot())
        return ResponseWrapper(root=StatusResponse(status=state_model))

    async def _handle_upload_command(
        self, writer: asyncio.StreamWriter, command: UploadCommand
    ) -> None:
        """Handle Upload command.

        Args:
            writer: StreamWriter to send response through
            command: Upload command with optional file path
        """
        logger.info(f"Handling Upload command (Path: {command.path})")
        path = Path(command.path).expanduser() if command.path else None
        await self.session.submit_upload(path)
        await self._send_response(writer, self._status_response())

    async def _handle_stop_command(self, writer: asyncio.StreamWriter) -> None:
        """Handle Stop command.

        Args:
            writer: StreamWriter to send response through
        """
        logger.info("Handling Stop command")
        await self.session.stop_recording()
        await self._send_response(writer, self._status_response())

    async def _handle_save_text_command(
        self, writer: asyncio.StreamWriter, command: SaveTextCommand
    ) -> None:
        logger.info(f"Handling SaveText command (Index: {command.index})")
        path = await self.session.save_text(
            filename=command.filename, index=command.index
        )
        await self._send_response(
            writer, ResponseWrapper(root=SavedResponse(path=str(path)))
        )

    async def _handle_download_audio_command(
        self, writer: asyncio.StreamWriter
    ) -> None:
        logger.info("Handling DownloadAudio command")
        path = await self.session.download_audio()
        await self._send_response(
            writer,
            ResponseWrapper(root=SavedResponse(path=str(path) if path else None)),
        )

    async def _release_microphone(self) -> None:
        """Stop a running recording without transcribing it."""
        capture = self.session.audio_capture
        if capture.state != RecorderStateEnum.RECORDING:
            return
        try:
            await capture.stop()
        except ScribeError as e:
            logger.info(f"Discarded unfinished recording: {e}")
        self.session.state_manager.set_recorder_state(capture.state)

    async def _handle_shutdown_command(self, writer: asyncio.StreamWriter) -> None:
        """Handle Shutdown command.

        Args:
            writer: StreamWriter to send response through
        """
        logger.info("Handling Shutdown command")

        await self._release_microphone()

        # Send acknowledgment
        await self._send_response(writer, ResponseWrapper(root=AckResponse()))
        await writer.drain()  # Ensure it's sent

        # Signal shutdown
        self.shutdown_event.set()

    async def _handle_subscribe_command(self, writer: asyncio.StreamWriter) -> bool:
        """Handle Subscribe command.

        Args:
            writer: StreamWriter to subscribe

        Returns:
            True indicating the client is now subscribed
        """
        logger.info("Handling Subscribe command")
        self._subscribers.add(writer)

        # Send initial status immediately
        state_model = SessionStateModel.from_state(self.session.snapshot())
        notification = ResponseWrapper(root=StateNotification(status=state_model))
        await self._send_response(writer, notification)

        return True

    async def _dispatch(self, writer: asyncio.StreamWriter, command) -> bool:
        """Run a parsed command.

        Returns:
            True if connection should be kept alive, False to close it
        """
        if isinstance(command, ModeCommand):
            self.session.set_mode(command.mode)
            await self._send_response(writer, ResponseWrapper(root=AckResponse()))
        elif isinstance(command, SelectCommand):
            path = Path(command.path).expanduser() if command.path else None
            self.session.select_file(path)
            await self._send_response(writer, ResponseWrapper(root=AckResponse()))
        elif isinstance(command, UploadCommand):
            await self._handle_upload_command(writer, command)
        elif isinstance(command, StartCommand):
            logger.info("Handling Start command")
            await self.session.start_recording()
            await self._send_response(writer, self._status_response())
        elif isinstance(command, StopCommand):
            await self._handle_stop_command(writer)
        elif isinstance(command, ToggleCommand):
            logger.info("Handling Toggle command")
            await self.session.toggle_recording()
            await self._send_response(writer, self._status_response())
        elif isinstance(command, StatusCommand):
            logger.debug("Handling Status command")
            await self._send_response(writer, self._status_response())
        elif isinstance(command, SaveTextCommand):
            await self._handle_save_text_command(writer, command)
        elif isinstance(command, DownloadAudioCommand):
            await self._handle_download_audio_command(writer)
        elif isinstance(command, DeleteCommand):
            logger.info("Handling Delete command")
            self.session.delete_current()
            await self._send_response(writer, ResponseWrapper(root=AckResponse()))
        elif isinstance(command, ClearHistoryCommand):
            logger.info("Handling ClearHistory command")
            self.session.clear_history()
            await self._send_response(writer, ResponseWrapper(root=AckResponse()))
        elif isinstance(command, ShutdownCommand):
            await self._handle_shutdown_command(writer)
            return False
        elif isinstance(command, SubscribeCommand):
            await self._handle_subscribe_command(writer)
        else:
            logger.error(f"Unhandled command type: {type(command)}")
            await self._send_response(
                writer,
                ResponseWrapper(root=ErrorResponse(message="Internal server error")),
            )
        return True

    async def _handle_command(self, writer: asyncio.StreamWriter, message: str) -> bool:
        """Parse and handle a command message.

        Args:
            writer: StreamWriter to send responses through
            message: Command message to parse and handle

        Returns:
            True if connection should be kept alive, False to close it
        """
        try:
            command = CommandWrapper.model_validate_json(message)
            logger.debug(f"Parsed command: {command.model_dump_json()}")
            return await self._dispatch(writer, command.root)

        except ValidationError as e:
            logger.error(f"Invalid command format: {e}")
            await self._send_response(
                writer,
                ResponseWrapper(
                    root=ErrorResponse(message=f"Invalid command format: {e}")
                ),
            )
            return True

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            await self._send_response(
                writer,
                ResponseWrapper(
                    root=ErrorResponse(message=f"Invalid JSON format: {e}")
                ),
            )
            return True

        except ScribeError as e:
            logger.warning(f"Command rejected: {e}")
            await self._send_response(
                writer, ResponseWrapper(root=ErrorResponse(message=str(e)))
            )
            return True

        except Exception as e:
            logger.exception("Error handling command")
            await self._send_response(
                writer,
                ResponseWrapper(root=ErrorResponse(message=f"Internal error: {e}")),
            )
            return True

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a client connection.

        Args:
            reader: StreamReader for the client
            writer: StreamWriter for the client
        """
        peer = writer.get_extra_info("peername") or "Unknown"
        logger.info(f"Client connected: {peer}")

        # Create task and add to set
        task = asyncio.current_task()
        assert task is not None  # for type checking
        self._client_tasks.add(task)

        try:
            while True:
                try:
                    # Determine timeout based on subscription status
                    timeout = None if writer in self._subscribers else 5.0

                    # Read a line (command should end with newline)
                    data = await asyncio.wait_for(
                        reader.readuntil(MESSAGE_TERMINATOR), timeout=timeout
                    )

                    if not data:  # EOF
                        logger.info(f"Client disconnected (EOF): {peer}")
                        break

                    if len(data) > MAX_MESSAGE_SIZE:
                        logger.warning(f"Message from {peer} exceeds size limit")
                        break

                    # Remove terminator and decode
                    message = data.rstrip(MESSAGE_TERMINATOR).decode("utf-8")
                    logger.debug(f"Received from {peer}: {message}")

                    # Handle the command
                    keep_alive = await self._handle_command(writer, message)
                    if not keep_alive:
                        break

                except asyncio.TimeoutError:
                    if writer not in self._subscribers:
                        logger.debug(f"Timeout reading from client {peer}")
                        break
                except asyncio.IncompleteReadError:
                    logger.info(f"Client disconnected (incomplete read): {peer}")
                    break
                except asyncio.LimitOverrunError:
                    logger.warning(f"Message from {peer} exceeds stream limit")
                    break
                except ConnectionError as e:
                    logger.warning(f"Connection error with {peer}: {e}")
                    break
                except asyncio.CancelledError:
                    logger.info(f"Client connection cancelled: {peer}")
                    break
                except Exception as e:
                    logger.exception(f"Error handling client {peer}: {e}")
                    break

        finally:
            # Clean up
            logger.info(f"Closing connection with {peer}")
            self._subscribers.discard(writer)
            if not writer.is_closing():
                writer.close()
                try:
                    await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
                except (asyncio.TimeoutError, Exception) as e:
                    logger.warning(f"Error during connection cleanup: {e}")

            self._client_tasks.discard(task)
            logger.debug(f"Connection closed: {peer}")

    async def start(self) -> None:
        """Start the IPC server."""
        if self._server:
            logger.warning("Server already started")
            return

        # Clean up existing socket if needed
        if self.socket_path.exists():
            if self.socket_path.is_socket():
                logger.info(f"Removing existing socket file: {self.socket_path}")
                try:
                    self.socket_path.unlink()
                except OSError as e:
                    logger.error(f"Failed to remove existing socket: {e}")
                    raise
            else:
                logger.error(f"Path exists but is not a socket: {self.socket_path}")
                raise OSError(f"Path exists but is not a socket: {self.socket_path}")

        try:
            # Ensure parent directory exists
            self.socket_path.parent.mkdir(parents=True, exist_ok=True)

            # Start the server
            self._server = await asyncio.start_unix_server(
                self._handle_client,
                path=str(self.socket_path),
            )

            logger.info(f"IPC server listening on {self.socket_path}")

        except Exception as e:
            logger.error(f"Failed to start IPC server: {e}")
            if self.socket_path.exists():
                self.socket_path.unlink(missing_ok=True)
            raise

    async def stop(self) -> None:
        """Stop the IPC server."""
        if not self._server:
            logger.warning("Server not running")
            return

        logger.info("Stopping IPC server...")

        # Explicitly close subscriber connections first to unblock their read loops
        if self._subscribers:
            logger.info(f"Closing {len(self._subscribers)} subscriber connections...")
            for writer in self._subscribers:
                if not writer.is_closing():
                    writer.close()
            self._subscribers.clear()

        for task in self._broadcast_tasks:
            task.cancel()
        if self._broadcast_tasks:
            await asyncio.gather(*self._broadcast_tasks, return_exceptions=True)
            self._broadcast_tasks.clear()

        await self._release_microphone()

        # Close the server
        self._server.close()
        await self._server.wait_closed()
        self._server = None

        # Cancel any active client connections
        if self._client_tasks:
            logger.info(f"Cancelling {len(self._client_tasks)} client tasks...")
            for task in self._client_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._client_tasks, return_exceptions=True)
            self._client_tasks.clear()

        # Clean up socket file
        logger.debug(f"Removing socket file: {self.socket_path}")
        try:
            self.socket_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error removing socket file: {e}")

        logger.info("IPC server stopped")
