"""Command-line client for the scribed daemon."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import click
from pydantic import ValidationError

from .config import get_default_socket_path
from .ipc_models import (
    ErrorResponse,
    ResponseWrapper,
    SavedResponse,
    SessionStateModel,
    StateNotification,
    StatusResponse,
)
from .ipc_server import MESSAGE_TERMINATOR

# Transcription can take a while on the daemon side
DEFAULT_TIMEOUT_S = 300.0


async def send_command(
    socket_path: Path, command: Dict[str, Any], timeout: Optional[float] = DEFAULT_TIMEOUT_S
) -> ResponseWrapper:
    """Send one command to the daemon and parse its reply.

    Args:
        socket_path: Daemon socket.
        command: Command payload.
        timeout: Seconds to wait for the reply.

    Returns:
        The parsed response.
    """
    reader, writer = await asyncio.open_unix_connection(str(socket_path))
    try:
        writer.write(json.dumps(command).encode("utf-8") + MESSAGE_TERMINATOR)
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout=timeout)
        if not line:
            raise ConnectionError("Daemon closed the connection without replying")
        return ResponseWrapper.model_validate_json(line)
    finally:
        writer.close()
        await writer.wait_closed()


async def watch_state(socket_path: Path) -> None:
    """Print every state change until the daemon disconnects."""
    reader, writer = await asyncio.open_unix_connection(str(socket_path))
    try:
        writer.write(json.dumps({"command": "subscribe"}).encode() + MESSAGE_TERMINATOR)
        await writer.drain()
        while True:
            line = await reader.readline()
            if not line:
                break
            response = ResponseWrapper.model_validate_json(line)
            if isinstance(response.root, StateNotification):
                click.echo(format_status(response.root.status))
                click.echo("")
    finally:
        writer.close()


def format_status(status: SessionStateModel) -> str:
    """Render the session state for the terminal."""
    lines = [f"Mode: {status.mode.value}", f"Recorder: {status.recorder_state}"]
    if status.loading:
        lines.append("Transcribing...")
    if status.selected_file:
        lines.append(f"Selected file: {status.selected_file}")
    if status.recording_bytes is not None:
        lines.append(
            f"Recording: {status.recording_bytes} bytes ({status.recording_mime_type})"
        )
    if status.transcription:
        lines.append("Transcription:")
        lines.append(f"  {status.transcription}")
    return "\n".join(lines)


def format_history(status: SessionStateModel) -> str:
    if not status.history:
        return "No transcriptions yet."
    return "\n".join(
        f"[{index}] {item.name}: {item.text}" for index, item in enumerate(status.history)
    )


class Context:
    def __init__(self, socket_path: Path):
        self.socket_path = socket_path

    def request(self, command: Dict[str, Any]) -> ResponseWrapper:
        """Send a command, exiting with a message when it fails."""
        try:
            response = asyncio.run(send_command(self.socket_path, command))
        except (FileNotFoundError, ConnectionRefusedError):
            raise click.ClickException(
                f"Daemon is not running (no socket at {self.socket_path})"
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise click.ClickException(f"Could not talk to daemon: {e}")
        except ValidationError as e:
            raise click.ClickException(f"Unexpected reply from daemon: {e}")

        if isinstance(response.root, ErrorResponse):
            raise click.ClickException(response.root.message)
        return response


pass_context = click.make_pass_decorator(Context)


def echo_reply(response: ResponseWrapper) -> None:
    root = response.root
    if isinstance(root, StatusResponse):
        click.echo(format_status(root.status))
    elif isinstance(root, SavedResponse):
        click.echo(f"Saved to {root.path}" if root.path else "Nothing to save.")


@click.group()
@click.option(
    "--socket",
    "socket_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Daemon socket path.",
)
@click.pass_context
def cli(ctx: click.Context, socket_path: Optional[Path]) -> None:
    """Control the scribed transcription daemon."""
    ctx.obj = Context(socket_path or get_default_socket_path())


@cli.command()
@pass_context
def status(ctx: Context) -> None:
    """Show the current session."""
    echo_reply(ctx.request({"command": "status"}))


@cli.command()
@click.argument("mode", type=click.Choice(["upload", "record"]))
@pass_context
def mode(ctx: Context, mode: str) -> None:
    """Switch between upload and record mode."""
    ctx.request({"command": "mode", "mode": mode})


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@pass_context
def select(ctx: Context, path: Path) -> None:
    """Choose the audio file for the next upload."""
    ctx.request({"command": "select", "path": str(path.absolute())})


@cli.command()
@click.argument("path", type=click.Path(path_type=Path), required=False)
@pass_context
def upload(ctx: Context, path: Optional[Path]) -> None:
    """Transcribe PATH, or the selected file."""
    command: Dict[str, Any] = {"command": "upload"}
    if path is not None:
        command["path"] = str(path.absolute())
    echo_reply(ctx.request(command))


@cli.command()
@pass_context
def record(ctx: Context) -> None:
    """Start recording from the microphone."""
    echo_reply(ctx.request({"command": "start"}))


@cli.command()
@pass_context
def stop(ctx: Context) -> None:
    """Stop recording and transcribe it."""
    echo_reply(ctx.request({"command": "stop"}))


@cli.command()
@pass_context
def toggle(ctx: Context) -> None:
    """Start or stop recording."""
    echo_reply(ctx.request({"command": "toggle"}))


@cli.command()
@click.option("--filename", default=None, help="Name of the text file.")
@click.option("--index", type=int, default=None, help="Save this history entry.")
@pass_context
def save(ctx: Context, filename: Optional[str], index: Optional[int]) -> None:
    """Save the transcription as a text file."""
    command: Dict[str, Any] = {"command": "save_text"}
    if filename:
        command["filename"] = filename
    if index is not None:
        command["index"] = index
    echo_reply(ctx.request(command))


@cli.command()
@pass_context
def download(ctx: Context) -> None:
    """Save the last recording."""
    echo_reply(ctx.request({"command": "download_audio"}))


@cli.command()
@pass_context
def delete(ctx: Context) -> None:
    """Clear the transcription and the held recording."""
    ctx.request({"command": "delete"})


@cli.command()
@pass_context
def history(ctx: Context) -> None:
    """List past transcriptions, most recent first."""
    response = ctx.request({"command": "status"})
    click.echo(format_history(response.root.status))


@cli.command("clear-history")
@pass_context
def clear_history(ctx: Context) -> None:
    """Forget all past transcriptions."""
    ctx.request({"command": "clear_history"})


@cli.command()
@pass_context
def watch(ctx: Context) -> None:
    """Print session changes as they happen."""
    try:
        asyncio.run(watch_state(ctx.socket_path))
    except (FileNotFoundError, ConnectionRefusedError):
        raise click.ClickException(
            f"Daemon is not running (no socket at {ctx.socket_path})"
        )
    except KeyboardInterrupt:
        pass


@cli.command()
@pass_context
def shutdown(ctx: Context) -> None:
    """Stop the daemon."""
    ctx.request({"command": "shutdown"})


if __name__ == "__main__":
    cli()
