"""Configuration handling for the scribed daemon."""

import getpass
import os
import tomllib
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.parse import urljoin, urlparse

from pydantic import BaseModel, Field, field_validator

BACKEND_URL_ENV = "SCRIBE_BACKEND_URL"
TRANSCRIBE_PATH = "/transcribe"
LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


def check_http_url(url: str, source: Optional[str] = None) -> str:
    """Ensure url is an absolute http(s) URL.

    Args:
        url: The URL to check.
        source: Configured value the URL was derived from, for the error.

    Returns:
        The unchanged URL.

    Raises:
        ValueError: If the scheme is not http/https or the host is missing.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(
            f"Invalid transcription endpoint '{source or url}': "
            "expected an absolute http:// or https:// URL"
        )
    return url


def get_default_config_path() -> Path:
    """Get the default config file path following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base_dir = Path(xdg_config)
    else:
        base_dir = Path.home() / ".config"

    return base_dir / "scribe" / "config.toml"


def get_default_socket_path() -> Path:
    """Get the default socket path following XDG spec."""
    xdg_runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if xdg_runtime_dir:
        sock_dir = Path(xdg_runtime_dir) / "scribe"
        try:
            sock_dir.mkdir(parents=True, exist_ok=True)
            if not os.access(sock_dir, os.W_OK | os.X_OK):
                raise OSError("Insufficient permissions for XDG runtime dir.")
            return sock_dir / "daemon.sock"
        except (OSError, PermissionError) as e:
            print(
                f"Warning: Could not use XDG_RUNTIME_DIR ({e}), falling back to /tmp."
            )

    # Fallback if XDG_RUNTIME_DIR not set or unusable
    uid = getpass.getuser()
    return Path(f"/tmp/scribe-{uid}.sock")


def get_default_log_path() -> Path:
    """Get the default log file path following XDG spec."""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base_dir = Path(xdg_state)
    else:
        base_dir = Path.home() / ".local" / "state"

    log_dir = base_dir / "scribe"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "scribed.log"


def get_default_download_dir() -> Path:
    """Get the directory exported files land in."""
    xdg_download = os.environ.get("XDG_DOWNLOAD_DIR")
    if xdg_download:
        return Path(xdg_download)
    return Path.home() / "Downloads"


class BackendConfig(BaseModel):
    """Remote transcription endpoint configuration."""

    base_url: Optional[str] = Field(
        default=None,
        description=f"Backend base URL; '{TRANSCRIBE_PATH}' is joined onto it.",
    )
    host: str = Field(
        default="localhost",
        description="Host the client is running on; loopback selects local_url.",
    )
    local_url: str = Field(
        default="http://localhost:5000/transcribe",
        description="Endpoint used for local development.",
    )
    fallback_url: Optional[str] = Field(
        default=None, description="Endpoint used when deployed on a non-local host."
    )
    timeout_s: Optional[float] = Field(
        default=None, gt=0, description="Request timeout in seconds (None = no timeout)."
    )

    def resolve_endpoint(self, environ: Optional[Mapping[str, str]] = None) -> str:
        """Resolve the full URL transcription requests are posted to.

        Priority: the SCRIBE_BACKEND_URL environment variable, then base_url,
        then local_url when running on a loopback host, then fallback_url.

        Args:
            environ: Environment to consult (defaults to os.environ).

        Returns:
            The endpoint URL.

        Raises:
            ValueError: If no endpoint can be determined.
        """
        if environ is None:
            environ = os.environ

        base = environ.get(BACKEND_URL_ENV) or self.base_url
        if base:
            return check_http_url(urljoin(base, TRANSCRIBE_PATH), source=base)

        if self.host.lower() in LOOPBACK_HOSTS:
            return check_http_url(self.local_url)

        if self.fallback_url:
            return check_http_url(self.fallback_url)

        raise ValueError(
            f"No transcription endpoint configured for host '{self.host}'. "
            f"Set {BACKEND_URL_ENV}, backend.base_url or backend.fallback_url."
        )


class RecorderConfig(BaseModel):
    """Microphone capture configuration."""

    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable.")
    input_format: str = Field(
        default="pulse", description="ffmpeg input format (pulse, alsa, avfoundation...)."
    )
    input_device: str = Field(default="default", description="Capture device name.")
    preferred_mime_types: List[str] = Field(
        default_factory=lambda: ["audio/webm;codecs=opus", "audio/webm"],
        description="Recording formats in order of preference.",
    )
    min_size_bytes: int = Field(
        default=1000, ge=0, description="Recordings smaller than this are rejected."
    )
    startup_grace_s: float = Field(
        default=0.3,
        ge=0,
        description="Time to wait for ffmpeg to fail before considering capture started.",
    )

    @field_validator("preferred_mime_types")
    @classmethod
    def check_mime_types(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one recording MIME type must be listed")
        for mime_type in v:
            if "/" not in mime_type:
                raise ValueError(f"Invalid MIME type: {mime_type}")
        return v


class OutputConfig(BaseModel):
    """Local file export configuration."""

    directory: Optional[Path] = Field(
        default=None, description="Directory for saved text and audio files."
    )
    text_filename: str = Field(
        default="transcription.txt", description="Default name for saved transcripts."
    )
    audio_filename: str = Field(
        default="recorded_audio.webm", description="Name for downloaded recordings."
    )

    @field_validator("directory")
    @classmethod
    def expand_directory(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @property
    def computed_directory(self) -> Path:
        return self.directory or get_default_download_dir()


class DaemonConfig(BaseModel):
    """Daemon runtime configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    log_file: Optional[Path] = Field(
        default=None, description="Optional custom log file path."
    )
    socket_path: Optional[Path] = Field(
        default=None, description="Optional custom socket path for IPC."
    )

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in allowed_levels:
            raise ValueError(f"Invalid log level. Choose from {allowed_levels}")
        return upper_v

    @property
    def computed_log_file(self) -> Path:
        return self.log_file or get_default_log_path()

    @property
    def computed_socket_path(self) -> Path:
        return self.socket_path or get_default_socket_path()


class AppConfig(BaseModel):
    """Root configuration."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration.

    If path is not provided, looks for config in standard locations.
    If no config file is found, returns default configuration.

    Args:
        path: Optional path to config file.

    Returns:
        Validated AppConfig instance.

    Raises:
        ValueError: If config file exists but has invalid format/content.
        OSError: If config file exists but can't be read.
    """
    if path is None:
        path = get_default_config_path()

    if not path.exists():
        return AppConfig()  # Use defaults

    try:
        with open(path, "rb") as f:
            config_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Error decoding TOML file: {path}\n{e}") from e
    except OSError as e:
        raise OSError(f"Error reading file: {path}\n{e}") from e

    try:
        return AppConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
