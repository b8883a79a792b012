"""scribed: record or upload audio and transcribe it with a remote service."""

__version__ = "0.1.0"
