"""Client for the remote transcription endpoint."""

import logging
from typing import Optional

import httpx

from .exceptions import EmptyResult, TransmissionFailure
from .models import TranscriptionRequest

logger = logging.getLogger(__name__)

# Multipart field the service reads the audio from
AUDIO_FIELD = "audio"


class TranscriptionClient:
    """Posts audio to the transcription service and extracts the transcript.

    One request per call, no retries. Errors are raised as
    ``TransmissionFailure`` or ``EmptyResult`` for the session to report.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the HTTP client.

        Args:
            endpoint: Full URL requests are posted to.
            timeout: Request timeout in seconds, None to wait indefinitely.
            transport: Optional httpx transport (used by tests).
        """
        self.endpoint = endpoint
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), transport=transport
        )

    async def transcribe(self, request: TranscriptionRequest) -> str:
        """Submit audio for transcription.

        Args:
            request: The audio payload and its filename.

        Returns:
            The non-blank transcript text.

        Raises:
            TransmissionFailure: On transport errors or a non-success status.
            EmptyResult: If the response carries no usable transcript.
        """
        logger.info(
            f"Submitting '{request.filename}' ({len(request.payload)} bytes) "
            f"to {self.endpoint}"
        )
        files = {
            AUDIO_FIELD: (request.filename, request.payload, request.content_type)
        }

        try:
            response = await self._client.post(self.endpoint, files=files)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Transcription service returned HTTP {status}")
            raise TransmissionFailure(self.endpoint, status_code=status, cause=e) from e
        except httpx.HTTPError as e:
            logger.error(f"Error transcribing audio: {e}")
            raise TransmissionFailure(self.endpoint, cause=e) from e

        try:
            data = response.json()
        except ValueError:
            logger.warning("Transcription response is not valid JSON")
            raise EmptyResult(request.filename) from None

        transcript = data.get("transcript") if isinstance(data, dict) else None
        if not isinstance(transcript, str) or not transcript.strip():
            logger.warning(f"No transcript in response for '{request.filename}'")
            raise EmptyResult(request.filename)

        logger.info(f"Transcribed '{request.filename}': {transcript[:100]}")
        return transcript

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
