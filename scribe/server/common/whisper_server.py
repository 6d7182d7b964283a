"""Whisper server client implementation."""

import logging
import os

import aiohttp

from scribe.server.services import WhisperServerHandler
from scribe.services.errors import TerminalTranscriptionError, TransientTranscriptionError

logger = logging.getLogger(__name__)

# Statuses where retrying the same request cannot help
TERMINAL_HTTP_STATUSES = frozenset({400, 401, 403, 404, 413, 415, 422})


class WhisperServerClient(WhisperServerHandler):
    """Client for Whisper.cpp server."""

    def __init__(
        self,
        name: str = "whisper_server",
        endpoint: str = "http://localhost:50021",
        language: str = "en",
        request_timeout: float = 600.0,
    ):
        """
        Initialize Whisper server client.

        Args:
            name: Name of the client
            endpoint: Whisper server endpoint URL
            language: Language code sent with every request
            request_timeout: Total timeout for one inference request in seconds
        """
        super().__init__(name, endpoint)
        self.language = language
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session and probe the server."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        self._connected = True

        # An unreachable server is not fatal at startup; each call is retried on its own
        if await self.health_check():
            logger.info(f"Connected to Whisper server at {self.endpoint}")
        else:
            logger.warning(f"Whisper server at {self.endpoint} did not pass its health check")

    async def disconnect(self) -> None:
        """Close connection to Whisper server."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from Whisper server")

    async def health_check(self) -> bool:
        """Check if Whisper server is healthy."""
        try:
            if not self.session:
                return False

            async with self.session.get(f"{self.endpoint}/health") as response:
                return response.status == 200
        except Exception as e:
            logger.error(f"Whisper server health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def transcribe(self, audio_path: str) -> str | None:
        """
        Transcribe an audio file through the ``/inference`` endpoint.

        Args:
            audio_path: Path to the audio file

        Returns:
            Plain transcript text, stripped

        Raises:
            TerminalTranscriptionError: 400/401/403/404/413/415/422 responses
            TransientTranscriptionError: Any other non-200 response
            aiohttp.ClientError / asyncio.TimeoutError: Transport failures, left for the caller to classify
        """
        if not self.session:
            raise RuntimeError("Not connected to Whisper server")

        with open(audio_path, "rb") as f:  # Keep open until request is done
            data = aiohttp.FormData()
            data.add_field("file", f, filename=os.path.basename(audio_path))
            for key, value in {
                "response_format": "text",
                "temperature": "0.0",
                "temperature_inc": "0.2",
                "language": self.language,
            }.items():
                data.add_field(key, str(value))

            async with self.session.post(f"{self.endpoint}/inference", data=data) as response:
                body = await response.text()

                if response.status == 200:
                    return body.strip()

                message = f"Inference failed ({response.status}): {body[:200]}"
                if response.status in TERMINAL_HTTP_STATUSES:
                    raise TerminalTranscriptionError(message, status=response.status)
                raise TransientTranscriptionError(message, status=response.status)


def construct_whisper_server_client(
    endpoint: str = "http://localhost:50021",
    language: str = "en",
    request_timeout: float = 600.0,
) -> WhisperServerClient:
    """
    Construct and return a Whisper server client.

    Args:
        endpoint: Whisper server endpoint URL
        language: Transcription language code
        request_timeout: Per-request timeout in seconds

    Returns:
        Configured WhisperServerClient instance
    """
    return WhisperServerClient(
        name="whisper_server",
        endpoint=endpoint,
        language=language,
        request_timeout=request_timeout,
    )
