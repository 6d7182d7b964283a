"""Ollama summarizer client implementation."""

import asyncio
import logging

import ollama

from scribe.server.services import SummarizerHandler

logger = logging.getLogger(__name__)


class OllamaServerClient(SummarizerHandler):
    """Client for an Ollama server, used to summarize transcripts."""

    def __init__(
        self,
        name: str = "ollama_server",
        host: str = "http://localhost:11434",
        model: str = "llama3.1",
        timeout: float = 300.0,
    ):
        super().__init__(name, host, model)
        self.timeout = timeout
        self._client: ollama.AsyncClient | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the Ollama client and probe the server."""
        self._client = ollama.AsyncClient(host=self.host)
        self._connected = True

        if await self.health_check():
            logger.info(f"Connected to Ollama server at {self.host} (model: {self.model})")
        else:
            logger.warning(f"Ollama server at {self.host} did not pass its health check")

    async def disconnect(self) -> None:
        """Drop the Ollama client."""
        self._client = None
        self._connected = False
        logger.info("Disconnected from Ollama server")

    async def health_check(self) -> bool:
        """Check if the Ollama server answers a model listing."""
        try:
            if not self._client:
                return False
            await self._client.list()
            return True
        except Exception as e:
            logger.error(f"Ollama server health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def summarize(self, prompt: str, system_prompt: str | None = None) -> str | None:
        """
        Run one chat completion and return its content.

        Raises:
            RuntimeError: Not connected
            asyncio.TimeoutError: The model did not answer in time
            ollama.ResponseError: The server rejected the request
        """
        if not self._client:
            raise RuntimeError("Not connected to Ollama server")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await asyncio.wait_for(
            self._client.chat(model=self.model, messages=messages),
            timeout=self.timeout,
        )

        content = response.get("message", {}).get("content", "") if response else ""
        if not content or not content.strip():
            return None
        return content.strip()


def construct_ollama_server_client(
    host: str = "http://localhost:11434",
    model: str = "llama3.1",
    timeout: float = 300.0,
) -> OllamaServerClient:
    """
    Construct and return an Ollama summarizer client.

    Args:
        host: Ollama server URL
        model: Model used for summaries
        timeout: Per-request timeout in seconds

    Returns:
        Configured OllamaServerClient instance
    """
    return OllamaServerClient(name="ollama_server", host=host, model=model, timeout=timeout)
