"""
Connections to the external speech-to-text and summarization servers.

The services never build clients themselves; they reach them through
``context.server_manager``.
"""

import logging
from typing import TYPE_CHECKING

from scribe.server.services import BaseServerHandler, SummarizerHandler, WhisperServerHandler

if TYPE_CHECKING:
    from scribe.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Connects, health-checks and disconnects the pipeline's server clients."""

    def __init__(
        self,
        context: "Context",
        whisper_server_client: WhisperServerHandler,
        summarizer_client: SummarizerHandler,
    ):
        self.context = context
        self._initialized = False
        self._whisper_server_client = whisper_server_client
        self._summarizer_client = summarizer_client

    @property
    def clients(self) -> list[BaseServerHandler]:
        return [self._whisper_server_client, self._summarizer_client]

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect every client. A failing client aborts startup."""
        for client in self.clients:
            await client.connect()
            await client.on_startup()
            logger.info(f"[ServerManager] {client.name} ready")

        self._initialized = True
        logger.info(f"[ServerManager] {len(self.clients)} server clients connected")

    async def disconnect_all(self) -> None:
        """Disconnect in reverse order; one client failing does not strand the others."""
        for client in reversed(self.clients):
            try:
                await client.on_close()
                await client.disconnect()
            except Exception as e:
                logger.error(f"[ServerManager] Failed to disconnect {client.name}: {e}")
            else:
                logger.info(f"[ServerManager] {client.name} disconnected")

        self._initialized = False

    async def health_check_all(self) -> dict[str, bool]:
        """Map each client name to its health check result."""
        return {client.name: await client.health_check() for client in self.clients}

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def whisper_server_client(self) -> WhisperServerHandler:
        return self._whisper_server_client

    @property
    def summarizer_client(self) -> SummarizerHandler:
        return self._summarizer_client

    @property
    def is_initialized(self) -> bool:
        return self._initialized
