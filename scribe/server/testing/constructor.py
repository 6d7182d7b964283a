"""
Constructor for Testing Server Manager.

This module provides functions to construct a ServerManager instance
with mock server implementations for testing purposes.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.server.server import ServerManager
from scribe.server.testing.ollama_server import MockOllamaServerClient
from scribe.server.testing.whisper_server import MockWhisperServerClient

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for testing.

    This creates a ServerManager with mock implementations:
    - Mock Whisper server
    - Mock Ollama summarizer

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        Configured ServerManager instance with test implementations
    """
    return ServerManager(
        context=context,
        whisper_server_client=MockWhisperServerClient(),
        summarizer_client=MockOllamaServerClient(),
    )
