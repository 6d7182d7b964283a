from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.constructor import ServerManagerType
from scribe.server.common import ollama_server, whisper_server
from scribe.server.server import ServerManager

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(client_type: ServerManagerType, context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager for the given deployment type.

    DEVELOPMENT and PRODUCTION talk to real Whisper/Ollama servers configured
    through the context's PipelineConfig; TESTING uses in-process mocks.
    """
    if client_type == ServerManagerType.TESTING:
        from scribe.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)

    if client_type in (ServerManagerType.DEVELOPMENT, ServerManagerType.PRODUCTION):
        config = context.config

        whisper_server_client = whisper_server.construct_whisper_server_client(
            endpoint=config.whisper_endpoint,
            language=config.transcription_language,
            request_timeout=config.whisper_request_timeout_seconds,
        )
        summarizer_client = ollama_server.construct_ollama_server_client(
            host=config.ollama_host,
            model=config.ollama_model,
            timeout=config.summary_timeout_seconds,
        )

        return ServerManager(
            context=context,
            whisper_server_client=whisper_server_client,
            summarizer_client=summarizer_client,
        )

    raise ValueError(f"Unsupported ServerManagerType: {client_type}")
