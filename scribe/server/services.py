from abc import ABC, abstractmethod

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """
    A client for one external server.

    ``connect``/``disconnect`` manage the transport; ``on_startup``/``on_close``
    are optional hooks run right after connecting and right before disconnecting.
    """

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    async def on_startup(self) -> None:
        pass

    async def on_close(self) -> None:
        pass

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @property
    def is_connected(self) -> bool:
        return self._connected


# -------------------------------------------------------------- #
# Pipeline Server Handlers
# -------------------------------------------------------------- #


# Whisper Server Handler
class WhisperServerHandler(BaseServerHandler):
    """Speech-to-text server handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    # -------------------------------------------------------------- #
    # Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def transcribe(self, audio_path: str) -> str | None:
        """
        Transcribe one audio file.

        Args:
            audio_path: Path to a compressed artifact or segment

        Returns:
            Transcribed text ("" for silence), or None when the outcome is undetermined

        Raises:
            TransientTranscriptionError: The call may succeed if retried
            TerminalTranscriptionError: Retrying the same input cannot succeed
        """
        pass


# Summarizer Handler
class SummarizerHandler(BaseServerHandler):
    """Language model server handler used for summaries."""

    def __init__(self, name: str, host: str, model: str):
        super().__init__(name)
        self.host = host
        self.model = model

    # -------------------------------------------------------------- #
    # Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def summarize(self, prompt: str, system_prompt: str | None = None) -> str | None:
        """
        Generate a summary.

        Args:
            prompt: User prompt containing the transcript
            system_prompt: Optional system instruction

        Returns:
            Generated text, or None when the model produced nothing
        """
        pass
