"""Exception hierarchy for the recording pipeline."""

# -------------------------------------------------------------- #
# Base
# -------------------------------------------------------------- #


class ScribeError(Exception):
    """Base class for all pipeline errors."""


# -------------------------------------------------------------- #
# Session Registry
# -------------------------------------------------------------- #


class AlreadyActiveError(ScribeError):
    """A session is already active for the requested scope."""

    def __init__(self, scope_id: str):
        super().__init__(f"A recording session is already active for scope {scope_id}")
        self.scope_id = scope_id


class NoActiveSessionError(ScribeError):
    """No session is active for the requested scope."""

    def __init__(self, scope_id: str):
        super().__init__(f"No active recording session for scope {scope_id}")
        self.scope_id = scope_id


# -------------------------------------------------------------- #
# Transcode
# -------------------------------------------------------------- #


class EmptyCaptureError(ScribeError):
    """A participant's raw capture holds no audio bytes."""

    def __init__(self, path: str):
        super().__init__(f"Raw capture is empty: {path}")
        self.path = path


class TranscodeError(ScribeError):
    """FFmpeg failed or timed out while producing an artifact or its segments."""


# -------------------------------------------------------------- #
# Transcription
# -------------------------------------------------------------- #


class TranscriptionError(ScribeError):
    """Base class for errors raised by a transcriber."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TransientTranscriptionError(TranscriptionError):
    """A transcription failure expected to succeed on retry (network, timeout, 5xx, 429)."""


class TerminalTranscriptionError(TranscriptionError):
    """A transcription failure that will not change on retry (auth, malformed input)."""
