"""
Interfaces for the real-time voice transport.

The transport owns the connection; the capture manager only consumes the
events it emits and the per-participant frame streams it hands out.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable

from scribe.services.capture.decoder import FrameDecoder, OpusFrameDecoder
from scribe.services.capture.models import TransportEvent

EventHandler = Callable[[TransportEvent], Awaitable[None]]

_CLOSED = object()

# -------------------------------------------------------------- #
# Frame Stream
# -------------------------------------------------------------- #


class FrameStream(ABC):
    """
    Async iterator over one participant's frames.

    Iteration ends only when close() is called (or the transport gives up on
    the stream); silence never ends a stream.
    """

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    @abstractmethod
    async def __anext__(self) -> bytes:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering frames; pending iteration finishes with StopAsyncIteration."""
        pass


class QueueFrameStream(FrameStream):
    """
    Frame stream fed by ``push`` from the transport's side.

    Frames pushed before close() are still delivered; the stream ends after
    the last of them.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: bytes) -> None:
        if not self._closed:
            self._queue.put_nowait(frame)

    async def __anext__(self) -> bytes:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)


# -------------------------------------------------------------- #
# Voice Transport
# -------------------------------------------------------------- #


class VoiceTransport(ABC):
    """Connection to a live voice room that captures are drawn from."""

    @abstractmethod
    def set_event_handler(self, handler: EventHandler | None) -> None:
        """Register the single dispatch point that receives every transport event."""
        pass

    @abstractmethod
    def subscribe(self, participant_id: str) -> FrameStream:
        """Open a frame stream for a participant; it stays open until closed explicitly."""
        pass

    @abstractmethod
    async def reconnect(self) -> bool:
        """Attempt to re-establish a dropped connection. Returns True on success."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Leave the voice room."""
        pass

    def display_label(self, participant_id: str) -> str:
        """Human readable label for a participant."""
        return str(participant_id)

    def create_decoder(self) -> FrameDecoder:
        """
        Decoder for this transport's frames, one per participant pipeline.

        Frames are Opus packets unless the transport overrides this.
        """
        return OpusFrameDecoder()
