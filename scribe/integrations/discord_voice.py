"""
py-cord adapters for the recording pipeline.

``DiscordVoiceTransport`` turns a connected ``discord.VoiceClient`` into a
VoiceTransport: py-cord's recorder thread writes decoded PCM per user into a
custom sink, which is handed back to the event loop and fanned out into
per-participant frame streams. ``DiscordChannelReporter`` posts status
messages and attachments to a text channel.
"""

import asyncio
import logging
import os
from collections import deque

import discord

from scribe.services.capture.decoder import PassthroughDecoder
from scribe.services.capture.models import (
    ConnectionLost,
    ConnectionRestored,
    ParticipantLeft,
    SpeakingStarted,
    TransportEvent,
)
from scribe.services.capture.transport import EventHandler, QueueFrameStream, VoiceTransport
from scribe.services.delivery.manager import ReportSink

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class DiscordVoiceConstants:
    # Frames held for a participant between first audio and subscription (~5 s of 20 ms frames)
    MAX_PENDING_FRAMES = 250

    # Minimum gap between speech-start signals for a participant without a stream
    RESIGNAL_SECONDS = 1.0


# -------------------------------------------------------------- #
# Sink
# -------------------------------------------------------------- #


class StreamingSink(discord.sinks.Sink):
    """
    Sink that forwards every PCM packet instead of buffering the whole call.

    ``write`` runs on py-cord's recorder thread, so packets are marshalled
    back onto the event loop before they touch any asyncio state.
    """

    def __init__(self, transport: "DiscordVoiceTransport"):
        super().__init__()
        self.transport = transport

    def write(self, data, user):
        self.transport.loop.call_soon_threadsafe(self.transport.deliver_audio, str(user), bytes(data))

    def cleanup(self):
        self.finished = True


# -------------------------------------------------------------- #
# Voice Transport
# -------------------------------------------------------------- #


class DiscordVoiceTransport(VoiceTransport):
    """VoiceTransport backed by a py-cord voice connection (frames arrive as decoded PCM)."""

    def __init__(self, voice_client: discord.VoiceClient, loop: asyncio.AbstractEventLoop | None = None):
        self.voice_client = voice_client
        self.loop = loop or asyncio.get_event_loop()
        self._handler: EventHandler | None = None
        self._sink: StreamingSink | None = None
        self._streams: dict[str, QueueFrameStream] = {}
        self._pending: dict[str, deque] = {}
        self._last_signal: dict[str, float] = {}
        self._event_tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------- #
    # Recording Lifecycle
    # -------------------------------------------------------------- #

    def start(self) -> None:
        """Start py-cord's recorder with a fresh streaming sink."""
        self._sink = StreamingSink(self)
        # Use sync_start=False to avoid blocking the event loop
        self.voice_client.start_recording(self._sink, self._recording_finished_callback, sync_start=False)
        logger.info(f"Started voice capture in channel {self.voice_client.channel}")

    async def _recording_finished_callback(self, _sink: StreamingSink, *_args) -> None:
        logger.info(f"Voice capture finished in channel {self.voice_client.channel}")

    def _stop_recorder(self) -> None:
        if self.voice_client.recording:
            self.voice_client.stop_recording()

    # -------------------------------------------------------------- #
    # VoiceTransport
    # -------------------------------------------------------------- #

    def set_event_handler(self, handler: EventHandler | None) -> None:
        self._handler = handler

    def subscribe(self, participant_id: str) -> QueueFrameStream:
        stream = QueueFrameStream()
        for frame in self._pending.pop(participant_id, ()):
            stream.push(frame)
        self._streams[participant_id] = stream
        return stream

    async def reconnect(self) -> bool:
        channel = self.voice_client.channel
        try:
            self._stop_recorder()
            await self.voice_client.disconnect(force=True)
            self.voice_client = await channel.connect()
            self.start()
            return True
        except Exception as e:
            logger.warning(f"Reconnect to voice channel {channel} failed: {type(e).__name__}: {e}")
            return False

    async def disconnect(self) -> None:
        self._stop_recorder()
        for stream in self._streams.values():
            await stream.close()
        self._streams.clear()
        self._pending.clear()
        if self.voice_client.is_connected():
            await self.voice_client.disconnect()

    def display_label(self, participant_id: str) -> str:
        guild = self.voice_client.guild
        member = guild.get_member(int(participant_id)) if guild and participant_id.isdigit() else None
        return member.display_name if member else participant_id

    def create_decoder(self) -> PassthroughDecoder:
        # py-cord's recorder decodes Opus before the sink sees a packet
        return PassthroughDecoder()

    # -------------------------------------------------------------- #
    # Audio Fan-out
    # -------------------------------------------------------------- #

    def deliver_audio(self, participant_id: str, pcm: bytes) -> None:
        """Route one PCM packet; the first packet without an open stream counts as speech start."""
        stream = self._streams.get(participant_id)
        if stream is not None and not stream.closed:
            stream.push(pcm)
            return

        pending = self._pending.get(participant_id)
        if pending is None:
            pending = deque(maxlen=DiscordVoiceConstants.MAX_PENDING_FRAMES)
            self._pending[participant_id] = pending

        # Signal again while unsubscribed in case an earlier signal arrived mid-finalize
        now = self.loop.time()
        if now - self._last_signal.get(participant_id, float("-inf")) >= DiscordVoiceConstants.RESIGNAL_SECONDS:
            self._last_signal[participant_id] = now
            self.emit(SpeakingStarted(participant_id))
        pending.append(pcm)

    # -------------------------------------------------------------- #
    # Host Notifications
    # -------------------------------------------------------------- #

    def notify_participant_left(self, participant_id: str) -> None:
        """Call from ``on_voice_state_update`` when a member leaves the recorded channel."""
        self._pending.pop(str(participant_id), None)
        self.emit(ParticipantLeft(str(participant_id)))

    def notify_connection_lost(self) -> None:
        self.emit(ConnectionLost())

    def notify_connection_restored(self) -> None:
        self.emit(ConnectionRestored())

    def emit(self, event: TransportEvent) -> None:
        """Hand an event to the registered handler without blocking the caller."""
        if self._handler is None:
            return
        task = self.loop.create_task(self._handler(event))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)


# -------------------------------------------------------------- #
# Report Sink
# -------------------------------------------------------------- #


class DiscordChannelReporter(ReportSink):
    """Posts pipeline messages (and recording attachments) to a text channel."""

    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel

    async def report(self, message: str, attachments: list[str] | None = None) -> None:
        files = [discord.File(path, filename=os.path.basename(path)) for path in attachments or []]
        if files:
            await self.channel.send(content=message, files=files)
        else:
            await self.channel.send(content=message)
